"""
QueueManager — the message lifecycle protocol.

Every operation is one (or, for count(), four) calls into MessageStorePort.
Mutations are single-document conditional updates executed atomically by
the store; the manager itself holds no lock and no queue state.

Lifecycle of a message
----------------------
  push()  → live, ack unset, tries = 0, visible = now + delay
  pull()  → ack = fresh token, tries += 1, visible = now + visibility_timeout
  ping()  → visible = now + visibility_timeout (same ack)
  mark()  → deleted = now (tombstone)
  clear() → tombstones physically removed

A claim is exclusive because pull() moves `visible` into the future in the
same atomic step that matched `visible <= now`; no second pull() can match
the message until that lease expires. mark() and ping() only match while
`ack` is unchanged, `visible > now` and the message is live, so a worker
that lost its lease gets None back rather than touching someone else's claim.

Delivery is at-least-once: a worker that crashes before mark() leaves the
message to reappear when its lease expires.

Dead-letter routing
-------------------
With a `dead_letter` queue configured, pull() diverts any message retried
more than `options.max_retries` times (tries > max_retries + 1): the payload
is pushed to the dead-letter queue, the original is tombstoned under the
fresh claim, and pull() moves on to the next candidate. Without one,
tries are counted but never enforced.
"""
from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence
from types import TracebackType

import pydantic
from pydantic import JsonValue

from docqueue.core.clock import Clock, SystemClock, new_token
from docqueue.domain.errors import QueueNotReadyError, ValidationError
from docqueue.domain.models import (
    InsertResult,
    Message,
    MessageFilter,
    MessageUpdate,
    NewMessage,
    QueueCounts,
    QueueOptions,
)
from docqueue.ports.store import MessageStorePort

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class QueueManager:
    """
    Multi-producer / multi-consumer work queue over a MessageStorePort.

    Parameters
    ----------
    store       : any MessageStorePort implementation
    options     : default delay, lease length and retry limit
    clock       : source of epoch-millis (SystemClock by default)
    dead_letter : optional queue receiving messages past max_retries

    Use as an async context manager, or call start()/stop() explicitly.
    All operations raise QueueNotReadyError outside that window.
    """

    store: MessageStorePort
    options: QueueOptions = dataclasses.field(default_factory=QueueOptions)
    clock: Clock = dataclasses.field(default_factory=SystemClock)
    dead_letter: QueueManager | None = None

    _ready: bool = dataclasses.field(default=False, init=False, repr=False)

    # ------------------------------------------------------------------ #
    # Lifecycle                                                           #
    # ------------------------------------------------------------------ #

    @property
    def ready(self) -> bool:
        return self._ready

    async def start(self) -> None:
        """Connect the store (and dead-letter queue). Raises StorageError on failure."""
        if self._ready:
            return
        await self.store.connect()
        if self.dead_letter is not None:
            try:
                await self.dead_letter.start()
            except BaseException:
                await self.store.close()
                raise
        self._ready = True
        logger.info("Queue started on %s", type(self.store).__name__)

    async def stop(self) -> None:
        if not self._ready:
            return
        self._ready = False
        try:
            await self.store.close()
        finally:
            if self.dead_letter is not None:
                await self.dead_letter.stop()
        logger.info("Queue stopped")

    async def __aenter__(self) -> QueueManager:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    # ------------------------------------------------------------------ #
    # Queue operations                                                    #
    # ------------------------------------------------------------------ #

    async def push(
        self,
        payload: JsonValue | Sequence[JsonValue],
        delay: int | None = None,
    ) -> InsertResult:
        """
        Enqueue one payload, or a list/tuple of payloads in order.

        A list payload is always treated as a batch; to enqueue a single
        list value, wrap it: push([[1, 2, 3]]).

        Raises ValidationError for an empty batch, a payload that is not
        JSON-serialisable, or a negative delay.
        """
        self._ensure_ready("push")
        payloads = list(payload) if isinstance(payload, (list, tuple)) else [payload]
        if not payloads:
            raise ValidationError("push() requires at least one payload")
        delay = self.options.delay if delay is None else delay
        if delay < 0:
            raise ValidationError(f"delay must be >= 0, got {delay}")

        visible = self.clock.now() + delay
        try:
            docs = [NewMessage(payload=p, visible=visible) for p in payloads]
        except pydantic.ValidationError as exc:
            raise ValidationError(f"payload is not JSON-serialisable: {exc}") from exc
        result = await self.store.insert_many(docs, ordered=True)
        if not result.complete:
            logger.warning(
                "push inserted %d of %d messages", result.inserted_count, result.requested
            )
        else:
            logger.debug("push inserted %d message(s), visible at %d", len(docs), visible)
        return result

    async def pull(self, visibility_timeout: int | None = None) -> Message | None:
        """
        Claim the oldest claimable message.

        Returns the message carrying its new ack token, or None when nothing
        is eligible. Never waits for a message to appear.
        """
        self._ensure_ready("pull")
        timeout = self._lease(visibility_timeout)
        while True:
            now = self.clock.now()
            token = new_token()
            message = await self.store.find_one_and_update(
                MessageFilter.claimable(now),
                MessageUpdate(inc_tries=1, ack=token, visible=now + timeout),
            )
            if message is None:
                logger.debug("pull found no eligible message")
                return None
            if self.dead_letter is None or not self._exceeds_retries(message):
                logger.debug("pull claimed %s (try %d)", message.id, message.tries)
                return message
            await self._dead_letter(self.dead_letter, message, token)

    async def mark(self, ack: str) -> Message | None:
        """
        Acknowledge a claimed message by tombstoning it.

        Returns None when the lease expired, was already acknowledged, or
        belongs to another worker.
        """
        self._ensure_ready("mark")
        now = self.clock.now()
        message = await self.store.find_one_and_update(
            MessageFilter.owned_by(ack, now), MessageUpdate(deleted=now)
        )
        if message is None:
            logger.debug("mark lost ownership of ack %s", ack)
        return message

    async def ping(
        self, ack: str, visibility_timeout: int | None = None
    ) -> Message | None:
        """Extend the lease of a claimed message. None if ownership was lost."""
        self._ensure_ready("ping")
        timeout = self._lease(visibility_timeout)
        now = self.clock.now()
        message = await self.store.find_one_and_update(
            MessageFilter.owned_by(ack, now), MessageUpdate(visible=now + timeout)
        )
        if message is None:
            logger.debug("ping lost ownership of ack %s", ack)
        return message

    async def count(self) -> QueueCounts:
        """
        Independent counts of all, tombstoned, in-flight and waiting messages.

        The four reads are not isolated from each other or from concurrent
        mutations.
        """
        self._ensure_ready("count")
        now = self.clock.now()
        return QueueCounts(
            total=await self.store.count_documents(MessageFilter.everything()),
            deleted=await self.store.count_documents(MessageFilter.tombstoned()),
            processing=await self.store.count_documents(MessageFilter.processing(now)),
            queued=await self.store.count_documents(MessageFilter.waiting(now)),
        )

    async def clear(self) -> None:
        """Physically remove every tombstoned message."""
        self._ensure_ready("clear")
        removed = await self.store.delete_many(MessageFilter.tombstoned())
        logger.debug("clear removed %d tombstoned message(s)", removed)

    # ------------------------------------------------------------------ #
    # Internals                                                           #
    # ------------------------------------------------------------------ #

    def _ensure_ready(self, operation: str) -> None:
        if not self._ready:
            raise QueueNotReadyError(operation)

    def _lease(self, visibility_timeout: int | None) -> int:
        timeout = (
            self.options.visibility_timeout
            if visibility_timeout is None
            else visibility_timeout
        )
        if timeout <= 0:
            raise ValidationError(f"visibility_timeout must be > 0, got {timeout}")
        return timeout

    def _exceeds_retries(self, message: Message) -> bool:
        return message.tries - 1 > self.options.max_retries

    async def _dead_letter(
        self, target: QueueManager, message: Message, token: str
    ) -> None:
        # Wrapped so a list payload is not taken for a batch.
        await target.push([message.payload], delay=0)
        now = self.clock.now()
        tombstoned = await self.store.find_one_and_update(
            MessageFilter.owned_by(token, now), MessageUpdate(deleted=now)
        )
        if tombstoned is None:
            logger.warning(
                "Message %s copied to dead-letter queue but its lease lapsed before "
                "it could be tombstoned; it may be dead-lettered again",
                message.id,
            )
            return
        logger.warning(
            "Message %s exceeded %d retries; moved to dead-letter queue",
            message.id,
            self.options.max_retries,
        )
