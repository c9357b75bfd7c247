"""
Domain models for docqueue — backed by Pydantic v2.

Pydantic handles:
  - JSON serialization / deserialization of messages (via codec.py)
  - validation that payloads are JSON-representable values
  - field validation and type coercion for store documents

All models are frozen (immutable). Mutations return new instances via
model_copy(update=...), following a functional-update style.

Timestamps are integer epoch-milliseconds throughout; they are only ever
compared against the single `visible` / `deleted` fields of a message.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, JsonValue

_ID_WIDTH = 24


def format_id(sequence: int) -> str:
    """Fixed-width hex id; lexicographic order equals insertion order."""
    return f"{sequence:0{_ID_WIDTH}x}"


class Message(BaseModel):
    """
    A single unit of work stored in the queue.

    id      — store-assigned identifier, ordered by insertion
    payload — arbitrary JSON value supplied by the producer
    visible — epoch-millis from which the message may be claimed
    ack     — token of the current claim (None when never claimed)
    tries   — number of successful claims via pull()
    deleted — tombstone epoch-millis (None while live)
    """

    model_config = ConfigDict(frozen=True)

    id: str
    payload: JsonValue
    visible: int
    ack: str | None = None
    tries: int = Field(default=0, ge=0)
    deleted: int | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted is not None

    def is_claimable(self, now: int) -> bool:
        """Live and visible at `now`."""
        return self.deleted is None and self.visible <= now

    def is_in_flight(self, now: int) -> bool:
        """Claimed, lease not yet expired, not acknowledged."""
        return self.ack is not None and self.visible > now and self.deleted is None


class NewMessage(BaseModel):
    """A message as built by push(), before the store assigns an id."""

    model_config = ConfigDict(frozen=True)

    payload: JsonValue
    visible: int

    def with_id(self, message_id: str) -> Message:
        return Message(id=message_id, payload=self.payload, visible=self.visible)


class MessageFilter(BaseModel):
    """
    Store-neutral match criteria. Every criterion that is set must hold.

    ack         — exact claim token
    ack_present — True: ack set, False: ack unset
    deleted     — True: tombstoned, False: live
    visible_lte — visible <= value
    visible_gt  — visible > value
    """

    model_config = ConfigDict(frozen=True)

    ack: str | None = None
    ack_present: bool | None = None
    deleted: bool | None = None
    visible_lte: int | None = None
    visible_gt: int | None = None

    # ------------------------------------------------------------------ #
    # Named filters used by the queue protocol                            #
    # ------------------------------------------------------------------ #

    @classmethod
    def everything(cls) -> MessageFilter:
        return cls()

    @classmethod
    def claimable(cls, now: int) -> MessageFilter:
        """Live messages whose visibility time has arrived."""
        return cls(deleted=False, visible_lte=now)

    @classmethod
    def owned_by(cls, ack: str, now: int) -> MessageFilter:
        """The message held under `ack`, provided the lease is still valid."""
        return cls(ack=ack, deleted=False, visible_gt=now)

    @classmethod
    def processing(cls, now: int) -> MessageFilter:
        return cls(ack_present=True, deleted=False, visible_gt=now)

    @classmethod
    def waiting(cls, now: int) -> MessageFilter:
        return cls.claimable(now)

    @classmethod
    def tombstoned(cls) -> MessageFilter:
        return cls(deleted=True)

    def matches(self, message: Message) -> bool:
        if self.ack is not None and message.ack != self.ack:
            return False
        if self.ack_present is not None and (message.ack is not None) != self.ack_present:
            return False
        if self.deleted is not None and message.is_deleted != self.deleted:
            return False
        if self.visible_lte is not None and not message.visible <= self.visible_lte:
            return False
        if self.visible_gt is not None and not message.visible > self.visible_gt:
            return False
        return True


class MessageUpdate(BaseModel):
    """
    Field mutations applied atomically by find_one_and_update().

    inc_tries — added to `tries`
    ack, visible, deleted — assigned when not None
    """

    model_config = ConfigDict(frozen=True)

    inc_tries: int = 0
    ack: str | None = None
    visible: int | None = None
    deleted: int | None = None

    def apply(self, message: Message) -> Message:
        """Return a new Message with this update applied."""
        changes: dict[str, object] = {}
        if self.inc_tries:
            changes["tries"] = message.tries + self.inc_tries
        if self.ack is not None:
            changes["ack"] = self.ack
        if self.visible is not None:
            changes["visible"] = self.visible
        if self.deleted is not None:
            changes["deleted"] = self.deleted
        return message.model_copy(update=changes)


class InsertResult(BaseModel):
    """
    Outcome of an ordered bulk insert.

    inserted_ids — ids of the committed prefix, in push order
    requested    — number of documents the caller asked to insert
    """

    model_config = ConfigDict(frozen=True)

    inserted_ids: tuple[str, ...] = ()
    requested: int = 0

    @property
    def inserted_count(self) -> int:
        return len(self.inserted_ids)

    @property
    def complete(self) -> bool:
        return self.inserted_count == self.requested


class QueueCounts(BaseModel):
    """
    Approximate queue summary. The four numbers are read independently and
    only add up (total == deleted + processing + queued) when nothing else
    mutates the queue while they are taken.
    """

    model_config = ConfigDict(frozen=True)

    total: int = 0
    deleted: int = 0
    processing: int = 0
    queued: int = 0


class MessageCollection(BaseModel):
    """
    The complete contents of a message collection, for in-process stores.

    messages — kept in insertion order, so the first match is the lowest id
    sequence — last id handed out; never reused, even after clear()
    """

    model_config = ConfigDict(frozen=True)

    messages: tuple[Message, ...] = ()
    sequence: int = 0

    def count(self, flt: MessageFilter) -> int:
        return sum(1 for m in self.messages if flt.matches(m))

    def find(self, message_id: str) -> Message | None:
        return next((m for m in self.messages if m.id == message_id), None)

    # ------------------------------------------------------------------ #
    # Mutation helpers — each returns a new MessageCollection             #
    # ------------------------------------------------------------------ #

    def with_inserted(
        self, docs: tuple[NewMessage, ...] | list[NewMessage]
    ) -> tuple[MessageCollection, tuple[str, ...]]:
        """Append documents, assigning consecutive ids."""
        added = tuple(
            doc.with_id(format_id(self.sequence + offset))
            for offset, doc in enumerate(docs, start=1)
        )
        updated = self.model_copy(
            update={
                "messages": self.messages + added,
                "sequence": self.sequence + len(added),
            }
        )
        return updated, tuple(m.id for m in added)

    def find_one_and_update(
        self, flt: MessageFilter, update: MessageUpdate
    ) -> tuple[MessageCollection, Message | None]:
        """
        Apply `update` to the lowest-id message matching `flt`.

        Returns self unchanged and None when nothing matches.
        """
        for index, message in enumerate(self.messages):
            if flt.matches(message):
                changed = update.apply(message)
                messages = (
                    self.messages[:index] + (changed,) + self.messages[index + 1 :]
                )
                return self.model_copy(update={"messages": messages}), changed
        return self, None

    def without(self, flt: MessageFilter) -> tuple[MessageCollection, int]:
        """Drop every matching message. Returns the new collection and the count removed."""
        kept = tuple(m for m in self.messages if not flt.matches(m))
        removed = len(self.messages) - len(kept)
        if not removed:
            return self, 0
        return self.model_copy(update={"messages": kept}), removed


class QueueOptions(BaseModel):
    """
    Per-queue defaults.

    visibility_timeout — lease length in ms for pull()/ping()
    delay              — visibility offset in ms for push()
    max_retries        — redeliveries allowed before a message is dead-lettered;
                         only enforced when the queue has a dead-letter queue
    """

    model_config = ConfigDict(frozen=True)

    visibility_timeout: int = Field(default=30_000, gt=0)
    delay: int = Field(default=0, ge=0)
    max_retries: int = Field(default=5, ge=0)
