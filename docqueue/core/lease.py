"""
LeaseKeeper — async context manager that keeps a claim alive.

A worker holding a message for longer than its visibility timeout wraps the
work in LeaseKeeper, which pings the queue periodically so the message is not
handed to another worker.

Usage
-----
    async with QueueManager(store) as q:
        message = await q.pull()
        if message is not None:
            async with LeaseKeeper(q, message.ack, interval=timedelta(seconds=10)) as lease:
                await do_long_work(message.payload)
            if not lease.lost:
                await q.mark(message.ack)

Choose an interval comfortably shorter than the visibility timeout. When a
ping comes back empty the lease is gone (expired or acknowledged elsewhere):
the keeper sets `lost` and stops. The worker must then assume someone else
may process the message.

If the worker raises, the ping task is cancelled. LeaseKeeper is typed
against the structural Protocol _Pingable, so any object with a compatible
async ping() works.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import timedelta
from types import TracebackType
from typing import Any, Protocol

from docqueue.domain.errors import DocQueueError

logger = logging.getLogger(__name__)


class _Pingable(Protocol):
    """Structural Protocol — any object with an async ping(ack, visibility_timeout)."""

    async def ping(
        self, ack: str, visibility_timeout: int | None = None
    ) -> Any: ...


@dataclasses.dataclass
class LeaseKeeper:
    """
    Extends the lease of a single claimed message.

    Parameters
    ----------
    queue              : any object with async ping(ack, visibility_timeout)
    ack                : the claim token returned by pull()
    interval           : time between pings (default 10 seconds)
    visibility_timeout : lease length requested on each ping (queue default if None)
    """

    queue: _Pingable
    ack: str
    interval: timedelta = timedelta(seconds=10)
    visibility_timeout: int | None = None

    lost: bool = dataclasses.field(default=False, init=False)
    _task: asyncio.Task[None] | None = dataclasses.field(
        default=None, init=False, repr=False
    )

    async def __aenter__(self) -> LeaseKeeper:
        self._task = asyncio.create_task(
            self._keep(), name=f"docqueue-lease-{self.ack[:8]}"
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _keep(self) -> None:
        while True:
            await asyncio.sleep(self.interval.total_seconds())
            try:
                extended = await self.queue.ping(self.ack, self.visibility_timeout)
            except DocQueueError as exc:
                logger.warning("Lease ping for %s failed: %s", self.ack, exc)
                self.lost = True
                return
            if extended is None:
                logger.warning("Lease for %s lost", self.ack)
                self.lost = True
                return
