import asyncio
from datetime import timedelta

import pytest

from docqueue.adapters.store.memory import InMemoryMessageStore
from docqueue.core.lease import LeaseKeeper
from docqueue.core.manager import QueueManager
from docqueue.domain.errors import StorageError

# ---------------------------------------------------------------------------
# Minimal queue stub
# ---------------------------------------------------------------------------


class _MockQueue:
    def __init__(self, result: object = "ok", side_effect: Exception | None = None) -> None:
        self.calls: list[tuple[str, int | None]] = []
        self._result = result
        self._side_effect = side_effect

    async def ping(self, ack: str, visibility_timeout: int | None = None) -> object:
        self.calls.append((ack, visibility_timeout))
        if self._side_effect is not None:
            raise self._side_effect
        return self._result


# ---------------------------------------------------------------------------
# Basic operation
# ---------------------------------------------------------------------------


async def test_pings_at_interval() -> None:
    queue = _MockQueue()
    async with LeaseKeeper(queue=queue, ack="tok", interval=timedelta(milliseconds=10)) as lease:
        await asyncio.sleep(0.08)

    assert len(queue.calls) >= 3
    assert not lease.lost


async def test_pings_with_ack_and_timeout() -> None:
    queue = _MockQueue()
    async with LeaseKeeper(
        queue=queue,
        ack="specific",
        interval=timedelta(milliseconds=10),
        visibility_timeout=5_000,
    ):
        await asyncio.sleep(0.05)

    assert queue.calls
    assert all(call == ("specific", 5_000) for call in queue.calls)


async def test_stops_after_context_exit() -> None:
    queue = _MockQueue()
    async with LeaseKeeper(queue=queue, ack="tok", interval=timedelta(milliseconds=10)):
        await asyncio.sleep(0.04)

    calls_at_exit = len(queue.calls)
    await asyncio.sleep(0.04)
    assert len(queue.calls) == calls_at_exit


# ---------------------------------------------------------------------------
# Lost ownership
# ---------------------------------------------------------------------------


async def test_absent_ping_marks_lease_lost() -> None:
    queue = _MockQueue(result=None)
    async with LeaseKeeper(queue=queue, ack="tok", interval=timedelta(milliseconds=5)) as lease:
        await asyncio.sleep(0.04)

    assert lease.lost
    assert len(queue.calls) == 1


async def test_docqueue_error_stops_keeper() -> None:
    queue = _MockQueue(side_effect=StorageError("ping", OSError("down")))
    async with LeaseKeeper(queue=queue, ack="tok", interval=timedelta(milliseconds=5)) as lease:
        await asyncio.sleep(0.04)

    assert lease.lost
    assert len(queue.calls) == 1


async def test_other_error_propagates_through_exit() -> None:
    queue = _MockQueue(side_effect=RuntimeError("unexpected"))
    keeper = LeaseKeeper(queue=queue, ack="tok", interval=timedelta(milliseconds=5))
    with pytest.raises(RuntimeError, match="unexpected"):
        async with keeper:
            await asyncio.sleep(0.03)


# ---------------------------------------------------------------------------
# Task lifecycle
# ---------------------------------------------------------------------------


async def test_task_is_none_after_exit() -> None:
    keeper = LeaseKeeper(queue=_MockQueue(), ack="tok", interval=timedelta(seconds=100))
    async with keeper:
        assert keeper._task is not None
        assert not keeper._task.done()
    assert keeper._task is None


async def test_exception_in_body_still_cancels_task() -> None:
    keeper = LeaseKeeper(queue=_MockQueue(), ack="tok", interval=timedelta(seconds=100))
    with pytest.raises(ValueError):
        async with keeper:
            raise ValueError("worker error")
    assert keeper._task is None


def test_default_interval_is_10_seconds() -> None:
    assert LeaseKeeper(queue=_MockQueue(), ack="tok").interval == timedelta(seconds=10)


# ---------------------------------------------------------------------------
# Against a real queue
# ---------------------------------------------------------------------------


async def test_keeps_message_claimed_past_original_lease() -> None:
    async with QueueManager(InMemoryMessageStore()) as q:
        await q.push("slow job")
        message = await q.pull(visibility_timeout=200)
        assert message is not None and message.ack is not None

        async with LeaseKeeper(
            q, message.ack, interval=timedelta(milliseconds=20), visibility_timeout=200
        ) as lease:
            await asyncio.sleep(0.4)
            assert await q.pull() is None

        assert not lease.lost
        assert await q.mark(message.ack) is not None
