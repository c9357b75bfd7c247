import logging

import pytest

from docqueue.adapters.store.memory import InMemoryMessageStore
from docqueue.core.manager import QueueManager
from docqueue.domain.models import QueueOptions

START = 1_700_000_000_000


class _ManualClock:
    def __init__(self, now: int = START) -> None:
        self.value = now

    def now(self) -> int:
        return self.value

    def advance(self, ms: int) -> None:
        self.value += ms


@pytest.fixture
def clock() -> _ManualClock:
    return _ManualClock()


class _SlowInsertStore(InMemoryMessageStore):
    """Advances the clock during its first insert, as a stalled write would."""

    def __init__(self, clock: _ManualClock, stall: int) -> None:
        super().__init__()
        self._clock = clock
        self._stall = stall

    async def insert_many(self, docs, ordered=True):
        self._clock.advance(self._stall)
        self._stall = 0
        return await super().insert_many(docs, ordered)


async def _abandon(queue: QueueManager, clock: _ManualClock, times: int) -> None:
    """Claim the head message `times` times, letting each lease expire."""
    for _ in range(times):
        message = await queue.pull(visibility_timeout=10)
        assert message is not None
        clock.advance(10)


async def test_retries_unenforced_without_dead_letter(clock: _ManualClock) -> None:
    async with QueueManager(
        store=InMemoryMessageStore(), clock=clock, options=QueueOptions(max_retries=1)
    ) as q:
        await q.push("a")
        await _abandon(q, clock, 5)
        message = await q.pull()
        assert message is not None
        assert message.tries == 6


async def test_message_past_max_retries_moves_to_dead_letter(clock: _ManualClock) -> None:
    dead_store = InMemoryMessageStore()
    dead = QueueManager(store=dead_store, clock=clock)
    async with QueueManager(
        store=InMemoryMessageStore(),
        clock=clock,
        options=QueueOptions(max_retries=2),
        dead_letter=dead,
    ) as q:
        await q.push({"job": 1})
        await _abandon(q, clock, 3)  # first delivery + two retries

        assert await q.pull() is None
        counts = await q.count()
        assert counts.deleted == 1
        assert counts.queued == 0

        assert dead.ready
        dead_message = await dead.pull()
        assert dead_message is not None
        assert dead_message.payload == {"job": 1}
        assert dead_message.tries == 1


async def test_dead_lettering_continues_to_next_candidate(clock: _ManualClock) -> None:
    dead = QueueManager(store=InMemoryMessageStore(), clock=clock)
    async with QueueManager(
        store=InMemoryMessageStore(),
        clock=clock,
        options=QueueOptions(max_retries=0),
        dead_letter=dead,
    ) as q:
        await q.push("poison")
        await _abandon(q, clock, 1)
        await q.push("healthy")

        message = await q.pull()
        assert message is not None
        assert message.payload == "healthy"
        assert (await dead.count()).total == 1


async def test_list_payload_dead_lettered_as_single_message(clock: _ManualClock) -> None:
    dead = QueueManager(store=InMemoryMessageStore(), clock=clock)
    async with QueueManager(
        store=InMemoryMessageStore(),
        clock=clock,
        options=QueueOptions(max_retries=0),
        dead_letter=dead,
    ) as q:
        await q.push([[1, 2, 3]])
        await _abandon(q, clock, 1)
        assert await q.pull() is None

        dead_message = await dead.pull()
        assert dead_message is not None
        assert dead_message.payload == [1, 2, 3]


async def test_lapsed_lease_during_dead_lettering_is_reported(
    clock: _ManualClock, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.WARNING, logger="docqueue.core.manager")
    dead = QueueManager(store=_SlowInsertStore(clock, stall=60_000), clock=clock)
    async with QueueManager(
        store=InMemoryMessageStore(),
        clock=clock,
        options=QueueOptions(max_retries=0),
        dead_letter=dead,
    ) as q:
        await q.push("poison")
        await _abandon(q, clock, 1)

        assert await q.pull() is None
        assert (await dead.count()).total == 2
        assert (await q.count()).deleted == 1

    messages = [r.getMessage() for r in caplog.records]
    assert sum("could be tombstoned" in m for m in messages) == 1
    assert sum("moved to dead-letter queue" in m for m in messages) == 1


async def test_stop_stops_dead_letter(clock: _ManualClock) -> None:
    dead = QueueManager(store=InMemoryMessageStore(), clock=clock)
    q = QueueManager(store=InMemoryMessageStore(), clock=clock, dead_letter=dead)
    await q.start()
    assert dead.ready
    await q.stop()
    assert not dead.ready
