import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from docqueue.adapters.store.filesystem import LocalFileSystemMessageStore
from docqueue.adapters.store.memory import InMemoryMessageStore
from docqueue.adapters.store.mongo import MongoMessageStore
from docqueue.core.config import QueueSettings, get_settings
from docqueue.core.factory import build_store, open_queue
from docqueue.domain.models import QueueOptions


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    for name in list(os.environ):
        if name.startswith("DOCQUEUE_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)


# ---------------------------------------------------------------------------
# QueueSettings
# ---------------------------------------------------------------------------


def test_defaults():
    s = QueueSettings()
    assert s.visibility_timeout == 30_000
    assert s.delay == 0
    assert s.max_retries == 5
    assert s.dead_letter_queue is None
    assert s.backend == "memory"


def test_env_prefix(monkeypatch):
    monkeypatch.setenv("DOCQUEUE_VISIBILITY_TIMEOUT", "5000")
    monkeypatch.setenv("DOCQUEUE_BACKEND", "mongo")
    s = QueueSettings()
    assert s.visibility_timeout == 5000
    assert s.backend == "mongo"


def test_dotenv_file(tmp_path):
    (tmp_path / ".env").write_text("DOCQUEUE_DELAY=750\n")
    assert QueueSettings().delay == 750


def test_overrides_win_over_env(monkeypatch):
    monkeypatch.setenv("DOCQUEUE_DELAY", "100")
    assert get_settings(delay=200).delay == 200


@pytest.mark.parametrize(
    "kwargs",
    [{"visibility_timeout": 0}, {"delay": -1}, {"max_retries": -1}, {"backend": "redis"}],
)
def test_invalid_values_rejected(kwargs):
    with pytest.raises(Exception):
        QueueSettings(**kwargs)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"backend": "filesystem", "dead_letter_queue": "queue"},
        {"backend": "filesystem", "path": Path("jobs/main.json"), "dead_letter_queue": "main"},
        {"backend": "mongo", "dead_letter_queue": "messages"},
        {"backend": "mongo", "mongo_collection": "jobs", "dead_letter_queue": "jobs"},
    ],
)
def test_dead_letter_queue_must_differ_from_main_queue(kwargs):
    with pytest.raises(ValidationError, match="dead_letter_queue"):
        QueueSettings(**kwargs)


def test_dead_letter_queue_distinct_names_accepted():
    assert QueueSettings(backend="filesystem", dead_letter_queue="dead").dead_letter_queue == "dead"
    assert QueueSettings(backend="mongo", dead_letter_queue="messages_dead").backend == "mongo"
    # The memory backend gives each queue its own store.
    assert QueueSettings(dead_letter_queue="messages").dead_letter_queue == "messages"


def test_options():
    s = QueueSettings(visibility_timeout=1_000, delay=5, max_retries=2)
    assert s.options() == QueueOptions(visibility_timeout=1_000, delay=5, max_retries=2)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def test_build_memory_store():
    assert isinstance(build_store(QueueSettings()), InMemoryMessageStore)


def test_build_filesystem_store_and_sibling(tmp_path):
    s = QueueSettings(backend="filesystem", path=tmp_path / "q" / "main.json")
    main = build_store(s)
    sibling = build_store(s, "dead")
    assert isinstance(main, LocalFileSystemMessageStore)
    assert main.path == tmp_path / "q" / "main.json"
    assert isinstance(sibling, LocalFileSystemMessageStore)
    assert sibling.path == tmp_path / "q" / "dead.json"


def test_build_mongo_store():
    s = QueueSettings(
        backend="mongo", mongo_url="mongodb://db:27017", mongo_database="app", mongo_collection="jobs"
    )
    store = build_store(s)
    assert isinstance(store, MongoMessageStore)
    assert (store.url, store.database, store.collection) == ("mongodb://db:27017", "app", "jobs")
    assert build_store(s, "jobs_dead").collection == "jobs_dead"


def test_open_queue_without_dead_letter():
    q = open_queue(QueueSettings(delay=10))
    assert q.dead_letter is None
    assert q.options.delay == 10
    assert not q.ready


def test_open_queue_with_dead_letter_shares_clock():
    q = open_queue(QueueSettings(dead_letter_queue="dead"))
    assert q.dead_letter is not None
    assert q.dead_letter.clock is q.clock
    assert q.dead_letter.store is not q.store


async def test_open_queue_filesystem_end_to_end(tmp_path):
    s = QueueSettings(backend="filesystem", path=Path(tmp_path / "queue.json"))
    async with open_queue(s) as q:
        await q.push(["a", "b"])
        message = await q.pull()
        assert message is not None and message.ack is not None
        await q.mark(message.ack)

    async with open_queue(s) as q:
        counts = await q.count()
        assert counts.total == 2
        assert counts.deleted == 1
        await q.clear()
        assert (await q.count()).total == 1
