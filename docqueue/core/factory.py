"""
open_queue — build a QueueManager from QueueSettings.

The returned queue is not started; use it as an async context manager:

    async with open_queue(get_settings(backend="mongo")) as q:
        await q.push({"to": "user@example.com"})

When `dead_letter_queue` is set, a sibling queue is created on the same
backend: a second in-memory store, a `<name>.json` file next to the main
collection file, or a MongoDB collection named `<name>`.
"""
from __future__ import annotations

from docqueue.adapters.store.filesystem import LocalFileSystemMessageStore
from docqueue.adapters.store.memory import InMemoryMessageStore
from docqueue.adapters.store.mongo import MongoMessageStore
from docqueue.core.clock import Clock, SystemClock
from docqueue.core.config import QueueSettings
from docqueue.core.manager import QueueManager
from docqueue.ports.store import MessageStorePort


def build_store(settings: QueueSettings, name: str | None = None) -> MessageStorePort:
    """Store for the configured backend; `name` selects a sibling collection."""
    match settings.backend:
        case "memory":
            return InMemoryMessageStore()
        case "filesystem":
            path = settings.path if name is None else settings.path.with_name(f"{name}.json")
            return LocalFileSystemMessageStore(path)
        case "mongo":
            return MongoMessageStore(
                url=settings.mongo_url,
                database=settings.mongo_database,
                collection=settings.mongo_collection if name is None else name,
            )
        case _:
            raise ValueError(f"Unknown backend {settings.backend!r}")


def open_queue(settings: QueueSettings, clock: Clock | None = None) -> QueueManager:
    clock = clock if clock is not None else SystemClock()
    dead_letter = None
    if settings.dead_letter_queue:
        dead_letter = QueueManager(
            store=build_store(settings, settings.dead_letter_queue),
            options=settings.options(),
            clock=clock,
        )
    return QueueManager(
        store=build_store(settings),
        options=settings.options(),
        clock=clock,
        dead_letter=dead_letter,
    )
