"""
docqueue — durable work queue on a document store with atomic conditional updates.

Messages live as individual documents. Every state change is a single
find-one-and-update executed atomically by the store, so any number of
producers and consumers can share a queue without locks or transactions:

  push  — insert messages, visible after an optional delay
  pull  — claim the oldest visible message under a fresh ack token and lease
  ping  — extend the lease of a message you still own
  mark  — acknowledge (tombstone) a message you still own
  count — approximate totals: all, deleted, processing, queued
  clear — physically remove tombstones

Delivery is at-least-once: a message whose lease expires before mark() is
claimable again. pull(), mark() and ping() return None for the routine
"nothing to do" / "ownership lost" outcomes and raise only on real failures.

Quick start
-----------
    import asyncio
    from docqueue import InMemoryMessageStore, LeaseKeeper, QueueManager

    async def main():
        async with QueueManager(InMemoryMessageStore()) as q:
            await q.push({"to": "user@example.com"})

            message = await q.pull()
            if message is not None:
                async with LeaseKeeper(q, message.ack):
                    print(f"Processing {message.payload}")
                await q.mark(message.ack)

    asyncio.run(main())

Store adapters
--------------
Built-in adapters (no extra deps):
  - InMemoryMessageStore         — for tests and examples
  - LocalFileSystemMessageStore  — POSIX single-machine (fcntl.flock)

Optional adapters (install extras):
  - MongoMessageStore  (pip install "docqueue[mongo]")

Custom adapters implement MessageStorePort; the one hard requirement is an
atomic find_one_and_update.

Architecture
------------
Follows the Ports & Adapters pattern:
  domain/   — pure value types (Message, MessageFilter, QueueCounts) and errors
  ports/    — Protocol interfaces (MessageStorePort)
  core/     — business logic (QueueManager, LeaseKeeper), clock, codec, config
  adapters/ — concrete store implementations
"""
from __future__ import annotations

import logging

from docqueue.adapters.store.filesystem import LocalFileSystemMessageStore
from docqueue.adapters.store.memory import InMemoryMessageStore
from docqueue.core.config import QueueSettings, get_settings
from docqueue.core.factory import open_queue
from docqueue.core.lease import LeaseKeeper
from docqueue.core.manager import QueueManager
from docqueue.domain.errors import (
    DocQueueError,
    QueueNotReadyError,
    StorageError,
    ValidationError,
)
from docqueue.domain.models import InsertResult, Message, QueueCounts, QueueOptions
from docqueue.ports.store import MessageStorePort

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Domain models
    "InsertResult",
    "Message",
    "QueueCounts",
    "QueueOptions",
    # Errors
    "DocQueueError",
    "QueueNotReadyError",
    "StorageError",
    "ValidationError",
    # Port (for typing custom adapters)
    "MessageStorePort",
    # High-level queue API
    "LeaseKeeper",
    "QueueManager",
    "open_queue",
    # Configuration
    "QueueSettings",
    "get_settings",
    # Built-in store adapters
    "InMemoryMessageStore",
    "LocalFileSystemMessageStore",
]
