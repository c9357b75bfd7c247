"""
InMemoryMessageStore — asyncio.Lock-based store for testing and development.

Holds the whole collection as an immutable MessageCollection. Every port
method runs under one asyncio.Lock, so each find_one_and_update is a single
indivisible step, faithfully simulating a document store's atomic
conditional update.

Zero external dependencies. Safe for multiple concurrent coroutines in a
single event loop. NOT safe across processes or threads.
"""
from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Sequence

from docqueue.domain.models import (
    InsertResult,
    Message,
    MessageCollection,
    MessageFilter,
    MessageUpdate,
    NewMessage,
)


@dataclasses.dataclass
class InMemoryMessageStore:
    """
    In-process message store.

    Parameters
    ----------
    initial : optional pre-populated collection (useful for test setup)
    """

    initial: MessageCollection = dataclasses.field(default_factory=MessageCollection)

    def __post_init__(self) -> None:
        self._collection: MessageCollection = self.initial
        self._lock: asyncio.Lock = asyncio.Lock()

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def insert_many(
        self,
        docs: Sequence[NewMessage],
        ordered: bool = True,
    ) -> InsertResult:
        copies = [doc.model_copy(deep=True) for doc in docs]
        async with self._lock:
            self._collection, ids = self._collection.with_inserted(copies)
        return InsertResult(inserted_ids=ids, requested=len(docs))

    async def find_one_and_update(
        self,
        flt: MessageFilter,
        update: MessageUpdate,
    ) -> Message | None:
        async with self._lock:
            self._collection, message = self._collection.find_one_and_update(
                flt, update
            )
        # Callers get their own copy of the payload.
        return message.model_copy(deep=True) if message is not None else None

    async def count_documents(self, flt: MessageFilter) -> int:
        async with self._lock:
            return self._collection.count(flt)

    async def delete_many(self, flt: MessageFilter) -> int:
        async with self._lock:
            self._collection, removed = self._collection.without(flt)
        return removed

    def snapshot(self) -> MessageCollection:
        """Current collection, for inspection in tests."""
        return self._collection
