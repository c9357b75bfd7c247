"""
MessageStorePort — the single port in docqueue.

Any object satisfying this structural Protocol can act as the backing store.
No base class or registration is required — Python's structural subtyping
(duck typing + Protocol) is sufficient.

Atomicity contract
------------------
find_one_and_update(filter, update)
  - selects the lowest-id document matching `filter`, applies `update` and
    returns the post-update document, as ONE indivisible step with respect
    to every other caller targeting the same document
  - returns None when nothing matches

This is the only synchronization primitive the queue relies on. A store that
can only offer read-then-write must not implement this port.

insert_many(docs, ordered=True)
  - inserts in order; a failure part-way leaves a committed prefix which is
    reported in the InsertResult rather than hidden

count_documents / delete_many carry no isolation guarantees beyond a single
evaluation at the store.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from docqueue.domain.models import (
    InsertResult,
    Message,
    MessageFilter,
    MessageUpdate,
    NewMessage,
)


@runtime_checkable
class MessageStorePort(Protocol):
    """
    Minimal interface required by the docqueue core.

    Implementing adapters (built-in):
      - InMemoryMessageStore        — asyncio.Lock-based, for testing
      - LocalFileSystemMessageStore — fcntl.flock-based, POSIX single-machine
      - MongoMessageStore           — native findOneAndUpdate (pymongo async)

    Every method raises StorageError for backend failures.
    """

    async def connect(self) -> None:
        """Acquire backend resources. Must complete before any other call."""
        ...

    async def close(self) -> None:
        """Release backend resources. Safe to call more than once."""
        ...

    async def insert_many(
        self,
        docs: Sequence[NewMessage],
        ordered: bool = True,
    ) -> InsertResult:
        """
        Insert new messages.

        Returns
        -------
        InsertResult : ids of the committed documents, in input order
        """
        ...

    async def find_one_and_update(
        self,
        flt: MessageFilter,
        update: MessageUpdate,
    ) -> Message | None:
        """Atomically update the lowest-id match and return it post-update."""
        ...

    async def count_documents(self, flt: MessageFilter) -> int:
        """Number of documents matching `flt` at the instant of evaluation."""
        ...

    async def delete_many(self, flt: MessageFilter) -> int:
        """Remove every matching document. Returns the number removed."""
        ...
