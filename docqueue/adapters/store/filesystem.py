"""
LocalFileSystemMessageStore — fcntl.flock-based store for POSIX systems.

Suitable for local development, single-machine deployments, or integration
tests that need the queue to survive a restart or be shared between worker
processes on one host.

NOT suitable for multi-machine deployments — use MongoMessageStore for
distributed workloads.

Atomicity
---------
Each port call takes an exclusive flock on a sidecar lock file
(`<path>.lock`), decodes the collection, applies the operation and, when
something changed, writes the result to a temporary file in the same
directory, fsyncs it and renames it over the collection file with
os.replace(). Only then is the lock released. The lock therefore spans the
whole read-modify-write, so find_one_and_update is indivisible with respect
to every other process using the same file, and a failed write never leaves
a truncated collection behind. count_documents takes a shared lock and never
writes.

POSIX-only (Linux, macOS). Not compatible with NFS or distributed filesystems.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import fcntl
import logging
import os
import tempfile
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path
from typing import TypeVar

from docqueue.core import codec
from docqueue.domain.errors import StorageError
from docqueue.domain.models import (
    InsertResult,
    Message,
    MessageCollection,
    MessageFilter,
    MessageUpdate,
    NewMessage,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Transaction = Callable[[MessageCollection], tuple[MessageCollection, T]]


@dataclasses.dataclass
class LocalFileSystemMessageStore:
    """
    Stores the message collection in a local JSON file.

    Parameters
    ----------
    path : path to the collection file (parent directory created on connect)
    """

    path: Path

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    @property
    def lock_path(self) -> Path:
        """Sidecar file carrying the flock; the collection file itself is replaced."""
        return self.path.with_name(self.path.name + ".lock")

    async def connect(self) -> None:
        try:
            await asyncio.to_thread(self.path.parent.mkdir, parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot prepare {self.path}", exc) from exc
        logger.debug("Using collection file %s", self.path)

    async def close(self) -> None:
        return None

    async def insert_many(
        self,
        docs: Sequence[NewMessage],
        ordered: bool = True,
    ) -> InsertResult:
        batch = list(docs)
        ids = await self._run(lambda c: c.with_inserted(batch))
        return InsertResult(inserted_ids=ids, requested=len(batch))

    async def find_one_and_update(
        self,
        flt: MessageFilter,
        update: MessageUpdate,
    ) -> Message | None:
        return await self._run(lambda c: c.find_one_and_update(flt, update))

    async def count_documents(self, flt: MessageFilter) -> int:
        try:
            collection = await asyncio.to_thread(self._sync_read)
        except (OSError, ValueError) as exc:
            raise StorageError(f"Cannot read {self.path}", exc) from exc
        return collection.count(flt)

    async def delete_many(self, flt: MessageFilter) -> int:
        return await self._run(lambda c: c.without(flt))

    # ------------------------------------------------------------------ #
    # Synchronous implementations (executed in a thread-pool worker)      #
    # ------------------------------------------------------------------ #

    async def _run(self, txn: Transaction[T]) -> T:
        try:
            return await asyncio.to_thread(self._sync_transaction, txn)
        except (OSError, ValueError) as exc:
            raise StorageError(f"Cannot update {self.path}", exc) from exc

    def _sync_read(self) -> MessageCollection:
        with _locked(self.lock_path, fcntl.LOCK_SH):
            return _read(self.path)

    def _sync_transaction(self, txn: Transaction[T]) -> T:
        with _locked(self.lock_path, fcntl.LOCK_EX):
            collection = _read(self.path)
            updated, result = txn(collection)
            if updated is not collection:
                _replace(self.path, codec.encode(updated))
        return result


@contextlib.contextmanager
def _locked(lock_path: Path, operation: int) -> Iterator[None]:
    fd = os.open(str(lock_path), os.O_RDWR | os.O_CREAT, 0o644)
    try:
        fcntl.flock(fd, operation)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def _read(path: Path) -> MessageCollection:
    try:
        content = path.read_bytes()
    except FileNotFoundError:
        return MessageCollection()
    return codec.decode(content)


def _replace(path: Path, content: bytes) -> None:
    # The collection file is only ever swapped whole; a failed write leaves it untouched.
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        try:
            os.fchmod(fd, 0o644)
            view = memoryview(content)
            while view:
                written = os.write(fd, view)
                view = view[written:]
            os.fsync(fd)
        finally:
            os.close(fd)
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise
    _fsync_dir(path.parent)


def _fsync_dir(directory: Path) -> None:
    fd = os.open(str(directory), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)
