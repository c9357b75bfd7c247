"""
MongoMessageStore — MongoDB adapter using pymongo's asyncio client.

Install extras: pip install "docqueue[mongo]"

Atomicity
---------
find_one_and_update() maps directly onto MongoDB's findOneAndUpdate, which
matches, modifies and returns a single document atomically. The lowest id is
picked with sort=[("_id", 1)]; ObjectIds are generated client-side in push
order, so id order follows insertion order for a single producer.

Ordered inserts
---------------
ObjectIds are assigned before insert_many() is issued. When MongoDB reports
a BulkWriteError, its details tell which documents committed and those ids
are returned as a partial InsertResult instead of raising.

Null semantics
--------------
`{"deleted": None}` matches documents where the field is missing or null,
which is how a live message is stored.
"""
from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from docqueue.core import codec
from docqueue.domain.errors import StorageError
from docqueue.domain.models import (
    InsertResult,
    Message,
    MessageFilter,
    MessageUpdate,
    NewMessage,
)

if TYPE_CHECKING:
    from pymongo import AsyncMongoClient

logger = logging.getLogger(__name__)

_CLAIM_INDEX = [("deleted", 1), ("visible", 1), ("_id", 1)]
_ACK_INDEX = [("ack", 1)]


@dataclasses.dataclass
class MongoMessageStore:
    """
    MongoDB collection adapter.

    Parameters
    ----------
    url            : MongoDB connection string
    database       : database name
    collection     : collection name
    client         : pre-built AsyncMongoClient — created from `url` if omitted
    client_options : extra keyword arguments for AsyncMongoClient
    ensure_indexes : create the claim/ack indexes on connect()
    """

    url: str = "mongodb://localhost:27017"
    database: str = "docqueue"
    collection: str = "messages"
    client: AsyncMongoClient[Any] | None = None
    client_options: dict[str, Any] = dataclasses.field(default_factory=dict)
    ensure_indexes: bool = True

    _collection: Any = dataclasses.field(default=None, init=False, repr=False)
    _owns_client: bool = dataclasses.field(default=False, init=False, repr=False)

    def _make_client(self) -> AsyncMongoClient[Any]:
        try:
            from pymongo import AsyncMongoClient
        except ImportError as exc:
            raise ImportError(
                "MongoMessageStore requires pymongo. "
                "Install with: pip install 'docqueue[mongo]'"
            ) from exc
        return AsyncMongoClient(self.url, **self.client_options)

    async def connect(self) -> None:
        """Ping the server, select the collection and create indexes."""
        if self.client is None:
            self.client = self._make_client()
            self._owns_client = True
        try:
            await self.client.admin.command("ping")
            coll = self.client[self.database][self.collection]
            if self.ensure_indexes:
                await coll.create_index(_CLAIM_INDEX)
                await coll.create_index(_ACK_INDEX)
        except Exception as exc:
            if self._owns_client:
                await self.client.close()
                self.client = None
                self._owns_client = False
            raise StorageError("MongoDB connect failed", exc) from exc
        self._collection = coll
        logger.info("Connected to MongoDB collection %s.%s", self.database, self.collection)

    async def close(self) -> None:
        self._collection = None
        if self.client is not None and self._owns_client:
            await self.client.close()
            self.client = None
            self._owns_client = False

    def _coll(self) -> Any:
        if self._collection is None:
            raise StorageError(
                "MongoDB collection unavailable", RuntimeError("connect() not called")
            )
        return self._collection

    async def insert_many(
        self,
        docs: Sequence[NewMessage],
        ordered: bool = True,
    ) -> InsertResult:
        from bson import ObjectId

        coll = self._coll()
        object_ids = [ObjectId() for _ in docs]
        documents = [codec.to_document(d, oid) for d, oid in zip(docs, object_ids)]
        try:
            result = await coll.insert_many(documents, ordered=ordered)
        except Exception as exc:
            committed = _bulk_committed(exc, object_ids, ordered)
            if committed is None:
                raise StorageError("MongoDB insert_many failed", exc) from exc
            logger.warning(
                "MongoDB insert_many committed %d of %d documents: %s",
                len(committed),
                len(documents),
                exc,
            )
            return InsertResult(
                inserted_ids=tuple(str(oid) for oid in committed),
                requested=len(documents),
            )
        return InsertResult(
            inserted_ids=tuple(str(oid) for oid in result.inserted_ids),
            requested=len(documents),
        )

    async def find_one_and_update(
        self,
        flt: MessageFilter,
        update: MessageUpdate,
    ) -> Message | None:
        from pymongo import ReturnDocument

        coll = self._coll()
        try:
            document = await coll.find_one_and_update(
                to_query(flt),
                to_update(update),
                sort=[("_id", 1)],
                return_document=ReturnDocument.AFTER,
            )
        except Exception as exc:
            raise StorageError("MongoDB find_one_and_update failed", exc) from exc
        return codec.from_document(document) if document is not None else None

    async def count_documents(self, flt: MessageFilter) -> int:
        coll = self._coll()
        try:
            return int(await coll.count_documents(to_query(flt)))
        except Exception as exc:
            raise StorageError("MongoDB count_documents failed", exc) from exc

    async def delete_many(self, flt: MessageFilter) -> int:
        coll = self._coll()
        try:
            result = await coll.delete_many(to_query(flt))
        except Exception as exc:
            raise StorageError("MongoDB delete_many failed", exc) from exc
        return int(result.deleted_count)


def to_query(flt: MessageFilter) -> dict[str, Any]:
    """Translate a MessageFilter to a MongoDB query document."""
    query: dict[str, Any] = {}
    if flt.ack is not None:
        query["ack"] = flt.ack
    elif flt.ack_present is not None:
        query["ack"] = {"$ne": None} if flt.ack_present else None
    if flt.deleted is not None:
        query["deleted"] = {"$ne": None} if flt.deleted else None
    visible: dict[str, int] = {}
    if flt.visible_lte is not None:
        visible["$lte"] = flt.visible_lte
    if flt.visible_gt is not None:
        visible["$gt"] = flt.visible_gt
    if visible:
        query["visible"] = visible
    return query


def to_update(update: MessageUpdate) -> dict[str, Any]:
    """Translate a MessageUpdate to a MongoDB update document."""
    doc: dict[str, Any] = {}
    if update.inc_tries:
        doc["$inc"] = {"tries": update.inc_tries}
    fields = {
        name: value
        for name, value in (
            ("ack", update.ack),
            ("visible", update.visible),
            ("deleted", update.deleted),
        )
        if value is not None
    }
    if fields:
        doc["$set"] = fields
    return doc


def _bulk_committed(
    exc: Exception, object_ids: list[Any], ordered: bool
) -> list[Any] | None:
    """
    Ids committed before a pymongo BulkWriteError, or None for any other error.

    Ordered inserts stop at the first failure, so the first `nInserted` ids
    committed. Unordered inserts commit everything except the failed indexes.
    """
    details = getattr(exc, "details", None)
    if not isinstance(details, Mapping):
        return None
    inserted = details.get("nInserted")
    if not isinstance(inserted, int):
        return None
    if ordered:
        return object_ids[:inserted]
    failed = {err.get("index") for err in details.get("writeErrors", ())}
    return [oid for i, oid in enumerate(object_ids) if i not in failed]
