"""
Codec — messages to and from their two persisted shapes.

Collection file (LocalFileSystemMessageStore), produced by model_dump_json:
--------------------------------------------------------------------------
{
  "messages": [
    {
      "id": "000000000000000000000001",
      "payload": {"to": "user@example.com"},
      "visible": 1700000000000,
      "ack": null,
      "tries": 0,
      "deleted": null
    }
  ],
  "sequence": 1
}

MongoDB document (MongoMessageStore):
-------------------------------------
{ "_id": ObjectId(...), "payload": ..., "visible": <int>,
  "ack"?: <str>, "tries"?: <int>, "deleted"?: <int> }

`ack`, `tries` and `deleted` are absent until the protocol sets them; a
missing `tries` decodes as 0.
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from docqueue.domain.models import Message, MessageCollection, NewMessage


def encode(collection: MessageCollection) -> bytes:
    """Serialize a MessageCollection to UTF-8 JSON bytes."""
    return collection.model_dump_json(indent=2).encode("utf-8")


def decode(data: bytes) -> MessageCollection:
    """Deserialize UTF-8 JSON bytes. Empty bytes → empty collection."""
    if not data:
        return MessageCollection()
    return MessageCollection.model_validate_json(data)


def to_document(doc: NewMessage, object_id: Any) -> dict[str, Any]:
    """Build the MongoDB document inserted by push()."""
    return {"_id": object_id, "payload": doc.payload, "visible": doc.visible}


def from_document(document: Mapping[str, Any]) -> Message:
    """Convert a MongoDB document to a Message. The ObjectId becomes its hex string."""
    return Message(
        id=str(document["_id"]),
        payload=document.get("payload"),
        visible=document["visible"],
        ack=document.get("ack"),
        tries=document.get("tries") or 0,
        deleted=document.get("deleted"),
    )
