from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from .config import settings
from .errors import ValidationError

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(settings.DATABASE_URL)
        _db = _client[settings.DATABASE_NAME]
        logger.info("Connected to database %s", settings.DATABASE_NAME)
    return _db


def close_db() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
    _client = None
    _db = None


async def init_indexes(db: AsyncIOMotorDatabase) -> None:
    await db["category"].create_index("name", unique=True)
    await db["product_variant"].create_index(
        [("product_id", 1), ("size", 1), ("color", 1)], unique=True
    )
    await db["cart"].create_index("user_id", unique=True)
    await db["order"].create_index([("user_id", 1), ("created_at", -1)])
    await db["order"].create_index("idempotency_key", unique=True, sparse=True)
    await db["order_item"].create_index("order_id")
    await db["review"].create_index([("user_id", 1), ("product_id", 1)], unique=True)
    await db["payment"].create_index("payment_id", unique=True)
    await db["payment"].create_index("order_id")


# Utils

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def oid(id_str: Any, field: str = "id") -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(str(id_str))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {field}: {id_str!r}")


def to_public_doc(doc: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """Swap ``_id`` for a string ``id`` and stringify every ObjectId reference."""
    if not doc:
        return doc
    d = {}
    for key, value in doc.items():
        if key == "_id":
            d["id"] = str(value)
        elif isinstance(value, ObjectId):
            d[key] = str(value)
        elif isinstance(value, list):
            d[key] = [to_public_doc(v) if isinstance(v, dict) else
                      (str(v) if isinstance(v, ObjectId) else v) for v in value]
        else:
            d[key] = value
    return d


async def create_document(db: AsyncIOMotorDatabase, collection_name: str, data: dict[str, Any]) -> dict[str, Any]:
    now = utcnow()
    data_with_meta = {**data, "created_at": now, "updated_at": now}
    result = await db[collection_name].insert_one(data_with_meta)
    inserted = await db[collection_name].find_one({"_id": result.inserted_id})
    return inserted or {}


async def get_documents(db: AsyncIOMotorDatabase, collection_name: str, filter_dict: dict[str, Any] | None = None,
                        limit: int = 0, skip: int = 0, sort: Optional[list[tuple[str, int]]] = None) -> list[dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {}, sort=sort, skip=skip, limit=limit)
    docs = []
    async for d in cursor:
        docs.append(d)
    return docs


async def update_document(db: AsyncIOMotorDatabase, collection_name: str, doc_id: ObjectId,
                          changes: dict[str, Any]) -> Optional[dict[str, Any]]:
    result = await db[collection_name].update_one(
        {"_id": doc_id}, {"$set": {**changes, "updated_at": utcnow()}}
    )
    if result.matched_count == 0:
        return None
    return await db[collection_name].find_one({"_id": doc_id})
