"""
MongoDB access helpers.

Collections are named after the lowercase schema class:
- User -> "user"
- Product -> "product"
- Order -> "order"
- Address -> "address"
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

logger = logging.getLogger(__name__)


def connect(settings) -> Database:
    client = MongoClient(settings.database_url, tz_aware=True)
    db = client[settings.database_name]
    logger.info("Connected to database %s", settings.database_name)
    return db


def ensure_indexes(db: Database):
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["user"].create_index([("username", ASCENDING)], unique=True)
    db["product"].create_index([("user_id", ASCENDING)])
    db["order"].create_index([("buyer_id", ASCENDING)])
    db["order"].create_index([("seller_id", ASCENDING)])
    db["address"].create_index([("user_id", ASCENDING)])


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Copy of a stored document with `_id` exposed as `id` and ObjectIds as strings."""
    if doc is None:
        return None
    out = {}
    for key, value in doc.items():
        if key == "_id":
            out["id"] = str(value)
        else:
            out[key] = _plain(value)
    return out


def _plain(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(mode="json")
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[dict] = None,
                  sort: Optional[list] = None, limit: Optional[int] = None) -> List[dict]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize(doc) for doc in cursor]
