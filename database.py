"""
MongoDB access helpers.

`db` is created from DATABASE_URL / DATABASE_NAME at import time and is None
when either is missing. Request handlers never touch it directly: they receive
a Database through the `get_database` dependency so tests can swap in an
in-memory store.
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

import config
from errors import AppError, InvalidIdError

logger = logging.getLogger(__name__)

_client = MongoClient(config.DATABASE_URL) if config.DATABASE_URL and config.DATABASE_NAME else None
db: Optional[Database] = _client[config.DATABASE_NAME] if _client is not None else None


class DatabaseUnavailableError(AppError):
    status_code = 503
    default_message = "Database not configured"


def get_database() -> Database:
    if db is None:
        raise DatabaseUnavailableError()
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # pymongo hands back naive datetimes that are already UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_object_id(value: Any) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise InvalidIdError()


def parse_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize(doc: Any) -> Any:
    """Turn a stored document into something FastAPI can encode: `_id` becomes
    `id` and every ObjectId becomes its hex string."""
    if isinstance(doc, ObjectId):
        return str(doc)
    if isinstance(doc, list):
        return [serialize(x) for x in doc]
    if isinstance(doc, dict):
        out = {}
        for k, v in doc.items():
            if k == "_id":
                out["id"] = serialize(v)
            else:
                out[k] = serialize(v)
        return out
    return doc


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [_plain(x) for x in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


def create_document(database: Database, collection: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        doc = _plain(data.model_dump())
    else:
        doc = _plain(dict(data))
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    inserted_id = database[collection].insert_one(doc).inserted_id
    return str(inserted_id)


def get_documents(database: Database, collection: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = database[collection].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)
    database["product"].create_index("slug", unique=True)
    database["category"].create_index("slug", unique=True)
    database["coupon"].create_index("code", unique=True)
    database["cart"].create_index("user_id", unique=True)
    # one review per user and product; anonymous reviews carry no user_id string
    database["review"].create_index(
        [("product_id", ASCENDING), ("user_id", ASCENDING)],
        unique=True,
        partialFilterExpression={"user_id": {"$type": "string"}},
    )
    database["address"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["email_verification_token"].create_index(
        "created_at", expireAfterSeconds=config.VERIFICATION_TOKEN_TTL_HOURS * 3600
    )
    logger.info("Indexes ensured on %s", database.name)
