"""
Database Helper Functions

MongoDB helpers shared by the API endpoints and the order engine.
The database handle is created once by connect() and passed in explicitly;
there is no module-level client.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pydantic.alias_generators import to_camel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from config import Settings
from errors import InvalidRequest

logger = logging.getLogger(__name__)

USERS = "users"
CATEGORIES = "categories"
PRODUCTS = "products"
ORDERS = "orders"

# Never rendered in API responses
HIDDEN_FIELDS = frozenset({"password_hash"})


def connect(settings: Settings) -> Database:
    client = MongoClient(
        settings.database_url,
        tz_aware=True,
        serverSelectionTimeoutMS=settings.db_timeout_ms,
        connectTimeoutMS=settings.db_timeout_ms,
        socketTimeoutMS=settings.db_timeout_ms,
    )
    logger.info("Using MongoDB database %s", settings.database_name)
    return client[settings.database_name]


def ensure_indexes(db: Database) -> None:
    db[USERS].create_index([("email", ASCENDING)], unique=True)
    db[PRODUCTS].create_index([("category_id", ASCENDING), ("price", ASCENDING)])
    db[ORDERS].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db[ORDERS].create_index([("status", ASCENDING), ("created_at", DESCENDING)])
    logger.info("Database indexes ensured")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any, label: str = "") -> ObjectId:
    """Parse a hex id, raising InvalidRequest("Invalid <label> ID") on bad input."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    name = f"{label} " if label else ""
    raise InvalidRequest(f"Invalid {name}ID")


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True)
    return dict(data)


# CRUD helpers

def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> dict:
    payload = _to_dict(data)
    now = utcnow()
    payload.setdefault("created_at", now)
    payload.setdefault("updated_at", now)
    result = db[collection_name].insert_one(payload)
    payload["_id"] = result.inserted_id
    return payload


def get_documents(db: Database, collection_name: str, filter_dict: Optional[dict] = None,
                  sort: Optional[list] = None, projection: Optional[dict] = None) -> List[dict]:
    cursor = db[collection_name].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(sort)
    return list(cursor)


def get_document_by_id(db: Database, collection_name: str, _id: ObjectId,
                       projection: Optional[dict] = None) -> Optional[dict]:
    return db[collection_name].find_one({"_id": _id}, projection)


def update_document(db: Database, collection_name: str, _id: ObjectId,
                    update_data: Dict[str, Any]) -> Optional[dict]:
    """Apply a $set and return the updated document, or None if it is missing."""
    update = {"$set": _to_dict(update_data)}
    update["$set"]["updated_at"] = utcnow()
    return db[collection_name].find_one_and_update(
        {"_id": _id}, update, return_document=ReturnDocument.AFTER
    )


def delete_document(db: Database, collection_name: str, _id: ObjectId) -> bool:
    result = db[collection_name].delete_one({"_id": _id})
    return result.deleted_count > 0


# Utility

def _serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, (list, tuple)):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    """Render a stored document for the wire: "_id" becomes "id", keys go camelCase."""
    if doc is None:
        return None
    out = {}
    for key, value in doc.items():
        if key in HIDDEN_FIELDS:
            continue
        name = "id" if key == "_id" else to_camel(key)
        out[name] = _serialize_value(value)
    return out
