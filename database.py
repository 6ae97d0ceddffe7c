"""
Database Helper Functions

MongoDB helpers used by the API endpoints.
Every collection is addressed by its lowercase schema name (User -> "user").
"""

from pymongo import MongoClient, ASCENDING
from bson import ObjectId
from bson.errors import InvalidId
from datetime import datetime, timezone
from typing import Union, Optional, Dict, Any, List
from pydantic import BaseModel

import config

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]


def _ensure_db():
    if db is None:
        raise Exception("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def _oid(_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(_id)
    except (InvalidId, TypeError):
        return None


def ensure_indexes():
    _ensure_db()
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["order"].create_index([("user_id", ASCENDING)])
    db["payment"].create_index([("razorpay_order_id", ASCENDING)])


# CRUD helpers

def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert one record stamped with created_at / updated_at and return its id as a string."""
    _ensure_db()
    now = datetime.now(timezone.utc)
    record = {**_to_dict(data), "created_at": now, "updated_at": now}
    return str(db[collection_name].insert_one(record).inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, sort: Optional[list] = None) -> List[dict]:
    _ensure_db()
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(int(limit))
    return [serialize_doc(doc) for doc in cursor]


def get_document(collection_name: str, filter_dict: dict) -> Optional[dict]:
    _ensure_db()
    return serialize_doc(db[collection_name].find_one(filter_dict))


def get_document_by_id(collection_name: str, _id: str) -> Optional[dict]:
    _ensure_db()
    oid = _oid(_id)
    if oid is None:
        return None
    doc = db[collection_name].find_one({"_id": oid})
    return serialize_doc(doc) if doc else None


def update_document(collection_name: str, _id: str, update_data: Dict[str, Any], unset: Optional[List[str]] = None) -> bool:
    """Set (and optionally unset) fields on one document.

    Returns True when the document exists, whether or not a value changed.
    """
    _ensure_db()
    oid = _oid(_id)
    if oid is None:
        return False
    update = {"$set": _to_dict(update_data)}
    update["$set"]["updated_at"] = datetime.now(timezone.utc)
    if unset:
        update["$unset"] = {field: "" for field in unset}
    result = db[collection_name].update_one({"_id": oid}, update)
    return result.matched_count > 0


def delete_document(collection_name: str, _id: str) -> bool:
    _ensure_db()
    oid = _oid(_id)
    if oid is None:
        return False
    result = db[collection_name].delete_one({"_id": oid})
    return result.deleted_count > 0


def count_documents(collection_name: str, filter_dict: Optional[dict] = None) -> int:
    _ensure_db()
    return db[collection_name].count_documents(filter_dict or {})


# Utility

def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    # ids leave the API as strings; references are already stored that way
    if not doc:
        return None
    if "_id" not in doc:
        return dict(doc)
    return {**doc, "_id": str(doc["_id"])}


def as_utc(value: datetime) -> datetime:
    # MongoDB hands datetimes back naive (in UTC) unless the client is tz_aware
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
