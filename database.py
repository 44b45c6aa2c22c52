"""
MongoDB connection and small document helpers.

The module-level ``db`` handle is built from ``DATABASE_URL`` and
``DATABASE_NAME``; it is ``None`` when either is missing so the app can still
boot (the ``/test`` endpoint reports the state).
"""

import os
from datetime import datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from errors import ValidationError

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

_client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: str) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id")


def create_document(database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert ``data`` stamped with created/updated times and return the new id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    stamp = now()
    doc["created_at"] = stamp
    doc["updated_at"] = stamp
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def stringify(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    doc["_id"] = str(doc["_id"])  # stringify
    return doc


def ensure_indexes(database) -> None:
    database["user"].create_index("email", unique=True)
    database["phone"].create_index([("status", ASCENDING), ("created_at", DESCENDING)])
    database["phone"].create_index("seller_id")
    database["cart"].create_index("user_id", unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["order"].create_index([("items.seller_id", ASCENDING), ("created_at", DESCENDING)])
    database["order"].create_index("order_number", unique=True)
