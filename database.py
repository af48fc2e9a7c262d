"""
MongoDB access for the flashcard API.

A single global client is created from DATABASE_URL / DATABASE_NAME. When
either is missing ``db`` stays None and every endpoint answers 500 through
the ``get_db`` dependency, so the app can still boot for diagnostics.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

import config

logger = logging.getLogger(__name__)

db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    try:
        client = MongoClient(config.DATABASE_URL)
        db = client[config.DATABASE_NAME]
    except PyMongoError as e:
        logger.error("Could not create MongoDB client: %s", e)
        db = None
else:
    logger.warning("DATABASE_URL or DATABASE_NAME not set; database disabled")


def get_db():
    """FastAPI dependency returning the database handle."""
    if db is None:
        raise HTTPException(status_code=500, detail="Database unavailable")
    return db


def create_document(conn, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """Insert a document stamped with created_at/updated_at and return it with its _id."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    res = conn[collection_name].insert_one(doc)
    doc["_id"] = res.inserted_id
    return doc


def get_documents(conn, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None, limit: Optional[int] = None):
    cursor = conn[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(conn) -> None:
    conn["user"].create_index([("email", ASCENDING)], unique=True)
    conn["user"].create_index([("username", ASCENDING)], unique=True)
    conn["userprogress"].create_index([("user_id", ASCENDING), ("deck_id", ASCENDING)], unique=True)
    conn["card"].create_index([("deck_id", ASCENDING)])
    conn["assignment"].create_index([("class_id", ASCENDING)])
