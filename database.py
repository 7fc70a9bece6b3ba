"""
MongoDB access for Electric Buddy.

The client is built once from the environment. Routes receive the database
handle through the ``get_db`` dependency so it can be swapped out.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

from errors import NotFoundError

load_dotenv()
logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "electric_buddy")

db = None
if DATABASE_URL:
    db = MongoClient(DATABASE_URL)[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL not set, database is not configured")


def get_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def ensure_indexes(database) -> None:
    users = database["user"]
    users.create_index([("username", ASCENDING)], unique=True)
    for field in ("role", "workStatus", "area"):
        users.create_index([(field, ASCENDING)])
    database["message"].create_index([("sender", ASCENDING), ("receiver", ASCENDING), ("createdAt", ASCENDING)])


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_document(database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document stamped with createdAt/updatedAt and return its id as a string."""
    if isinstance(data, BaseModel):
        data = data.model_dump(by_alias=True)
    now = utcnow()
    doc = dict(data)
    doc["createdAt"] = now
    doc["updatedAt"] = now
    inserted_id = database[collection_name].insert_one(doc).inserted_id
    return str(inserted_id)


def parse_object_id(value: Any, message: str = "Not found") -> ObjectId:
    """Cast an id from the request; an id that cannot be cast simply does not exist."""
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise NotFoundError(message)


def find_active_user(database, user_id: Any, message: str = "User not found", **extra) -> Dict[str, Any]:
    query = {"_id": parse_object_id(user_id, message), "isActive": True}
    query.update(extra)
    user = database["user"].find_one(query)
    if not user:
        raise NotFoundError(message)
    return user
