"""
MongoDB persistence for the task tracker.

Collections are named after the record type, lowercased: "task", "user",
"project", "notification", "session". Documents are plain dicts keyed by
"_id" (ObjectId).
"""
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import MongoClient
from pymongo.database import Database

from config import settings
from errors import BadRequest

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Sort = Sequence[Tuple[str, int]]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


@lru_cache(maxsize=1)
def get_database() -> Optional[Database]:
    if not settings.database_url or not settings.database_name:
        logger.warning("DATABASE_URL / DATABASE_NAME not set; database unavailable")
        return None
    client = MongoClient(settings.database_url, tz_aware=True)
    logger.info("Connected to MongoDB database %s", settings.database_name)
    return client[settings.database_name]


class MongoStore:
    """Point lookups, predicate queries and whole-record replace over pymongo."""

    def __init__(self, database: Database):
        self.db = database

    def find_by_id(self, collection: str, id_: ObjectId) -> Optional[Document]:
        return self.db[collection].find_one({"_id": id_})

    def find_one(self, collection: str, query: Document) -> Optional[Document]:
        return self.db[collection].find_one(query)

    def find_many(
        self,
        collection: str,
        query: Document,
        sort: Optional[Sort] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[Document]:
        cursor = self.db[collection].find(query)
        if sort:
            cursor = cursor.sort(list(sort))
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return list(cursor)

    def count(self, collection: str, query: Document) -> int:
        return self.db[collection].count_documents(query)

    def create(self, collection: str, doc: Document) -> Document:
        doc = {**doc}
        doc.setdefault("created_at", now_utc())
        doc["updated_at"] = now_utc()
        res = self.db[collection].insert_one(doc)
        doc["_id"] = res.inserted_id
        return doc

    def create_many(self, collection: str, docs: List[Document]) -> List[Document]:
        if not docs:
            return []
        stamped = []
        for d in docs:
            d = {**d}
            d.setdefault("created_at", now_utc())
            d["updated_at"] = now_utc()
            stamped.append(d)
        res = self.db[collection].insert_many(stamped)
        for d, inserted_id in zip(stamped, res.inserted_ids):
            d["_id"] = inserted_id
        return stamped

    def save(self, collection: str, doc: Document) -> Document:
        doc["updated_at"] = now_utc()
        self.db[collection].replace_one({"_id": doc["_id"]}, doc)
        return doc

    def update_many(self, collection: str, query: Document, changes: Document) -> int:
        res = self.db[collection].update_many(query, {"$set": {**changes, "updated_at": now_utc()}})
        return res.modified_count


def oid(value: Any, context: str = "Invalid Id Error") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if value is None:
        raise BadRequest("Invalid id", context)
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise BadRequest("Invalid id", context)
