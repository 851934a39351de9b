"""
Database access

Connects to MongoDB when DATABASE_URL and DATABASE_NAME are set and wraps
the connection in a small document store: get / list / put / update /
delete keyed by string ids, with datetimes normalized to aware UTC on read.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pymongo import MongoClient
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

client = None
db = None
if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


class StoreError(Exception):
    """A document read or write failed. The user may retry."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize(value: Any) -> Any:
    # Mongo hands datetimes back naive (UTC)
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, dict):
        return {k: _normalize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    return value


def _to_doc(raw: Optional[dict]) -> Optional[dict]:
    if raw is None:
        return None
    doc = _normalize(dict(raw))
    doc["id"] = str(doc.pop("_id"))
    return doc


class DocumentStore:
    def __init__(self, database):
        self.database = database

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        try:
            return _to_doc(self.database[collection].find_one({"_id": doc_id}))
        except PyMongoError as e:
            logger.exception("Error getting %s/%s", collection, doc_id)
            raise StoreError(str(e)) from e

    def list(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        limit: Optional[int] = None,
    ) -> List[dict]:
        try:
            cursor = self.database[collection].find(filters or {})
            if sort:
                cursor = cursor.sort(list(sort))
            if limit:
                cursor = cursor.limit(limit)
            return [_to_doc(d) for d in cursor]
        except PyMongoError as e:
            logger.exception("Error listing %s", collection)
            raise StoreError(str(e)) from e

    def put(self, collection: str, doc_id: str, doc: Dict[str, Any]) -> str:
        """Create or replace a document, keeping its original created_at."""
        data = {k: v for k, v in doc.items() if k not in ("_id", "id")}
        now = utcnow()
        try:
            existing = self.database[collection].find_one({"_id": doc_id}, {"created_at": 1})
            data["created_at"] = (existing or {}).get("created_at") or data.get("created_at") or now
            data["updated_at"] = now
            self.database[collection].replace_one({"_id": doc_id}, data, upsert=True)
        except PyMongoError as e:
            logger.exception("Error setting %s/%s", collection, doc_id)
            raise StoreError(str(e)) from e
        return doc_id

    def update(self, collection: str, doc_id: str, partial: Dict[str, Any]) -> bool:
        """Set the given fields. Returns False when no such document exists."""
        try:
            res = self.database[collection].update_one(
                {"_id": doc_id}, {"$set": {**partial, "updated_at": utcnow()}}
            )
        except PyMongoError as e:
            logger.exception("Error updating %s/%s", collection, doc_id)
            raise StoreError(str(e)) from e
        return res.matched_count == 1

    def increment(
        self,
        collection: str,
        doc_id: str,
        field: str,
        amount: int,
        conditions: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Atomically add `amount` to `field` if the document matches `conditions`."""
        query = {"_id": doc_id, **(conditions or {})}
        try:
            res = self.database[collection].update_one(
                query, {"$inc": {field: amount}, "$set": {"updated_at": utcnow()}}
            )
        except PyMongoError as e:
            logger.exception("Error incrementing %s on %s/%s", field, collection, doc_id)
            raise StoreError(str(e)) from e
        return res.modified_count == 1

    def delete(self, collection: str, doc_id: str) -> bool:
        try:
            res = self.database[collection].delete_one({"_id": doc_id})
        except PyMongoError as e:
            logger.exception("Error deleting %s/%s", collection, doc_id)
            raise StoreError(str(e)) from e
        return res.deleted_count == 1

    def delete_many(self, collection: str, filters: Dict[str, Any]) -> int:
        try:
            return self.database[collection].delete_many(filters).deleted_count
        except PyMongoError as e:
            logger.exception("Error deleting from %s", collection)
            raise StoreError(str(e)) from e

    def collections(self) -> List[str]:
        return self.database.list_collection_names()


def get_store() -> DocumentStore:
    if db is None:
        raise StoreError("Database not configured")
    return DocumentStore(db)
