"""
MongoDB access for the print shop.

A single long-lived `Database` handle is created from DATABASE_URL at import time
and handed to the services through the `get_db` dependency. Collections:

- user       accounts, password hash, pending OTP and refresh-token hash
- product    catalog entries
- variant    sellable product variants (price, stock, print area)
- cart       one per user
- cart_item  cart lines, unique per (cart_id, variant_id)
- order      immutable order snapshots with embedded items
- asset      uploaded design files referenced by URL
"""
import math
import re
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from bson import ObjectId
from fastapi import Query
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient

from config import DATABASE_NAME, DATABASE_URL
from errors import InternalError, NotFound
from schemas import PageQuery


class Database:
    """Thin handle over a pymongo database that also owns transaction scoping."""

    def __init__(self, client, name: str):
        self.client = client
        self.name = name
        self._db = client[name]

    def __getitem__(self, collection: str):
        return self._db[collection]

    def list_collection_names(self):
        return self._db.list_collection_names()

    @contextmanager
    def transaction(self):
        # Multi-document transactions need a replica set or mongos.
        with self.client.start_session() as session:
            with session.start_transaction():
                yield session


client = MongoClient(DATABASE_URL) if DATABASE_URL else None
db = Database(client, DATABASE_NAME) if client is not None else None


def get_db() -> Database:
    if db is None:
        raise InternalError("Database not available")
    return db


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)
    database["cart"].create_index("user_id", unique=True)
    database["cart_item"].create_index([("cart_id", ASCENDING), ("variant_id", ASCENDING)], unique=True)
    database["variant"].create_index("product_id")
    database["order"].create_index("user_id")
    database["asset"].create_index("user_id")
    database["asset"].create_index("url", unique=True)


# Utilities
def utcnow() -> datetime:
    """Naive UTC timestamp, which is what pymongo hands back by default."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def object_id(value: Any, label: str = "Record") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise NotFound(f"{label} with ID {value} not found")
    return ObjectId(value)


def _clean(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _clean(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_clean(v) for v in value]
    return value


def to_str_id(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = dict(doc)
    if "_id" in d:
        d["id"] = d.pop("_id")
    return _clean(d)


def create_document(database: Database, collection_name: str, data, session=None) -> str:
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    inserted = database[collection_name].insert_one(doc, session=session)
    return str(inserted.inserted_id)


def search_filter(term: Optional[str], fields: Iterable[str]) -> Dict[str, Any]:
    term = (term or "").strip()
    if not term:
        return {}
    pattern = re.escape(term)
    return {"$or": [{f: {"$regex": pattern, "$options": "i"}} for f in fields]}


def page_params(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    sort_by: str = "created_at",
    order: str = Query("desc", pattern="^(asc|desc)$"),
) -> PageQuery:
    return PageQuery(page=page, limit=limit, search=search, sort_by=sort_by, order=order)


def paginate(
    collection,
    filt: Dict[str, Any],
    query: PageQuery,
    allowed_sort: Iterable[str],
    default_sort: str = "created_at",
    serialize: Callable[[dict], dict] = to_str_id,
) -> Dict[str, Any]:
    sort_by = query.sort_by if query.sort_by in set(allowed_sort) else default_sort
    direction = ASCENDING if query.order == "asc" else DESCENDING
    total = collection.count_documents(filt)
    cursor = collection.find(filt).sort(sort_by, direction).skip((query.page - 1) * query.limit).limit(query.limit)
    return {
        "data": [serialize(doc) for doc in cursor],
        "meta": {
            "total": total,
            "page": query.page,
            "last_page": math.ceil(total / query.limit),
            "per_page": query.limit,
        },
    }
