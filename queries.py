"""
Query building shared by the list endpoints: pagination, case-insensitive
search across a per-collection allow-list of fields, and JSON-safe
serialization of Mongo documents.
"""

import math
import re
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from pymongo import DESCENDING

from config import LIMIT_DEFAULT, LIMIT_MAX, PAGE_DEFAULT

SEARCH_FIELDS: Dict[str, Tuple[str, ...]] = {
    "teacher": ("teacherId", "name", "email", "location", "phone", "qualifications"),
    "guardian": ("guardianId", "name", "email", "location", "phone", "grade"),
    "post": ("postId", "subject", "className", "location", "name", "email"),
    "application": ("status", "teacherId", "freelancerId"),
    "invoice": ("invoiceNumber", "billTo.name"),
    "ad": ("title", "link"),
}

NEWEST_FIRST = [("createdAt", DESCENDING), ("_id", DESCENDING)]


def _to_int(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


class PageParams:
    def __init__(self, page: int = PAGE_DEFAULT, limit: int = LIMIT_DEFAULT):
        self.page = page
        self.limit = limit

    @classmethod
    def from_query(cls, page: Any = None, limit: Any = None) -> "PageParams":
        """Absent, non-numeric, zero and negative values fall back to the defaults; limit is capped."""
        return cls(
            page=_to_int(page, PAGE_DEFAULT),
            limit=min(_to_int(limit, LIMIT_DEFAULT), LIMIT_MAX),
        )

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


def search_filter(search: Optional[str], fields: Iterable[str]) -> Dict[str, Any]:
    term = (search or "").strip()
    if not term:
        return {}
    pattern = {"$regex": re.escape(term), "$options": "i"}
    return {"$or": [{field: pattern} for field in fields]}


def merge_filters(*filters: Dict[str, Any]) -> Dict[str, Any]:
    parts = [f for f in filters if f]
    if not parts:
        return {}
    if len(parts) == 1:
        return parts[0]
    return {"$and": parts}


def paginate(collection, query: Dict[str, Any], params: PageParams, sort=None) -> Tuple[List[dict], Dict[str, Any]]:
    items = list(
        collection.find(query)
        .sort(sort or NEWEST_FIRST)
        .skip(params.skip)
        .limit(params.limit)
    )
    total = collection.count_documents(query)
    pagination = {
        "currentPage": params.page,
        "totalPages": math.ceil(total / params.limit),
        "totalCount": total,
        "hasMore": params.skip + len(items) < total,
        "limit": params.limit,
    }
    return items, pagination


def parse_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def find_by_id_or_custom_id(collection, value: str, field: str) -> Optional[dict]:
    """A 24-hex value is tried as the storage id first, then as the human-readable id."""
    oid = parse_object_id(value) if isinstance(value, str) and len(value) == 24 else None
    if oid is not None:
        doc = collection.find_one({"_id": oid})
        if doc:
            return doc
    return collection.find_one({field: value})


def find_by_custom_id_or_id(collection, value: str, field: str) -> Optional[dict]:
    """The human-readable id is tried first, then any ObjectId-shaped value as the storage id."""
    doc = collection.find_one({field: value})
    if doc is None:
        oid = parse_object_id(value)
        if oid is not None:
            doc = collection.find_one({"_id": oid})
    return doc


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def serialize(doc: Optional[dict], exclude: Iterable[str] = ("password",)) -> Optional[dict]:
    if doc is None:
        return None
    out = {k: _jsonable(v) for k, v in doc.items() if k not in exclude}
    if "_id" in out:
        out["id"] = out["_id"]
    return out
