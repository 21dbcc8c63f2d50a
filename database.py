"""
MongoDB helpers.

Each pydantic schema maps to a collection named after the class (lowercased).
The database handle is passed in explicitly; nothing here holds a module-level
connection.
"""

import logging
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from config import Settings
from errors import ValidationError

logger = logging.getLogger(__name__)


def collection_name(model_cls) -> str:
    return model_cls.__name__.lower()


def connect(settings: Settings) -> Database:
    client = MongoClient(settings.database_url, tz_aware=False)
    logger.info(f"Using MongoDB database '{settings.database_name}'")
    return client[settings.database_name]


def midnight(value: Union[date, datetime]) -> datetime:
    """Normalize a calendar day (or a timestamp) to midnight of that day."""
    if isinstance(value, datetime):
        value = value.date()
    return datetime.combine(value, time.min)


def to_object_id(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid id: {value}")


def canonical_id(value: str) -> str:
    """The id in the lower-case hex form references are stored under."""
    return str(to_object_id(value))


def _to_bson(data: Dict[str, Any]) -> Dict[str, Any]:
    # pymongo encodes datetime but not plain date
    out = {}
    for k, v in data.items():
        if isinstance(v, date) and not isinstance(v, datetime):
            v = midnight(v)
        out[k] = v
    return out


def create_document(db: Database, collection: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    doc = _to_bson(dict(data))
    now = datetime.utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection].insert_one(doc)
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[List[tuple]] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(db: Database) -> None:
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["attendancerecord"].create_index(
        [("student_id", ASCENDING), ("date", ASCENDING), ("subject", ASCENDING)],
        unique=True,
    )
    db["eligibilityrecord"].create_index(
        [("student_id", ASCENDING), ("exam_id", ASCENDING), ("subject", ASCENDING)],
        unique=True,
    )
    db["exam"].create_index([("subject", ASCENDING), ("month", ASCENDING), ("year", ASCENDING)])
