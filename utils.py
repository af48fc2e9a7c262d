import random
import string
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # PyMongo hands back naive datetimes that are already UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid id format")


def oids(id_strs: Iterable[str]) -> List[ObjectId]:
    """Convert a list of ids, silently dropping malformed ones."""
    out = []
    for i in id_strs or []:
        if i and ObjectId.is_valid(i):
            out.append(ObjectId(i))
    return out


def unique_ids(*groups: Iterable[Any]) -> List[str]:
    seen: Dict[str, None] = {}
    for group in groups:
        for i in group or []:
            if i is not None:
                seen.setdefault(str(i), None)
    return list(seen)


def to_json(v: Any) -> Any:
    if isinstance(v, datetime):
        return as_utc(v).isoformat()
    if isinstance(v, ObjectId):
        return str(v)
    if isinstance(v, dict):
        return {k: to_json(x) for k, x in v.items()}
    if isinstance(v, list):
        return [to_json(x) for x in v]
    return v


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    d.pop("password_hash", None)
    return {k: to_json(v) for k, v in d.items()}


def brief(doc: Dict[str, Any], *fields: str) -> Dict[str, Any]:
    """Small {id, <fields>} projection used when populating references."""
    out = {"id": str(doc["_id"])}
    for f in fields:
        out[f] = doc.get(f)
    return out


def naive_utc(value: datetime) -> datetime:
    """Datetime for use inside Mongo queries, where values are stored as naive UTC."""
    return as_utc(value).replace(tzinfo=None)


def generate_join_code() -> str:
    return "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
