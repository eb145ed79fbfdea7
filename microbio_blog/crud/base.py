from typing import Any, Dict, Optional

from bson import ObjectId


def to_object_id(value: Any) -> Optional[ObjectId]:
    """ObjectId for a valid id string, ``None`` otherwise."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def with_string_id(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a raw document with ``_id`` replaced by a string ``id``."""
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc
