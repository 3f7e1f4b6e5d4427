"""Helpers for documents flowing between stores, files and HTTP payloads."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


def document_timestamp(document: Mapping[str, Any]) -> datetime | None:
    """Best-known modification time of a stored document.

    Prefers ``updatedAt``, then ``createdAt``, then the generation time
    embedded in an ObjectId ``_id``.
    """
    for field_name in ("updatedAt", "createdAt"):
        value = document.get(field_name)
        if isinstance(value, datetime):
            return _as_utc(value)
    object_id = document.get("_id")
    generation_time = getattr(object_id, "generation_time", None)
    if isinstance(generation_time, datetime):
        return _as_utc(generation_time)
    return None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_jsonable(value: Any) -> Any:
    """Recursively convert a value into something ``json.dumps`` accepts.

    Datetimes become ISO strings, enums their values, paths strings; any
    other unknown object (ObjectId, Decimal128, ...) is rendered with
    ``str``.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(v) for v in value]
    if hasattr(value, "to_dict"):
        return to_jsonable(value.to_dict())
    return str(value)


def strip_internal_fields(document: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of a document without store-internal fields such as ``_id``."""
    return {k: v for k, v in document.items() if k != "_id"}
