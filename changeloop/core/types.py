"""Closed enumerations and the change record shared by every detector.

Categories and kinds are fixed tagged enumerations; classification code maps
names onto them and never grows new members at runtime.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any


class ChangeCategory(str, Enum):
    """Logical data type a change belongs to."""

    REVIEWS = "reviews"
    METRICS = "metrics"
    SALES = "sales"
    CUSTOMERS = "customers"
    GENERAL = "general"


class ChangeKind(str, Enum):
    """What happened to the watched item."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    RENAME = "rename"

    @classmethod
    def from_operation(cls, operation: str) -> ChangeKind:
        """Map a data store operation type onto a change kind.

        ``replace`` is a full-document update; anything unrecognised is
        treated as an update.
        """
        op = (operation or "").lower()
        if op == "insert":
            return cls.INSERT
        if op == "delete":
            return cls.DELETE
        if op == "rename":
            return cls.RENAME
        return cls.UPDATE


class EventStatus(str, Enum):
    """Lifecycle state of a queued event."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DetectionChannel(str, Enum):
    """Per-collection change detection state."""

    PUSH_ACTIVE = "push-active"
    PUSH_FAILED = "push-failed"
    POLL_ACTIVE = "poll-active"


class WatchTopic(str, Enum):
    """Notification topics published by the file watcher."""

    FILE_CHANGED = "file:changed"
    FILE_DELETED = "file:deleted"
    CATEGORY_DATA = "data:category"
    NEW_DATA = "data:new"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WatchedChange:
    """A single detected change waiting in a pending batch.

    ``key`` identifies the watched item (a file name, or ``collection-id``
    for database documents). Within one batch window only the latest change
    per key survives.
    """

    key: str
    kind: ChangeKind
    category: ChangeCategory
    data: Any = None
    detected_at: datetime = field(default_factory=utc_now)
    source: str = "unknown"
    # Filesystem details
    path: Path | None = None
    filename: str | None = None
    size: int | None = None
    modified_at: datetime | None = None
    # Database details
    collection: str | None = None
    operation: str | None = None
    document_id: str | None = None

    @property
    def document(self) -> Any:
        """Alias used by database consumers: the changed document."""
        return self.data

    def to_dict(self) -> dict[str, Any]:
        """Summary without the payload, suitable for logs and artifacts."""
        summary: dict[str, Any] = {
            "key": self.key,
            "kind": self.kind.value,
            "type": self.category.value,
            "detected_at": self.detected_at.isoformat(),
            "source": self.source,
        }
        if self.filename is not None:
            summary["name"] = self.filename
            summary["size"] = self.size
            summary["modified"] = (
                self.modified_at.isoformat() if self.modified_at else None
            )
        if self.collection is not None:
            summary["collection"] = self.collection
            summary["operation"] = self.operation
            summary["document_id"] = self.document_id
        return summary
