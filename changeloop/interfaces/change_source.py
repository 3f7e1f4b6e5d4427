"""Data store boundary used by ``ChangeSourceMonitor``.

A change source exposes a push channel (``open_change_stream``) and the
queries the pull channel needs. Implementations own their connection for
the lifetime between ``connect`` and ``close``.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class SourceEvent:
    """A raw mutation reported by the store.

    ``document`` is the full post-change document when available;
    ``document_key`` carries at least the ``_id``.
    """

    operation: str
    document: dict[str, Any] | None = None
    document_key: dict[str, Any] = field(default_factory=dict)


class ChangeStream(ABC):
    """An open push subscription on one collection."""

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[SourceEvent]:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


class ChangeSource(ABC):
    """Abstract store of named record collections."""

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def latest_timestamp(self, collection: str) -> datetime | None:
        """Timestamp of the most recently updated/created document."""

    @abstractmethod
    async def open_change_stream(self, collection: str) -> ChangeStream:
        """Open a push subscription; raises when the store cannot provide one."""

    @abstractmethod
    async def find_updated_since(
        self, collection: str, since: datetime | None
    ) -> list[dict[str, Any]]:
        """Documents updated/created after ``since``, oldest first."""

    @abstractmethod
    async def recent_documents(
        self, collection: str, limit: int
    ) -> list[dict[str, Any]]:
        """Most recently created documents, newest first."""

    @abstractmethod
    async def latest_document(self, collection: str) -> dict[str, Any] | None:
        """The most recently created document, if any."""

    @abstractmethod
    async def insert_document(self, collection: str, document: dict[str, Any]) -> Any:
        """Persist a new document and return its id."""
