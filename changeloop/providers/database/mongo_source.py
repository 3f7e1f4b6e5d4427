"""MongoDB implementation of ``ChangeSource`` on the pymongo async API.

Push detection uses change streams (replica sets / Atlas only); standalone
servers reject ``watch`` and the monitor falls back to polling.
"""

from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from typing import Any

from bson import ObjectId
from loguru import logger
from pymongo import ASCENDING, DESCENDING, AsyncMongoClient

from changeloop.core.documents import document_timestamp
from changeloop.core.exceptions import DetectionChannelError
from changeloop.interfaces.change_source import ChangeSource, ChangeStream, SourceEvent

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Only mutations that leave a document behind are interesting
_WATCHED_OPERATIONS = ["insert", "update", "replace"]


class MongoChangeStream(ChangeStream):
    """Adapts a pymongo ``AsyncChangeStream`` to ``SourceEvent`` items."""

    def __init__(self, collection: str, stream: Any):
        self.collection = collection
        self._stream = stream

    async def _iterate(self) -> AsyncIterator[SourceEvent]:
        async for change in self._stream:
            yield SourceEvent(
                operation=change.get("operationType", "update"),
                document=change.get("fullDocument"),
                document_key=change.get("documentKey") or {},
            )

    def __aiter__(self) -> AsyncIterator[SourceEvent]:
        return self._iterate()

    async def close(self) -> None:
        await self._stream.close()


class MongoChangeSource(ChangeSource):
    """Named collections in one MongoDB database."""

    def __init__(self, uri: str, database: str, client: Any | None = None):
        self._uri = uri
        self._database_name = database
        self._client = client
        self._db: Any = None

    @property
    def database_name(self) -> str:
        return self._database_name

    async def connect(self) -> None:
        if self._client is None:
            self._client = AsyncMongoClient(self._uri, tz_aware=True)
        self._db = self._client[self._database_name]
        await self._client.admin.command("ping")
        logger.info(f"Connected to MongoDB: {self._database_name}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._db = None
            logger.debug("MongoDB connection closed")

    def _collection(self, name: str) -> Any:
        if self._db is None:
            raise RuntimeError("MongoChangeSource is not connected")
        return self._db[name]

    async def latest_timestamp(self, collection: str) -> datetime | None:
        latest = await self._collection(collection).find_one(
            {}, sort=[("updatedAt", DESCENDING), ("createdAt", DESCENDING), ("_id", DESCENDING)]
        )
        if latest is None:
            return None
        return document_timestamp(latest)

    async def open_change_stream(self, collection: str) -> ChangeStream:
        try:
            stream = await self._collection(collection).watch(
                [{"$match": {"operationType": {"$in": _WATCHED_OPERATIONS}}}],
                full_document="updateLookup",
            )
        except Exception as e:
            raise DetectionChannelError(collection, str(e)) from e
        return MongoChangeStream(collection, stream)

    async def find_updated_since(
        self, collection: str, since: datetime | None
    ) -> list[dict[str, Any]]:
        mark = since or _EPOCH
        # ObjectIds only carry whole seconds; start at the next second so
        # the document that set the mark is not picked up again.
        id_floor = ObjectId.from_datetime(
            mark.replace(microsecond=0) + timedelta(seconds=1)
        )
        query = {
            "$or": [
                {"updatedAt": {"$gt": mark}},
                {"createdAt": {"$gt": mark}},
                {"_id": {"$gte": id_floor}},
            ]
        }
        cursor = (
            self._collection(collection)
            .find(query)
            .sort([("updatedAt", ASCENDING), ("createdAt", ASCENDING), ("_id", ASCENDING)])
        )
        return await cursor.to_list(None)

    async def recent_documents(self, collection: str, limit: int) -> list[dict[str, Any]]:
        cursor = (
            self._collection(collection)
            .find({})
            .sort("createdAt", DESCENDING)
            .limit(limit)
        )
        return await cursor.to_list(None)

    async def latest_document(self, collection: str) -> dict[str, Any] | None:
        return await self._collection(collection).find_one(
            {}, sort=[("createdAt", DESCENDING)]
        )

    async def insert_document(self, collection: str, document: dict[str, Any]) -> Any:
        result = await self._collection(collection).insert_one(document)
        return result.inserted_id
