"""Database change monitor.

Watches a fixed set of collections for mutations and funnels them through
the shared batch trigger. Each collection prefers push detection (a change
stream); when a stream cannot be opened, or fails later, that collection
falls back to polling for good. Polling queries documents newer than the
collection's high-water mark.
"""

import asyncio
from datetime import datetime
from typing import Any, Callable

from loguru import logger

from changeloop.core.classification import synthesize_subject_id
from changeloop.core.config.database_config import DatabaseMonitorConfig
from changeloop.core.documents import document_timestamp
from changeloop.core.subscriptions import SubscriberRegistry, Subscription
from changeloop.core.types import (
    ChangeCategory,
    ChangeKind,
    DetectionChannel,
    WatchedChange,
    utc_now,
)
from changeloop.interfaces.analysis_runner import AnalysisResult, AnalysisRunner
from changeloop.interfaces.change_source import ChangeSource, ChangeStream, SourceEvent
from changeloop.services.batch_trigger import BatchTriggerCoordinator

REVIEW_WINDOW = 100
RECENT_REVIEWS = 5
DEFAULT_METRICS = {"activeUsers": 0, "churnRate": 0, "avgSessionDuration": 0}


class ChangeSourceMonitor:
    """Push-first, poll-fallback change detection over named collections."""

    def __init__(
        self,
        config: DatabaseMonitorConfig,
        source: ChangeSource,
        runner: AnalysisRunner,
    ):
        self.config = config
        self.source = source
        self.runner = runner

        # Fixed at construction: collection name -> logical category
        self.categories: dict[str, ChangeCategory] = {
            name: category for category, name in config.collections.items()
        }
        self.channels: dict[str, DetectionChannel] = {}
        self.high_water_marks: dict[str, datetime | None] = {}

        self.batch = BatchTriggerCoordinator(
            config.batch_delay, self._trigger, name="change monitor"
        )
        self._streams: dict[str, ChangeStream] = {}
        self._stream_tasks: dict[str, asyncio.Task] = {}
        self._poll_task: asyncio.Task | None = None

        self._all_changes = SubscriberRegistry("change monitor")
        self._by_category = {
            category: SubscriberRegistry(f"change monitor {category.value}")
            for category in ChangeCategory
        }

        self._initialized = False
        self._closed = False

    def subscribe(
        self,
        callback: Callable[[WatchedChange], Any],
        category: ChangeCategory | None = None,
    ) -> Subscription:
        """Receive every detected change, or only those of one category."""
        if category is None:
            return self._all_changes.subscribe(callback)
        return self._by_category[category].subscribe(callback)

    async def initialize(self) -> None:
        """Connect, record high-water marks and open detection channels."""
        if self._initialized:
            return
        logger.info("Initializing change source monitor")
        await self.source.connect()
        await self._initialize_marks()

        if self.config.use_change_streams:
            await self._start_change_streams()
        else:
            for collection in self.categories:
                self.channels[collection] = DetectionChannel.POLL_ACTIVE

        if self.polling_collections():
            self._ensure_polling()

        self._initialized = True
        logger.info(
            f"Change source monitor active on {len(self.categories)} collection(s): "
            + ", ".join(f"{c}={s.value}" for c, s in self.channels.items())
        )

    async def _initialize_marks(self) -> None:
        for collection in self.categories:
            try:
                mark = await self.source.latest_timestamp(collection)
            except Exception as e:
                logger.warning(f"Could not get initial timestamp for {collection}: {e}")
                mark = None
            self.high_water_marks[collection] = mark
            if mark is not None:
                logger.debug(f"Starting {collection} from {mark.isoformat()}")

    async def _start_change_streams(self) -> None:
        for collection in self.categories:
            try:
                stream = await self.source.open_change_stream(collection)
            except Exception as e:
                logger.warning(
                    f"Could not open change stream for {collection}: {e} - "
                    "falling back to polling"
                )
                self.channels[collection] = DetectionChannel.POLL_ACTIVE
                continue

            self._streams[collection] = stream
            self.channels[collection] = DetectionChannel.PUSH_ACTIVE
            self._stream_tasks[collection] = asyncio.create_task(
                self._consume_stream(collection, stream)
            )
            logger.info(f"Change stream active for {collection}")

        if not self._streams:
            logger.info("Change streams not available, using polling for all collections")

    async def _consume_stream(self, collection: str, stream: ChangeStream) -> None:
        category = self.categories[collection]
        try:
            async for event in stream:
                self._on_source_event(category, collection, event)
            logger.warning(f"Change stream for {collection} ended")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Change stream error for {collection}: {e}")

        if not self._closed:
            await self._fall_back_to_polling(collection)

    async def _fall_back_to_polling(self, collection: str) -> None:
        self.channels[collection] = DetectionChannel.PUSH_FAILED
        stream = self._streams.pop(collection, None)
        self._stream_tasks.pop(collection, None)
        if stream is not None:
            try:
                await stream.close()
            except Exception as e:
                logger.debug(f"Error closing failed stream for {collection}: {e}")
        self.channels[collection] = DetectionChannel.POLL_ACTIVE
        logger.info(f"Falling back to polling for {collection}")
        self._ensure_polling()

    def _ensure_polling(self) -> None:
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop())

    def polling_collections(self) -> list[str]:
        return [
            c for c, state in self.channels.items() if state is DetectionChannel.POLL_ACTIVE
        ]

    async def _poll_loop(self) -> None:
        logger.debug(f"Polling every {self.config.poll_interval:.1f}s")
        while True:
            await asyncio.sleep(self.config.poll_interval)
            await self.poll_once()

    async def poll_once(self) -> int:
        """Poll every collection in poll mode once; returns changes found."""
        found = 0
        for collection in self.polling_collections():
            found += await self._poll_collection(collection)
        return found

    async def _poll_collection(self, collection: str) -> int:
        category = self.categories[collection]
        mark = self.high_water_marks.get(collection)
        try:
            documents = await self.source.find_updated_since(collection, mark)
        except Exception as e:
            logger.error(f"Error polling {collection}: {e}")
            return 0
        if not documents:
            return 0

        logger.info(f"Found {len(documents)} new/updated {category.value} document(s)")
        for document in documents:
            self._on_source_event(
                category,
                collection,
                SourceEvent(
                    operation="update",
                    document=document,
                    document_key={"_id": document.get("_id")},
                ),
            )
        self._advance_mark(collection, documents[-1])
        return len(documents)

    def _advance_mark(self, collection: str, document: dict[str, Any]) -> None:
        timestamp = document_timestamp(document)
        if timestamp is None:
            return
        current = self.high_water_marks.get(collection)
        if current is None or timestamp > current:
            self.high_water_marks[collection] = timestamp

    def _on_source_event(
        self, category: ChangeCategory, collection: str, event: SourceEvent
    ) -> None:
        document = event.document or event.document_key
        if not document:
            return

        document_id = document.get("_id")
        change = WatchedChange(
            key=f"{collection}-{document_id}",
            kind=ChangeKind.from_operation(event.operation),
            category=category,
            data=document,
            source="change_monitor",
            collection=collection,
            operation=event.operation,
            document_id=str(document_id) if document_id is not None else None,
        )
        logger.debug(f"Change detected in {collection}: {event.operation} {document_id}")

        if event.document is not None:
            self._advance_mark(collection, event.document)

        self.batch.add(change)
        self._by_category[category].publish(change)
        self._all_changes.publish(change)

    async def _trigger(self, changes: list[WatchedChange]) -> None:
        by_category: dict[ChangeCategory, list[WatchedChange]] = {}
        for change in changes:
            by_category.setdefault(change.category, []).append(change)

        summary = ", ".join(f"{c.value}: {len(v)}" for c, v in by_category.items())
        logger.info(f"Triggering analysis for changes ({summary})")

        subject_id = self.extract_subject_id(by_category)
        payload = await self.prepare_payload(by_category)
        result = await self.runner.run_analysis(subject_id, payload)

        if not result.success:
            logger.error(f"Analysis failed for {subject_id}: {result.error}")
            return

        logger.info(f"Analysis completed: run {result.run_id} for {subject_id}")
        await self._save_results(result, subject_id, by_category)

    def extract_subject_id(
        self, by_category: dict[ChangeCategory, list[WatchedChange]]
    ) -> str:
        """First document carrying the subject field wins."""
        field_name = self.config.subject_field
        for changes in by_category.values():
            for change in changes:
                document = change.data
                if isinstance(document, dict) and document.get(field_name):
                    return str(document[field_name])
        return synthesize_subject_id("mongo")

    async def prepare_payload(
        self, by_category: dict[ChangeCategory, list[WatchedChange]]
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "source": "change_monitor",
            "timestamp": utc_now().isoformat(),
            "changes": {},
        }
        for category, changes in by_category.items():
            documents = [c.data for c in changes]
            payload["changes"][category.value] = {
                "count": len(documents),
                "latest": max(changes, key=lambda c: c.detected_at).data,
                "all": documents,
            }
            collection = changes[0].collection
            if category is ChangeCategory.REVIEWS:
                payload["reviews"] = await self.aggregate_reviews(collection)
            elif category is ChangeCategory.METRICS:
                payload["metrics"] = await self.aggregate_metrics(collection)
        return payload

    async def aggregate_reviews(self, collection: str) -> dict[str, Any]:
        """Average rating and sentiment over the most recent reviews."""
        reviews = await self.source.recent_documents(collection, REVIEW_WINDOW)
        ratings = [r.get("rating") for r in reviews]
        total = sum(x for x in ratings if isinstance(x, (int, float)))
        average = total / len(reviews) if reviews else 0.0
        return {
            "count": len(reviews),
            "averageRating": average,
            "sentiment": average / 5,
            "recentReviews": reviews[:RECENT_REVIEWS],
        }

    async def aggregate_metrics(self, collection: str) -> dict[str, Any]:
        """Latest metrics snapshot, or zeroed defaults when there is none."""
        latest = await self.source.latest_document(collection)
        return latest if latest is not None else dict(DEFAULT_METRICS)

    async def _save_results(
        self,
        result: AnalysisResult,
        subject_id: str,
        by_category: dict[ChangeCategory, list[WatchedChange]],
    ) -> None:
        document = {
            "run_id": result.run_id,
            "subject_id": subject_id,
            "timestamp": utc_now(),
            "trigger_summary": [
                {"type": category.value, "document_count": len(changes)}
                for category, changes in by_category.items()
            ],
            "recommendation": result.recommendation,
            "insights": result.insights,
        }
        try:
            await self.source.insert_document(self.config.results_collection, document)
            logger.info(f"Results saved to {self.config.results_collection}")
        except Exception as e:
            logger.error(f"Failed to save results: {e}")

    def get_status(self) -> dict[str, Any]:
        return {
            "initialized": self._initialized,
            "channels": {c: s.value for c, s in self.channels.items()},
            "high_water_marks": {
                c: m.isoformat() if m else None for c, m in self.high_water_marks.items()
            },
            "pending_changes": self.batch.pending_count,
        }

    async def wait_idle(self) -> None:
        await self.batch.wait_idle()
        await self._all_changes.wait_idle()

    async def shutdown(self) -> None:
        """Close streams, cancel timers and release the connection; safe to repeat."""
        if self._closed:
            return
        self._closed = True
        logger.info("Stopping change source monitor")

        tasks = list(self._stream_tasks.values())
        if self._poll_task is not None:
            tasks.append(self._poll_task)
        for task in tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._stream_tasks.clear()
        self._poll_task = None

        for collection, stream in list(self._streams.items()):
            try:
                await stream.close()
            except Exception as e:
                logger.warning(f"Error closing change stream for {collection}: {e}")
        self._streams.clear()

        self.batch.stop()
        await self.source.close()
        logger.info("Change source monitor stopped")
