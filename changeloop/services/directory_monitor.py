"""Batching consumer for the file watcher.

Collects settled files into a pending batch keyed by filename and, once the
trigger delay passes without new arrivals, runs one analysis for the whole
batch. Successful runs move their source files into
``<processed_path>/<run_id>/`` next to an ``analysis_results.json`` artifact.
"""

import asyncio
import dataclasses
import json
import shutil
from pathlib import Path
from typing import Any

from loguru import logger

from changeloop.core.classification import extract_subject_id, synthesize_subject_id
from changeloop.core.config.watch_config import DirectoryWatchConfig
from changeloop.core.documents import to_jsonable
from changeloop.core.subscriptions import Subscription
from changeloop.core.types import WatchedChange, WatchTopic, utc_now
from changeloop.interfaces.analysis_runner import AnalysisResult, AnalysisRunner
from changeloop.services.batch_trigger import BatchTriggerCoordinator
from changeloop.services.file_watcher import FileChangeWatcher

RESULTS_FILENAME = "analysis_results.json"


class DataDirectoryMonitor:
    """Turns settled file changes into batched analysis runs."""

    def __init__(
        self,
        config: DirectoryWatchConfig,
        runner: AnalysisRunner,
        watcher: FileChangeWatcher | None = None,
    ):
        self.config = config
        self.runner = runner
        self.watcher = watcher or FileChangeWatcher(config)
        self.processed_path = Path(config.processed_path)
        self.batch = BatchTriggerCoordinator(
            config.trigger_delay,
            self._trigger,
            batch_mode=config.batch_mode,
            name="data monitor",
        )
        self._subscriptions: list[Subscription] = []

    async def start(self) -> None:
        mode = "batch" if self.config.batch_mode else "immediate"
        logger.info(f"Starting data monitor ({mode} mode)")
        await asyncio.to_thread(self.processed_path.mkdir, parents=True, exist_ok=True)
        self._subscriptions = [
            self.watcher.subscribe(WatchTopic.FILE_CHANGED, self._on_file_changed),
            self.watcher.subscribe(WatchTopic.FILE_DELETED, self._on_file_deleted),
        ]
        await self.watcher.start()

    async def stop(self) -> None:
        logger.info("Stopping data monitor")
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions.clear()
        self.batch.stop()
        await self.watcher.stop()

    async def wait_idle(self) -> None:
        """Wait for the watcher to settle and any armed batch to fire."""
        await self.watcher.wait_idle()
        await self.batch.wait_idle()

    def _on_file_changed(self, change: WatchedChange) -> None:
        self.batch.add(dataclasses.replace(change, key=change.filename or change.key))

    def _on_file_deleted(self, info: dict[str, Any]) -> None:
        if self.batch.discard(info["filename"]):
            logger.info(f"Dropped deleted file from pending batch: {info['filename']}")

    async def _trigger(self, changes: list[WatchedChange]) -> None:
        names = ", ".join(f"{c.filename} ({c.category.value})" for c in changes)
        logger.info(f"Triggering analysis for {len(changes)} file(s): {names}")

        payload = self.prepare_payload(changes)
        subject_id = self.derive_subject_id(changes)
        result = await self.runner.run_analysis(subject_id, payload)

        if not result.success:
            logger.error(f"Analysis failed for {subject_id}: {result.error}")
            return

        logger.info(f"Analysis completed: run {result.run_id} for {subject_id}")
        run_dir = await self._move_processed_files(changes, result.run_id or subject_id)
        await self._save_results(run_dir, result, subject_id, changes)

    def prepare_payload(self, changes: list[WatchedChange]) -> dict[str, Any]:
        """Analysis payload: file summaries plus data grouped by category."""
        aggregated: dict[str, list[Any]] = {}
        for change in changes:
            aggregated.setdefault(change.category.value, []).append(change.data)
        return {
            "files": [
                {
                    "name": c.filename,
                    "type": c.category.value,
                    "size": c.size,
                    "modified": c.modified_at.isoformat() if c.modified_at else None,
                }
                for c in changes
            ],
            "timestamp": utc_now().isoformat(),
            "source": "directory_monitor",
            "aggregated": aggregated,
        }

    def derive_subject_id(self, changes: list[WatchedChange]) -> str:
        subject_id = extract_subject_id(c.filename or "" for c in changes)
        return subject_id or synthesize_subject_id("auto")

    async def _move_processed_files(
        self, changes: list[WatchedChange], run_id: str
    ) -> Path:
        run_dir = self.processed_path / run_id
        await asyncio.to_thread(run_dir.mkdir, parents=True, exist_ok=True)
        for change in changes:
            if change.path is None:
                continue
            try:
                await asyncio.to_thread(
                    shutil.move, str(change.path), str(run_dir / change.path.name)
                )
                logger.debug(f"Moved {change.filename} to {run_dir}")
            except (OSError, shutil.Error) as e:
                logger.error(f"Failed to move {change.filename}: {e}")
        return run_dir

    async def _save_results(
        self,
        run_dir: Path,
        result: AnalysisResult,
        subject_id: str,
        changes: list[WatchedChange],
    ) -> None:
        artifact = {
            "run_id": result.run_id,
            "subject_id": subject_id,
            "timestamp": utc_now().isoformat(),
            "files": [c.filename for c in changes],
            "recommendation": result.recommendation,
            "insights": result.insights,
        }
        results_path = run_dir / RESULTS_FILENAME
        text = json.dumps(to_jsonable(artifact), indent=2)
        try:
            await asyncio.to_thread(results_path.write_text, text, encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to write {results_path}: {e}")
            return
        logger.info(f"Results saved to: {results_path}")
