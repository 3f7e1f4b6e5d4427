"""Filesystem change watcher.

Observes a directory tree with watchdog, debounces raw events per path and
publishes classified change notifications once a path has settled.

Architecture:
- watchdog observer threads only hand raw events to the event loop
  (``call_soon_threadsafe``); all state lives on the loop thread
- one non-recursive watch per directory; new subdirectories are registered
  dynamically as they appear
- settled files are read off-loop, parsed when structured, classified by
  name and published on the ``WatchTopic`` registries
"""

import asyncio
import csv
import io
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from changeloop.core.classification import classify_name
from changeloop.core.config.watch_config import DirectoryWatchConfig
from changeloop.core.subscriptions import SubscriberRegistry, Subscription
from changeloop.core.types import ChangeKind, WatchedChange, WatchTopic
from changeloop.services.debouncer import PathDebouncer

_TEMP_SUFFIXES = ("~", ".tmp", ".swp", ".swx", ".part", ".crdownload")

_RAW_EVENT_KINDS = {
    "created": ChangeKind.INSERT,
    "modified": ChangeKind.UPDATE,
    "deleted": ChangeKind.DELETE,
}


def normalize_file_path(path: Path | str) -> str:
    return str(Path(path).resolve())


class WatchEventHandler(FileSystemEventHandler):
    """Forwards watchdog events to the loop; runs on the observer thread."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        on_event: Callable[[ChangeKind, Path, bool], None],
    ):
        self.loop = loop
        self._on_event = on_event

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type == "moved":
            # A move is a rename of the source and a new item at the target
            self._forward(ChangeKind.RENAME, event.src_path, event.is_directory)
            dest_path = getattr(event, "dest_path", None)
            if dest_path:
                self._forward(ChangeKind.INSERT, dest_path, event.is_directory)
            return

        kind = _RAW_EVENT_KINDS.get(event.event_type)
        if kind is None:
            return
        # Directory mtime changes carry no information of their own
        if event.is_directory and kind is ChangeKind.UPDATE:
            return
        self._forward(kind, event.src_path, event.is_directory)

    def _forward(self, kind: ChangeKind, raw_path: Any, is_directory: bool) -> None:
        if self.loop.is_closed():
            return
        if isinstance(raw_path, bytes):
            raw_path = os.fsdecode(raw_path)
        path = Path(normalize_file_path(raw_path))
        try:
            self.loop.call_soon_threadsafe(self._on_event, kind, path, is_directory)
        except RuntimeError as e:
            logger.debug(f"Dropping {kind.value} for {path}; loop unavailable: {e}")


class FileChangeWatcher:
    """Watches a directory tree and publishes settled, classified changes."""

    def __init__(self, config: DirectoryWatchConfig):
        self.config = config
        self.watch_path = Path(config.path)
        self._file_types = set(config.file_types)
        self._debouncer = PathDebouncer(
            config.debounce_delay, self._on_settled, name="file watcher"
        )
        self._topics = {topic: SubscriberRegistry(topic.value) for topic in WatchTopic}
        self._pending_kinds: dict[str, ChangeKind] = {}

        self.observer: Any = None
        self.event_handler: WatchEventHandler | None = None
        self.watched_directories: set[str] = set()
        self._using_polling = False
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def using_polling(self) -> bool:
        return self._using_polling

    def subscribe(self, topic: WatchTopic, callback: Callable[..., Any]) -> Subscription:
        """Subscribe to one notification topic.

        ``FILE_CHANGED``, ``CATEGORY_DATA`` and ``NEW_DATA`` callbacks receive
        the ``WatchedChange``; ``FILE_DELETED`` callbacks receive a dict with
        ``path``, ``filename`` and ``timestamp``.
        """
        return self._topics[topic].subscribe(callback)

    def should_watch_file(self, filename: str) -> bool:
        """Hidden and temporary files never qualify; the extension must be allowed."""
        if filename.startswith(".") or filename.startswith("~$"):
            return False
        if filename.lower().endswith(_TEMP_SUFFIXES):
            return False
        return Path(filename).suffix.lower() in self._file_types

    async def start(self) -> None:
        """Create the watch directory if needed and start observing it."""
        if self._running:
            return
        logger.info(f"Starting directory watcher on: {self.watch_path}")
        await asyncio.to_thread(self.watch_path.mkdir, parents=True, exist_ok=True)
        self.watch_path = Path(normalize_file_path(self.watch_path))

        loop = asyncio.get_running_loop()
        self.event_handler = WatchEventHandler(loop, self.handle_raw_event)
        try:
            await asyncio.to_thread(self._start_observer, Observer)
        except Exception as e:
            logger.warning(f"Native filesystem events unavailable: {e} - falling back to polling")
            self._using_polling = True
            await asyncio.to_thread(self._start_observer, PollingObserver)

        self._running = True
        logger.info(
            f"Directory watcher active on {len(self.watched_directories)} "
            f"director{'y' if len(self.watched_directories) == 1 else 'ies'}"
        )

    def _start_observer(self, observer_cls: Callable[[], Any]) -> None:
        self.watched_directories.clear()
        self.observer = observer_cls()
        directories = [self.watch_path]
        if self.config.recursive:
            directories.extend(self._walk_subdirectories(self.watch_path))
        for directory in directories:
            self._schedule(directory)
        self.observer.start()

    def _walk_subdirectories(self, root: Path) -> list[Path]:
        found: list[Path] = []
        for dirpath, dirnames, _ in os.walk(root):
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            found.extend(Path(dirpath) / d for d in dirnames)
        return found

    def _schedule(self, directory: Path) -> bool:
        key = normalize_file_path(directory)
        if key in self.watched_directories or self.observer is None:
            return False
        self.observer.schedule(self.event_handler, key, recursive=False)
        self.watched_directories.add(key)
        logger.debug(f"Watching directory: {key}")
        return True

    def handle_raw_event(
        self, kind: ChangeKind, path: Path, is_directory: bool = False
    ) -> None:
        """Entry point for raw events; must be called on the loop thread."""
        if is_directory:
            if kind is ChangeKind.INSERT and self.config.recursive:
                self._spawn(self._register_directory(path))
            elif kind in (ChangeKind.DELETE, ChangeKind.RENAME):
                self.watched_directories.discard(normalize_file_path(path))
            return

        if not self.should_watch_file(path.name):
            return
        self._notify(str(path), kind)

    def _notify(self, key: str, kind: ChangeKind) -> None:
        """Merge ``kind`` with the pending one for ``key`` and re-arm its timer."""
        previous = self._pending_kinds.get(key)
        if previous is ChangeKind.INSERT and kind is ChangeKind.UPDATE:
            # created then modified while settling is still a new file
            kind = ChangeKind.INSERT
        elif previous in (ChangeKind.DELETE, ChangeKind.RENAME) and kind is ChangeKind.INSERT:
            kind = ChangeKind.UPDATE
        self._pending_kinds[key] = kind
        self._debouncer.notify(key, kind)

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _register_directory(self, directory: Path) -> None:
        """Watch a new directory and pick up files that arrived with it."""
        try:
            subdirectories = await asyncio.to_thread(self._walk_subdirectories, directory)
            for candidate in [directory, *subdirectories]:
                if self._schedule(candidate):
                    logger.debug(f"Added watch for new directory: {candidate}")
            files = await asyncio.to_thread(self._list_files, directory)
        except OSError as e:
            logger.warning(f"Failed to watch new directory {directory}: {e}")
            return
        for file_path in files:
            self._notify(str(file_path), ChangeKind.INSERT)

    def _list_files(self, root: Path) -> list[Path]:
        files: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            files.extend(
                Path(dirpath) / name for name in filenames if self.should_watch_file(name)
            )
        return files

    async def _on_settled(self, key: str, kind: ChangeKind) -> None:
        self._pending_kinds.pop(key, None)
        path = Path(key)
        exists = await asyncio.to_thread(path.exists)

        if exists and kind in (ChangeKind.DELETE, ChangeKind.RENAME):
            # Removed and recreated within the settle window
            kind = ChangeKind.UPDATE

        if not exists:
            if kind in (ChangeKind.DELETE, ChangeKind.RENAME):
                logger.info(f"File deleted: {path.name}")
                self._topics[WatchTopic.FILE_DELETED].publish(
                    {
                        "path": path,
                        "filename": path.name,
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                    }
                )
            else:
                logger.debug(f"File vanished before it settled: {path}")
            return

        if await asyncio.to_thread(path.is_dir):
            if self.config.recursive:
                await self._register_directory(path)
            return

        try:
            stat = await asyncio.to_thread(path.stat)
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Error reading {path}: {e}")
            return

        change = WatchedChange(
            key=str(path),
            kind=kind,
            category=classify_name(path.name),
            data=self._parse_content(path, content),
            source="directory_watcher",
            path=path,
            filename=path.name,
            size=stat.st_size,
            modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )
        logger.info(f"File {kind.value}: {path.name} ({change.category.value})")

        self._topics[WatchTopic.FILE_CHANGED].publish(change)
        self._topics[WatchTopic.CATEGORY_DATA].publish(change)
        self._topics[WatchTopic.NEW_DATA].publish(change)

    def _parse_content(self, path: Path, content: str) -> Any:
        """Parse structured formats; on failure keep the raw text."""
        suffix = path.suffix.lower()
        try:
            if suffix == ".json":
                return json.loads(content)
            if suffix == ".csv":
                return list(csv.DictReader(io.StringIO(content)))
        except (ValueError, csv.Error) as e:
            logger.warning(f"Failed to parse {path.name}, keeping raw content: {e}")
        return content

    def get_snapshot(self) -> dict[str, Any]:
        """Current qualifying files under the watch path."""
        snapshot: dict[str, Any] = {
            "path": str(self.watch_path),
            "files": [],
            "total_size": 0,
            "last_modified": None,
        }
        latest: float | None = None
        try:
            if self.config.recursive:
                candidates = self._list_files(self.watch_path)
            else:
                candidates = [
                    entry
                    for entry in self.watch_path.iterdir()
                    if entry.is_file() and self.should_watch_file(entry.name)
                ]
            for file_path in sorted(candidates):
                stat = file_path.stat()
                snapshot["files"].append(
                    {
                        "path": str(file_path),
                        "name": file_path.name,
                        "size": stat.st_size,
                        "modified": datetime.fromtimestamp(
                            stat.st_mtime, tz=timezone.utc
                        ).isoformat(),
                        "type": classify_name(file_path.name).value,
                    }
                )
                snapshot["total_size"] += stat.st_size
                if latest is None or stat.st_mtime > latest:
                    latest = stat.st_mtime
        except OSError as e:
            logger.error(f"Error creating snapshot of {self.watch_path}: {e}")

        if latest is not None:
            snapshot["last_modified"] = datetime.fromtimestamp(
                latest, tz=timezone.utc
            ).isoformat()
        return snapshot

    async def wait_idle(self) -> None:
        """Wait for directory registrations and pending settles to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self._debouncer.wait_idle()
        for registry in self._topics.values():
            await registry.wait_idle()

    async def stop(self) -> None:
        """Stop observing and cancel outstanding debounce timers."""
        logger.info("Stopping directory watcher")
        self._running = False
        self._debouncer.stop()
        self._pending_kinds.clear()

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks.clear()

        if self.observer is not None:
            self.observer.stop()
            try:
                await asyncio.wait_for(asyncio.to_thread(self.observer.join), timeout=1.0)
            except asyncio.TimeoutError:
                logger.warning("Observer thread did not exit within timeout")
            self.observer = None
        self.watched_directories.clear()
