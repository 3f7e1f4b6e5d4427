"""Batch accumulation shared by the directory and database monitors.

Pending changes are kept per key (last write wins) and a single delay timer
is re-armed on every arrival. When the timer lapses the whole batch is
cleared and handed to the trigger callback exactly once. Trigger failures
are logged and the batch is dropped; there is no retry.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from changeloop.core.types import WatchedChange
from changeloop.services.debouncer import PathDebouncer

BatchCallback = Callable[[list[WatchedChange]], Awaitable[Any]]

_BATCH_KEY = "__batch__"


class BatchTriggerCoordinator:
    """Accumulates ``WatchedChange`` records and fires them as one batch."""

    def __init__(
        self,
        delay: float,
        on_batch: BatchCallback,
        batch_mode: bool = True,
        name: str = "batch",
    ):
        self._on_batch = on_batch
        self._batch_mode = batch_mode
        self._name = name
        self._pending: dict[str, WatchedChange] = {}
        self._timer = PathDebouncer(delay, self._on_timer, name=f"{name} timer")
        self._immediate: set[asyncio.Task] = set()
        self.batches_fired = 0

    @property
    def delay(self) -> float:
        return self._timer.delay

    @property
    def batch_mode(self) -> bool:
        return self._batch_mode

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def pending(self) -> dict[str, WatchedChange]:
        """Snapshot of the pending batch."""
        return dict(self._pending)

    def is_armed(self) -> bool:
        return self._timer.is_pending(_BATCH_KEY)

    def add(self, change: WatchedChange) -> None:
        """Record a change and (re)arm the timer.

        In immediate mode the change is dispatched on its own right away.
        """
        if not self._batch_mode:
            task = asyncio.create_task(self._dispatch([change]))
            self._immediate.add(task)
            task.add_done_callback(self._immediate.discard)
            return

        self._pending[change.key] = change
        self._timer.notify(_BATCH_KEY)
        logger.debug(
            f"{self._name}: {len(self._pending)} pending; "
            f"trigger in {self._timer.delay:.1f}s"
        )

    def discard(self, key: str) -> bool:
        """Forget a pending change (e.g. the file vanished before firing)."""
        return self._pending.pop(key, None) is not None

    async def _on_timer(self, key: str, data: Any) -> None:
        await self.flush()

    async def flush(self) -> int:
        """Fire whatever is pending now; returns the number of changes sent."""
        self._timer.cancel(_BATCH_KEY)
        if not self._pending:
            return 0
        changes = list(self._pending.values())
        self._pending.clear()
        await self._dispatch(changes)
        return len(changes)

    async def _dispatch(self, changes: list[WatchedChange]) -> None:
        self.batches_fired += 1
        logger.info(f"{self._name}: processing {len(changes)} pending change(s)")
        try:
            await self._on_batch(changes)
        except Exception as e:
            logger.error(f"{self._name}: trigger failed, dropping batch: {e}")

    def stop(self) -> None:
        """Cancel the timer and drop anything still pending."""
        self._timer.stop()
        self._pending.clear()

    async def wait_idle(self) -> None:
        """Wait for an armed timer to fire and any running trigger to finish."""
        await self._timer.wait_idle()
        while self._immediate:
            await asyncio.gather(*list(self._immediate), return_exceptions=True)
