"""Per-key debounce timers.

``notify(key, data)`` (re)arms a timer for ``key``. When a key stays quiet
for the full delay its handler runs once with the data from the latest
notification. Re-arming cancels the pending firing only; a handler that is
already running is never cancelled by a later notification.
"""

import asyncio
import inspect
from collections.abc import Callable
from typing import Any

from loguru import logger

DebounceHandler = Callable[[str, Any], Any]


class PathDebouncer:
    """Maps a key (file path, ``collection-id``, ...) to a pending timer."""

    def __init__(self, delay: float, handler: DebounceHandler, name: str = "debounce"):
        self._delay = delay
        self._handler = handler
        self._name = name
        self._timers: dict[str, asyncio.Task] = {}
        self._running: set[asyncio.Task] = set()

    @property
    def delay(self) -> float:
        return self._delay

    def __len__(self) -> int:
        return len(self._timers)

    def is_pending(self, key: str) -> bool:
        return key in self._timers

    def pending_keys(self) -> list[str]:
        return list(self._timers)

    def notify(self, key: str, data: Any = None) -> None:
        """Restart the timer for ``key``; must run on the event loop thread."""
        existing = self._timers.pop(key, None)
        if existing is not None:
            existing.cancel()

        task = asyncio.create_task(self._fire_after_delay(key, data))
        self._timers[key] = task
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    def cancel(self, key: str) -> bool:
        """Drop a pending timer without firing it."""
        task = self._timers.pop(key, None)
        if task is None:
            return False
        task.cancel()
        return True

    async def _fire_after_delay(self, key: str, data: Any) -> None:
        await asyncio.sleep(self._delay)

        # Detach before running so a notify during the handler arms a new timer
        if self._timers.get(key) is asyncio.current_task():
            del self._timers[key]

        try:
            result = self._handler(key, data)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{self._name} handler failed for {key}: {e}")

    def stop(self) -> None:
        """Cancel every outstanding timer."""
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()

    async def wait_idle(self) -> None:
        """Wait for pending timers to fire and running handlers to finish."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)
