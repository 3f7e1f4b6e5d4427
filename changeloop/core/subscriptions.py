"""Explicit subscription handles for change and lifecycle notifications.

Publishers own a ``SubscriberRegistry``; ``subscribe`` hands back a
``Subscription`` whose ``close`` removes the callback. Callbacks may be
plain functions or coroutine functions; coroutines are scheduled on the
running loop and tracked until they finish.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from typing import Any

from loguru import logger


class Subscription:
    """Handle returned from ``subscribe``; closing it unsubscribes."""

    def __init__(self, registry: SubscriberRegistry, callback: Callable[..., Any]):
        self._registry = registry
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def close(self) -> None:
        if not self._active:
            return
        self._active = False
        self._registry._remove(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class SubscriberRegistry:
    """Fan-out of notifications to subscribed callbacks."""

    def __init__(self, name: str):
        self.name = name
        self._subscriptions: list[Subscription] = []
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, callback: Callable[..., Any]) -> Subscription:
        subscription = Subscription(self, callback)
        self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass

    def publish(self, *args: Any) -> None:
        """Invoke every callback; a failing subscriber never stops the rest."""
        for subscription in list(self._subscriptions):
            try:
                result = subscription.callback(*args)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._on_task_done)
            except Exception as e:
                logger.error(f"{self.name} subscriber failed: {e}")

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"{self.name} subscriber failed: {exc}")

    async def wait_idle(self) -> None:
        """Wait for scheduled coroutine callbacks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def clear(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.close()
