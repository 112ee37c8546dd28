"""Cancellable one-shot retry timer, one instance per supervisor."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class RetryTimer:
    """Run a callback once after a delay; rescheduling replaces the pending run.

    At most one run is pending at any time. The callback is synchronous and
    runs on the event loop after the delay elapses; it is expected to spawn
    whatever async work it needs.
    """

    def __init__(self, *, name: str = "retry", sleep: Sleep | None = None) -> None:
        self._name = name
        self._sleep: Sleep = sleep or asyncio.sleep
        self._task: asyncio.Task[None] | None = None
        self.scheduled_count = 0

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, delay: float, callback: Callable[[], None]) -> None:
        """Cancel any pending run and schedule ``callback`` after ``delay`` seconds."""
        self.cancel()
        self.scheduled_count += 1
        self._task = asyncio.create_task(self._fire(delay, callback), name=f"{self._name}-timer")

    def cancel(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    async def _fire(self, delay: float, callback: Callable[[], None]) -> None:
        await self._sleep(delay)
        # Detach before running so a reschedule from inside the callback does not cancel this task.
        self._task = None
        try:
            callback()
        except Exception:
            logger.exception("Retry callback %s failed", self._name)
