"""Cancellable repeating timer."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from paywatch.core.logging import get_logger

logger = get_logger("watcher.ticker")


class Ticker:
    """
    Run ``callback`` every ``interval`` seconds on the event loop.

    The first call happens one interval after ``start``. A failing callback
    is logged and the ticker keeps running.
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], Awaitable[object]],
        name: str | None = None,
    ) -> None:
        self.interval = interval
        self._callback = callback
        self._name = name or "ticker"
        self._task: asyncio.Task | None = None
        self._stopped = False
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopped

    def start(self) -> None:
        if self.running:
            return
        self._stopped = False
        self._task = asyncio.create_task(self._run(), name=self._name)

    async def _run(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self.interval)
            if self._stopped:
                break
            self.ticks += 1
            try:
                await self._callback()
            except Exception:
                logger.exception(f"{self._name} callback failed")

    async def stop(self) -> None:
        """Stop the ticker and wait for its task to finish."""
        self._stopped = True
        task, self._task = self._task, None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # Stopped from inside the callback: the loop exits on its own
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
