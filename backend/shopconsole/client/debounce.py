"""
Debounced and periodic async callbacks.

Both are owned by a component with a liveness check: once that check
returns False, a firing callback is skipped instead of touching state that
has already been torn down.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Coalesce rapid triggers into one call after a quiet period.

    Keys passed to trigger() are accumulated and handed to the callback
    together when it finally fires.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[set], Awaitable[None]],
        is_alive: Callable[[], bool] = lambda: True,
    ):
        self.delay = delay
        self._callback = callback
        self._is_alive = is_alive
        self._keys: set = set()
        self._task: Optional[asyncio.Task] = None
        # Detached once the quiet period ends, so a new trigger can't cancel a running callback
        self._running: set = set()

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self, key=None) -> None:
        if key is not None:
            self._keys.add(key)
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = asyncio.get_running_loop().create_task(self._fire_later())

    async def _fire_later(self) -> None:
        await asyncio.sleep(self.delay)
        if not self._is_alive():
            return
        keys, self._keys = self._keys, set()
        task = asyncio.current_task()
        self._task = None
        self._running.add(task)
        try:
            await self._callback(keys)
        except Exception:
            logger.exception("Debounced refresh failed")
        finally:
            self._running.discard(task)

    async def wait(self) -> None:
        """Wait until nothing is scheduled or running."""
        while True:
            tasks = [t for t in [self._task, *self._running] if t is not None and not t.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        for task in list(self._running):
            task.cancel()
        self._running.clear()
        self._keys.clear()


class PeriodicTask:
    """Run callback every interval seconds until cancelled."""

    def __init__(
        self,
        interval: float,
        callback: Callable[[], Awaitable[None]],
        is_alive: Callable[[], bool] = lambda: True,
        name: str = "periodic",
    ):
        self.interval = interval
        self._callback = callback
        self._is_alive = is_alive
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if not self._is_alive():
                return
            try:
                await self._callback()
            except Exception:
                logger.exception(f"Periodic task {self.name} failed")

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
