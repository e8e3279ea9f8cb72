"""
Periodic tasks on the asyncio loop.

Each PeriodicTask sleeps, runs its callback, then sleeps again. The next
sleep starts only after the callback returns, so a slow tick delays the
following one instead of overlapping it.

Scheduler owns a set of tasks and cancels all of them on shutdown().
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

logger = logging.getLogger(__name__)

Callback = Callable[[], Union[None, Awaitable[Any]]]


class PeriodicTask:
    def __init__(self, name: str, interval: float, callback: Callback):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self.callback = callback
        self.ticks = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "PeriodicTask":
        if self.running:
            return self
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"periodic:{self.name}")
        return self

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait_cancelled(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                result = self.callback()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[Scheduler] Task '{self.name}' tick failed: {e}", exc_info=True)
            self.ticks += 1


class Scheduler:
    def __init__(self):
        self._tasks: Dict[str, PeriodicTask] = {}

    def schedule(self, name: str, interval: float, callback: Callback) -> PeriodicTask:
        """Start a named periodic task, replacing (cancelling) any task of the same name."""
        existing = self._tasks.pop(name, None)
        if existing is not None:
            existing.cancel()
        task = PeriodicTask(name, interval, callback).start()
        self._tasks[name] = task
        logger.debug(f"[Scheduler] Started '{name}' every {interval}s")
        return task

    def get(self, name: str) -> Optional[PeriodicTask]:
        return self._tasks.get(name)

    def cancel(self, name: str) -> bool:
        task = self._tasks.pop(name, None)
        if task is None:
            return False
        task.cancel()
        return True

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            await task.wait_cancelled()
        if tasks:
            logger.debug(f"[Scheduler] Cancelled {len(tasks)} tasks")
