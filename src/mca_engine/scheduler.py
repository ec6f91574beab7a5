from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class PeriodicSchedule:
    """
    Handle owning at most one periodic task.

    `start()` runs the first tick immediately, then one tick per interval.
    `stop()` lets an in-flight tick finish and prevents any further tick.
    `sleep` is injectable so tests can drive a virtual clock.
    """

    def __init__(
        self,
        interval_s: float,
        tick: Callable[[], Awaitable[object]],
        *,
        sleep: Sleep = asyncio.sleep,
        name: str = "periodic",
    ) -> None:
        self.interval_s = interval_s
        self._tick = tick
        self._sleep = sleep
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stop.is_set()

    def start(self) -> bool:
        """Acquire the schedule. Returns False if it was already running."""
        if self.active:
            return False
        if self._task is not None and not self._task.done():
            # stop() was requested but the loop has not exited yet; keep that loop.
            self._stop.clear()
            return True
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=self.name)
        return True

    def stop(self) -> None:
        self._stop.set()

    async def join(self) -> None:
        """Wait for the loop to exit after `stop()`."""
        if self._task is not None:
            await self._task

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await self._tick()
            except Exception:
                logger.exception("%s: cycle failed", self.name)
            if self._stop.is_set():
                break
            await self._wait_interval()

    async def _wait_interval(self) -> None:
        sleeper = asyncio.ensure_future(self._sleep(self.interval_s))
        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (sleeper, stopper):
                if not fut.done():
                    fut.cancel()
