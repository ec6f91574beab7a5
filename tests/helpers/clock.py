from __future__ import annotations

import asyncio
import heapq
import itertools


class VirtualClock:
    """
    Drop-in for `asyncio.sleep` whose time only moves on `advance()`.
    Lets periodic schedules be tested without waiting in real time.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self._timers: list[tuple[float, int, asyncio.Future]] = []
        self._seq = itertools.count()

    async def sleep(self, seconds: float) -> None:
        fut = asyncio.get_running_loop().create_future()
        heapq.heappush(self._timers, (self.now + seconds, next(self._seq), fut))
        await fut

    async def _settle(self, rounds: int = 100) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking every sleeper due on the way, one deadline at a time."""
        target = self.now + seconds
        await self._settle()
        while self._timers and self._timers[0][0] <= target:
            deadline, _, fut = heapq.heappop(self._timers)
            self.now = deadline
            if not fut.done():
                fut.set_result(None)
            await self._settle()
        self.now = target
