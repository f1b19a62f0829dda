"""Timers owned by the component that creates them.

PeriodicTask fires a synchronous tick at a fixed wall-clock cadence; missed
ticks are skipped, never queued. DeferredCall runs a coroutine once after a
delay. Both are cancelled explicitly through stop()/cancel() or in bulk via
TimerGroup.cancel_all().
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Fixed-cadence timer."""

    def __init__(self, tick: Callable[[], None], interval: float, name: str = "periodic"):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.tick = tick
        self.interval = interval
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, immediate: bool = True) -> None:
        """Start ticking. Restarting an already running timer is a no-op."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(immediate), name=f"timer:{self.name}"
        )

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def _fire(self) -> None:
        try:
            self.tick()
        except Exception as e:
            logger.error(f"Timer {self.name} tick failed: {e}")

    async def _run(self, immediate: bool) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        if immediate:
            self._fire()

        n = 0
        while True:
            # Skip ahead past any ticks missed while the loop was busy
            elapsed = loop.time() - started
            n = max(n + 1, int(elapsed / self.interval) + 1)
            delay = started + n * self.interval - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            logger.debug(f"Timer {self.name} tick #{n}")
            self._fire()


class DeferredCall:
    """One-shot delayed coroutine."""

    def __init__(
        self,
        delay: float,
        callback: Callable[[], Awaitable[object]],
        name: str = "deferred",
    ):
        self.delay = delay
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    def start(self) -> "DeferredCall":
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"deferred:{self.name}"
        )
        return self

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        try:
            await self.callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Deferred call {self.name} failed: {e}")


class TimerGroup:
    """Tracks deferred calls so their owner can cancel them together."""

    def __init__(self):
        self._calls: list[DeferredCall] = []

    def call_later(
        self,
        delay: float,
        callback: Callable[[], Awaitable[object]],
        name: str = "deferred",
    ) -> DeferredCall:
        self._calls = [c for c in self._calls if c.pending]
        call = DeferredCall(delay, callback, name).start()
        self._calls.append(call)
        return call

    @property
    def pending(self) -> list[DeferredCall]:
        return [c for c in self._calls if c.pending]

    def cancel_all(self) -> None:
        for call in self._calls:
            call.cancel()
        self._calls.clear()
