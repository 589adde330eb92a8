"""Supervised periodic task.

Runs an async job on a fixed interval in its own asyncio task. A failing
run is logged and counted; it never kills the loop or reaches the caller.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger()


class PeriodicRunner:
    def __init__(
        self,
        name: str,
        job: Callable[[], Awaitable[Any]],
        interval: float,
        *,
        initial_delay: float = 0.0,
    ) -> None:
        self.name = name
        self._job = job
        self._interval = interval
        self._initial_delay = initial_delay
        self._task: asyncio.Task[None] | None = None
        self._wakeup = asyncio.Event()
        self.failures = 0
        self.last_error: str | None = None
        self.next_run_at: float | None = None

    @property
    def interval(self) -> float:
        return self._interval

    @interval.setter
    def interval(self, seconds: float) -> None:
        self._interval = seconds
        self._wakeup.set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
        logger.info("periodic_started", name=self.name, interval=self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("periodic_stopped", name=self.name)

    async def _sleep(self, seconds: float) -> None:
        """Sleep, re-measuring against the interval whenever it changes."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        while True:
            remaining = seconds - (loop.time() - started)
            if remaining <= 0:
                return
            self.next_run_at = time.time() + remaining
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                return
            seconds = self._interval

    async def _loop(self) -> None:
        if self._initial_delay > 0:
            await self._sleep(self._initial_delay)
        while True:
            await self.run_once()
            await self._sleep(self._interval)

    async def run_once(self) -> Any:
        try:
            return await self._job()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.failures += 1
            self.last_error = repr(exc)
            logger.exception("periodic_run_failed", name=self.name)
            return None
