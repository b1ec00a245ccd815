from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from loguru import logger

Tick = Callable[[], Awaitable[object]]
ErrorHandler = Callable[[Exception], Awaitable[None]]


class PeriodicTask:
    """Run ``tick`` every ``interval`` seconds until stopped.

    The next tick is armed only after the current one has completed, so a
    slow iteration delays the schedule instead of overlapping with itself.
    Stopping is cooperative: ``stop()`` sets an event that the loop checks
    between iterations and waits on while idle. An in-flight tick always
    runs to completion.

    Exceptions from ``tick`` are passed to ``on_error`` (or logged) and never
    end the loop.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        tick: Tick,
        *,
        on_error: Optional[ErrorHandler] = None,
        run_immediately: bool = True,
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.name = name
        self.interval = interval
        self._tick = tick
        self._on_error = on_error
        self._run_immediately = run_immediately
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.iterations = 0
        self.errors = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.warning(f"{self.name} loop already running")
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name=f"ha-tester-{self.name}")
        logger.info(f"🔁 {self.name} loop started (interval: {self.interval:.3f}s)")

    async def stop(self) -> None:
        """Request stop and wait for the in-flight iteration to finish."""
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
            logger.info(f"🛑 {self.name} loop stopped after {self.iterations} iterations")

    async def _wait_interval(self) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            pass

    async def _run(self) -> None:
        if not self._run_immediately:
            await self._wait_interval()

        while not self._stop.is_set():
            try:
                await self._tick()
            except Exception as exc:
                self.errors += 1
                if self._on_error is not None:
                    try:
                        await self._on_error(exc)
                    except Exception as handler_exc:
                        logger.error(f"{self.name} error handler failed: {handler_exc}")
                else:
                    logger.error(f"{self.name} loop error: {type(exc).__name__}: {exc}")
            self.iterations += 1

            if self._stop.is_set():
                break
            await self._wait_interval()
