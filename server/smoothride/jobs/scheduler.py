"""Daily scheduler for the decay job.

Runs as a background asyncio task started by the app lifespan. At most one
decay pass is in flight at a time; a trigger that arrives while a pass is
running is skipped. Transient failures (DependencyUnavailable) are retried
with exponential backoff.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from smoothride.core.errors import DependencyUnavailable
from smoothride.core.models import utcnow

if TYPE_CHECKING:
    from smoothride.core.decay import DecayJob, DecayStats

log = structlog.get_logger()

CompleteCallback = Callable[["DecayStats"], None]
FailedCallback = Callable[[BaseException], None]


class DecayScheduler:
    def __init__(
        self,
        job: DecayJob,
        *,
        run_hour_utc: int = 2,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._job = job
        self._run_hour = run_hour_utc
        self._max_attempts = max_attempts
        self._backoff = backoff_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._on_complete: list[CompleteCallback] = []
        self._on_failed: list[FailedCallback] = []

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def on_complete(self, callback: CompleteCallback) -> None:
        self._on_complete.append(callback)

    def on_failed(self, callback: FailedCallback) -> None:
        self._on_failed.append(callback)

    def _notify(self, callbacks, arg) -> None:
        for cb in callbacks:
            try:
                cb(arg)
            except Exception:
                log.error("decay_callback_failed", callback=repr(cb), exc_info=True)

    async def run_once(self) -> DecayStats | None:
        """Run one decay pass now. Returns None if a pass is already running."""
        if self._lock.locked():
            log.info("decay_run_skipped", reason="already_running")
            return None
        async with self._lock:
            return await self._run_with_retries()

    async def _run_with_retries(self) -> DecayStats:
        attempt = 1
        while True:
            try:
                stats = await self._job.process_all_obstacles()
            except DependencyUnavailable as e:
                if attempt >= self._max_attempts:
                    log.error("decay_run_failed", attempts=attempt, error=str(e))
                    self._notify(self._on_failed, e)
                    raise
                delay = self._backoff * 2 ** (attempt - 1)
                log.warning("decay_run_retrying", attempt=attempt,
                            delay_seconds=delay, error=str(e))
                await self._sleep(delay)
                attempt += 1
            except Exception as e:
                log.error("decay_run_failed", attempts=attempt, exc_info=True)
                self._notify(self._on_failed, e)
                raise
            else:
                log.info("decay_run_completed", attempts=attempt, **stats.to_dict())
                self._notify(self._on_complete, stats)
                return stats

    def seconds_until_next_run(self, now: datetime) -> float:
        next_run = now.replace(hour=self._run_hour, minute=0, second=0, microsecond=0)
        if next_run <= now:
            next_run += timedelta(days=1)
        return (next_run - now).total_seconds()

    async def run_forever(self) -> None:
        """Sleep until the daily run hour, run, repeat. Cancel to stop."""
        log.info("decay_scheduler_started", run_hour_utc=self._run_hour)
        while True:
            await self._sleep(self.seconds_until_next_run(self._clock()))
            try:
                await self.run_once()
            except Exception as e:
                # Details were logged by run_once; wait for the next slot.
                log.info("decay_run_deferred", error=type(e).__name__)
