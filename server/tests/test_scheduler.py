"""Tests for the decay scheduler: single flight, retries, callbacks."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from smoothride.core.decay import DecayStats
from smoothride.core.errors import DependencyUnavailable
from smoothride.jobs.scheduler import DecayScheduler


class ScriptedJob:
    """Fails with the queued exceptions, then succeeds."""

    def __init__(self, failures=(), gate: asyncio.Event | None = None) -> None:
        self.failures = list(failures)
        self.gate = gate
        self.calls = 0

    async def process_all_obstacles(self) -> DecayStats:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            raise self.failures.pop(0)
        return DecayStats(processed=3, decayed=2, expired=1)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.mark.asyncio
async def test_success_notifies_completion():
    sleep = RecordingSleep()
    scheduler = DecayScheduler(ScriptedJob(), sleep=sleep)
    completed = []
    scheduler.on_complete(completed.append)

    stats = await scheduler.run_once()
    assert stats.to_dict() == {"processed": 3, "decayed": 2, "expired": 1, "errors": 0}
    assert completed == [stats]
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_transient_failures_retry_with_backoff():
    job = ScriptedJob(failures=[DependencyUnavailable("down"), DependencyUnavailable("down")])
    sleep = RecordingSleep()
    scheduler = DecayScheduler(job, max_attempts=3, backoff_seconds=2.0, sleep=sleep)

    stats = await scheduler.run_once()
    assert stats is not None
    assert job.calls == 3
    assert sleep.delays == [2.0, 4.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    job = ScriptedJob(failures=[DependencyUnavailable("down")] * 3)
    sleep = RecordingSleep()
    scheduler = DecayScheduler(job, max_attempts=3, sleep=sleep)
    failed = []
    scheduler.on_failed(failed.append)

    with pytest.raises(DependencyUnavailable):
        await scheduler.run_once()
    assert job.calls == 3
    assert len(failed) == 1
    assert not scheduler.running


@pytest.mark.asyncio
async def test_unexpected_errors_are_not_retried():
    job = ScriptedJob(failures=[RuntimeError("bug")])
    scheduler = DecayScheduler(job, sleep=RecordingSleep())
    failed = []
    scheduler.on_failed(failed.append)

    with pytest.raises(RuntimeError):
        await scheduler.run_once()
    assert job.calls == 1
    assert isinstance(failed[0], RuntimeError)


@pytest.mark.asyncio
async def test_overlapping_trigger_is_skipped():
    gate = asyncio.Event()
    job = ScriptedJob(gate=gate)
    scheduler = DecayScheduler(job, sleep=RecordingSleep())

    first = asyncio.create_task(scheduler.run_once())
    await asyncio.sleep(0)
    assert scheduler.running

    assert await scheduler.run_once() is None
    gate.set()
    assert await first is not None
    assert job.calls == 1
    assert not scheduler.running


@pytest.mark.asyncio
async def test_failing_callback_does_not_break_the_run():
    scheduler = DecayScheduler(ScriptedJob(), sleep=RecordingSleep())
    seen = []

    def broken(_stats):
        raise ValueError("callback bug")

    scheduler.on_complete(broken)
    scheduler.on_complete(seen.append)
    assert await scheduler.run_once() is not None
    assert len(seen) == 1


def test_seconds_until_next_run():
    scheduler = DecayScheduler(ScriptedJob(), run_hour_utc=2)
    before = datetime(2024, 6, 1, 1, 30, tzinfo=timezone.utc)
    after = datetime(2024, 6, 1, 2, 0, tzinfo=timezone.utc)
    assert scheduler.seconds_until_next_run(before) == 30 * 60
    assert scheduler.seconds_until_next_run(after) == 24 * 3600


@pytest.mark.asyncio
async def test_run_forever_survives_failed_runs():
    job = ScriptedJob(failures=[RuntimeError("bug")])
    waits = []

    async def sleep(delay):
        waits.append(delay)
        if len(waits) >= 3:
            raise asyncio.CancelledError

    scheduler = DecayScheduler(job, sleep=sleep,
                               clock=lambda: datetime(2024, 6, 1, 1, 0, tzinfo=timezone.utc))
    with pytest.raises(asyncio.CancelledError):
        await scheduler.run_forever()
    # First run failed, second succeeded, third sleep cancelled the loop.
    assert job.calls == 2
    assert waits == [3600.0, 3600.0, 3600.0]
