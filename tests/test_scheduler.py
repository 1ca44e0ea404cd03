"""Tests for the scheduler loop."""

import asyncio
from datetime import timedelta

import pytest

from kiyoshi.scheduler import Scheduler


class FakeJob:
    """Job stand-in with a scripted sequence of waits."""

    def __init__(self, name: str, *waits: timedelta | None):
        self.name = name
        self.schedule = "0 * * * * *"
        self.waits = list(waits)
        self.fired = 0
        self.cancelled = False

    def until_next_fire(self) -> timedelta | None:
        if len(self.waits) > 1:
            return self.waits.pop(0)
        return self.waits[0] if self.waits else None

    def fire(self) -> None:
        self.fired += 1

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def in_flight(self) -> int:
        return 0


def make_scheduler(*jobs) -> Scheduler:
    scheduler = Scheduler()
    for job in jobs:
        scheduler.add(job)
    return scheduler


class TestNextTick:
    """Tests for choosing the next jobs to fire."""

    def test_picks_the_soonest_job(self):
        soon = FakeJob("soon", timedelta(seconds=1))
        later = FakeJob("later", timedelta(seconds=2))

        assert make_scheduler(later, soon).next_tick() == (timedelta(seconds=1), [soon])

    def test_jobs_due_in_the_same_millisecond_fire_together(self):
        """Should group jobs whose waits only differ below one millisecond."""
        a = FakeJob("a", timedelta(milliseconds=1500, microseconds=200))
        b = FakeJob("b", timedelta(milliseconds=1500, microseconds=700))
        c = FakeJob("c", timedelta(milliseconds=1501))

        duration, jobs = make_scheduler(a, b, c).next_tick()

        assert duration == timedelta(milliseconds=1500)
        assert jobs == [a, b]

    def test_exhausted_jobs_are_ignored(self):
        done = FakeJob("done", None)
        live = FakeJob("live", timedelta(seconds=3))

        assert make_scheduler(done, live).next_tick() == (timedelta(seconds=3), [live])

    def test_nothing_to_run(self):
        """Should return None with no jobs or only exhausted jobs."""
        assert Scheduler().next_tick() is None
        assert make_scheduler(FakeJob("done", None)).next_tick() is None


class TestRunLoop:
    """Tests for running and stopping the loop."""

    async def test_fires_due_jobs_then_stops_when_exhausted(self):
        job = FakeJob("once", timedelta(0), None)
        scheduler = make_scheduler(job)

        await asyncio.wait_for(scheduler.run(), timeout=1)

        assert job.fired == 1
        assert scheduler.status()["running"] is False

    async def test_fires_all_tied_jobs(self):
        a = FakeJob("a", timedelta(0), None)
        b = FakeJob("b", timedelta(0), None)

        await asyncio.wait_for(make_scheduler(a, b).run(), timeout=1)

        assert (a.fired, b.fired) == (1, 1)

    async def test_stop_cancels_loop_and_in_flight_work(self):
        job = FakeJob("slow", timedelta(hours=1))
        scheduler = make_scheduler(job)

        task = scheduler.start()
        await asyncio.sleep(0)
        assert scheduler.status() == {"running": True, "jobs": 1, "in_flight": 0}

        scheduler.stop()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert job.cancelled
        assert job.fired == 0
