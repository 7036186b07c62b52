"""Unit tests for the background JobRegistry."""

from __future__ import annotations

import threading
from collections.abc import Iterator

import pytest

from src.pipeline.job_registry import JobRegistry
from src.utils.errors import ConfigurationError


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def registry(clock: FakeClock) -> Iterator[JobRegistry]:
    jobs = JobRegistry(workers=2, clock=clock, tick_seconds=0.01)
    yield jobs
    jobs.stop(wait_for_jobs=True)


# ======================================================================
# Submission
# ======================================================================


class TestSubmit:
    def test_submit_returns_result(self, registry: JobRegistry) -> None:
        future = registry.submit("add", lambda a, b: a + b, 2, 3)
        assert future.result(timeout=5) == 5

    def test_exceptions_surface_on_future(self, registry: JobRegistry) -> None:
        def boom() -> None:
            raise ValueError("bad run")

        future = registry.submit("boom", boom)
        with pytest.raises(ValueError, match="bad run"):
            future.result(timeout=5)

    def test_submit_after_stop_is_rejected(self, registry: JobRegistry) -> None:
        registry.stop()
        with pytest.raises(ConfigurationError):
            registry.submit("late", lambda: None)

    def test_join_waits_for_work(self, registry: JobRegistry) -> None:
        release = threading.Event()
        registry.submit("slow", release.wait, 5)
        assert registry.join(timeout=0.05) is False
        release.set()
        assert registry.join(timeout=5) is True


# ======================================================================
# Periodic jobs
# ======================================================================


class TestPeriodicJobs:
    def test_job_runs_when_interval_elapses(self, registry: JobRegistry, clock: FakeClock) -> None:
        runs: list[float] = []
        registry.register("check", lambda: runs.append(clock.now), interval_seconds=60)

        assert registry.run_due() == []
        clock.now += 61
        assert registry.run_due() == ["check"]
        registry.join(timeout=5)

        assert len(runs) == 1

    def test_run_immediately(self, registry: JobRegistry) -> None:
        registry.register("now", lambda: None, interval_seconds=60, run_immediately=True)
        assert registry.run_due() == ["now"]

    def test_not_resubmitted_while_running(self, registry: JobRegistry, clock: FakeClock) -> None:
        release = threading.Event()
        registry.register("slow", lambda: release.wait(5), interval_seconds=1, run_immediately=True)

        assert registry.run_due() == ["slow"]
        clock.now += 10
        assert registry.run_due() == []
        assert registry.is_running("slow")

        release.set()
        registry.join(timeout=5)
        assert not registry.is_running("slow")

    def test_trigger_returns_in_flight_future(self, registry: JobRegistry) -> None:
        release = threading.Event()
        registry.register("manual", lambda: release.wait(5))

        first = registry.trigger("manual")
        second = registry.trigger("manual")
        release.set()

        assert first is second

    def test_trigger_unknown_job(self, registry: JobRegistry) -> None:
        with pytest.raises(ConfigurationError):
            registry.trigger("missing")

    def test_interval_must_be_positive(self, registry: JobRegistry) -> None:
        with pytest.raises(ConfigurationError):
            registry.register("bad", lambda: None, interval_seconds=0)

    def test_scheduler_thread_runs_due_jobs(self) -> None:
        ran = threading.Event()
        jobs = JobRegistry(workers=1, tick_seconds=0.01)
        try:
            jobs.register("tick", ran.set, interval_seconds=3600, run_immediately=True)
            jobs.start()
            assert jobs.started
            assert ran.wait(timeout=5)
        finally:
            jobs.stop()
        assert not jobs.started

    def test_job_names_sorted(self, registry: JobRegistry) -> None:
        registry.register("b", lambda: None)
        registry.register("a", lambda: None)
        assert registry.job_names() == ["a", "b"]
