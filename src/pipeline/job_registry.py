"""Background job registry with periodic "daily check" scheduling.

Owns a :class:`~concurrent.futures.ThreadPoolExecutor` on which every
ingestion run executes (thread-per-run) and a small scheduler thread that
submits registered periodic jobs when their interval elapses.  A periodic
job is never submitted again while its previous run is still in flight.

The registry is a plain value created by the composition root and started
and stopped explicitly; nothing is scheduled at import time.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any

import structlog

from src.utils.errors import ConfigurationError
from src.utils.logging import get_logger

_SCHEDULER_TICK = 1.0  # seconds


@dataclass
class _Job:
    name: str
    fn: Callable[[], Any]
    interval_seconds: float | None
    next_run_at: float
    future: Future | None = None


class JobRegistry:
    """Named background jobs on a shared worker pool.

    Parameters
    ----------
    workers:
        Size of the worker pool; also the maximum number of concurrent runs.
    clock:
        Monotonic clock, replaceable in tests.
    tick_seconds:
        How often the scheduler thread looks for due jobs.
    """

    def __init__(
        self,
        workers: int = 2,
        clock: Callable[[], float] = time.monotonic,
        tick_seconds: float = _SCHEDULER_TICK,
    ) -> None:
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest-job")
        self._clock = clock
        self._tick = tick_seconds
        self._jobs: dict[str, _Job] = {}
        self._futures: set[Future] = set()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._scheduler: threading.Thread | None = None
        self._shut_down = False
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        fn: Callable[[], Any],
        interval_seconds: float | None = None,
        run_immediately: bool = False,
    ) -> None:
        """Register a named job; periodic when ``interval_seconds`` is set."""
        if interval_seconds is not None and interval_seconds <= 0:
            raise ConfigurationError(f"Job {name!r} interval must be positive")
        first = self._clock() if run_immediately else self._clock() + (interval_seconds or 0)
        with self._lock:
            self._jobs[name] = _Job(name, fn, interval_seconds, first)
        self._logger.info("job_registered", job=name, interval_seconds=interval_seconds)

    def job_names(self) -> list[str]:
        with self._lock:
            return sorted(self._jobs)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """Run ``fn`` on the worker pool; failures are logged, never lost."""
        if self._shut_down:
            raise ConfigurationError("Job registry has been stopped")
        future = self._executor.submit(self._run, name, fn, *args, **kwargs)
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._forget)
        return future

    def trigger(self, name: str) -> Future:
        """Run a registered job now, or return its in-flight future."""
        with self._lock:
            job = self._jobs.get(name)
            if job is None:
                raise ConfigurationError(f"Unknown job {name!r}")
            if job.future is not None and not job.future.done():
                return job.future
        future = self.submit(name, job.fn)
        with self._lock:
            job.future = future
            if job.interval_seconds is not None:
                job.next_run_at = self._clock() + job.interval_seconds
        return future

    def run_due(self) -> list[str]:
        """Submit every periodic job whose interval elapsed; return their names."""
        now = self._clock()
        with self._lock:
            due = [
                job.name
                for job in self._jobs.values()
                if job.interval_seconds is not None
                and job.next_run_at <= now
                and (job.future is None or job.future.done())
            ]
        for name in due:
            self.trigger(name)
        return due

    def is_running(self, name: str) -> bool:
        with self._lock:
            job = self._jobs.get(name)
            return job is not None and job.future is not None and not job.future.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def started(self) -> bool:
        return self._scheduler is not None and self._scheduler.is_alive()

    def start(self) -> None:
        """Start the scheduler thread (idempotent)."""
        if self.started:
            return
        self._stop.clear()
        self._scheduler = threading.Thread(
            target=self._schedule_loop, name="ingest-scheduler", daemon=True
        )
        self._scheduler.start()
        self._logger.info("job_scheduler_started", jobs=self.job_names())

    def stop(self, wait_for_jobs: bool = True) -> None:
        """Stop scheduling and shut the worker pool down."""
        self._stop.set()
        if self._scheduler is not None:
            self._scheduler.join(timeout=self._tick * 5)
            self._scheduler = None
        self._shut_down = True
        self._executor.shutdown(wait=wait_for_jobs)
        self._logger.info("job_scheduler_stopped")

    def join(self, timeout: float | None = None) -> bool:
        """Wait for all submitted work; True if everything finished."""
        with self._lock:
            pending = list(self._futures)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _schedule_loop(self) -> None:
        while not self._stop.wait(self._tick):
            try:
                self.run_due()
            except ConfigurationError:
                # Registry stopped between the wait and the submit.
                break

    def _run(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        started = time.monotonic()
        self._logger.info("job_started", job=name)
        try:
            result = fn(*args, **kwargs)
        except Exception:
            self._logger.exception("job_failed", job=name)
            raise
        self._logger.info("job_finished", job=name, elapsed_s=round(time.monotonic() - started, 2))
        return result

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)
