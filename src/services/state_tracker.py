"""Processing State Tracker: owner of each period's lifecycle record.

Every status change of a :class:`ProcessingPeriod` goes through this
service.  Guards are applied twice:

1. an in-process lock serializes read-check-write sequences and protects
   the table of live runs (one :class:`CancellationToken` per period);
2. the repository write itself is a compare-and-set on the stored status,
   so a second process sharing the database cannot win the same race.

Updates issued by a run whose token is no longer the live one (the period
was reset or re-triggered underneath it) are ignored, so a cancelled
worker cannot resurrect a period an operator just reset.
"""

from __future__ import annotations

import shutil
import threading
from collections.abc import Callable, Iterable
from pathlib import Path

import structlog

from src.interfaces.state_repository import IStateRepository
from src.models.catalog import FileType
from src.models.processing import (
    DOWNLOADABLE_STATUSES,
    REPROCESSABLE_STATUSES,
    FileChecksums,
    FileDownloadInfo,
    ProcessingPeriod,
    ProcessingStats,
    ProcessingStatus,
    StatusReport,
    StepStatus,
    statuses_allowing,
    utcnow,
    validate_period_key,
)
from src.utils.errors import (
    ConfigurationError,
    InvalidTransitionError,
    RunCancelledError,
    StateConflictError,
)
from src.utils.logging import get_logger

_RESETTABLE = frozenset(
    {ProcessingStatus.COMPLETED, ProcessingStatus.FAILED, ProcessingStatus.NOT_STARTED}
)
_STUCK = frozenset({ProcessingStatus.DOWNLOADING, ProcessingStatus.PROCESSING})


class CancellationToken:
    """Cooperative cancellation flag for one live run of a period."""

    def __init__(self, period_key: str, kind: str) -> None:
        self.period_key = period_key
        self.kind = kind
        self._event = threading.Event()
        self.reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelledError(self.reason or "cancelled", period_key=self.period_key)

    def __repr__(self) -> str:
        return f"CancellationToken({self.period_key!r}, {self.kind!r}, cancelled={self.cancelled})"


class ProcessingStateTracker:
    """Lifecycle transitions and live-run bookkeeping for dump periods.

    Parameters
    ----------
    repository:
        Persistence for :class:`ProcessingPeriod` rows.
    data_dir:
        Root of the artifact layout (``<data_dir>/<YYYY-MM>/...``); used by
        :meth:`reset_stuck` to delete partial downloads.
    """

    def __init__(self, repository: IStateRepository, data_dir: str | Path) -> None:
        self._repo = repository
        self._data_dir = Path(data_dir)
        self._lock = threading.RLock()
        self._live: dict[str, CancellationToken] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, period_key: str) -> ProcessingPeriod | None:
        return self._repo.get(self._validate(period_key))

    def get_or_create(self, period_key: str) -> ProcessingPeriod:
        period_key = self._validate(period_key)
        existing = self._repo.get(period_key)
        if existing is not None:
            return existing
        return self._repo.create_if_missing(ProcessingPeriod(year_month=period_key))

    def latest(self) -> ProcessingPeriod | None:
        return self._repo.latest()

    def list_periods(self) -> list[ProcessingPeriod]:
        return self._repo.list_periods()

    def is_active(self, period_key: str) -> bool:
        """True if a run for the period is live in this process."""
        with self._lock:
            return period_key in self._live

    def status_report(self, period_key: str) -> StatusReport | None:
        period = self.get(period_key)
        if period is None:
            return None
        return StatusReport.from_period(period, active=self.is_active(period.year_month))

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def period_dir(self, period_key: str) -> Path:
        return self._data_dir / self._validate(period_key)

    # ------------------------------------------------------------------
    # Download stage
    # ------------------------------------------------------------------

    def begin_download(self, period_key: str) -> CancellationToken:
        """Move the period to ``downloading`` and register a live run.

        Raises
        ------
        StateConflictError
            If a run is live or the status does not allow a new download.
        """
        with self._lock:
            period = self.get_or_create(period_key)
            self._ensure_not_live(period)
            if period.status not in DOWNLOADABLE_STATUSES:
                raise StateConflictError(
                    f"Cannot start download while period is {period.status.value}",
                    period_key=period.year_month,
                )
            updated = period.model_copy(
                update={
                    "status": ProcessingStatus.DOWNLOADING,
                    "started_at": utcnow(),
                    "download_completed_at": None,
                    "processing_completed_at": None,
                    "error_message": None,
                    # New dumps: earlier step results no longer apply.
                    "processing_stats": ProcessingStats(files=period.processing_stats.files),
                }
            )
            self._cas(updated, {period.status}, conflict=True)
            token = self._register(period.year_month, "download")
        self._logger.info("download_started", period_key=period.year_month)
        return token

    def record_checksums(
        self,
        period_key: str,
        checksums: FileChecksums,
        token: CancellationToken | None = None,
    ) -> ProcessingPeriod | None:
        return self._update_in_place(
            period_key, lambda p: p.model_copy(update={"file_checksums": checksums}), token
        )

    def record_file_info(
        self,
        period_key: str,
        file_type: FileType,
        info: FileDownloadInfo,
        token: CancellationToken | None = None,
    ) -> ProcessingPeriod | None:
        return self._update_in_place(
            period_key,
            lambda p: p.model_copy(
                update={"processing_stats": p.processing_stats.with_file(file_type, info)}
            ),
            token,
        )

    def complete_download(
        self, period_key: str, token: CancellationToken | None = None
    ) -> ProcessingPeriod | None:
        with self._lock:
            if not self._owns(period_key, token):
                return None
            period = self._require(period_key)
            updated = period.model_copy(
                update={
                    "status": ProcessingStatus.READY_FOR_PROCESSING,
                    "download_completed_at": utcnow(),
                    "error_message": None,
                }
            )
            self._cas(updated, {ProcessingStatus.DOWNLOADING})
            self._release(period_key, token)
        self._logger.info("download_completed", period_key=period_key)
        return updated

    def download_not_available(
        self, period_key: str, message: str, token: CancellationToken | None = None
    ) -> ProcessingPeriod | None:
        """Dump not published yet: go back to ``not_started`` without a retry."""
        with self._lock:
            if not self._owns(period_key, token):
                return None
            period = self._require(period_key)
            updated = period.model_copy(
                update={
                    "status": ProcessingStatus.NOT_STARTED,
                    "started_at": None,
                    "error_message": message,
                }
            )
            self._cas(updated, {ProcessingStatus.DOWNLOADING})
            self._release(period_key, token)
        self._logger.info("dump_not_available", period_key=period_key, reason=message)
        return updated

    # ------------------------------------------------------------------
    # Processing stage
    # ------------------------------------------------------------------

    def prepare_reprocess(self, period_key: str) -> ProcessingPeriod:
        """Clear step stats and go back to ``ready_for_processing``."""
        with self._lock:
            period = self._require(period_key)
            self._ensure_not_live(period)
            if period.status not in REPROCESSABLE_STATUSES:
                raise StateConflictError(
                    f"Cannot reprocess while period is {period.status.value}",
                    period_key=period.year_month,
                )
            updated = period.model_copy(
                update={
                    "status": ProcessingStatus.READY_FOR_PROCESSING,
                    "processing_completed_at": None,
                    "error_message": None,
                    "processing_stats": ProcessingStats(files=period.processing_stats.files),
                }
            )
            self._cas(updated, {period.status}, conflict=True)
        self._logger.info(
            "reprocess_prepared", period_key=period_key, previous_status=period.status.value
        )
        return updated

    def begin_processing(self, period_key: str) -> CancellationToken:
        """Move the period to ``processing`` and register a live run.

        Allowed from ``ready_for_processing``, from ``failed`` (retry) and
        from ``processing`` with no live run (resume after a crash).
        Completed steps are kept so the run can skip them.
        """
        with self._lock:
            period = self._require(period_key)
            self._ensure_not_live(period)
            allowed = {
                ProcessingStatus.READY_FOR_PROCESSING,
                ProcessingStatus.FAILED,
                ProcessingStatus.PROCESSING,
            }
            if period.status not in allowed:
                raise StateConflictError(
                    f"Cannot start processing while period is {period.status.value}",
                    period_key=period.year_month,
                )
            updated = period.model_copy(
                update={
                    "status": ProcessingStatus.PROCESSING,
                    "started_at": period.started_at or utcnow(),
                    "processing_completed_at": None,
                    "error_message": None,
                }
            )
            self._cas(updated, {period.status}, conflict=True)
            token = self._register(period.year_month, "processing")
        self._logger.info(
            "processing_started", period_key=period_key, resumed_from=period.status.value
        )
        return token

    def record_step(
        self,
        period_key: str,
        file_type: FileType,
        step: StepStatus,
        token: CancellationToken | None = None,
    ) -> bool:
        with self._lock:
            if not self._owns(period_key, token):
                return False
            period = self._require(period_key)
            updated = period.model_copy(
                update={"processing_stats": period.processing_stats.with_step(file_type, step)}
            )
            return self._repo.compare_and_set(updated, {ProcessingStatus.PROCESSING})

    def complete_processing(
        self, period_key: str, token: CancellationToken | None = None
    ) -> ProcessingPeriod | None:
        with self._lock:
            if not self._owns(period_key, token):
                return None
            period = self._require(period_key)
            updated = period.model_copy(
                update={
                    "status": ProcessingStatus.COMPLETED,
                    "processing_completed_at": utcnow(),
                    "error_message": None,
                }
            )
            self._cas(updated, {ProcessingStatus.PROCESSING})
            self._release(period_key, token)
        self._logger.info("processing_completed", period_key=period_key)
        return updated

    def mark_failed(
        self, period_key: str, message: str, token: CancellationToken | None = None
    ) -> ProcessingPeriod | None:
        """Move to ``failed``; every transition into failed bumps ``retry_count``."""
        with self._lock:
            if not self._owns(period_key, token):
                return None
            period = self._require(period_key)
            if period.status == ProcessingStatus.FAILED:
                self._release(period_key, token)
                return period
            allowed = statuses_allowing(ProcessingStatus.FAILED)
            if period.status not in allowed:
                raise InvalidTransitionError(
                    f"Cannot fail a period that is {period.status.value}",
                    period_key=period_key,
                )
            updated = period.model_copy(
                update={
                    "status": ProcessingStatus.FAILED,
                    "retry_count": period.retry_count + 1,
                    "error_message": message,
                }
            )
            self._cas(updated, {period.status})
            self._release(period_key, token)
        self._logger.warning(
            "period_failed", period_key=period_key, error=message, retry_count=updated.retry_count
        )
        return updated

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    def cancel(self, period_key: str, reason: str = "cancelled") -> bool:
        """Set the live run's cancellation flag.  False when nothing is live."""
        with self._lock:
            token = self._live.get(period_key)
        if token is None:
            return False
        token.cancel(reason)
        self._logger.info("run_cancel_requested", period_key=period_key, kind=token.kind)
        return True

    def reset(self, period_key: str) -> ProcessingPeriod:
        """Back to a pristine ``not_started`` row (completed/failed only)."""
        with self._lock:
            period = self.get_or_create(period_key)
            if period.status in _STUCK:
                raise StateConflictError(
                    f"Period is {period.status.value}; use reset-stuck instead",
                    period_key=period.year_month,
                )
            if period.status not in _RESETTABLE:
                raise InvalidTransitionError(
                    f"Cannot reset a period that is {period.status.value}",
                    period_key=period.year_month,
                )
            fresh = ProcessingPeriod(year_month=period.year_month)
            self._cas(fresh, {period.status}, conflict=True)
        self._logger.info(
            "period_reset", period_key=period_key, previous_status=period.status.value
        )
        return fresh

    def reset_stuck(self, period_key: str) -> ProcessingPeriod:
        """Recover a period stuck in ``downloading``/``processing``.

        Cancels any live run, clears all derived fields and deletes the
        artifacts under the period directory.
        """
        with self._lock:
            period = self._require(period_key)
            if period.status not in _STUCK:
                raise InvalidTransitionError(
                    f"Period is {period.status.value}, not downloading or processing",
                    period_key=period.year_month,
                )
            token = self._live.pop(period.year_month, None)
            if token is not None:
                token.cancel("reset")
            fresh = ProcessingPeriod(year_month=period.year_month)
            self._cas(fresh, {period.status}, conflict=True)
        removed = self._delete_artifacts(period.year_month)
        self._logger.warning(
            "stuck_period_reset",
            period_key=period_key,
            previous_status=period.status.value,
            cancelled_live_run=token is not None,
            artifacts_removed=removed,
        )
        return fresh

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(period_key: str) -> str:
        try:
            return validate_period_key(period_key)
        except ValueError as exc:
            raise ConfigurationError(str(exc), period_key=str(period_key)) from exc

    def _require(self, period_key: str) -> ProcessingPeriod:
        period = self.get(period_key)
        if period is None:
            raise InvalidTransitionError(
                "Period has never been downloaded", period_key=period_key
            )
        return period

    def _ensure_not_live(self, period: ProcessingPeriod) -> None:
        live = self._live.get(period.year_month)
        if live is not None:
            raise StateConflictError(
                f"A {live.kind} run is already active", period_key=period.year_month
            )

    def _register(self, period_key: str, kind: str) -> CancellationToken:
        token = CancellationToken(period_key, kind)
        self._live[period_key] = token
        return token

    def _release(self, period_key: str, token: CancellationToken | None) -> None:
        if token is None or self._live.get(period_key) is token:
            self._live.pop(period_key, None)

    def _owns(self, period_key: str, token: CancellationToken | None) -> bool:
        if token is None or self._live.get(period_key) is token:
            return True
        self._logger.warning("stale_run_update_ignored", period_key=period_key, kind=token.kind)
        return False

    def _cas(
        self,
        updated: ProcessingPeriod,
        expected: Iterable[ProcessingStatus],
        conflict: bool = False,
    ) -> None:
        expected = frozenset(expected)
        if self._repo.compare_and_set(updated, expected):
            return
        stored = self._repo.get(updated.year_month)
        current = stored.status.value if stored else "missing"
        message = (
            f"Status changed concurrently to {current}; "
            f"expected one of {sorted(s.value for s in expected)}"
        )
        if conflict:
            raise StateConflictError(message, period_key=updated.year_month)
        raise InvalidTransitionError(message, period_key=updated.year_month)

    def _update_in_place(
        self,
        period_key: str,
        change: Callable[[ProcessingPeriod], ProcessingPeriod],
        token: CancellationToken | None = None,
    ) -> ProcessingPeriod | None:
        with self._lock:
            if not self._owns(period_key, token):
                return None
            period = self._require(period_key)
            updated = change(period)
            self._cas(updated, {period.status})
        return updated

    def _delete_artifacts(self, period_key: str) -> bool:
        target = self._data_dir / period_key
        if not target.exists():
            return False
        shutil.rmtree(target)
        return True
