"""Trigger facade over the download stage, the orchestrator and the state tracker.

Every operator action (scheduled job, CLI command, admin endpoint) goes
through :class:`IngestionService` and gets a :class:`TriggerResult` back.
Requests are validated and the period's state transition is claimed
*before* any file or network I/O, so a bad period key, an unknown file
type, invalid limits or a run already in flight come back as a failed
result without side effects.

Runs are executed inline (``wait=True``) or handed to the
:class:`~src.pipeline.job_registry.JobRegistry` worker pool, in which case
the returned result only confirms that the run started; progress and the
final outcome are observable through the progress publisher and
:meth:`IngestionService.get_status`.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from datetime import date, datetime, timezone
from functools import partial
from typing import Any

import structlog
from pydantic import ValidationError

from src.models.catalog import PROCESSING_ORDER, FileType, order_file_types, parse_file_type
from src.models.ingestion import Limits, ProgressEvent, RunStage, TriggerResult
from src.models.processing import (
    FileDownloadInfo,
    FileDownloadStatus,
    ProcessingStatus,
    StatusReport,
    validate_period_key,
)
from src.pipeline.job_registry import JobRegistry
from src.pipeline.orchestrator import IngestionOrchestrator
from src.pipeline.progress_tracker import ProgressPublisher
from src.providers.download.discogs_dump_downloader import DiscogsDumpDownloader
from src.services.state_tracker import CancellationToken, ProcessingStateTracker
from src.utils.errors import (
    CatalogIngestError,
    ChecksumMismatchError,
    ConfigurationError,
    DownloadError,
    DumpNotAvailableError,
    InvalidTransitionError,
    RunCancelledError,
    StateConflictError,
    StoreUnavailableError,
)
from src.utils.logging import bind_run_context, get_logger

# Most specific first: the first matching class wins.
_ERROR_CODES: tuple[tuple[type[CatalogIngestError], str], ...] = (
    (ConfigurationError, "invalid_argument"),
    (StateConflictError, "state_conflict"),
    (InvalidTransitionError, "invalid_transition"),
    (StoreUnavailableError, "store_unavailable"),
    (DumpNotAvailableError, "not_available"),
    (ChecksumMismatchError, "checksum_mismatch"),
    (DownloadError, "download_failed"),
    (RunCancelledError, "cancelled"),
)

_PERIOD_DIR_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

# Statuses for which the daily download check has nothing to do.
_DOWNLOAD_DONE = frozenset(
    {
        ProcessingStatus.DOWNLOADING,
        ProcessingStatus.READY_FOR_PROCESSING,
        ProcessingStatus.PROCESSING,
        ProcessingStatus.COMPLETED,
    }
)

DOWNLOAD_CHECK_JOB = "download_check"
PROCESSING_CHECK_JOB = "processing_check"


def error_code_for(exc: CatalogIngestError) -> str:
    for error_type, code in _ERROR_CODES:
        if isinstance(exc, error_type):
            return code
    return "ingest_error"


def _today_utc() -> date:
    return datetime.now(tz=timezone.utc).date()  # noqa: UP017


class IngestionService:
    """Operator-facing trigger surface for the ingestion pipeline.

    Parameters
    ----------
    tracker:
        Owner of the per-period lifecycle.
    orchestrator:
        Runs the decode/classify/write pipeline.
    downloader:
        Fetches a period's dumps.
    progress:
        Publisher for download-stage progress events (the orchestrator
        publishes its own).
    jobs:
        Worker pool for background runs; ``None`` runs everything inline.
    default_limits:
        Limits applied when a caller passes none.
    auto_process_after_download:
        Chain a full processing run after a successful download.
    today:
        Clock for the daily download check, replaceable in tests.
    """

    def __init__(
        self,
        tracker: ProcessingStateTracker,
        orchestrator: IngestionOrchestrator,
        downloader: DiscogsDumpDownloader,
        progress: ProgressPublisher,
        jobs: JobRegistry | None = None,
        default_limits: Limits | None = None,
        auto_process_after_download: bool = True,
        today: Callable[[], date] = _today_utc,
    ) -> None:
        self._tracker = tracker
        self._orchestrator = orchestrator
        self._downloader = downloader
        self._progress = progress
        self._jobs = jobs
        self._default_limits = default_limits or Limits()
        self._auto_process = auto_process_after_download
        self._today = today
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Trigger surface
    # ------------------------------------------------------------------

    def trigger_download(self, period_key: str | None = None, wait: bool = False) -> TriggerResult:
        """Download (and by default then process) a period's dumps.

        ``period_key`` defaults to the current month.
        """
        try:
            if period_key is None:
                key = self._current_period_key()
            else:
                key = self._period_key(period_key)
            token = self._tracker.begin_download(key)
        except CatalogIngestError as exc:
            return self._rejected("trigger_download", exc, period_key)
        return self._dispatch(
            f"download:{key}", key, token, partial(self._download_run, key, token), wait
        )

    def trigger_reprocess(
        self,
        period_key: str,
        file_types: Iterable[FileType | str] | None = None,
        limits: Limits | Mapping[str, Any] | None = None,
        wait: bool = False,
    ) -> TriggerResult:
        """Clear the period's step stats and process it again from scratch."""
        try:
            key = self._period_key(period_key)
            order = self._file_types(file_types)
            run_limits = self._limits(limits)
            self._tracker.prepare_reprocess(key)
            token = self._tracker.begin_processing(key)
        except CatalogIngestError as exc:
            return self._rejected("trigger_reprocess", exc, period_key)
        run = partial(self._process_run, key, order, run_limits, token)
        return self._dispatch(f"reprocess:{key}", key, token, run, wait)

    def process(
        self,
        file_types: Iterable[FileType | str] | None,
        limits: Limits | Mapping[str, Any] | None = None,
        period_key: str | None = None,
        wait: bool = True,
    ) -> TriggerResult:
        """Ingest a downloaded period, resuming after its completed steps.

        ``period_key`` defaults to the latest tracked period.
        """
        try:
            order = self._file_types(file_types)
            run_limits = self._limits(limits)
            if period_key is None:
                key = self._latest_tracked_key()
            else:
                key = self._period_key(period_key)
            if key is None:
                return TriggerResult.failure("No dump period has been downloaded yet", "not_found")
            token = self._tracker.begin_processing(key)
        except CatalogIngestError as exc:
            return self._rejected("process", exc, period_key)
        run = partial(self._process_run, key, order, run_limits, token)
        return self._dispatch(f"process:{key}", key, token, run, wait)

    def parse(
        self,
        file_types: Iterable[FileType | str] | None,
        limits: Limits | Mapping[str, Any] | None = None,
        period_key: str | None = None,
    ) -> TriggerResult:
        """Decode and classify without writing; reports what ``process`` would do.

        ``period_key`` defaults to the latest period with artifacts on disk.
        Never changes the period's state.
        """
        try:
            order = self._file_types(file_types)
            run_limits = self._limits(limits)
            if period_key is None:
                key = self._latest_artifact_key()
            else:
                key = self._period_key(period_key)
            if key is None:
                return TriggerResult.failure("No dump files found to parse", "not_found")
        except CatalogIngestError as exc:
            return self._rejected("parse", exc, period_key)

        summary = self._orchestrator.parse(key, order, run_limits)
        message = "Parse completed" if summary.success else "Parse finished with errors"
        if summary.error_message:
            message = f"{message}: {summary.error_message}"
        return TriggerResult.from_summary(summary, message)

    def reset_stuck_download(self, period_key: str) -> TriggerResult:
        """Recover a period stuck in downloading/processing; deletes its artifacts."""
        try:
            key = self._period_key(period_key)
            previous = self._tracker.get(key)
            self._tracker.reset_stuck(key)
        except CatalogIngestError as exc:
            return self._rejected("reset_stuck_download", exc, period_key)
        was = previous.status.value if previous else "missing"
        return TriggerResult(
            success=True, message=f"Period reset from {was} to not_started", period_key=key
        )

    def reset(self, period_key: str) -> TriggerResult:
        try:
            key = self._period_key(period_key)
            self._tracker.reset(key)
        except CatalogIngestError as exc:
            return self._rejected("reset", exc, period_key)
        return TriggerResult(success=True, message="Period reset to not_started", period_key=key)

    def cancel(self, period_key: str) -> TriggerResult:
        try:
            key = self._period_key(period_key)
        except CatalogIngestError as exc:
            return self._rejected("cancel", exc, period_key)
        if not self._tracker.cancel(key, "cancelled by operator"):
            return TriggerResult.failure("No active run for this period", "not_found", key)
        return TriggerResult(
            success=True,
            message="Cancellation requested; the run stops after its current batch",
            period_key=key,
        )

    def get_status(self, period_key: str | None = None) -> StatusReport | None:
        """State of one period, or of the latest one; None if never tracked.

        Raises
        ------
        ConfigurationError
            If ``period_key`` is not ``YYYY-MM``.
        """
        if period_key is None:
            latest = self._tracker.latest()
            if latest is None:
                return None
            period_key = latest.year_month
        return self._tracker.status_report(self._period_key(period_key))

    def list_statuses(self) -> list[StatusReport]:
        return [
            StatusReport.from_period(p, active=self._tracker.is_active(p.year_month))
            for p in self._tracker.list_periods()
        ]

    # ------------------------------------------------------------------
    # Scheduled jobs
    # ------------------------------------------------------------------

    def register_jobs(
        self,
        jobs: JobRegistry,
        download_interval_seconds: float,
        processing_interval_seconds: float,
    ) -> None:
        """Register the periodic download and processing checks."""
        jobs.register(
            DOWNLOAD_CHECK_JOB,
            self.run_download_check,
            interval_seconds=download_interval_seconds,
            run_immediately=True,
        )
        jobs.register(
            PROCESSING_CHECK_JOB,
            self.run_processing_check,
            interval_seconds=processing_interval_seconds,
        )

    def run_download_check(self) -> TriggerResult | None:
        """Daily check: download the current month unless it is already in hand."""
        key = self._current_period_key()
        period = self._tracker.get(key)
        if period is not None and period.status in _DOWNLOAD_DONE:
            self._logger.debug("download_check_skipped", period_key=key, status=period.status.value)
            return None
        result = self.trigger_download(key, wait=True)
        self._log_result("download_check", result)
        return result

    def run_processing_check(self) -> TriggerResult | None:
        """Process the latest period if it is ready or was interrupted mid-run."""
        latest = self._tracker.latest()
        if latest is None:
            return None
        key = latest.year_month
        ready = latest.status == ProcessingStatus.READY_FOR_PROCESSING
        interrupted = (
            latest.status == ProcessingStatus.PROCESSING and not self._tracker.is_active(key)
        )
        if not (ready or interrupted):
            return None
        result = self.process(list(PROCESSING_ORDER), None, period_key=key, wait=True)
        self._log_result("processing_check", result)
        return result

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def _download_run(self, period_key: str, token: CancellationToken) -> TriggerResult:
        with bind_run_context(period_key=period_key):
            try:
                self._download_files(period_key, token)
            except DumpNotAvailableError as exc:
                self._tracker.download_not_available(period_key, exc.message, token)
                return TriggerResult.failure(exc.message, "not_available", period_key)
            except (DownloadError, RunCancelledError) as exc:
                self._tracker.mark_failed(period_key, exc.message, token)
                self._publish(period_key, None, RunStage.ERRORED, error=exc.message)
                return TriggerResult.failure(exc.message, error_code_for(exc), period_key)
            except Exception as exc:
                self._tracker.mark_failed(period_key, str(exc), token)
                raise

            if self._tracker.complete_download(period_key, token) is None:
                return TriggerResult.failure(
                    "Period was reset while downloading", "state_conflict", period_key
                )

        if not self._auto_process:
            return TriggerResult(success=True, message="Download completed", period_key=period_key)
        return self.process(list(PROCESSING_ORDER), None, period_key=period_key, wait=True)

    def _download_files(self, period_key: str, token: CancellationToken) -> None:
        checksums = self._downloader.fetch_checksums(period_key)
        self._tracker.record_checksums(period_key, checksums, token)
        for file_type in PROCESSING_ORDER:
            token.raise_if_cancelled()
            started = FileDownloadInfo(status=FileDownloadStatus.DOWNLOADING)
            self._tracker.record_file_info(period_key, file_type, started, token)
            try:
                info = self._downloader.download_file(
                    period_key,
                    file_type,
                    checksums.for_file(file_type),
                    is_cancelled=lambda: token.cancelled,
                    on_progress=partial(self._publish_download, period_key),
                )
            except DownloadError as exc:
                failed = FileDownloadInfo(
                    status=FileDownloadStatus.FAILED, error_message=exc.message
                )
                self._tracker.record_file_info(period_key, file_type, failed, token)
                raise
            self._tracker.record_file_info(period_key, file_type, info, token)

    def _process_run(
        self,
        period_key: str,
        file_types: list[FileType],
        limits: Limits,
        token: CancellationToken,
    ) -> TriggerResult:
        try:
            summary = self._orchestrator.process(period_key, file_types, limits, token=token)
        except Exception as exc:
            self._tracker.mark_failed(period_key, str(exc), token)
            raise
        if summary.success:
            message = "Processing completed"
        elif summary.cancelled:
            message = "Processing cancelled"
        else:
            message = f"Processing failed: {summary.error_message}"
        return TriggerResult.from_summary(summary, message)

    def _dispatch(
        self,
        job_name: str,
        period_key: str,
        token: CancellationToken,
        run: Callable[[], TriggerResult],
        wait: bool,
    ) -> TriggerResult:
        if wait or self._jobs is None:
            return run()
        try:
            self._jobs.submit(job_name, run)
        except ConfigurationError as exc:
            self._tracker.mark_failed(period_key, exc.message, token)
            return self._rejected(job_name, exc, period_key)
        return TriggerResult(success=True, message=f"{job_name} started", period_key=period_key)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _period_key(value: str) -> str:
        try:
            return validate_period_key(value)
        except ValueError as exc:
            raise ConfigurationError(str(exc), period_key=str(value)) from exc

    @staticmethod
    def _file_types(values: Iterable[FileType | str] | None) -> list[FileType]:
        if values is None:
            return list(PROCESSING_ORDER)
        parsed: list[FileType] = []
        for value in values:
            try:
                parsed.append(parse_file_type(value))
            except (ValueError, AttributeError) as exc:
                raise ConfigurationError(f"Unknown file type {value!r}") from exc
        order = order_file_types(parsed)
        if not order:
            raise ConfigurationError("At least one file type must be requested")
        return order

    def _limits(self, limits: Limits | Mapping[str, Any] | None) -> Limits:
        if limits is None:
            return self._default_limits
        if isinstance(limits, Limits):
            return limits
        try:
            return Limits.model_validate({**self._default_limits.model_dump(), **dict(limits)})
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid limits: {exc.errors()[0]['msg']}") from exc

    def _current_period_key(self) -> str:
        return self._today().strftime("%Y-%m")

    def _latest_tracked_key(self) -> str | None:
        latest = self._tracker.latest()
        return latest.year_month if latest else None

    def _latest_artifact_key(self) -> str | None:
        tracked = self._latest_tracked_key()
        if tracked is not None:
            return tracked
        root = self._tracker.data_dir
        if not root.is_dir():
            return None
        keys = sorted(
            (p.name for p in root.iterdir() if p.is_dir() and _PERIOD_DIR_RE.match(p.name)),
            reverse=True,
        )
        return keys[0] if keys else None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _rejected(
        self, action: str, exc: CatalogIngestError, period_key: str | None
    ) -> TriggerResult:
        code = error_code_for(exc)
        self._logger.warning(
            "trigger_rejected",
            action=action,
            period_key=exc.period_key or period_key,
            error_code=code,
            error=exc.message,
        )
        return TriggerResult.failure(exc.message, code, exc.period_key or period_key)

    def _log_result(self, job: str, result: TriggerResult) -> None:
        self._logger.info(
            "scheduled_check_finished",
            job=job,
            period_key=result.period_key,
            success=result.success,
            error_code=result.error_code,
            message=result.message,
        )

    def _publish_download(
        self, period_key: str, file_type: FileType, downloaded: int, total: int | None
    ) -> None:
        self._publish(period_key, file_type, RunStage.DOWNLOADING, downloaded, total)

    def _publish(
        self,
        period_key: str,
        file_type: FileType | None,
        stage: RunStage,
        processed: int = 0,
        total: int | None = None,
        error: str | None = None,
    ) -> None:
        percentage = round(min(100.0, processed / total * 100.0), 1) if total else None
        self._progress.publish(
            ProgressEvent(
                period_key=period_key,
                file_type=file_type,
                stage=stage,
                records_processed=processed,
                total_records=total,
                percentage=percentage,
                error_message=error,
            )
        )
