"""Unit tests for the IngestionService trigger facade."""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Iterator
from datetime import date
from pathlib import Path

import httpx
import pytest

from src.models.catalog import FileType
from src.models.processing import FileDownloadInfo, FileDownloadStatus, ProcessingStatus
from src.pipeline.job_registry import JobRegistry
from src.pipeline.orchestrator import IngestionOrchestrator
from src.pipeline.progress_tracker import ProgressPublisher
from src.providers.download.discogs_dump_downloader import DiscogsDumpDownloader
from src.services.ingestion_service import (
    DOWNLOAD_CHECK_JOB,
    PROCESSING_CHECK_JOB,
    IngestionService,
    error_code_for,
)
from src.services.state_tracker import ProcessingStateTracker
from src.utils.errors import (
    BatchWriteError,
    ChecksumMismatchError,
    ConfigurationError,
    DownloadError,
    DumpNotAvailableError,
    StateConflictError,
)

KEY = "2026-09"
Handler = Callable[[httpx.Request], httpx.Response]


class RecordingHandler:
    """MockTransport handler that records requests and delegates to ``respond``."""

    def __init__(self, respond: Handler | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self._respond = respond or (lambda _r: httpx.Response(404))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._respond(request)


@pytest.fixture()
def make_service(
    tracker: ProcessingStateTracker,
    orchestrator: IngestionOrchestrator,
    progress: ProgressPublisher,
    data_dir: Path,
) -> Iterator[Callable[..., IngestionService]]:
    downloaders: list[DiscogsDumpDownloader] = []

    def _make(
        handler: Handler | None = None,
        jobs: JobRegistry | None = None,
        auto_process: bool = False,
    ) -> IngestionService:
        downloader = DiscogsDumpDownloader(
            data_dir=data_dir,
            base_url="https://dumps.test/data",
            http_client=httpx.Client(transport=httpx.MockTransport(handler or RecordingHandler())),
            sleep=lambda _s: None,
        )
        downloaders.append(downloader)
        return IngestionService(
            tracker=tracker,
            orchestrator=orchestrator,
            downloader=downloader,
            progress=progress,
            jobs=jobs,
            auto_process_after_download=auto_process,
            today=lambda: date(2026, 9, 15),
        )

    yield _make
    for downloader in downloaders:
        downloader.close()


# ======================================================================
# Error codes
# ======================================================================


class TestErrorCodes:
    @pytest.mark.parametrize(
        ("exc", "code"),
        [
            (ConfigurationError(), "invalid_argument"),
            (StateConflictError(), "state_conflict"),
            (DumpNotAvailableError(), "not_available"),
            (ChecksumMismatchError(), "checksum_mismatch"),
            (DownloadError(), "download_failed"),
            (BatchWriteError(), "ingest_error"),
        ],
    )
    def test_mapping(self, exc: Exception, code: str) -> None:
        assert error_code_for(exc) == code


# ======================================================================
# Validation before any I/O
# ======================================================================


class TestValidation:
    def test_bad_period_key(self, make_service, tracker: ProcessingStateTracker) -> None:
        handler = RecordingHandler()
        result = make_service(handler).trigger_download("2026-9")

        assert not result.success
        assert result.error_code == "invalid_argument"
        assert handler.requests == []
        assert tracker.list_periods() == []

    def test_unknown_file_type(self, make_service, ready_period) -> None:
        ready_period(KEY)
        result = make_service().process(["artists", "tracks"], period_key=KEY)
        assert result.error_code == "invalid_argument"
        assert "tracks" in result.message

    def test_empty_file_type_list(self, make_service, ready_period) -> None:
        ready_period(KEY)
        result = make_service().process([], period_key=KEY)
        assert result.error_code == "invalid_argument"

    def test_invalid_limits(self, make_service, ready_period, tracker) -> None:
        ready_period(KEY)
        result = make_service().process(None, {"max_batch_size": 0}, period_key=KEY)

        assert result.error_code == "invalid_argument"
        assert tracker.get(KEY).status == ProcessingStatus.READY_FOR_PROCESSING

    def test_download_while_downloading(self, make_service, tracker) -> None:
        token = tracker.begin_download(KEY)
        tracker.record_file_info(
            KEY,
            FileType.LABELS,
            FileDownloadInfo(status=FileDownloadStatus.DOWNLOADING, size=1024),
            token,
        )
        before = tracker.get(KEY)
        handler = RecordingHandler()

        result = make_service(handler).trigger_download(KEY)

        assert result.error_code == "state_conflict"
        assert handler.requests == []
        after = tracker.get(KEY)
        assert after == before
        assert after.processing_stats.files[FileType.LABELS].size == 1024
        assert tracker.is_active(KEY)
        assert not token.cancelled

    def test_process_before_download(self, make_service, tracker) -> None:
        tracker.get_or_create(KEY)
        result = make_service().process(None, period_key=KEY)
        assert result.error_code == "state_conflict"

    def test_reprocess_never_downloaded(self, make_service) -> None:
        result = make_service().trigger_reprocess(KEY)
        assert result.error_code == "invalid_transition"

    def test_process_with_nothing_tracked(self, make_service) -> None:
        result = make_service().process(None)
        assert result.error_code == "not_found"

    def test_cancel_without_run(self, make_service) -> None:
        assert make_service().cancel(KEY).error_code == "not_found"

    def test_get_status_rejects_bad_key(self, make_service) -> None:
        with pytest.raises(ConfigurationError):
            make_service().get_status("last month")

    def test_get_status_nothing_tracked(self, make_service) -> None:
        assert make_service().get_status() is None


# ======================================================================
# Download runs
# ======================================================================


class TestDownloadRuns:
    def test_not_published_goes_back_to_not_started(self, make_service, tracker) -> None:
        result = make_service(RecordingHandler()).trigger_download(wait=True)

        assert result.error_code == "not_available"
        assert result.period_key == KEY
        period = tracker.get(KEY)
        assert period.status == ProcessingStatus.NOT_STARTED
        assert period.retry_count == 0

    def test_checksum_mismatch_fails_period(self, make_service, tracker) -> None:
        digest = hashlib.sha256(b"expected").hexdigest()

        def respond(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("_CHECKSUM.txt"):
                return httpx.Response(200, text=f"{digest}  discogs_20260901_labels.xml.gz\n")
            return httpx.Response(200, content=b"tampered")

        result = make_service(RecordingHandler(respond)).trigger_download(KEY, wait=True)

        assert result.error_code == "checksum_mismatch"
        period = tracker.get(KEY)
        assert period.status == ProcessingStatus.FAILED
        assert period.retry_count == 1
        assert period.file_checksums.labels == digest
        assert period.processing_stats.files[FileType.LABELS].status == FileDownloadStatus.FAILED

    def test_background_download_returns_immediately(self, make_service, tracker) -> None:
        jobs = JobRegistry(workers=1)
        try:
            result = make_service(RecordingHandler(), jobs=jobs).trigger_download(KEY)
            assert result.success
            assert "started" in result.message
            assert jobs.join(timeout=10)
        finally:
            jobs.stop()
        assert tracker.get(KEY).status == ProcessingStatus.NOT_STARTED

    def test_stopped_registry_fails_the_claimed_period(self, make_service, tracker) -> None:
        jobs = JobRegistry(workers=1)
        jobs.stop()

        result = make_service(jobs=jobs).trigger_download(KEY)

        assert result.error_code == "invalid_argument"
        assert tracker.get(KEY).status == ProcessingStatus.FAILED
        assert not tracker.is_active(KEY)


# ======================================================================
# Scheduled checks
# ======================================================================


class TestScheduledChecks:
    def test_download_check_skips_downloaded_month(self, make_service, tracker) -> None:
        token = tracker.begin_download(KEY)
        tracker.complete_download(KEY, token)
        handler = RecordingHandler()

        assert make_service(handler).run_download_check() is None
        assert handler.requests == []

    def test_download_check_retries_failed_month(self, make_service, tracker) -> None:
        token = tracker.begin_download(KEY)
        tracker.mark_failed(KEY, "network", token)
        handler = RecordingHandler()

        result = make_service(handler).run_download_check()

        assert result is not None
        assert result.error_code == "not_available"
        assert len(handler.requests) == 1

    def test_processing_check_ignores_other_states(self, make_service, tracker) -> None:
        tracker.get_or_create(KEY)
        assert make_service().run_processing_check() is None

    def test_register_jobs(self, make_service) -> None:
        jobs = JobRegistry(workers=1)
        try:
            make_service().register_jobs(jobs, 86400, 3600)
            assert jobs.job_names() == [DOWNLOAD_CHECK_JOB, PROCESSING_CHECK_JOB]
        finally:
            jobs.stop()


# ======================================================================
# Operator actions
# ======================================================================


class TestOperatorActions:
    def test_reset_stuck(self, make_service, tracker) -> None:
        tracker.begin_download(KEY)
        result = make_service().reset_stuck_download(KEY)
        assert result.success
        assert "downloading" in result.message
        assert tracker.get(KEY).status == ProcessingStatus.NOT_STARTED

    def test_reset_refuses_stuck_period(self, make_service, tracker) -> None:
        tracker.begin_download(KEY)
        assert make_service().reset(KEY).error_code == "state_conflict"

    def test_list_statuses_marks_active(self, make_service, tracker) -> None:
        tracker.begin_download(KEY)
        tracker.get_or_create("2026-08")

        reports = make_service().list_statuses()

        assert [(r.year_month, r.active) for r in reports] == [(KEY, True), ("2026-08", False)]

    def test_parse_defaults_to_newest_period_directory(
        self, make_service, data_dir: Path
    ) -> None:
        (data_dir / "2026-07").mkdir()
        (data_dir / "2026-08").mkdir()
        (data_dir / "not-a-period").mkdir()

        result = make_service().parse(["labels"])

        assert result.period_key == "2026-08"
        # No labels dump on disk: the file errors, nothing is written.
        assert result.error_code == "run_failed"
