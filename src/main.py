"""Discogs catalog ingestion worker entry point.

Wires the store, state repository, downloader, orchestrator, job registry
and trigger facade together from :class:`~src.config.settings.Settings`.
Nothing is constructed at import time: :func:`build_components` is the
single composition root used by the worker loop below, by the CLI and by
the integration tests.

Run the long-lived worker (scheduled daily download and processing
checks) with::

    python -m src.main
"""

from __future__ import annotations

import signal
import threading
from dataclasses import dataclass
from typing import Any

import httpx

from src.config.loader import build_settings
from src.config.settings import Settings
from src.models.ingestion import Limits
from src.pipeline.job_registry import JobRegistry
from src.pipeline.orchestrator import IngestionOrchestrator
from src.pipeline.progress_tracker import ProgressPublisher
from src.providers.download.discogs_dump_downloader import DiscogsDumpDownloader
from src.providers.state.sqlite_state_repository import SQLiteStateRepository
from src.providers.store.sqlite_catalog_store import SQLiteCatalogStore
from src.services.ingestion_service import IngestionService
from src.services.state_tracker import ProcessingStateTracker
from src.utils.logging import configure_logging, get_logger

_logger = get_logger(__name__)


@dataclass
class Components:
    """Everything :func:`build_components` constructs, in one place."""

    settings: Settings
    store: SQLiteCatalogStore
    repository: SQLiteStateRepository
    tracker: ProcessingStateTracker
    progress: ProgressPublisher
    downloader: DiscogsDumpDownloader
    orchestrator: IngestionOrchestrator
    jobs: JobRegistry
    service: IngestionService

    def close(self) -> None:
        """Stop background jobs, then release the HTTP client and store."""
        self.jobs.stop(wait_for_jobs=True)
        self.downloader.close()
        self.store.close()
        _logger.info("components_closed")


def build_components(
    app_settings: Settings,
    http_client: httpx.Client | None = None,
    **overrides: Any,
) -> Components:
    """Construct and initialize every component for the given settings.

    ``http_client`` lets tests inject a client backed by
    ``httpx.MockTransport``; ``overrides`` are passed through to the
    orchestrator (e.g. ``read_size``).
    """
    store = SQLiteCatalogStore(db_path=app_settings.catalog_db_path)
    store.initialize()
    repository = SQLiteStateRepository(db_path=app_settings.catalog_db_path)
    repository.initialize()

    tracker = ProcessingStateTracker(repository, app_settings.data_dir)
    progress = ProgressPublisher()
    downloader = DiscogsDumpDownloader(
        data_dir=app_settings.data_dir,
        base_url=app_settings.dump_base_url,
        http_client=http_client,
        timeout=app_settings.download_timeout_seconds,
        retries=app_settings.download_retries,
        chunk_size=app_settings.download_chunk_size,
    )
    orchestrator = IngestionOrchestrator(
        store=store,
        state_tracker=tracker,
        progress=progress,
        data_dir=app_settings.data_dir,
        batch_timeout_seconds=app_settings.batch_timeout_seconds,
        max_error_messages=app_settings.max_error_messages,
        count_unprocessed=app_settings.count_unprocessed,
        **overrides,
    )
    jobs = JobRegistry(workers=app_settings.job_workers)
    service = IngestionService(
        tracker=tracker,
        orchestrator=orchestrator,
        downloader=downloader,
        progress=progress,
        jobs=jobs,
        default_limits=Limits(
            max_records=app_settings.max_records,
            max_batch_size=app_settings.max_batch_size,
        ),
        auto_process_after_download=app_settings.auto_process_after_download,
    )
    service.register_jobs(
        jobs,
        download_interval_seconds=app_settings.download_check_interval_seconds,
        processing_interval_seconds=app_settings.processing_check_interval_seconds,
    )

    _logger.info(
        "components_built",
        environment=app_settings.app_env,
        data_dir=app_settings.data_dir,
        catalog_db=app_settings.catalog_db_path,
        store=store.get_provider_name(),
        scheduler_enabled=app_settings.scheduler_enabled,
    )
    return Components(
        settings=app_settings,
        store=store,
        repository=repository,
        tracker=tracker,
        progress=progress,
        downloader=downloader,
        orchestrator=orchestrator,
        jobs=jobs,
        service=service,
    )


def run_worker(app_settings: Settings, stop: threading.Event | None = None) -> None:
    """Run the scheduled checks until ``stop`` is set or SIGINT/SIGTERM arrives."""
    stop = stop or threading.Event()
    components = build_components(app_settings)
    if app_settings.scheduler_enabled:
        components.jobs.start()
    else:
        _logger.warning("scheduler_disabled", hint="set SCHEDULER_ENABLED=true to run checks")
    try:
        stop.wait()
    finally:
        components.close()


def main() -> None:
    app_settings = build_settings()
    configure_logging(
        log_level=app_settings.log_level,
        json_output=app_settings.app_env == "production",
    )
    stop = threading.Event()

    def _request_stop(signum: int, _frame: object) -> None:
        _logger.info("worker_stop_requested", signal=signum)
        stop.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)
    run_worker(app_settings, stop)


if __name__ == "__main__":
    main()
