"""Shared pytest fixtures for the catalog ingestion test suite."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from pathlib import Path

import pytest

from src.models.catalog import FileType
from src.models.processing import artifact_path
from src.pipeline.orchestrator import IngestionOrchestrator
from src.pipeline.progress_tracker import ProgressPublisher
from src.providers.state.sqlite_state_repository import SQLiteStateRepository
from src.providers.store.sqlite_catalog_store import SQLiteCatalogStore
from src.services.state_tracker import ProcessingStateTracker
from tests.dump_builders import write_dump

PERIOD = "2026-09"


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def period_key() -> str:
    return PERIOD


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "dumps"
    path.mkdir()
    return path


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "catalog.db"


@pytest.fixture
def store(db_path: Path) -> Iterator[SQLiteCatalogStore]:
    catalog = SQLiteCatalogStore(db_path=db_path)
    catalog.initialize()
    yield catalog
    catalog.close()


@pytest.fixture
def repository(db_path: Path) -> SQLiteStateRepository:
    repo = SQLiteStateRepository(db_path=db_path)
    repo.initialize()
    return repo


@pytest.fixture
def tracker(repository: SQLiteStateRepository, data_dir: Path) -> ProcessingStateTracker:
    return ProcessingStateTracker(repository, data_dir)


@pytest.fixture
def progress() -> ProgressPublisher:
    return ProgressPublisher()


@pytest.fixture
def orchestrator(
    store: SQLiteCatalogStore,
    tracker: ProcessingStateTracker,
    progress: ProgressPublisher,
    data_dir: Path,
) -> IngestionOrchestrator:
    # Small reads exercise the decoder's buffer carry-over on tiny fixtures.
    return IngestionOrchestrator(
        store=store,
        state_tracker=tracker,
        progress=progress,
        data_dir=data_dir,
        read_size=256,
    )


@pytest.fixture
def dump_writer(data_dir: Path) -> Callable[..., Path]:
    """Write a gzip dump for a file type at the period's artifact path."""

    def _write(file_type: FileType, elements: Sequence[str], period: str = PERIOD) -> Path:
        return write_dump(artifact_path(data_dir, period, file_type), file_type, elements)

    return _write


@pytest.fixture
def ready_period(tracker: ProcessingStateTracker) -> Callable[[str], None]:
    """Drive a period through the download stage to ``ready_for_processing``."""

    def _ready(period: str = PERIOD) -> None:
        token = tracker.begin_download(period)
        tracker.complete_download(period, token)

    return _ready
