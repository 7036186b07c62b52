"""Processing-state models for one monthly dump period.

Defines the lifecycle enum, the allowed transition table and the value
types persisted with each :class:`ProcessingPeriod` row.  All models are
frozen; the state tracker produces new versions via
``model_copy(update={...})`` and the repository persists them whole.

Lifecycle (one row per ``YYYY-MM``)::

    not_started → downloading → ready_for_processing → processing → completed
         ↑             │                 │                  │           │
         └──── reset ──┴──── failed ◄────┴──────────────────┘           │
         └────────────────── reset ◄────────────────────────────────────┘

``failed`` and ``completed`` go back to ``not_started`` only through an
explicit reset; ``downloading``/``processing`` only through "reset stuck".
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.models.catalog import FileType

_YEAR_MONTH_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def validate_period_key(value: str) -> str:
    """Return ``value`` if it is a ``YYYY-MM`` key, else raise ValueError."""
    if not isinstance(value, str) or not _YEAR_MONTH_RE.match(value):
        msg = f"period key must be YYYY-MM, got {value!r}"
        raise ValueError(msg)
    return value


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


# Artifact layout: <data_dir>/<YYYY-MM>/<file_type>.xml.gz and CHECKSUM.txt
CHECKSUM_FILENAME = "CHECKSUM.txt"


def period_directory(data_dir: str | Path, period_key: str) -> Path:
    return Path(data_dir) / period_key


def artifact_path(data_dir: str | Path, period_key: str, file_type: FileType) -> Path:
    return period_directory(data_dir, period_key) / file_type.dump_filename


class ProcessingStatus(str, Enum):  # noqa: UP042
    """Lifecycle status of a dump period."""

    NOT_STARTED = "not_started"
    DOWNLOADING = "downloading"
    READY_FOR_PROCESSING = "ready_for_processing"
    PROCESSING = "processing"
    COMPLETED = "completed"
    # Written, but dropped references or ran after a failed prerequisite.
    INCOMPLETE = "incomplete"
    FAILED = "failed"


ACTIVE_STATUSES: frozenset[ProcessingStatus] = frozenset(
    {ProcessingStatus.DOWNLOADING, ProcessingStatus.PROCESSING}
)

# Statuses from which a new download run may start.
DOWNLOADABLE_STATUSES: frozenset[ProcessingStatus] = frozenset(
    {
        ProcessingStatus.NOT_STARTED,
        ProcessingStatus.COMPLETED,
        ProcessingStatus.FAILED,
        ProcessingStatus.READY_FOR_PROCESSING,
    }
)

# Statuses from which a reprocess may be requested (files already on disk).
REPROCESSABLE_STATUSES: frozenset[ProcessingStatus] = frozenset(
    {
        ProcessingStatus.READY_FOR_PROCESSING,
        ProcessingStatus.PROCESSING,
        ProcessingStatus.COMPLETED,
        ProcessingStatus.FAILED,
    }
)

_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.NOT_STARTED: frozenset(
        {ProcessingStatus.DOWNLOADING, ProcessingStatus.FAILED}
    ),
    ProcessingStatus.DOWNLOADING: frozenset(
        {
            ProcessingStatus.READY_FOR_PROCESSING,
            ProcessingStatus.FAILED,
            # Dump not published yet: back to waiting.
            ProcessingStatus.NOT_STARTED,
        }
    ),
    ProcessingStatus.READY_FOR_PROCESSING: frozenset(
        {
            ProcessingStatus.PROCESSING,
            ProcessingStatus.DOWNLOADING,
            ProcessingStatus.FAILED,
        }
    ),
    ProcessingStatus.PROCESSING: frozenset(
        {
            ProcessingStatus.COMPLETED,
            ProcessingStatus.FAILED,
            ProcessingStatus.READY_FOR_PROCESSING,
        }
    ),
    ProcessingStatus.COMPLETED: frozenset(
        {ProcessingStatus.DOWNLOADING, ProcessingStatus.READY_FOR_PROCESSING}
    ),
    ProcessingStatus.FAILED: frozenset(
        {
            ProcessingStatus.DOWNLOADING,
            ProcessingStatus.READY_FOR_PROCESSING,
            ProcessingStatus.PROCESSING,
        }
    ),
}


def can_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    """Return True if ``current → target`` is a valid lifecycle step."""
    return target in _TRANSITIONS.get(current, frozenset())


def statuses_allowing(target: ProcessingStatus) -> frozenset[ProcessingStatus]:
    """All statuses from which ``target`` may be entered."""
    return frozenset(src for src, targets in _TRANSITIONS.items() if target in targets)


class FileDownloadStatus(str, Enum):  # noqa: UP042
    NOT_STARTED = "not_started"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    VALIDATED = "validated"
    FAILED = "failed"


class StepState(str, Enum):  # noqa: UP042
    """Per-file processing step state persisted in ProcessingStats."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"
    FAILED = "failed"
    SKIPPED = "skipped"


class FileChecksums(BaseModel):
    """SHA-256 digests published in the period's ``CHECKSUM.txt``."""

    model_config = ConfigDict(frozen=True)

    artists: str = ""
    labels: str = ""
    masters: str = ""
    releases: str = ""

    def for_file(self, file_type: FileType) -> str:
        return getattr(self, file_type.value)

    def is_empty(self) -> bool:
        return not any((self.artists, self.labels, self.masters, self.releases))


class FileDownloadInfo(BaseModel):
    """Download state of one artifact; lets a re-triggered download resume."""

    model_config = ConfigDict(frozen=True)

    status: FileDownloadStatus = FileDownloadStatus.NOT_STARTED
    size: int | None = None
    downloaded_at: datetime | None = None
    validated_at: datetime | None = None
    error_message: str | None = None

    @property
    def validated(self) -> bool:
        return self.status == FileDownloadStatus.VALIDATED


class StepStatus(BaseModel):
    """Outcome of one file type's processing step within a period."""

    model_config = ConfigDict(frozen=True)

    status: StepState = StepState.PENDING
    total: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errored: int = 0
    unprocessed: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_seconds: float | None = None
    error_message: str | None = None
    # Processed while one of its prerequisites had failed.
    at_risk: bool = False


class ProcessingStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    files: dict[FileType, FileDownloadInfo] = Field(default_factory=dict)
    steps: dict[FileType, StepStatus] = Field(default_factory=dict)

    def step(self, file_type: FileType) -> StepStatus | None:
        return self.steps.get(file_type)

    def is_step_completed(self, file_type: FileType) -> bool:
        step = self.steps.get(file_type)
        return step is not None and step.status == StepState.COMPLETED

    def with_step(self, file_type: FileType, step: StepStatus) -> ProcessingStats:
        return self.model_copy(update={"steps": {**self.steps, file_type: step}})

    def with_file(self, file_type: FileType, info: FileDownloadInfo) -> ProcessingStats:
        return self.model_copy(update={"files": {**self.files, file_type: info}})


class ProcessingPeriod(BaseModel):
    """Persistent lifecycle record of one monthly dump."""

    model_config = ConfigDict(frozen=True)

    year_month: str
    status: ProcessingStatus = ProcessingStatus.NOT_STARTED
    started_at: datetime | None = None
    download_completed_at: datetime | None = None
    processing_completed_at: datetime | None = None
    retry_count: int = 0
    error_message: str | None = None
    file_checksums: FileChecksums = Field(default_factory=FileChecksums)
    processing_stats: ProcessingStats = Field(default_factory=ProcessingStats)

    @field_validator("year_month")
    @classmethod
    def _check_year_month(cls, value: str) -> str:
        return validate_period_key(value)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def can_transition_to(self, target: ProcessingStatus) -> bool:
        return can_transition(self.status, target)


class StatusReport(BaseModel):
    """Answer to a state query for one period."""

    model_config = ConfigDict(frozen=True)

    year_month: str
    status: ProcessingStatus
    started_at: datetime | None = None
    download_completed_at: datetime | None = None
    processing_completed_at: datetime | None = None
    file_checksums: FileChecksums = Field(default_factory=FileChecksums)
    files: dict[FileType, FileDownloadInfo] = Field(default_factory=dict)
    steps: dict[FileType, StepStatus] = Field(default_factory=dict)
    retry_count: int = 0
    error_message: str | None = None
    # A run for this period is live in this process.
    active: bool = False

    @classmethod
    def from_period(cls, period: ProcessingPeriod, active: bool = False) -> StatusReport:
        return cls(
            year_month=period.year_month,
            status=period.status,
            started_at=period.started_at,
            download_completed_at=period.download_completed_at,
            processing_completed_at=period.processing_completed_at,
            file_checksums=period.file_checksums,
            files=period.processing_stats.files,
            steps=period.processing_stats.steps,
            retry_count=period.retry_count,
            error_message=period.error_message,
            active=active,
        )
