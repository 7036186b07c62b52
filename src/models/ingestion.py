"""Run-scoped models for one ingestion pass over a period's dump files.

These travel between the orchestrator, the batch writer and the trigger
facade.  None of them is persisted directly; the orchestrator folds the
per-file counters into a :class:`~src.models.processing.StepStatus` before
handing them to the state tracker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.models.catalog import CatalogRecord, FileType
from src.models.processing import utcnow


class Limits(BaseModel):
    """Per-run caps on how much of a dump is processed.

    ``max_records`` of ``None`` (or ``0``) means the whole file.
    """

    model_config = ConfigDict(frozen=True)

    max_records: int | None = None
    max_batch_size: int = Field(default=1000, ge=1)

    @field_validator("max_records")
    @classmethod
    def _zero_means_unlimited(cls, value: int | None) -> int | None:
        if value is None or value == 0:
            return None
        if value < 0:
            msg = "max_records must be >= 0"
            raise ValueError(msg)
        return value


class RunStage(str, Enum):  # noqa: UP042
    """Per-file stage within a run.

    ``pending → parsing → classifying → writing → done | errored``, and
    finally ``aggregated`` once the file's counters are folded into the
    run summary.  ``skipped`` marks a step completed by an earlier run;
    ``downloading`` is only published by the download stage.
    """

    DOWNLOADING = "downloading"
    PENDING = "pending"
    PARSING = "parsing"
    CLASSIFYING = "classifying"
    WRITING = "writing"
    DONE = "done"
    ERRORED = "errored"
    SKIPPED = "skipped"
    AGGREGATED = "aggregated"


class ProgressEvent(BaseModel):
    """One progress notification published during a run."""

    model_config = ConfigDict(frozen=True)

    period_key: str | None = None
    file_type: FileType | None = None
    stage: RunStage
    records_processed: int = 0
    total_records: int | None = None
    percentage: float | None = None
    error_message: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)


@dataclass
class ClassifiedBatch:
    """Result of splitting one decoded batch against the stored hashes.

    Mutable and internal, like the pipeline's other working structures:
    the classifier fills it and the writer only reads it.
    """

    insert: list[CatalogRecord] = field(default_factory=list)
    update: list[CatalogRecord] = field(default_factory=list)
    skip: list[CatalogRecord] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.insert) + len(self.update) + len(self.skip)

    @property
    def to_write(self) -> list[CatalogRecord]:
        return [*self.insert, *self.update]


class BatchWriteResult(BaseModel):
    """Outcome of applying one classified batch to the store."""

    model_config = ConfigDict(frozen=True)

    attempted: int = 0
    succeeded: int = 0
    inserted: int = 0
    updated: int = 0
    failed: int = 0
    error: str | None = None
    # Relationship rows dropped because their target does not exist yet.
    dangling_references: int = 0
    sub_batches: int = 0
    failed_sub_batches: int = 0

    @property
    def ok(self) -> bool:
        return self.failed == 0


class FileResult(BaseModel):
    """Counters and outcome for one file type in a run."""

    model_config = ConfigDict(frozen=True)

    file_type: FileType
    stage: RunStage = RunStage.PENDING
    total_seen: int = 0
    decoded: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errored: int = 0
    malformed: int = 0
    unprocessed: int = 0
    failed_batches: int = 0
    dangling_references: int = 0
    errors: list[str] = Field(default_factory=list)
    at_risk: bool = False
    skip_reason: str | None = None
    duration_seconds: float | None = None


class AggregateCounters(BaseModel):
    """Totals across all file types of a run."""

    model_config = ConfigDict(frozen=True)

    total_seen: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errored: int = 0
    unprocessed: int = 0

    @classmethod
    def from_results(cls, results: list[FileResult]) -> AggregateCounters:
        return cls(
            total_seen=sum(r.total_seen for r in results),
            inserted=sum(r.inserted for r in results),
            updated=sum(r.updated for r in results),
            skipped=sum(r.skipped for r in results),
            errored=sum(r.errored for r in results),
            unprocessed=sum(r.unprocessed for r in results),
        )


class RunSummary(BaseModel):
    """Everything a caller learns from one orchestrator run."""

    model_config = ConfigDict(frozen=True)

    period_key: str | None = None
    success: bool = True
    cancelled: bool = False
    file_results: list[FileResult] = Field(default_factory=list)
    aggregate: AggregateCounters = Field(default_factory=AggregateCounters)
    warnings: list[str] = Field(default_factory=list)
    error_message: str | None = None

    def result_for(self, file_type: FileType) -> FileResult | None:
        for result in self.file_results:
            if result.file_type == file_type:
                return result
        return None


class TriggerResult(BaseModel):
    """Structured answer of every trigger operation."""

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    error_code: str | None = None
    period_key: str | None = None
    per_file_results: list[FileResult] = Field(default_factory=list)
    aggregate: AggregateCounters | None = None
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def failure(
        cls, message: str, error_code: str, period_key: str | None = None
    ) -> TriggerResult:
        return cls(success=False, message=message, error_code=error_code, period_key=period_key)

    @classmethod
    def from_summary(cls, summary: RunSummary, message: str) -> TriggerResult:
        error_code = None
        if summary.cancelled:
            error_code = "cancelled"
        elif not summary.success:
            error_code = "run_failed"
        return cls(
            success=summary.success,
            message=message,
            error_code=error_code,
            period_key=summary.period_key,
            per_file_results=summary.file_results,
            aggregate=summary.aggregate,
            warnings=summary.warnings,
        )
