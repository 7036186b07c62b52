"""Catalog ingestion domain models: re-exports all public model classes.

Other parts of the codebase import from ``src.models`` directly
(``from src.models import FileType``) instead of the individual modules.

The models are organized across three submodules by concern:
    - catalog.py   : Decoded catalog records and the FileType/dependency order
    - processing.py: Persistent per-period lifecycle state
    - ingestion.py : Run-scoped limits, progress events and summaries
"""

from __future__ import annotations

from src.models.catalog import (
    DEPENDENCIES,
    PROCESSING_ORDER,
    RECORD_TYPES,
    ArtistRecord,
    CatalogRecord,
    CreditArtist,
    FileType,
    Format,
    GenreRecord,
    ImageRef,
    LabelRecord,
    MasterRecord,
    NamedRef,
    NaturalKey,
    ReleaseLabelRef,
    ReleaseRecord,
    Track,
    Video,
    order_file_types,
    parse_file_type,
)
from src.models.ingestion import (
    AggregateCounters,
    BatchWriteResult,
    ClassifiedBatch,
    FileResult,
    Limits,
    ProgressEvent,
    RunStage,
    RunSummary,
    TriggerResult,
)
from src.models.processing import (
    FileChecksums,
    FileDownloadInfo,
    FileDownloadStatus,
    ProcessingPeriod,
    ProcessingStats,
    ProcessingStatus,
    StatusReport,
    StepState,
    StepStatus,
    validate_period_key,
)

__all__ = [
    # catalog
    "DEPENDENCIES",
    "PROCESSING_ORDER",
    "RECORD_TYPES",
    "ArtistRecord",
    "CatalogRecord",
    "CreditArtist",
    "FileType",
    "Format",
    "GenreRecord",
    "ImageRef",
    "LabelRecord",
    "MasterRecord",
    "NamedRef",
    "NaturalKey",
    "ReleaseLabelRef",
    "ReleaseRecord",
    "Track",
    "Video",
    "order_file_types",
    "parse_file_type",
    # ingestion
    "AggregateCounters",
    "BatchWriteResult",
    "ClassifiedBatch",
    "FileResult",
    "Limits",
    "ProgressEvent",
    "RunStage",
    "RunSummary",
    "TriggerResult",
    # processing
    "FileChecksums",
    "FileDownloadInfo",
    "FileDownloadStatus",
    "ProcessingPeriod",
    "ProcessingStats",
    "ProcessingStatus",
    "StatusReport",
    "StepState",
    "StepStatus",
    "validate_period_key",
]
