"""Run orchestration for the Discogs catalog ingestion pipeline."""

from src.pipeline.job_registry import JobRegistry
from src.pipeline.orchestrator import IngestionOrchestrator
from src.pipeline.progress_tracker import ProgressPublisher

__all__ = [
    "IngestionOrchestrator",
    "JobRegistry",
    "ProgressPublisher",
]
