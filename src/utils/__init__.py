"""Utility modules for the catalog ingestion pipeline.

- **errors** -- Exception hierarchy rooted at CatalogIngestError; each
  failure class of the ingestion error taxonomy has its own subclass so
  callers can absorb record/batch errors and reject state conflicts
  without broad ``except Exception`` blocks.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production, plus
  run-scoped context binding.
"""

# -- Domain exception hierarchy --------------------------------------------
from src.utils.errors import (
    BatchTimeoutError,
    BatchWriteError,
    CatalogIngestError,
    ChecksumMismatchError,
    ConfigurationError,
    DownloadError,
    DumpNotAvailableError,
    DumpReadError,
    InvalidTransitionError,
    MalformedRecordError,
    RunCancelledError,
    StateConflictError,
    StoreUnavailableError,
)

# -- Structured logging setup ----------------------------------------------
from src.utils.logging import bind_run_context, configure_logging, get_logger

__all__ = [
    "BatchTimeoutError",
    "BatchWriteError",
    "CatalogIngestError",
    "ChecksumMismatchError",
    "ConfigurationError",
    "DownloadError",
    "DumpNotAvailableError",
    "DumpReadError",
    "InvalidTransitionError",
    "MalformedRecordError",
    "RunCancelledError",
    "StateConflictError",
    "StoreUnavailableError",
    "bind_run_context",
    "configure_logging",
    "get_logger",
]
