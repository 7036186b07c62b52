"""Custom exception hierarchy for the catalog ingestion pipeline.

All application exceptions inherit from :class:`CatalogIngestError`, which
carries an optional ``period_key`` and ``file_type`` so error handlers and
run summaries can say exactly which monthly dump (``2025-09``) and which
entity file (``releases``) a failure belongs to.

The hierarchy follows the ingestion error taxonomy:

    CatalogIngestError  (base -- catch-all for any ingestion error)
    +-- DumpReadError            (transient I/O on the dump artifact)
    +-- MalformedRecordError     (one bad XML element; absorbed per record)
    +-- BatchWriteError          (one batch rolled back; absorbed per batch)
    |   +-- BatchTimeoutError    (batch exceeded its transaction timeout)
    +-- StoreUnavailableError    (store lost; the whole run fails)
    +-- StateConflictError       (a run is already active for the period)
    +-- InvalidTransitionError   (lifecycle transition not allowed)
    +-- ConfigurationError       (bad settings / arguments, rejected pre-I/O)
    +-- DownloadError            (download stage failure)
    |   +-- DumpNotAvailableError  (dump not published yet, HTTP 404)
    |   +-- ChecksumMismatchError  (artifact digest differs from CHECKSUM.txt)
    +-- RunCancelledError        (cancellation flag observed between batches)

Record- and batch-level errors are aggregated into the run summary; the
others are raised to the caller.
"""


class CatalogIngestError(Exception):
    """Base exception for all ingestion errors.

    The ``__str__`` method prefixes the period and file type in brackets
    for structured log output, e.g. ``[2025-09/releases] Batch failed``.
    """

    def __init__(
        self,
        message: str = "An unexpected ingestion error occurred",
        period_key: str | None = None,
        file_type: str | None = None,
    ) -> None:
        self._message = message
        self._period_key = period_key
        self._file_type = file_type
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def period_key(self) -> str | None:
        return self._period_key

    @property
    def file_type(self) -> str | None:
        return self._file_type

    def __str__(self) -> str:
        scope = "/".join(part for part in (self._period_key, self._file_type) if part)
        if scope:
            return f"[{scope}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Decoding errors
# ---------------------------------------------------------------------------

class DumpReadError(CatalogIngestError):
    """Raised when the compressed dump cannot be opened or decompressed.

    Retryable by re-triggering the download for the period.
    """

    def __init__(
        self,
        message: str = "Failed to read dump file",
        period_key: str | None = None,
        file_type: str | None = None,
    ) -> None:
        super().__init__(message=message, period_key=period_key, file_type=file_type)


class MalformedRecordError(CatalogIngestError):
    """Raised for a single XML element that cannot be decoded into a record."""

    def __init__(
        self,
        message: str = "Malformed record",
        period_key: str | None = None,
        file_type: str | None = None,
    ) -> None:
        super().__init__(message=message, period_key=period_key, file_type=file_type)


# ---------------------------------------------------------------------------
# Store errors
# ---------------------------------------------------------------------------

class BatchWriteError(CatalogIngestError):
    """Raised when one batch transaction fails and is rolled back."""

    def __init__(
        self,
        message: str = "Batch write failed",
        period_key: str | None = None,
        file_type: str | None = None,
    ) -> None:
        super().__init__(message=message, period_key=period_key, file_type=file_type)


class BatchTimeoutError(BatchWriteError):
    """Raised when a batch transaction runs past its timeout."""

    def __init__(
        self,
        message: str = "Batch transaction timed out",
        period_key: str | None = None,
        file_type: str | None = None,
    ) -> None:
        super().__init__(message=message, period_key=period_key, file_type=file_type)


class StoreUnavailableError(CatalogIngestError):
    """Raised when the store signals a non-recoverable condition.

    Connection loss, an unopenable database file or disk I/O failure.
    The orchestrator stops the run and the period is marked failed.
    """

    def __init__(
        self,
        message: str = "Catalog store is unavailable",
        period_key: str | None = None,
        file_type: str | None = None,
    ) -> None:
        super().__init__(message=message, period_key=period_key, file_type=file_type)


# ---------------------------------------------------------------------------
# Lifecycle errors
# ---------------------------------------------------------------------------

class StateConflictError(CatalogIngestError):
    """Raised when a run is triggered while one is already active for the period."""

    def __init__(
        self,
        message: str = "A run is already active for this period",
        period_key: str | None = None,
        file_type: str | None = None,
    ) -> None:
        super().__init__(message=message, period_key=period_key, file_type=file_type)


class InvalidTransitionError(CatalogIngestError):
    """Raised when a lifecycle transition is not allowed from the current status."""

    def __init__(
        self,
        message: str = "Invalid processing status transition",
        period_key: str | None = None,
        file_type: str | None = None,
    ) -> None:
        super().__init__(message=message, period_key=period_key, file_type=file_type)


class ConfigurationError(CatalogIngestError):
    """Raised when configuration or trigger arguments are invalid."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        period_key: str | None = None,
        file_type: str | None = None,
    ) -> None:
        super().__init__(message=message, period_key=period_key, file_type=file_type)


class RunCancelledError(CatalogIngestError):
    """Raised when a run observes its cancellation flag between batches."""

    def __init__(
        self,
        message: str = "Run cancelled",
        period_key: str | None = None,
        file_type: str | None = None,
    ) -> None:
        super().__init__(message=message, period_key=period_key, file_type=file_type)


# ---------------------------------------------------------------------------
# Download errors
# ---------------------------------------------------------------------------

class DownloadError(CatalogIngestError):
    """Raised when fetching a dump or its checksum file fails."""

    def __init__(
        self,
        message: str = "Dump download failed",
        period_key: str | None = None,
        file_type: str | None = None,
    ) -> None:
        super().__init__(message=message, period_key=period_key, file_type=file_type)


class DumpNotAvailableError(DownloadError):
    """Raised when the upstream has not published the period's dump yet."""

    def __init__(
        self,
        message: str = "Dump not available yet",
        period_key: str | None = None,
        file_type: str | None = None,
    ) -> None:
        super().__init__(message=message, period_key=period_key, file_type=file_type)


class ChecksumMismatchError(DownloadError):
    """Raised when a downloaded artifact does not match its published SHA-256."""

    def __init__(
        self,
        message: str = "Checksum mismatch",
        period_key: str | None = None,
        file_type: str | None = None,
    ) -> None:
        super().__init__(message=message, period_key=period_key, file_type=file_type)
