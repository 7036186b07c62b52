"""Downloader for the Discogs monthly data dumps.

Fetches ``CHECKSUM.txt`` and the four ``.xml.gz`` dumps of a period from
the public S3 bucket and stores them at the artifact layout
``<data_dir>/<YYYY-MM>/<file_type>.xml.gz``.  Every dump is streamed to a
``.part`` file while its SHA-256 is computed, then renamed into place and
validated against the published digest.

Upstream layout::

    <base>/<YYYY>/discogs_<YYYYMM>01_CHECKSUM.txt
    <base>/<YYYY>/discogs_<YYYYMM>01_<type>.xml.gz

A 404 means the month has not been published yet and is reported as
:class:`DumpNotAvailableError` without retrying.  Transport errors and 5xx
responses are retried with linear backoff.
"""

from __future__ import annotations

import hashlib
import re
import time
from collections.abc import Callable
from pathlib import Path
from typing import Optional

import httpx
import structlog

from src.models.catalog import FileType
from src.models.processing import (
    CHECKSUM_FILENAME,
    FileChecksums,
    FileDownloadInfo,
    FileDownloadStatus,
    artifact_path,
    period_directory,
    utcnow,
)
from src.utils.errors import (
    ChecksumMismatchError,
    DownloadError,
    DumpNotAvailableError,
    RunCancelledError,
)

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_BASE_URL = "https://discogs-data-dumps.s3-us-west-2.amazonaws.com/data"
_DEFAULT_TIMEOUT = 300.0
_DEFAULT_HEADERS = {"User-Agent": "discogs-catalog-ingest/0.1"}
_RETRY_BACKOFF = 5.0  # seconds, multiplied by the attempt number
_LOG_EVERY_BYTES = 256 * 1024 * 1024
_HASH_READ_SIZE = 1024 * 1024

_CHECKSUM_FILE_RE = re.compile(r"_(artists|labels|masters|releases)\.xml\.gz$")

ProgressCallback = Callable[[FileType, int, Optional[int]], None]


def parse_checksums(text: str) -> FileChecksums:
    """Parse ``CHECKSUM.txt`` lines of the form ``<sha256>  <filename>``.

    Unrecognized files and malformed lines are skipped.

    Raises
    ------
    DownloadError
        If no dump checksum at all was found.
    """
    found: dict[str, str] = {}
    for raw in text.splitlines():
        parts = raw.split()
        if len(parts) < 2:
            if raw.strip():
                logger.warning("checksum_line_malformed", line=raw[:200])
            continue
        digest, filename = parts[0].lower(), parts[-1]
        match = _CHECKSUM_FILE_RE.search(filename)
        if match:
            found[match.group(1)] = digest
    checksums = FileChecksums(**found)
    if checksums.is_empty():
        raise DownloadError("No dump checksums found in CHECKSUM.txt")
    return checksums


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for block in iter(lambda: fh.read(_HASH_READ_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


class DiscogsDumpDownloader:
    """Downloads and validates one period's dump artifacts.

    Parameters
    ----------
    data_dir:
        Root of the artifact layout.
    base_url:
        Upstream bucket prefix.
    http_client:
        Optional pre-configured ``httpx.Client`` (tests inject one backed
        by ``httpx.MockTransport``).
    retries:
        Attempts per file before giving up.
    chunk_size:
        Bytes per streamed chunk.
    sleep:
        Backoff sleep function, replaceable in tests.
    """

    def __init__(
        self,
        data_dir: str | Path,
        base_url: str = _DEFAULT_BASE_URL,
        http_client: httpx.Client | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
        retries: int = 3,
        chunk_size: int = 1024 * 1024,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._data_dir = Path(data_dir)
        self._base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            timeout=httpx.Timeout(timeout),
            headers=_DEFAULT_HEADERS,
            follow_redirects=True,
        )
        self._retries = max(1, retries)
        self._chunk_size = chunk_size
        self._sleep = sleep

    # ------------------------------------------------------------------
    # URLs and paths
    # ------------------------------------------------------------------

    def _prefix(self, period_key: str) -> str:
        year, month = period_key.split("-")
        return f"{self._base_url}/{year}/discogs_{year}{month}01"

    def checksum_url(self, period_key: str) -> str:
        return f"{self._prefix(period_key)}_CHECKSUM.txt"

    def dump_url(self, period_key: str, file_type: FileType) -> str:
        return f"{self._prefix(period_key)}_{file_type.value}.xml.gz"

    def checksum_path(self, period_key: str) -> Path:
        return period_directory(self._data_dir, period_key) / CHECKSUM_FILENAME

    def dump_path(self, period_key: str, file_type: FileType) -> Path:
        return artifact_path(self._data_dir, period_key, file_type)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fetch_checksums(self, period_key: str) -> FileChecksums:
        """Download ``CHECKSUM.txt`` for the period, store it and parse it."""
        target = self.checksum_path(period_key)
        target.parent.mkdir(parents=True, exist_ok=True)
        url = self.checksum_url(period_key)
        self._with_retries(
            url, lambda: self._stream_to(url, target, None, None, None), period_key=period_key
        )
        checksums = parse_checksums(target.read_text(encoding="utf-8"))
        logger.info(
            "checksums_fetched",
            period_key=period_key,
            found=[ft.value for ft in FileType if checksums.for_file(ft)],
        )
        return checksums

    def download_file(
        self,
        period_key: str,
        file_type: FileType,
        expected_sha256: str,
        is_cancelled: Callable[[], bool] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> FileDownloadInfo:
        """Download one dump unless an already valid copy exists.

        Raises
        ------
        DumpNotAvailableError
            HTTP 404 from upstream.
        ChecksumMismatchError
            The downloaded file does not match ``expected_sha256``; the
            file is deleted.
        DownloadError
            Retries exhausted, or no published checksum for the file.
        RunCancelledError
            ``is_cancelled`` turned true mid-stream.
        """
        if not expected_sha256:
            raise DownloadError(
                "No published checksum for this dump",
                period_key=period_key,
                file_type=file_type.value,
            )
        target = self.dump_path(period_key, file_type)
        target.parent.mkdir(parents=True, exist_ok=True)

        if target.exists() and sha256_file(target) == expected_sha256.lower():
            logger.info("dump_already_valid", period_key=period_key, file_type=file_type.value)
            now = utcnow()
            return FileDownloadInfo(
                status=FileDownloadStatus.VALIDATED,
                size=target.stat().st_size,
                downloaded_at=now,
                validated_at=now,
            )

        url = self.dump_url(period_key, file_type)
        digest = self._with_retries(
            url,
            lambda: self._stream_to(url, target, file_type, is_cancelled, on_progress),
            period_key=period_key,
            file_type=file_type,
        )
        downloaded_at = utcnow()
        if digest != expected_sha256.lower():
            target.unlink(missing_ok=True)
            raise ChecksumMismatchError(
                f"SHA-256 {digest} does not match published {expected_sha256}",
                period_key=period_key,
                file_type=file_type.value,
            )
        size = target.stat().st_size
        logger.info(
            "dump_downloaded",
            period_key=period_key,
            file_type=file_type.value,
            size=size,
        )
        return FileDownloadInfo(
            status=FileDownloadStatus.VALIDATED,
            size=size,
            downloaded_at=downloaded_at,
            validated_at=utcnow(),
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def get_provider_name(self) -> str:
        return "discogs_dump_downloader"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _with_retries(
        self,
        url: str,
        attempt_fn: Callable[[], str],
        period_key: str | None = None,
        file_type: FileType | None = None,
    ) -> str:
        last_error: Exception | None = None
        for attempt in range(1, self._retries + 1):
            try:
                return attempt_fn()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status == 404:
                    raise DumpNotAvailableError(
                        f"{url} returned 404",
                        period_key=period_key,
                        file_type=file_type.value if file_type else None,
                    ) from exc
                if status < 500:
                    raise DownloadError(
                        f"HTTP {status} fetching {url}",
                        period_key=period_key,
                        file_type=file_type.value if file_type else None,
                    ) from exc
                last_error = exc
            except httpx.TransportError as exc:
                last_error = exc

            logger.warning(
                "download_attempt_failed",
                url=url,
                attempt=attempt,
                max_attempts=self._retries,
                error=str(last_error),
            )
            if attempt < self._retries:
                self._sleep(_RETRY_BACKOFF * attempt)

        raise DownloadError(
            f"Download of {url} failed after {self._retries} attempts: {last_error}",
            period_key=period_key,
            file_type=file_type.value if file_type else None,
        ) from last_error

    def _stream_to(
        self,
        url: str,
        target: Path,
        file_type: FileType | None,
        is_cancelled: Callable[[], bool] | None,
        on_progress: ProgressCallback | None,
    ) -> str:
        """Stream ``url`` into ``target`` via a ``.part`` file; return its SHA-256."""
        partial = target.with_name(target.name + ".part")
        digest = hashlib.sha256()
        downloaded = 0
        next_log = _LOG_EVERY_BYTES
        try:
            with self._client.stream("GET", url) as response:
                response.raise_for_status()
                total = int(response.headers.get("content-length", 0)) or None
                with open(partial, "wb") as out:
                    for chunk in response.iter_bytes(self._chunk_size):
                        if is_cancelled is not None and is_cancelled():
                            raise RunCancelledError("Download cancelled")
                        out.write(chunk)
                        digest.update(chunk)
                        downloaded += len(chunk)
                        if on_progress is not None and file_type is not None:
                            on_progress(file_type, downloaded, total)
                        if downloaded >= next_log:
                            logger.info(
                                "download_progress",
                                url=url,
                                downloaded=downloaded,
                                total=total,
                            )
                            next_log += _LOG_EVERY_BYTES
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        partial.replace(target)
        return digest.hexdigest()
