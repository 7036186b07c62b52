"""Applies classified batches to the catalog store.

Insert and update sets are written together through the store's upsert,
split into sub-batches of at most ``max_batch_size`` records, each in its
own transaction.  The skip set needs no I/O.

A failing sub-batch (constraint violation, lock timeout, transaction
timeout) is rolled back and reported in the returned
:class:`BatchWriteResult`; the remaining sub-batches are still attempted.
:class:`StoreUnavailableError` is never absorbed: the caller must stop the
run.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog

from src.interfaces.catalog_store import ICatalogStore
from src.models.catalog import CatalogRecord, FileType, GenreRecord
from src.models.ingestion import BatchWriteResult, ClassifiedBatch
from src.utils.errors import BatchTimeoutError, BatchWriteError, ConfigurationError
from src.utils.logging import get_logger


class BatchWriter:
    """Bounded, failure-isolating writer on top of an :class:`ICatalogStore`.

    Parameters
    ----------
    store:
        The catalog store receiving the upserts.
    max_batch_size:
        Largest number of records written in one transaction.
    batch_timeout_seconds:
        Per-transaction timeout; ``None`` disables it.
    """

    def __init__(
        self,
        store: ICatalogStore,
        max_batch_size: int = 1000,
        batch_timeout_seconds: float | None = 30.0,
    ) -> None:
        if max_batch_size < 1:
            raise ConfigurationError(f"max_batch_size must be >= 1, got {max_batch_size}")
        self._store = store
        self._max_batch_size = max_batch_size
        self._timeout = batch_timeout_seconds
        self._logger: structlog.BoundLogger = get_logger(__name__)

    @property
    def max_batch_size(self) -> int:
        return self._max_batch_size

    def write(self, file_type: FileType, classified: ClassifiedBatch) -> BatchWriteResult:
        """Upsert the insert and update sets of ``classified``.

        Raises
        ------
        StoreUnavailableError
            When the store can no longer be used.
        """
        inserting = {id(r) for r in classified.insert}
        pending: list[CatalogRecord] = classified.to_write

        attempted = succeeded = inserted = updated = failed = dangling = 0
        sub_batches = failed_sub_batches = 0
        errors: list[str] = []

        for chunk in self._split(pending):
            sub_batches += 1
            attempted += len(chunk)
            try:
                dangling += self._store.upsert_batch(file_type, chunk, self._timeout)
            except BatchWriteError as exc:
                failed += len(chunk)
                failed_sub_batches += 1
                errors.append(exc.message)
                self._logger.warning(
                    "batch_write_failed",
                    file_type=file_type.value,
                    records=len(chunk),
                    timed_out=isinstance(exc, BatchTimeoutError),
                    error=exc.message,
                )
                continue

            succeeded += len(chunk)
            batch_inserted = sum(1 for r in chunk if id(r) in inserting)
            inserted += batch_inserted
            updated += len(chunk) - batch_inserted

        if attempted:
            self._logger.debug(
                "batch_written",
                file_type=file_type.value,
                inserted=inserted,
                updated=updated,
                skipped=len(classified.skip),
                failed=failed,
                dangling_references=dangling,
            )

        return BatchWriteResult(
            attempted=attempted,
            succeeded=succeeded,
            inserted=inserted,
            updated=updated,
            failed=failed,
            error="; ".join(errors) if errors else None,
            dangling_references=dangling,
            sub_batches=sub_batches,
            failed_sub_batches=failed_sub_batches,
        )

    def write_genres(self, genres: Sequence[GenreRecord]) -> BatchWriteResult:
        """Upsert new or changed genre names ahead of the batch that uses them."""
        attempted = succeeded = failed = 0
        errors: list[str] = []
        for chunk in self._split(list(genres)):
            attempted += len(chunk)
            try:
                self._store.upsert_genres(chunk, self._timeout)
            except BatchWriteError as exc:
                failed += len(chunk)
                errors.append(exc.message)
                self._logger.warning("genre_write_failed", records=len(chunk), error=exc.message)
                continue
            succeeded += len(chunk)
        return BatchWriteResult(
            attempted=attempted,
            succeeded=succeeded,
            failed=failed,
            error="; ".join(errors) if errors else None,
        )

    def _split(self, records: list) -> list[list]:
        size = self._max_batch_size
        return [records[i : i + size] for i in range(0, len(records), size)]
