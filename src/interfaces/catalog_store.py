"""Abstract base class for the relational catalog store.

Defines the contract the batch writer and the orchestrator rely on to read
the stored content hashes and to apply one batch of upserts atomically.
The adapter pattern allows the SQLite store to be swapped for another
relational backend without touching the ingestion logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from src.models.catalog import CatalogRecord, FileType, GenreRecord, NaturalKey


class ICatalogStore(ABC):
    """Contract for catalog persistence.

    All operations are synchronous: each ingestion run executes on its own
    worker thread.  Implementations translate backend errors into the
    ingestion error hierarchy:

    * :class:`~src.utils.errors.BatchWriteError`: the batch was rolled back,
      the store is still usable.
    * :class:`~src.utils.errors.BatchTimeoutError`: the batch exceeded its
      transaction timeout and was rolled back.
    * :class:`~src.utils.errors.StoreUnavailableError`: the store cannot be
      used any more (closed, unopenable, disk failure).
    """

    @abstractmethod
    def initialize(self) -> None:
        """Create tables and indexes if missing."""

    @abstractmethod
    def load_hash_index(self, file_type: FileType) -> dict[NaturalKey, str]:
        """Return ``{natural_key: content_hash}`` for every stored record of a type."""

    @abstractmethod
    def load_genre_index(self) -> dict[str, str]:
        """Return ``{genre_name: content_hash}`` for every stored genre."""

    @abstractmethod
    def upsert_batch(
        self,
        file_type: FileType,
        records: Sequence[CatalogRecord],
        timeout_seconds: float | None = None,
    ) -> int:
        """Upsert ``records`` and their relationship rows in one transaction.

        Relationship rows pointing at targets that do not exist in the
        store are not written.

        Returns
        -------
        int
            Number of dangling references that were dropped.
        """

    @abstractmethod
    def upsert_genres(
        self,
        records: Sequence[GenreRecord],
        timeout_seconds: float | None = None,
    ) -> None:
        """Upsert genre/style names in one transaction."""

    @abstractmethod
    def count(self, file_type: FileType) -> int:
        """Return the number of stored records of a type."""

    @abstractmethod
    def close(self) -> None:
        """Release all connections.  Later calls raise StoreUnavailableError."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""
