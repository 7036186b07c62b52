"""Abstract base class for processing-period persistence.

The repository stores one :class:`~src.models.processing.ProcessingPeriod`
per ``YYYY-MM`` key.  Lifecycle guards are enforced here as compare-and-set
writes so two processes sharing the database cannot both start a run for
the same period.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from src.models.processing import ProcessingPeriod, ProcessingStatus


class IStateRepository(ABC):
    """Contract for processing-period persistence."""

    @abstractmethod
    def initialize(self) -> None:
        """Create the backing table if missing."""

    @abstractmethod
    def get(self, period_key: str) -> ProcessingPeriod | None:
        """Return the stored period, or ``None`` when it was never created."""

    @abstractmethod
    def create_if_missing(self, period: ProcessingPeriod) -> ProcessingPeriod:
        """Insert ``period`` unless a row exists; return the stored row."""

    @abstractmethod
    def save(self, period: ProcessingPeriod) -> None:
        """Unconditionally persist ``period`` (insert or replace)."""

    @abstractmethod
    def compare_and_set(
        self,
        period: ProcessingPeriod,
        expected: Iterable[ProcessingStatus],
    ) -> bool:
        """Persist ``period`` only if the stored status is one of ``expected``.

        Returns
        -------
        bool
            ``True`` if the row was updated, ``False`` if the stored status
            did not match (another writer won the race).
        """

    @abstractmethod
    def latest(self) -> ProcessingPeriod | None:
        """Return the period with the greatest ``year_month``."""

    @abstractmethod
    def list_periods(self) -> list[ProcessingPeriod]:
        """Return all periods, newest first."""
