"""Processing-state persistence (one row per monthly dump period).

SQLiteStateRepository stores each ProcessingPeriod as JSON next to an
indexed status column, which the compare-and-set updates filter on.
"""

from src.providers.state.sqlite_state_repository import SQLiteStateRepository

__all__ = ["SQLiteStateRepository"]
