"""Run progress publishing with callback-based listener notification.

Keeps the latest :class:`ProgressEvent` per period and file type and
broadcasts every event to registered listener callbacks.  Listeners are
keyed by period key (or registered for all periods) so concurrent runs do
not cross-talk.

# ─── HOW PROGRESS PUBLISHING WORKS ────────────────────────────────────
#
#   Orchestrator ──publish()──→ ProgressPublisher ──callback()──→ relay/UI
#                                                  ──→ (any other listener)
#
#   - Listener errors are caught and logged, so one broken listener can't
#     stall ingestion or starve the other listeners
#   - Runs execute on worker threads, so state is guarded by a lock and
#     callbacks are invoked outside it
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import threading
from collections.abc import Callable

import structlog

from src.models.catalog import FileType
from src.models.ingestion import ProgressEvent
from src.utils.logging import get_logger

ProgressListener = Callable[[ProgressEvent], None]

_ALL_PERIODS = "*"


class ProgressPublisher:
    """Tracks and broadcasts ingestion progress via callbacks."""

    def __init__(self) -> None:
        self._latest: dict[str, dict[FileType | None, ProgressEvent]] = {}
        self._listeners: dict[str, list[ProgressListener]] = {}
        self._lock = threading.Lock()
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def publish(self, event: ProgressEvent) -> None:
        """Record ``event`` and notify the period's and the global listeners."""
        key = event.period_key or _ALL_PERIODS
        with self._lock:
            self._latest.setdefault(key, {})[event.file_type] = event
            listeners = [
                *self._listeners.get(key, []),
                *(self._listeners.get(_ALL_PERIODS, []) if key != _ALL_PERIODS else []),
            ]

        self._logger.debug(
            "progress_update",
            period_key=event.period_key,
            file_type=event.file_type.value if event.file_type else None,
            stage=event.stage.value,
            records_processed=event.records_processed,
            percentage=event.percentage,
        )

        for callback in listeners:
            try:
                callback(event)
            except Exception as exc:  # noqa: BLE001
                self._logger.warning(
                    "listener_callback_error",
                    period_key=event.period_key,
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )

    def subscribe(self, callback: ProgressListener, period_key: str | None = None) -> None:
        """Register ``callback`` for one period, or for all when ``period_key`` is None."""
        key = period_key or _ALL_PERIODS
        with self._lock:
            listeners = self._listeners.setdefault(key, [])
            if callback not in listeners:
                listeners.append(callback)

    def unsubscribe(self, callback: ProgressListener, period_key: str | None = None) -> None:
        key = period_key or _ALL_PERIODS
        with self._lock:
            listeners = self._listeners.get(key, [])
            if callback in listeners:
                listeners.remove(callback)

    def latest(self, period_key: str | None = None) -> list[ProgressEvent]:
        """Return the most recent event per file type for a period."""
        with self._lock:
            return list(self._latest.get(period_key or _ALL_PERIODS, {}).values())
