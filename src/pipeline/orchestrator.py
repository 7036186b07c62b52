"""Dependency-ordered orchestrator for one period's ingestion run.

Sequences the entity files labels → artists → masters → releases,
whatever order they were requested in, and drives each one through

    pending → parsing → classifying → writing → done | errored → aggregated

For every batch of decoded records the orchestrator tags each record with
its content hash, splits the batch against the stored hashes, upserts the
genres the batch introduces and hands the rest to the
:class:`~src.services.batch_writer.BatchWriter`.

ARCHITECTURE NOTE:
    Per-file failures are isolated: a file type that errors (unreadable
    dump, failed batches) does not stop the file types after it.  A
    dependent whose prerequisite failed, in this run or in a previous one
    recorded in the period's step stats, still runs but is flagged
    ``at_risk`` and a dependency warning is added to the summary.

    Steps already completed for the period are skipped, so a retried or
    resumed run only redoes what is missing.

    Two conditions stop the run early: the cancellation token (checked
    between batches, after the in-flight batch is committed) and
    :class:`StoreUnavailableError`.  Both mark the period failed.
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import structlog

from src.interfaces.catalog_store import ICatalogStore
from src.models.catalog import (
    DEPENDENCIES,
    CatalogRecord,
    FileType,
    GenreRecord,
    MasterRecord,
    ReleaseRecord,
    order_file_types,
)
from src.models.ingestion import (
    AggregateCounters,
    FileResult,
    Limits,
    ProgressEvent,
    RunStage,
    RunSummary,
)
from src.models.processing import StepState, StepStatus, artifact_path, utcnow
from src.pipeline.progress_tracker import ProgressPublisher
from src.services.batch_writer import BatchWriter
from src.services.change_classifier import classify
from src.services.content_hash import with_content_hash
from src.services.dump_decoder import DEFAULT_READ_SIZE, DumpDecoder
from src.services.state_tracker import CancellationToken, ProcessingStateTracker
from src.utils.errors import (
    BatchWriteError,
    ConfigurationError,
    DumpReadError,
    RunCancelledError,
    StoreUnavailableError,
)
from src.utils.logging import bind_run_context, get_logger

_GENRE_OWNERS = frozenset({FileType.MASTERS, FileType.RELEASES})


@dataclass
class _FileRun:
    """Mutable counters for one file type while its run is in progress."""

    file_type: FileType
    max_errors: int
    at_risk: bool = False
    stage: RunStage = RunStage.PENDING
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed_records: int = 0
    failed_batches: int = 0
    dangling_references: int = 0
    errors: list[str] = field(default_factory=list)
    decoder: DumpDecoder | None = None
    started_at: float = field(default_factory=time.monotonic)
    started_wall: datetime = field(default_factory=utcnow)

    def add_error(self, message: str) -> None:
        if len(self.errors) < self.max_errors:
            self.errors.append(message)

    def fail(self, message: str) -> None:
        self.stage = RunStage.ERRORED
        # The terminal failure is always kept, even past the cap.
        if len(self.errors) >= self.max_errors:
            self.errors[-1] = message
        else:
            self.errors.append(message)

    def to_result(self) -> FileResult:
        decoder = self.decoder
        malformed = decoder.malformed if decoder else 0
        errors = [*(decoder.errors if decoder else []), *self.errors][: self.max_errors]
        return FileResult(
            file_type=self.file_type,
            stage=self.stage,
            total_seen=decoder.total_seen if decoder else 0,
            decoded=decoder.decoded if decoder else 0,
            inserted=self.inserted,
            updated=self.updated,
            skipped=self.skipped,
            errored=malformed + self.failed_records,
            malformed=malformed,
            unprocessed=decoder.unprocessed if decoder else 0,
            failed_batches=self.failed_batches,
            dangling_references=self.dangling_references,
            errors=errors,
            at_risk=self.at_risk,
            duration_seconds=round(time.monotonic() - self.started_at, 3),
        )


class IngestionOrchestrator:
    """Runs the decode → hash → classify → write pipeline for a period.

    All collaborators are injected; the orchestrator never creates them.
    """

    def __init__(
        self,
        store: ICatalogStore,
        state_tracker: ProcessingStateTracker,
        progress: ProgressPublisher,
        data_dir: str | Path,
        batch_timeout_seconds: float | None = 30.0,
        max_error_messages: int = 100,
        count_unprocessed: bool = True,
        read_size: int = DEFAULT_READ_SIZE,
    ) -> None:
        self._store = store
        self._tracker = state_tracker
        self._progress = progress
        self._data_dir = Path(data_dir)
        self._batch_timeout = batch_timeout_seconds
        self._max_errors = max_error_messages
        self._count_unprocessed = count_unprocessed
        self._read_size = read_size
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process(
        self,
        period_key: str,
        file_types: Sequence[FileType],
        limits: Limits,
        token: CancellationToken | None = None,
    ) -> RunSummary:
        """Ingest ``file_types`` of a period into the store.

        Moves the period to ``processing`` first unless the caller already
        did and passes the run's ``token``; a :class:`StateConflictError`
        from the tracker is raised before any file is opened.  On return the
        period is ``completed`` or ``failed``.
        """
        order = self._check_request(file_types)
        if token is None:
            token = self._tracker.begin_processing(period_key)
        period = self._tracker.get(period_key)
        stats = period.processing_stats if period else None

        results: list[FileResult] = []
        warnings: list[str] = []
        failed_types: set[FileType] = set()
        if stats is not None:
            failed_types = {
                ft for ft, step in stats.steps.items() if step.status == StepState.FAILED
            }
        fatal: str | None = None
        cancelled = False

        with bind_run_context(period_key=period_key):
            self._logger.info(
                "ingestion_run_started",
                file_types=[ft.value for ft in order],
                max_records=limits.max_records,
                max_batch_size=limits.max_batch_size,
            )
            for file_type in order:
                if stats is not None and stats.is_step_completed(file_type):
                    results.append(self._skipped(period_key, file_type))
                    continue
                if token.cancelled:
                    cancelled = True
                    break

                at_risk_on = sorted(ft.value for ft in DEPENDENCIES[file_type] & failed_types)
                if at_risk_on:
                    warning = (
                        f"{file_type.value} processed although prerequisite(s) "
                        f"{', '.join(at_risk_on)} failed"
                    )
                    warnings.append(warning)
                    self._logger.warning(
                        "dependency_warning", file_type=file_type.value, failed=at_risk_on
                    )

                run = _FileRun(file_type, self._max_errors, at_risk=bool(at_risk_on))
                self._tracker.record_step(
                    period_key,
                    file_type,
                    StepStatus(status=StepState.RUNNING, started_at=utcnow(), at_risk=run.at_risk),
                    token,
                )
                try:
                    with bind_run_context(file_type=file_type.value):
                        self._run_file(period_key, run, limits, write=True, token=token)
                except RunCancelledError as exc:
                    cancelled = True
                    run.fail(exc.message)
                except StoreUnavailableError as exc:
                    fatal = str(exc)
                    run.fail(fatal)

                result = run.to_result()
                results.append(result)
                self._tracker.record_step(period_key, file_type, self._step(run, result), token)
                if result.stage == RunStage.ERRORED:
                    failed_types.add(file_type)
                elif result.stage == RunStage.DONE:
                    failed_types.discard(file_type)
                if result.dangling_references:
                    warnings.append(
                        f"{file_type.value} dropped {result.dangling_references} reference(s) "
                        "to records not in the store; affected rows are rewritten next run"
                    )
                if cancelled or fatal:
                    break

            summary = self._finish(period_key, results, warnings, cancelled, fatal, token)
        return summary

    def parse(
        self,
        period_key: str,
        file_types: Sequence[FileType],
        limits: Limits,
    ) -> RunSummary:
        """Decode, hash and classify without writing or changing state.

        ``inserted``/``updated``/``skipped`` report what a ``process`` run
        would do against the current store contents.
        """
        order = self._check_request(file_types)
        results: list[FileResult] = []
        fatal: str | None = None
        with bind_run_context(period_key=period_key):
            for file_type in order:
                run = _FileRun(file_type, self._max_errors)
                try:
                    with bind_run_context(file_type=file_type.value):
                        self._run_file(period_key, run, limits, write=False, token=None)
                except StoreUnavailableError as exc:
                    fatal = str(exc)
                    run.fail(fatal)
                results.append(run.to_result())
                if fatal:
                    break

        aggregate = AggregateCounters.from_results(results)
        self._publish(period_key, None, RunStage.AGGREGATED, aggregate.total_seen)
        return RunSummary(
            period_key=period_key,
            success=fatal is None and all(r.stage != RunStage.ERRORED for r in results),
            file_results=results,
            aggregate=aggregate,
            error_message=fatal,
        )

    # ------------------------------------------------------------------
    # Per-file pipeline
    # ------------------------------------------------------------------

    def _run_file(
        self,
        period_key: str,
        run: _FileRun,
        limits: Limits,
        write: bool,
        token: CancellationToken | None,
    ) -> None:
        file_type = run.file_type
        run.stage = RunStage.PARSING
        self._publish(period_key, file_type, RunStage.PARSING, 0, limits.max_records)

        decoder = DumpDecoder(
            artifact_path(self._data_dir, period_key, file_type),
            file_type,
            max_records=limits.max_records,
            count_unprocessed=self._count_unprocessed,
            read_size=self._read_size,
            max_errors=self._max_errors,
        )
        run.decoder = decoder
        writer = BatchWriter(self._store, limits.max_batch_size, self._batch_timeout)
        try:
            existing = self._store.load_hash_index(file_type)
            genre_index = (
                dict(self._store.load_genre_index())
                if write and file_type in _GENRE_OWNERS
                else {}
            )
        except BatchWriteError as exc:
            run.fail(exc.message)
            self._logger.error("hash_index_load_failed", error=exc.message)
            self._publish(period_key, file_type, RunStage.ERRORED, 0, error=exc.message)
            return

        batch: list[CatalogRecord] = []
        try:
            for record in decoder.records():
                batch.append(with_content_hash(record))
                if len(batch) >= limits.max_batch_size:
                    self._flush(
                        period_key, run, batch, existing, genre_index, writer, write, limits
                    )
                    batch = []
                    if token is not None:
                        token.raise_if_cancelled()
            if batch:
                self._flush(period_key, run, batch, existing, genre_index, writer, write, limits)
        except DumpReadError as exc:
            run.fail(exc.message)
            self._logger.error("dump_read_failed", error=exc.message)
            self._publish(
                period_key, file_type, RunStage.ERRORED, decoder.decoded, error=exc.message
            )
            return

        if run.failed_batches:
            run.stage = RunStage.ERRORED
        else:
            run.stage = RunStage.DONE
        self._publish(period_key, file_type, run.stage, decoder.decoded, limits.max_records)
        self._logger.info(
            "file_ingested" if write else "file_parsed",
            total_seen=decoder.total_seen,
            inserted=run.inserted,
            updated=run.updated,
            skipped=run.skipped,
            malformed=decoder.malformed,
            failed_batches=run.failed_batches,
            unprocessed=decoder.unprocessed,
        )

    def _flush(
        self,
        period_key: str,
        run: _FileRun,
        batch: list[CatalogRecord],
        existing: dict,
        genre_index: dict[str, str],
        writer: BatchWriter,
        write: bool,
        limits: Limits,
    ) -> None:
        decoded = run.decoder.decoded if run.decoder else len(batch)
        run.stage = RunStage.CLASSIFYING
        classified = classify(batch, existing)
        run.skipped += len(classified.skip)

        if not write:
            run.inserted += len(classified.insert)
            run.updated += len(classified.update)
            self._publish(
                period_key, run.file_type, RunStage.CLASSIFYING, decoded, limits.max_records
            )
            return

        run.stage = RunStage.WRITING
        if run.file_type in _GENRE_OWNERS:
            self._write_genres(run, classified.to_write, genre_index, writer)

        result = writer.write(run.file_type, classified)
        run.inserted += result.inserted
        run.updated += result.updated
        run.failed_records += result.failed
        run.failed_batches += result.failed_sub_batches
        run.dangling_references += result.dangling_references
        if result.error:
            run.add_error(result.error)
        self._publish(period_key, run.file_type, RunStage.WRITING, decoded, limits.max_records)

    def _write_genres(
        self,
        run: _FileRun,
        owners: list[CatalogRecord],
        genre_index: dict[str, str],
        writer: BatchWriter,
    ) -> None:
        seen: dict[str, GenreRecord] = {}
        for owner in owners:
            if isinstance(owner, (MasterRecord, ReleaseRecord)):
                for genre in owner.genre_records():
                    seen.setdefault(genre.name, genre)
        if not seen:
            return
        classified = classify(list(seen.values()), genre_index)
        pending = classified.to_write
        if not pending:
            return
        result = writer.write_genres(pending)
        if result.error:
            run.add_error(result.error)
            return
        genre_index.update({g.name: g.content_hash for g in pending})

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _finish(
        self,
        period_key: str,
        results: list[FileResult],
        warnings: list[str],
        cancelled: bool,
        fatal: str | None,
        token: CancellationToken,
    ) -> RunSummary:
        aggregate = AggregateCounters.from_results(results)
        errored = [r.file_type.value for r in results if r.stage == RunStage.ERRORED]

        if cancelled:
            error_message: str | None = token.reason or "cancelled"
        elif fatal:
            error_message = fatal
        elif errored:
            error_message = f"file type(s) failed: {', '.join(errored)}"
        else:
            error_message = None

        if error_message is None:
            self._tracker.complete_processing(period_key, token)
        else:
            self._tracker.mark_failed(period_key, error_message, token)

        self._publish(
            period_key, None, RunStage.AGGREGATED, aggregate.total_seen, error=error_message
        )
        self._logger.info(
            "ingestion_run_finished",
            success=error_message is None,
            cancelled=cancelled,
            total_seen=aggregate.total_seen,
            inserted=aggregate.inserted,
            updated=aggregate.updated,
            skipped=aggregate.skipped,
            errored=aggregate.errored,
            unprocessed=aggregate.unprocessed,
            warnings=len(warnings),
        )
        return RunSummary(
            period_key=period_key,
            success=error_message is None,
            cancelled=cancelled,
            file_results=results,
            aggregate=aggregate,
            warnings=warnings,
            error_message=error_message,
        )

    def _skipped(self, period_key: str, file_type: FileType) -> FileResult:
        self._logger.info("step_already_completed", file_type=file_type.value)
        self._publish(period_key, file_type, RunStage.SKIPPED, 0)
        return FileResult(
            file_type=file_type, stage=RunStage.SKIPPED, skip_reason="already completed"
        )

    @staticmethod
    def _step(run: _FileRun, result: FileResult) -> StepStatus:
        if result.stage != RunStage.DONE:
            status = StepState.FAILED
        elif result.at_risk or result.dangling_references:
            # Not completed, so a resumed run writes this file type again.
            status = StepState.INCOMPLETE
        else:
            status = StepState.COMPLETED
        return StepStatus(
            status=status,
            total=result.total_seen,
            inserted=result.inserted,
            updated=result.updated,
            skipped=result.skipped,
            errored=result.errored,
            unprocessed=result.unprocessed,
            started_at=run.started_wall,
            completed_at=utcnow(),
            duration_seconds=result.duration_seconds,
            error_message=(
                run.errors[-1] if result.stage == RunStage.ERRORED and run.errors else None
            ),
            at_risk=result.at_risk,
        )

    @staticmethod
    def _check_request(file_types: Sequence[FileType]) -> list[FileType]:
        order = order_file_types(list(file_types))
        if not order:
            raise ConfigurationError("At least one file type must be requested")
        return order

    def _publish(
        self,
        period_key: str,
        file_type: FileType | None,
        stage: RunStage,
        processed: int,
        total: int | None = None,
        error: str | None = None,
    ) -> None:
        percentage = None
        if total:
            percentage = round(min(100.0, processed / total * 100.0), 1)
        elif stage in (RunStage.DONE, RunStage.AGGREGATED) and error is None:
            percentage = 100.0
        self._progress.publish(
            ProgressEvent(
                period_key=period_key,
                file_type=file_type,
                stage=stage,
                records_processed=processed,
                total_records=total,
                percentage=percentage,
                error_message=error,
            )
        )
