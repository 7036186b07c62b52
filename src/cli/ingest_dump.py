# =============================================================================
# src/cli/ingest_dump.py: Discogs Monthly Dump Ingestion CLI
# =============================================================================
#
# Operator front end over IngestionService.  Every subcommand runs inline
# (no background pool) and prints the TriggerResult it gets back; the exit
# code is 0 on success and 1 on any failed result.
#
# Workflow (normal order):
#   1. download     Fetch CHECKSUM.txt and the four dumps for a month,
#                   validate them, then (unless --no-process) ingest them
#   2. process      Ingest an already downloaded month; completed file
#                   types are skipped, so re-running resumes a failed run
#   3. status       Show the month's lifecycle state and per-file counters
#
# Recovery:
#   reprocess       Clear per-file step stats and ingest the month again
#   reset           Completed/failed month back to not_started
#   reset-stuck     Month stuck in downloading/processing back to
#                   not_started; deletes its partial artifacts
#
# Dry run:
#   parse           Decode and classify without writing anything
#
# Ctrl-C during download/process requests cancellation; the run stops
# after the batch in flight and the month is marked failed.
# =============================================================================

"""CLI for downloading and ingesting Discogs monthly data dumps.

Usage::

    # Download this month's dumps and ingest them
    python -m src.cli.ingest_dump download

    # Ingest only artists and labels of a month, first 100 records each
    python -m src.cli.ingest_dump process --period 2026-10 \\
        --types artists,labels --max-records 100

    # What would change, without writing
    python -m src.cli.ingest_dump parse --period 2026-10 --types releases

    # Check progress
    python -m src.cli.ingest_dump status --period 2026-10
"""

from __future__ import annotations

import argparse
import signal
import sys
from collections.abc import Callable
from typing import Any

from src.config.loader import build_settings
from src.main import Components, build_components
from src.models.ingestion import TriggerResult
from src.models.processing import StatusReport
from src.utils.logging import configure_logging

# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _print_result(result: TriggerResult) -> int:
    state = "OK" if result.success else f"FAILED [{result.error_code}]"
    period = f" ({result.period_key})" if result.period_key else ""
    print(f"{state}{period}: {result.message}")

    if result.per_file_results:
        print()
        print(
            f"  {'type':<9} {'stage':<10} {'seen':>10} {'inserted':>10} "
            f"{'updated':>10} {'skipped':>10} {'errored':>8} {'unproc.':>10}"
        )
        for fr in result.per_file_results:
            flag = "  (at risk)" if fr.at_risk else ""
            print(
                f"  {fr.file_type.value:<9} {fr.stage.value:<10} {fr.total_seen:>10,} "
                f"{fr.inserted:>10,} {fr.updated:>10,} {fr.skipped:>10,} "
                f"{fr.errored:>8,} {fr.unprocessed:>10,}{flag}"
            )
            for error in fr.errors[:5]:
                print(f"      ! {error}")
            if len(fr.errors) > 5:
                print(f"      ... {len(fr.errors) - 5} more")

    if result.aggregate is not None:
        agg = result.aggregate
        print()
        print(
            f"  Total: seen={agg.total_seen:,} inserted={agg.inserted:,} "
            f"updated={agg.updated:,} skipped={agg.skipped:,} "
            f"errored={agg.errored:,} unprocessed={agg.unprocessed:,}"
        )
    for warning in result.warnings:
        print(f"  Warning: {warning}")
    return 0 if result.success else 1


def _print_status(report: StatusReport) -> None:
    active = " (active)" if report.active else ""
    print(f"Period {report.year_month}: {report.status.value}{active}")
    print(f"  Started:              {report.started_at or '-'}")
    print(f"  Download completed:   {report.download_completed_at or '-'}")
    print(f"  Processing completed: {report.processing_completed_at or '-'}")
    print(f"  Retry count:          {report.retry_count}")
    if report.error_message:
        print(f"  Last error:           {report.error_message}")
    if report.files:
        print("  Files:")
        for file_type, info in sorted(report.files.items(), key=lambda kv: kv[0].value):
            size = f"{info.size:,} bytes" if info.size is not None else "-"
            print(f"    {file_type.value:<9} {info.status.value:<12} {size}")
    if report.steps:
        print("  Steps:")
        for file_type, step in sorted(report.steps.items(), key=lambda kv: kv[0].value):
            print(
                f"    {file_type.value:<9} {step.status.value:<10} total={step.total:,} "
                f"inserted={step.inserted:,} updated={step.updated:,} "
                f"skipped={step.skipped:,} errored={step.errored:,}"
                f"{' at-risk' if step.at_risk else ''}"
            )


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


def _types(args: argparse.Namespace) -> list[str] | None:
    if not args.types:
        return None
    return args.types.split(",")


def _limits(args: argparse.Namespace) -> dict[str, Any] | None:
    limits = {
        "max_records": args.max_records,
        "max_batch_size": args.batch_size,
    }
    limits = {key: value for key, value in limits.items() if value is not None}
    return limits or None


def _cancel_on_interrupt(components: Components, period_key: str | None) -> None:
    """Route Ctrl-C to a cooperative cancel of the run for ``period_key``."""

    def _handler(signum: int, _frame: object) -> None:
        key = period_key
        if key is None:
            latest = components.tracker.latest()
            key = latest.year_month if latest else None
        if key is None or not components.service.cancel(key).success:
            raise KeyboardInterrupt
        print("\nCancellation requested; finishing the current batch...", file=sys.stderr)

    signal.signal(signal.SIGINT, _handler)


def _handle_download(components: Components, args: argparse.Namespace) -> int:
    _cancel_on_interrupt(components, args.period)
    return _print_result(components.service.trigger_download(args.period, wait=True))


def _handle_process(components: Components, args: argparse.Namespace) -> int:
    _cancel_on_interrupt(components, args.period)
    result = components.service.process(_types(args), _limits(args), period_key=args.period)
    return _print_result(result)


def _handle_reprocess(components: Components, args: argparse.Namespace) -> int:
    _cancel_on_interrupt(components, args.period)
    result = components.service.trigger_reprocess(
        args.period, _types(args), _limits(args), wait=True
    )
    return _print_result(result)


def _handle_parse(components: Components, args: argparse.Namespace) -> int:
    result = components.service.parse(_types(args), _limits(args), period_key=args.period)
    return _print_result(result)


def _handle_status(components: Components, args: argparse.Namespace) -> int:
    if args.all:
        reports = components.service.list_statuses()
        if not reports:
            print("No periods tracked yet.")
        for report in reports:
            _print_status(report)
        return 0
    report = components.service.get_status(args.period)
    if report is None:
        print("No periods tracked yet." if args.period is None else f"{args.period}: not tracked")
        return 1
    _print_status(report)
    return 0


def _handle_reset(components: Components, args: argparse.Namespace) -> int:
    return _print_result(components.service.reset(args.period))


def _handle_reset_stuck(components: Components, args: argparse.Namespace) -> int:
    return _print_result(components.service.reset_stuck_download(args.period))


_HANDLERS: dict[str, Callable[[Components, argparse.Namespace], int]] = {
    "download": _handle_download,
    "process": _handle_process,
    "reprocess": _handle_reprocess,
    "parse": _handle_parse,
    "status": _handle_status,
    "reset": _handle_reset,
    "reset-stuck": _handle_reset_stuck,
}


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _add_run_options(sub: argparse.ArgumentParser) -> None:
    sub.add_argument(
        "--types",
        help="Comma-separated file types (artists,labels,masters,releases; default: all)",
    )
    sub.add_argument(
        "--max-records",
        type=int,
        dest="max_records",
        help="Stop after N records per file type (0 = whole file)",
    )
    sub.add_argument(
        "--batch-size",
        type=int,
        dest="batch_size",
        help="Records per write transaction",
    )


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the ingestion CLI."""
    parser = argparse.ArgumentParser(
        prog="python -m src.cli.ingest_dump",
        description="Download Discogs monthly data dumps and sync them into the catalog store.",
    )
    parser.add_argument(
        "--config",
        default="config/config.yaml",
        help="Path to the YAML config (default: config/config.yaml)",
    )
    parser.add_argument("--data-dir", dest="data_dir", help="Override the dump directory")
    parser.add_argument("--db", dest="db", help="Override the catalog SQLite path")
    parser.add_argument("--log-level", dest="log_level", help="Override the log level")
    parser.add_argument(
        "--json-logs", action="store_true", dest="json_logs", help="Emit JSON log lines"
    )

    subparsers = parser.add_subparsers(dest="command", help="Ingestion commands")

    # -- download --
    dl = subparsers.add_parser("download", help="Download and validate a month's dumps")
    dl.add_argument("--period", help="Month as YYYY-MM (default: current month)")
    dl.add_argument(
        "--no-process",
        action="store_true",
        dest="no_process",
        help="Do not ingest after a successful download",
    )

    # -- process --
    proc = subparsers.add_parser("process", help="Ingest a downloaded month (resumable)")
    proc.add_argument("--period", help="Month as YYYY-MM (default: latest tracked)")
    _add_run_options(proc)

    # -- reprocess --
    reproc = subparsers.add_parser("reprocess", help="Clear step stats and ingest again")
    reproc.add_argument("--period", required=True, help="Month as YYYY-MM")
    _add_run_options(reproc)

    # -- parse --
    prs = subparsers.add_parser("parse", help="Decode and classify without writing")
    prs.add_argument("--period", help="Month as YYYY-MM (default: latest available)")
    _add_run_options(prs)

    # -- status --
    st = subparsers.add_parser("status", help="Show a month's processing state")
    st.add_argument("--period", help="Month as YYYY-MM (default: latest tracked)")
    st.add_argument("--all", action="store_true", help="Show every tracked month")

    # -- reset / reset-stuck --
    rs = subparsers.add_parser("reset", help="Completed/failed month back to not_started")
    rs.add_argument("--period", required=True, help="Month as YYYY-MM")
    rss = subparsers.add_parser(
        "reset-stuck", help="Recover a month stuck downloading/processing (deletes artifacts)"
    )
    rss.add_argument("--period", required=True, help="Month as YYYY-MM")

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """CLI entry point: build components from config and dispatch the subcommand."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    overrides: dict[str, Any] = {
        "data_dir": args.data_dir,
        "catalog_db_path": args.db,
        "log_level": args.log_level,
    }
    if args.command == "download" and args.no_process:
        overrides["auto_process_after_download"] = False
    app_settings = build_settings(args.config, **overrides)
    configure_logging(
        log_level=app_settings.log_level,
        json_output=args.json_logs or app_settings.app_env == "production",
    )

    components = build_components(app_settings)
    previous_handler = signal.getsignal(signal.SIGINT)
    try:
        exit_code = _HANDLERS[args.command](components, args)
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        components.close()
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
