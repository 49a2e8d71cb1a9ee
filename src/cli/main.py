"""Propflow CLI entry points.
This module exposes commands for ingesting sources and inspecting runs.
It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any, Iterator, Sequence

from core.config import PropflowConfig, parse_log_level
from core.errors import PropflowConfigError, PropflowError
from core.logging_config import configure_logging
from core.sources import build_sources
from ingest.orchestrator import SourceOutcome, run_ingestion
from store.database import create_store_engine, ensure_schema
from store.run_registry import IngestionRunRegistry

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130
DEFAULT_RUNS_LIMIT = 20
DEFAULT_ABANDONED_RUN_REASON = "abandoned: marked failed by operator"


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(
        prog="propflow", description="Real-estate data ingestion CLI"
    )
    common = _build_common_parser()
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_ingest_command(subparsers, common)
    _add_runs_command(subparsers, common)
    _add_sources_command(subparsers, common)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the propflow CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = _build_config(args)
        configure_logging(config.log_level, config.log_format)
        if args.command == "ingest":
            return _run_ingest_command(config, args)
        if args.command == "runs":
            return _run_runs_command(config, args)
        if args.command == "sources":
            return _run_sources_command(config)
    except PropflowConfigError as error:
        print(f"error: {error}", file=sys.stderr)
        return EXIT_USAGE
    except PropflowError as error:
        print(f"error: {error}", file=sys.stderr)
        return EXIT_FAILED
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    parser.error(f"Unsupported command: {args.command}")
    return EXIT_USAGE


def _build_config(args: argparse.Namespace) -> PropflowConfig:
    """Build runtime config from environment plus CLI overrides."""
    config = PropflowConfig.from_env()
    overrides: dict[str, Any] = {}
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.log_level:
        overrides["log_level"] = parse_log_level(args.log_level)
    if args.sources_file:
        overrides["sources_file"] = Path(args.sources_file).expanduser()
    if args.command == "ingest":
        if args.temp_dir:
            overrides["temp_dir"] = Path(args.temp_dir).expanduser()
        if args.limit_records is not None:
            overrides["limit_records"] = args.limit_records
        if args.max_workers is not None:
            overrides["max_workers"] = args.max_workers
    return replace(config, **overrides)


def _run_ingest_command(config: PropflowConfig, args: argparse.Namespace) -> int:
    """Handle ingest command.

    Args:
        config: Runtime configuration.
        args: Parsed CLI args.

    Returns:
        0 when every run completed, 1 when any failed, 130 when interrupted.
    """
    cancel_event = threading.Event()
    with _cancel_on_signals(cancel_event):
        outcomes = run_ingestion(config, args.sources, cancel_event)
    for outcome in outcomes:
        print(_format_outcome(outcome))
    if cancel_event.is_set():
        return EXIT_INTERRUPTED
    return EXIT_OK if all(outcome.succeeded for outcome in outcomes) else EXIT_FAILED


def _run_runs_command(config: PropflowConfig, args: argparse.Namespace) -> int:
    """Handle runs command, listing runs or failing an abandoned one."""
    engine = create_store_engine(config.database_url)
    try:
        ensure_schema(engine)
        registry = IngestionRunRegistry(engine)
        if args.fail is not None:
            runs = (registry.mark_failed(args.fail, args.reason),)
        else:
            runs = registry.list_runs(args.source, args.limit)
    finally:
        engine.dispose()
    for run in runs:
        print(
            f"{run.run_id}\t{run.source_id}\t{run.status}\t"
            f"{run.started_at.isoformat()}\t"
            f"{run.completed_at.isoformat() if run.completed_at else '-'}\t"
            f"fetched={run.counts.fetched}\tinserted={run.counts.inserted}\t"
            f"updated={run.counts.updated}\tskipped={run.counts.skipped}\t"
            f"rejected={run.counts.rejected}\t{run.error_message or '-'}"
        )
    return EXIT_OK


def _run_sources_command(config: PropflowConfig) -> int:
    """Handle sources command."""
    for source in build_sources(config):
        print(
            f"{source.source_id}\t{source.kind}\t{source.region}\t"
            f"{'enabled' if source.enabled else 'disabled'}\t{source.url}"
        )
    return EXIT_OK


def _format_outcome(outcome: SourceOutcome) -> str:
    counts = outcome.counts
    run_label = outcome.run_id if outcome.run_id is not None else "-"
    return (
        f"{outcome.source_id}\t{outcome.status}\trun={run_label}\t"
        f"fetched={counts.fetched}\tinserted={counts.inserted}\t"
        f"updated={counts.updated}\tskipped={counts.skipped}\t"
        f"rejected={counts.rejected}\t{outcome.error_message or '-'}"
    )


@contextmanager
def _cancel_on_signals(cancel_event: threading.Event) -> Iterator[None]:
    """Set the cancel event on SIGINT/SIGTERM while the block runs."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handle_signal(signum: int, frame: Any) -> None:
        cancel_event.set()

    previous_handlers = {
        signum: signal.signal(signum, _handle_signal) for signum in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        yield
    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)


def _build_common_parser() -> argparse.ArgumentParser:
    """Build options shared by every subcommand."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--database-url", help="Override PROPFLOW_DATABASE_URL")
    common.add_argument("--log-level", help="Override PROPFLOW_LOG_LEVEL")
    common.add_argument(
        "--sources-file", help="Override PROPFLOW_SOURCES_FILE with a YAML source matrix"
    )
    return common


def _add_ingest_command(subparsers: Any, common: argparse.ArgumentParser) -> None:
    """Register ingest subcommand.

    Args:
        subparsers: Argparse subparsers group.
        common: Parent parser with shared options.
    """
    parser = subparsers.add_parser(
        "ingest", parents=[common], help="Ingest named sources (default: all enabled)"
    )
    parser.add_argument("sources", nargs="*", help="Source ids to run")
    parser.add_argument("--temp-dir", help="Override PROPFLOW_TEMP_DIR")
    parser.add_argument(
        "--limit-records",
        type=_non_negative_int,
        help="Cap parsed rows per source (0 = unlimited)",
    )
    parser.add_argument(
        "--max-workers",
        type=_positive_int,
        help="Sources run concurrently",
    )


def _add_runs_command(subparsers: Any, common: argparse.ArgumentParser) -> None:
    """Register runs subcommand.

    Args:
        subparsers: Argparse subparsers group.
        common: Parent parser with shared options.
    """
    parser = subparsers.add_parser("runs", parents=[common], help="List recorded ingestion runs")
    parser.add_argument("--source", help="Only list runs for this source id")
    parser.add_argument(
        "--limit", type=_positive_int, default=DEFAULT_RUNS_LIMIT, help="Maximum runs to list"
    )
    parser.add_argument(
        "--fail",
        type=_positive_int,
        metavar="RUN_ID",
        help="Mark a run left running by a dead process as failed",
    )
    parser.add_argument(
        "--reason",
        default=DEFAULT_ABANDONED_RUN_REASON,
        help="Error message recorded with --fail",
    )


def _add_sources_command(subparsers: Any, common: argparse.ArgumentParser) -> None:
    """Register sources subcommand.

    Args:
        subparsers: Argparse subparsers group.
        common: Parent parser with shared options.
    """
    subparsers.add_parser("sources", parents=[common], help="List configured sources")


def _non_negative_int(raw_value: str) -> int:
    return _bounded_int(raw_value, minimum=0)


def _positive_int(raw_value: str) -> int:
    return _bounded_int(raw_value, minimum=1)


def _bounded_int(raw_value: str, minimum: int) -> int:
    try:
        value = int(raw_value)
    except ValueError as error:
        raise argparse.ArgumentTypeError(f"expected an integer, got '{raw_value}'") from error
    if value < minimum:
        raise argparse.ArgumentTypeError(f"must be >= {minimum}, got {value}")
    return value
