#!/usr/bin/env python3
"""
Entry point for one collector run.

Usage:
    metrics-collector --config config/collector.yaml
    metrics-collector --config config/collector.yaml --skip-torperf
    python -m metrics_collector.main --log-level DEBUG

The run:
1. Loads configuration from config/collector.yaml (or a custom config)
2. Acquires the run lock, exiting with status 1 if another run holds it
3. Imports relay descriptors from the archives directory into the enabled sinks
4. Downloads and merges the configured Torperf series
5. Releases the lock and prints a summary
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console
from rich.table import Table

from metrics_collector.archive_reader import ArchiveReader, ArchiveReadSummary
from metrics_collector.archive_writer import ArchiveWriter
from metrics_collector.cleanup import rename_tmp_files
from metrics_collector.config import CollectorConfig, load_config
from metrics_collector.consumers import ConsumerFanout
from metrics_collector.database import DescriptorDatabase
from metrics_collector.descriptor_parser import DescriptorParser
from metrics_collector.health import ConsensusHealthChecker
from metrics_collector.import_history import IMPORT_HISTORY_FILE, ImportHistoryLedger
from metrics_collector.inventory import DescriptorInventory
from metrics_collector.lockfile import LockFile
from metrics_collector.logging_config import setup_logging
from metrics_collector.relay_stats import RelayStats
from metrics_collector.torperf_downloader import SourceOutcome, TorperfDownloader

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectorArgs:
    """Parsed CLI arguments for a collector run."""

    config: Path | None
    skip_descriptors: bool
    skip_torperf: bool
    log_level: str | None


def _parse_args(argv: list[str] | None = None) -> CollectorArgs:
    parser = argparse.ArgumentParser(
        description="Import relay descriptors and merge Torperf measurements",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config file (default: config/collector.yaml)",
    )
    parser.add_argument(
        "--skip-descriptors",
        action="store_true",
        help="Do not import relay descriptors from the archives directory",
    )
    parser.add_argument(
        "--skip-torperf",
        action="store_true",
        help="Do not download or merge Torperf files",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for the log file (default: from config file, typically INFO)",
    )

    ns = parser.parse_args(argv)
    return CollectorArgs(
        config=ns.config,
        skip_descriptors=ns.skip_descriptors,
        skip_torperf=ns.skip_torperf,
        log_level=ns.log_level,
    )


def build_fanout(config: CollectorConfig) -> ConsumerFanout:
    """Instantiate the sinks enabled in the config, in dispatch order."""
    stats_dir = config.stats_directory
    return ConsumerFanout.from_sinks(
        archive=ArchiveWriter(config.directory_archives_output) if config.write_directory_archives else None,
        database=DescriptorDatabase(config.database_directory) if config.import_to_database else None,
        stats=RelayStats(stats_dir) if config.write_relay_stats else None,
        inventory=DescriptorInventory(stats_dir) if config.track_missing_descriptors else None,
        health=ConsensusHealthChecker(stats_dir) if config.check_consensus_health else None,
    )


def import_descriptors(config: CollectorConfig) -> ArchiveReadSummary:
    ledger: ImportHistoryLedger | None = None
    if config.keep_import_history:
        ledger = ImportHistoryLedger(config.stats_directory / IMPORT_HISTORY_FILE)
        ledger.load()

    fanout = build_fanout(config)
    reader = ArchiveReader(DescriptorParser(fanout), config.archives_directory, ledger)
    summary = reader.read()
    fanout.close()

    if ledger is not None:
        ledger.persist()
    if config.write_directory_archives and config.directory_archives_output.exists():
        rename_tmp_files(config.directory_archives_output)
    return summary


def _print_summary(descriptors: ArchiveReadSummary | None, torperf: list[SourceOutcome] | None) -> None:
    console = Console()
    table = Table(title="Collector run")
    table.add_column("Stage")
    table.add_column("Item")
    table.add_column("Result", justify="right")

    if descriptors is not None:
        table.add_row("descriptors", "parsed", f"{descriptors.parsed:,}")
        table.add_row("descriptors", "ignored", f"{descriptors.ignored:,}")
        table.add_row("descriptors", "problems", str(len(descriptors.problems)))
    for outcome in torperf or []:
        if outcome.merge is None:
            result = "not merged"
        else:
            result = f"{outcome.merge.added:,} new / {outcome.merge.written:,} (until {outcome.merge.watermark})"
        table.add_row("torperf", outcome.data_file, result)

    console.print(table)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for a collector run."""
    args = _parse_args(argv)

    try:
        config = CollectorConfig.from_mapping(load_config(args.config))
    except (FileNotFoundError, ValueError) as e:
        logger.error("Could not load configuration: %s", e)
        return 1

    setup_logging(config.log_directory, "collector", args.log_level or config.log_level)
    logger.info("Starting collector.")

    lock = LockFile(config.lock_file)
    if not lock.acquire():
        logger.error("Warning: collector is already running or has not exited cleanly! Exiting!")
        return 1

    descriptors: ArchiveReadSummary | None = None
    torperf: list[SourceOutcome] | None = None
    try:
        if not args.skip_descriptors:
            descriptors = import_descriptors(config)
        if config.process_torperf_files and not args.skip_torperf:
            torperf = TorperfDownloader(config).run()
    finally:
        lock.release()

    _print_summary(descriptors, torperf)
    logger.info("Terminating collector.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
