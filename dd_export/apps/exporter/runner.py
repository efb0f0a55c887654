"""
Export Runner - Validate and Export Commands

Wires the YAML mapping configuration, the Datadog page fetcher, the shared
rate limiter and the CSV sink into a FetchOrchestrator, and exposes the two
commands of the tool.

Usage:
    # Check a mapping against 10 sample logs, CSV printed on stdout
    dd-export validate --config mapping.yaml

    # Export the full range sequentially
    dd-export export --config mapping.yaml --output logs.csv

    # Export the full range with one worker per time partition
    dd-export export --config mapping.yaml --parallel
"""

import argparse
import asyncio
import csv
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence, TextIO

from dd_export.apps.exporter.fetcher import ExportStats, FetchOrchestrator, PageFetcher
from dd_export.utils.config import Settings, settings
from dd_export.utils.datadog import DatadogLogFetcher
from dd_export.utils.errors import ExportError, ProjectionError
from dd_export.utils.logging import setup_logging
from dd_export.utils.mapping import RecordProjector
from dd_export.utils.rate_limit import RateLimiter
from dd_export.utils.schemas import ExportConfig, load_export_config
from dd_export.utils.sink import CsvSink

logger = logging.getLogger(__name__)


class _NullSink:
    """Sink for validation runs, which must never write."""

    def write_header(self, columns: Sequence[str]) -> None:
        raise RuntimeError("validation does not write output")

    def append_rows(self, rows: Sequence[Sequence[str]]) -> None:
        raise RuntimeError("validation does not write output")


def default_output_path(output_dir: str) -> str:
    """Timestamped CSV path inside the output directory."""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return str(Path(output_dir) / f"logs_{timestamp}.csv")


class ExportRunner:
    """
    Runs one validate or export command for a mapping configuration.

    Handles:
    - Rate limiter and orchestrator construction from settings
    - Fetcher lifecycle (created here unless one is injected)
    - Logging of run summaries
    """

    def __init__(
        self,
        config: ExportConfig,
        app_settings: Settings | None = None,
        fetch: PageFetcher | None = None,
    ) -> None:
        """
        Initialize runner.

        Args:
            config: Loaded mapping configuration
            app_settings: Process settings, defaults to the global settings
            fetch: Page fetcher override (a DatadogLogFetcher is built otherwise)
        """
        self.config = config
        self.settings = app_settings or settings
        self.fetch = fetch
        self.projector = RecordProjector(config.mapping)

        logger.info(
            "ExportRunner initialized",
            extra={
                "query": config.filter.query,
                "from_ms": config.filter.from_ms,
                "to_ms": config.filter.to_ms,
                "rules": len(config.mapping),
            },
        )

    def _limiter(self) -> RateLimiter:
        return RateLimiter(
            enabled=self.settings.RATE_LIMIT_ENABLED,
            max_requests=self.settings.RATE_LIMIT_REQUESTS,
            window_seconds=self.settings.RATE_LIMIT_WINDOW_SECONDS,
        )

    def _orchestrator(self, fetch: PageFetcher, sink) -> FetchOrchestrator:
        return FetchOrchestrator(
            fetch=fetch,
            projector=self.projector,
            sink=sink,
            limiter=self._limiter(),
            page_size=self.settings.PAGE_SIZE,
            on_record_error=self.settings.ON_RECORD_ERROR,
            max_pages=self.settings.MAX_PAGES,
            queue_maxsize=self.settings.QUEUE_MAXSIZE,
        )

    def _datadog_fetcher(self) -> DatadogLogFetcher:
        auth = self.settings.resolve_auth(self.config.auth)
        return DatadogLogFetcher(auth, sort_ascending=self.settings.SORT_ASCENDING)

    async def validate(self, sample_size: int | None = None) -> list[list[str]]:
        """
        Project a sample of logs with the configured mapping.

        Returns:
            Header row followed by the sampled rows
        """
        if sample_size is None:
            sample_size = self.settings.VALIDATE_SAMPLE_SIZE
        if sample_size < 1:
            raise ValueError(f"sample size must be positive, got {sample_size}")
        logger.info("Validating mapping with %d sample records", sample_size)

        if self.fetch is not None:
            return await self._orchestrator(self.fetch, _NullSink()).validate(self.config.filter, sample_size)

        with self._datadog_fetcher() as fetch:
            return await self._orchestrator(fetch, _NullSink()).validate(self.config.filter, sample_size)

    async def export(self, output_path: str, parallel: bool = False) -> ExportStats:
        """
        Export the configured range into a CSV file.

        Args:
            output_path: Destination CSV file (overwritten)
            parallel: Split the range into partitions fetched concurrently

        Returns:
            Stats for the run
        """
        sink = CsvSink(output_path)
        logger.info("Starting export", extra={"output": output_path, "parallel": parallel})

        if self.fetch is not None:
            stats = await self._run(self._orchestrator(self.fetch, sink), parallel)
        else:
            with self._datadog_fetcher() as fetch:
                stats = await self._run(self._orchestrator(fetch, sink), parallel)

        logger.info(
            "Export completed successfully",
            extra={"output": output_path, "rows": stats.rows, "pages": stats.pages, "skipped": stats.skipped},
        )
        return stats

    async def _run(self, orchestrator: FetchOrchestrator, parallel: bool) -> ExportStats:
        if parallel:
            return await orchestrator.run_parallel(
                self.config.filter,
                count=self.settings.PARTITION_COUNT,
                min_span_ms=self.settings.PARTITION_MIN_SPAN_MS,
            )
        return await orchestrator.run_sequential(self.config.filter)


def write_rows(rows: Sequence[Sequence[str]], out: TextIO) -> None:
    """Print rows as CSV."""
    csv.writer(out).writerows(rows)


def positive_int(value: str) -> int:
    """argparse type for counts that must be at least 1."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dd-export",
        description="Export Datadog logs to CSV using a YAML field mapping",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Check the mapping against a few sample logs")
    validate.add_argument("--config", required=True, help="YAML mapping file")
    validate.add_argument("--sample-size", type=positive_int, default=None, help="Number of sample logs")

    export = subparsers.add_parser("export", help="Export the whole time range to CSV")
    export.add_argument("--config", required=True, help="YAML mapping file")
    export.add_argument("--output", default=None, help="CSV file (default: timestamped file in OUTPUT_DIR)")
    export.add_argument("--parallel", action="store_true", help="Fetch time partitions concurrently")

    return parser


async def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point; returns the process exit code."""
    args = build_parser().parse_args(argv)
    setup_logging(level=settings.LOG_LEVEL, format_type=settings.LOG_FORMAT)

    try:
        config = load_export_config(args.config)
        runner = ExportRunner(config)

        if args.command == "validate":
            rows = await runner.validate(args.sample_size)
            logger.info("Found records => %d", len(rows) - 1)
            write_rows(rows, sys.stdout)
            return 0

        output = args.output or default_output_path(settings.OUTPUT_DIR)
        await runner.export(output, parallel=args.parallel)
        return 0

    except ProjectionError as e:
        logger.error(
            "Mapping does not match log data",
            extra={"rule": getattr(e.rule, "output_field", None), "path": e.path, "record": e.record},
            exc_info=True,
        )
        return 1
    except ExportError as e:
        logger.error("Export failed", extra={"error": str(e)}, exc_info=True)
        return 1
    except Exception as e:
        logger.error("Unexpected error", extra={"error": str(e)}, exc_info=True)
        return 1


def run() -> None:
    """Console script wrapper."""
    sys.exit(asyncio.run(main()))
