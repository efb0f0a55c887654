"""
Fetch Engine - Cursor Pagination and Parallel Export

Follows the continuation cursor of the Logs search API until a range is
exhausted, projects every page into CSV rows and hands them to the sink.

Modes:
- Sequential: one cursor loop over the whole range
- Parallel: the range is split into intervals, one cursor loop per interval,
  all feeding a shared queue drained by a single writer task
- Validate: a small sequential sample returned in memory, sink untouched

Every fetch, in every mode, first acquires the shared RateLimiter.

Usage:
    orchestrator = FetchOrchestrator(fetch, RecordProjector(rules), CsvSink(path), limiter)
    stats = await orchestrator.run_parallel(config.filter)
"""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional, Protocol, Sequence

from dd_export.utils.errors import ProjectionError
from dd_export.utils.intervals import DEFAULT_MIN_SPAN_MS, DEFAULT_PARTITION_COUNT, partition_interval
from dd_export.utils.mapping import RecordProjector
from dd_export.utils.rate_limit import RateLimiter
from dd_export.utils.schemas import FilterSpec, Interval, LogRecord, Page

logger = logging.getLogger(__name__)

PageFetcher = Callable[[FilterSpec, Optional[str], int], Page]


class RowSink(Protocol):
    def write_header(self, columns: Sequence[str]) -> None: ...

    def append_rows(self, rows: Sequence[Sequence[str]]) -> None: ...


@dataclass
class ExportStats:
    """Counters for one export run."""

    pages: int = 0
    records: int = 0
    rows: int = 0
    skipped: int = 0
    partitions: int = 1

    def add(self, other: "ExportStats") -> None:
        self.pages += other.pages
        self.records += other.records
        self.rows += other.rows
        self.skipped += other.skipped


async def iter_pages(
    fetch: PageFetcher,
    filter: FilterSpec,
    page_size: int,
    limiter: RateLimiter,
    max_pages: Optional[int] = None,
) -> AsyncIterator[Page]:
    """
    Yield pages for one filter until the API stops returning a cursor.

    The blocking fetch runs in a worker thread. Each call owns its own cursor,
    so concurrent loops never share state.

    Args:
        fetch: Page-fetch capability
        filter: Query and time range for this loop
        page_size: Records requested per page
        limiter: Shared rate limiter acquired before every fetch
        max_pages: Optional hard cap on the number of pages

    Raises:
        TransportError: If a page fetch fails (not retried)
    """
    cursor: Optional[str] = None
    fetched = 0

    while True:
        if max_pages is not None and fetched >= max_pages:
            logger.warning(
                "Page cap reached before range was exhausted",
                extra={"max_pages": max_pages, "from_ms": filter.from_ms, "to_ms": filter.to_ms},
            )
            return

        await limiter.acquire()
        page = await asyncio.to_thread(fetch, filter, cursor, page_size)
        fetched += 1

        logger.info(
            "Found records => %d for range %d - %d",
            len(page.records), filter.from_ms, filter.to_ms,
        )
        yield page

        if page.next_cursor is None:
            return
        cursor = page.next_cursor


class FetchOrchestrator:
    """
    Runs cursor loops and funnels projected rows into the sink.

    Handles:
    - Sequential and parallel export of a time range
    - Header written exactly once per run
    - Record error policy ("fail" aborts the run, "skip" drops the record)
    - Failure propagation: any worker error ends the whole run
    """

    def __init__(
        self,
        fetch: PageFetcher,
        projector: RecordProjector,
        sink: RowSink,
        limiter: RateLimiter,
        page_size: int = 1000,
        on_record_error: str = "fail",
        max_pages: Optional[int] = None,
        queue_maxsize: int = 100,
    ) -> None:
        if on_record_error not in ("fail", "skip"):
            raise ValueError(f"on_record_error must be 'fail' or 'skip', got {on_record_error!r}")

        self.fetch = fetch
        self.projector = projector
        self.sink = sink
        self.limiter = limiter
        self.page_size = page_size
        self.on_record_error = on_record_error
        self.max_pages = max_pages
        self.queue_maxsize = queue_maxsize

    def _project_page(self, records: Sequence[LogRecord], stats: ExportStats) -> list[list[str]]:
        """Project one page according to the record error policy."""
        rows = []
        for record in records:
            try:
                rows.append(self.projector.project_record(record))
            except ProjectionError as e:
                if self.on_record_error == "fail":
                    raise
                stats.skipped += 1
                logger.warning(
                    "Skipping record that does not match mapping",
                    extra={"rule": getattr(e.rule, "output_field", None), "path": e.path, "error": str(e.cause)},
                )
        stats.pages += 1
        stats.records += len(records)
        stats.rows += len(rows)
        return rows

    async def run_sequential(self, filter: FilterSpec) -> ExportStats:
        """
        Export the whole range with a single cursor loop.

        Rows reach the sink in page order.
        """
        stats = ExportStats()
        self.sink.write_header(self.projector.header())

        async for page in iter_pages(self.fetch, filter, self.page_size, self.limiter, self.max_pages):
            rows = self._project_page(page.records, stats)
            await asyncio.to_thread(self.sink.append_rows, rows)

        logger.info(
            "Sequential export complete",
            extra={"pages": stats.pages, "rows": stats.rows, "skipped": stats.skipped},
        )
        return stats

    async def _export_partition(
        self, filter: FilterSpec, interval: Interval, queue: asyncio.Queue
    ) -> ExportStats:
        """Cursor loop for one interval; pushes each page's rows onto the queue."""
        stats = ExportStats()
        window = filter.narrowed(interval)

        async for page in iter_pages(self.fetch, window, self.page_size, self.limiter, self.max_pages):
            rows = self._project_page(page.records, stats)
            await queue.put(rows)

        logger.debug(
            "Partition complete",
            extra={"from_ms": interval.from_ms, "to_ms": interval.to_ms, "rows": stats.rows},
        )
        return stats

    async def _write_batches(self, queue: asyncio.Queue) -> None:
        """Drain row batches into the sink until the end-of-run marker."""
        while True:
            rows = await queue.get()
            if rows is None:
                return
            await asyncio.to_thread(self.sink.append_rows, rows)

    async def run_parallel(
        self,
        filter: FilterSpec,
        count: int = DEFAULT_PARTITION_COUNT,
        min_span_ms: int = DEFAULT_MIN_SPAN_MS,
    ) -> ExportStats:
        """
        Export the range with one concurrent cursor loop per interval.

        Rows within one interval keep page order; intervals interleave freely.
        The first failing worker (or sink write) cancels the rest and its
        error is re-raised.

        Args:
            filter: Query and full time range
            count: Number of partitions for ranges above the threshold
            min_span_ms: Ranges shorter than this run as a single partition

        Returns:
            Aggregated stats across partitions
        """
        intervals = partition_interval(filter.from_ms, filter.to_ms, count, min_span_ms)
        logger.info(
            "Starting parallel export",
            extra={"partitions": len(intervals), "from_ms": filter.from_ms, "to_ms": filter.to_ms},
        )

        self.sink.write_header(self.projector.header())

        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_maxsize)
        workers = [
            asyncio.create_task(self._export_partition(filter, interval, queue))
            for interval in intervals
        ]
        writer = asyncio.create_task(self._write_batches(queue))
        producers = asyncio.gather(*workers)

        try:
            done, _ = await asyncio.wait({producers, writer}, return_when=asyncio.FIRST_COMPLETED)
            if writer in done:
                writer.result()
                raise RuntimeError("writer stopped before all partitions finished")

            producers.result()
            await queue.put(None)
            await writer
        finally:
            pending = [task for task in (*workers, writer) if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*workers, writer, return_exceptions=True)

        stats = ExportStats(partitions=len(intervals))
        for worker in workers:
            stats.add(worker.result())

        logger.info(
            "Parallel export complete",
            extra={"partitions": stats.partitions, "pages": stats.pages, "rows": stats.rows, "skipped": stats.skipped},
        )
        return stats

    async def validate(self, filter: FilterSpec, sample_size: int = 10) -> list[list[str]]:
        """
        Project a small sample without writing to the sink.

        Returns:
            Header row followed by at most `sample_size` data rows

        Raises:
            ProjectionError: If a sampled record does not match the mapping
        """
        out = [self.projector.header()]
        stats = ExportStats()
        sampled: list[LogRecord] = []

        pages = iter_pages(self.fetch, filter, sample_size, self.limiter, self.max_pages)
        async with aclosing(pages):
            async for page in pages:
                remaining = sample_size - (len(out) - 1)
                sampled.extend(page.records[:remaining])
                out.extend(self._project_page(page.records[:remaining], stats))
                if len(out) - 1 >= sample_size:
                    break

        logger.info("Validated mapping against %d records", stats.records)

        widths = self.projector.suggest_expansion_widths(sampled)
        for rule in self.projector.rules:
            if rule.is_expansion and rule.max_items is None:
                logger.info(
                    "Expansion rule %s has variable width; widest sample is %d (set max_items to fix it)",
                    rule.header_name, widths.get(rule.header_name, 0),
                )
        return out
