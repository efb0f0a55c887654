"""
CSV Sink

Append-only CSV writer shared by all fetch workers of an export run.
"""

import csv
import logging
import threading
from pathlib import Path
from typing import Sequence

logger = logging.getLogger(__name__)


class CsvSink:
    """
    Writes the header once, then appends row batches.

    Each `append_rows` call is one atomic append: concurrent callers are
    serialized by a lock so batches never interleave.
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self.rows_written = 0
        self._header_written = False
        self._lock = threading.Lock()

    def write_header(self, columns: Sequence[str]) -> None:
        """
        Create (or truncate) the output file and write the header row.

        Raises:
            RuntimeError: If the header was already written for this run
        """
        with self._lock:
            if self._header_written:
                raise RuntimeError(f"Header already written to {self.path}")

            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", newline="", encoding="utf-8") as f:
                csv.writer(f).writerow(columns)

            self._header_written = True
            logger.info("Opening CSV output: %s (%d columns)", self.path, len(columns))

    def append_rows(self, rows: Sequence[Sequence[str]]) -> None:
        """Append a batch of rows; must be called after write_header."""
        with self._lock:
            if not self._header_written:
                raise RuntimeError(f"Header not written to {self.path}")

            with open(self.path, "a", newline="", encoding="utf-8") as f:
                csv.writer(f).writerows(rows)

            self.rows_written += len(rows)
            logger.debug("Appended %d rows to %s", len(rows), self.path)
