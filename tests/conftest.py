import threading
from datetime import datetime, timezone

import pytest

from dd_export.utils.errors import TransportError
from dd_export.utils.rate_limit import RateLimiter
from dd_export.utils.schemas import FilterSpec, LogRecord, MappingRule, Page

T0 = 1_700_000_000_000


def make_record(index: int = 0, **attributes) -> LogRecord:
    return LogRecord(
        timestamp=datetime(2024, 1, 15, 10, 30, index % 60, tzinfo=timezone.utc),
        service="checkout",
        status="info",
        message=f"message {index}",
        attributes=attributes or {"usr": {"id": index}, "cart": {"items": [{"sku": "A"}, {"sku": "B"}]}},
    )


class FakeFetcher:
    """In-memory page source: every filter range yields `pages_per_range` pages."""

    def __init__(self, pages_per_range: int = 3, records_per_page: int = 2,
                 fail_on_range: tuple[int, int] | None = None):
        self.pages_per_range = pages_per_range
        self.records_per_page = records_per_page
        self.fail_on_range = fail_on_range
        self.calls: list[tuple[int, int, str | None, int]] = []
        self._lock = threading.Lock()

    def __call__(self, filter: FilterSpec, cursor: str | None, page_size: int) -> Page:
        with self._lock:
            self.calls.append((filter.from_ms, filter.to_ms, cursor, page_size))

        if self.fail_on_range == (filter.from_ms, filter.to_ms):
            raise TransportError("403 Forbidden")

        page_number = 0 if cursor is None else int(cursor.rsplit(":", 1)[1])
        count = min(self.records_per_page, page_size)
        records = [
            make_record(
                page_number * self.records_per_page + i,
                usr={"id": f"{filter.from_ms}-{page_number}-{i}"},
                cart={"items": [{"sku": "A"}, {"sku": "B"}]},
            )
            for i in range(count)
        ]

        next_page = page_number + 1
        next_cursor = f"{filter.from_ms}:{next_page}" if next_page < self.pages_per_range else None
        return Page(records=records, next_cursor=next_cursor)


class MemorySink:
    """Sink that keeps the header and every appended batch."""

    def __init__(self):
        self.headers: list[list[str]] = []
        self.batches: list[list[list[str]]] = []
        self._lock = threading.Lock()

    def write_header(self, columns):
        with self._lock:
            self.headers.append(list(columns))

    def append_rows(self, rows):
        with self._lock:
            self.batches.append([list(row) for row in rows])

    @property
    def rows(self) -> list[list[str]]:
        return [row for batch in self.batches for row in batch]


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def sink():
    return MemorySink()


@pytest.fixture
def limiter():
    """Rate limiter that never waits."""
    return RateLimiter(enabled=False, max_requests=2, window_seconds=10)


@pytest.fixture
def rules():
    return [MappingRule(output_field="user_id", source_path="usr.id")]


@pytest.fixture
def mapping_yaml(tmp_path):
    path = tmp_path / "mapping.yaml"
    path.write_text(
        """
spec:
  auth:
    dd_site: datadoghq.eu
    dd_api_key: api-key
    dd_app_key: app-key
  datadog_filter:
    query: "service:checkout"
    from: 1700000000000
    to: "2023-11-14T22:43:20Z"
  mapping:
    - field: user_id
      dd_field: usr.id
    - field: sku
      dd_field: "-"
      inner_field: cart.items.sku
      max_items: 3
""",
        encoding="utf-8",
    )
    return path
