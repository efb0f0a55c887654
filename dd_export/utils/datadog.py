"""
Datadog Logs Page Fetcher

Wraps the official datadog-api-client Logs search endpoint behind the
page-fetch interface used by the exporter: `fetch(filter, cursor, page_size)`.

Credentials are passed explicitly through AuthConfig; process environment
variables are never modified, so several fetchers with different accounts
can live in one process.

Usage:
    from dd_export.utils.datadog import DatadogLogFetcher

    with DatadogLogFetcher(config.auth) as fetch:
        page = fetch(config.filter, None, 10)
"""

import logging
from datetime import datetime
from typing import Any, Optional

import urllib3
from datadog_api_client import ApiClient, Configuration
from datadog_api_client.exceptions import OpenApiException
from datadog_api_client.v2.api.logs_api import LogsApi
from datadog_api_client.v2.model.logs_list_request import LogsListRequest
from datadog_api_client.v2.model.logs_list_request_page import LogsListRequestPage
from datadog_api_client.v2.model.logs_query_filter import LogsQueryFilter
from datadog_api_client.v2.model.logs_sort import LogsSort

from dd_export.utils.errors import TransportError
from dd_export.utils.schemas import AuthConfig, FilterSpec, LogRecord, Page

logger = logging.getLogger(__name__)

# Largest `page[limit]` accepted by the Logs search endpoint
MAX_PAGE_SIZE = 1000


def build_configuration(auth: AuthConfig) -> Configuration:
    """Create a client configuration bound to one Datadog account."""
    configuration = Configuration()
    configuration.api_key["apiKeyAuth"] = auth.api_key
    configuration.api_key["appKeyAuth"] = auth.app_key
    configuration.server_variables["site"] = auth.site
    return configuration


def page_from_response(payload: dict[str, Any]) -> Page:
    """Convert a Logs search response (as a dict) into a Page."""
    records = []
    for item in payload.get("data") or []:
        attributes = item.get("attributes") or {}
        timestamp = attributes.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))

        records.append(
            LogRecord(
                timestamp=timestamp,
                service=attributes.get("service") or "",
                status=attributes.get("status") or "",
                message=attributes.get("message"),
                attributes=attributes.get("attributes") or {},
            )
        )

    page_meta = (payload.get("meta") or {}).get("page") or {}
    return Page(records=records, next_cursor=page_meta.get("after"))


class DatadogLogFetcher:
    """Page fetcher backed by the Datadog Logs search API."""

    def __init__(self, auth: AuthConfig, sort_ascending: bool = True) -> None:
        """
        Initialize fetcher.

        Args:
            auth: Site and API/application keys for one account
            sort_ascending: Request logs oldest first
        """
        self.auth = auth
        self.sort_ascending = sort_ascending
        self.client: Optional[ApiClient] = None
        self.api: Optional[LogsApi] = None

    def connect(self) -> None:
        """Create the API client on first use."""
        if self.client is None:
            self.client = ApiClient(build_configuration(self.auth))
            self.api = LogsApi(self.client)

    def __call__(self, filter: FilterSpec, cursor: Optional[str], page_size: int) -> Page:
        """
        Fetch one page of logs matching the filter.

        Args:
            filter: Query and epoch-millisecond time range
            cursor: Continuation token from the previous page, None for the first
            page_size: Number of logs requested (capped at 1000)

        Returns:
            Page with records and the next cursor, if any

        Raises:
            TransportError: If the request fails or is rejected
        """
        if self.api is None:
            self.connect()

        page_kwargs: dict[str, Any] = {"limit": min(page_size, MAX_PAGE_SIZE)}
        if cursor is not None:
            page_kwargs["cursor"] = cursor

        try:
            body = LogsListRequest(
                filter=LogsQueryFilter(
                    query=filter.query,
                    _from=str(filter.from_ms),
                    to=str(filter.to_ms),
                ),
                page=LogsListRequestPage(**page_kwargs),
                sort=LogsSort.TIMESTAMP_ASCENDING if self.sort_ascending else LogsSort.TIMESTAMP_DESCENDING,
            )
            response = self.api.list_logs(body=body)
        except (OpenApiException, urllib3.exceptions.HTTPError) as e:
            raise TransportError(
                f"Logs search failed for {filter.from_ms}-{filter.to_ms}: {e}"
            ) from e

        return page_from_response(response.to_dict())

    def close(self) -> None:
        """Close the API client and its connection pool."""
        if self.client:
            self.client.close()
            self.client = None
            self.api = None

    def __enter__(self) -> "DatadogLogFetcher":
        self.connect()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
