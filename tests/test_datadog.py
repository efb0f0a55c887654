"""Tests for the Datadog page fetcher adapter (no network)."""

from datetime import datetime, timezone

import pytest
from datadog_api_client.exceptions import ApiException, ApiValueError

from dd_export.utils.config import Settings
from dd_export.utils.datadog import MAX_PAGE_SIZE, DatadogLogFetcher, build_configuration, page_from_response
from dd_export.utils.errors import TransportError
from dd_export.utils.schemas import AuthConfig, FilterSpec


def _response(after=None):
    payload = {
        "data": [
            {
                "id": "AAA",
                "type": "log",
                "attributes": {
                    "timestamp": datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc),
                    "service": "checkout",
                    "status": "error",
                    "message": "payment declined",
                    "attributes": {"usr": {"id": 42}},
                },
            },
            {
                "id": "BBB",
                "type": "log",
                "attributes": {"timestamp": "2024-01-15T10:31:00Z", "attributes": {}},
            },
        ]
    }
    if after is not None:
        payload["meta"] = {"page": {"after": after}}
    return payload


class FakeResponse:
    def __init__(self, payload):
        self.payload = payload

    def to_dict(self):
        return self.payload


class FakeLogsApi:
    def __init__(self, payload=None, error=None):
        self.payload = payload
        self.error = error
        self.bodies = []

    def list_logs(self, body):
        self.bodies.append(body)
        if self.error:
            raise self.error
        return FakeResponse(self.payload)


class TestPageFromResponse:
    def test_converts_records(self):
        page = page_from_response(_response())

        assert len(page.records) == 2
        first, second = page.records
        assert first.service == "checkout"
        assert first.status == "error"
        assert first.message == "payment declined"
        assert first.attributes == {"usr": {"id": 42}}
        assert second.timestamp == datetime(2024, 1, 15, 10, 31, tzinfo=timezone.utc)
        assert second.service == ""
        assert second.message is None

    def test_cursor(self):
        assert page_from_response(_response(after="next-token")).next_cursor == "next-token"

    def test_last_page_has_no_cursor(self):
        assert page_from_response(_response()).next_cursor is None

    def test_empty_response(self):
        page = page_from_response({})
        assert page.records == []
        assert page.next_cursor is None


class TestBuildConfiguration:
    def test_credentials_are_explicit(self):
        configuration = build_configuration(AuthConfig(site="datadoghq.eu", api_key="k1", app_key="k2"))

        assert configuration.api_key["apiKeyAuth"] == "k1"
        assert configuration.api_key["appKeyAuth"] == "k2"
        assert configuration.server_variables["site"] == "datadoghq.eu"

    def test_independent_configurations(self):
        first = build_configuration(AuthConfig(api_key="a"))
        second = build_configuration(AuthConfig(api_key="b"))
        assert first.api_key["apiKeyAuth"] == "a"
        assert second.api_key["apiKeyAuth"] == "b"


class TestDatadogLogFetcher:
    @pytest.fixture
    def spec(self):
        return FilterSpec(query="service:checkout", from_ms=1000, to_ms=2000)

    def test_fetch_page(self, spec):
        fetcher = DatadogLogFetcher(AuthConfig(api_key="k1", app_key="k2"))
        fetcher.api = FakeLogsApi(payload=_response(after="tok"))

        page = fetcher(spec, None, 10)

        assert len(page.records) == 2
        assert page.next_cursor == "tok"
        body = fetcher.api.bodies[0]
        assert body.filter.query == "service:checkout"
        assert body.page.limit == 10

    def test_page_size_capped(self, spec):
        fetcher = DatadogLogFetcher(AuthConfig())
        fetcher.api = FakeLogsApi(payload=_response())

        fetcher(spec, "cursor-1", 20000)

        body = fetcher.api.bodies[0]
        assert body.page.limit == 1000
        assert body.page.cursor == "cursor-1"

    def test_api_error_becomes_transport_error(self, spec):
        fetcher = DatadogLogFetcher(AuthConfig())
        fetcher.api = FakeLogsApi(error=ApiException(status=403, reason="Forbidden"))

        with pytest.raises(TransportError):
            fetcher(spec, None, 10)

    def test_default_page_size_is_accepted_by_client(self, spec):
        fetcher = DatadogLogFetcher(AuthConfig())
        fetcher.api = FakeLogsApi(payload=_response())

        fetcher(spec, None, Settings().PAGE_SIZE)

        assert fetcher.api.bodies[0].page.limit == MAX_PAGE_SIZE == 1000

    def test_rejected_request_becomes_transport_error(self, spec):
        fetcher = DatadogLogFetcher(AuthConfig())
        fetcher.api = FakeLogsApi(error=ApiValueError("Invalid value for 'limit'"))

        with pytest.raises(TransportError):
            fetcher(spec, None, 10)
