"""
Tests for the Converter service HTTP surface.
"""

import time

import httpx
import pytest
from fastapi.testclient import TestClient

from service_converter.app.adapters.rate_client import RateClient
from service_converter.app.main import create_app
from service_converter.app.telemetry.event_store import InMemoryEventStore
from service_converter.app.telemetry.models import EventKind
from service_converter.app.telemetry.user_agent import DeviceInfo

from .test_gateway import upstream

ANDROID_UA = "Mozilla/5.0 (Linux; Android 13; Pixel 7) AppleWebKit/537.36 Mobile Safari/537.36"


class HeaderParser:
    """Uses the raw user agent as the device name."""

    def parse(self, user_agent):
        return DeviceInfo(device_name=user_agent or "", os="TestOS")


@pytest.fixture
def store():
    return InMemoryEventStore()


@pytest.fixture
def client(store):
    """Create test client with the upstream and store faked."""
    app = create_app(
        event_store=store,
        rate_client=RateClient("https://rates.test", transport=httpx.MockTransport(upstream)),
        user_agent_parser=HeaderParser(),
    )
    with TestClient(app) as test_client:
        yield test_client


def wait_for(predicate, timeout=2.0):
    """Poll ``predicate`` until it holds; ingestion completes in the background."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_root_endpoint(client):
    """Test root endpoint."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "converter"
    assert data["version"] == "1.0.0"


def test_health_check(client):
    """Test health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "converter"
    assert data["status"] == "ok"
    assert data["dependencies"] == {"event_store": "ok", "ingestor": "ok"}


def test_metrics_endpoint(client):
    """Test Prometheus exposition."""
    client.get("/api/latest?from=USD&to=EUR")
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "upstream_requests_total" in response.text


def test_latest_pair(client):
    """Test a pair conversion."""
    response = client.get("/api/latest", params={"from": "USD", "to": "EUR"})

    assert response.status_code == 200
    assert response.json() == {"base": "USD", "rates": {"EUR": 0.92}}
    assert "X-Request-ID" in response.headers


def test_latest_listing(client):
    """Test an incomplete pair returns the currency list."""
    response = client.get("/api/latest", params={"from": "USD"})

    assert response.status_code == 200
    assert response.json() == ["USD", "GBP", "JPY"]


def test_latest_upstream_error(client):
    """Test an upstream failure returns an error payload, not a sentinel rate."""
    response = client.get("/api/latest", params={"from": "USD", "to": "XXX"})

    assert response.status_code == 502
    body = response.json()
    assert body["error"]["code"] == "UPSTREAM_ERROR"
    assert "rates" not in body


def test_historical_single_date(client):
    """Test a single-date historical rate."""
    response = client.get("/api/historical", params={"date": "2020-01-02", "from": "USD", "to": "EUR"})

    assert response.status_code == 200
    assert response.json() == {"rate": 0.8941}


def test_historical_series(client):
    """Test a date range returns an ordered series."""
    response = client.get(
        "/api/historical",
        params={"date": "2020-01-01", "toDate": "2020-01-03", "from": "USD", "to": "EUR"},
    )

    assert response.status_code == 200
    assert [point["date"] for point in response.json()] == ["2020-01-01", "2020-01-02", "2020-01-03"]


def test_historical_to_date_only_uses_default_start(client, store):
    """Test a toDate-only request starts the series at the configured default."""
    response = client.get("/api/historical", params={"toDate": "2020-01-03", "from": "USD", "to": "EUR"})

    assert response.status_code == 200
    assert wait_for(lambda: len(store._streams[EventKind.SERVER_REQUEST]) == 1)
    [request] = store._streams[EventKind.SERVER_REQUEST]
    assert request.date == "2005-01-31"
    assert request.to_date == "2020-01-03"


def test_historical_invalid_format(client):
    """Test a request with neither date nor toDate is rejected."""
    response = client.get("/api/historical", params={"from": "USD", "to": "EUR"})

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.parametrize("params", [
    {"from": "EUR", "to": "USD"},
    {"date": "2020-01-02", "from": "EUR"},
])
def test_rejected_historical_request_is_recorded(client, store, params):
    """Test a 400 still yields a client request and a zero-valued service response."""
    response = client.get("/api/historical", params=params)

    assert response.status_code == 400
    assert wait_for(lambda: (
        len(store._streams[EventKind.SERVICE_RESPONSE]) == 1
        and len(store._streams[EventKind.CLIENT_REQUEST]) == 1
    ))
    [service_response] = store._streams[EventKind.SERVICE_RESPONSE]
    assert service_response.status_code == 400
    assert service_response.request_type == "historical"
    assert service_response.response_data.number_of_values == 0
    assert store._streams[EventKind.SERVER_REQUEST] == []


def test_dashboard_empty(client):
    """Test the dashboard before any traffic."""
    response = client.get("/dashboard")

    assert response.status_code == 200
    data = response.json()
    assert data["most_frequent_conversion"] == "No data available"
    assert data["average_response_time"] == "No data available"
    assert data["top_devices"] == []


def test_dashboard_reflects_traffic(client):
    """Test client requests, pairs and latencies flow into the dashboard."""
    for _ in range(3):
        client.get("/api/latest?from=USD&to=EUR", headers={"User-Agent": "Pixel 7"})
    client.get("/api/latest?from=GBP&to=JPY", headers={"User-Agent": "iPhone"})
    client.get("/api/latest", headers={"User-Agent": "Pixel 7"})

    def settled():
        data = client.get("/dashboard").json()
        return (
            data["event_counts"]["client_request"] == 5
            and data["event_counts"]["service_response"] == 5
            and (data["most_requested_pair"] or {}).get("count") == 3
        )

    assert wait_for(settled)
    data = client.get("/dashboard").json()
    assert data["most_frequent_conversion"] == "USD to EUR"
    assert data["most_requested_pair"]["count"] == 3
    assert data["top_devices"] == ["Pixel 7", "iPhone"]
    assert data["average_response_time"].endswith(" ms")
    assert data["ingestion"]["failed"] == 0


def test_dashboard_streams(client):
    """Test raw stream listing and unknown stream rejection."""
    client.get("/api/latest?from=USD&to=EUR", headers={"User-Agent": ANDROID_UA})
    assert wait_for(lambda: client.get("/dashboard/client-requests").json()["total"] == 1)

    records = client.get("/dashboard/client-requests").json()["records"]
    assert records[0]["endpoint"] == "/api/latest"
    assert records[0]["request_data"]["from_currency"] == "USD"
    assert records[0]["operating_system"] == "TestOS"

    assert wait_for(lambda: client.get("/dashboard/conversion-pairs").json()["total"] == 1)
    pairs = client.get("/dashboard/conversion-pairs").json()["records"]
    assert pairs == [{"from_currency": "USD", "to_currency": "EUR", "count": 1}]

    response = client.get("/dashboard/everything")
    assert response.status_code == 400


def test_store_failure_does_not_affect_response(store):
    """Test a broken event store never turns into a user-visible error."""

    async def broken(*args, **kwargs):
        raise ConnectionError("database down")

    store.insert = broken
    store.upsert_pair = broken
    app = create_app(
        event_store=store,
        rate_client=RateClient("https://rates.test", transport=httpx.MockTransport(upstream)),
        user_agent_parser=HeaderParser(),
    )

    with TestClient(app) as test_client:
        response = test_client.get("/api/latest?from=USD&to=EUR")
        assert response.status_code == 200
        assert response.json()["rates"]["EUR"] == 0.92

        service = test_client.app.state.converter_service
        assert wait_for(lambda: service.ingestor.stats["failed"] >= 3)
