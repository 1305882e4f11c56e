"""
Unit tests for ConversionGateway.
"""

import json
from unittest.mock import MagicMock

import httpx
import pytest

from service_converter.app.adapters.rate_client import RateClient
from service_converter.app.gateway import (
    ConversionGateway,
    InvalidTransition,
    RequestState,
    RequestTrace,
)
from service_converter.app.telemetry.aggregator import AggregationEngine
from service_converter.app.telemetry.event_store import InMemoryEventStore
from service_converter.app.telemetry.ingestor import ClientRequestMetadata, TelemetryIngestor
from service_converter.app.telemetry.models import EventKind, RequestType
from service_converter.app.telemetry.user_agent import DeviceInfo

LATEST_ALL = {"base": "EUR", "date": "2024-03-01", "rates": {"USD": 1.08, "GBP": 0.85, "JPY": 162.0}}


def upstream(request: httpx.Request) -> httpx.Response:
    """Fake Frankfurter API."""
    path = request.url.path
    params = request.url.params
    if path == "/latest" and "from" not in params:
        body = LATEST_ALL
    elif path == "/latest":
        if params["to"] == "XXX":
            return httpx.Response(404, content=b'{"message":"not found"}')
        body = {"base": params["from"], "date": "2024-03-01", "rates": {params["to"]: 0.92}}
    elif ".." in path:
        body = {
            "base": params["from"],
            "rates": {
                "2020-01-03": {params["to"]: 0.90},
                "2020-01-01": {params["to"]: 0.89},
                "2020-01-02": {params["to"]: 0.91},
            },
        }
    elif path == "/1999-01-01":
        body = {"base": params["from"], "date": "1999-01-04"}
    else:
        body = {"base": params["from"], "date": path.strip("/"), "rates": {params["to"]: 0.8941}}
    return httpx.Response(200, content=json.dumps(body).encode())


class FixedParser:
    def parse(self, user_agent):
        return DeviceInfo(user_agent or "", "")


@pytest.fixture
def store():
    return InMemoryEventStore()


@pytest.fixture
def ingestor(store):
    return TelemetryIngestor(store, user_agent_parser=FixedParser(), workers=2)


@pytest.fixture
def gateway(ingestor):
    client = RateClient("https://rates.test", transport=httpx.MockTransport(upstream))
    return ConversionGateway(client, ingestor)


class TestRequestTrace:
    """Test cases for the per-request state machine."""

    def test_success_path(self):
        """Test the happy path transitions."""
        trace = RequestTrace(RequestType.GET_RATE)
        for state in (RequestState.UPSTREAM_CALLED, RequestState.SUCCEEDED,
                      RequestState.LOGGED, RequestState.RESPONDED):
            trace.advance(state)

        assert trace.state == RequestState.RESPONDED
        assert trace.history[0] == RequestState.RECEIVED

    def test_cannot_respond_before_logging(self):
        """Test skipping the logged step is rejected."""
        trace = RequestTrace(RequestType.GET_RATE)
        trace.advance(RequestState.UPSTREAM_CALLED)
        trace.advance(RequestState.FAILED)

        with pytest.raises(InvalidTransition):
            trace.advance(RequestState.RESPONDED)


class TestConversionGateway:
    """Test cases for ConversionGateway."""

    @pytest.mark.asyncio
    async def test_latest_pair(self, gateway, ingestor, store):
        """Test a pair conversion returns the rate and logs the exchange."""
        await ingestor.start()

        result = await gateway.get_latest_pair("USD", "EUR", client_ip="10.0.0.1")
        await ingestor.drain()

        assert result.ok is True
        assert result.status_code == 200
        assert result.payload == {"base": "USD", "rates": {"EUR": 0.92}}
        assert result.trace.history == [
            RequestState.RECEIVED,
            RequestState.UPSTREAM_CALLED,
            RequestState.SUCCEEDED,
            RequestState.LOGGED,
            RequestState.RESPONDED,
        ]

        [server_request] = await store.find_all(EventKind.SERVER_REQUEST)
        [server_response] = await store.find_all(EventKind.SERVER_RESPONSE)
        [service_response] = await store.find_all(EventKind.SERVICE_RESPONSE)
        assert server_request.endpoint == "latest"
        assert server_request.ip_address == "10.0.0.1"
        assert server_response.status_code == 200
        assert server_response.response_data.to_currencies == ["EUR"]
        assert service_response.request_type == "getRate"
        assert service_response.response_data.average_rate == 0.92
        await ingestor.stop()

    @pytest.mark.asyncio
    async def test_shape_selection(self, gateway, ingestor):
        """Test pair vs listing selection, including a lone currency."""
        await ingestor.start()

        pair = await gateway.get_latest("USD", "EUR")
        listing = await gateway.get_latest(None, None)
        partial = await gateway.get_latest("USD", None)

        assert pair.request_type == RequestType.GET_RATE
        assert listing.request_type == RequestType.GET_CURRENCIES
        assert listing.payload == ["USD", "GBP", "JPY"]
        assert partial.request_type == RequestType.GET_CURRENCIES
        await ingestor.stop()

    @pytest.mark.asyncio
    async def test_listing_server_response_lists_are_aligned(self, gateway, ingestor, store):
        """Test the upstream response summary keeps currencies and values aligned."""
        await ingestor.start()

        await gateway.get_latest_all()
        await ingestor.drain()

        [response] = await store.find_all(EventKind.SERVER_RESPONSE)
        data = response.response_data
        assert data.to_currencies == ["USD", "GBP", "JPY"]
        assert len(data.to_currency_values) == 3
        assert data.number_of_values == 3
        await ingestor.stop()

    @pytest.mark.asyncio
    async def test_series_is_ordered(self, gateway, ingestor, store):
        """Test the series comes back ascending and is summarized."""
        await ingestor.start()

        result = await gateway.get_series("2020-01-01", "2020-01-03", "USD", "EUR")
        await ingestor.drain()

        assert [point["date"] for point in result.payload] == ["2020-01-01", "2020-01-02", "2020-01-03"]
        [service_response] = await store.find_all(EventKind.SERVICE_RESPONSE)
        assert service_response.response_data.number_of_values == 3
        assert service_response.response_data.average_rate == pytest.approx(0.90)
        assert service_response.response_data.to_currencies is None
        await ingestor.stop()

    @pytest.mark.asyncio
    async def test_historical(self, gateway, ingestor, store):
        """Test a point-in-time rate."""
        await ingestor.start()

        result = await gateway.get_historical("2020-01-02", "USD", "EUR")
        await ingestor.drain()

        assert result.payload == {"rate": 0.8941}
        [server_request] = await store.find_all(EventKind.SERVER_REQUEST)
        assert server_request.endpoint == "historical"
        assert server_request.date == "2020-01-02"
        await ingestor.stop()

    @pytest.mark.asyncio
    async def test_upstream_failure_is_an_explicit_error(self, gateway, ingestor, store):
        """Test failures use the error channel and are still logged."""
        await ingestor.start()

        result = await gateway.get_latest_pair("USD", "XXX")
        await ingestor.drain()

        assert result.ok is False
        assert result.payload is None
        assert result.status_code == 502
        assert result.error.code == "UPSTREAM_ERROR"
        assert RequestState.FAILED in result.trace.history
        assert result.trace.state == RequestState.RESPONDED
        assert result.to_content()["error"]["code"] == "UPSTREAM_ERROR"

        [server_response] = await store.find_all(EventKind.SERVER_RESPONSE)
        [service_response] = await store.find_all(EventKind.SERVICE_RESPONSE)
        assert server_response.status_code == 404
        assert service_response.status_code == 502
        assert service_response.response_data.number_of_values == 0
        await ingestor.stop()

    @pytest.mark.asyncio
    async def test_missing_rate_is_not_found(self, gateway, ingestor):
        """Test a response without rates maps to a 404 error result."""
        await ingestor.start()

        result = await gateway.get_historical("1999-01-01", "USD", "EUR")

        assert result.ok is False
        assert result.status_code == 404
        assert result.error.code == "RATE_NOT_FOUND"
        await ingestor.stop()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body, call", [
        (
            {"base": "EUR", "rates": {"2020-01-01": {"USD": None}}},
            lambda gateway: gateway.get_series("2020-01-01", "2020-01-03", "EUR", "USD"),
        ),
        (
            {"base": "EUR", "date": "2024-03-01", "rates": {"USD": "n/a"}},
            lambda gateway: gateway.get_latest_all(),
        ),
    ])
    async def test_malformed_rate_value_is_logged_as_failure(self, ingestor, store, body, call):
        """Test bad rate values take the error channel and are still recorded."""
        client = RateClient(
            "https://rates.test",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, content=json.dumps(body).encode())
            ),
        )
        gateway = ConversionGateway(client, ingestor)
        await ingestor.start()

        result = await call(gateway)
        await ingestor.drain()

        assert result.ok is False
        assert result.status_code == 502
        assert result.error.code == "UPSTREAM_ERROR"
        assert result.trace.history[-3:] == [
            RequestState.FAILED, RequestState.LOGGED, RequestState.RESPONDED
        ]
        [server_response] = await store.find_all(EventKind.SERVER_RESPONSE)
        [service_response] = await store.find_all(EventKind.SERVICE_RESPONSE)
        assert server_response.status_code == 200
        assert service_response.status_code == 502
        assert service_response.response_data.number_of_values == 0
        await ingestor.stop()

    @pytest.mark.asyncio
    async def test_repeated_pairs_are_counted(self, gateway, ingestor, store):
        """Test recording the same pair N times yields count N."""
        await ingestor.start()
        engine = AggregationEngine(store)

        for _ in range(4):
            gateway.record_client_request(ClientRequestMetadata(
                endpoint="/api/latest", http_method="GET",
                from_currency="USD", to_currency="EUR",
            ))
            await gateway.get_latest_pair("USD", "EUR")
        gateway.record_client_request(ClientRequestMetadata(
            endpoint="/api/latest", http_method="GET",
            from_currency="GBP", to_currency="JPY",
        ))
        await ingestor.drain()

        pair = await engine.most_requested_pair()
        assert (pair.from_currency, pair.to_currency, pair.count) == ("USD", "EUR", 4)
        await ingestor.stop()

    @pytest.mark.asyncio
    async def test_record_service_response_delegates(self):
        """Test the public recording surface forwards to the ingestor."""
        ingestor = MagicMock()
        ingestor.ingest_service_response.return_value = True
        gateway = ConversionGateway(MagicMock(), ingestor)

        assert gateway.record_service_response(5.0, 200, "historical", {"rate": 1.0}) is True
        ingestor.ingest_service_response.assert_called_once_with(5.0, 200, "historical", {"rate": 1.0})
