"""
Conversion gateway: proxies rate requests and records their telemetry.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from shared.errors import ConverterException, ErrorResponse
from shared.logging import get_logger

from .adapters.rate_client import RateClient, ResponseMeta
from .telemetry.ingestor import ClientRequestMetadata, TelemetryIngestor
from .telemetry.models import RequestType, ResponseData


class RequestState(str, Enum):
    """Lifecycle of a single gateway request."""
    RECEIVED = "received"
    UPSTREAM_CALLED = "upstream_called"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    LOGGED = "logged"
    RESPONDED = "responded"


_TRANSITIONS = {
    RequestState.RECEIVED: {RequestState.UPSTREAM_CALLED},
    RequestState.UPSTREAM_CALLED: {RequestState.SUCCEEDED, RequestState.FAILED},
    RequestState.SUCCEEDED: {RequestState.LOGGED},
    RequestState.FAILED: {RequestState.LOGGED},
    RequestState.LOGGED: {RequestState.RESPONDED},
    RequestState.RESPONDED: set(),
}


class InvalidTransition(RuntimeError):
    """Raised when a request trace skips or repeats a lifecycle step."""


@dataclass
class RequestTrace:
    """State machine for one request: Received → UpstreamCalled → Succeeded|Failed → Logged → Responded."""

    request_type: RequestType
    state: RequestState = RequestState.RECEIVED
    history: List[RequestState] = field(default_factory=lambda: [RequestState.RECEIVED])

    def advance(self, new_state: RequestState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)


@dataclass
class GatewayResult:
    """Outcome of a gateway call. ``payload`` is only set when ``ok`` is true."""

    ok: bool
    request_type: RequestType
    status_code: int
    payload: Any = None
    error: Optional[ErrorResponse] = None
    trace: Optional[RequestTrace] = None

    def to_content(self) -> Any:
        """JSON body for the HTTP layer."""
        if self.ok:
            return self.payload
        return {"error": self.error.model_dump() if self.error else None}


# Produces (payload, response_data for the server response event, meta)
UpstreamCall = Callable[[], Awaitable[Tuple[Any, ResponseData, ResponseMeta]]]


class ConversionGateway:
    """Orchestrates rate lookups, upstream calls and telemetry."""

    def __init__(self, rate_client: RateClient, ingestor: TelemetryIngestor):
        self.rate_client = rate_client
        self.ingestor = ingestor
        self.logger = get_logger("converter.gateway")

    def record_client_request(self, metadata: ClientRequestMetadata) -> bool:
        return self.ingestor.ingest_client_request(metadata)

    def record_service_response(
        self, elapsed_ms: float, status_code: int, request_type: str, payload: Any
    ) -> bool:
        return self.ingestor.ingest_service_response(elapsed_ms, status_code, request_type, payload)

    async def get_latest(
        self,
        from_currency: Optional[str],
        to_currency: Optional[str],
        client_ip: Optional[str] = None,
    ) -> GatewayResult:
        """Pair conversion when both currencies are given, otherwise the currency listing."""
        if from_currency and to_currency:
            return await self.get_latest_pair(from_currency, to_currency, client_ip)
        return await self.get_latest_all(client_ip)

    async def get_latest_all(self, client_ip: Optional[str] = None) -> GatewayResult:
        """List of currency codes the provider offers."""

        async def call():
            latest, meta = await self.rate_client.fetch_latest_all()
            currencies = list(latest.rates)
            values = [float(rate) for rate in latest.rates.values()]
            response_data = ResponseData(
                base=latest.base,
                end_date=latest.date,
                number_of_values=len(values),
                average_rate=sum(values) / len(values) if values else 0.0,
                to_currencies=currencies,
                to_currency_values=[str(value) for value in values],
            )
            return currencies, response_data, meta

        return await self._handle(
            RequestType.GET_CURRENCIES, RateClient.LATEST, call, client_ip=client_ip
        )

    async def get_latest_pair(
        self, from_currency: str, to_currency: str, client_ip: Optional[str] = None
    ) -> GatewayResult:
        """``{"base": ..., "rates": {to: rate}}`` for the latest rate."""

        async def call():
            quote, meta = await self.rate_client.fetch_latest_pair(from_currency, to_currency)
            payload = {"base": quote.base, "rates": {quote.currency: quote.rate}}
            response_data = ResponseData(
                base=quote.base,
                end_date=quote.date,
                number_of_values=1,
                average_rate=quote.rate,
                to_currencies=[quote.currency],
                to_currency_values=[str(quote.rate)],
            )
            return payload, response_data, meta

        return await self._handle(
            RequestType.GET_RATE,
            RateClient.LATEST,
            call,
            client_ip=client_ip,
            from_currency=from_currency,
            to_currency=to_currency,
        )

    async def get_historical(
        self, date: str, from_currency: str, to_currency: str, client_ip: Optional[str] = None
    ) -> GatewayResult:
        """``{"rate": value}`` on ``date``."""

        async def call():
            quote, meta = await self.rate_client.fetch_historical(date, from_currency, to_currency)
            payload = {"rate": quote.rate}
            response_data = ResponseData(
                base=quote.base,
                start_date=date,
                end_date=date,
                number_of_values=1,
                average_rate=quote.rate,
                to_currencies=[to_currency],
                to_currency_values=[str(quote.rate)],
            )
            return payload, response_data, meta

        return await self._handle(
            RequestType.HISTORICAL,
            RateClient.HISTORICAL,
            call,
            client_ip=client_ip,
            from_currency=from_currency,
            to_currency=to_currency,
            date=date,
        )

    async def get_series(
        self,
        from_date: str,
        to_date: str,
        from_currency: str,
        to_currency: str,
        client_ip: Optional[str] = None,
    ) -> GatewayResult:
        """Ordered ``[{"date": ..., "rate": ...}]`` between two dates."""

        async def call():
            points, meta = await self.rate_client.fetch_series(
                from_date, to_date, from_currency, to_currency
            )
            rates = [point.rate for point in points]
            response_data = ResponseData(
                base=from_currency,
                start_date=from_date,
                end_date=to_date,
                number_of_values=len(rates),
                average_rate=sum(rates) / len(rates) if rates else 0.0,
                to_currencies=[to_currency] * len(rates),
                to_currency_values=[str(rate) for rate in rates],
            )
            return [point.to_dict() for point in points], response_data, meta

        return await self._handle(
            RequestType.TIME_SERIES,
            RateClient.HISTORICAL,
            call,
            client_ip=client_ip,
            from_currency=from_currency,
            to_currency=to_currency,
            date=from_date,
            to_date=to_date,
        )

    async def _handle(
        self,
        request_type: RequestType,
        endpoint_tag: str,
        call: UpstreamCall,
        *,
        client_ip: Optional[str] = None,
        from_currency: Optional[str] = None,
        to_currency: Optional[str] = None,
        date: Optional[str] = None,
        to_date: Optional[str] = None,
    ) -> GatewayResult:
        trace = RequestTrace(request_type)
        start = time.perf_counter()

        trace.advance(RequestState.UPSTREAM_CALLED)
        try:
            payload, server_data, meta = await call()
        except ConverterException as exc:
            trace.advance(RequestState.FAILED)
            meta = getattr(exc, "meta", None)
            server_data = ResponseData()
            result = GatewayResult(
                ok=False,
                request_type=request_type,
                status_code=exc.status_code,
                error=exc.to_response(),
                trace=trace,
            )
            self.logger.warning(
                "Conversion request failed",
                request_type=request_type.value,
                code=exc.code,
                message=exc.message,
            )
        else:
            trace.advance(RequestState.SUCCEEDED)
            result = GatewayResult(
                ok=True,
                request_type=request_type,
                status_code=200,
                payload=payload,
                trace=trace,
            )

        elapsed_ms = round((time.perf_counter() - start) * 1000.0, 3)

        self.ingestor.ingest_server_exchange(
            "GET",
            endpoint_tag,
            meta,
            from_currency=from_currency,
            to_currency=to_currency,
            date=date,
            to_date=to_date,
            ip_address=client_ip,
            response_data=server_data,
        )
        self.ingestor.ingest_service_response(
            elapsed_ms,
            result.status_code,
            request_type,
            result.payload if result.ok else None,
        )
        trace.advance(RequestState.LOGGED)

        trace.advance(RequestState.RESPONDED)
        return result

    def get_stats(self) -> Dict[str, Any]:
        return self.ingestor.get_stats()
