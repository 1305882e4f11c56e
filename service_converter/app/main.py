"""
Currency converter service: rate proxy with request/response telemetry.
"""

import time
from typing import Dict, Optional

from fastapi import Query, Request
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.errors import ValidationError

from .adapters.rate_client import RateClient
from .gateway import ConversionGateway, GatewayResult
from .telemetry.aggregator import AggregationEngine
from .telemetry.event_store import EventStore, create_event_store
from .telemetry.ingestor import ClientRequestMetadata, TelemetryIngestor
from .telemetry.models import RequestType
from .telemetry.user_agent import UserAgentParser


class ConverterService(BaseService):
    """Converter service implementation."""

    def __init__(
        self,
        *,
        event_store: Optional[EventStore] = None,
        rate_client: Optional[RateClient] = None,
        user_agent_parser: Optional[UserAgentParser] = None,
        **config_overrides
    ):
        super().__init__("converter", 8080, **config_overrides)

        # Initialize components
        self.event_store = event_store or create_event_store(self.config)
        self.rate_client = rate_client or RateClient(
            self.config.upstream_base_url,
            timeout=self.config.upstream_timeout_seconds,
            metrics=self.metrics,
        )
        self.ingestor = TelemetryIngestor(
            self.event_store,
            user_agent_parser=user_agent_parser,
            queue_size=self.config.telemetry_queue_size,
            workers=self.config.telemetry_workers,
            drain_timeout=self.config.telemetry_drain_timeout_seconds,
            metrics=self.metrics,
        )
        self.gateway = ConversionGateway(self.rate_client, self.ingestor)
        self.aggregator = AggregationEngine(
            self.event_store,
            top_devices_limit=self.config.top_devices_limit,
        )

        self.app.state.converter_service = self
        self._setup_converter_routes()

    def _setup_converter_routes(self):
        """Set up converter-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "converter",
                "message": "Currency Converter - rate proxy and telemetry",
                "version": "1.0.0",
                "capabilities": ["latest", "historical", "timeseries", "dashboard"]
            }

        @self.app.get("/api/latest")
        async def latest_rates(
            request: Request,
            from_currency: Optional[str] = Query(None, alias="from"),
            to_currency: Optional[str] = Query(None, alias="to"),
        ):
            """Latest rate for a pair, or the currency list when the pair is incomplete."""
            self._record_client_request(request, from_currency, to_currency)
            result = await self.gateway.get_latest(
                from_currency, to_currency, client_ip=self._client_ip(request)
            )
            return self._respond(result)

        @self.app.get("/api/historical")
        async def historical_rates(
            request: Request,
            date: Optional[str] = Query(None),
            to_date: Optional[str] = Query(None, alias="toDate"),
            from_currency: Optional[str] = Query(None, alias="from"),
            to_currency: Optional[str] = Query(None, alias="to"),
        ):
            """Rate on a date, or a series when ``toDate`` is given."""
            start = time.perf_counter()
            self._record_client_request(request, from_currency, to_currency, date, to_date)

            request_type = RequestType.TIME_SERIES if to_date else RequestType.HISTORICAL
            if not from_currency or not to_currency:
                self._reject(start, request_type, "Both 'from' and 'to' currencies are required")
            if not date and not to_date:
                self._reject(start, request_type, "Invalid request format: 'date' or 'toDate' is required")

            client_ip = self._client_ip(request)
            if request_type == RequestType.HISTORICAL:
                result = await self.gateway.get_historical(
                    date, from_currency, to_currency, client_ip=client_ip
                )
            else:
                result = await self.gateway.get_series(
                    date or self.config.series_default_start_date,
                    to_date,
                    from_currency,
                    to_currency,
                    client_ip=client_ip,
                )

            return self._respond(result)

        @self.app.get("/dashboard")
        async def dashboard():
            """Aggregated telemetry metrics."""
            snapshot = await self.aggregator.snapshot()
            return {
                **snapshot.to_dict(),
                "ingestion": self.ingestor.get_stats(),
            }

        streams = {
            "client-requests": self.aggregator.all_client_requests,
            "server-requests": self.aggregator.all_server_requests,
            "server-responses": self.aggregator.all_server_responses,
            "service-responses": self.aggregator.all_service_responses,
            "conversion-pairs": self.aggregator.all_conversion_pairs,
        }

        @self.app.get("/dashboard/{stream}")
        async def dashboard_stream(stream: str):
            """Raw records of one telemetry stream."""
            reader = streams.get(stream)
            if reader is None:
                raise ValidationError(
                    f"Unknown telemetry stream: {stream}",
                    {"available": sorted(streams)}
                )
            records = await reader()
            return {"stream": stream, "records": records, "total": len(records)}

    def _record_client_request(
        self,
        request: Request,
        from_currency: Optional[str],
        to_currency: Optional[str],
        date: Optional[str] = None,
        to_date: Optional[str] = None,
    ) -> None:
        self.gateway.record_client_request(ClientRequestMetadata(
            endpoint=request.url.path,
            http_method=request.method,
            user_agent=request.headers.get("user-agent"),
            ip_address=self._client_ip(request),
            from_currency=from_currency,
            to_currency=to_currency,
            date=date,
            to_date=to_date,
        ))

    def _reject(self, start: float, request_type: RequestType, message: str) -> None:
        """Record the 400 as a service response, then raise it."""
        error = ValidationError(message)
        elapsed_ms = round((time.perf_counter() - start) * 1000.0, 3)
        self.gateway.record_service_response(elapsed_ms, error.status_code, request_type, None)
        raise error

    @staticmethod
    def _client_ip(request: Request) -> Optional[str]:
        return request.client.host if request.client else None

    def _respond(self, result: GatewayResult) -> JSONResponse:
        if result.ok:
            self.metrics.record_business_event(result.request_type.value)
        else:
            self.metrics.record_error(result.error.code if result.error else "UNKNOWN")
        return JSONResponse(status_code=result.status_code, content=result.to_content())

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check converter service dependencies."""
        return {
            "event_store": "ok" if await self.event_store.ping() else "error",
            "ingestor": "ok" if self.ingestor.running else "error",
        }

    async def start(self):
        """Start converter service components."""
        await self.event_store.start()
        await self.ingestor.start()

        self.logger.info("Converter service components started")

    async def stop(self):
        """Stop converter service components."""
        await self.ingestor.stop()
        await self.rate_client.close()
        await self.event_store.stop()

        self.logger.info("Converter service components stopped")


def create_app(**kwargs):
    """Create converter service application."""
    service = ConverterService(**kwargs)
    return service.app


if __name__ == "__main__":
    service = ConverterService()
    service.run()
