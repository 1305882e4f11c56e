"""
Async HTTP client for the upstream exchange-rate provider (Frankfurter API).
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from shared.errors import RateNotFound, UpstreamError
from shared.logging import get_logger
from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class ResponseMeta:
    """Raw metadata of one upstream exchange, kept for telemetry."""

    status_code: Optional[int]
    elapsed_ms: float
    payload_size: int
    started_at: datetime


@dataclass(frozen=True)
class LatestRates:
    """All latest rates against the provider's default base."""

    base: str
    date: str
    rates: Dict[str, float]


@dataclass(frozen=True)
class RateQuote:
    """A single rate for one target currency."""

    base: str
    date: str
    currency: str
    rate: float


@dataclass(frozen=True)
class SeriesPoint:
    """One dated rate in a time series."""

    date: str
    rate: float

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date, "rate": self.rate}


class RateClient:
    """Client for the rate provider's latest, historical and series endpoints.

    The client never records telemetry itself. Every call returns (or attaches
    to the raised error) a ``ResponseMeta`` so callers can log the attempt.
    """

    LATEST = "latest"
    HISTORICAL = "historical"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("converter.rate_client")
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def fetch_latest_all(self) -> Tuple[LatestRates, ResponseMeta]:
        """Latest rates for every currency the provider knows."""
        body, meta = await self._get("/latest", None, self.LATEST)
        rates = self._rates_object(body, meta)
        return LatestRates(
            base=body.get("base", ""),
            date=body.get("date", ""),
            rates={
                currency: self._to_float(rate, meta, currency)
                for currency, rate in rates.items()
            },
        ), meta

    async def fetch_latest_pair(self, from_currency: str, to_currency: str) -> Tuple[RateQuote, ResponseMeta]:
        """Latest rate converting ``from_currency`` into ``to_currency``."""
        params = {"from": from_currency, "to": to_currency}
        body, meta = await self._get("/latest", params, self.LATEST)
        rate = self._rate_for(body, to_currency, meta)
        return RateQuote(
            base=body.get("base", from_currency),
            date=body.get("date", ""),
            currency=to_currency,
            rate=rate,
        ), meta

    async def fetch_historical(
        self, date: str, from_currency: str, to_currency: str
    ) -> Tuple[RateQuote, ResponseMeta]:
        """Rate on ``date``. The provider may answer with the closest prior business day."""
        params = {"from": from_currency, "to": to_currency}
        body, meta = await self._get(f"/{date}", params, self.HISTORICAL)
        rate = self._rate_for(body, to_currency, meta)
        return RateQuote(
            base=body.get("base", from_currency),
            date=body.get("date", date),
            currency=to_currency,
            rate=rate,
        ), meta

    async def fetch_series(
        self, from_date: str, to_date: str, from_currency: str, to_currency: str
    ) -> Tuple[List[SeriesPoint], ResponseMeta]:
        """Daily rates between two dates, ascending by date."""
        params = {"from": from_currency, "to": to_currency}
        body, meta = await self._get(f"/{from_date}..{to_date}", params, self.HISTORICAL)
        rates = self._rates_object(body, meta)

        points = []
        # ISO-8601 dates sort correctly as strings
        for date in sorted(rates):
            day = rates[date]
            if isinstance(day, dict) and to_currency in day:
                points.append(SeriesPoint(
                    date=date, rate=self._to_float(day[to_currency], meta, to_currency)
                ))
        return points, meta

    async def _get(
        self, path: str, params: Optional[Dict[str, str]], endpoint_tag: str
    ) -> Tuple[Dict[str, Any], ResponseMeta]:
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()

        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            meta = ResponseMeta(
                status_code=None,
                elapsed_ms=self._elapsed_ms(start),
                payload_size=0,
                started_at=started_at,
            )
            self._record(endpoint_tag, "transport_error", meta)
            self.logger.error("Rate provider request failed", path=path, params=params, error=str(exc))
            raise UpstreamError(
                f"Rate provider unreachable: {exc.__class__.__name__}",
                meta=meta,
                details={"path": path},
            ) from exc

        meta = ResponseMeta(
            status_code=response.status_code,
            elapsed_ms=self._elapsed_ms(start),
            payload_size=len(response.content),
            started_at=started_at,
        )
        self._record(endpoint_tag, str(response.status_code), meta)

        if not response.is_success:
            self.logger.error(
                "Rate provider returned an error",
                path=path,
                params=params,
                status_code=response.status_code,
                response=response.text[:500]
            )
            raise UpstreamError(
                f"Unexpected status {response.status_code}",
                meta=meta,
                details={"path": path, "status_code": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamError("Malformed rate provider response", meta=meta, details={"path": path}) from exc

        if not isinstance(body, dict):
            raise UpstreamError("Malformed rate provider response", meta=meta, details={"path": path})

        self.logger.debug("Rate provider response", path=path, params=params, elapsed_ms=meta.elapsed_ms)
        return body, meta

    def _rates_object(self, body: Dict[str, Any], meta: ResponseMeta) -> Dict[str, Any]:
        rates = body.get("rates")
        if not isinstance(rates, dict):
            raise RateNotFound("Rate provider response has no rates", meta=meta)
        return rates

    def _rate_for(self, body: Dict[str, Any], currency: str, meta: ResponseMeta) -> float:
        rates = self._rates_object(body, meta)
        if currency not in rates:
            raise RateNotFound(f"No rate for {currency}", meta=meta, details={"currency": currency})
        return self._to_float(rates[currency], meta, currency)

    @staticmethod
    def _to_float(value: Any, meta: ResponseMeta, currency: str) -> float:
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise UpstreamError(
                "Malformed rate value",
                meta=meta,
                details={"currency": currency, "value": repr(value)},
            ) from exc

    def _record(self, endpoint_tag: str, status: str, meta: ResponseMeta) -> None:
        if self.metrics is None:
            return
        self.metrics.increment_counter("upstream_requests_total", endpoint=endpoint_tag, status=status)
        self.metrics.observe_histogram(
            "upstream_request_duration_seconds", meta.elapsed_ms / 1000.0, endpoint=endpoint_tag
        )

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return round((time.perf_counter() - start) * 1000.0, 3)
