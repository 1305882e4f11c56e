"""
Telemetry event records persisted by the event store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        return datetime.fromisoformat(value)
    return _utcnow()


class EventKind(str, Enum):
    """Logical record streams, named after their tables."""
    CLIENT_REQUEST = "client_request"
    SERVER_REQUEST = "server_request"
    SERVER_RESPONSE = "server_response"
    SERVICE_RESPONSE = "service_response"


CONVERSION_PAIRS_TABLE = "conversion_requests"


class RequestType(str, Enum):
    """Kinds of response this service returns to its callers."""
    GET_RATE = "getRate"
    GET_CURRENCIES = "getCurrencies"
    HISTORICAL = "historical"
    TIME_SERIES = "timeSeries"


@dataclass(frozen=True)
class ConversionIntent:
    """Currency parameters carried by an inbound request."""

    from_currency: Optional[str] = None
    to_currency: Optional[str] = None
    date: Optional[str] = None
    to_date: Optional[str] = None

    @property
    def has_pair(self) -> bool:
        return bool(self.from_currency) and bool(self.to_currency)

    def to_document(self) -> Dict[str, Any]:
        return {
            "from_currency": self.from_currency,
            "to_currency": self.to_currency,
            "date": self.date,
            "to_date": self.to_date,
        }

    @classmethod
    def from_document(cls, doc: Optional[Dict[str, Any]]) -> "ConversionIntent":
        doc = doc or {}
        return cls(
            from_currency=doc.get("from_currency"),
            to_currency=doc.get("to_currency"),
            date=doc.get("date"),
            to_date=doc.get("to_date"),
        )


@dataclass(frozen=True)
class ResponseData:
    """Normalized currencies/values summary attached to response events.

    ``to_currencies`` and ``to_currency_values`` are index-aligned whenever
    both are present.
    """

    base: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    number_of_values: int = 0
    average_rate: float = 0.0
    to_currencies: Optional[List[str]] = None
    to_currency_values: Optional[List[str]] = None

    @classmethod
    def empty(cls) -> "ResponseData":
        """Zero-valued summary for failed or unrecognized responses."""
        return cls(to_currencies=[], to_currency_values=[])

    def to_document(self) -> Dict[str, Any]:
        return {
            "base": self.base,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "number_of_values": self.number_of_values,
            "average_rate": self.average_rate,
            "to_currencies": list(self.to_currencies) if self.to_currencies is not None else None,
            "to_currency_values": list(self.to_currency_values) if self.to_currency_values is not None else None,
        }

    @classmethod
    def from_document(cls, doc: Optional[Dict[str, Any]]) -> "ResponseData":
        doc = doc or {}
        return cls(
            base=doc.get("base"),
            start_date=doc.get("start_date"),
            end_date=doc.get("end_date"),
            number_of_values=int(doc.get("number_of_values") or 0),
            average_rate=float(doc.get("average_rate") or 0.0),
            to_currencies=doc.get("to_currencies"),
            to_currency_values=doc.get("to_currency_values"),
        )


@dataclass(frozen=True)
class ClientRequestEvent:
    """One inbound API call."""

    endpoint: str
    http_method: str
    device_name: str = ""
    operating_system: str = ""
    ip_address: Optional[str] = None
    request_data: ConversionIntent = field(default_factory=ConversionIntent)
    recorded_at: datetime = field(default_factory=_utcnow)

    kind = EventKind.CLIENT_REQUEST

    def to_document(self) -> Dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "http_method": self.http_method,
            "device_name": self.device_name,
            "operating_system": self.operating_system,
            "ip_address": self.ip_address,
            "request_data": self.request_data.to_document(),
            "recorded_at": self.recorded_at.isoformat(),
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ClientRequestEvent":
        return cls(
            endpoint=doc.get("endpoint", ""),
            http_method=doc.get("http_method", ""),
            device_name=doc.get("device_name") or "",
            operating_system=doc.get("operating_system") or "",
            ip_address=doc.get("ip_address"),
            request_data=ConversionIntent.from_document(doc.get("request_data")),
            recorded_at=_parse_datetime(doc.get("recorded_at")),
        )


@dataclass(frozen=True)
class ServerRequestEvent:
    """One outbound call to the rate provider."""

    http_method: str
    endpoint: str
    timestamp: datetime
    date: Optional[str] = None
    to_date: Optional[str] = None
    from_currency: Optional[str] = None
    to_currency: Optional[str] = None
    ip_address: Optional[str] = None

    kind = EventKind.SERVER_REQUEST

    def to_document(self) -> Dict[str, Any]:
        return {
            "http_method": self.http_method,
            "endpoint": self.endpoint,
            "timestamp": self.timestamp.isoformat(),
            "query_parameters": {
                "date": self.date,
                "to_date": self.to_date,
                "from": self.from_currency,
                "to": self.to_currency,
            },
            "ip_address": self.ip_address,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ServerRequestEvent":
        params = doc.get("query_parameters") or {}
        return cls(
            http_method=doc.get("http_method", ""),
            endpoint=doc.get("endpoint", ""),
            timestamp=_parse_datetime(doc.get("timestamp")),
            date=params.get("date"),
            to_date=params.get("to_date"),
            from_currency=params.get("from"),
            to_currency=params.get("to"),
            ip_address=doc.get("ip_address"),
        )


@dataclass(frozen=True)
class ServerResponseEvent:
    """One response received from the rate provider."""

    response_time_ms: float
    status_code: Optional[int]
    payload_size: int
    response_data: ResponseData = field(default_factory=ResponseData)
    recorded_at: datetime = field(default_factory=_utcnow)

    kind = EventKind.SERVER_RESPONSE

    def to_document(self) -> Dict[str, Any]:
        return {
            "response_time_ms": self.response_time_ms,
            "status_code": self.status_code,
            "payload_size": self.payload_size,
            "response_data": self.response_data.to_document(),
            "recorded_at": self.recorded_at.isoformat(),
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ServerResponseEvent":
        return cls(
            response_time_ms=float(doc.get("response_time_ms") or 0.0),
            status_code=doc.get("status_code"),
            payload_size=int(doc.get("payload_size") or 0),
            response_data=ResponseData.from_document(doc.get("response_data")),
            recorded_at=_parse_datetime(doc.get("recorded_at")),
        )


@dataclass(frozen=True)
class ServiceResponseEvent:
    """One response this service returned to its caller."""

    response_time_ms: float
    status_code: int
    request_type: str
    response_data: ResponseData = field(default_factory=ResponseData)
    recorded_at: datetime = field(default_factory=_utcnow)

    kind = EventKind.SERVICE_RESPONSE

    def to_document(self) -> Dict[str, Any]:
        return {
            "response_time_ms": self.response_time_ms,
            "status_code": self.status_code,
            "request_type": self.request_type,
            "response_data": self.response_data.to_document(),
            "recorded_at": self.recorded_at.isoformat(),
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ServiceResponseEvent":
        return cls(
            response_time_ms=float(doc.get("response_time_ms") or 0.0),
            status_code=int(doc.get("status_code") or 0),
            request_type=doc.get("request_type", ""),
            response_data=ResponseData.from_document(doc.get("response_data")),
            recorded_at=_parse_datetime(doc.get("recorded_at")),
        )


@dataclass
class ConversionPairCounter:
    """Request tally for one (from, to) currency pair."""

    from_currency: str
    to_currency: str
    count: int = 0

    def to_document(self) -> Dict[str, Any]:
        return {
            "from_currency": self.from_currency,
            "to_currency": self.to_currency,
            "count": self.count,
        }


EVENT_TYPES = {
    EventKind.CLIENT_REQUEST: ClientRequestEvent,
    EventKind.SERVER_REQUEST: ServerRequestEvent,
    EventKind.SERVER_RESPONSE: ServerResponseEvent,
    EventKind.SERVICE_RESPONSE: ServiceResponseEvent,
}


def lookup_field(document: Dict[str, Any], path: str) -> Any:
    """Resolve a dotted field path (``response_data.average_rate``) in a document."""
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value
