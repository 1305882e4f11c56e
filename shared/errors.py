"""
Shared error handling for the Currency Converter services.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from .logging import get_request_id


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class ConverterException(Exception):
    """Base exception for Currency Converter services."""

    status_code: int = 400

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            trace_id=get_request_id(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(ConverterException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details, status_code=400)


class ServiceError(ConverterException):
    """Service-related errors."""

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details, status_code=500)


class UpstreamError(ConverterException):
    """The rate provider failed: non-2xx status, transport failure or malformed body.

    ``meta`` holds whatever response metadata was observed (status, latency,
    size) so the failed attempt can still be recorded.
    """

    def __init__(
        self,
        message: str = "Upstream rate provider error",
        meta: Any = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.meta = meta
        super().__init__("UPSTREAM_ERROR", message, details, status_code=502)


class RateNotFound(ConverterException):
    """The rate provider answered but has no rate for the requested currency/date."""

    def __init__(
        self,
        message: str = "No data available",
        meta: Any = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.meta = meta
        super().__init__("RATE_NOT_FOUND", message, details, status_code=404)


class TelemetryWriteError(ConverterException):
    """Persistence failure during ingestion. Logged, never surfaced to callers."""

    def __init__(self, message: str = "Telemetry write failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("TELEMETRY_WRITE_ERROR", message, details, status_code=500)
