"""
Per-request-type summaries of the payloads returned to callers.

Each ``RequestType`` has exactly one derivation function. The registry is
checked against the enum at import time so adding a request type without a
derivation fails fast.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .models import RequestType, ResponseData


def _rate_string(value: Any) -> str:
    return str(float(value))


def derive_get_rate(payload: Mapping[str, Any]) -> ResponseData:
    """``{"base": ..., "rates": {to: rate}}``: one currency, one value."""
    rates = payload.get("rates") or {}
    if not rates:
        return ResponseData.empty()
    currency, rate = next(iter(rates.items()))
    rate = float(rate)
    return ResponseData(
        base=payload.get("base"),
        number_of_values=1,
        average_rate=rate,
        to_currencies=[currency],
        to_currency_values=[_rate_string(rate)],
    )


def derive_get_currencies(payload: List[str]) -> ResponseData:
    """List of currency codes: currencies only, no rate values."""
    return ResponseData(
        number_of_values=0,
        average_rate=0.0,
        to_currencies=[str(code) for code in payload],
        to_currency_values=None,
    )


def _series_rate(point: Any) -> float:
    if isinstance(point, Mapping):
        return float(point["rate"])
    if hasattr(point, "rate"):
        return float(point.rate)
    return float(point)


def _series_date(point: Any) -> Optional[str]:
    if isinstance(point, Mapping):
        return point.get("date")
    return getattr(point, "date", None)


def derive_time_series(payload: List[Any]) -> ResponseData:
    """Ordered ``{date, rate}`` points: count, mean and the value list."""
    rates = [_series_rate(point) for point in payload]
    dates = [date for date in (_series_date(point) for point in payload) if date]
    average = sum(rates) / len(rates) if rates else 0.0
    return ResponseData(
        start_date=dates[0] if dates else None,
        end_date=dates[-1] if dates else None,
        number_of_values=len(rates),
        average_rate=average,
        to_currencies=None,
        to_currency_values=[_rate_string(rate) for rate in rates],
    )


def derive_historical(payload: Mapping[str, Any]) -> ResponseData:
    """``{"rate": value}``: a single point-in-time rate."""
    rate = float(payload["rate"])
    return ResponseData(
        start_date=payload.get("date"),
        end_date=payload.get("date"),
        number_of_values=1,
        average_rate=rate,
        to_currencies=None,
        to_currency_values=[_rate_string(rate)],
    )


DERIVATIONS: Dict[RequestType, Callable[[Any], ResponseData]] = {
    RequestType.GET_RATE: derive_get_rate,
    RequestType.GET_CURRENCIES: derive_get_currencies,
    RequestType.TIME_SERIES: derive_time_series,
    RequestType.HISTORICAL: derive_historical,
}

_missing = set(RequestType) - set(DERIVATIONS)
if _missing:
    raise RuntimeError(f"No response derivation registered for {sorted(t.value for t in _missing)}")


def derive_response_data(request_type: Union[RequestType, str], payload: Any) -> ResponseData:
    """Summarize ``payload`` according to ``request_type``.

    Unrecognized request types and missing payloads yield a zero-valued summary.
    Malformed payloads raise, and the caller decides how to log that.
    """
    try:
        tag = RequestType(request_type)
    except ValueError:
        return ResponseData.empty()

    if payload is None:
        return ResponseData.empty()

    return DERIVATIONS[tag](payload)
