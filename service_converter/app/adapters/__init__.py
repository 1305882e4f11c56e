"""
Adapters package for the Converter Service.

Contains the HTTP client for the upstream exchange-rate provider. The
adapter owns base URLs, timeouts and the mapping of provider failures to
shared errors; it never records telemetry itself.
"""

from .rate_client import LatestRates, RateClient, RateQuote, ResponseMeta, SeriesPoint

__all__ = [
    "LatestRates",
    "RateClient",
    "RateQuote",
    "ResponseMeta",
    "SeriesPoint",
]
