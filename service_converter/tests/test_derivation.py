"""
Unit tests for per-request-type response summaries.
"""

import pytest

from service_converter.app.telemetry.derivation import DERIVATIONS, derive_response_data
from service_converter.app.telemetry.models import RequestType


def test_every_request_type_has_a_derivation():
    """Test the registry covers the whole enum."""
    assert set(DERIVATIONS) == set(RequestType)


def test_get_rate_summary():
    """Test a pair conversion yields one currency and one value."""
    data = derive_response_data("getRate", {"base": "USD", "rates": {"EUR": 0.92}})

    assert data.base == "USD"
    assert data.number_of_values == 1
    assert data.average_rate == 0.92
    assert data.to_currencies == ["EUR"]
    assert data.to_currency_values == ["0.92"]


def test_get_currencies_summary():
    """Test a listing yields the currencies and no values."""
    currencies = ["AUD", "BGN", "BRL", "CAD", "CHF", "CNY", "USD"]

    data = derive_response_data(RequestType.GET_CURRENCIES, currencies)

    assert data.to_currencies == currencies
    assert not data.to_currency_values
    assert data.number_of_values == 0


def test_time_series_summary():
    """Test a series yields count, mean and the ordered values."""
    points = [
        {"date": "2020-01-01", "rate": 1.0},
        {"date": "2020-01-02", "rate": 2.0},
        {"date": "2020-01-03", "rate": 4.5},
    ]

    data = derive_response_data("timeSeries", points)

    assert data.number_of_values == 3
    assert data.average_rate == pytest.approx(2.5)
    assert data.to_currency_values == ["1.0", "2.0", "4.5"]
    assert data.to_currencies is None
    assert (data.start_date, data.end_date) == ("2020-01-01", "2020-01-03")


def test_empty_time_series_summary():
    """Test an empty series does not divide by zero."""
    data = derive_response_data("timeSeries", [])

    assert data.number_of_values == 0
    assert data.average_rate == 0.0


def test_historical_summary():
    """Test a point-in-time rate yields a single value and no currencies."""
    data = derive_response_data("historical", {"rate": 0.8941})

    assert data.number_of_values == 1
    assert data.average_rate == 0.8941
    assert data.to_currency_values == ["0.8941"]
    assert data.to_currencies is None


def test_unknown_request_type_yields_zero_summary():
    """Test unrecognized tags produce zero values instead of failing."""
    data = derive_response_data("convertEverything", {"rate": 3.0})

    assert data.number_of_values == 0
    assert data.average_rate == 0.0
    assert data.to_currencies == []
    assert data.to_currency_values == []


def test_missing_payload_yields_zero_summary():
    """Test failed requests (no payload) are summarized as zero."""
    data = derive_response_data("getRate", None)

    assert data.number_of_values == 0
    assert data.to_currencies == []
