"""
Unit tests for user-agent parsing.
"""

import pytest

from service_converter.app.telemetry.user_agent import DeviceInfo, UserAgentsParser

ANDROID_UA = (
    "Mozilla/5.0 (Linux; Android 13; Pixel 7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/116.0.0.0 Mobile Safari/537.36"
)
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_6 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.6 Mobile/15E148 Safari/604.1"
)


@pytest.fixture
def parser():
    return UserAgentsParser()


@pytest.mark.parametrize("user_agent", [None, "", "   "])
def test_missing_user_agent_yields_empty_fields(parser, user_agent):
    """Test absent user agents never raise."""
    assert parser.parse(user_agent) == DeviceInfo("", "")


def test_garbage_user_agent_does_not_raise(parser):
    """Test unparseable input returns a DeviceInfo."""
    info = parser.parse("\x00\x01 definitely not a browser")
    assert isinstance(info, DeviceInfo)


def test_android_device(parser):
    """Test an Android phone yields its model and major OS version."""
    info = parser.parse(ANDROID_UA)

    assert "Pixel 7" in info.device_name
    assert info.os == "Android 13"


def test_iphone_device(parser):
    """Test an iPhone yields the device family and iOS major version."""
    info = parser.parse(IPHONE_UA)

    assert "iPhone" in info.device_name
    assert info.os == "iOS 16"


def test_parser_failure_is_swallowed(parser, monkeypatch):
    """Test errors inside the parsing library degrade to empty fields."""
    def boom(value):
        raise RuntimeError("parser exploded")

    monkeypatch.setattr("service_converter.app.telemetry.user_agent.parse_user_agent", boom)

    assert parser.parse(ANDROID_UA) == DeviceInfo()
