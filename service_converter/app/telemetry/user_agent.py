"""
User-agent parsing for client request telemetry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from user_agents import parse as parse_user_agent

from shared.logging import get_logger


@dataclass(frozen=True)
class DeviceInfo:
    """Device and operating system derived from a user-agent string."""

    device_name: str = ""
    os: str = ""


class UserAgentParser(Protocol):
    """Best-effort user-agent parser. Implementations never raise."""

    def parse(self, user_agent: Optional[str]) -> DeviceInfo:
        ...


class UserAgentsParser:
    """Parser backed by the ``user-agents`` library (ua-parser rules)."""

    UNKNOWN = "Other"

    def __init__(self):
        self.logger = get_logger("converter.user_agent")

    def parse(self, user_agent: Optional[str]) -> DeviceInfo:
        if not user_agent or not user_agent.strip():
            return DeviceInfo()

        try:
            agent = parse_user_agent(user_agent)
            return DeviceInfo(
                device_name=self._device_name(agent),
                os=self._operating_system(agent),
            )
        except Exception as e:
            self.logger.debug("Unparseable user agent", user_agent=user_agent, error=str(e))
            return DeviceInfo()

    def _device_name(self, agent) -> str:
        device = agent.device
        brand = device.brand if device.brand and device.brand != self.UNKNOWN else ""
        model = device.model if device.model and device.model != self.UNKNOWN else ""

        if brand and model:
            return model if model.startswith(brand) else f"{brand} {model}"
        if device.family and device.family != self.UNKNOWN:
            return device.family
        if agent.is_pc:
            return "Desktop"
        if agent.is_bot:
            return "Robot"
        return ""

    def _operating_system(self, agent) -> str:
        os_info = agent.os
        if not os_info.family or os_info.family == self.UNKNOWN:
            return ""
        if os_info.version:
            return f"{os_info.family} {os_info.version[0]}"
        return os_info.family
