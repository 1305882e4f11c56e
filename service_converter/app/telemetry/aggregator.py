"""
Read-side aggregation over the telemetry event store.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from shared.logging import get_logger

from .event_store import EventStore
from .models import ConversionPairCounter, EventKind

NO_DATA = "No data available"


@dataclass
class DashboardSnapshot:
    """Operational metrics shown on the dashboard."""

    most_frequent_conversion: str
    most_requested_pair: Optional[ConversionPairCounter]
    top_devices: List[str]
    average_response_time: str
    event_counts: Dict[str, int] = field(default_factory=dict)
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "most_frequent_conversion": self.most_frequent_conversion,
            "most_requested_pair": (
                self.most_requested_pair.to_document() if self.most_requested_pair else None
            ),
            "top_devices": self.top_devices,
            "average_response_time": self.average_response_time,
            "event_counts": self.event_counts,
            "generated_at": self.generated_at.isoformat(),
        }


class AggregationEngine:
    """Computes dashboard metrics. Never writes to the store."""

    def __init__(self, store: EventStore, top_devices_limit: int = 5):
        self.store = store
        self.top_devices_limit = top_devices_limit
        self.logger = get_logger("converter.aggregator")

    async def top_devices(self, n: Optional[int] = None) -> List[str]:
        """Device names ordered by request count, at most ``n`` of them."""
        limit = self.top_devices_limit if n is None else n
        groups = await self.store.top_n_by_field(EventKind.CLIENT_REQUEST, "device_name", limit)
        return [value if value is not None else "" for value, _ in groups]

    async def most_requested_pair(self) -> Optional[ConversionPairCounter]:
        return await self.store.max_by_field("count")

    async def most_frequent_conversion(self) -> str:
        pair = await self.most_requested_pair()
        if pair is None:
            return NO_DATA
        return f"{pair.from_currency} to {pair.to_currency}"

    async def average_service_latency(self) -> str:
        """Mean service response time, e.g. ``"20.00 ms"``."""
        average = await self.store.average(EventKind.SERVICE_RESPONSE, "response_time_ms")
        if average is None:
            return NO_DATA
        return f"{average:.2f} ms"

    async def all_client_requests(self) -> List[Dict[str, Any]]:
        return await self._documents(EventKind.CLIENT_REQUEST)

    async def all_server_requests(self) -> List[Dict[str, Any]]:
        return await self._documents(EventKind.SERVER_REQUEST)

    async def all_server_responses(self) -> List[Dict[str, Any]]:
        return await self._documents(EventKind.SERVER_RESPONSE)

    async def all_service_responses(self) -> List[Dict[str, Any]]:
        return await self._documents(EventKind.SERVICE_RESPONSE)

    async def all_conversion_pairs(self) -> List[Dict[str, Any]]:
        return [pair.to_document() for pair in await self.store.list_pairs()]

    async def snapshot(self) -> DashboardSnapshot:
        """Compute every dashboard metric in one pass."""
        pair = await self.most_requested_pair()
        counts = {kind.value: await self.store.count(kind) for kind in EventKind}
        snapshot = DashboardSnapshot(
            most_frequent_conversion=(
                f"{pair.from_currency} to {pair.to_currency}" if pair else NO_DATA
            ),
            most_requested_pair=pair,
            top_devices=await self.top_devices(),
            average_response_time=await self.average_service_latency(),
            event_counts=counts,
        )
        self.logger.debug("Dashboard snapshot computed", event_counts=counts)
        return snapshot

    async def _documents(self, kind: EventKind) -> List[Dict[str, Any]]:
        return [event.to_document() for event in await self.store.find_all(kind)]
