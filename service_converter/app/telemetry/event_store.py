"""
Event store: the persistence boundary for telemetry records.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple, Union

from shared.logging import get_logger

from .models import (
    EVENT_TYPES,
    ClientRequestEvent,
    ConversionPairCounter,
    EventKind,
    ServerRequestEvent,
    ServerResponseEvent,
    ServiceResponseEvent,
    lookup_field,
)

TelemetryEvent = Union[ClientRequestEvent, ServerRequestEvent, ServerResponseEvent, ServiceResponseEvent]


class EventStore(ABC):
    """Append-only event streams plus the conversion pair counter table.

    Field arguments are document keys; dotted paths reach nested values
    (``response_data.average_rate``).
    """

    async def start(self) -> None:
        """Open connections. No-op by default."""

    async def stop(self) -> None:
        """Release connections. No-op by default."""

    async def ping(self) -> bool:
        return True

    @abstractmethod
    async def insert(self, event: TelemetryEvent) -> None:
        """Append an event to its stream."""

    @abstractmethod
    async def find_all(self, kind: EventKind) -> List[TelemetryEvent]:
        """Return every event of ``kind`` in insertion order."""

    @abstractmethod
    async def count(self, kind: EventKind) -> int:
        """Return the number of events of ``kind``."""

    @abstractmethod
    async def upsert_pair(self, from_currency: str, to_currency: str, increment_by: int = 1) -> int:
        """Atomically create or increment a pair counter, returning the new count."""

    @abstractmethod
    async def list_pairs(self) -> List[ConversionPairCounter]:
        """Return all pair counters in first-seen order."""

    @abstractmethod
    async def top_n_by_field(self, kind: EventKind, group_field: str, n: int) -> List[Tuple[Any, int]]:
        """Group ``kind`` by ``group_field`` and return the ``n`` largest groups.

        Ties keep the order in which each value was first seen.
        """

    @abstractmethod
    async def average(self, kind: EventKind, numeric_field: str) -> Optional[float]:
        """Mean of ``numeric_field`` over ``kind``, or None when there is no data."""

    @abstractmethod
    async def max_by_field(self, field: str = "count") -> Optional[ConversionPairCounter]:
        """Counter row with the largest ``field`` value, or None when empty."""


class InMemoryEventStore(EventStore):
    """Process-local event store."""

    def __init__(self):
        self.logger = get_logger("converter.event_store.memory")
        self._streams: Dict[EventKind, List[TelemetryEvent]] = {kind: [] for kind in EventKind}
        self._pairs: Dict[Tuple[str, str], ConversionPairCounter] = {}
        self._pairs_lock = asyncio.Lock()

    async def insert(self, event: TelemetryEvent) -> None:
        self._streams[event.kind].append(event)
        self.logger.debug("Event stored", kind=event.kind.value)

    async def find_all(self, kind: EventKind) -> List[TelemetryEvent]:
        return list(self._streams[EventKind(kind)])

    async def count(self, kind: EventKind) -> int:
        return len(self._streams[EventKind(kind)])

    async def upsert_pair(self, from_currency: str, to_currency: str, increment_by: int = 1) -> int:
        key = (from_currency, to_currency)
        async with self._pairs_lock:
            counter = self._pairs.get(key)
            if counter is None:
                counter = ConversionPairCounter(from_currency, to_currency, 0)
                self._pairs[key] = counter
            counter.count += increment_by
            return counter.count

    async def list_pairs(self) -> List[ConversionPairCounter]:
        async with self._pairs_lock:
            return [
                ConversionPairCounter(c.from_currency, c.to_currency, c.count)
                for c in self._pairs.values()
            ]

    async def top_n_by_field(self, kind: EventKind, group_field: str, n: int) -> List[Tuple[Any, int]]:
        if n <= 0:
            return []
        counts = Counter(
            lookup_field(event.to_document(), group_field)
            for event in self._streams[EventKind(kind)]
        )
        # most_common sorts stably, so equal counts stay in first-seen order
        return counts.most_common(n)

    async def average(self, kind: EventKind, numeric_field: str) -> Optional[float]:
        values = []
        for event in self._streams[EventKind(kind)]:
            value = lookup_field(event.to_document(), numeric_field)
            if value is not None:
                values.append(float(value))
        if not values:
            return None
        return sum(values) / len(values)

    async def max_by_field(self, field: str = "count") -> Optional[ConversionPairCounter]:
        pairs = await self.list_pairs()
        if not pairs:
            return None
        best = pairs[0]
        for pair in pairs[1:]:
            if getattr(pair, field) > getattr(best, field):
                best = pair
        return best


def event_from_document(kind: EventKind, document: Dict[str, Any]) -> TelemetryEvent:
    """Rebuild a typed event from its stored document."""
    return EVENT_TYPES[EventKind(kind)].from_document(document)


def create_event_store(config) -> EventStore:
    """Build the event store selected by ``config.event_store_backend``."""
    backend = getattr(config, "event_store_backend", "memory")
    if backend == "memory":
        return InMemoryEventStore()
    if backend == "postgres":
        from .postgres_store import PostgresEventStore
        return PostgresEventStore(config.postgres_dsn)
    raise ValueError(f"Unknown event store backend: {backend}")
