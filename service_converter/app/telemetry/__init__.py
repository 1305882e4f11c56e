"""
Telemetry ingestion, storage and aggregation for the Converter Service.
"""

from .aggregator import AggregationEngine, DashboardSnapshot
from .event_store import EventStore, InMemoryEventStore, create_event_store
from .ingestor import ClientRequestMetadata, TelemetryIngestor
from .models import EventKind, RequestType

__all__ = [
    "AggregationEngine",
    "ClientRequestMetadata",
    "DashboardSnapshot",
    "EventKind",
    "EventStore",
    "InMemoryEventStore",
    "RequestType",
    "TelemetryIngestor",
    "create_event_store",
]
