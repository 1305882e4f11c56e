"""
Non-blocking telemetry ingestion.

Ingest calls only enqueue a job and return. A fixed pool of writer tasks
drains the bounded queue into the event store. A full queue drops the job, and
a failed write is logged and counted, never retried and never raised to the
request path.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from shared.errors import TelemetryWriteError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..adapters.rate_client import ResponseMeta
from .derivation import derive_response_data
from .event_store import EventStore
from .models import (
    CONVERSION_PAIRS_TABLE,
    ClientRequestEvent,
    ConversionIntent,
    EventKind,
    ResponseData,
    ServerRequestEvent,
    ServerResponseEvent,
    ServiceResponseEvent,
)
from .user_agent import UserAgentParser, UserAgentsParser


@dataclass(frozen=True)
class ClientRequestMetadata:
    """What the HTTP layer knows about an inbound request."""

    endpoint: str
    http_method: str
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    from_currency: Optional[str] = None
    to_currency: Optional[str] = None
    date: Optional[str] = None
    to_date: Optional[str] = None


@dataclass
class _Job:
    # Stream label: an EventKind value or the pair counter table
    kind: str
    run: Callable[[], Awaitable[None]]


class TelemetryIngestor:
    """Queues telemetry writes and commits them on background workers."""

    def __init__(
        self,
        store: EventStore,
        *,
        user_agent_parser: Optional[UserAgentParser] = None,
        queue_size: int = 1000,
        workers: int = 4,
        drain_timeout: float = 5.0,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.user_agent_parser = user_agent_parser or UserAgentsParser()
        self.worker_count = max(1, workers)
        self.drain_timeout = drain_timeout
        self.metrics = metrics
        self.logger = get_logger("converter.ingestor")

        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.worker_tasks: List[asyncio.Task] = []
        self.running = False
        self.stats = {
            "enqueued": 0,
            "written": 0,
            "failed": 0,
            "dropped": 0,
        }

    async def start(self):
        """Start the writer tasks."""
        if self.running:
            return
        self.running = True
        self.worker_tasks = [
            asyncio.create_task(self._worker(i), name=f"telemetry-writer-{i}")
            for i in range(self.worker_count)
        ]
        self.logger.info("Telemetry ingestor started", workers=self.worker_count)

    async def stop(self):
        """Flush pending jobs (bounded by the drain timeout) and stop the writers."""
        if not self.running:
            return

        try:
            await asyncio.wait_for(self.queue.join(), timeout=self.drain_timeout)
        except asyncio.TimeoutError:
            self.logger.warning("Telemetry drain timed out", pending=self.queue.qsize())

        self.running = False
        for task in self.worker_tasks:
            task.cancel()
        await asyncio.gather(*self.worker_tasks, return_exceptions=True)
        self.worker_tasks = []

        self.logger.info("Telemetry ingestor stopped", **self.stats)

    async def drain(self):
        """Wait until every queued job has been attempted."""
        await self.queue.join()

    def ingest_client_request(self, metadata: ClientRequestMetadata) -> bool:
        """Record an inbound request and count its currency pair, if any.

        The pair increment and the event insert are separate jobs, so one
        failing write does not lose the other. Returns whether the event was queued.
        """
        intent = ConversionIntent(
            from_currency=metadata.from_currency,
            to_currency=metadata.to_currency,
            date=metadata.date,
            to_date=metadata.to_date,
        )

        if intent.has_pair:
            async def count_pair():
                await self.store.upsert_pair(intent.from_currency, intent.to_currency, 1)

            self._enqueue(CONVERSION_PAIRS_TABLE, count_pair)

        async def run():
            device = self.user_agent_parser.parse(metadata.user_agent)
            await self.store.insert(ClientRequestEvent(
                endpoint=metadata.endpoint,
                http_method=metadata.http_method,
                device_name=device.device_name,
                operating_system=device.os,
                ip_address=metadata.ip_address,
                request_data=intent,
            ))

        return self._enqueue(EventKind.CLIENT_REQUEST.value, run)

    def ingest_service_response(
        self,
        elapsed_ms: float,
        status_code: int,
        request_type: str,
        payload: Any,
    ) -> bool:
        """Record a response this service returned, summarized per request type."""
        try:
            response_data = derive_response_data(request_type, payload)
        except Exception as e:
            self.logger.warning(
                "Could not summarize service response",
                request_type=str(request_type),
                error=str(e)
            )
            response_data = ResponseData.empty()

        event = ServiceResponseEvent(
            response_time_ms=elapsed_ms,
            status_code=status_code,
            request_type=getattr(request_type, "value", request_type),
            response_data=response_data,
        )

        async def run():
            await self.store.insert(event)

        return self._enqueue(EventKind.SERVICE_RESPONSE.value, run)

    def ingest_server_exchange(
        self,
        method: str,
        endpoint_tag: str,
        meta: Optional[ResponseMeta],
        from_currency: Optional[str] = None,
        to_currency: Optional[str] = None,
        date: Optional[str] = None,
        to_date: Optional[str] = None,
        ip_address: Optional[str] = None,
        response_data: Optional[ResponseData] = None,
    ) -> bool:
        """Record an upstream request and the response it produced."""
        started_at = meta.started_at if meta else datetime.now(timezone.utc)
        request_event = ServerRequestEvent(
            http_method=method,
            endpoint=endpoint_tag,
            timestamp=started_at,
            date=date,
            to_date=to_date,
            from_currency=from_currency,
            to_currency=to_currency,
            ip_address=ip_address,
        )
        response_event = ServerResponseEvent(
            response_time_ms=meta.elapsed_ms if meta else 0.0,
            status_code=meta.status_code if meta else None,
            payload_size=meta.payload_size if meta else 0,
            response_data=response_data or ResponseData(),
        )

        async def run():
            await self.store.insert(request_event)
            await self.store.insert(response_event)

        return self._enqueue(EventKind.SERVER_REQUEST.value, run)

    def get_stats(self) -> Dict[str, Any]:
        """Get ingestion statistics."""
        return {
            **self.stats,
            "queue_size": self.queue.qsize(),
            "workers": len(self.worker_tasks),
            "running": self.running,
        }

    def _enqueue(self, kind: str, run: Callable[[], Awaitable[None]]) -> bool:
        try:
            self.queue.put_nowait(_Job(kind=kind, run=run))
        except asyncio.QueueFull:
            self.stats["dropped"] += 1
            self.logger.warning("Telemetry queue full, dropping event", kind=kind)
            if self.metrics:
                self.metrics.increment_counter("telemetry_dropped_total", kind=kind)
            return False

        self.stats["enqueued"] += 1
        self._update_depth()
        return True

    async def _worker(self, index: int):
        while True:
            job = await self.queue.get()
            try:
                await job.run()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = TelemetryWriteError(
                    f"Failed to write {job.kind} telemetry",
                    {"error": str(e), "worker": index}
                )
                self.stats["failed"] += 1
                self.logger.error(error.message, code=error.code, **error.details)
                self._count(job.kind, "failed")
            else:
                self.stats["written"] += 1
                self._count(job.kind, "written")
            finally:
                self.queue.task_done()
                self._update_depth()

    def _count(self, kind: str, outcome: str):
        if self.metrics:
            self.metrics.increment_counter("telemetry_events_total", kind=kind, outcome=outcome)

    def _update_depth(self):
        if self.metrics:
            self.metrics.set_gauge("telemetry_queue_depth", self.queue.qsize())
