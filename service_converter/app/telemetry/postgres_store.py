"""
PostgreSQL persistence layer for telemetry events.

Each event stream is a table of JSONB documents, so fields added to an event
later do not need a migration. The pair counter table has real columns and
uses ``ON CONFLICT`` for an atomic increment-or-create.
"""

import json
from typing import Any, List, Optional, Tuple

import asyncpg

from shared.errors import ServiceError
from shared.logging import get_logger

from .event_store import EventStore, TelemetryEvent, event_from_document
from .models import CONVERSION_PAIRS_TABLE, ConversionPairCounter, EventKind

_PAIR_FIELDS = {"count", "from_currency", "to_currency"}


def _json_path(field: str) -> List[str]:
    return field.split(".")


class PostgresEventStore(EventStore):
    """asyncpg-backed event store."""

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.logger = get_logger("converter.event_store.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Create the pool and tables."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=30
            )

            await self._create_tables()

            self.logger.info("PostgreSQL event store started")

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL event store", error=str(e))
            raise ServiceError("Failed to start PostgreSQL event store", {"error": str(e)}) from e

    async def stop(self):
        """Close the pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL event store stopped")

    async def ping(self) -> bool:
        if not self.pool:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception as e:
            self.logger.warning("PostgreSQL ping failed", error=str(e))
            return False

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            for kind in EventKind:
                await conn.execute(f"""
                    CREATE TABLE IF NOT EXISTS {kind.value} (
                        id BIGSERIAL PRIMARY KEY,
                        recorded_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                        document JSONB NOT NULL
                    );
                """)

            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {CONVERSION_PAIRS_TABLE} (
                    from_currency VARCHAR(16) NOT NULL,
                    to_currency VARCHAR(16) NOT NULL,
                    count BIGINT NOT NULL DEFAULT 0,
                    first_seen TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT clock_timestamp(),
                    PRIMARY KEY (from_currency, to_currency)
                );
            """)
            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{CONVERSION_PAIRS_TABLE}_count
                ON {CONVERSION_PAIRS_TABLE}(count DESC);
            """)

    async def insert(self, event: TelemetryEvent) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"INSERT INTO {event.kind.value} (document) VALUES ($1::jsonb)",
                json.dumps(event.to_document())
            )

    async def find_all(self, kind: EventKind) -> List[TelemetryEvent]:
        kind = EventKind(kind)
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f"SELECT document FROM {kind.value} ORDER BY id ASC")
        return [event_from_document(kind, self._decode(row["document"])) for row in rows]

    async def count(self, kind: EventKind) -> int:
        kind = EventKind(kind)
        async with self.pool.acquire() as conn:
            return await conn.fetchval(f"SELECT COUNT(*) FROM {kind.value}")

    async def upsert_pair(self, from_currency: str, to_currency: str, increment_by: int = 1) -> int:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(f"""
                INSERT INTO {CONVERSION_PAIRS_TABLE} (from_currency, to_currency, count)
                VALUES ($1, $2, $3)
                ON CONFLICT (from_currency, to_currency) DO UPDATE SET
                    count = {CONVERSION_PAIRS_TABLE}.count + EXCLUDED.count
                RETURNING count
            """, from_currency, to_currency, increment_by)

    async def list_pairs(self) -> List[ConversionPairCounter]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT from_currency, to_currency, count
                FROM {CONVERSION_PAIRS_TABLE}
                ORDER BY first_seen ASC
            """)
        return [self._row_to_pair(row) for row in rows]

    async def top_n_by_field(self, kind: EventKind, group_field: str, n: int) -> List[Tuple[Any, int]]:
        if n <= 0:
            return []
        kind = EventKind(kind)
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT document #>> $1::text[] AS value, COUNT(*) AS count
                FROM {kind.value}
                GROUP BY value
                ORDER BY count DESC, MIN(id) ASC
                LIMIT $2
            """, _json_path(group_field), n)
        return [(row["value"], row["count"]) for row in rows]

    async def average(self, kind: EventKind, numeric_field: str) -> Optional[float]:
        kind = EventKind(kind)
        async with self.pool.acquire() as conn:
            value = await conn.fetchval(f"""
                SELECT AVG((document #>> $1::text[])::double precision)
                FROM {kind.value}
            """, _json_path(numeric_field))
        return float(value) if value is not None else None

    async def max_by_field(self, field: str = "count") -> Optional[ConversionPairCounter]:
        if field not in _PAIR_FIELDS:
            raise ValueError(f"Unknown conversion pair field: {field}")
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f"""
                SELECT from_currency, to_currency, count
                FROM {CONVERSION_PAIRS_TABLE}
                ORDER BY {field} DESC, first_seen ASC
                LIMIT 1
            """)
        return self._row_to_pair(row) if row else None

    def _decode(self, document: Any) -> dict:
        # asyncpg returns JSONB as text unless a codec is registered
        if isinstance(document, str):
            return json.loads(document)
        return dict(document)

    def _row_to_pair(self, row) -> ConversionPairCounter:
        return ConversionPairCounter(
            from_currency=row["from_currency"],
            to_currency=row["to_currency"],
            count=int(row["count"]),
        )
