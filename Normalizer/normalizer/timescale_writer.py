"""
TimescaleDB Writer for the Normalizer.

Purpose: Append-only log store of every normalized event.
Strategy: one row per tool event id; a redelivered record hits the primary
key and is silently ignored (ON CONFLICT DO NOTHING).
"""

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

import asyncpg
from asyncpg.pool import Pool

from .config import config
from .errors import SinkWriteError
from .event_schema import Destination, EnrichmentContext, NormalizedEvent
from .sink_handler import SinkHandler

logger = logging.getLogger("normalizer.timescale_writer")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    ingest_day        DATE        NOT NULL,
    tool_type         TEXT        NOT NULL,
    event_type        TEXT        NOT NULL,
    event_timestamp   TIMESTAMPTZ NOT NULL,
    tool_event_id     UUID        NOT NULL,
    source_event_type TEXT,
    user_id           TEXT,
    device_id         TEXT,
    hostname          TEXT,
    organization_id   TEXT,
    organization_name TEXT,
    severity          TEXT        NOT NULL,
    summary           TEXT,
    details           JSONB,
    raw_payload       TEXT,
    PRIMARY KEY (ingest_day, tool_type, event_type, event_timestamp, tool_event_id)
);
"""


class TimescaleWriter(SinkHandler):
    """
    Log store sink.

    Philosophy:
    - Every dispatched event is written (no filtering)
    - Write failures raise so the source record is redelivered
    - Connection pooling for efficiency
    """

    destination = Destination.LOG_STORE

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "unified_events",
        user: str = "normalizer",
        password: str = "",
        table: str = "unified_log_events",
        min_pool_size: int = 2,
        max_pool_size: int = 10
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.table = table
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size

        self.pool: Optional[Pool] = None
        self._connected = False

    async def connect(self, create_schema: bool = True):
        """Initialize connection pool to TimescaleDB."""
        try:
            self.pool = await asyncpg.create_pool(
                host=self.host,
                port=self.port,
                database=self.database,
                user=self.user,
                password=self.password,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=10
            )

            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                if create_schema:
                    await conn.execute(SCHEMA_SQL.format(table=self.table))

            self._connected = True
            logger.info(f"✅ TimescaleDB connected: {self.host}:{self.port}/{self.database}")

        except Exception as e:
            logger.error(f"❌ Failed to connect to TimescaleDB: {e}")
            self._connected = False
            raise

    def transform(self, event: NormalizedEvent, context: EnrichmentContext) -> Dict[str, Any]:
        return {
            "ingest_day": date.fromisoformat(event.ingest_day),
            "tool_type": event.tool_type.name,
            "event_type": event.unified_event_type.value,
            "event_timestamp": datetime.fromtimestamp(event.event_timestamp / 1000, tz=timezone.utc),
            "tool_event_id": event.tool_event_id,
            "source_event_type": event.source_event_type,
            "user_id": context.user_id,
            "device_id": context.machine_id,
            "hostname": context.hostname,
            "organization_id": context.organization_id,
            "organization_name": context.organization_name,
            "severity": event.severity.value,
            "summary": event.summary,
            "details": json.dumps(event.details or {}),
            "raw_payload": event.raw_payload,
        }

    async def write(self, record: Dict[str, Any], event: NormalizedEvent):
        if not self._connected or not self.pool:
            raise SinkWriteError(self.destination.value, "TimescaleDB not connected")

        query = f"""
        INSERT INTO {self.table} (
            ingest_day,
            tool_type,
            event_type,
            event_timestamp,
            tool_event_id,
            source_event_type,
            user_id,
            device_id,
            hostname,
            organization_id,
            organization_name,
            severity,
            summary,
            details,
            raw_payload
        ) VALUES (
            $1, $2, $3, $4, $5::uuid, $6, $7, $8, $9, $10,
            $11, $12, $13, $14::jsonb, $15
        )
        ON CONFLICT DO NOTHING
        """

        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    query,
                    record["ingest_day"],
                    record["tool_type"],
                    record["event_type"],
                    record["event_timestamp"],
                    record["tool_event_id"],
                    record["source_event_type"],
                    record["user_id"],
                    record["device_id"],
                    record["hostname"],
                    record["organization_id"],
                    record["organization_name"],
                    record["severity"],
                    record["summary"],
                    record["details"],
                    record["raw_payload"],
                )
        except Exception as e:
            logger.error(f"❌ Failed to write event to TimescaleDB: {e}", exc_info=True)
            raise SinkWriteError(self.destination.value, str(e)) from e

        logger.debug(f"💾 Event persisted to TimescaleDB: {record['tool_event_id']}")

    async def disconnect(self):
        """Gracefully close connection pool."""
        if self.pool:
            try:
                await self.pool.close()
                logger.info("✅ TimescaleDB disconnected")
            except Exception as e:
                logger.error(f"❌ Error disconnecting from TimescaleDB: {e}")

        self._connected = False

    async def health_check(self) -> Dict[str, Any]:
        """Check TimescaleDB connection health."""
        if not self._connected or not self.pool:
            return {
                "connected": False,
                "error": "Not connected"
            }

        try:
            async with self.pool.acquire() as conn:
                version = await conn.fetchval("SELECT version()")

            return {
                "connected": True,
                "host": self.host,
                "port": self.port,
                "database": self.database,
                "table": self.table,
                "version": version.split(",")[0] if version else "unknown"
            }

        except Exception as e:
            return {
                "connected": False,
                "error": str(e)
            }

    @property
    def is_connected(self) -> bool:
        return self._connected


def create_writer() -> TimescaleWriter:
    return TimescaleWriter(
        host=config.TIMESCALE_HOST,
        port=config.TIMESCALE_PORT,
        database=config.TIMESCALE_DB,
        user=config.TIMESCALE_USER,
        password=config.TIMESCALE_PASSWORD,
        table=config.TIMESCALE_TABLE,
    )
