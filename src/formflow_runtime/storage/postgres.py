"""
PostgreSQL event store.

Events are append-only rows. Each row carries a blake3 hash of its
canonical payload so a tampered or truncated row can be detected when
it is read back.
"""

from __future__ import annotations

import asyncio
import json
import re
from datetime import datetime, timezone
from typing import Any

import asyncpg
from blake3 import blake3

from ..events.store import EventFilter, EventStore
from ..events.types import EventType, PipelineEvent


def _sanitize_table_name(name: str) -> str:
    if not name:
        raise ValueError("table_name cannot be empty")
    if not re.fullmatch(r"[a-zA-Z0-9_]+", name):
        raise ValueError(f"Invalid table name: {name!r}")
    return name


def _to_timestamptz(value: float) -> datetime:
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def payload_hash(event: PipelineEvent) -> str:
    """blake3 over the event's canonical JSON (sorted keys, no whitespace)."""
    canonical = json.dumps(event.to_dict(), sort_keys=True, separators=(",", ":"), default=str)
    return blake3(canonical.encode("utf-8")).hexdigest()


class PostgresEventStore(EventStore):
    """EventStore backed by one append-only table.

    Table schema:
    - seq (BIGSERIAL PRIMARY KEY), write order
    - event_id (TEXT UNIQUE)
    - tenant_id, submission_id, type (TEXT)
    - ts (TIMESTAMPTZ), timestamp (DOUBLE PRECISION)
    - data (JSONB)
    - payload_hash (TEXT)
    """

    TABLE_NAME = "formflow_events"

    def __init__(self, pool: asyncpg.Pool, table_name: str | None = None) -> None:
        self._pool = pool
        self._table = _sanitize_table_name(table_name or self.TABLE_NAME)
        self._ensured = False
        self._lock = asyncio.Lock()

    @classmethod
    async def connect(cls, dsn: str, *, table_name: str | None = None, **pool_kwargs: Any) -> PostgresEventStore:
        pool = await asyncpg.create_pool(dsn, **pool_kwargs)
        return cls(pool, table_name)

    async def close(self) -> None:
        await self._pool.close()

    async def _ensure_table(self) -> None:
        async with self._lock:
            if self._ensured:
                return

            ddl = f'''
            CREATE TABLE IF NOT EXISTS "{self._table}" (
                seq BIGSERIAL PRIMARY KEY,
                event_id TEXT NOT NULL UNIQUE,
                tenant_id TEXT NOT NULL,
                submission_id TEXT,
                type TEXT NOT NULL,
                ts TIMESTAMPTZ NOT NULL,
                timestamp DOUBLE PRECISION NOT NULL,
                data JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                schema_version INTEGER DEFAULT 1,
                payload_hash TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS "{self._table}_tenant_idx" ON "{self._table}" (tenant_id, seq);
            CREATE INDEX IF NOT EXISTS "{self._table}_submission_idx" ON "{self._table}" (submission_id)
            '''

            async with self._pool.acquire() as conn:
                for stmt in [s.strip() for s in ddl.split(";") if s.strip()]:
                    await conn.execute(stmt)

            self._ensured = True

    async def append(self, event: PipelineEvent) -> None:
        await self._ensure_table()
        async with self._pool.acquire() as conn:
            await conn.execute(
                f'''
                INSERT INTO "{self._table}"
                    (event_id, tenant_id, submission_id, type, ts, timestamp, data, schema_version, payload_hash)
                VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9)
                ''',
                event.event_id,
                event.tenant_id,
                event.submission_id,
                event.type.value,
                _to_timestamptz(event.timestamp),
                event.timestamp,
                json.dumps(event.data, default=str),
                event.schema_version,
                payload_hash(event),
            )

    async def list(self, filter: EventFilter | None = None) -> list[PipelineEvent]:
        await self._ensure_table()
        filter = filter or EventFilter()

        clauses: list[str] = []
        args: list[Any] = []
        if filter.tenant_id:
            args.append(filter.tenant_id)
            clauses.append(f"tenant_id = ${len(args)}")
        if filter.submission_id:
            args.append(filter.submission_id)
            clauses.append(f"submission_id = ${len(args)}")
        if filter.types:
            args.append([t.value for t in filter.types])
            clauses.append(f"type = ANY(${len(args)}::text[])")
        if filter.after_ts is not None:
            args.append(filter.after_ts)
            clauses.append(f"timestamp > ${len(args)}")
        args.append(filter.limit)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        query = f'SELECT * FROM "{self._table}" {where} ORDER BY seq ASC LIMIT ${len(args)}'

        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
        return [self._row_to_event(row) for row in rows]

    async def verify(self, event_id: str) -> bool:
        """Recompute a stored event's hash and compare it to the recorded one."""
        await self._ensure_table()
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(f'SELECT * FROM "{self._table}" WHERE event_id = $1', event_id)
        if row is None:
            return False
        return payload_hash(self._row_to_event(row)) == row["payload_hash"]

    def _row_to_event(self, row: Any) -> PipelineEvent:
        data = row["data"] if isinstance(row["data"], dict) else json.loads(row["data"] or "{}")
        return PipelineEvent(
            type=EventType(row["type"]),
            tenant_id=row["tenant_id"],
            submission_id=row["submission_id"],
            data=data,
            event_id=row["event_id"],
            timestamp=row["timestamp"],
            schema_version=row["schema_version"] or 1,
        )


__all__ = ["PostgresEventStore", "payload_hash"]
