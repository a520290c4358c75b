"""
Tests for the PostgreSQL event store against a fake asyncpg pool.
"""

from __future__ import annotations

import json
from typing import Any

import pytest

from formflow_runtime.events import EventFilter, EventType, PipelineEvent
from formflow_runtime.storage import PostgresEventStore, payload_hash

from _testkit import TENANT

INSERT_COLUMNS = (
    "event_id",
    "tenant_id",
    "submission_id",
    "type",
    "ts",
    "timestamp",
    "data",
    "schema_version",
    "payload_hash",
)


class _FakeConn:
    def __init__(self, db: _FakeDB) -> None:
        self._db = db

    async def execute(self, sql: str, *args: Any) -> str:
        normalized = " ".join(sql.split()).lower()
        self._db.statements.append(normalized)
        if normalized.startswith("insert into"):
            self._db.rows.append(dict(zip(INSERT_COLUMNS, args)))
            return "INSERT 0 1"
        if normalized.startswith("create"):
            return "CREATE"
        raise AssertionError(f"unexpected statement: {sql}")

    async def fetch(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        self._db.queries.append((" ".join(sql.split()), args))
        rows = self._db.rows
        if "tenant_id = $1" in sql:
            rows = [r for r in rows if r["tenant_id"] == args[0]]
        return rows[: args[-1]]

    async def fetchrow(self, sql: str, *args: Any) -> dict[str, Any] | None:
        for row in self._db.rows:
            if row["event_id"] == args[0]:
                return row
        return None


class _FakeAcquire:
    def __init__(self, db: _FakeDB) -> None:
        self._conn = _FakeConn(db)

    async def __aenter__(self) -> _FakeConn:
        return self._conn

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class _FakeDB:
    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []
        self.statements: list[str] = []
        self.queries: list[tuple[str, tuple[Any, ...]]] = []
        self.closed = False

    def acquire(self) -> _FakeAcquire:
        return _FakeAcquire(self)

    async def close(self) -> None:
        self.closed = True


def event(**data: Any) -> PipelineEvent:
    return PipelineEvent(
        type=EventType.SUBMISSION_RECEIVED,
        tenant_id=TENANT,
        submission_id="s-1",
        data=data,
        timestamp=1_700_000_000.5,
    )


class TestPayloadHash:
    def test_stable_and_key_order_independent(self):
        a = event(form_id="contact-us", variant_id=None)
        b = PipelineEvent.from_dict({**a.to_dict(), "data": {"variant_id": None, "form_id": "contact-us"}})
        assert payload_hash(a) == payload_hash(b)
        assert len(payload_hash(a)) == 64

    def test_changes_with_payload(self):
        a = event(form_id="contact-us")
        b = PipelineEvent.from_dict({**a.to_dict(), "data": {"form_id": "other"}})
        assert payload_hash(a) != payload_hash(b)


class TestPostgresEventStore:
    @pytest.mark.parametrize("name", ["", "events; DROP TABLE x", "my-events"])
    def test_table_name_sanitized(self, name):
        with pytest.raises(ValueError):
            PostgresEventStore(_FakeDB(), table_name=name)

    @pytest.mark.asyncio
    async def test_table_created_once(self):
        db = _FakeDB()
        store = PostgresEventStore(db)
        await store.append(event())
        await store.append(event())

        creates = [s for s in db.statements if s.startswith("create")]
        assert len(creates) == 3
        assert 'create table if not exists "formflow_events"' in creates[0]

    @pytest.mark.asyncio
    async def test_append_then_list(self):
        db = _FakeDB()
        store = PostgresEventStore(db, table_name="ff_events")
        original = event(form_id="contact-us")
        await store.append(original)

        row = db.rows[0]
        assert json.loads(row["data"]) == {"form_id": "contact-us"}
        assert row["payload_hash"] == payload_hash(original)
        assert row["ts"].timestamp() == original.timestamp

        # asyncpg hands JSONB back as text unless a codec is set.
        listed = await store.list(EventFilter(tenant_id=TENANT, limit=10))
        assert listed == [original]
        query, args = db.queries[-1]
        assert 'FROM "ff_events" WHERE tenant_id = $1 ORDER BY seq ASC LIMIT $2' in query
        assert args == (TENANT, 10)

    @pytest.mark.asyncio
    async def test_list_filter_params(self):
        db = _FakeDB()
        store = PostgresEventStore(db)
        await store.list(
            EventFilter(
                submission_id="s-1",
                types={EventType.SPAM_BLOCKED},
                after_ts=5.0,
                limit=3,
            )
        )
        query, args = db.queries[-1]
        assert "submission_id = $1 AND type = ANY($2::text[]) AND timestamp > $3" in query
        assert args == ("s-1", ["spam_blocked"], 5.0, 3)

    @pytest.mark.asyncio
    async def test_verify_detects_tampering(self):
        db = _FakeDB()
        store = PostgresEventStore(db)
        original = event(form_id="contact-us")
        await store.append(original)

        assert await store.verify(original.event_id)
        db.rows[0]["data"] = json.dumps({"form_id": "tampered"})
        assert not await store.verify(original.event_id)
        assert not await store.verify("missing")

    @pytest.mark.asyncio
    async def test_close(self):
        db = _FakeDB()
        await PostgresEventStore(db).close()
        assert db.closed
