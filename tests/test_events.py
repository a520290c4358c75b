"""
Tests for pipeline events: the bus, the store, the emitter and SSE.
"""

import asyncio
import json

import pytest

from formflow_runtime.events import (
    EventEmitter,
    EventFilter,
    EventType,
    InMemoryEventBus,
    InMemoryEventStore,
    PipelineEvent,
)

from _testkit import TENANT, event_types, metadata


def event(type=EventType.SUBMISSION_RECEIVED, tenant_id=TENANT, submission_id="s-1", **data):
    return PipelineEvent(type=type, tenant_id=tenant_id, submission_id=submission_id, data=data)


class BrokenBus(InMemoryEventBus):
    async def publish(self, event):
        raise RuntimeError("bus down")


class TestPipelineEvent:
    def test_round_trip(self):
        original = event(form_id="contact-us")
        assert PipelineEvent.from_dict(original.to_dict()) == original

    def test_sse_frame(self):
        e = event(EventType.HANDLER_ASSIGNED, route="assigned")
        frame = e.to_sse()
        lines = frame.split("\n")
        assert lines[0] == f"id: {e.event_id}"
        assert lines[1] == "event: handler_assigned"
        assert json.loads(lines[2][len("data: "):])["data"] == {"route": "assigned"}
        assert frame.endswith("\n\n")


class TestEventBus:
    @pytest.mark.asyncio
    async def test_subscription_filters(self):
        bus = InMemoryEventBus()
        tenant_sub = bus.subscribe(tenant_id=TENANT)
        one_submission = bus.subscribe(submission_id="s-2")
        only_spam = bus.subscribe(event_types={EventType.SPAM_BLOCKED})

        await bus.publish(event())
        await bus.publish(event(submission_id="s-2"))
        await bus.publish(event(EventType.SPAM_BLOCKED, tenant_id="t-other", submission_id=None))

        assert (await bus.wait_for_event(tenant_sub, timeout=0.1)).submission_id == "s-1"
        assert (await bus.wait_for_event(tenant_sub, timeout=0.1)).submission_id == "s-2"
        assert await bus.wait_for_event(tenant_sub, timeout=0.01) is None
        assert (await bus.wait_for_event(one_submission, timeout=0.1)).submission_id == "s-2"
        assert (await bus.wait_for_event(only_spam, timeout=0.1)).tenant_id == "t-other"

    @pytest.mark.asyncio
    async def test_slow_observer_drops_oldest(self):
        bus = InMemoryEventBus(max_queue_size=2)
        sub = bus.subscribe()
        for i in range(5):
            await bus.publish(event(submission_id=f"s-{i}"))

        received = [(await bus.wait_for_event(sub, timeout=0.1)).submission_id for _ in range(3)]
        assert received == ["s-2", "s-3", "s-4"]

    @pytest.mark.asyncio
    async def test_unsubscribe_ends_iteration(self):
        bus = InMemoryEventBus()
        sub = bus.subscribe()
        await bus.publish(event())

        async def collect():
            return [e async for e in bus.events(sub)]

        task = asyncio.create_task(collect())
        await asyncio.sleep(0)
        bus.unsubscribe(sub)
        collected = await asyncio.wait_for(task, timeout=1)

        assert [e.submission_id for e in collected] == ["s-1"]
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_closed_bus_ignores_publishes(self):
        bus = InMemoryEventBus()
        sub = bus.subscribe()
        await bus.close()
        await bus.publish(event())
        assert [e async for e in bus.events(sub)] == []


class TestEventStore:
    @pytest.mark.asyncio
    async def test_filter(self):
        store = InMemoryEventStore()
        await store.append(event())
        await store.append(event(EventType.CONTACT_CREATED))
        await store.append(event(tenant_id="t-other", submission_id="s-9"))

        assert len(await store.list()) == 3
        assert len(await store.list(EventFilter(tenant_id=TENANT))) == 2
        only = await store.list(EventFilter(types={EventType.CONTACT_CREATED}))
        assert event_types(only) == [EventType.CONTACT_CREATED]
        assert len(await store.list(EventFilter(tenant_id=TENANT, limit=1))) == 1


class TestEventEmitter:
    @pytest.mark.asyncio
    async def test_store_then_bus(self):
        store, bus = InMemoryEventStore(), InMemoryEventBus()
        sub = bus.subscribe(tenant_id=TENANT)
        emitter = EventEmitter(store, bus)

        emitted = await emitter.emit(EventType.SPAM_BLOCKED, tenant_id=TENANT, data={"reason": "honeypot"})

        assert await store.list() == [emitted]
        assert await bus.wait_for_event(sub, timeout=0.1) == emitted

    @pytest.mark.asyncio
    async def test_bus_failure_does_not_fail_emit(self):
        store = InMemoryEventStore()
        emitter = EventEmitter(store, BrokenBus())
        await emitter.emit(EventType.SPAM_BLOCKED, tenant_id=TENANT)
        assert len(await store.list()) == 1


class TestEngineStream:
    @pytest.mark.asyncio
    async def test_observer_sees_pipeline_in_order(self, make_engine):
        engine = make_engine()
        sub = engine.emitter.bus.subscribe(tenant_id=TENANT)

        result = await engine.submit("contact-us", {"email": "ana@example.com"}, metadata())
        await engine.drain()

        seen = []
        while True:
            e = await engine.emitter.bus.wait_for_event(sub, timeout=0.05)
            if e is None:
                break
            seen.append(e)
        assert {e.submission_id for e in seen} == {result.submission_id}
        assert event_types(seen) == event_types(await engine.emitter.store.list())
        await engine.stop()
