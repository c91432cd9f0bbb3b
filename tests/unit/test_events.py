"""
Unit tests for the in-process event bus.
"""

import pytest

from revcycle.services.events import EventBus, EventType


class TestEventBus:
    @pytest.mark.asyncio
    async def test_sync_and_async_handlers(self):
        bus = EventBus()
        received = []

        def on_sync(event):
            received.append(("sync", event.payload["ids"]))

        async def on_async(event):
            received.append(("async", event.payload["ids"]))

        bus.subscribe(EventType.RISK_UPDATED, on_sync)
        bus.subscribe(EventType.RISK_UPDATED, on_async)

        event = await bus.publish(EventType.RISK_UPDATED, ids=["c1"])

        assert event.type == EventType.RISK_UPDATED
        assert received == [("sync", ["c1"]), ("async", ["c1"])]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(EventType.CLAIM_DENIED, broken)
        bus.subscribe(EventType.CLAIM_DENIED, lambda e: received.append(e.payload["claim_id"]))

        await bus.publish(EventType.CLAIM_DENIED, claim_id="c1")

        assert received == ["c1"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        received = []
        handler = received.append

        bus.subscribe(EventType.INVOICE_CREATED, handler)
        bus.unsubscribe(EventType.INVOICE_CREATED, handler)
        await bus.publish(EventType.INVOICE_CREATED, invoice_id="i1")

        assert received == []

    @pytest.mark.asyncio
    async def test_recent_filters_by_type(self):
        bus = EventBus()
        await bus.publish(EventType.CLAIM_SUBMITTED, claim_id="c1")
        await bus.publish(EventType.CLAIM_DENIED, claim_id="c1")

        assert len(bus.recent()) == 2
        assert [e.type for e in bus.recent(EventType.CLAIM_DENIED)] == [EventType.CLAIM_DENIED]
