"""
Tests for the event dispatcher.

These tests verify routing, ingress normalization, error containment and
fire-and-forget publishing.
"""

import asyncio

import pytest

from notifications.dispatcher import EventDispatcher, get_dispatcher, reset_dispatcher
from notifications.events import DomainEvent
from shared.models import EventKind


def _event(kind: str = "delivered") -> DomainEvent:
    return DomainEvent(kind=kind, tenant_id="br-south", tracking_id="TRK-1")


class TestRegistration:
    def test_one_handler_per_kind(self, dispatcher: EventDispatcher):
        """Registering a second handler for a kind fails."""
        async def handler(event):
            pass

        dispatcher.register(EventKind.DELIVERED, handler)

        with pytest.raises(ValueError):
            dispatcher.register("delivered", handler)

    def test_unregister(self, dispatcher: EventDispatcher):
        """Unregistering removes the handler once."""
        async def handler(event):
            pass

        dispatcher.register(EventKind.DELIVERED, handler)

        assert dispatcher.unregister(EventKind.DELIVERED)
        assert not dispatcher.has_handler(EventKind.DELIVERED)
        assert not dispatcher.unregister(EventKind.DELIVERED)

    def test_unknown_kind_cannot_be_registered(self, dispatcher: EventDispatcher):
        """Only known event kinds can be registered."""
        async def handler(event):
            pass

        with pytest.raises(ValueError):
            dispatcher.register("assignment", handler)


class TestDispatch:
    def test_routes_by_kind(self, dispatcher: EventDispatcher):
        """Events reach the handler for their kind only."""
        received = []

        async def on_delivered(event):
            received.append(event.kind)

        dispatcher.register(EventKind.DELIVERED, on_delivered)

        assert asyncio.run(dispatcher.dispatch(_event("delivered")))
        assert not asyncio.run(dispatcher.dispatch(_event("delivery_failed")))
        assert received == ["delivered"]

    def test_normalizes_raw_payload(self, dispatcher: EventDispatcher):
        """Raw dicts are validated into events before routing."""
        received = []

        async def handler(event):
            received.append(event)

        dispatcher.register(EventKind.DELIVERY_ASSIGNED, handler)

        asyncio.run(dispatcher.dispatch({
            "kind": "delivery_assigned",
            "tenantId": " br-south ",
            "trackingId": 42,
            "assignedStaffId": " usr-u1",
        }))

        assert received[0].tenant_id == "br-south"
        assert received[0].tracking_id == "42"
        assert received[0].assigned_staff_id == "usr-u1"

    def test_malformed_payload_is_dropped(self, dispatcher: EventDispatcher):
        """Invalid payloads are logged and dropped."""
        assert not asyncio.run(dispatcher.dispatch({"kind": "delivered"}))
        assert dispatcher.get_event_log() == []

    def test_handler_errors_are_contained(self, dispatcher: EventDispatcher):
        """Handler exceptions never escape dispatch."""
        async def broken(event):
            raise RuntimeError("handler blew up")

        dispatcher.register(EventKind.DELIVERED, broken)

        assert asyncio.run(dispatcher.dispatch(_event())) is False

    def test_event_log(self, dispatcher: EventDispatcher):
        """Accepted events are logged until cleared."""
        asyncio.run(dispatcher.dispatch(_event()))

        assert [e.kind for e in dispatcher.get_event_log()] == ["delivered"]
        dispatcher.clear_event_log()
        assert dispatcher.get_event_log() == []

    def test_event_log_keeps_only_newest(self):
        """A bounded log drops the oldest events instead of growing forever."""
        bounded = EventDispatcher(history_limit=2)

        for tracking_id in ("TRK-1", "TRK-2", "TRK-3"):
            asyncio.run(bounded.dispatch(DomainEvent(kind="delivered", tenant_id="br-south", tracking_id=tracking_id)))

        assert [e.tracking_id for e in bounded.get_event_log()] == ["TRK-2", "TRK-3"]


class TestPublish:
    def test_publish_returns_before_handler_runs(self, dispatcher: EventDispatcher):
        """Publish schedules the handler and returns at once."""
        ran = []

        async def handler(event):
            ran.append(event.tracking_id)

        dispatcher.register(EventKind.DELIVERED, handler)

        async def scenario():
            dispatcher.publish(_event())
            assert ran == []
            assert dispatcher.pending_count == 1
            await dispatcher.drain()
            assert dispatcher.pending_count == 0

        asyncio.run(scenario())
        assert ran == ["TRK-1"]

    def test_publish_failure_does_not_reach_caller(self, dispatcher: EventDispatcher):
        """A failing handler only marks its task as unsuccessful."""
        async def broken(event):
            raise RuntimeError("boom")

        dispatcher.register(EventKind.DELIVERED, broken)

        async def scenario():
            task = dispatcher.publish(_event())
            await dispatcher.drain()
            return task.result()

        assert asyncio.run(scenario()) is False


class TestSingleton:
    def test_reset_returns_fresh_dispatcher(self):
        """Resetting replaces the module singleton."""
        first = get_dispatcher()
        second = reset_dispatcher()

        assert first is not second
        assert get_dispatcher() is second
