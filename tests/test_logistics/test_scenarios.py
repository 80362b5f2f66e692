"""
End-to-end scenarios: domain commands flowing through the dispatcher into
the notification center and push delivery.
"""

import asyncio

import pytest

from shared.errors import Forbidden
from shared.models import ShipmentStatus

U1_TABLET = "https://push.example.net/send/u1-tablet"


def _run(dispatcher, coro):
    async def scenario():
        result = await coro
        await dispatcher.drain()
        return result
    return asyncio.run(scenario())


def _rows_for(data_store, tenant_id, user_id, kind, manifest_id=None):
    return [
        n for n in data_store.list_notifications(tenant_id, user_id)
        if n.type == kind and (manifest_id is None or n.manifest_id == manifest_id)
    ]


class TestDispatchScenario:
    def test_both_branches_hear_about_dispatch(
        self, notification_service, coordinator, dispatcher, data_store, fake_sender, north_admin
    ):
        """Dispatch notifies the origin, then both branches."""
        manifest = _run(dispatcher, coordinator.create_manifest(north_admin, "br-south", ["shp-001", "shp-002"]))

        created, dispatched = notification_service.get_outcomes()
        assert created.event.kind == "manifest_created"
        assert {r.user_id for r in created.recipients} == {"usr-n1", "usr-n2"}
        assert dispatched.event.kind == "manifest_dispatched"
        assert {r.user_id for r in dispatched.recipients} == {"usr-n1", "usr-n2", "usr-a1", "usr-a2"}

        south_rows = _rows_for(data_store, "br-south", "usr-a1", "manifest_dispatched", manifest.id)
        assert len(south_rows) == 1
        assert south_rows[0].manifest_id == manifest.id

        # n1 has a device for each event; a1 and a2 only for the dispatch
        assert len(fake_sender.calls) == 4

    def test_rows_match_audience(self, notification_service, coordinator, dispatcher, data_store, north_admin):
        """One feed row is written per resolved recipient."""
        before = data_store.count_notifications()

        _run(dispatcher, coordinator.create_manifest(north_admin, "br-south", ["shp-001"]))

        outcomes = notification_service.get_outcomes()
        assert all(o.rows_written == len(o.recipients) for o in outcomes)
        assert data_store.count_notifications() - before == sum(o.rows_written for o in outcomes)


class TestReceiveScenario:
    def test_origin_branch_hears_about_arrival(
        self, notification_service, coordinator, dispatcher, data_store, south_admin
    ):
        """Only the origin branch is told about an arrival."""
        _run(dispatcher, coordinator.receive_manifest("mf-001", south_admin))

        (outcome,) = notification_service.get_outcomes()
        assert outcome.event.kind == "manifest_arrived"
        assert {(r.user_id, r.tenant_id) for r in outcome.recipients} == {
            ("usr-n1", "br-north"),
            ("usr-n2", "br-north"),
        }
        assert len(_rows_for(data_store, "br-north", "usr-n1", "manifest_arrived", "mf-001")) == 1
        assert _rows_for(data_store, "br-south", "usr-a1", "manifest_arrived", "mf-001") == []


class TestRejectedTransitionScenario:
    def test_nothing_is_notified(self, notification_service, validator, dispatcher, data_store, fake_sender, staff_u2):
        """A rejected transition produces no notifications."""
        before = data_store.count_notifications()
        shipment = data_store.get_shipment("shp-006")

        with pytest.raises(Forbidden):
            _run(dispatcher, validator.transition(shipment, ShipmentStatus.OUT_FOR_DELIVERY, staff_u2))

        assert data_store.get_shipment("shp-006").status == "Assigned"
        assert notification_service.get_outcomes() == []
        assert data_store.count_notifications() == before
        assert fake_sender.calls == []


class TestDeliveredScenario:
    def test_branch_and_assignee_are_notified(
        self, notification_service, validator, dispatcher, data_store, fake_sender, staff_u1
    ):
        """Delivery reaches the branch staff and the assignee's devices."""
        shipment = data_store.get_shipment("shp-007")

        _run(dispatcher, validator.transition(shipment, ShipmentStatus.DELIVERED, staff_u1))

        (outcome,) = notification_service.get_outcomes()
        assert {r.user_id for r in outcome.recipients} == {"usr-a1", "usr-a2", "usr-u1"}
        assert outcome.rows_written == 3
        assert outcome.push.attempted == 4
        assert outcome.push.delivered == 4

        (row,) = _rows_for(data_store, "br-south", "usr-u1", "delivered")
        assert row.tracking_id == "TRK-N0RTH00007"
        assert row.read is False

    def test_expired_device_is_removed(
        self, notification_service, validator, dispatcher, data_store, fake_sender, staff_u1
    ):
        """A gone device is dropped while the feed rows stay."""
        fake_sender.responses[U1_TABLET] = 410
        shipment = data_store.get_shipment("shp-007")

        _run(dispatcher, validator.transition(shipment, ShipmentStatus.DELIVERED, staff_u1))

        (outcome,) = notification_service.get_outcomes()
        assert outcome.rows_written == 3
        assert outcome.push.delivered == 3
        assert outcome.push.removed == 1
        assert data_store.get_push_subscription("sub-u1-tablet") is None
        assert data_store.get_push_subscription("sub-u1-phone") is not None
        assert len(_rows_for(data_store, "br-south", "usr-u1", "delivered")) == 1

    def test_provider_outage_keeps_rows(
        self, notification_service, validator, dispatcher, data_store, fake_sender, staff_u1
    ):
        """Push outages never undo the transition or the rows."""
        for endpoint in ("a1-laptop", "a2-phone", "u1-phone", "u1-tablet"):
            fake_sender.responses[f"https://push.example.net/send/{endpoint}"] = 503
        shipment = data_store.get_shipment("shp-007")

        saved = _run(dispatcher, validator.transition(shipment, ShipmentStatus.DELIVERED, staff_u1))

        (outcome,) = notification_service.get_outcomes()
        assert saved.status == "Delivered"
        assert outcome.rows_written == 3
        assert outcome.push.failed == 4
        assert data_store.get_push_subscription("sub-u1-tablet") is not None


class TestSelfAssignmentScenario:
    def test_staff_member_is_notified_once(
        self, notification_service, validator, dispatcher, data_store, staff_u2
    ):
        """A self-assigned staff member gets one row."""
        shipment = data_store.get_shipment("shp-005")

        _run(dispatcher, validator.transition(shipment, ShipmentStatus.ASSIGNED, staff_u2))

        (outcome,) = notification_service.get_outcomes()
        assert outcome.event.kind == "delivery_assigned"
        assert {r.user_id for r in outcome.recipients} == {"usr-a1", "usr-a2", "usr-u2"}
        assert len(_rows_for(data_store, "br-south", "usr-u2", "delivery_assigned")) == 1
