"""
Tests for push delivery and the push subscription registry.
"""

import asyncio

import pytest

from notifications.audience import Recipient
from notifications.events import DomainEvent
from notifications.push import PushDeliveryService
from notifications.subscriptions import PushSubscriptionRegistry
from shared.channels import PushChannel
from shared.config import Settings
from shared.errors import InvalidRequest, NotFound
from shared.models import Actor, Role

A1 = "https://push.example.net/send/a1-laptop"
A2 = "https://push.example.net/send/a2-phone"
U1_PHONE = "https://push.example.net/send/u1-phone"
U1_TABLET = "https://push.example.net/send/u1-tablet"

SOUTH_AUDIENCE = [
    Recipient("usr-a1", "br-south"),
    Recipient("usr-a2", "br-south"),
    Recipient("usr-u1", "br-south"),
]


@pytest.fixture
def delivered_event() -> DomainEvent:
    return DomainEvent(
        kind="delivered",
        tenant_id="br-south",
        tracking_id="TRK-N0RTH00007",
        shipment_id="shp-007",
        assigned_staff_id="usr-u1",
    )


class TestPushDelivery:
    def test_every_device_of_every_recipient(self, push_service, fake_sender, delivered_event):
        """Each device of each recipient gets one push."""
        summary = asyncio.run(push_service.deliver(delivered_event, SOUTH_AUDIENCE))

        assert summary.attempted == 4
        assert summary.delivered == 4
        assert fake_sender.endpoints() == sorted([A1, A2, U1_PHONE, U1_TABLET])

    def test_payload_shape(self, push_service, fake_sender, delivered_event):
        """Payloads carry title, body, url and event data."""
        asyncio.run(push_service.deliver(delivered_event, [Recipient("usr-a1", "br-south")]))

        payload = fake_sender.calls[0]["payload"]
        assert payload["title"] == "Delivery: TRK-N0RTH00007"
        assert payload["url"] == "/deliverystaff?shipmentId=shp-007"
        assert payload["data"]["eventType"] == "delivered"

    def test_gone_subscription_is_removed(self, push_service, fake_sender, data_store, delivered_event):
        """404 and 410 remove the subscription."""
        fake_sender.responses[U1_TABLET] = 410

        summary = asyncio.run(push_service.deliver(delivered_event, SOUTH_AUDIENCE))

        assert summary.removed == 1
        assert summary.delivered == 3
        assert data_store.get_push_subscription("sub-u1-tablet") is None
        assert data_store.get_push_subscription("sub-u1-phone") is not None

    def test_transient_failure_keeps_subscription(self, push_service, fake_sender, data_store, delivered_event):
        """Transient failures keep the subscription."""
        fake_sender.responses[A2] = 503

        summary = asyncio.run(push_service.deliver(delivered_event, SOUTH_AUDIENCE))

        assert summary.failed == 1
        assert summary.delivered == 3
        assert data_store.get_push_subscription("sub-a2") is not None

    def test_unexpected_error_is_contained(self, push_service, fake_sender, delivered_event):
        """Unexpected sender errors are counted as failures."""
        fake_sender.responses[A1] = KeyError("bad payload")

        summary = asyncio.run(push_service.deliver(delivered_event, SOUTH_AUDIENCE))

        assert summary.failed == 1
        assert summary.delivered == 3

    def test_skipped_without_vapid(self, data_store, fake_sender, delivered_event):
        """Push is skipped when VAPID is incomplete."""
        channel = PushChannel(settings=Settings(vapid_public_key=None, vapid_private_key=None,
                                                vapid_subject=None), sender=fake_sender)
        service = PushDeliveryService(data_store, channel)

        summary = asyncio.run(service.deliver(delivered_event, SOUTH_AUDIENCE))

        assert summary.skipped
        assert fake_sender.calls == []

    def test_recipient_without_devices(self, push_service, fake_sender, delivered_event):
        """Recipients without devices produce no attempts."""
        summary = asyncio.run(push_service.deliver(delivered_event, [Recipient("usr-u2", "br-south")]))

        assert summary.attempted == 0
        assert fake_sender.calls == []

    def test_subscriptions_are_tenant_scoped(self, push_service, fake_sender, delivered_event):
        """Devices are looked up within the recipient's tenant."""
        # usr-u1's devices are registered under br-south only
        asyncio.run(push_service.deliver(delivered_event, [Recipient("usr-u1", "br-north")]))

        assert fake_sender.calls == []


class TestPushSubscriptionRegistry:
    @pytest.fixture
    def registry(self, data_store) -> PushSubscriptionRegistry:
        return PushSubscriptionRegistry(data_store)

    @pytest.fixture
    def u2(self) -> Actor:
        return Actor(user_id="usr-u2", role=Role.STAFF, tenant_id="br-south")

    def test_subscribe_new_device(self, registry, u2):
        """Subscribing stores a new device for the actor."""
        sub = registry.subscribe(u2, "https://push.example.net/send/u2", "auth", "key")

        assert sub.user_id == "usr-u2"
        assert [s.id for s in registry.list_for(u2)] == [sub.id]

    def test_resubscribe_rebinds_endpoint(self, registry, u2, data_store):
        """Re-subscribing an endpoint moves it to the new user."""
        sub = registry.subscribe(u2, U1_PHONE, "auth", "key")

        assert sub.id == "sub-u1-phone"
        assert [s.id for s in data_store.get_push_subscriptions("br-south", "usr-u1")] == ["sub-u1-tablet"]

    def test_subscribe_requires_keys(self, registry, u2):
        """Endpoint and both keys are required."""
        with pytest.raises(InvalidRequest):
            registry.subscribe(u2, "https://push.example.net/send/u2", "", "key")

    def test_unsubscribe(self, registry, data_store):
        """Unsubscribing removes only the actor's device."""
        u1 = Actor(user_id="usr-u1", role=Role.STAFF, tenant_id="br-south")

        registry.unsubscribe(u1, U1_PHONE)

        assert data_store.get_push_subscription("sub-u1-phone") is None
        with pytest.raises(NotFound):
            registry.unsubscribe(u1, U1_PHONE)
