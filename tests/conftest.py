"""
Shared pytest fixtures for the logistics notification core tests.

These fixtures provide consistent seed data and fresh components per test.

Seed data at a glance (data/*.json):
- br-north: usr-n1 (admin), usr-n2 (dispatcher), usr-ns (staff), usr-root (superAdmin)
- br-south: usr-a1 (admin), usr-a2 (dispatcher), usr-u1 / usr-u2 (staff)
- br-east:  usr-e1 (admin)
- shp-001..003 At Origin Branch in br-north (shp-003 routed to br-east)
- shp-004 In Transit on open manifest mf-001 (br-north -> br-south)
- shp-005 At Destination Branch, shp-006 Assigned to usr-u1,
  shp-007 Out for Delivery with usr-u1 (all in br-south)
- shp-008 local br-south shipment created by usr-a1
- push devices: usr-a1, usr-a2, usr-u1 (two devices), usr-n1
"""

import json
from pathlib import Path
from types import SimpleNamespace

import pytest
from pywebpush import WebPushException

from logistics.intake import ShipmentIntake
from logistics.manifests import ManifestCoordinator
from logistics.transitions import StatusTransitionValidator
from notifications.dispatcher import EventDispatcher
from notifications.notification_service import NotificationService
from notifications.push import PushDeliveryService
from notifications.store_writer import NotificationStoreWriter
from shared.channels import PushChannel
from shared.config import Settings
from shared.data_store import DataStore
from shared.models import Actor, Role


class FakePushSender:
    """
    Records every push call instead of talking to a push provider.

    ``responses`` maps an endpoint to an HTTP status code (>= 400 raises
    WebPushException) or to an exception instance to raise.
    """

    def __init__(self):
        self.calls: list[dict] = []
        self.responses: dict[str, object] = {}

    def __call__(self, subscription_info, data, vapid_private_key, vapid_claims, timeout):
        endpoint = subscription_info["endpoint"]
        self.calls.append({
            "endpoint": endpoint,
            "payload": json.loads(data),
            "vapid_claims": vapid_claims,
            "timeout": timeout,
        })
        outcome = self.responses.get(endpoint)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, int) and outcome >= 400:
            raise WebPushException(f"Push failed: {outcome}", response=SimpleNamespace(status_code=outcome))
        return SimpleNamespace(status_code=201)

    def endpoints(self) -> list[str]:
        return sorted(call["endpoint"] for call in self.calls)


@pytest.fixture
def data_dir() -> Path:
    """Path to the seed data directory."""
    return Path(__file__).parent.parent / "data"


@pytest.fixture
def data_store(data_dir: Path) -> DataStore:
    """
    Fresh DataStore instance for each test.

    Uses the real JSON seed but creates a new instance
    so tests don't interfere with each other.
    """
    return DataStore(data_dir=data_dir)


@pytest.fixture
def push_settings() -> Settings:
    """Settings with a complete VAPID configuration."""
    return Settings(
        vapid_public_key="test-public-key",
        vapid_private_key="test-private-key",
        vapid_subject="mailto:ops@example.net",
        push_timeout_seconds=1.0,
        notification_list_limit=50,
    )


@pytest.fixture
def fake_sender() -> FakePushSender:
    return FakePushSender()


@pytest.fixture
def push_channel(push_settings: Settings, fake_sender: FakePushSender) -> PushChannel:
    return PushChannel(settings=push_settings, sender=fake_sender)


@pytest.fixture
def dispatcher() -> EventDispatcher:
    """Fresh dispatcher for each test."""
    return EventDispatcher()


@pytest.fixture
def writer(data_store: DataStore, push_settings: Settings) -> NotificationStoreWriter:
    return NotificationStoreWriter(data_store, push_settings)


@pytest.fixture
def push_service(data_store: DataStore, push_channel: PushChannel) -> PushDeliveryService:
    return PushDeliveryService(data_store, push_channel)


@pytest.fixture
def notification_service(dispatcher, data_store, writer, push_service) -> NotificationService:
    """A started notification service wired to the test dispatcher."""
    service = NotificationService(
        dispatcher=dispatcher,
        data_store=data_store,
        writer=writer,
        push=push_service,
    )
    service.start()
    yield service
    service.stop()


@pytest.fixture
def validator(data_store: DataStore, dispatcher: EventDispatcher) -> StatusTransitionValidator:
    return StatusTransitionValidator(data_store, dispatcher)


@pytest.fixture
def coordinator(data_store: DataStore, dispatcher: EventDispatcher) -> ManifestCoordinator:
    return ManifestCoordinator(data_store, dispatcher)


@pytest.fixture
def intake(data_store: DataStore, dispatcher: EventDispatcher) -> ShipmentIntake:
    return ShipmentIntake(data_store, dispatcher)


# =============================================================================
# Actor Fixtures
# =============================================================================

@pytest.fixture
def north_admin() -> Actor:
    """usr-n1, admin of the origin branch br-north."""
    return Actor(user_id="usr-n1", role=Role.ADMIN, tenant_id="br-north")


@pytest.fixture
def north_dispatcher() -> Actor:
    return Actor(user_id="usr-n2", role=Role.DISPATCHER, tenant_id="br-north")


@pytest.fixture
def south_admin() -> Actor:
    """usr-a1, admin of the destination branch br-south."""
    return Actor(user_id="usr-a1", role=Role.ADMIN, tenant_id="br-south")


@pytest.fixture
def staff_u1() -> Actor:
    """usr-u1, staff at br-south (assignee of shp-006 and shp-007)."""
    return Actor(user_id="usr-u1", role=Role.STAFF, tenant_id="br-south")


@pytest.fixture
def staff_u2() -> Actor:
    """usr-u2, staff at br-south with no assignments."""
    return Actor(user_id="usr-u2", role=Role.STAFF, tenant_id="br-south")
