"""
Demonstration scripts for the logistics core.

These functions run the branch transfer and delivery scenarios end to end
against the JSON seed data. Push goes through an offline sender that
prints instead of calling a push provider.
"""

import asyncio
import logging
from types import SimpleNamespace
from typing import Optional

from pywebpush import WebPushException

from logistics.manifests import ManifestCoordinator
from logistics.transitions import StatusTransitionValidator
from notifications.dispatcher import reset_dispatcher
from notifications.notification_service import NotificationService
from notifications.push import PushDeliveryService
from shared.channels import PushChannel
from shared.config import Settings
from shared.data_store import DataStore
from shared.errors import LogisticsError
from shared.models import Actor, Role, ShipmentStatus

# Configure logging to see what's happening
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s",
    datefmt="%H:%M:%S",
)

DEMO_SETTINGS = dict(
    vapid_public_key="demo-public-key",
    vapid_private_key="demo-private-key",
    vapid_subject="mailto:ops@example.net",
)

NORTH_ADMIN = Actor(user_id="usr-n1", role=Role.ADMIN, tenant_id="br-north")
SOUTH_ADMIN = Actor(user_id="usr-a1", role=Role.ADMIN, tenant_id="br-south")
STAFF_U1 = Actor(user_id="usr-u1", role=Role.STAFF, tenant_id="br-south")
STAFF_U2 = Actor(user_id="usr-u2", role=Role.STAFF, tenant_id="br-south")


class OfflineSender:
    """Stands in for the push provider; endpoints in ``gone`` answer 410."""

    def __init__(self, gone: Optional[set[str]] = None):
        self.gone = gone or set()
        self.calls: list[str] = []

    def __call__(self, subscription_info, data, vapid_private_key, vapid_claims, timeout):
        endpoint = subscription_info["endpoint"]
        self.calls.append(endpoint)
        if endpoint in self.gone:
            raise WebPushException("Push subscription has unsubscribed or expired.",
                                   response=SimpleNamespace(status_code=410))
        return SimpleNamespace(status_code=201)


def _setup(gone: Optional[set[str]] = None):
    dispatcher = reset_dispatcher()
    data_store = DataStore()
    sender = OfflineSender(gone)
    channel = PushChannel(settings=Settings(**DEMO_SETTINGS), sender=sender)
    service = NotificationService(
        dispatcher=dispatcher,
        data_store=data_store,
        push=PushDeliveryService(data_store, channel),
    )
    service.start()
    return SimpleNamespace(
        dispatcher=dispatcher,
        data_store=data_store,
        channel=channel,
        service=service,
        coordinator=ManifestCoordinator(data_store, dispatcher),
        validator=StatusTransitionValidator(data_store, dispatcher),
    )


def _banner(title: str) -> None:
    print("\n" + "=" * 70)
    print(title)
    print("=" * 70 + "\n")


def _print_outcomes(env) -> None:
    print("\nNotifications:")
    for outcome in env.service.get_outcomes():
        users = ", ".join(sorted(r.user_id for r in outcome.recipients))
        print(f"  {outcome.event.kind}: {outcome.rows_written} rows -> {users}")
    print("\nPush attempts:")
    for msg in env.channel.sent_messages:
        print(f"  {msg}")


async def run_dispatch_demo():
    """
    Scenario A: the north branch dispatches two shipments to the south branch.
    """
    _banner("DEMO: Dispatch a manifest")
    env = _setup()

    manifest = await env.coordinator.create_manifest(NORTH_ADMIN, "br-south", ["shp-001", "shp-002"])
    await env.dispatcher.drain()

    for sid in manifest.shipment_ids:
        print(f"  {sid}: {env.data_store.get_shipment(sid).status}")
    print(f"  {manifest.id}: {manifest.status}")
    _print_outcomes(env)
    env.service.stop()
    return manifest


async def run_receive_demo():
    """
    Scenario B: the south branch receives manifest mf-001.
    """
    _banner("DEMO: Receive a manifest")
    env = _setup()

    manifest = await env.coordinator.receive_manifest("mf-001", SOUTH_ADMIN)
    await env.dispatcher.drain()

    shipment = env.data_store.get_shipment("shp-004")
    print(f"  {manifest.id}: {manifest.status} at {manifest.received_at:%Y-%m-%d %H:%M}")
    print(f"  shp-004: {shipment.status} at {shipment.current_branch}")

    print("\nReceiving it again:")
    try:
        await env.coordinator.receive_manifest("mf-001", SOUTH_ADMIN)
    except LogisticsError as e:
        print(f"  rejected ({e.reason}): {e}")

    _print_outcomes(env)
    env.service.stop()
    return manifest


async def run_wrong_staff_demo():
    """
    Scenario C: a staff member who is not the assignee tries to start delivery.
    """
    _banner("DEMO: Staff outside the assignment")
    env = _setup()

    shipment = env.data_store.get_shipment("shp-006")
    try:
        await env.validator.transition(shipment, ShipmentStatus.OUT_FOR_DELIVERY, STAFF_U2)
    except LogisticsError as e:
        print(f"  rejected ({e.reason}): {e}")
    print(f"  shp-006 is still {env.data_store.get_shipment('shp-006').status}")
    env.service.stop()


async def run_delivered_demo(gone: Optional[set[str]] = None):
    """
    Scenario D (and E when ``gone`` is given): usr-u1 delivers shp-007.
    """
    _banner("DEMO: Delivery completed" + (" with an expired device" if gone else ""))
    env = _setup(gone)

    shipment = env.data_store.get_shipment("shp-007")
    await env.validator.transition(shipment, ShipmentStatus.DELIVERED, STAFF_U1, note="Left at reception")
    await env.dispatcher.drain()

    _print_outcomes(env)
    remaining = env.data_store.get_push_subscriptions("br-south", "usr-u1")
    print(f"\nusr-u1 devices still registered: {[s.id for s in remaining]}")
    env.service.stop()
    return env.service.get_outcomes()


async def run_all_demos():
    print("\nRunning Logistics Notification Demos")
    print("=" * 70)
    await run_dispatch_demo()
    await run_receive_demo()
    await run_wrong_staff_demo()
    await run_delivered_demo()
    await run_delivered_demo(gone={"https://push.example.net/send/u1-tablet"})
    print("\n")


DEMOS = {
    "dispatch": run_dispatch_demo,
    "receive": run_receive_demo,
    "wrong-staff": run_wrong_staff_demo,
    "delivered": run_delivered_demo,
    "expired-device": lambda: run_delivered_demo(gone={"https://push.example.net/send/u1-tablet"}),
    "all": run_all_demos,
}


def run_demo(name: str = "all") -> None:
    asyncio.run(DEMOS[name]())


if __name__ == "__main__":
    run_demo()
