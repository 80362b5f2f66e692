"""
Push delivery: the Web Push channel of the notification engine.

For each recipient, sends the event's payload to every registered device of
that user. Failures are contained here and never reach the store writer or
the publisher.

Design decisions:
- Recipients and their devices are sent to concurrently (asyncio.gather)
- "Gone" endpoints (404/410) are deleted on the spot
- Transient failures are logged and dropped; there is no retry queue
- When VAPID is not configured the whole channel is skipped
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from notifications.audience import Recipient
from notifications.events import DomainEvent
from shared.channels import DeliveryOutcome, PushChannel
from shared.data_store import DataStore, get_data_store
from shared.errors import PermanentDeliveryFailure, TransientDeliveryFailure
from shared.models import PushSubscription
from shared.templates import build_push_payload

logger = logging.getLogger("push_delivery")


@dataclass
class PushSummary:
    """Counts for one event's push fan-out."""
    attempted: int = 0
    delivered: int = 0
    removed: int = 0
    failed: int = 0
    skipped: bool = False

    def add(self, outcome: DeliveryOutcome) -> None:
        self.attempted += 1
        if outcome == DeliveryOutcome.DELIVERED:
            self.delivered += 1
        elif outcome == DeliveryOutcome.GONE:
            self.removed += 1
        else:
            self.failed += 1


class PushDeliveryService:
    """Sends push notifications for an event to a resolved audience."""

    def __init__(self, data_store: Optional[DataStore] = None, channel: Optional[PushChannel] = None):
        self.data_store = data_store or get_data_store()
        self.channel = channel or PushChannel()

    async def deliver(self, event: DomainEvent, audience: Iterable[Recipient]) -> PushSummary:
        """
        Push the event to every device of every recipient.

        Never raises for delivery problems; the returned summary counts them.
        """
        if not self.channel.enabled:
            logger.debug(f"Push not configured, skipping {event}")
            return PushSummary(skipped=True)

        payload = build_push_payload(
            event.kind,
            event.tracking_id,
            shipment_id=event.shipment_id,
            manifest_id=event.manifest_id,
        )

        targets = [
            subscription
            for recipient in sorted(audience)
            for subscription in self.data_store.get_push_subscriptions(recipient.tenant_id, recipient.user_id)
        ]
        summary = PushSummary()
        if not targets:
            logger.debug(f"No push subscriptions for {event}")
            return summary

        outcomes = await asyncio.gather(*(self._deliver_one(s, payload) for s in targets))
        for outcome in outcomes:
            summary.add(outcome)

        logger.info(
            f"Push for {event.tracking_id}: {summary.delivered}/{summary.attempted} delivered, "
            f"{summary.removed} removed, {summary.failed} failed"
        )
        return summary

    async def _deliver_one(self, subscription: PushSubscription, payload: dict) -> DeliveryOutcome:
        try:
            await self.channel.send(subscription, payload)
        except PermanentDeliveryFailure as e:
            self.data_store.delete_push_subscription(subscription.id)
            logger.info(f"Removed expired push subscription {subscription.id}: {e}")
            return DeliveryOutcome.GONE
        except TransientDeliveryFailure as e:
            logger.warning(f"Push to {subscription.user_id} failed: {e}")
            return DeliveryOutcome.FAILED
        except Exception as e:
            logger.error(f"Unexpected push error for {subscription.id}: {e}")
            return DeliveryOutcome.FAILED
        return DeliveryOutcome.DELIVERED
