"""
Notification service: reacts to domain events with in-app and push notifications.

Registers one handler per event kind on the dispatcher. Each handler resolves
the audience, writes the in-app rows, then fans out push.

Design decisions:
- All "who hears about what" logic is HERE; the state machine and the
  manifest coordinator only publish events
- The in-app write happens before push, so a push failure can never lose a
  feed row
- Handlers contain their own failures: nothing propagates back into the
  publisher, whose write is already committed
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from notifications.audience import Recipient, resolve_audience
from notifications.dispatcher import EventDispatcher, get_dispatcher
from notifications.events import DomainEvent
from notifications.push import PushDeliveryService, PushSummary
from notifications.store_writer import NotificationStoreWriter
from shared.config import DEFAULT_HISTORY_LIMIT
from shared.data_store import DataStore, get_data_store
from shared.models import EventKind, enum_value

logger = logging.getLogger("notification_service")


@dataclass
class NotificationOutcome:
    """What handling one event produced (kept for demos and tests)."""
    event: DomainEvent
    recipients: frozenset[Recipient] = frozenset()
    rows_written: int = 0
    push: PushSummary = field(default_factory=PushSummary)


class NotificationService:
    """
    Event-driven notification service.

    Example:
        service = NotificationService()
        service.start()

        # Every published event now produces feed rows and push messages
        get_dispatcher().publish(events.delivered(shipment))
    """

    def __init__(
        self,
        dispatcher: Optional[EventDispatcher] = None,
        data_store: Optional[DataStore] = None,
        writer: Optional[NotificationStoreWriter] = None,
        push: Optional[PushDeliveryService] = None,
        history_limit: Optional[int] = DEFAULT_HISTORY_LIMIT,
    ):
        """
        Args:
            dispatcher: Dispatcher to register on (defaults to singleton)
            data_store: User directory and storage (defaults to singleton)
            writer: In-app store writer (defaults to one over data_store)
            push: Push delivery service (defaults to one over data_store)
            history_limit: How many recent outcomes to keep (None keeps all)
        """
        self.dispatcher = dispatcher or get_dispatcher()
        self.data_store = data_store or get_data_store()
        self.writer = writer or NotificationStoreWriter(self.data_store)
        self.push = push or PushDeliveryService(self.data_store)

        self.outcomes: deque[NotificationOutcome] = deque(maxlen=history_limit)
        self._started = False

    def _handlers(self) -> dict[EventKind, object]:
        return {
            EventKind.SHIPMENT_CREATED: self._handle_branch_event,
            EventKind.MANIFEST_CREATED: self._handle_branch_event,
            EventKind.MANIFEST_DISPATCHED: self._handle_manifest_dispatched,
            EventKind.MANIFEST_ARRIVED: self._handle_branch_event,
            EventKind.DELIVERY_ASSIGNED: self._handle_delivery_assigned,
            EventKind.OUT_FOR_DELIVERY: self._handle_delivery_update,
            EventKind.DELIVERED: self._handle_delivery_update,
            EventKind.DELIVERY_FAILED: self._handle_delivery_update,
        }

    def start(self) -> None:
        """Register a handler for every event kind."""
        if self._started:
            logger.warning("NotificationService already started")
            return

        for kind, handler in self._handlers().items():
            self.dispatcher.register(kind, handler)

        self._started = True
        logger.info("NotificationService started - handling all event kinds")

    def stop(self) -> None:
        if not self._started:
            return
        for kind in self._handlers():
            self.dispatcher.unregister(kind)
        self._started = False
        logger.info("NotificationService stopped")

    # =========================================================================
    # Event Handlers
    # =========================================================================

    async def _handle_branch_event(self, event: DomainEvent) -> None:
        """Shipment created, manifest created, manifest arrived."""
        await self.notify(event)

    async def _handle_manifest_dispatched(self, event: DomainEvent) -> None:
        if not event.to_branch:
            logger.warning(f"{event} has no destination branch; notifying origin only")
        await self.notify(event)

    async def _handle_delivery_assigned(self, event: DomainEvent) -> None:
        if not event.assigned_staff_id:
            logger.warning(f"Skipping {event}: no assigned staff on the event")
            return
        await self.notify(event)

    async def _handle_delivery_update(self, event: DomainEvent) -> None:
        """Out for delivery, delivered, failed."""
        await self.notify(event)

    # =========================================================================
    # Fan-out
    # =========================================================================

    async def notify(self, event: DomainEvent) -> NotificationOutcome:
        """
        Resolve the audience, write one feed row per recipient, then push.

        Push errors are counted in the outcome and never undo the rows.
        """
        outcome = NotificationOutcome(event=event)
        self.outcomes.append(outcome)

        try:
            outcome.recipients = resolve_audience(event, self.data_store)
        except Exception:
            logger.exception(f"Could not resolve audience for {event}")
            return outcome

        if not outcome.recipients:
            logger.info(f"No recipients for {event}")
            return outcome

        try:
            outcome.rows_written = self.writer.append(event, outcome.recipients)
        except Exception:
            logger.exception(f"Failed to write notifications for {event}")

        try:
            outcome.push = await self.push.deliver(event, outcome.recipients)
        except Exception:
            logger.exception(f"Push delivery crashed for {event}")

        logger.info(
            f"Handled {enum_value(event.kind)} for {event.tracking_id}: "
            f"{len(outcome.recipients)} recipients, {outcome.rows_written} rows"
        )
        return outcome

    def get_outcomes(self, kind: Optional[EventKind] = None) -> list[NotificationOutcome]:
        if kind is None:
            return list(self.outcomes)
        return [o for o in self.outcomes if enum_value(o.event.kind) == enum_value(kind)]

    def clear_outcomes(self) -> None:
        self.outcomes.clear()
