"""
Event-driven notification engine.

Publishers emit domain events on the dispatcher; the notification service
turns each one into in-app feed rows and Web Push messages.
"""

from notifications.audience import Recipient, resolve_audience
from notifications.dispatcher import EventDispatcher, get_dispatcher, reset_dispatcher
from notifications.events import DomainEvent
from notifications.notification_service import NotificationOutcome, NotificationService
from notifications.push import PushDeliveryService, PushSummary
from notifications.store_writer import NotificationStoreWriter
from notifications.subscriptions import PushSubscriptionRegistry

__all__ = [
    "DomainEvent",
    "EventDispatcher",
    "get_dispatcher",
    "reset_dispatcher",
    "Recipient",
    "resolve_audience",
    "NotificationStoreWriter",
    "PushDeliveryService",
    "PushSummary",
    "PushSubscriptionRegistry",
    "NotificationService",
    "NotificationOutcome",
]
