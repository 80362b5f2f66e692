"""
Notification store writer: the in-app feed channel.

Writes one row per recipient of an event and serves the notification center's
reads. Every read and write is scoped by tenant AND user; filtering by user
alone would let rows leak across branches.
"""

import logging
from typing import Iterable, Optional

from notifications.audience import Recipient
from notifications.events import DomainEvent
from shared.config import Settings, get_settings
from shared.data_store import DataStore, get_data_store
from shared.errors import NotFound
from shared.models import Notification
from shared.templates import render_message

logger = logging.getLogger("notification_store")


class NotificationStoreWriter:
    """Persists and reads in-app notifications."""

    def __init__(self, data_store: Optional[DataStore] = None, settings: Optional[Settings] = None):
        self.data_store = data_store or get_data_store()
        self.settings = settings or get_settings()

    def build_records(self, event: DomainEvent, audience: Iterable[Recipient]) -> list[Notification]:
        """One row per recipient, ordered by user id for a stable batch."""
        message = render_message(event.kind, event.tracking_id)
        return [
            Notification(
                tenant_id=recipient.tenant_id,
                user_id=recipient.user_id,
                type=event.kind,
                shipment_id=event.shipment_id,
                manifest_id=event.manifest_id,
                tracking_id=event.tracking_id,
                message=message,
                created_at=event.timestamp,
                updated_at=event.timestamp,
            )
            for recipient in sorted(audience)
        ]

    def append(self, event: DomainEvent, audience: Iterable[Recipient]) -> int:
        """
        Insert the notification rows for an event as one batch.

        Returns:
            Number of rows written (equals the audience size)
        """
        records = self.build_records(event, audience)
        if not records:
            return 0
        count = self.data_store.insert_notifications(records)
        logger.info(f"Created {count} '{records[0].type}' notifications for {event.tracking_id}")
        return count

    # =========================================================================
    # Notification center contract
    # =========================================================================

    def list_notifications(
        self,
        tenant_id: str,
        user_id: str,
        read: Optional[bool] = None,
        limit: Optional[int] = None,
    ) -> list[Notification]:
        """Newest first, capped at the configured list limit."""
        cap = self.settings.notification_list_limit
        limit = cap if limit is None else max(0, min(limit, cap))
        return self.data_store.list_notifications(tenant_id, user_id, read=read, limit=limit)

    def unread_count(self, tenant_id: str, user_id: str) -> int:
        return self.data_store.count_unread(tenant_id, user_id)

    def mark_read(self, tenant_id: str, user_id: str, notification_id: str) -> Notification:
        """
        Raises:
            NotFound: If the notification is not this user's within this tenant
        """
        notification = self.data_store.mark_notification_read(tenant_id, user_id, notification_id)
        if notification is None:
            raise NotFound(f"Notification not found: {notification_id}")
        return notification

    def mark_all_read(self, tenant_id: str, user_id: str) -> int:
        return self.data_store.mark_all_notifications_read(tenant_id, user_id)
