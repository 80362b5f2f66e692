"""
Notification message templates.

One template per event kind drives both channels: the in-app message stored
on the notification row and the Web Push payload. Rendering depends only on
(event kind, tracking id) so the same event always yields the same text.

Design decisions:
- Templates are simple strings with {tracking_id} placeholders
- Manifest events link to the dispatch board, delivery events to the
  staff view of the shipment
- ``tone`` and ``title`` are what the notification center shows next to
  the message
"""

from dataclasses import dataclass
from typing import Optional

from shared.models import EventKind, MANIFEST_EVENTS, enum_value


@dataclass(frozen=True)
class NotificationTemplate:
    """
    Presentation of one event kind across the in-app feed and push.

    ``status`` is the human status label sent in the push data block.
    """
    event_kind: EventKind
    title: str
    tone: str
    message: str
    status: str
    push_body: str

    @property
    def is_manifest_event(self) -> bool:
        return self.event_kind in MANIFEST_EVENTS

    def render_message(self, tracking_id: str) -> str:
        """Render the in-app message."""
        return self.message.format(tracking_id=tracking_id)

    def render_push_title(self, tracking_id: str) -> str:
        prefix = "Manifest" if self.is_manifest_event else "Delivery"
        return f"{prefix}: {tracking_id}"

    def render_url(self, shipment_id: Optional[str]) -> str:
        if self.is_manifest_event:
            return "/dashboard/dispatch"
        if shipment_id:
            return f"/deliverystaff?shipmentId={shipment_id}"
        return "/dashboard"


# =============================================================================
# Template Definitions
# =============================================================================

TEMPLATES: dict[EventKind, NotificationTemplate] = {

    # -------------------------------------------------------------------------
    # Shipment & manifest events (branch staff)
    # -------------------------------------------------------------------------

    EventKind.SHIPMENT_CREATED: NotificationTemplate(
        event_kind=EventKind.SHIPMENT_CREATED,
        title="Shipment Created",
        tone="info",
        message="New shipment created - {tracking_id}",
        status="At Origin Branch",
        push_body="New shipment registered at your branch",
    ),

    EventKind.MANIFEST_CREATED: NotificationTemplate(
        event_kind=EventKind.MANIFEST_CREATED,
        title="Manifest Created",
        tone="info",
        message="New manifest created - {tracking_id}",
        status="Manifest Created",
        push_body="A new manifest was created",
    ),

    EventKind.MANIFEST_DISPATCHED: NotificationTemplate(
        event_kind=EventKind.MANIFEST_DISPATCHED,
        title="Manifest Dispatched",
        tone="warning",
        message="Manifest dispatched - {tracking_id}",
        status="Manifest In Transit",
        push_body="Manifest in transit between branches",
    ),

    EventKind.MANIFEST_ARRIVED: NotificationTemplate(
        event_kind=EventKind.MANIFEST_ARRIVED,
        title="Manifest Arrived",
        tone="info",
        message="Manifest arrived at branch - {tracking_id}",
        status="Manifest Delivered",
        push_body="Manifest successfully received",
    ),

    # -------------------------------------------------------------------------
    # Last-mile delivery events (branch staff + assignee)
    # -------------------------------------------------------------------------

    EventKind.DELIVERY_ASSIGNED: NotificationTemplate(
        event_kind=EventKind.DELIVERY_ASSIGNED,
        title="Delivery Assigned",
        tone="warning",
        message="Delivery assigned - {tracking_id}",
        status="Assigned",
        push_body="New delivery assigned",
    ),

    EventKind.OUT_FOR_DELIVERY: NotificationTemplate(
        event_kind=EventKind.OUT_FOR_DELIVERY,
        title="Out for Delivery",
        tone="warning",
        message="Shipment out for delivery - {tracking_id}",
        status="Out for Delivery",
        push_body="Package is out for delivery",
    ),

    EventKind.DELIVERED: NotificationTemplate(
        event_kind=EventKind.DELIVERED,
        title="Delivery Completed",
        tone="success",
        message="Delivery completed - {tracking_id}",
        status="Delivered",
        push_body="Delivery completed",
    ),

    EventKind.DELIVERY_FAILED: NotificationTemplate(
        event_kind=EventKind.DELIVERY_FAILED,
        title="Delivery Failed",
        tone="error",
        message="Delivery failed - {tracking_id}",
        status="Failed",
        push_body="Delivery attempt failed",
    ),
}


# =============================================================================
# Template Access Functions
# =============================================================================

def get_template(event_kind: EventKind) -> NotificationTemplate:
    """
    Get the template for an event kind.

    Raises:
        ValueError: If no template exists for the kind
    """
    template = TEMPLATES.get(EventKind(enum_value(event_kind)))
    if template is None:
        raise ValueError(f"No template found for event kind: {event_kind}")
    return template


def render_message(event_kind: EventKind, tracking_id: str) -> str:
    """The in-app message for an event kind and tracking id."""
    return get_template(event_kind).render_message(tracking_id)


def build_push_payload(
    event_kind: EventKind,
    tracking_id: str,
    shipment_id: Optional[str] = None,
    manifest_id: Optional[str] = None,
) -> dict:
    """
    Build the Web Push payload for an event.

    Shape: {title, body, url, data: {shipmentId|manifestId, trackingId,
    status, eventType}}
    """
    template = get_template(event_kind)
    data = {
        "trackingId": tracking_id,
        "status": template.status,
        "eventType": enum_value(template.event_kind),
    }
    if manifest_id and template.is_manifest_event:
        data["manifestId"] = manifest_id
    elif shipment_id:
        data["shipmentId"] = shipment_id
    elif manifest_id:
        data["manifestId"] = manifest_id

    return {
        "title": template.render_push_title(tracking_id),
        "body": template.push_body,
        "url": template.render_url(shipment_id),
        "data": data,
    }
