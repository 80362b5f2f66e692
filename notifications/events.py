"""
Domain event definitions.

Events are facts about shipments and manifests that already happened and
were committed. The notification engine reacts to them; the publishers do not
know who is listening.

Design decisions:
- Events are named in past tense where the domain allows it
- Events carry every identifier subscribers need (no query back to the
  publisher for routing)
- All identifiers are canonical strings: validators coerce whatever arrives
  (object ids, UUIDs, ints, padded strings) exactly once, when the event is
  built or parsed at the dispatcher boundary
- Payloads coming from another process use camelCase keys
"""

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from shared.models import EventKind, Manifest, Shipment, enum_value, utcnow


class DomainEvent(BaseModel):
    """
    One domain event.

    Attributes:
        kind: Which of the enumerated event kinds this is (used for routing)
        tenant_id: The branch the event belongs to
        tracking_id: Shipment tracking id, or the manifest id for manifest events
        from_branch / to_branch: Set on manifest events
        assigned_staff_id: Set on delivery events when someone is assigned
        actor_user_id: Who caused the event, when known
    """
    kind: EventKind
    tenant_id: str
    tracking_id: str
    shipment_id: Optional[str] = None
    manifest_id: Optional[str] = None
    from_branch: Optional[str] = None
    to_branch: Optional[str] = None
    assigned_staff_id: Optional[str] = None
    actor_user_id: Optional[str] = None
    source: str = "logistics-core"
    event_id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(
        use_enum_values=True,
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @field_validator(
        "tenant_id",
        "tracking_id",
        "shipment_id",
        "manifest_id",
        "from_branch",
        "to_branch",
        "assigned_staff_id",
        "actor_user_id",
        mode="before",
    )
    @classmethod
    def _canonical_id(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    def __str__(self) -> str:
        return f"Event({enum_value(self.kind)}, id={self.event_id[:8]}, tenant={self.tenant_id})"


# =============================================================================
# Shipment Events
# =============================================================================

def _shipment_event(kind: EventKind, shipment: Shipment, actor_user_id: Optional[str]) -> DomainEvent:
    return DomainEvent(
        kind=kind,
        tenant_id=shipment.current_branch,
        tracking_id=shipment.tracking_id,
        shipment_id=shipment.id,
        assigned_staff_id=shipment.assigned_staff,
        actor_user_id=actor_user_id,
    )


def shipment_created(shipment: Shipment, actor_user_id: Optional[str] = None) -> DomainEvent:
    """Published when a shipment is registered at its origin branch."""
    return _shipment_event(EventKind.SHIPMENT_CREATED, shipment, actor_user_id)


def delivery_assigned(shipment: Shipment, actor_user_id: Optional[str] = None) -> DomainEvent:
    """
    Published when a shipment is assigned to delivery staff.

    The assignee travels on the event so the staff member is notified
    without a lookup.
    """
    return _shipment_event(EventKind.DELIVERY_ASSIGNED, shipment, actor_user_id)


def out_for_delivery(shipment: Shipment, actor_user_id: Optional[str] = None) -> DomainEvent:
    return _shipment_event(EventKind.OUT_FOR_DELIVERY, shipment, actor_user_id)


def delivered(shipment: Shipment, actor_user_id: Optional[str] = None) -> DomainEvent:
    return _shipment_event(EventKind.DELIVERED, shipment, actor_user_id)


def delivery_failed(shipment: Shipment, actor_user_id: Optional[str] = None) -> DomainEvent:
    return _shipment_event(EventKind.DELIVERY_FAILED, shipment, actor_user_id)


# =============================================================================
# Manifest Events
# =============================================================================

def _manifest_event(kind: EventKind, manifest: Manifest, tenant_id: str, actor_user_id: Optional[str]) -> DomainEvent:
    return DomainEvent(
        kind=kind,
        tenant_id=tenant_id,
        tracking_id=manifest.id,
        manifest_id=manifest.id,
        from_branch=manifest.from_branch,
        to_branch=manifest.to_branch,
        actor_user_id=actor_user_id,
    )


def manifest_created(manifest: Manifest, actor_user_id: Optional[str] = None) -> DomainEvent:
    """Published to the origin branch when a manifest is created."""
    return _manifest_event(EventKind.MANIFEST_CREATED, manifest, manifest.from_branch, actor_user_id)


def manifest_dispatched(manifest: Manifest, actor_user_id: Optional[str] = None) -> DomainEvent:
    """
    Published when a manifest leaves the origin branch.

    Owned by the origin branch; the audience also covers ``to_branch``.
    """
    return _manifest_event(EventKind.MANIFEST_DISPATCHED, manifest, manifest.from_branch, actor_user_id)


def manifest_arrived(manifest: Manifest, actor_user_id: Optional[str] = None) -> DomainEvent:
    """
    Published when the destination branch receives a manifest.

    Addressed to the origin branch, which is waiting for confirmation.
    """
    return _manifest_event(EventKind.MANIFEST_ARRIVED, manifest, manifest.from_branch, actor_user_id)


# Delivery status -> event factory, used by the transition validator
DELIVERY_EVENT_FACTORIES = {
    "Assigned": delivery_assigned,
    "Out for Delivery": out_for_delivery,
    "Delivered": delivered,
    "Failed": delivery_failed,
}
