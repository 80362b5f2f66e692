"""
Domain models for branch transfer and last-mile delivery.

Shipments move between branches (tenants) on manifests and are then handed to
delivery staff at the destination branch. Notifications and push
subscriptions are the persisted side of the notification engine.

Design decisions:
- Using Pydantic for validation and serialization
- Records returned by the data store are copies; writes go back through
  the store so the version check can reject stale reads
- Status history is newest-first and entries are frozen once written
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:12]}"


def enum_value(value) -> str:
    """Plain string for an enum member or an already-stored enum value."""
    return getattr(value, "value", value)


# =============================================================================
# Enums - Status values used across the domain
# =============================================================================

class ShipmentStatus(str, Enum):
    """
    Shipment lifecycle states.

    The first two are driven by manifests; the rest by the transition
    validator at the destination branch.
    """
    AT_ORIGIN_BRANCH = "At Origin Branch"
    IN_TRANSIT = "In Transit to Destination"
    AT_DESTINATION_BRANCH = "At Destination Branch"
    ASSIGNED = "Assigned"
    OUT_FOR_DELIVERY = "Out for Delivery"
    DELIVERED = "Delivered"
    FAILED = "Failed"


TERMINAL_STATUSES = frozenset({ShipmentStatus.DELIVERED, ShipmentStatus.FAILED})


class ManifestStatus(str, Enum):
    IN_TRANSIT = "In Transit"
    COMPLETED = "Completed"


class Role(str, Enum):
    """Actor roles as issued by the identity provider."""
    SUPER_ADMIN = "superAdmin"
    ADMIN = "admin"
    DISPATCHER = "dispatcher"
    STAFF = "staff"


# Roles that receive branch-level notifications
BRANCH_AUDIENCE_ROLES = frozenset({Role.ADMIN, Role.DISPATCHER})


class EventKind(str, Enum):
    """
    Domain event kinds. Each one is also a notification type.

    The legacy ``assignment`` / ``status_update`` aliases of older
    notification rows are not produced.
    """
    SHIPMENT_CREATED = "shipment_created"
    MANIFEST_CREATED = "manifest_created"
    MANIFEST_DISPATCHED = "manifest_dispatched"
    MANIFEST_ARRIVED = "manifest_arrived"
    DELIVERY_ASSIGNED = "delivery_assigned"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    DELIVERY_FAILED = "delivery_failed"


MANIFEST_EVENTS = frozenset({
    EventKind.MANIFEST_CREATED,
    EventKind.MANIFEST_DISPATCHED,
    EventKind.MANIFEST_ARRIVED,
})


class ProofType(str, Enum):
    SIGNATURE = "signature"
    PHOTO = "photo"


# =============================================================================
# Reference data
# =============================================================================

class Branch(BaseModel):
    """A branch is the tenant that owns shipments and users."""
    id: str = Field(..., description="Branch / tenant identifier")
    name: str = Field(..., description="Display name")


class User(BaseModel):
    """
    A user as known by the identity provider.

    Read-only here; only used to resolve notification audiences.
    """
    id: str
    tenant_id: str
    name: str
    role: Role

    model_config = ConfigDict(use_enum_values=True)


class Actor(BaseModel):
    """The verified caller of a command: who, in which role, for which branch."""
    user_id: str
    role: Role
    tenant_id: str

    model_config = ConfigDict(use_enum_values=True, frozen=True)


# =============================================================================
# Shipments
# =============================================================================

class StatusHistoryEntry(BaseModel):
    """One immutable audit entry of a shipment's status log."""
    status: ShipmentStatus
    timestamp: datetime = Field(default_factory=utcnow)
    note: Optional[str] = None

    model_config = ConfigDict(use_enum_values=True, frozen=True)


class DeliveryProof(BaseModel):
    type: ProofType
    url: str

    model_config = ConfigDict(use_enum_values=True)


class Shipment(BaseModel):
    """
    A package travelling from its origin branch to its destination branch.

    Invariants:
    - current_branch is either the origin or the destination branch
    - status_history[0].status == status
    """
    id: str = Field(default_factory=lambda: new_id("shp"))
    tracking_id: str = Field(..., description="Customer-facing tracking id")
    origin_branch: str
    destination_branch: str
    current_branch: str
    status: ShipmentStatus = Field(default=ShipmentStatus.AT_ORIGIN_BRANCH)
    status_history: list[StatusHistoryEntry] = Field(
        default_factory=list,
        description="Newest-first audit log of status changes"
    )
    assigned_staff: Optional[str] = Field(default=None, description="User id of the assignee")
    failure_reason: Optional[str] = None
    delivery_proof: Optional[DeliveryProof] = None
    created_by: Optional[str] = Field(default=None, description="Admin user who created it")
    version: int = Field(default=0, ge=0, description="Optimistic concurrency counter")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(use_enum_values=True)

    @property
    def is_local(self) -> bool:
        """Local shipments never travel on a manifest."""
        return self.origin_branch == self.destination_branch

    def with_status(self, status: ShipmentStatus, note: Optional[str] = None, **changes) -> "Shipment":
        """
        Return a copy moved to ``status`` with a new history entry prepended.

        Prior entries are carried over untouched.
        """
        entry = StatusHistoryEntry(status=status, note=note)
        return self.model_copy(update={
            "status": status,
            "status_history": [entry, *self.status_history],
            "updated_at": entry.timestamp,
            **changes,
        })


# =============================================================================
# Manifests
# =============================================================================

class Manifest(BaseModel):
    """
    A batch of shipments travelling together between two branches in one trip.

    While IN_TRANSIT every referenced shipment is IN_TRANSIT; received_at is
    only set when the destination branch completes it.
    """
    id: str = Field(default_factory=lambda: new_id("mf"))
    from_branch: str
    to_branch: str
    shipment_ids: list[str] = Field(..., min_length=1)
    status: ManifestStatus = Field(default=ManifestStatus.IN_TRANSIT)
    vehicle_number: Optional[str] = None
    driver_name: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    dispatched_at: datetime = Field(default_factory=utcnow)
    received_at: Optional[datetime] = None
    version: int = Field(default=0, ge=0)

    model_config = ConfigDict(use_enum_values=True)

    @property
    def is_open(self) -> bool:
        return self.status != ManifestStatus.COMPLETED


class ManifestMeta(BaseModel):
    """Trip details supplied when dispatching a manifest."""
    vehicle_number: Optional[str] = Field(default=None, max_length=50)
    driver_name: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=500)


# =============================================================================
# Notifications & push subscriptions
# =============================================================================

class Notification(BaseModel):
    """
    One in-app notification row for one recipient of one event.

    Rows are only created by the notification store writer and only
    mutated by the notification center's mark-read actions.
    """
    id: str = Field(default_factory=lambda: new_id("ntf"))
    tenant_id: str
    user_id: str
    type: EventKind
    shipment_id: Optional[str] = None
    manifest_id: Optional[str] = None
    tracking_id: str
    message: str
    read: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(use_enum_values=True)


class PushSubscription(BaseModel):
    """A Web Push endpoint registered by one user's device."""
    id: str = Field(default_factory=lambda: new_id("sub"))
    tenant_id: str
    user_id: str
    endpoint: str
    auth_key: str
    p256dh_key: str
    created_at: datetime = Field(default_factory=utcnow)

    def subscription_info(self) -> dict:
        """The structure the Web Push provider expects."""
        return {
            "endpoint": self.endpoint,
            "keys": {"auth": self.auth_key, "p256dh": self.p256dh_key},
        }
