"""
Shared infrastructure for the logistics core.

This package contains code used by both the state machine and the
notification engine:
- Domain models (Shipment, Manifest, Notification, etc.)
- Data store for JSON-seeded persistence
- Error taxonomy and runtime settings
- Notification templates and the Web Push channel
"""

from shared.models import (
    Actor,
    Branch,
    EventKind,
    Manifest,
    ManifestStatus,
    Notification,
    PushSubscription,
    Role,
    Shipment,
    ShipmentStatus,
    User,
)
from shared.data_store import DataStore
from shared.channels import PushChannel, PushResult
from shared.config import Settings, get_settings

__all__ = [
    "Actor",
    "Branch",
    "EventKind",
    "Manifest",
    "ManifestStatus",
    "Notification",
    "PushSubscription",
    "Role",
    "Shipment",
    "ShipmentStatus",
    "User",
    "DataStore",
    "PushChannel",
    "PushResult",
    "Settings",
    "get_settings",
]
