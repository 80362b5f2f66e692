"""
Audience resolution: who must hear about an event.

A pure function of the event and a read-only user directory. The result is a
set keyed by user id, so someone who is both a branch admin and the assigned
staff member gets exactly one notification.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from notifications.events import DomainEvent
from shared.models import BRANCH_AUDIENCE_ROLES, EventKind, User, enum_value


@dataclass(frozen=True, order=True)
class Recipient:
    """A user to notify, with the branch that owns the user."""
    user_id: str
    tenant_id: str


class UserDirectory(Protocol):
    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_users_by_tenant(self, tenant_id: str, roles: Optional[Iterable[str]] = None) -> list[User]: ...


# Branch admins/dispatchers of the event's tenant only
BRANCH_EVENTS = frozenset({
    EventKind.SHIPMENT_CREATED.value,
    EventKind.MANIFEST_CREATED.value,
    EventKind.MANIFEST_ARRIVED.value,
})

# Branch admins/dispatchers plus the assigned staff member
ASSIGNEE_EVENTS = frozenset({
    EventKind.DELIVERY_ASSIGNED.value,
    EventKind.OUT_FOR_DELIVERY.value,
    EventKind.DELIVERED.value,
    EventKind.DELIVERY_FAILED.value,
})


def audience_tenants(event: DomainEvent) -> list[str]:
    """
    Branches whose admins/dispatchers are notified.

    A dispatched manifest concerns both ends of the trip.
    """
    tenants = [event.tenant_id]
    if enum_value(event.kind) == EventKind.MANIFEST_DISPATCHED.value:
        for branch in (event.from_branch, event.to_branch):
            if branch and branch not in tenants:
                tenants.append(branch)
    return tenants


def resolve_audience(event: DomainEvent, directory: UserDirectory) -> frozenset[Recipient]:
    """
    Resolve the deduplicated set of recipients for an event.

    Unknown assignees are kept and scoped to the event's tenant.
    """
    kind = enum_value(event.kind)
    if kind not in BRANCH_EVENTS and kind not in ASSIGNEE_EVENTS and kind != EventKind.MANIFEST_DISPATCHED.value:
        raise ValueError(f"No audience rule for event kind: {kind}")

    recipients: dict[str, Recipient] = {}
    for tenant_id in audience_tenants(event):
        for user in directory.get_users_by_tenant(tenant_id, BRANCH_AUDIENCE_ROLES):
            recipients.setdefault(user.id, Recipient(user_id=user.id, tenant_id=user.tenant_id))

    if kind in ASSIGNEE_EVENTS and event.assigned_staff_id:
        staff = directory.get_user(event.assigned_staff_id)
        tenant_id = staff.tenant_id if staff else event.tenant_id
        recipients.setdefault(
            event.assigned_staff_id,
            Recipient(user_id=event.assigned_staff_id, tenant_id=tenant_id),
        )

    return frozenset(recipients.values())
