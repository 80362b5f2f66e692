"""
Shipment status transition validator.

The single gate for moving a shipment through its delivery lifecycle at the
destination branch. Validates the (from, to, role) combination, authorizes the
actor, writes the shipment with a compare-and-set on ``version`` and only
then publishes the matching delivery event.

Design decisions:
- The transition table is data, not branching logic
- Manifest-driven statuses (At Origin Branch -> In Transit -> At Destination
  Branch) are not reachable here; only the manifest coordinator moves them
- Local shipments (origin == destination) never travel, so they may be
  assigned straight from At Origin Branch
- Unassigning goes back to the pre-assignment status and emits no event
- This service ONLY publishes events; it does not know who is notified
"""

import logging
from typing import Optional

from notifications import events
from notifications.dispatcher import EventDispatcher, get_dispatcher
from shared.data_store import DataStore, get_data_store
from shared.errors import Conflict, Forbidden, InvalidRequest, InvalidTransition, NotFound
from shared.models import (
    Actor,
    DeliveryProof,
    Role,
    Shipment,
    ShipmentStatus,
    enum_value,
)

logger = logging.getLogger("transition_validator")


NOTE_MAX_LENGTH = 500
REASON_MAX_LENGTH = 500

_ADMIN = Role.ADMIN.value
_STAFF = Role.STAFF.value

# (from, to) -> roles allowed to perform it
TRANSITION_RULES: dict[tuple[str, str], frozenset[str]] = {
    (ShipmentStatus.AT_DESTINATION_BRANCH.value, ShipmentStatus.ASSIGNED.value): frozenset({_ADMIN, _STAFF}),
    (ShipmentStatus.AT_ORIGIN_BRANCH.value, ShipmentStatus.ASSIGNED.value): frozenset({_ADMIN, _STAFF}),
    (ShipmentStatus.ASSIGNED.value, ShipmentStatus.OUT_FOR_DELIVERY.value): frozenset({_STAFF}),
    (ShipmentStatus.ASSIGNED.value, ShipmentStatus.AT_DESTINATION_BRANCH.value): frozenset({_ADMIN}),
    (ShipmentStatus.ASSIGNED.value, ShipmentStatus.AT_ORIGIN_BRANCH.value): frozenset({_ADMIN}),
    (ShipmentStatus.OUT_FOR_DELIVERY.value, ShipmentStatus.DELIVERED.value): frozenset({_STAFF}),
    (ShipmentStatus.OUT_FOR_DELIVERY.value, ShipmentStatus.FAILED.value): frozenset({_STAFF}),
}

# Pairs that only make sense for local shipments, and the ones that never do
LOCAL_ONLY = frozenset({
    (ShipmentStatus.AT_ORIGIN_BRANCH.value, ShipmentStatus.ASSIGNED.value),
    (ShipmentStatus.ASSIGNED.value, ShipmentStatus.AT_ORIGIN_BRANCH.value),
})
TRANSFER_ONLY = frozenset({
    (ShipmentStatus.AT_DESTINATION_BRANCH.value, ShipmentStatus.ASSIGNED.value),
    (ShipmentStatus.ASSIGNED.value, ShipmentStatus.AT_DESTINATION_BRANCH.value),
})

UNASSIGN_TARGETS = frozenset({
    ShipmentStatus.AT_DESTINATION_BRANCH.value,
    ShipmentStatus.AT_ORIGIN_BRANCH.value,
})


def _clean(text: Optional[str], limit: int) -> Optional[str]:
    if text is None:
        return None
    text = text.strip()
    return text[:limit] or None


def allowed_targets(shipment: Shipment, role: Role) -> list[str]:
    """Statuses the given role could request next for this shipment."""
    current = enum_value(shipment.status)
    role = enum_value(role)
    targets = []
    for (source, target), roles in TRANSITION_RULES.items():
        if source != current or role not in roles:
            continue
        if (source, target) in LOCAL_ONLY and not shipment.is_local:
            continue
        if (source, target) in TRANSFER_ONLY and shipment.is_local:
            continue
        targets.append(target)
    return targets


class StatusTransitionValidator:
    """
    Validates and applies delivery status transitions.

    Example:
        validator = StatusTransitionValidator()

        shipment = await validator.transition(
            shipment, ShipmentStatus.OUT_FOR_DELIVERY, actor
        )
        # A DeliveryEvent has been published; notifications follow
        # asynchronously.
    """

    def __init__(
        self,
        data_store: Optional[DataStore] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        self.data_store = data_store or get_data_store()
        self.dispatcher = dispatcher or get_dispatcher()

    async def transition(
        self,
        shipment: Shipment,
        requested_status: ShipmentStatus,
        actor: Actor,
        note: Optional[str] = None,
        failure_reason: Optional[str] = None,
        delivery_proof: Optional[DeliveryProof] = None,
        assigned_staff_id: Optional[str] = None,
    ) -> Shipment:
        """
        Move a shipment to ``requested_status``.

        ``shipment`` is the caller's read; its version must still be current.

        Returns:
            The stored shipment (version incremented)

        Raises:
            InvalidTransition: (from, to, role) not in the table or not valid
                for this shipment
            Forbidden: wrong tenant, creator or assignee
            InvalidRequest: admin assignment without an assignee
            NotFound: assignee unknown
            Conflict: the shipment changed since it was read
        """
        try:
            requested = ShipmentStatus(enum_value(requested_status)).value
        except ValueError:
            raise InvalidTransition(f"Unknown shipment status: {requested_status}", [shipment.id])

        current = enum_value(shipment.status)
        pair = (current, requested)
        roles = TRANSITION_RULES.get(pair)
        if roles is None:
            raise InvalidTransition(
                f"Cannot move shipment {shipment.id} from '{current}' to '{requested}'",
                [shipment.id],
            )
        if pair in LOCAL_ONLY and not shipment.is_local:
            raise InvalidTransition(
                f"Shipment {shipment.id} must travel on a manifest before '{requested}'",
                [shipment.id],
            )
        if pair in TRANSFER_ONLY and shipment.is_local:
            raise InvalidTransition(
                f"Local shipment {shipment.id} never reaches '{requested}'",
                [shipment.id],
            )

        role = enum_value(actor.role)
        if role not in roles:
            raise InvalidTransition(
                f"Role '{role}' may not move a shipment from '{current}' to '{requested}'",
                [shipment.id],
            )

        self._authorize(shipment, actor, requested, assigned_staff_id)
        updated = self._apply(shipment, actor, requested, note, failure_reason, delivery_proof, assigned_staff_id)

        with self.data_store.transaction():
            saved = self.data_store.save_shipment(updated)

        logger.info(f"Shipment {saved.id}: {current} -> {requested} by {actor.user_id}")

        factory = events.DELIVERY_EVENT_FACTORIES.get(requested)
        if factory is not None:
            self.dispatcher.publish(factory(saved, actor.user_id))
        return saved

    async def unassign(self, shipment: Shipment, actor: Actor, note: Optional[str] = None) -> Shipment:
        """Send an assigned shipment back to the branch pool."""
        target = (
            ShipmentStatus.AT_ORIGIN_BRANCH if shipment.is_local
            else ShipmentStatus.AT_DESTINATION_BRANCH
        )
        return await self.transition(shipment, target, actor, note=note)

    async def transition_by_id(
        self,
        shipment_id: str,
        requested_status: ShipmentStatus,
        actor: Actor,
        expected_version: Optional[int] = None,
        **kwargs,
    ) -> Shipment:
        """
        Load a shipment and transition it.

        ``expected_version`` is the version the client last saw.
        """
        shipment = self.data_store.get_shipment(shipment_id)
        if shipment is None:
            raise NotFound(f"Shipment not found: {shipment_id}", [shipment_id])
        if expected_version is not None and expected_version != shipment.version:
            raise Conflict(
                f"Shipment {shipment_id} is at version {shipment.version}, not {expected_version}",
                [shipment_id],
            )
        return await self.transition(shipment, requested_status, actor, **kwargs)

    # =========================================================================
    # Internals
    # =========================================================================

    def _authorize(
        self,
        shipment: Shipment,
        actor: Actor,
        requested: str,
        assigned_staff_id: Optional[str],
    ) -> None:
        if actor.tenant_id != shipment.current_branch:
            raise Forbidden(
                f"Shipment {shipment.id} is held by another branch",
                [shipment.id],
            )

        role = enum_value(actor.role)
        if role == _ADMIN:
            if shipment.created_by and shipment.created_by != actor.user_id:
                raise Forbidden(
                    f"Only the creating admin may update shipment {shipment.id}",
                    [shipment.id],
                )
            return

        # Staff
        if requested == ShipmentStatus.ASSIGNED.value:
            if assigned_staff_id and assigned_staff_id != actor.user_id:
                raise Forbidden("Staff may only assign deliveries to themselves", [shipment.id])
            return
        if shipment.assigned_staff != actor.user_id:
            raise Forbidden(
                f"Shipment {shipment.id} is not assigned to {actor.user_id}",
                [shipment.id],
            )

    def _resolve_assignee(self, shipment: Shipment, actor: Actor, assigned_staff_id: Optional[str]) -> str:
        if enum_value(actor.role) == _STAFF:
            return actor.user_id
        if not assigned_staff_id:
            raise InvalidRequest("An assignee is required to assign a shipment", [shipment.id])

        staff = self.data_store.get_user(assigned_staff_id)
        if staff is None:
            raise NotFound(f"User not found: {assigned_staff_id}", [assigned_staff_id])
        if staff.tenant_id != shipment.current_branch:
            raise Forbidden(
                f"User {assigned_staff_id} does not belong to branch {shipment.current_branch}",
                [shipment.id],
            )
        if enum_value(staff.role) != _STAFF:
            raise InvalidRequest(
                f"User {assigned_staff_id} is a {enum_value(staff.role)}, not delivery staff",
                [assigned_staff_id],
            )
        return staff.id

    def _apply(
        self,
        shipment: Shipment,
        actor: Actor,
        requested: str,
        note: Optional[str],
        failure_reason: Optional[str],
        delivery_proof: Optional[DeliveryProof],
        assigned_staff_id: Optional[str],
    ) -> Shipment:
        note = _clean(note, NOTE_MAX_LENGTH)
        changes = {}

        if requested == ShipmentStatus.ASSIGNED.value:
            changes["assigned_staff"] = self._resolve_assignee(shipment, actor, assigned_staff_id)
            note = note or "Shipment assigned to delivery staff"
        elif requested in UNASSIGN_TARGETS:
            changes["assigned_staff"] = None
            note = note or "Shipment unassigned from delivery staff"
        elif requested == ShipmentStatus.FAILED.value:
            reason = _clean(failure_reason, REASON_MAX_LENGTH)
            if reason:
                changes["failure_reason"] = reason
                note = f"{note} - Reason: {reason}" if note else f"Reason: {reason}"

        if delivery_proof is not None and requested in (
            ShipmentStatus.DELIVERED.value,
            ShipmentStatus.FAILED.value,
        ):
            changes["delivery_proof"] = delivery_proof

        return shipment.with_status(
            ShipmentStatus(requested),
            note or f"Status updated to {requested}",
            **changes,
        )
