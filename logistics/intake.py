"""
Shipment intake: registers new shipments at their origin branch.
"""

import logging
import secrets
import string
from typing import Optional

from notifications import events
from notifications.dispatcher import EventDispatcher, get_dispatcher
from shared.data_store import DataStore, get_data_store
from shared.errors import Conflict, Forbidden, InvalidRequest, NotFound
from shared.models import Actor, Role, Shipment, ShipmentStatus, StatusHistoryEntry, enum_value

logger = logging.getLogger("shipment_intake")


TRACKING_PREFIX = "TRK-"
TRACKING_ALPHABET = string.ascii_uppercase + string.digits
TRACKING_LENGTH = 10

INTAKE_ROLES = frozenset({Role.ADMIN.value, Role.SUPER_ADMIN.value})


def generate_tracking_id() -> str:
    """TRK- followed by 10 random uppercase letters/digits."""
    return TRACKING_PREFIX + "".join(secrets.choice(TRACKING_ALPHABET) for _ in range(TRACKING_LENGTH))


class ShipmentIntake:
    """Creates shipments and publishes ShipmentCreated."""

    MAX_TRACKING_ATTEMPTS = 5

    def __init__(
        self,
        data_store: Optional[DataStore] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        self.data_store = data_store or get_data_store()
        self.dispatcher = dispatcher or get_dispatcher()

    def _new_tracking_id(self) -> str:
        for _ in range(self.MAX_TRACKING_ATTEMPTS):
            tracking_id = generate_tracking_id()
            if not self.data_store.tracking_id_exists(tracking_id):
                return tracking_id
        raise Conflict("Could not allocate a unique tracking id")

    async def create_shipment(
        self,
        actor: Actor,
        destination_branch: str,
        tracking_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> Shipment:
        """
        Register a shipment at the actor's branch.

        Raises:
            Forbidden: actor is not an admin
            InvalidRequest: no destination branch
            NotFound: unknown destination branch
            Conflict: tracking id already in use
        """
        if enum_value(actor.role) not in INTAKE_ROLES:
            raise Forbidden(f"Role '{enum_value(actor.role)}' may not create shipments")

        destination_branch = (destination_branch or "").strip()
        if not destination_branch:
            raise InvalidRequest("A destination branch is required")
        if self.data_store.get_branch(destination_branch) is None:
            raise NotFound(f"Branch not found: {destination_branch}")

        shipment = Shipment(
            tracking_id=tracking_id.strip() if tracking_id else self._new_tracking_id(),
            origin_branch=actor.tenant_id,
            destination_branch=destination_branch,
            current_branch=actor.tenant_id,
            status=ShipmentStatus.AT_ORIGIN_BRANCH,
            status_history=[StatusHistoryEntry(
                status=ShipmentStatus.AT_ORIGIN_BRANCH,
                note=note or "Shipment created",
            )],
            created_by=actor.user_id,
        )
        with self.data_store.transaction():
            shipment = self.data_store.add_shipment(shipment)

        logger.info(f"Shipment {shipment.id} ({shipment.tracking_id}) created at {shipment.origin_branch}")
        self.dispatcher.publish(events.shipment_created(shipment, actor.user_id))
        return shipment
