"""
Manifest lifecycle coordinator.

Orchestrates the two multi-entity operations of branch transfer:
- create (dispatch): a manifest plus every listed shipment moved to
  In Transit to Destination
- receive: the manifest completed plus every shipment moved to At
  Destination Branch at the receiving branch

Design decisions:
- Each operation runs inside one store transaction; the first failure rolls
  everything back, so there is never a half-dispatched manifest
- Every precondition is checked before the first write, and failures name
  ALL offending shipment ids, not just the first
- Events are published only after the transaction commits
"""

import logging
from typing import Iterable, Optional

from pydantic import BaseModel

from notifications import events
from notifications.dispatcher import EventDispatcher, get_dispatcher
from shared.data_store import DataStore, get_data_store
from shared.errors import Conflict, Forbidden, InvalidRequest, InvalidTransition, NotFound
from shared.models import (
    Actor,
    Manifest,
    ManifestMeta,
    ManifestStatus,
    Role,
    Shipment,
    ShipmentStatus,
    enum_value,
    utcnow,
)

logger = logging.getLogger("manifest_coordinator")


# Only branch admins dispatch and receive
MANIFEST_ROLES = frozenset({Role.ADMIN.value, Role.SUPER_ADMIN.value})

MAX_PAGE_SIZE = 50

DIRECTIONS = ("incoming", "outgoing", "all")


class ManifestPage(BaseModel):
    """One page of a manifest listing."""
    data: list[Manifest]
    page: int
    limit: int
    total: int
    total_pages: int


class ManifestCoordinator:
    """
    Coordinates manifest dispatch and receipt.

    Example:
        coordinator = ManifestCoordinator()

        manifest = await coordinator.create_manifest(
            actor, "br-south", ["shp-001", "shp-002"]
        )
        # ManifestCreated and ManifestDispatched have been published

        await coordinator.receive_manifest(manifest.id, south_admin)
    """

    def __init__(
        self,
        data_store: Optional[DataStore] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        self.data_store = data_store or get_data_store()
        self.dispatcher = dispatcher or get_dispatcher()

    def _require_manifest_role(self, actor: Actor) -> None:
        if enum_value(actor.role) not in MANIFEST_ROLES:
            raise Forbidden(f"Role '{enum_value(actor.role)}' may not handle manifests")

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def create_manifest(
        self,
        actor: Actor,
        to_branch: str,
        shipment_ids: Iterable[str],
        meta: Optional[ManifestMeta] = None,
    ) -> Manifest:
        """
        Create a manifest and put every listed shipment in transit.

        Raises:
            Forbidden: actor is not an admin, or a shipment belongs elsewhere
            InvalidRequest: empty list, unknown or same-branch destination,
                shipment routed to another destination
            NotFound: a shipment does not exist
            Conflict: a shipment already travels on an open manifest
            InvalidTransition: a shipment is not At Origin Branch
        """
        self._require_manifest_role(actor)

        ids = list(dict.fromkeys(str(sid).strip() for sid in shipment_ids if str(sid).strip()))
        if not ids:
            raise InvalidRequest("A manifest needs at least one shipment")

        to_branch = (to_branch or "").strip()
        if not to_branch:
            raise InvalidRequest("A destination branch is required")
        if to_branch == actor.tenant_id:
            raise InvalidRequest("Cannot dispatch a manifest to your own branch")
        if self.data_store.get_branch(to_branch) is None:
            raise NotFound(f"Branch not found: {to_branch}")

        meta = meta or ManifestMeta()

        with self.data_store.transaction():
            shipments = self.data_store.get_shipments(ids)
            self._check_dispatchable(actor, to_branch, ids, shipments)

            manifest = self.data_store.add_manifest(Manifest(
                from_branch=actor.tenant_id,
                to_branch=to_branch,
                shipment_ids=ids,
                created_by=actor.user_id,
                vehicle_number=meta.vehicle_number,
                driver_name=meta.driver_name,
                notes=meta.notes,
            ))

            note = f"Dispatched via manifest {manifest.id}"
            for sid in ids:
                self.data_store.save_shipment(
                    shipments[sid].with_status(ShipmentStatus.IN_TRANSIT, note)
                )

        logger.info(
            f"Manifest {manifest.id} dispatched {actor.tenant_id} -> {to_branch} "
            f"with {len(ids)} shipments"
        )
        self.dispatcher.publish(events.manifest_created(manifest, actor.user_id))
        self.dispatcher.publish(events.manifest_dispatched(manifest, actor.user_id))
        return manifest

    def _check_dispatchable(
        self,
        actor: Actor,
        to_branch: str,
        ids: list[str],
        shipments: dict[str, Shipment],
    ) -> None:
        missing = [sid for sid in ids if sid not in shipments]
        if missing:
            raise NotFound("Shipments not found", missing)

        foreign = [
            sid for sid in ids
            if shipments[sid].current_branch != actor.tenant_id
            or shipments[sid].origin_branch != actor.tenant_id
        ]
        if foreign:
            raise Forbidden("Shipments are not held by your branch", foreign)

        on_manifest = [
            sid for sid in ids
            if self.data_store.get_open_manifest_for_shipment(sid) is not None
        ]
        if on_manifest:
            raise Conflict("Shipments already travel on an open manifest", on_manifest)

        wrong_status = [
            sid for sid in ids
            if enum_value(shipments[sid].status) != ShipmentStatus.AT_ORIGIN_BRANCH.value
        ]
        if wrong_status:
            raise InvalidTransition(
                f"Shipments must be '{ShipmentStatus.AT_ORIGIN_BRANCH.value}' to dispatch",
                wrong_status,
            )

        misrouted = [sid for sid in ids if shipments[sid].destination_branch != to_branch]
        if misrouted:
            raise InvalidRequest(f"Shipments are not routed to {to_branch}", misrouted)

    # =========================================================================
    # Receive
    # =========================================================================

    async def receive_manifest(self, manifest_id: str, actor: Actor) -> Manifest:
        """
        Complete a manifest at the destination branch.

        Raises:
            NotFound: manifest does not exist
            Forbidden: actor is not an admin of the destination branch
            Conflict: manifest already completed (nothing is written)
        """
        with self.data_store.transaction():
            manifest = self.data_store.get_manifest(manifest_id)
            if manifest is None:
                raise NotFound(f"Manifest not found: {manifest_id}", [manifest_id])
            self._require_manifest_role(actor)
            if actor.tenant_id != manifest.to_branch:
                raise Forbidden("Only the destination branch can receive this manifest", [manifest_id])
            if enum_value(manifest.status) != ManifestStatus.IN_TRANSIT.value:
                raise Conflict(f"Manifest {manifest_id} has already been received", [manifest_id])

            shipments = self.data_store.get_shipments(manifest.shipment_ids)
            missing = [sid for sid in manifest.shipment_ids if sid not in shipments]
            if missing:
                raise NotFound("Manifest references missing shipments", missing)
            not_in_transit = [
                sid for sid in manifest.shipment_ids
                if enum_value(shipments[sid].status) != ShipmentStatus.IN_TRANSIT.value
            ]
            if not_in_transit:
                raise Conflict("Shipments on the manifest are no longer in transit", not_in_transit)

            received = self.data_store.save_manifest(manifest.model_copy(update={
                "status": ManifestStatus.COMPLETED,
                "received_at": utcnow(),
            }))

            note = f"Received via manifest {manifest.id}"
            for sid in manifest.shipment_ids:
                self.data_store.save_shipment(shipments[sid].with_status(
                    ShipmentStatus.AT_DESTINATION_BRANCH,
                    note,
                    current_branch=manifest.to_branch,
                ))

        logger.info(f"Manifest {received.id} received at {received.to_branch}")
        self.dispatcher.publish(events.manifest_arrived(received, actor.user_id))
        return received

    # =========================================================================
    # Queries
    # =========================================================================

    def list_manifests(
        self,
        actor: Actor,
        direction: str = "all",
        status: Optional[ManifestStatus] = None,
        page: int = 1,
        limit: int = 20,
    ) -> ManifestPage:
        """Manifests touching the actor's branch, most recently dispatched first."""
        if direction not in DIRECTIONS:
            raise InvalidRequest(f"direction must be one of {', '.join(DIRECTIONS)}")
        status = enum_value(status) if status else None
        page = max(1, page)
        limit = max(1, min(limit, MAX_PAGE_SIZE))

        tenant = actor.tenant_id
        if direction == "incoming":
            matches = self.data_store.list_manifests(to_branch=tenant, status=status)
        elif direction == "outgoing":
            matches = self.data_store.list_manifests(from_branch=tenant, status=status)
        else:
            matches = [
                m for m in self.data_store.list_manifests(status=status)
                if tenant in (m.from_branch, m.to_branch)
            ]

        total = len(matches)
        start = (page - 1) * limit
        return ManifestPage(
            data=matches[start:start + limit],
            page=page,
            limit=limit,
            total=total,
            total_pages=(total + limit - 1) // limit,
        )

    def available_shipments(self, actor: Actor, destination_branch: Optional[str] = None) -> list[Shipment]:
        """Shipments the actor's branch could dispatch now, newest first."""
        return [
            s for s in self.data_store.find_shipments(
                current_branch=actor.tenant_id,
                status=ShipmentStatus.AT_ORIGIN_BRANCH,
                destination_branch=destination_branch,
            )
            if not s.is_local and self.data_store.get_open_manifest_for_shipment(s.id) is None
        ]
