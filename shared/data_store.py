"""
JSON-seeded data store for shipments, manifests and notifications.

This module provides the persistence primitives the transition validator,
the manifest coordinator and the notification engine call through. Seed data
is read from JSON fixture files; all writes live in memory.

Design decisions:
- Lazy loading of each collection, like separate collections in a database
- Every read returns a copy; writes are compare-and-set on ``version`` so a
  caller holding a stale read gets a Conflict instead of overwriting
- ``transaction()`` snapshots shipments and manifests and restores them if
  the block raises, so multi-document commands are all-or-nothing
- A re-entrant lock serializes writers (FastAPI runs sync work in threads)
- Notification and push subscription access always carries a tenant scope
"""

import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional

from shared.config import DEFAULT_DATA_DIR
from shared.errors import Conflict, NotFound
from shared.models import (
    Branch,
    Manifest,
    ManifestStatus,
    Notification,
    PushSubscription,
    Shipment,
    ShipmentStatus,
    User,
    utcnow,
)

logger = logging.getLogger("data_store")


class DataStore:
    """
    Central data store that loads JSON fixtures and manages in-memory state.

    In production each collection would be a database table; the contract
    the core relies on is the same:
    - copies out, compare-and-set in
    - a transaction boundary for multi-document commands
    - tenant-scoped notification and subscription queries
    """

    def __init__(self, data_dir: Optional[Path] = None):
        """
        Initialize the data store.

        Args:
            data_dir: Directory containing the JSON fixtures.
                     Defaults to ./data relative to project root.
        """
        self.data_dir = Path(data_dir) if data_dir is not None else DEFAULT_DATA_DIR

        self._lock = threading.RLock()
        self._transaction_depth = 0

        # In-memory collections - loaded lazily
        self._branches: Optional[dict[str, Branch]] = None
        self._users: Optional[dict[str, User]] = None
        self._shipments: Optional[dict[str, Shipment]] = None
        self._manifests: Optional[dict[str, Manifest]] = None
        self._notifications: Optional[list[Notification]] = None
        self._push_subscriptions: Optional[dict[str, PushSubscription]] = None

    # =========================================================================
    # Data Loading (lazy)
    # =========================================================================

    def _load_json(self, filename: str) -> list[dict]:
        """Load a JSON fixture file."""
        filepath = self.data_dir / filename
        if not filepath.exists():
            return []
        with open(filepath, "r") as f:
            return json.load(f)

    def _ensure_branches_loaded(self):
        if self._branches is None:
            data = self._load_json("branches.json")
            self._branches = {b["id"]: Branch(**b) for b in data}

    def _ensure_users_loaded(self):
        if self._users is None:
            data = self._load_json("users.json")
            self._users = {u["id"]: User(**u) for u in data}

    def _ensure_shipments_loaded(self):
        if self._shipments is None:
            data = self._load_json("shipments.json")
            self._shipments = {s["id"]: Shipment(**s) for s in data}

    def _ensure_manifests_loaded(self):
        if self._manifests is None:
            data = self._load_json("manifests.json")
            self._manifests = {m["id"]: Manifest(**m) for m in data}

    def _ensure_notifications_loaded(self):
        if self._notifications is None:
            data = self._load_json("notifications.json")
            self._notifications = [Notification(**n) for n in data]

    def _ensure_push_subscriptions_loaded(self):
        if self._push_subscriptions is None:
            data = self._load_json("push_subscriptions.json")
            self._push_subscriptions = {p["id"]: PushSubscription(**p) for p in data}

    # =========================================================================
    # Transactions
    # =========================================================================

    @contextmanager
    def transaction(self) -> Iterator["DataStore"]:
        """
        All-or-nothing block over shipments and manifests.

        Stored records are replaced, never mutated in place, so a shallow
        snapshot of each collection is enough to roll back. Nested
        transactions join the outermost one.
        """
        with self._lock:
            self._ensure_shipments_loaded()
            self._ensure_manifests_loaded()

            if self._transaction_depth:
                self._transaction_depth += 1
                try:
                    yield self
                finally:
                    self._transaction_depth -= 1
                return

            shipments_snapshot = dict(self._shipments)
            manifests_snapshot = dict(self._manifests)
            self._transaction_depth = 1
            try:
                yield self
            except BaseException:
                self._shipments = shipments_snapshot
                self._manifests = manifests_snapshot
                logger.warning("Transaction rolled back")
                raise
            finally:
                self._transaction_depth = 0

    # =========================================================================
    # Branch & User Operations
    # =========================================================================

    def get_branch(self, branch_id: str) -> Optional[Branch]:
        self._ensure_branches_loaded()
        return self._branches.get(branch_id)

    def get_branches(self) -> list[Branch]:
        self._ensure_branches_loaded()
        return list(self._branches.values())

    def get_user(self, user_id: str) -> Optional[User]:
        self._ensure_users_loaded()
        return self._users.get(user_id)

    def get_users_by_tenant(self, tenant_id: str, roles: Optional[Iterable[str]] = None) -> list[User]:
        """
        Get the users of one branch, optionally restricted to some roles.

        Used by the audience resolver to find a branch's admins/dispatchers.
        """
        self._ensure_users_loaded()
        wanted = {getattr(r, "value", r) for r in roles} if roles is not None else None
        return [
            u for u in self._users.values()
            if u.tenant_id == tenant_id and (wanted is None or u.role in wanted)
        ]

    # =========================================================================
    # Shipment Operations
    # =========================================================================

    def get_shipment(self, shipment_id: str) -> Optional[Shipment]:
        """Get a copy of a shipment by ID."""
        self._ensure_shipments_loaded()
        shipment = self._shipments.get(shipment_id)
        return shipment.model_copy(deep=True) if shipment else None

    def get_shipments(self, shipment_ids: Iterable[str]) -> dict[str, Shipment]:
        """Get copies of the shipments that exist among ``shipment_ids``."""
        self._ensure_shipments_loaded()
        return {
            sid: self._shipments[sid].model_copy(deep=True)
            for sid in shipment_ids
            if sid in self._shipments
        }

    def find_shipments(
        self,
        current_branch: Optional[str] = None,
        status: Optional[ShipmentStatus] = None,
        destination_branch: Optional[str] = None,
    ) -> list[Shipment]:
        """Query shipments, newest first."""
        self._ensure_shipments_loaded()
        matches = [
            s for s in self._shipments.values()
            if (current_branch is None or s.current_branch == current_branch)
            and (status is None or s.status == status)
            and (destination_branch is None or s.destination_branch == destination_branch)
        ]
        matches.sort(key=lambda s: s.created_at, reverse=True)
        return [s.model_copy(deep=True) for s in matches]

    def tracking_id_exists(self, tracking_id: str) -> bool:
        self._ensure_shipments_loaded()
        return any(s.tracking_id == tracking_id for s in self._shipments.values())

    def add_shipment(self, shipment: Shipment) -> Shipment:
        """Insert a new shipment."""
        with self._lock:
            self._ensure_shipments_loaded()
            if shipment.id in self._shipments:
                raise Conflict(f"Shipment already exists: {shipment.id}", [shipment.id])
            if self.tracking_id_exists(shipment.tracking_id):
                raise Conflict(f"Tracking id already in use: {shipment.tracking_id}", [shipment.id])
            self._shipments[shipment.id] = shipment.model_copy(deep=True)
            return shipment.model_copy(deep=True)

    def save_shipment(self, shipment: Shipment) -> Shipment:
        """
        Compare-and-set write of a shipment.

        ``shipment.version`` must match the stored version; the stored copy
        gets version + 1. A mismatch means the caller worked on a stale read.
        """
        with self._lock:
            self._ensure_shipments_loaded()
            current = self._shipments.get(shipment.id)
            if current is None:
                raise NotFound(f"Shipment not found: {shipment.id}", [shipment.id])
            if current.version != shipment.version:
                raise Conflict(
                    f"Shipment {shipment.id} was modified concurrently "
                    f"(expected version {shipment.version}, found {current.version})",
                    [shipment.id],
                )
            stored = shipment.model_copy(update={"version": shipment.version + 1}, deep=True)
            self._shipments[shipment.id] = stored
            return stored.model_copy(deep=True)

    # =========================================================================
    # Manifest Operations
    # =========================================================================

    def get_manifest(self, manifest_id: str) -> Optional[Manifest]:
        self._ensure_manifests_loaded()
        manifest = self._manifests.get(manifest_id)
        return manifest.model_copy(deep=True) if manifest else None

    def get_open_manifest_for_shipment(self, shipment_id: str) -> Optional[Manifest]:
        """Find the non-completed manifest a shipment travels on, if any."""
        self._ensure_manifests_loaded()
        for manifest in self._manifests.values():
            if manifest.is_open and shipment_id in manifest.shipment_ids:
                return manifest.model_copy(deep=True)
        return None

    def list_manifests(
        self,
        from_branch: Optional[str] = None,
        to_branch: Optional[str] = None,
        status: Optional[ManifestStatus] = None,
    ) -> list[Manifest]:
        """Query manifests, most recently dispatched first."""
        self._ensure_manifests_loaded()
        matches = [
            m for m in self._manifests.values()
            if (from_branch is None or m.from_branch == from_branch)
            and (to_branch is None or m.to_branch == to_branch)
            and (status is None or m.status == status)
        ]
        matches.sort(key=lambda m: m.dispatched_at, reverse=True)
        return [m.model_copy(deep=True) for m in matches]

    def add_manifest(self, manifest: Manifest) -> Manifest:
        with self._lock:
            self._ensure_manifests_loaded()
            if manifest.id in self._manifests:
                raise Conflict(f"Manifest already exists: {manifest.id}", [manifest.id])
            self._manifests[manifest.id] = manifest.model_copy(deep=True)
            return manifest.model_copy(deep=True)

    def save_manifest(self, manifest: Manifest) -> Manifest:
        """Compare-and-set write of a manifest (see save_shipment)."""
        with self._lock:
            self._ensure_manifests_loaded()
            current = self._manifests.get(manifest.id)
            if current is None:
                raise NotFound(f"Manifest not found: {manifest.id}", [manifest.id])
            if current.version != manifest.version:
                raise Conflict(f"Manifest {manifest.id} was modified concurrently", [manifest.id])
            stored = manifest.model_copy(update={"version": manifest.version + 1}, deep=True)
            self._manifests[manifest.id] = stored
            return stored.model_copy(deep=True)

    # =========================================================================
    # Notification Operations (always tenant + user scoped)
    # =========================================================================

    @staticmethod
    def _require_scope(tenant_id: str, user_id: str) -> None:
        if not tenant_id or not user_id:
            raise ValueError("Notification access requires both tenant_id and user_id")

    def insert_notifications(self, notifications: list[Notification]) -> int:
        """Insert a batch of notification rows. Returns the number inserted."""
        for n in notifications:
            self._require_scope(n.tenant_id, n.user_id)
        with self._lock:
            self._ensure_notifications_loaded()
            self._notifications.extend(n.model_copy() for n in notifications)
        return len(notifications)

    def _scoped_notifications(self, tenant_id: str, user_id: str) -> list[tuple[int, Notification]]:
        self._require_scope(tenant_id, user_id)
        self._ensure_notifications_loaded()
        return [
            (i, n) for i, n in enumerate(self._notifications)
            if n.tenant_id == tenant_id and n.user_id == user_id
        ]

    def list_notifications(
        self,
        tenant_id: str,
        user_id: str,
        read: Optional[bool] = None,
        limit: Optional[int] = None,
    ) -> list[Notification]:
        """
        Get one user's notifications within one tenant, newest first.

        Rows written in the same batch share a timestamp; insertion order
        breaks the tie.
        """
        rows = [
            (i, n) for i, n in self._scoped_notifications(tenant_id, user_id)
            if read is None or n.read == read
        ]
        rows.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        if limit is not None:
            rows = rows[:limit]
        return [n.model_copy() for _, n in rows]

    def count_unread(self, tenant_id: str, user_id: str) -> int:
        return sum(1 for _, n in self._scoped_notifications(tenant_id, user_id) if not n.read)

    def mark_notification_read(self, tenant_id: str, user_id: str, notification_id: str) -> Optional[Notification]:
        """Mark one notification read. Returns None if it is outside the scope."""
        with self._lock:
            for index, n in self._scoped_notifications(tenant_id, user_id):
                if n.id == notification_id:
                    updated = n.model_copy(update={"read": True, "updated_at": utcnow()})
                    self._notifications[index] = updated
                    return updated.model_copy()
        return None

    def mark_all_notifications_read(self, tenant_id: str, user_id: str) -> int:
        with self._lock:
            now = utcnow()
            changed = 0
            for index, n in self._scoped_notifications(tenant_id, user_id):
                if not n.read:
                    self._notifications[index] = n.model_copy(update={"read": True, "updated_at": now})
                    changed += 1
            return changed

    def count_notifications(self) -> int:
        """Total rows across all tenants (diagnostics and tests only)."""
        self._ensure_notifications_loaded()
        return len(self._notifications)

    # =========================================================================
    # Push Subscription Operations
    # =========================================================================

    def get_push_subscriptions(self, tenant_id: str, user_id: str) -> list[PushSubscription]:
        """Get every device subscription of one user within one tenant."""
        self._ensure_push_subscriptions_loaded()
        return [
            p.model_copy() for p in self._push_subscriptions.values()
            if p.tenant_id == tenant_id and p.user_id == user_id
        ]

    def get_push_subscription(self, subscription_id: str) -> Optional[PushSubscription]:
        self._ensure_push_subscriptions_loaded()
        sub = self._push_subscriptions.get(subscription_id)
        return sub.model_copy() if sub else None

    def upsert_push_subscription(self, subscription: PushSubscription) -> PushSubscription:
        """
        Save a subscription keyed by endpoint.

        A browser endpoint belongs to one device; re-subscribing from another
        account rebinds it to the new user.
        """
        with self._lock:
            self._ensure_push_subscriptions_loaded()
            for existing in self._push_subscriptions.values():
                if existing.endpoint == subscription.endpoint:
                    updated = existing.model_copy(update={
                        "tenant_id": subscription.tenant_id,
                        "user_id": subscription.user_id,
                        "auth_key": subscription.auth_key,
                        "p256dh_key": subscription.p256dh_key,
                    })
                    self._push_subscriptions[existing.id] = updated
                    return updated.model_copy()
            self._push_subscriptions[subscription.id] = subscription.model_copy()
            return subscription.model_copy()

    def delete_push_subscription(self, subscription_id: str) -> bool:
        with self._lock:
            self._ensure_push_subscriptions_loaded()
            return self._push_subscriptions.pop(subscription_id, None) is not None

    def delete_push_subscription_by_endpoint(self, tenant_id: str, user_id: str, endpoint: str) -> bool:
        with self._lock:
            for sub in self.get_push_subscriptions(tenant_id, user_id):
                if sub.endpoint == endpoint:
                    return self.delete_push_subscription(sub.id)
        return False

    # =========================================================================
    # Utility Methods
    # =========================================================================

    def reload(self):
        """
        Force reload all data from JSON files.

        Drops every in-memory write.
        """
        with self._lock:
            self._branches = None
            self._users = None
            self._shipments = None
            self._manifests = None
            self._notifications = None
            self._push_subscriptions = None


# Module-level singleton for convenience
# In tests, create a new DataStore instance with test fixtures
_default_store: Optional[DataStore] = None


def get_data_store() -> DataStore:
    """Get the default data store singleton."""
    global _default_store
    if _default_store is None:
        _default_store = DataStore()
    return _default_store
