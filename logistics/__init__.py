"""
Branch transfer and last-mile delivery state machine.

- ShipmentIntake registers shipments at their origin branch
- ManifestCoordinator moves batches of shipments between branches
- StatusTransitionValidator drives delivery at the destination branch

Every component publishes domain events and knows nothing about who is
notified.
"""

from logistics.intake import ShipmentIntake, generate_tracking_id
from logistics.manifests import ManifestCoordinator, ManifestPage
from logistics.transitions import StatusTransitionValidator, allowed_targets

__all__ = [
    "ShipmentIntake",
    "generate_tracking_id",
    "ManifestCoordinator",
    "ManifestPage",
    "StatusTransitionValidator",
    "allowed_targets",
]
