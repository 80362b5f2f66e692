"""
Error taxonomy for the logistics core.

Transition and coordinator errors are raised to the caller and carry an
enumerated ``reason`` plus the HTTP status the API layer maps them to.
Delivery errors never leave the push delivery service.
"""

from typing import Iterable, Optional


class LogisticsError(Exception):
    """Base class for errors returned synchronously to the caller."""

    reason = "error"
    status_code = 400

    def __init__(self, message: str, offending_ids: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.message = message
        self.offending_ids: list[str] = sorted(offending_ids) if offending_ids else []

    def to_dict(self) -> dict:
        return {
            "reason": self.reason,
            "detail": self.message,
            "offending_ids": self.offending_ids,
        }


class InvalidTransition(LogisticsError):
    """The requested (from, to, role) combination is not in the state machine."""

    reason = "invalid_transition"
    status_code = 400


class InvalidRequest(LogisticsError):
    """A command is malformed (missing assignee, empty manifest, ...)."""

    reason = "invalid_request"
    status_code = 400


class NotFound(LogisticsError):
    reason = "not_found"
    status_code = 404


class Forbidden(LogisticsError):
    """Wrong tenant, role, creator or assignee."""

    reason = "forbidden"
    status_code = 403


class Conflict(LogisticsError):
    """Stale version, already-completed manifest or double dispatch."""

    reason = "conflict"
    status_code = 409


# =============================================================================
# Delivery failures (contained inside push delivery)
# =============================================================================

class DeliveryFailure(Exception):
    """Base class for push delivery failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientDeliveryFailure(DeliveryFailure):
    """Provider unreachable, timed out or returned a generic error. Logged, never retried."""


class PermanentDeliveryFailure(DeliveryFailure):
    """The subscription no longer exists at the provider (404/410)."""
