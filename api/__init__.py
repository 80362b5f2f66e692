"""
HTTP API for the logistics notification core.

A single FastAPI application exposing shipment intake, delivery status
transitions, manifest dispatch/receipt and the notification center.
"""

from api.main import app

__all__ = ["app"]
