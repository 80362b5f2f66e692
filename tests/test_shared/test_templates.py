"""
Tests for notification templates.
"""

import pytest

from shared.models import EventKind
from shared.templates import TEMPLATES, build_push_payload, get_template, render_message


class TestTemplates:
    def test_every_event_kind_has_a_template(self):
        """Every event kind has a template."""
        assert set(TEMPLATES) == set(EventKind)

    @pytest.mark.parametrize("kind, expected", [
        (EventKind.SHIPMENT_CREATED, "New shipment created - TRK-1"),
        (EventKind.MANIFEST_DISPATCHED, "Manifest dispatched - TRK-1"),
        (EventKind.DELIVERED, "Delivery completed - TRK-1"),
        (EventKind.DELIVERY_FAILED, "Delivery failed - TRK-1"),
    ])
    def test_render_message(self, kind, expected):
        """Messages embed the tracking id."""
        assert render_message(kind, "TRK-1") == expected

    def test_accepts_plain_string_kind(self):
        """Templates can be looked up by plain string."""
        assert get_template("out_for_delivery").title == "Out for Delivery"

    def test_unknown_kind(self):
        """Unknown kinds have no template."""
        with pytest.raises(ValueError):
            get_template("assignment")


class TestPushPayload:
    def test_delivery_payload(self):
        """Delivery payloads link to the shipment."""
        payload = build_push_payload(EventKind.DELIVERED, "TRK-N0RTH00007", shipment_id="shp-007")

        assert payload == {
            "title": "Delivery: TRK-N0RTH00007",
            "body": "Delivery completed",
            "url": "/deliverystaff?shipmentId=shp-007",
            "data": {
                "trackingId": "TRK-N0RTH00007",
                "status": "Delivered",
                "eventType": "delivered",
                "shipmentId": "shp-007",
            },
        }

    def test_manifest_payload_links_dispatch_board(self):
        """Manifest payloads carry the manifest id."""
        payload = build_push_payload(EventKind.MANIFEST_ARRIVED, "mf-001", manifest_id="mf-001")

        assert payload["title"] == "Manifest: mf-001"
        assert payload["url"] == "/dashboard/dispatch"
        assert payload["data"]["manifestId"] == "mf-001"
        assert "shipmentId" not in payload["data"]
