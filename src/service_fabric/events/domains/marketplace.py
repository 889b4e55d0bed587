"""Marketplace bounded context: vendor lifecycle events."""

from __future__ import annotations

from service_fabric.events.schema import EventData, EventSchema, GeoPoint

DOMAIN = "marketplace"


class VendorOnboarded(EventData):
    vendor_id: str
    owner_id: str
    location: GeoPoint | None = None
    timestamp: str | None = None


class VendorProfileUpdated(EventData):
    vendor_id: str
    updated_fields: list[str]
    timestamp: str | None = None


class VendorDeactivated(EventData):
    vendor_id: str
    owner_id: str | None = None
    timestamp: str | None = None


SCHEMAS = [
    EventSchema(
        "marketplace.vendor.onboarded",
        VendorOnboarded,
        context_fields=("vendorId", "ownerId"),
    ),
    EventSchema(
        "marketplace.vendor.profile_updated",
        VendorProfileUpdated,
        context_fields=("vendorId",),
    ),
    EventSchema(
        "marketplace.vendor.deactivated",
        VendorDeactivated,
        context_fields=("vendorId", "ownerId"),
    ),
]
