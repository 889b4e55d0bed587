"""Location bounded context: position updates and presence."""

from __future__ import annotations

from service_fabric.events.schema import EventData, EventSchema, GeoPoint

DOMAIN = "location"


class VendorLocationUpdated(EventData):
    vendor_id: str
    location: GeoPoint
    timestamp: str | None = None


class UserLocationUpdated(EventData):
    user_id: str
    location: GeoPoint
    timestamp: str | None = None


class VendorAreaTransition(EventData):
    user_id: str
    vendor_id: str
    distance_meters: float | None = None
    timestamp: str | None = None


class ConnectionChanged(EventData):
    socket_id: str
    vendor_id: str | None = None
    user_id: str | None = None
    timestamp: str | None = None


SCHEMAS = [
    EventSchema(
        "location.vendor.location_updated",
        VendorLocationUpdated,
        context_fields=("vendorId",),
    ),
    EventSchema(
        "location.user.location_updated",
        UserLocationUpdated,
        context_fields=("userId",),
    ),
    EventSchema(
        "location.user.entered_vendor_area",
        VendorAreaTransition,
        context_fields=("userId", "vendorId"),
    ),
    EventSchema(
        "location.user.left_vendor_area",
        VendorAreaTransition,
        context_fields=("userId", "vendorId"),
    ),
    EventSchema(
        "location.vendor.connected",
        ConnectionChanged,
        context_fields=("vendorId",),
    ),
    EventSchema(
        "location.vendor.disconnected",
        ConnectionChanged,
        context_fields=("vendorId",),
    ),
    EventSchema(
        "location.user.connected",
        ConnectionChanged,
        context_fields=("userId",),
    ),
    EventSchema(
        "location.user.disconnected",
        ConnectionChanged,
        context_fields=("userId",),
    ),
]
