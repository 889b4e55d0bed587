"""Event envelope, schema registry and typed emission."""

from service_fabric.events.catalog import build_default_registry
from service_fabric.events.emitter import EventEmitter
from service_fabric.events.envelope import EventEnvelope, EventMeta
from service_fabric.events.registry import SchemaRegistry
from service_fabric.events.schema import EventData, EventSchema, GeoPoint

__all__ = [
    "EventData",
    "EventEmitter",
    "EventEnvelope",
    "EventMeta",
    "EventSchema",
    "GeoPoint",
    "SchemaRegistry",
    "build_default_registry",
]
