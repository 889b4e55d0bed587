"""Default registry composed from the bundled bounded contexts."""

from __future__ import annotations

from .domains import location, marketplace
from .registry import SchemaRegistry

BOUNDED_CONTEXTS = (marketplace, location)


def build_default_registry(source: str = "unknown-service") -> SchemaRegistry:
    """Build a registry with every bundled domain module registered."""
    registry = SchemaRegistry(default_source=source)
    for module in BOUNDED_CONTEXTS:
        registry.register_module(module.DOMAIN, module.SCHEMAS)
    return registry
