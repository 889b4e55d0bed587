"""Tests for the schema registry and the event envelope."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from service_fabric.core.errors import RegistryError, SchemaViolation
from service_fabric.events.domains import DOMAIN_SUBDOMAINS, marketplace
from service_fabric.events.envelope import EventEnvelope, EventMeta
from service_fabric.events.registry import SchemaRegistry
from service_fabric.events.schema import EventData, EventSchema


class Ping(EventData):
    vendor_id: str


class OtherPing(EventData):
    vendor_id: str
    extra: int


# ===========================================================================
# Registration
# ===========================================================================


class TestRegistration:
    def test_default_registry_contains_bundled_domains(self, registry):
        assert "marketplace.vendor.onboarded" in registry
        assert "location.user.entered_vendor_area" in registry
        assert len(registry) == len(registry.names())

    def test_bad_grammar_rejected(self):
        reg = SchemaRegistry()
        with pytest.raises(RegistryError, match="domain.subdomain.action"):
            reg.register(EventSchema("Marketplace.Vendor.Ping", Ping))

    def test_trailing_newline_rejected(self):
        reg = SchemaRegistry()
        with pytest.raises(RegistryError, match="domain.subdomain.action"):
            reg.register(EventSchema("marketplace.vendor.ping\n", Ping))
        assert "marketplace.vendor.ping\n" not in reg

    def test_unknown_domain_rejected(self):
        reg = SchemaRegistry()
        with pytest.raises(RegistryError, match="unknown domain"):
            reg.register(EventSchema("shipping.vendor.ping", Ping))

    def test_subdomain_outside_allow_list_rejected(self):
        reg = SchemaRegistry()
        with pytest.raises(RegistryError, match="not allowed"):
            reg.register(EventSchema("marketplace.payments.ping", Ping))

    def test_module_cannot_register_other_domain(self):
        reg = SchemaRegistry()
        with pytest.raises(RegistryError, match="cannot register"):
            reg.register_module("marketplace", [EventSchema("location.vendor.ping", Ping)])

    def test_unknown_context_field_rejected(self):
        reg = SchemaRegistry()
        with pytest.raises(RegistryError, match="context fields"):
            reg.register(EventSchema("marketplace.vendor.ping", Ping, context_fields=("ownerId",)))

    def test_conflicting_duplicate_rejected(self):
        reg = SchemaRegistry()
        reg.register(EventSchema("marketplace.vendor.ping", Ping))
        with pytest.raises(RegistryError, match="already registered"):
            reg.register(EventSchema("marketplace.vendor.ping", OtherPing))

    def test_identical_reregistration_is_noop(self):
        reg = SchemaRegistry()
        reg.register_module(marketplace.DOMAIN, marketplace.SCHEMAS)
        reg.register_module(marketplace.DOMAIN, marketplace.SCHEMAS)
        assert len(reg) == len(marketplace.SCHEMAS)

    def test_registry_error_is_config_error(self):
        from service_fabric.core.errors import ConfigError

        assert issubclass(RegistryError, ConfigError)

    def test_custom_allow_list(self):
        reg = SchemaRegistry(allowed={"marketplace": ("vendor",)})
        reg.register(EventSchema("marketplace.vendor.ping", Ping))
        with pytest.raises(RegistryError):
            reg.register(EventSchema("marketplace.user.ping", Ping))
        assert "vendor" in DOMAIN_SUBDOMAINS["marketplace"]


# ===========================================================================
# Validation
# ===========================================================================


class TestValidate:
    def test_valid_payload_returned_unchanged(self, registry, vendor_onboarded_data):
        assert registry.validate("marketplace.vendor.onboarded", vendor_onboarded_data) == (
            vendor_onboarded_data
        )

    def test_unset_optional_fields_omitted(self, registry):
        data = {"vendorId": "v1", "ownerId": "u1"}
        assert registry.validate("marketplace.vendor.onboarded", data) == data

    def test_missing_field_is_listed(self, registry):
        with pytest.raises(SchemaViolation) as exc_info:
            registry.validate("marketplace.vendor.onboarded", {"vendorId": "v1"})
        assert exc_info.value.fields == ["ownerId"]
        assert exc_info.value.name == "marketplace.vendor.onboarded"

    def test_every_offending_field_is_listed(self, registry):
        with pytest.raises(SchemaViolation) as exc_info:
            registry.validate(
                "marketplace.vendor.onboarded",
                {"location": {"lat": 200, "lng": 0}},
            )
        fields = set(exc_info.value.fields)
        assert {"vendorId", "ownerId", "location.lat"} <= fields

    def test_unknown_field_rejected(self, registry):
        with pytest.raises(SchemaViolation) as exc_info:
            registry.validate(
                "marketplace.vendor.onboarded",
                {"vendorId": "v1", "ownerId": "u1", "surprise": True},
            )
        assert "surprise" in exc_info.value.fields

    def test_unknown_event_name(self, registry):
        with pytest.raises(SchemaViolation) as exc_info:
            registry.validate("marketplace.vendor.exploded", {})
        assert exc_info.value.fields == ["name"]


# ===========================================================================
# Envelopes
# ===========================================================================


class TestBuildEnvelope:
    def test_vendor_onboarded_envelope(self, registry, vendor_onboarded_data):
        env = registry.build_envelope(
            "marketplace.vendor.onboarded",
            vendor_onboarded_data,
            {"source": "vendor-service", "correlationId": "corr-1"},
        )
        assert env.name == "marketplace.vendor.onboarded"
        assert env.data == vendor_onboarded_data
        assert env.context == {"vendorId": "vendor-1", "ownerId": "user-1"}
        assert env.meta.source == "vendor-service"
        assert env.meta.version == "1.0"
        assert env.meta.correlation_id == "corr-1"
        assert env.event_id

    def test_absent_context_field_omitted(self, registry):
        env = registry.build_envelope("marketplace.vendor.deactivated", {"vendorId": "v1"})
        assert env.context == {"vendorId": "v1"}

    def test_default_source_and_no_correlation(self, registry):
        env = registry.build_envelope("marketplace.vendor.deactivated", {"vendorId": "v1"})
        assert env.meta.source == "test-service"
        assert "correlationId" not in env.to_dict()["meta"]

    def test_invalid_payload_builds_nothing(self, registry):
        with pytest.raises(SchemaViolation):
            registry.build_envelope("marketplace.vendor.onboarded", {"vendorId": "v1"})

    def test_input_not_aliased_by_envelope(self, registry, vendor_onboarded_data):
        env = registry.build_envelope("marketplace.vendor.onboarded", vendor_onboarded_data)
        vendor_onboarded_data["vendorId"] = "changed"
        assert env.data["vendorId"] == "vendor-1"

    def test_envelope_is_frozen(self, registry):
        env = registry.build_envelope("marketplace.vendor.deactivated", {"vendorId": "v1"})
        with pytest.raises(ValidationError):
            env.name = "marketplace.vendor.onboarded"

    def test_direct_construction_checks_grammar(self):
        meta = EventMeta(source="s", timestamp="t", version="1.0")
        with pytest.raises(ValidationError):
            EventEnvelope(event_id="e", name="not-an-event", data={}, context={}, meta=meta)
        with pytest.raises(ValidationError):
            EventEnvelope(
                event_id="e", name="marketplace.vendor.onboarded\n", data={}, context={}, meta=meta
            )

    def test_wire_shape(self, registry, vendor_onboarded_data):
        env = registry.build_envelope(
            "marketplace.vendor.onboarded", vendor_onboarded_data, {"correlationId": "c"}
        )
        wire = json.loads(env.to_wire())
        assert set(wire) == {"eventId", "name", "data", "context", "meta"}
        assert set(wire["meta"]) == {"source", "timestamp", "version", "correlationId"}
        assert EventEnvelope.from_wire(env.to_wire()) == env
