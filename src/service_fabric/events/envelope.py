"""Event envelope: the unit exchanged over the broker.

Envelopes are built by :meth:`SchemaRegistry.build_envelope`, which validates
the payload first.  Once constructed an envelope is frozen.

Wire shape (camelCase)::

    {"eventId": ..., "name": "marketplace.vendor.onboarded",
     "data": {...}, "context": {...},
     "meta": {"source": ..., "timestamp": ..., "version": ...,
              "correlationId": ...}}
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from .domains import is_valid_event_name

_ENVELOPE_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    frozen=True,
    extra="forbid",
)


class EventMeta(BaseModel):
    """Provenance of an envelope."""

    model_config = _ENVELOPE_CONFIG

    source: str
    timestamp: str
    version: str
    correlation_id: str | None = None


class EventEnvelope(BaseModel):
    """Validated, immutable wrapper around one domain event."""

    model_config = _ENVELOPE_CONFIG

    event_id: str
    name: str
    data: dict[str, Any]
    context: dict[str, Any]
    meta: EventMeta

    @field_validator("name")
    @classmethod
    def _name_matches_grammar(cls, v: str) -> str:
        if not is_valid_event_name(v):
            raise ValueError(f"{v!r} does not match domain.subdomain.action")
        return v

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready dict using wire names; absent correlation id omitted."""
        payload = self.model_dump(mode="json", by_alias=True)
        if payload["meta"].get("correlationId") is None:
            payload["meta"].pop("correlationId", None)
        return payload

    def to_wire(self) -> bytes:
        return json.dumps(self.to_dict()).encode()

    @classmethod
    def from_wire(cls, payload: Mapping[str, Any] | bytes | str) -> EventEnvelope:
        """Rebuild an envelope received from the broker."""
        if isinstance(payload, (bytes, str)):
            return cls.model_validate_json(payload)
        return cls.model_validate(dict(payload))
