"""Building blocks for event payload schemas.

Payload models are Pydantic models with snake_case attributes and camelCase
wire names.  Unknown fields are rejected: an event payload is a contract
between services, not user input.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class EventData(BaseModel):
    """Base for all event payload models."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    @classmethod
    def wire_fields(cls) -> set[str]:
        """Field names as they appear on the wire."""
        return {f.alias or name for name, f in cls.model_fields.items()}


class GeoPoint(EventData):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


@dataclass(frozen=True)
class EventSchema:
    """Registration record for one event name."""

    name: str
    model: type[EventData]
    context_fields: tuple[str, ...] = ()
    version: str = "1.0"

    @property
    def domain(self) -> str:
        return self.name.split(".", 1)[0]
