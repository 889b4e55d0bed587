"""Event name -> schema registry.

Maps event names to their payload models and the subset of payload fields
promoted into the envelope ``context``.  Used to validate payloads and build
envelopes at emit time.

Composition is additive: each bounded-context module contributes its own
schemas through :meth:`SchemaRegistry.register_module`.  Every check that can
be done at registration (grammar, allow-list, ownership, duplicates, context
fields) is done there, so a misconfigured registry fails at process start
rather than on the first emit.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from pydantic import ValidationError

from service_fabric.core.errors import RegistryError, SchemaIssue, SchemaViolation
from service_fabric.core.ids import iso_now, new_id

from .domains import DOMAIN_SUBDOMAINS, allow_list_problem
from .envelope import EventEnvelope, EventMeta
from .schema import EventSchema

logger = logging.getLogger(__name__)


def _issue_from_error(error: Mapping[str, Any]) -> SchemaIssue:
    loc = ".".join(str(p) for p in error.get("loc", ())) or "<root>"
    return SchemaIssue(field=loc, expected=error.get("msg", "invalid value"))


class SchemaRegistry:
    """Registry of event schemas.

    Parameters
    ----------
    allowed:
        Domain -> allowed subdomains.  Defaults to ``DOMAIN_SUBDOMAINS``.
    default_source:
        ``meta.source`` stamped on envelopes when the caller gives none.
    """

    def __init__(
        self,
        allowed: Mapping[str, tuple[str, ...]] = DOMAIN_SUBDOMAINS,
        default_source: str = "unknown-service",
    ) -> None:
        self._allowed = allowed
        self._schemas: dict[str, EventSchema] = {}
        self.default_source = default_source

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, schema: EventSchema) -> None:
        """Register one schema.  Identical re-registration is a no-op."""
        problem = allow_list_problem(schema.name, self._allowed)
        if problem:
            raise RegistryError(f"Cannot register {schema.name!r}: {problem}")

        unknown = set(schema.context_fields) - schema.model.wire_fields()
        if unknown:
            raise RegistryError(
                f"Cannot register {schema.name!r}: context fields "
                f"{sorted(unknown)} are not fields of {schema.model.__name__}"
            )

        existing = self._schemas.get(schema.name)
        if existing is not None:
            if existing == schema:
                return
            raise RegistryError(
                f"Event {schema.name!r} already registered with a different schema"
            )

        self._schemas[schema.name] = schema
        logger.debug("Registered event schema %s v%s", schema.name, schema.version)

    def register_module(self, domain: str, schemas: Iterable[EventSchema]) -> None:
        """Register every schema contributed by one bounded context."""
        for schema in schemas:
            if schema.domain != domain:
                raise RegistryError(
                    f"Module for domain {domain!r} cannot register {schema.name!r}"
                )
            self.register(schema)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, name: str) -> EventSchema | None:
        return self._schemas.get(name)

    def names(self) -> list[str]:
        return sorted(self._schemas)

    def __contains__(self, name: object) -> bool:
        return name in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    def __iter__(self) -> Iterator[EventSchema]:
        return iter(self._schemas.values())

    # ------------------------------------------------------------------
    # Validation / envelopes
    # ------------------------------------------------------------------

    def validate(self, name: str, data: Any) -> dict[str, Any]:
        """Validate *data* against the schema registered for *name*.

        Returns the validated payload by wire name, with unset optional
        fields omitted.  Raises ``SchemaViolation`` listing every offending
        field.
        """
        schema = self._schemas.get(name)
        if schema is None:
            raise SchemaViolation(
                name, [SchemaIssue(field="name", expected="a registered event name")]
            )
        try:
            model = schema.model.model_validate(data)
        except ValidationError as exc:
            raise SchemaViolation(
                name, [_issue_from_error(e) for e in exc.errors()]
            ) from None
        return model.model_dump(mode="json", by_alias=True, exclude_unset=True)

    def build_envelope(
        self,
        name: str,
        data: Any,
        meta: Mapping[str, Any] | None = None,
    ) -> EventEnvelope:
        """Validate *data* and wrap it in a new envelope.

        *meta* may carry ``source`` and ``correlationId`` (or
        ``correlation_id``).  ``eventId``, ``meta.timestamp`` and
        ``meta.version`` are always stamped here.
        """
        validated = self.validate(name, data)

        problem = allow_list_problem(name, self._allowed)
        if problem:
            raise RegistryError(f"Refusing to build {name!r}: {problem}")

        schema = self._schemas[name]
        context = {
            f: validated[f]
            for f in schema.context_fields
            if validated.get(f) is not None
        }
        meta = meta or {}
        return EventEnvelope(
            event_id=new_id(),
            name=name,
            data=validated,
            context=context,
            meta=EventMeta(
                source=meta.get("source") or self.default_source,
                timestamp=iso_now(),
                version=schema.version,
                correlation_id=meta.get("correlationId") or meta.get("correlation_id"),
            ),
        )
