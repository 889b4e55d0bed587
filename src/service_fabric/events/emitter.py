"""Typed event emission.

``EventEmitter`` is the path application code uses to publish domain
events: it builds a validated envelope through the registry, stamps the
service name and the active correlation id, and hands it to the transport.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from service_fabric.bus.transport import MessageTransport
from service_fabric.core.context import current_context
from service_fabric.core.errors import TransportUnavailable
from service_fabric.rpc.retry import retry_policy

from .envelope import EventEnvelope
from .registry import SchemaRegistry

logger = logging.getLogger(__name__)


def _is_unavailable(exc: BaseException) -> bool:
    return isinstance(exc, TransportUnavailable)


class EventEmitter:
    """Build and publish envelopes on behalf of one service."""

    def __init__(
        self,
        registry: SchemaRegistry,
        transport: MessageTransport,
        source: str,
    ) -> None:
        self._registry = registry
        self._transport = transport
        self.source = source

    def build(
        self,
        name: str,
        data: Any,
        correlation_id: str | None = None,
    ) -> EventEnvelope:
        if correlation_id is None:
            ctx = current_context()
            correlation_id = ctx.correlation_id if ctx else None
        return self._registry.build_envelope(
            name,
            data,
            {"source": self.source, "correlationId": correlation_id},
        )

    async def emit(
        self,
        name: str,
        data: Any,
        correlation_id: str | None = None,
    ) -> EventEnvelope:
        """Validate, wrap and publish one event.

        Raises :class:`SchemaViolation` before anything is sent, and lets
        :class:`TransportUnavailable` propagate unchanged.
        """
        envelope = self.build(name, data, correlation_id)
        await self._transport.publish_envelope(envelope)
        logger.debug(
            "Emitted %s (event_id=%s)", envelope.name, envelope.event_id
        )
        return envelope

    async def emit_reliably(
        self,
        name: str,
        data: Any,
        correlation_id: str | None = None,
        *,
        max_retries: int = 3,
        delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> EventEnvelope:
        """Like :meth:`emit`, retrying while the broker is unavailable.

        The envelope is built once, so every attempt publishes the same
        ``eventId`` and consumers can deduplicate.
        """
        envelope = self.build(name, data, correlation_id)
        policy = retry_policy(
            f"Publish {name}",
            max_retries=max_retries,
            delay=delay,
            retry_if=_is_unavailable,
            sleep=sleep,
        )
        await policy(self._transport.publish_envelope, envelope)
        return envelope
