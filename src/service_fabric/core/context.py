"""Request-scoped correlation context.

A ``CorrelationContext`` is created at the protocol boundary (HTTP, WebSocket
or RPC entry), bound for the duration of the request with
:func:`bind_context`, and read implicitly by anything that needs to stamp
outbound work: the event emitter copies ``correlation_id`` into envelope
metadata and the RPC client turns the ids into call metadata.

Propagation uses a ``ContextVar`` so concurrent asyncio tasks never see each
other's context.  Contexts are never persisted.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

import structlog

from .enums import AuthProtocol
from .ids import new_id, utc_now

_current: ContextVar[CorrelationContext | None] = ContextVar(
    "correlation_context", default=None
)


@dataclass(frozen=True)
class CorrelationContext:
    """Identifiers for one in-flight request."""

    request_id: str = field(default_factory=new_id)
    correlation_id: str = field(default_factory=new_id)
    user_id: str | None = None
    external_id: str | None = None
    protocol: AuthProtocol | None = None
    created_at: datetime = field(default_factory=utc_now)
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def with_user(self, user_id: str, external_id: str | None = None) -> CorrelationContext:
        return replace(self, user_id=user_id, external_id=external_id)

    def log_fields(self) -> dict[str, str]:
        """Fields bound into every log line while this context is active."""
        fields = {
            "request_id": self.request_id,
            "correlation_id": self.correlation_id,
        }
        if self.user_id:
            fields["user_id"] = self.user_id
        return fields


def current_context() -> CorrelationContext | None:
    """Return the context bound to the running task, if any."""
    return _current.get()


@contextmanager
def bind_context(ctx: CorrelationContext) -> Iterator[CorrelationContext]:
    """Bind *ctx* (and its log fields) for the duration of the block."""
    token = _current.set(ctx)
    with structlog.contextvars.bound_contextvars(**ctx.log_fields()):
        try:
            yield ctx
        finally:
            _current.reset(token)


@contextmanager
def bind_user(
    user_id: str,
    external_id: str | None = None,
    request_id: str | None = None,
) -> Iterator[CorrelationContext]:
    """Bind a context for an explicit user, e.g. inside a WebSocket handler.

    Reuses the active context's correlation id when there is one.
    """
    parent = current_context()
    ctx = CorrelationContext(
        request_id=request_id or new_id(),
        correlation_id=parent.correlation_id if parent else new_id(),
        user_id=user_id,
        external_id=external_id,
        protocol=parent.protocol if parent else None,
    )
    with bind_context(ctx) as bound:
        yield bound
