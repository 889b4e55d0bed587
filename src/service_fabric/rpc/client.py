"""Request-scoped RPC client wrapper.

``RpcClient`` decorates a generated stub so that every call carries the
request's identity and correlation metadata.  Create one per inbound request:
it captures the Correlation Context at construction, so metadata never leaks
between unrelated requests.

Single-result calls (awaitables) are returned untouched: they are treated as
at-most-once.  Streaming calls (async iterables) are wrapped in the bounded
retry from :mod:`service_fabric.rpc.retry`.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from service_fabric.core.context import CorrelationContext, current_context
from service_fabric.core.errors import MethodNotFound
from service_fabric.core.ids import new_id
from service_fabric.observability import metrics

from .retry import DEFAULT_DELAY_SECONDS, DEFAULT_MAX_RETRIES, retry_stream

logger = logging.getLogger(__name__)

REQUEST_ID_KEY = "x-request-id"
CORRELATION_ID_KEY = "x-correlation-id"
USER_ID_KEY = "x-user-id"
EXTERNAL_ID_KEY = "x-external-id"

Metadata = tuple[tuple[str, str], ...]


class RpcClient:
    """Per-request wrapper around a generated RPC stub.

    Parameters
    ----------
    stub:
        Generated client stub (e.g. ``VendorServiceStub(channel)``).
    service_name:
        Used in logs, metrics and errors.
    context:
        Correlation Context to stamp; defaults to the one bound to the
        running task, or a fresh one when called outside a request.
    max_retries, retry_delay:
        Retry budget for streaming calls.
    sleep:
        Injectable delay function for the retry policy.
    """

    def __init__(
        self,
        stub: Any,
        service_name: str,
        context: CorrelationContext | None = None,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_DELAY_SECONDS,
        sleep: Any = None,
    ) -> None:
        self._stub = stub
        self.service_name = service_name
        self.context = context or current_context() or CorrelationContext()
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._sleep = sleep

    @classmethod
    def for_context(
        cls,
        stub: Any,
        service_name: str,
        context: CorrelationContext,
        **kwargs: Any,
    ) -> RpcClient:
        return cls(stub, service_name, context, **kwargs)

    @classmethod
    def for_user(
        cls,
        stub: Any,
        service_name: str,
        user_id: str,
        external_id: str | None = None,
        request_id: str | None = None,
        **kwargs: Any,
    ) -> RpcClient:
        """Build a client for an explicit identity (e.g. a WebSocket session).

        Keeps the active correlation id when there is one.
        """
        parent = current_context()
        ctx = CorrelationContext(
            request_id=request_id or new_id(),
            correlation_id=parent.correlation_id if parent else new_id(),
            user_id=user_id,
            external_id=external_id,
            protocol=parent.protocol if parent else None,
        )
        return cls(stub, service_name, ctx, **kwargs)

    def build_metadata(self, extra: Sequence[tuple[str, str]] | None = None) -> Metadata:
        """Call metadata for the bound context plus any *extra* pairs."""
        ctx = self.context
        pairs: list[tuple[str, str]] = [
            (REQUEST_ID_KEY, ctx.request_id),
            (CORRELATION_ID_KEY, ctx.correlation_id),
        ]
        if ctx.user_id:
            pairs.append((USER_ID_KEY, ctx.user_id))
        if ctx.external_id:
            pairs.append((EXTERNAL_ID_KEY, ctx.external_id))
        if extra:
            pairs.extend(extra)
        return tuple(pairs)

    def invoke(
        self,
        method_name: str,
        request: Any,
        *,
        timeout: float | None = None,
        metadata: Sequence[tuple[str, str]] | None = None,
    ) -> Any:
        """Invoke *method_name* on the stub with context metadata attached.

        Returns the stub's awaitable unchanged for single-result calls, or a
        retrying async iterator for streaming calls.  The caller's *timeout*
        is passed through; no other deadline is added.
        """
        method = getattr(self._stub, method_name, None)
        if method is None or not callable(method):
            raise MethodNotFound(self.service_name, method_name)

        kwargs: dict[str, Any] = {"metadata": self.build_metadata(metadata)}
        if timeout is not None:
            kwargs["timeout"] = timeout

        logger.debug(
            "Making RPC request %s.%s",
            self.service_name,
            method_name,
            extra={
                "request_id": self.context.request_id,
                "user_id": self.context.user_id,
            },
        )
        result = method(request, **kwargs)

        if not hasattr(result, "__aiter__"):
            metrics.record_rpc_call(self.service_name, method_name, "unary")
            return result

        metrics.record_rpc_call(self.service_name, method_name, "stream")
        pending = [result]

        def open_stream() -> Any:
            if pending:
                return pending.pop()
            return method(request, **kwargs)

        def on_retry(attempt: int, exc: BaseException) -> None:
            metrics.record_rpc_retry(self.service_name, method_name)

        policy_kwargs: dict[str, Any] = {
            "max_retries": self._max_retries,
            "delay": self._retry_delay,
            "on_retry": on_retry,
        }
        if self._sleep is not None:
            policy_kwargs["sleep"] = self._sleep

        return retry_stream(
            open_stream,
            f"RPC call to {self.service_name}.{method_name}",
            **policy_kwargs,
        )
