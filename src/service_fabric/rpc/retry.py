"""Bounded retry for transient failures.

Policies are tenacity ``AsyncRetrying`` objects with a fixed attempt budget
and a fixed delay.  An error is transient unless it is explicitly marked
otherwise:

- a :class:`~service_fabric.core.errors.NonRetryableError` (or any exception
  with ``retryable = False``);
- a gRPC ``AioRpcError`` whose status code is terminal.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from typing import Any, TypeVar

import grpc
import grpc.aio
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_DELAY_SECONDS = 1.0

TERMINAL_GRPC_CODES = frozenset(
    {
        grpc.StatusCode.CANCELLED,
        grpc.StatusCode.INVALID_ARGUMENT,
        grpc.StatusCode.NOT_FOUND,
        grpc.StatusCode.ALREADY_EXISTS,
        grpc.StatusCode.PERMISSION_DENIED,
        grpc.StatusCode.UNAUTHENTICATED,
        grpc.StatusCode.FAILED_PRECONDITION,
        grpc.StatusCode.OUT_OF_RANGE,
        grpc.StatusCode.UNIMPLEMENTED,
    }
)


def is_transient(exc: BaseException) -> bool:
    """Return True if *exc* is safe to retry."""
    if not isinstance(exc, Exception) or isinstance(exc, StopAsyncIteration):
        return False
    if getattr(exc, "retryable", True) is False:
        return False
    if isinstance(exc, grpc.aio.AioRpcError) and exc.code() in TERMINAL_GRPC_CODES:
        return False
    return True


def retry_policy(
    description: str,
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    delay: float = DEFAULT_DELAY_SECONDS,
    retry_if: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    on_retry: Callable[[int, BaseException], None] | None = None,
) -> AsyncRetrying:
    """Build a retry policy: up to *max_retries* retries, *delay* s apart.

    *sleep* is injectable so tests can observe the delays without waiting.
    """

    def _before(state: RetryCallState) -> None:
        logger.debug("%s (attempt %d)", description, state.attempt_number)

    def _before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "%s failed (attempt %d/%d), retrying in %.1fs: %s",
            description,
            state.attempt_number,
            max_retries + 1,
            delay,
            exc,
        )
        if on_retry is not None and exc is not None:
            on_retry(state.attempt_number, exc)

    kwargs: dict[str, Any] = {}
    if sleep is not None:
        kwargs["sleep"] = sleep

    return AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_fixed(delay),
        retry=retry_if_exception(retry_if),
        before=_before,
        before_sleep=_before_sleep,
        reraise=True,
        **kwargs,
    )


_DONE = object()


async def retry_stream(
    factory: Callable[[], AsyncIterable[T]],
    description: str,
    **policy_kwargs: Any,
) -> AsyncIterator[T]:
    """Iterate the stream produced by *factory*, re-opening it on failure.

    A retried attempt calls *factory* again, so items emitted before the
    failure are emitted again by the new stream.  The final error is raised
    to the consumer once the budget is spent.
    """
    channel: asyncio.Queue[tuple[bool, Any]] = asyncio.Queue(maxsize=1)

    async def attempt() -> None:
        async for item in factory():
            await channel.put((True, item))

    async def pump() -> None:
        try:
            await retry_policy(description, **policy_kwargs)(attempt)
        except Exception as exc:
            await channel.put((False, exc))
        else:
            await channel.put((False, _DONE))

    task = asyncio.create_task(pump(), name=f"retry-stream-{description}")
    try:
        while True:
            is_item, value = await channel.get()
            if is_item:
                yield value
                continue
            if value is _DONE:
                return
            raise value
    finally:
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
