"""Message transport over a publish/subscribe broker.

One transport owns one broker connection per process.  It exposes queue-group
subscriptions (load-balanced delivery across sibling instances) and
fire-and-forget publish.

Delivery semantics are at-most-once:
- Each subscription runs its own consumer task that pulls one message at a
  time, JSON-decodes it and awaits the handler.
- A handler that raises is logged and counted; the loop keeps pulling, so a
  poison message never starves the subscription.  Retrying is the handler's
  job.
- An undecodable or non-object payload is dropped without calling the
  handler.
- Publish failures propagate to the caller as ``TransportUnavailable``; the
  transport never retries them.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import nats.errors

from service_fabric.core.enums import HandlerOutcome
from service_fabric.core.errors import TransportUnavailable
from service_fabric.core.ids import iso_now
from service_fabric.observability import metrics

from .connector import Connector

if TYPE_CHECKING:
    from service_fabric.events.envelope import EventEnvelope

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None] | None]

_BROKER_ERRORS = (nats.errors.Error, OSError, asyncio.TimeoutError)


@dataclass
class Subscription:
    """A (subject, queue group, handler) triple and its consumer task."""

    subject: str
    queue_group: str
    handler: Handler
    handle: Any = None
    task: asyncio.Task | None = None

    @property
    def key(self) -> str:
        return f"{self.subject}/{self.queue_group}"


class MessageTransport:
    """Broker client owning the process-wide connection.

    Parameters
    ----------
    connector:
        Async callable producing the broker connection.  Called once, lazily,
        on first use (or eagerly through :meth:`connect`).
    drain_timeout:
        Seconds :meth:`shutdown` waits for in-flight handlers before
        cancelling their tasks.
    on_handler_error:
        Optional callback ``(subject, queue_group, exc)`` invoked when a
        handler raises.  Useful for external alerting.
    """

    def __init__(
        self,
        connector: Connector,
        drain_timeout: float = 30.0,
        on_handler_error: Callable[[str, str, Exception], None] | None = None,
    ) -> None:
        self._connector = connector
        self._drain_timeout = drain_timeout
        self._on_handler_error = on_handler_error
        self._nc: Any = None
        self._connect_lock = asyncio.Lock()
        self._subscriptions: list[Subscription] = []
        self._closed = False

        # Observability
        self._error_counts: dict[str, int] = defaultdict(int)
        self._messages_processed: int = 0
        self._messages_dropped: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> Any:
        """Establish the broker connection if not already connected."""
        if self._closed:
            raise TransportUnavailable("Transport has been shut down")
        if self._nc is not None:
            return self._nc

        async with self._connect_lock:
            if self._nc is None:
                try:
                    self._nc = await self._connector()
                except _BROKER_ERRORS as exc:
                    logger.error("Failed to connect to broker: %s", exc)
                    raise TransportUnavailable("Broker unreachable") from exc
                logger.info("Connected to broker")
        return self._nc

    def is_connected(self) -> bool:
        return (
            not self._closed
            and self._nc is not None
            and not self._nc.is_closed
        )

    async def shutdown(self, drain_timeout: float | None = None) -> None:
        """Unsubscribe everything, let handlers drain, then close.

        Subscriptions are removed in registration order.  Consumer tasks
        still running after *drain_timeout* seconds are cancelled.
        """
        if self._closed:
            return
        self._closed = True
        timeout = self._drain_timeout if drain_timeout is None else drain_timeout

        for sub in self._subscriptions:
            try:
                await sub.handle.unsubscribe()
                logger.info("Unsubscribed from %s (queue=%s)", sub.subject, sub.queue_group)
            except _BROKER_ERRORS:
                logger.warning("Failed to unsubscribe %s", sub.key, exc_info=True)

        tasks = [s.task for s in self._subscriptions if s.task is not None]
        if tasks:
            _done, pending = await asyncio.wait(tasks, timeout=timeout)
            if pending:
                logger.warning(
                    "%d consumer(s) still busy after %.1fs drain; cancelling",
                    len(pending),
                    timeout,
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        if self._nc is not None:
            try:
                await self._nc.close()
            except _BROKER_ERRORS:
                logger.warning("Error closing broker connection", exc_info=True)
            logger.info("Broker connection closed")

    # ------------------------------------------------------------------
    # Publish / Subscribe
    # ------------------------------------------------------------------

    async def subscribe(
        self,
        subject: str,
        queue_group: str,
        handler: Handler,
    ) -> Subscription:
        """Register a queue-group subscription and start its consumer."""
        nc = await self.connect()
        try:
            handle = await nc.subscribe(subject, queue=queue_group)
        except _BROKER_ERRORS as exc:
            raise TransportUnavailable(f"Cannot subscribe to {subject}") from exc

        sub = Subscription(subject=subject, queue_group=queue_group, handler=handler, handle=handle)
        sub.task = asyncio.create_task(
            self._consume_loop(sub),
            name=f"consumer-{subject}-{queue_group}",
        )
        self._subscriptions.append(sub)
        logger.info("Subscribed to %s with queue group %s", subject, queue_group)
        return sub

    async def publish(self, subject: str, payload: Mapping[str, Any]) -> None:
        """Publish *payload* with a ``timestamp`` field added.  Fire-and-forget."""
        body = dict(payload)
        body["timestamp"] = iso_now()
        await self._send(subject, json.dumps(body, default=str).encode())

    async def publish_envelope(self, envelope: EventEnvelope) -> None:
        """Publish a structured envelope on the subject equal to its name."""
        await self._send(envelope.name, envelope.to_wire())

    async def _send(self, subject: str, data: bytes) -> None:
        nc = await self.connect()
        if nc.is_closed:
            raise TransportUnavailable("Broker connection is closed")
        try:
            await nc.publish(subject, data)
        except _BROKER_ERRORS as exc:
            logger.error("Failed to publish message to %s: %s", subject, exc)
            raise TransportUnavailable(f"Cannot publish to {subject}") from exc
        metrics.record_published(subject)
        logger.debug("Published message to %s", subject)

    # ------------------------------------------------------------------
    # Consumer loop
    # ------------------------------------------------------------------

    async def _consume_loop(self, sub: Subscription) -> None:
        """Pull messages one at a time until the subscription ends."""
        try:
            async for msg in sub.handle.messages:
                await self._process_message(sub, msg)
        except asyncio.CancelledError:
            raise
        except _BROKER_ERRORS:
            logger.exception("Consumer loop error for %s", sub.key)
        logger.debug("Consumer for %s stopped", sub.key)

    async def _process_message(self, sub: Subscription, msg: Any) -> None:
        try:
            payload = json.loads(msg.data)
        except (ValueError, UnicodeDecodeError):
            self._messages_dropped += 1
            metrics.record_handled(sub.subject, sub.queue_group, HandlerOutcome.DROPPED.value)
            logger.warning("Dropping undecodable message on %s (queue=%s)", msg.subject, sub.queue_group)
            return
        if not isinstance(payload, dict):
            self._messages_dropped += 1
            metrics.record_handled(sub.subject, sub.queue_group, HandlerOutcome.DROPPED.value)
            logger.warning(
                "Dropping non-object message on %s (queue=%s): %s",
                msg.subject,
                sub.queue_group,
                type(payload).__name__,
            )
            return

        logger.debug("Processing message from queue %s: %s", sub.queue_group, msg.subject)
        started = time.monotonic()
        try:
            result = sub.handler(payload)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._error_counts[sub.key] += 1
            metrics.record_handled(sub.subject, sub.queue_group, HandlerOutcome.ERROR.value)
            logger.exception("Handler error on %s (queue=%s)", msg.subject, sub.queue_group)

            if self._on_handler_error is not None:
                try:
                    self._on_handler_error(msg.subject, sub.queue_group, exc)
                except Exception:
                    logger.warning("on_handler_error callback failed", exc_info=True)
            return
        finally:
            metrics.record_handler_duration(
                sub.subject, sub.queue_group, time.monotonic() - started
            )

        self._messages_processed += 1
        metrics.record_handled(sub.subject, sub.queue_group, HandlerOutcome.OK.value)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    def get_error_counts(self) -> dict[str, int]:
        """Return per-subject/queue-group handler error counts."""
        return dict(self._error_counts)

    @property
    def messages_processed(self) -> int:
        """Total messages successfully handled."""
        return self._messages_processed

    @property
    def messages_dropped(self) -> int:
        """Messages discarded because they could not be decoded."""
        return self._messages_dropped
