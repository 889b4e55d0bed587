"""In-memory broker for tests and single-process runs.

No external dependencies.  Exposes the same client surface the transport
uses from the NATS client (``subscribe(subject, queue=...)``, async
``messages`` iteration, ``publish(subject, bytes)``, ``close()``), so a
:class:`~service_fabric.bus.transport.MessageTransport` cannot tell the two
apart.

Semantics follow the real broker:
- every subscriber without a queue group receives each matching message;
- within a queue group exactly one member receives it (round-robin);
- ``*`` / ``>`` wildcards in subscription subjects.

Several :class:`MemoryConnection` objects may share one
:class:`MemoryBroker`, which is how tests model sibling service instances.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from .subjects import is_valid_pattern, subject_matches

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemoryMessage:
    """A delivered message."""

    subject: str
    data: bytes
    reply: str = ""
    headers: dict[str, str] | None = None


@dataclass
class MemorySubscription:
    """One subscription held by a :class:`MemoryConnection`."""

    subject: str
    queue: str
    connection: MemoryConnection
    _queue: asyncio.Queue[MemoryMessage | None] = field(default_factory=asyncio.Queue)
    _closed: bool = False

    @property
    def messages(self) -> AsyncIterator[MemoryMessage]:
        return self._iterate()

    @property
    def pending_msgs(self) -> int:
        return self._queue.qsize()

    async def _iterate(self) -> AsyncIterator[MemoryMessage]:
        while True:
            msg = await self._queue.get()
            if msg is None:
                return
            yield msg

    async def next_msg(self, timeout: float | None = 1.0) -> MemoryMessage:
        msg = await asyncio.wait_for(self._queue.get(), timeout)
        if msg is None:
            raise ConnectionError("subscription closed")
        return msg

    async def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.connection._broker._remove(self)
        # Wake the consumer; messages already queued are still delivered.
        self._queue.put_nowait(None)

    def _deliver(self, msg: MemoryMessage) -> None:
        if not self._closed:
            self._queue.put_nowait(msg)


class MemoryBroker:
    """Shared in-process broker state (the "server")."""

    def __init__(self) -> None:
        self._subscriptions: list[MemorySubscription] = []
        self._round_robin: dict[str, int] = defaultdict(int)
        self._history: list[MemoryMessage] = []

    async def connect(self) -> MemoryConnection:
        return MemoryConnection(self)

    def _add(self, sub: MemorySubscription) -> None:
        self._subscriptions.append(sub)

    def _remove(self, sub: MemorySubscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    def _route(self, msg: MemoryMessage) -> int:
        """Deliver *msg* to every matching interest.  Returns deliveries."""
        self._history.append(msg)
        groups: dict[str, list[MemorySubscription]] = defaultdict(list)
        delivered = 0

        for sub in self._subscriptions:
            if not subject_matches(sub.subject, msg.subject):
                continue
            if sub.queue:
                groups[sub.queue].append(sub)
            else:
                sub._deliver(msg)
                delivered += 1

        for queue, members in groups.items():
            idx = self._round_robin[queue] % len(members)
            self._round_robin[queue] += 1
            members[idx]._deliver(msg)
            delivered += 1

        return delivered

    # ------------------------------------------------------------------
    # Testing helpers
    # ------------------------------------------------------------------

    def get_history(self, subject: str | None = None) -> list[MemoryMessage]:
        """Get published messages, optionally filtered by subject. For testing."""
        if subject is None:
            return list(self._history)
        return [m for m in self._history if m.subject == subject]

    def clear_history(self) -> None:
        self._history.clear()

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)


class MemoryConnection:
    """A client connection to a :class:`MemoryBroker`."""

    def __init__(self, broker: MemoryBroker) -> None:
        self._broker = broker
        self._subs: list[MemorySubscription] = []
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_connected(self) -> bool:
        return not self._closed

    async def subscribe(self, subject: str, queue: str = "") -> MemorySubscription:
        if self._closed:
            raise ConnectionError("connection closed")
        if not is_valid_pattern(subject):
            raise ValueError(f"invalid subject {subject!r}")
        sub = MemorySubscription(subject=subject, queue=queue, connection=self)
        self._subs.append(sub)
        self._broker._add(sub)
        return sub

    async def publish(self, subject: str, payload: bytes = b"") -> None:
        if self._closed:
            raise ConnectionError("connection closed")
        self._broker._route(MemoryMessage(subject=subject, data=payload))

    async def flush(self, timeout: float = 2.0) -> None:
        if self._closed:
            raise ConnectionError("connection closed")

    async def close(self) -> None:
        if self._closed:
            return
        for sub in self._subs:
            if not sub._closed:
                await sub.unsubscribe()
        self._closed = True
        logger.debug("Memory broker connection closed")
