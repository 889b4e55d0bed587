"""Broker connector factory.

A connector is an async callable returning a broker connection.  The
transport owns the connection it produces; nothing here holds one.

- ``nats://`` / ``tls://`` URLs: NATS via nats-py, with a bounded reconnect
  policy taken from :class:`~service_fabric.core.config.BrokerConfig`.
- ``memory://``: an in-process :class:`MemoryBroker` (tests, local runs).
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

import nats

from service_fabric.core.config import BrokerConfig, Settings

from .memory_broker import MemoryBroker

logger = logging.getLogger(__name__)

Connector = Callable[[], Awaitable[Any]]


def nats_connector(
    url: str,
    config: BrokerConfig | None = None,
    name: str | None = None,
) -> Connector:
    """Build a connector for a NATS server at *url*."""
    cfg = config or BrokerConfig()

    async def _error_cb(exc: Exception) -> None:
        logger.warning("NATS client error: %s", exc)

    async def _disconnected_cb() -> None:
        logger.warning("Disconnected from NATS server %s", url)

    async def _reconnected_cb() -> None:
        logger.info("Reconnected to NATS server %s", url)

    async def _closed_cb() -> None:
        logger.info("NATS connection to %s closed", url)

    async def connect() -> Any:
        return await nats.connect(
            servers=[url],
            name=name,
            connect_timeout=cfg.connect_timeout,
            reconnect_time_wait=cfg.reconnect_time_wait,
            max_reconnect_attempts=cfg.max_reconnect_attempts,
            error_cb=_error_cb,
            disconnected_cb=_disconnected_cb,
            reconnected_cb=_reconnected_cb,
            closed_cb=_closed_cb,
        )

    return connect


def memory_connector(broker: MemoryBroker | None = None) -> Connector:
    """Build a connector to an in-process broker."""
    target = broker or MemoryBroker()
    return target.connect


def create_connector(
    settings: Settings,
    memory_broker: MemoryBroker | None = None,
) -> Connector:
    """Create a connector for ``settings.broker_url``."""
    url = settings.broker_url
    if url.startswith("memory://"):
        return memory_connector(memory_broker)
    return nats_connector(url, settings.broker, name=settings.service_name)
