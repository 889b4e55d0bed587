"""RPC channels and stub registration.

``RpcChannelPool`` keeps one ``grpc.aio`` channel per target service, with
addresses from :meth:`Settings.rpc_address` (per-service overrides first).

``ServiceStubRegistry`` binds a generated stub to each service and checks at
registration that the stub exposes every method the caller intends to use,
so a typo fails at startup instead of on the first request.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any

import grpc
import grpc.aio

from service_fabric.core.config import RpcConfig, Settings
from service_fabric.core.context import CorrelationContext
from service_fabric.core.errors import MethodNotFound

from .client import RpcClient

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[str], Any]
StubFactory = Callable[[Any], Any]


class RpcChannelPool:
    """One channel per target service, created on first use."""

    def __init__(
        self,
        settings: Settings,
        channel_factory: ChannelFactory = grpc.aio.insecure_channel,
    ) -> None:
        self._settings = settings
        self._factory = channel_factory
        self._channels: dict[str, Any] = {}

    def channel(self, service: str) -> Any:
        if service not in self._channels:
            address = self._settings.rpc_address(service)
            self._channels[service] = self._factory(address)
            logger.info("Opened RPC channel to %s at %s", service, address)
        return self._channels[service]

    async def close(self) -> None:
        for service, channel in self._channels.items():
            try:
                await channel.close()
            except grpc.RpcError:
                logger.warning("Error closing RPC channel to %s", service, exc_info=True)
        self._channels.clear()


class ServiceStubRegistry:
    """Service name -> stub, validated at registration."""

    def __init__(self, channels: RpcChannelPool, config: RpcConfig | None = None) -> None:
        self._channels = channels
        self._config = config or RpcConfig()
        self._stubs: dict[str, Any] = {}

    def register(
        self,
        service: str,
        stub_factory: StubFactory,
        methods: Iterable[str],
    ) -> Any:
        """Create the stub for *service* and verify it exposes *methods*."""
        stub = stub_factory(self._channels.channel(service))
        for name in methods:
            if not callable(getattr(stub, name, None)):
                raise MethodNotFound(service, name)
        self._stubs[service] = stub
        return stub

    def services(self) -> list[str]:
        return sorted(self._stubs)

    def client(self, service: str, context: CorrelationContext | None = None) -> RpcClient:
        """Build a request-scoped client for *service*."""
        try:
            stub = self._stubs[service]
        except KeyError:
            raise MethodNotFound(service, "<service not registered>") from None
        return RpcClient(
            stub,
            service,
            context,
            max_retries=self._config.max_stream_retries,
            retry_delay=self._config.retry_delay_seconds,
        )
