"""Process bootstrap and graceful shutdown.

Wires the fabric components for one service process in a fixed order and
tears them down in reverse:

    start:    settings -> logging -> metrics -> broker -> identity
              -> RPC channels -> event emitter -> on_start hook
    shutdown: on_stop hook -> broker (drain) -> RPC channels -> identity cache

Only a configuration failure at startup ends the process with a non-zero
status; errors during shutdown are logged and the remaining steps still run.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from .auth.cache import IdentityCache, create_identity_cache
from .auth.provider import IdentityProvider, JwtIdentityProvider
from .auth.resolver import IdentityResolver, UserDirectory
from .bus.connector import create_connector
from .bus.memory_broker import MemoryBroker
from .bus.transport import MessageTransport
from .core.config import Settings, load_settings
from .core.enums import ServiceRole
from .core.errors import ConfigError
from .events.catalog import build_default_registry
from .events.emitter import EventEmitter
from .events.registry import SchemaRegistry
from .observability.logger import setup_logging
from .rpc.channels import RpcChannelPool, ServiceStubRegistry

logger = logging.getLogger(__name__)

Hook = Callable[["ServiceCoordinator"], Awaitable[None]]

IDENTITY_ROLES = (ServiceRole.HTTP, ServiceRole.RPC)


class ServiceCoordinator:
    """Owns the lifecycle of every fabric component in one process.

    Parameters
    ----------
    settings:
        Loaded settings; validated in :meth:`start`.
    on_start, on_stop:
        Role hooks.  Queue services register subscriptions in ``on_start``;
        HTTP/RPC services start and stop their servers.
    user_directory:
        Internal user lookup, required by the http and rpc roles.
    identity_provider:
        Token verifier; defaults to :class:`JwtIdentityProvider` from config.
    registry:
        Event schema registry; defaults to the bundled catalog.
    memory_broker:
        Broker used when ``broker_url`` is ``memory://``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        on_start: Hook | None = None,
        on_stop: Hook | None = None,
        user_directory: UserDirectory | None = None,
        identity_provider: IdentityProvider | None = None,
        registry: SchemaRegistry | None = None,
        memory_broker: MemoryBroker | None = None,
        configure_logging: bool = True,
    ) -> None:
        self.settings = settings
        self._on_start = on_start
        self._on_stop = on_stop
        self._user_directory = user_directory
        self._identity_provider = identity_provider
        self._memory_broker = memory_broker
        self._configure_logging = configure_logging

        self.registry: SchemaRegistry | None = registry
        self.transport: MessageTransport | None = None
        self.identity_cache: IdentityCache | None = None
        self.resolver: IdentityResolver | None = None
        self.channels: RpcChannelPool | None = None
        self.stubs: ServiceStubRegistry | None = None
        self.emitter: EventEmitter | None = None

        self._stop_event = asyncio.Event()
        self._started = False
        self._stopped = False
        self._signals_installed: list[signal.Signals] = []

    @property
    def role(self) -> ServiceRole:
        return self.settings.role

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Bring every component up, in dependency order."""
        settings = self.settings

        # 1. Settings
        settings.validate_required()
        if self.role in IDENTITY_ROLES and self._user_directory is None:
            raise ConfigError(f"{self.role.value} services require a user directory.")

        # 2. Logging
        if self._configure_logging:
            setup_logging(
                level=settings.observability.log_level,
                format=settings.observability.log_format,
                service_name=settings.service_name,
            )
        logger.info(
            "Starting %s (role=%s)", settings.service_name, self.role.value
        )

        # 3. Metrics endpoint
        if settings.observability.metrics_port:
            from .observability.metrics import start_metrics_server

            try:
                start_metrics_server(
                    settings.observability.metrics_port,
                    settings.service_name,
                    self.role.value,
                )
                logger.info(
                    "Prometheus metrics server started on port %d",
                    settings.observability.metrics_port,
                )
            except OSError:
                logger.warning("Failed to start metrics server", exc_info=True)

        try:
            # 4. Broker
            self.transport = MessageTransport(
                create_connector(settings, self._memory_broker),
                drain_timeout=settings.broker.drain_timeout_seconds,
            )
            await self.transport.connect()

            # 5. Identity
            if self.role in IDENTITY_ROLES:
                self.identity_cache = create_identity_cache(settings)
                provider = self._identity_provider or JwtIdentityProvider.from_config(
                    settings.identity
                )
                self.resolver = IdentityResolver(
                    provider, self.identity_cache, self._user_directory
                )

            # 6. RPC channels
            self.channels = RpcChannelPool(settings)
            self.stubs = ServiceStubRegistry(self.channels, settings.rpc)

            # 7. Events
            if self.registry is None:
                self.registry = build_default_registry(settings.service_name)
            self.emitter = EventEmitter(
                self.registry, self.transport, settings.service_name
            )

            self._started = True

            # 8. Role hook
            if self._on_start is not None:
                await self._on_start(self)
        except BaseException:
            await self.shutdown()
            raise

        logger.info("%s started", settings.service_name)

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def request_stop(self) -> None:
        self._stop_event.set()

    async def run(self) -> None:
        """Start, wait for SIGINT/SIGTERM (or :meth:`request_stop`), shut down."""
        await self.start()

        def _signal_handler() -> None:
            logger.info("Received shutdown signal")
            self.request_stop()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _signal_handler)
            except (NotImplementedError, RuntimeError):
                continue
            self._signals_installed.append(sig)

        try:
            await self._stop_event.wait()
        finally:
            await self.shutdown()

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def shutdown(self) -> None:
        """Tear down in reverse start order.  Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Shutting down %s", self.settings.service_name)

        steps: list[tuple[str, Callable[[], Awaitable[Any]]]] = []
        if self._on_stop is not None and self._started:
            on_stop = self._on_stop
            steps.append(("on_stop hook", lambda: on_stop(self)))
        if self.transport is not None:
            steps.append(("message transport", self.transport.shutdown))
        if self.channels is not None:
            steps.append(("RPC channels", self.channels.close))
        if self.identity_cache is not None:
            steps.append(("identity cache", self.identity_cache.close))

        for name, step in steps:
            try:
                await step()
            except Exception:
                logger.exception("Error shutting down %s", name)

        loop = asyncio.get_running_loop()
        for sig in self._signals_installed:
            loop.remove_signal_handler(sig)
        self._signals_installed.clear()

        logger.info("Shutdown complete")


def main(
    role: ServiceRole | str | None = None,
    service_name: str | None = None,
    config_path: str | None = None,
    **coordinator_kwargs: Any,
) -> int:
    """Load settings and run a coordinator to completion.

    Returns the process exit status: 0 on a clean stop, 1 when the
    configuration is invalid.
    """
    overrides: dict[str, Any] = {}
    if role is not None:
        overrides["role"] = ServiceRole(role)
    if service_name:
        overrides["service_name"] = service_name

    try:
        settings = load_settings(config_path=config_path, overrides=overrides)
        coordinator = ServiceCoordinator(settings, **coordinator_kwargs)
        asyncio.run(coordinator.run())
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        return 1
    except ValidationError as exc:
        logger.critical("Invalid settings: %s", exc)
        return 1
    return 0
