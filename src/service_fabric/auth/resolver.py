"""Cross-protocol identity resolution.

One resolver serves HTTP, WebSocket and RPC entry points.  Each protocol
carries the bearer token in a different place; :meth:`extract_token` knows
where to look, :meth:`validate_token` turns the token into an
:class:`Identity` (via the provider, the cache and the user directory) and
:meth:`create_auth_context` produces the Correlation Context that the rest
of the request runs under.

Failures surface as :class:`AuthError` subclasses whose message is the
public error code only.  Provider and directory detail is logged.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from redis.exceptions import RedisError

from service_fabric.core.context import CorrelationContext, current_context
from service_fabric.core.enums import AuthProtocol
from service_fabric.core.errors import AuthError, InvalidToken, Unauthenticated, UserNotFound
from service_fabric.core.ids import new_id
from service_fabric.observability import metrics

from .cache import Identity, IdentityCache
from .provider import IdentityProvider

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


class UserDirectory(Protocol):
    async def find_internal_id(self, external_id: str) -> str | None:
        """Return the internal user id for *external_id*, or None."""
        ...


# ---------------------------------------------------------------------------
# Carrier helpers
# ---------------------------------------------------------------------------

def _field(carrier: Any, name: str) -> Any:
    """Read *name* from a mapping or an attribute-style object."""
    if carrier is None:
        return None
    if isinstance(carrier, Mapping):
        return carrier.get(name)
    return getattr(carrier, name, None)


def _header(headers: Any, name: str) -> str | None:
    """Case-insensitive header lookup; list values use the first entry."""
    if not headers:
        return None
    if isinstance(headers, Mapping):
        items = headers.items()
    elif hasattr(headers, "items"):
        items = headers.items()
    else:
        items = headers
    wanted = name.lower()
    for key, value in items:
        if str(key).lower() != wanted:
            continue
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        if isinstance(value, bytes):
            value = value.decode()
        return value if isinstance(value, str) else None
    return None


def _strip_bearer(value: str | None) -> str | None:
    if value and value.startswith(BEARER_PREFIX):
        token = value[len(BEARER_PREFIX):].strip()
        return token or None
    return None


def _metadata_value(metadata: Any, key: str) -> str | None:
    if metadata is None:
        return None
    if isinstance(metadata, Mapping) or not hasattr(metadata, "get"):
        return _header(metadata, key)
    value = metadata.get(key)
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if isinstance(value, bytes):
        value = value.decode()
    return value if isinstance(value, str) else None


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class IdentityResolver:
    """Bearer token -> Identity -> Correlation Context.

    Parameters
    ----------
    provider:
        Verifies tokens and yields the external subject.
    cache:
        External subject -> internal id cache.
    directory:
        Looks up the internal id on a cache miss.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        cache: IdentityCache,
        directory: UserDirectory,
    ) -> None:
        self._provider = provider
        self._cache = cache
        self._directory = directory

    # --- Token extraction ---------------------------------------------------

    @staticmethod
    def extract_http_token(headers: Any) -> str | None:
        return _strip_bearer(_header(headers, "authorization"))

    @staticmethod
    def extract_ws_token(handshake: Any) -> str | None:
        """``auth.token``, then ``query.token``, then the Authorization header."""
        auth_token = _field(_field(handshake, "auth"), "token")
        if isinstance(auth_token, str) and auth_token:
            return auth_token
        query_token = _field(_field(handshake, "query"), "token")
        if isinstance(query_token, str) and query_token:
            return query_token
        return _strip_bearer(_header(_field(handshake, "headers"), "authorization"))

    @staticmethod
    def extract_rpc_token(metadata: Any) -> str | None:
        token = _strip_bearer(_metadata_value(metadata, "authorization"))
        if token:
            return token
        return _metadata_value(metadata, "token") or None

    def extract_token(self, protocol: AuthProtocol | str, carrier: Any) -> str | None:
        """Extract the bearer token from a protocol-specific carrier."""
        protocol = AuthProtocol(protocol)
        if protocol is AuthProtocol.HTTP:
            return self.extract_http_token(carrier)
        if protocol is AuthProtocol.WEBSOCKET:
            return self.extract_ws_token(carrier)
        return self.extract_rpc_token(carrier)

    # --- Validation ---------------------------------------------------------

    async def authenticate(self, protocol: AuthProtocol | str, carrier: Any) -> Identity:
        token = self.extract_token(protocol, carrier)
        if token is None:
            raise Unauthenticated()
        return await self.validate_token(token)

    async def validate_token(self, token: str) -> Identity:
        """Verify *token* and map its subject to an internal user.

        The signature and expiry check runs on every call.  The cache only
        saves the directory lookup for a subject already resolved.
        """
        try:
            external_id = await self._provider.verify(token)
        except Exception as exc:
            logger.warning("Token verification failed: %s", exc)
            raise InvalidToken() from None

        cached = await self._cache_get(external_id)
        if cached is not None:
            metrics.record_identity_lookup("hit")
            return cached
        metrics.record_identity_lookup("miss")

        try:
            internal_id = await self._directory.find_internal_id(external_id)
        except AuthError:
            raise
        except Exception as exc:
            logger.error("User lookup failed for %s: %s", external_id, exc)
            raise InvalidToken() from None

        if not internal_id:
            logger.warning("No internal user for subject %s", external_id)
            raise UserNotFound()

        identity = Identity(internal_id=internal_id, external_id=external_id)
        await self._cache_set(identity)
        return identity

    async def _cache_get(self, external_id: str) -> Identity | None:
        try:
            return await self._cache.get(external_id)
        except RedisError:
            logger.warning("Identity cache read failed", exc_info=True)
            return None

    async def _cache_set(self, identity: Identity) -> None:
        try:
            await self._cache.set(identity)
        except RedisError:
            logger.warning("Identity cache write failed", exc_info=True)

    # --- Context ------------------------------------------------------------

    def create_auth_context(
        self,
        identity: Identity,
        protocol: AuthProtocol | str,
        *,
        correlation_id: str | None = None,
        request_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> CorrelationContext:
        """Correlation Context for an authenticated request.

        The correlation id is taken from the argument, then the active
        context, then freshly generated.
        """
        parent = current_context()
        return CorrelationContext(
            request_id=request_id or new_id(),
            correlation_id=correlation_id
            or (parent.correlation_id if parent else None)
            or new_id(),
            user_id=identity.internal_id,
            external_id=identity.external_id,
            protocol=AuthProtocol(protocol),
            metadata=dict(metadata or {}),
        )
