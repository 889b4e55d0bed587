"""Identity resolution across HTTP, WebSocket and RPC."""

from service_fabric.auth.boundary import Rejection, rejection_for
from service_fabric.auth.cache import (
    Identity,
    InMemoryIdentityCache,
    RedisIdentityCache,
    create_identity_cache,
)
from service_fabric.auth.provider import IdentityProvider, JwtIdentityProvider
from service_fabric.auth.resolver import IdentityResolver, UserDirectory

__all__ = [
    "Identity",
    "IdentityProvider",
    "IdentityResolver",
    "InMemoryIdentityCache",
    "JwtIdentityProvider",
    "RedisIdentityCache",
    "Rejection",
    "UserDirectory",
    "create_identity_cache",
    "rejection_for",
]
