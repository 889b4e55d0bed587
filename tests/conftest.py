"""Shared fixtures for the service-fabric test suite."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

import jwt
import pytest

from service_fabric.auth.cache import InMemoryIdentityCache
from service_fabric.auth.provider import JwtIdentityProvider
from service_fabric.auth.resolver import IdentityResolver
from service_fabric.bus.connector import memory_connector
from service_fabric.bus.memory_broker import MemoryBroker
from service_fabric.bus.transport import MessageTransport
from service_fabric.core.config import Settings
from service_fabric.core.enums import ServiceRole
from service_fabric.events.catalog import build_default_registry
from service_fabric.events.registry import SchemaRegistry

TEST_SECRET = "test-secret-0123456789abcdef0123456789"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Poll *predicate* until true; fail the test after *timeout* seconds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


def _make_token(sub: str = "ext_user_1", ttl: int = 300, **claims) -> str:
    payload = {"sub": sub, "exp": int(time.time()) + ttl, **claims}
    return jwt.encode(payload, TEST_SECRET, algorithm="HS256")


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def make_token():
    return _make_token


class FakeUserDirectory:
    """External subject -> internal id, counting lookups."""

    def __init__(self, users: dict[str, str] | None = None) -> None:
        self.users = dict(users or {"ext_user_1": "user-1"})
        self.lookups: list[str] = []

    async def find_internal_id(self, external_id: str) -> str | None:
        self.lookups.append(external_id)
        return self.users.get(external_id)


# ---------------------------------------------------------------------------
# Broker / transport
# ---------------------------------------------------------------------------

@pytest.fixture
def memory_broker() -> MemoryBroker:
    return MemoryBroker()


@pytest.fixture
async def transport(memory_broker):
    """A transport connected to the shared in-memory broker."""
    t = MessageTransport(memory_connector(memory_broker), drain_timeout=1.0)
    await t.connect()
    yield t
    await t.shutdown()


@pytest.fixture
async def make_transport(memory_broker):
    """Factory for extra transports (sibling service instances)."""
    created: list[MessageTransport] = []

    def factory(drain_timeout: float = 1.0) -> MessageTransport:
        t = MessageTransport(memory_connector(memory_broker), drain_timeout=drain_timeout)
        created.append(t)
        return t

    yield factory
    for t in created:
        await t.shutdown()


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@pytest.fixture
def registry() -> SchemaRegistry:
    return build_default_registry("test-service")


@pytest.fixture
def vendor_onboarded_data() -> dict:
    return {
        "vendorId": "vendor-1",
        "ownerId": "user-1",
        "location": {"lat": 40.7, "lng": -74.0},
        "timestamp": "2024-01-01T00:00:00+00:00",
    }


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

@pytest.fixture
def user_directory() -> FakeUserDirectory:
    return FakeUserDirectory()


@pytest.fixture
def identity_cache() -> InMemoryIdentityCache:
    return InMemoryIdentityCache(ttl_seconds=3600)


@pytest.fixture
def resolver(identity_cache, user_directory) -> IdentityResolver:
    return IdentityResolver(
        JwtIdentityProvider(TEST_SECRET),
        identity_cache,
        user_directory,
    )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@pytest.fixture
def clean_env(monkeypatch):
    """Remove FABRIC_* variables so tests see only explicit settings."""
    import os

    for key in list(os.environ):
        if key.startswith("FABRIC_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def queue_settings(clean_env) -> Settings:
    return Settings(
        service_name="vendor-worker",
        role=ServiceRole.QUEUE,
        broker_url="memory://",
        redis_url="memory://",
    )


@pytest.fixture
def http_settings(clean_env) -> Settings:
    return Settings(
        service_name="api-gateway",
        role=ServiceRole.HTTP,
        broker_url="memory://",
        redis_url="memory://",
        identity={"secret": TEST_SECRET},
    )
