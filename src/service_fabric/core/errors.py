"""Custom exception hierarchy for the service fabric."""

from __future__ import annotations

from dataclasses import dataclass


class FabricError(Exception):
    """Base exception for all fabric errors."""


# --- Configuration ---
class ConfigError(FabricError):
    """Invalid or missing configuration."""


class RegistryError(ConfigError):
    """Event schema registry composed incorrectly (raised at process start)."""


# --- Identity ---
class AuthError(FabricError):
    """Authentication failure.

    ``code`` is the only thing that may cross the protocol boundary.
    """

    code = "UNAUTHENTICATED"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)


class Unauthenticated(AuthError):
    """No credential was presented."""

    code = "UNAUTHENTICATED"


class InvalidToken(AuthError):
    """Credential failed signature or expiry verification."""

    code = "INVALID_TOKEN"


class UserNotFound(AuthError):
    """Credential is valid but no internal user maps to its subject."""

    code = "USER_NOT_FOUND"


# --- Events ---
@dataclass(frozen=True)
class SchemaIssue:
    """One offending field in an event payload."""

    field: str
    expected: str


class SchemaViolation(FabricError):
    """Event payload does not conform to its registered schema."""

    def __init__(self, name: str, issues: list[SchemaIssue]):
        self.name = name
        self.issues = list(issues)
        detail = "; ".join(f"{i.field}: {i.expected}" for i in self.issues)
        super().__init__(f"Schema violation for {name!r}: {detail}")

    @property
    def fields(self) -> list[str]:
        return [i.field for i in self.issues]


# --- RPC ---
class MethodNotFound(FabricError):
    """Requested method does not exist on the wrapped stub."""

    def __init__(self, service: str, method: str):
        self.service = service
        self.method = method
        super().__init__(f"Method {method!r} not found on service {service!r}")


class RpcError(FabricError):
    """Remote procedure call failure."""


class NonRetryableError(RpcError):
    """Marker base: failures of this kind are never retried."""

    retryable = False


class TransientRpcFailure(RpcError):
    """Retryable RPC failure (network hiccup, unavailable peer)."""

    retryable = True


# --- Transport ---
class TransportError(FabricError):
    """Message broker error."""


class TransportUnavailable(TransportError):
    """Broker unreachable or connection closed."""
