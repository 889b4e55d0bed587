"""Configuration management.

Loads from TOML config files + environment variables.
Uses pydantic-settings for validation and FABRIC_* env var loading.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings

from .enums import ServiceRole


# ---------------------------------------------------------------------------
# Sub-configs
# ---------------------------------------------------------------------------

class BrokerConfig(BaseModel):
    max_reconnect_attempts: int = 10
    reconnect_time_wait: float = 2.0  # seconds between reconnect attempts
    connect_timeout: float = 2.0
    drain_timeout_seconds: float = 30.0  # in-flight handler budget at shutdown


class IdentityConfig(BaseModel):
    secret: SecretStr = SecretStr("")
    algorithms: list[str] = Field(default_factory=lambda: ["HS256"])
    issuer: str | None = None
    audience: str | None = None
    leeway_seconds: int = 0
    cache_ttl_seconds: int = 3600


class RpcConfig(BaseModel):
    max_stream_retries: int = 3
    retry_delay_seconds: float = 1.0


class ObservabilityConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "console"
    metrics_port: int = 0  # 0 disables the Prometheus endpoint


DEFAULT_RPC_ADDRESSES: dict[str, str] = {
    "user": "localhost:5000",
    "vendor": "localhost:5005",
    "location": "localhost:5001",
}


# ---------------------------------------------------------------------------
# Top-level settings
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """Top-level service settings.

    Built from environment variables and defaults.  :func:`load_settings`
    layers a TOML file on top; values from the file win over the
    environment because they reach the model as init arguments.
    """

    service_name: str = "unknown-service"
    role: ServiceRole = ServiceRole.QUEUE

    # Infrastructure
    broker_url: str = "nats://localhost:4222"
    redis_url: str = "redis://localhost:6379/0"
    rpc_addresses: dict[str, str] = Field(default_factory=dict)

    # Sub-configs
    broker: BrokerConfig = Field(default_factory=BrokerConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    rpc: RpcConfig = Field(default_factory=RpcConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    model_config = {"env_prefix": "FABRIC_", "env_nested_delimiter": "__"}

    def rpc_address(self, service: str) -> str:
        """Resolve the address of a target RPC service, overrides first."""
        from .errors import ConfigError

        address = self.rpc_addresses.get(service.lower()) or DEFAULT_RPC_ADDRESSES.get(
            service.lower()
        )
        if not address:
            raise ConfigError(f"No RPC address configured for service {service!r}")
        return address

    def validate_required(self, role: ServiceRole | None = None) -> None:
        """Enforce required credentials for the given role.

        Anything security-relevant must be present; there is no fallback.
        """
        from .errors import ConfigError

        role = role or self.role
        if not self.broker_url:
            raise ConfigError("FABRIC_BROKER_URL must not be empty.")
        if role in (ServiceRole.HTTP, ServiceRole.RPC):
            if not self.identity.secret.get_secret_value():
                raise ConfigError(
                    f"{role.value} services require FABRIC_IDENTITY__SECRET."
                )
            if not self.redis_url:
                raise ConfigError(
                    f"{role.value} services require FABRIC_REDIS_URL."
                )


def load_settings(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """Load settings from TOML file + env vars.

    Precedence, highest first: *overrides*, the TOML file, ``FABRIC_*``
    environment variables, field defaults.

    Args:
        config_path: Path to TOML config file (optional).
        overrides: Dict of overrides to apply on top.
    """
    data: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            import tomli

            with open(path, "rb") as f:
                data = tomli.load(f)

    if overrides:
        data.update(overrides)

    return Settings(**data)
