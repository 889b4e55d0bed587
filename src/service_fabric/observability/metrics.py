"""Prometheus metrics endpoint.

Exposes fabric metrics (transport, RPC, identity) for monitoring.
"""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    start_http_server,
)

SERVICE_INFO = Info("fabric_service", "Service fabric process information")

# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

MESSAGES_PUBLISHED = Counter(
    "fabric_messages_published_total",
    "Messages published to the broker",
    ["subject"],
)

MESSAGES_HANDLED = Counter(
    "fabric_messages_handled_total",
    "Messages pulled from a subscription, by outcome",
    ["subject", "queue_group", "outcome"],
)

HANDLER_DURATION = Histogram(
    "fabric_handler_duration_seconds",
    "Time spent in subscription handlers",
    ["subject", "queue_group"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0],
)

# ---------------------------------------------------------------------------
# RPC
# ---------------------------------------------------------------------------

RPC_CALLS = Counter(
    "fabric_rpc_calls_total",
    "Outbound RPC invocations",
    ["service", "method", "kind"],
)

RPC_RETRIES = Counter(
    "fabric_rpc_retries_total",
    "Retry attempts on streaming RPC calls",
    ["service", "method"],
)

# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

IDENTITY_LOOKUPS = Counter(
    "fabric_identity_lookups_total",
    "Identity cache lookups, by result",
    ["result"],
)


def start_metrics_server(port: int, service_name: str, role: str) -> None:
    """Start the Prometheus HTTP endpoint on *port*."""
    SERVICE_INFO.info({"service": service_name, "role": role})
    start_http_server(port)


def record_published(subject: str) -> None:
    MESSAGES_PUBLISHED.labels(subject=subject).inc()


def record_handled(subject: str, queue_group: str, outcome: str) -> None:
    MESSAGES_HANDLED.labels(
        subject=subject, queue_group=queue_group, outcome=outcome
    ).inc()


def record_handler_duration(subject: str, queue_group: str, seconds: float) -> None:
    HANDLER_DURATION.labels(subject=subject, queue_group=queue_group).observe(seconds)


def record_rpc_call(service: str, method: str, kind: str) -> None:
    RPC_CALLS.labels(service=service, method=method, kind=kind).inc()


def record_rpc_retry(service: str, method: str) -> None:
    RPC_RETRIES.labels(service=service, method=method).inc()


def record_identity_lookup(result: str) -> None:
    IDENTITY_LOOKUPS.labels(result=result).inc()
