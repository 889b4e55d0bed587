"""Bounded contexts and the event-name grammar.

Event names are ``domain.subdomain.action``.  The domain/subdomain
allow-list below is data: adding a subdomain is a one-line change here, and
the schema registry refuses any name outside it at process start.
"""

from __future__ import annotations

import re
from collections.abc import Mapping

EVENT_NAME_PATTERN = re.compile(r"[a-z]+\.[a-z_]+\.[a-z_]+")

DOMAIN_SUBDOMAINS: Mapping[str, tuple[str, ...]] = {
    "marketplace": ("user", "vendor", "search", "reviews", "favorites"),
    "location": ("user", "vendor", "search", "geolocation", "proximity", "real_time", "geofencing"),
    "communication": ("notifications", "messaging", "webhooks", "email"),
    "infrastructure": ("api_gateway", "file_management", "monitoring", "security"),
    "payments": ("processing", "subscriptions", "billing", "fraud"),
    "analytics": ("business", "user", "location", "reporting"),
}


def is_valid_event_name(name: str) -> bool:
    """Grammar check only (no allow-list)."""
    return bool(EVENT_NAME_PATTERN.fullmatch(name))


def split_event_name(name: str) -> tuple[str, str, str]:
    domain, subdomain, action = name.split(".")
    return domain, subdomain, action


def allow_list_problem(
    name: str,
    allowed: Mapping[str, tuple[str, ...]] = DOMAIN_SUBDOMAINS,
) -> str | None:
    """Return why *name* is not allowed, or ``None`` when it is."""
    if not is_valid_event_name(name):
        return f"{name!r} does not match domain.subdomain.action"
    domain, subdomain, _action = split_event_name(name)
    if domain not in allowed:
        return f"unknown domain {domain!r}"
    if subdomain not in allowed[domain]:
        return f"subdomain {subdomain!r} is not allowed in domain {domain!r}"
    return None
