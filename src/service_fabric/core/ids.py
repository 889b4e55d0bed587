"""Canonical ID and timestamp factories for the fabric.

All modules import from here instead of defining local _uuid()/_now() copies.

ID Categories
-------------
1. Internal IDs: UUID v4 strings (event_id, request_id, correlation_id)
2. External IDs: identity-provider subjects, opaque strings (external_id)

Timestamp Rule
--------------
All timestamps are ``datetime`` with ``tzinfo=timezone.utc``, never naive.
On the wire they are ISO-8601 strings produced by :func:`iso_now`.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone


def new_id() -> str:
    """Generate a new UUID v4 string.  Use for all internal IDs."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def iso_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return utc_now().isoformat()
