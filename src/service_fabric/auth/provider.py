"""Token verification.

An identity provider checks a bearer token's signature and expiry and
returns the external subject it was issued for.  It knows nothing about
internal users; that mapping is the resolver's job.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

import jwt

from service_fabric.core.config import IdentityConfig
from service_fabric.core.errors import InvalidToken


class IdentityProvider(Protocol):
    async def verify(self, token: str) -> str:
        """Return the external subject for *token* or raise."""
        ...


class JwtIdentityProvider:
    """Verifies JWTs signed with a shared secret (HS256 by default)."""

    def __init__(
        self,
        secret: str,
        algorithms: Sequence[str] = ("HS256",),
        issuer: str | None = None,
        audience: str | None = None,
        leeway: int = 0,
    ) -> None:
        self._secret = secret
        self._algorithms = list(algorithms)
        self._issuer = issuer
        self._audience = audience
        self._leeway = leeway

    @classmethod
    def from_config(cls, config: IdentityConfig) -> JwtIdentityProvider:
        return cls(
            secret=config.secret.get_secret_value(),
            algorithms=config.algorithms,
            issuer=config.issuer,
            audience=config.audience,
            leeway=config.leeway_seconds,
        )

    async def verify(self, token: str) -> str:
        required = ["exp", "sub"]
        if self._issuer:
            required.append("iss")
        if self._audience:
            required.append("aud")
        # PyJWT errors carry the verification detail; callers log it
        claims = jwt.decode(
            token,
            self._secret,
            algorithms=self._algorithms,
            issuer=self._issuer,
            audience=self._audience,
            leeway=self._leeway,
            options={"require": required},
        )
        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise InvalidToken()
        return subject
