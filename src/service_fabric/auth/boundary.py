"""Protocol boundary conversion for authentication failures."""

from __future__ import annotations

from dataclasses import dataclass

import grpc

from service_fabric.core.enums import AuthProtocol
from service_fabric.core.errors import AuthError

HTTP_UNAUTHORIZED = 401
WS_CLOSE_UNAUTHORIZED = 4401


@dataclass(frozen=True)
class Rejection:
    """What the protocol adapter sends back to the caller."""

    status: int | grpc.StatusCode
    code: str
    message: str


def rejection_for(protocol: AuthProtocol | str, exc: AuthError) -> Rejection:
    """Map *exc* to the protocol's rejection.  Only the public code leaves."""
    protocol = AuthProtocol(protocol)
    code = exc.code
    if protocol is AuthProtocol.HTTP:
        status: int | grpc.StatusCode = HTTP_UNAUTHORIZED
    elif protocol is AuthProtocol.WEBSOCKET:
        status = WS_CLOSE_UNAUTHORIZED
    else:
        status = grpc.StatusCode.UNAUTHENTICATED
    return Rejection(status=status, code=code, message=code)
