"""Enumerations used across the fabric."""

from enum import Enum


class ServiceRole(str, Enum):
    HTTP = "http"
    RPC = "rpc"
    QUEUE = "queue"


class AuthProtocol(str, Enum):
    HTTP = "http"
    WEBSOCKET = "websocket"
    RPC = "rpc"


class HandlerOutcome(str, Enum):
    OK = "ok"
    ERROR = "error"
    DROPPED = "dropped"
