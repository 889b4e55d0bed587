"""Outbound RPC: request-scoped client wrapper, retry, channels."""

from service_fabric.rpc.channels import RpcChannelPool, ServiceStubRegistry
from service_fabric.rpc.client import RpcClient
from service_fabric.rpc.retry import is_transient, retry_policy, retry_stream

__all__ = [
    "RpcChannelPool",
    "RpcClient",
    "ServiceStubRegistry",
    "is_transient",
    "retry_policy",
    "retry_stream",
]
