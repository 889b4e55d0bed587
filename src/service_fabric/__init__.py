"""Inter-service communication fabric.

Pub/sub transport with queue groups, typed event envelopes, request-scoped
RPC clients and cross-protocol identity resolution.
"""

__version__ = "0.1.0"
