"""Broker transport: NATS-backed or in-memory publish/subscribe."""

from service_fabric.bus.connector import create_connector
from service_fabric.bus.memory_broker import MemoryBroker
from service_fabric.bus.transport import MessageTransport, Subscription

__all__ = ["MessageTransport", "MemoryBroker", "Subscription", "create_connector"]
