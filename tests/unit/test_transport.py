"""Tests for MessageTransport: queue groups, error isolation, shutdown."""

from __future__ import annotations

import asyncio
import json

import pytest

from service_fabric.bus.connector import memory_connector
from service_fabric.bus.memory_broker import MemoryConnection
from service_fabric.bus.transport import MessageTransport
from service_fabric.core.errors import TransportUnavailable


# ===========================================================================
# Publish
# ===========================================================================


class TestPublish:
    async def test_publish_adds_timestamp(self, transport, memory_broker):
        await transport.publish("marketplace.vendor.onboarded", {"vendorId": "v1"})

        [msg] = memory_broker.get_history("marketplace.vendor.onboarded")
        body = json.loads(msg.data)
        assert body["vendorId"] == "v1"
        assert "timestamp" in body

    async def test_publish_does_not_mutate_payload(self, transport):
        payload = {"vendorId": "v1"}
        await transport.publish("marketplace.vendor.onboarded", payload)
        assert payload == {"vendorId": "v1"}

    async def test_publish_after_shutdown_raises(self, transport):
        await transport.shutdown()
        with pytest.raises(TransportUnavailable):
            await transport.publish("marketplace.vendor.onboarded", {})

    async def test_connect_failure_maps_to_unavailable(self):
        async def refuse():
            raise OSError("connection refused")

        t = MessageTransport(refuse)
        with pytest.raises(TransportUnavailable):
            await t.connect()
        assert t.is_connected() is False

    async def test_connection_is_lazy_and_shared(self, memory_broker):
        calls = []

        async def connector():
            calls.append(1)
            return await memory_broker.connect()

        t = MessageTransport(connector)
        assert calls == []
        await t.publish("marketplace.vendor.onboarded", {})
        await t.publish("marketplace.vendor.onboarded", {})
        assert calls == [1]
        assert t.is_connected()
        await t.shutdown()


# ===========================================================================
# Subscribe / delivery
# ===========================================================================


class TestDelivery:
    async def test_handler_receives_decoded_payload(self, transport, wait_until):
        received = []

        async def handler(payload):
            received.append(payload)

        await transport.subscribe("marketplace.vendor.onboarded", "worker", handler)
        await transport.publish("marketplace.vendor.onboarded", {"vendorId": "v1"})

        await wait_until(lambda: len(received) == 1)
        assert received[0]["vendorId"] == "v1"
        assert transport.messages_processed == 1

    async def test_sync_handler_supported(self, transport, wait_until):
        received = []
        await transport.subscribe("marketplace.vendor.onboarded", "worker", received.append)
        await transport.publish("marketplace.vendor.onboarded", {"vendorId": "v1"})
        await wait_until(lambda: len(received) == 1)

    async def test_queue_group_delivers_once_across_instances(
        self, transport, make_transport, wait_until
    ):
        """Two instances in one group: each message handled exactly once."""
        other = make_transport()
        seen: list[tuple[str, int]] = []

        def handler_for(instance: str):
            async def handler(payload):
                seen.append((instance, payload["n"]))
            return handler

        await transport.subscribe("marketplace.vendor.onboarded", "vendor-workers", handler_for("a"))
        await other.subscribe("marketplace.vendor.onboarded", "vendor-workers", handler_for("b"))

        for n in range(10):
            await transport.publish("marketplace.vendor.onboarded", {"n": n})

        await wait_until(lambda: len(seen) == 10)
        await asyncio.sleep(0.02)
        assert sorted(n for _, n in seen) == list(range(10))
        assert {instance for instance, _ in seen} == {"a", "b"}

    async def test_ungrouped_subscribers_each_receive(self, transport, make_transport, wait_until):
        other = make_transport()
        a, b = [], []
        await transport.subscribe("location.vendor.connected", "", a.append)
        await other.subscribe("location.vendor.connected", "", b.append)

        await transport.publish("location.vendor.connected", {"socketId": "s1"})

        await wait_until(lambda: len(a) == 1 and len(b) == 1)

    async def test_distinct_groups_each_receive(self, transport, wait_until):
        a, b = [], []
        await transport.subscribe("location.vendor.connected", "group-a", a.append)
        await transport.subscribe("location.vendor.connected", "group-b", b.append)

        await transport.publish("location.vendor.connected", {"socketId": "s1"})

        await wait_until(lambda: len(a) == 1 and len(b) == 1)

    async def test_wildcard_subscription(self, transport, wait_until):
        received = []
        await transport.subscribe("marketplace.vendor.>", "audit", received.append)

        await transport.publish("marketplace.vendor.onboarded", {"vendorId": "v1"})
        await transport.publish("marketplace.user.created", {"userId": "u1"})

        await wait_until(lambda: len(received) == 1)
        await asyncio.sleep(0.02)
        assert len(received) == 1
        assert received[0]["vendorId"] == "v1"


# ===========================================================================
# Error isolation
# ===========================================================================


class TestErrorIsolation:
    async def test_poison_message_does_not_stop_subscription(self, memory_broker, wait_until):
        handled = []
        errors = []

        async def handler(payload):
            if payload.get("poison"):
                raise ValueError("boom")
            handled.append(payload["n"])

        t = MessageTransport(
            memory_connector(memory_broker),
            on_handler_error=lambda subject, group, exc: errors.append((subject, group, exc)),
        )
        await t.subscribe("marketplace.vendor.onboarded", "worker", handler)

        await t.publish("marketplace.vendor.onboarded", {"poison": True})
        await t.publish("marketplace.vendor.onboarded", {"n": 1})
        await t.publish("marketplace.vendor.onboarded", {"n": 2})

        await wait_until(lambda: handled == [1, 2])
        assert t.get_error_counts() == {"marketplace.vendor.onboarded/worker": 1}
        assert len(errors) == 1
        assert isinstance(errors[0][2], ValueError)
        await t.shutdown()

    async def test_undecodable_payload_dropped(self, transport, memory_broker, wait_until):
        received = []
        await transport.subscribe("marketplace.vendor.onboarded", "worker", received.append)

        raw = await memory_broker.connect()
        await raw.publish("marketplace.vendor.onboarded", b"\xff not json")
        await transport.publish("marketplace.vendor.onboarded", {"n": 1})

        await wait_until(lambda: len(received) == 1)
        assert received[0]["n"] == 1
        assert transport.messages_dropped == 1
        assert transport.get_error_counts() == {}

    async def test_non_object_payload_dropped(self, transport, memory_broker, wait_until):
        received = []
        await transport.subscribe("marketplace.vendor.onboarded", "worker", received.append)

        raw = await memory_broker.connect()
        for body in (b"5", b"null", b"[1,2]", b'"s"'):
            await raw.publish("marketplace.vendor.onboarded", body)
        await transport.publish("marketplace.vendor.onboarded", {"n": 1})

        await wait_until(lambda: len(received) == 1)
        assert received[0]["n"] == 1
        assert transport.messages_dropped == 4
        assert transport.get_error_counts() == {}


# ===========================================================================
# Shutdown
# ===========================================================================


class RecordingConnection(MemoryConnection):
    """Memory connection that records unsubscribe/close order."""

    def __init__(self, broker, log):
        super().__init__(broker)
        self.log = log

    async def subscribe(self, subject, queue=""):
        sub = await super().subscribe(subject, queue)
        original = sub.unsubscribe

        async def unsubscribe():
            self.log.append(f"unsubscribe:{subject}")
            await original()

        sub.unsubscribe = unsubscribe
        return sub

    async def close(self):
        self.log.append("close")
        await super().close()


class TestShutdown:
    async def test_unsubscribes_in_order_then_closes(self, memory_broker):
        log: list[str] = []

        async def connector():
            return RecordingConnection(memory_broker, log)

        t = MessageTransport(connector)
        await t.subscribe("location.vendor.connected", "a", lambda p: None)
        await t.subscribe("location.user.connected", "b", lambda p: None)

        await t.shutdown()

        assert log == [
            "unsubscribe:location.vendor.connected",
            "unsubscribe:location.user.connected",
            "close",
        ]
        assert memory_broker.subscription_count == 0
        assert not t.is_connected()

    async def test_shutdown_is_idempotent(self, transport):
        await transport.subscribe("location.vendor.connected", "a", lambda p: None)
        await transport.shutdown()
        await transport.shutdown()
        assert not transport.is_connected()

    async def test_in_flight_handler_finishes_within_drain(self, transport, wait_until):
        started = asyncio.Event()
        finished = []

        async def slow(payload):
            started.set()
            await asyncio.sleep(0.05)
            finished.append(payload["n"])

        await transport.subscribe("location.vendor.connected", "a", slow)
        await transport.publish("location.vendor.connected", {"n": 1})
        await started.wait()

        await transport.shutdown(drain_timeout=1.0)
        assert finished == [1]

    async def test_handlers_past_drain_timeout_are_cancelled(self, transport):
        started = asyncio.Event()
        cancelled = []

        async def stuck(payload):
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        sub = await transport.subscribe("location.vendor.connected", "a", stuck)
        await transport.publish("location.vendor.connected", {"n": 1})
        await started.wait()

        await transport.shutdown(drain_timeout=0.05)

        assert cancelled == [True]
        assert sub.task.done()
