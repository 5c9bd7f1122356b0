"""
Tests for the connection broadcaster.

Tests verify:
- A failing or slow recipient does not affect the others
- Failed recipients are reported to the dead-connection callback
- Unknown connection ids are skipped
- Batching covers every recipient
"""

import asyncio
from unittest.mock import MagicMock

import pytest

from chat_relay.components.connection.registry import ConnectionRegistry
from chat_relay.components.metrics.collector import MetricsCollector
from chat_relay.core.broadcaster import ConnectionBroadcaster
from tests.conftest import connect_all, identity, make_sink, sent_events

PAYLOAD = {"event": "new-message", "data": {"message": {"content": "hi"}}}


def build(batch_size: int = 50, send_timeout: float = 0.2):
    registry = ConnectionRegistry()
    metrics = MetricsCollector()
    dead = MagicMock()
    broadcaster = ConnectionBroadcaster(
        registry,
        metrics,
        on_dead=dead,
        batch_size=batch_size,
        send_timeout=send_timeout,
    )
    return registry, metrics, dead, broadcaster


class TestBroadcastIsolation:
    """Per-recipient failure isolation."""

    @pytest.mark.asyncio
    async def test_failing_recipient_does_not_block_others(self):
        registry, metrics, dead, broadcaster = build()
        good, bad = make_sink(), make_sink()
        bad.send_json.side_effect = RuntimeError("socket closed")
        registry.register("good", identity("good"), good)
        registry.register("bad", identity("bad"), bad)

        sent = await broadcaster.broadcast(["good", "bad"], PAYLOAD)

        assert sent == 1
        assert sent_events(good) == [PAYLOAD]
        dead.assert_called_once_with("bad")
        snapshot = metrics.get_snapshot()
        assert snapshot["events_delivered"] == 1
        assert snapshot["events_delivery_failures"] == 1

    @pytest.mark.asyncio
    async def test_slow_recipient_times_out(self):
        registry, metrics, dead, broadcaster = build(send_timeout=0.05)
        fast, slow = make_sink(), make_sink()

        async def hang(_payload):
            await asyncio.sleep(10)

        slow.send_json.side_effect = hang
        registry.register("fast", identity("fast"), fast)
        registry.register("slow", identity("slow"), slow)

        sent = await asyncio.wait_for(broadcaster.broadcast(["fast", "slow"], PAYLOAD), timeout=1)

        assert sent == 1
        dead.assert_called_once_with("slow")

    @pytest.mark.asyncio
    async def test_unknown_ids_are_skipped(self):
        registry, metrics, dead, broadcaster = build()
        sink = make_sink()
        registry.register("known", identity("known"), sink)

        sent = await broadcaster.broadcast(["known", "gone"], PAYLOAD)

        assert sent == 1
        dead.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_target_set(self):
        _registry, _metrics, dead, broadcaster = build()
        assert await broadcaster.broadcast([], PAYLOAD) == 0
        dead.assert_not_called()

    @pytest.mark.asyncio
    async def test_batches_reach_everyone(self):
        registry, metrics, dead, broadcaster = build(batch_size=3)
        sinks = {}
        for i in range(10):
            sinks[f"c{i}"] = make_sink()
            registry.register(f"c{i}", identity(f"u{i}"), sinks[f"c{i}"])

        sent = await broadcaster.broadcast(list(sinks), PAYLOAD)

        assert sent == 10
        assert all(sent_events(sink) == [PAYLOAD] for sink in sinks.values())

    @pytest.mark.asyncio
    async def test_send_to_connection(self):
        registry, _metrics, _dead, broadcaster = build()
        sink = make_sink()
        registry.register("c1", identity("alice"), sink)

        assert await broadcaster.send_to_connection("c1", PAYLOAD) is True
        assert await broadcaster.send_to_connection("missing", PAYLOAD) is False


class TestDeadConnectionDrop:
    """The relay manager drops recipients whose send failed."""

    @pytest.mark.asyncio
    async def test_dead_member_is_disconnected(self, manager):
        sinks = await connect_all(manager, "alice", "bob")
        await manager.handle("alice", "create-room", {"name": "Team"})
        room_id = manager.store.list_rooms()[0].id
        await manager.handle("bob", "join-room", {"roomId": room_id})

        sinks["bob"].send_json.side_effect = RuntimeError("gone")
        await manager.handle("alice", "send-message", {"roomId": room_id, "content": "hi"})

        # The drop runs as a background task
        for _ in range(20):
            if "bob" not in manager.registry:
                break
            await asyncio.sleep(0.01)

        assert "bob" not in manager.registry
        sinks["bob"].close.assert_awaited()
        assert manager.store.get_member_ids(room_id) == frozenset({"alice"})
