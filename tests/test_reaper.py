"""
Tests for the Lifecycle Reaper.

Tests verify:
- Disconnect sends exactly one user-left per room to the remaining members
- Empty rooms survive the grace period and are then deleted
- A rejoin before expiry cancels deletion and keeps history
- Timers are cancellable and re-check membership when they fire
"""

import asyncio

import pytest

from tests.conftest import (
    TEST_GRACE_PERIOD,
    connect_all,
    create_room,
    event_names,
    events_named,
    reset,
)


class TestDisconnect:
    """Disconnect path."""

    @pytest.mark.asyncio
    async def test_user_left_once_per_room(self, manager):
        sinks = await connect_all(manager, "alice", "bob", "carol", "dave")
        r1 = await create_room(manager, "alice", "r1")
        r2 = await create_room(manager, "bob", "r2")
        unrelated = await create_room(manager, "dave", "r3")
        await manager.handle("alice", "join-room", {"roomId": r2})
        await manager.handle("carol", "join-room", {"roomId": r2})
        reset(*sinks.values())

        rooms = await manager.disconnect("alice")

        assert rooms == frozenset({r1, r2})
        # r1 had only alice: nobody is told
        left_bob = events_named(sinks["bob"], "user-left")
        left_carol = events_named(sinks["carol"], "user-left")
        assert left_bob == left_carol == [{
            "roomId": r2,
            "user": {"id": "id-alice", "username": "alice", "connectionId": "alice"},
            "memberCount": 2,
        }]
        assert event_names(sinks["dave"]) == []
        assert event_names(sinks["alice"]) == []
        assert "alice" not in manager.registry
        assert manager.store.get_member_ids(r2) == frozenset({"bob", "carol"})
        assert manager.store.get_member_ids(unrelated) == frozenset({"dave"})

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, manager):
        sinks = await connect_all(manager, "alice", "bob")
        room_id = await create_room(manager, "alice")
        await manager.handle("bob", "join-room", {"roomId": room_id})
        reset(*sinks.values())

        await asyncio.gather(manager.disconnect("alice"), manager.disconnect("alice"))
        assert await manager.disconnect("alice") == frozenset()

        assert len(events_named(sinks["bob"], "user-left")) == 1
        assert manager.metrics.get_snapshot()["connections_closed"] == 1

    @pytest.mark.asyncio
    async def test_join_during_disconnect_is_undone(self, manager):
        sinks = await connect_all(manager, "alice", "bob")
        r1 = await create_room(manager, "alice", "r1")
        r2 = await create_room(manager, "bob", "r2")

        async with manager.locks.hold_room(r1):
            disconnect = asyncio.create_task(manager.disconnect("alice"))
            await asyncio.sleep(0.01)
            assert not disconnect.done()

            # The join commits while the disconnect waits for r1
            await manager.handle("alice", "join-room", {"roomId": r2})
            assert "alice" in manager.store.get_member_ids(r2)
            reset(*sinks.values())

        rooms = await asyncio.wait_for(disconnect, timeout=1)

        assert rooms == frozenset({r1, r2})
        assert "alice" not in manager.registry
        assert "alice" not in manager.store.get_member_ids(r1)
        assert "alice" not in manager.store.get_member_ids(r2)
        assert events_named(sinks["bob"], "user-left") == [{
            "roomId": r2,
            "user": {"id": "id-alice", "username": "alice", "connectionId": "alice"},
            "memberCount": 1,
        }]

    @pytest.mark.asyncio
    async def test_concurrent_disconnects_clean_up_once(self, manager):
        sinks = await connect_all(manager, "alice", "bob")
        room_id = await create_room(manager, "alice")
        await manager.handle("bob", "join-room", {"roomId": room_id})
        reset(*sinks.values())

        async with manager.locks.hold_room(room_id):
            first = asyncio.create_task(manager.disconnect("alice"))
            second = asyncio.create_task(manager.disconnect("alice"))
            await asyncio.sleep(0.01)

        results = await asyncio.wait_for(asyncio.gather(first, second), timeout=1)

        assert sorted(results, key=len) == [frozenset(), frozenset({room_id})]
        assert len(events_named(sinks["bob"], "user-left")) == 1
        assert manager.metrics.get_snapshot()["connections_closed"] == 1

    @pytest.mark.asyncio
    async def test_disconnect_unknown_connection(self, manager):
        assert await manager.disconnect("never-connected") == frozenset()

    @pytest.mark.asyncio
    async def test_member_sets_only_hold_registered_connections(self, manager):
        await connect_all(manager, "alice", "bob")
        room_id = await create_room(manager, "alice")
        await manager.handle("bob", "join-room", {"roomId": room_id})

        await manager.disconnect("bob")

        for member in manager.store.get_member_ids(room_id):
            assert member in manager.registry


class TestDeferredDeletion:
    """Grace period handling."""

    @pytest.mark.asyncio
    async def test_empty_room_deleted_after_grace_period(self, manager):
        await connect_all(manager, "alice")
        room_id = await create_room(manager, "alice")

        await manager.disconnect("alice")

        assert room_id in manager.reaper.pending_deletions
        await asyncio.sleep(TEST_GRACE_PERIOD / 5)
        assert room_id in manager.store

        await asyncio.sleep(TEST_GRACE_PERIOD * 3)
        assert room_id not in manager.store
        assert manager.reaper.pending_deletions == frozenset()
        assert manager.metrics.get_snapshot()["rooms_deleted"] == 1

    @pytest.mark.asyncio
    async def test_leave_of_last_member_arms_timer(self, manager):
        await connect_all(manager, "alice")
        room_id = await create_room(manager, "alice")

        await manager.handle("alice", "leave-room", {"roomId": room_id})

        assert room_id in manager.reaper.pending_deletions
        await asyncio.sleep(TEST_GRACE_PERIOD * 3)
        assert room_id not in manager.store

    @pytest.mark.asyncio
    async def test_rejoin_cancels_deletion_and_keeps_history(self, manager):
        sinks = await connect_all(manager, "alice", "bob")
        room_id = await create_room(manager, "alice")
        await manager.handle("alice", "send-message", {"roomId": room_id, "content": "remember me"})
        await manager.disconnect("alice")
        assert room_id in manager.reaper.pending_deletions

        await manager.handle("bob", "join-room", {"roomId": room_id})
        assert manager.reaper.pending_deletions == frozenset()

        await asyncio.sleep(TEST_GRACE_PERIOD * 3)

        assert room_id in manager.store
        joined = events_named(sinks["bob"], "room-joined")
        assert [m["content"] for m in joined[0]["history"]] == ["remember me"]
        assert [m.content for m in manager.store.get_room(room_id).messages] == ["remember me"]
        assert manager.metrics.get_snapshot()["rooms_deletions_cancelled"] == 1

    @pytest.mark.asyncio
    async def test_deleted_room_rejects_operations(self, manager):
        sinks = await connect_all(manager, "alice", "bob")
        room_id = await create_room(manager, "alice")
        await manager.handle("alice", "leave-room", {"roomId": room_id})
        await asyncio.sleep(TEST_GRACE_PERIOD * 3)
        reset(*sinks.values())

        await manager.handle("bob", "join-room", {"roomId": room_id})

        assert events_named(sinks["bob"], "error")[0]["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_timer_rechecks_member_count_when_firing(self, manager):
        await connect_all(manager, "alice")
        room_id = await create_room(manager, "alice")
        await manager.handle("alice", "leave-room", {"roomId": room_id})

        # A member slipped in without cancelling the timer
        manager.store.join(room_id, "alice")
        await asyncio.sleep(TEST_GRACE_PERIOD * 3)

        assert room_id in manager.store
        assert manager.reaper.pending_deletions == frozenset()

    @pytest.mark.asyncio
    async def test_schedule_twice_keeps_single_timer(self, manager):
        assert manager.reaper.schedule_deletion("room_x") is True
        assert manager.reaper.schedule_deletion("room_x") is False
        assert manager.reaper.cancel_deletion("room_x") is True
        assert manager.reaper.cancel_deletion("room_x") is False

    @pytest.mark.asyncio
    async def test_shutdown_cancels_timers(self, manager):
        await connect_all(manager, "alice")
        room_id = await create_room(manager, "alice")
        await manager.disconnect("alice")

        await manager.reaper.shutdown()
        await asyncio.sleep(TEST_GRACE_PERIOD * 3)

        assert manager.reaper.pending_deletions == frozenset()
        assert room_id in manager.store
