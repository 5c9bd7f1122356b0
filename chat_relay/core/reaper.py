"""
Lifecycle Reaper.

Handles disconnects and the deferred deletion of empty rooms.

Room states:
    ACTIVE (members > 0)
      -> EMPTY (members == 0, deletion timer armed)
      -> ACTIVE (timer cancelled on rejoin) | DELETED (timer fired, still empty)

DELETED is terminal: room ids are never reused.

The deletion timer is an asyncio task keyed by room id. When it fires it
takes the room lock and checks the member count again before deleting, so
a join that commits while the timer is waiting for the lock wins.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from shared.config.logging import get_logger
from chat_relay.components.core.constants import RelayConstants

if TYPE_CHECKING:
    from chat_relay.components.connection.locks import LockManager
    from chat_relay.components.connection.registry import ConnectionRegistry
    from chat_relay.components.metrics.collector import MetricsCollector
    from chat_relay.components.persistence.hooks import PersistenceDispatcher
    from chat_relay.components.rooms.store import RoomStore
    from chat_relay.core.router import BroadcastRouter

logger = get_logger(__name__)


class LifecycleReaper:
    """
    Removes disconnected connections from their rooms and reaps rooms
    that stay empty for the grace period.
    """

    def __init__(
        self,
        registry: "ConnectionRegistry",
        store: "RoomStore",
        locks: "LockManager",
        router: "BroadcastRouter",
        metrics: "MetricsCollector",
        persistence: "PersistenceDispatcher | None" = None,
        grace_period: float = RelayConstants.ROOM_GRACE_PERIOD,
    ) -> None:
        self._registry = registry
        self._store = store
        self._locks = locks
        self._router = router
        self._metrics = metrics
        self._persistence = persistence
        self._grace_period = max(0.0, grace_period)
        self._pending: dict[str, asyncio.Task[None]] = {}

        router.set_lifecycle_listener(self)

    @property
    def grace_period(self) -> float:
        return self._grace_period

    @property
    def pending_deletions(self) -> frozenset[str]:
        """Rooms with an armed deletion timer."""
        return frozenset(self._pending)

    # =========================================================================
    # Disconnect
    # =========================================================================

    async def on_disconnect(self, connection_id: str) -> frozenset[str]:
        """
        Deregister a connection and leave every room it belonged to.

        Each room's remaining members get exactly one ``user-left``. Rooms
        left empty get a deletion timer. Idempotent.

        Returns:
            The rooms the connection belonged to.
        """
        connection = self._registry.lookup(connection_id)
        if connection is None:
            return frozenset()
        user = connection.user_dict()

        while True:
            snapshot = self._registry.get_rooms(connection_id)
            async with self._locks.hold_rooms(snapshot):
                # A join that committed while locks were being acquired
                # added a room outside the snapshot; take its lock too
                if not self._registry.get_rooms(connection_id) <= snapshot:
                    continue
                # Lost a race with a concurrent disconnect
                if connection_id not in self._registry:
                    return frozenset()

                rooms = self._registry.deregister(connection_id)
                self._metrics.increment_connections_closed()
                # The last socket of a user takes it offline
                identity = connection.identity
                if self._persistence is not None and not self._registry.get_user_connections(identity.user_id):
                    self._persistence.submit_presence(identity, online=False)

                for room_id in sorted(rooms):
                    if room_id not in self._store:
                        continue
                    member_count = self._store.leave(room_id, connection_id)
                    await self._router.announce_departure(room_id, user, member_count)

            logger.info(
                "Connection cleaned up",
                connection_id=connection_id,
                rooms=sorted(rooms),
            )
            return rooms

    # =========================================================================
    # RoomLifecycleListener
    # =========================================================================

    def room_emptied(self, room_id: str) -> None:
        self.schedule_deletion(room_id)

    def room_occupied(self, room_id: str) -> None:
        self.cancel_deletion(room_id)

    # =========================================================================
    # Deferred deletion
    # =========================================================================

    def schedule_deletion(self, room_id: str) -> bool:
        """
        Arm the deletion timer for an empty room.

        A timer that is already armed is left running.

        Returns:
            True if a new timer was armed.
        """
        if room_id in self._pending:
            return False

        self._pending[room_id] = asyncio.create_task(
            self._expire(room_id),
            name=f"room_reaper_{room_id}",
        )
        self._metrics.increment_deletions_scheduled()
        logger.info(
            "Room deletion scheduled",
            room_id=room_id,
            grace_period=self._grace_period,
        )
        return True

    def cancel_deletion(self, room_id: str) -> bool:
        """
        Disarm the deletion timer of a room.

        Returns:
            True if a timer was cancelled.
        """
        task = self._pending.pop(room_id, None)
        if task is None:
            return False

        task.cancel()
        self._metrics.increment_deletions_cancelled()
        logger.info("Room deletion cancelled", room_id=room_id)
        return True

    async def _expire(self, room_id: str) -> None:
        await asyncio.sleep(self._grace_period)

        async with self._locks.hold_room(room_id):
            if self._pending.get(room_id) is not asyncio.current_task():
                return
            del self._pending[room_id]

            member_count = self._store.member_count(room_id)
            if room_id not in self._store or member_count > 0:
                logger.info(
                    "Room deletion skipped",
                    room_id=room_id,
                    member_count=member_count,
                )
                return

            self._store.delete_room(room_id)
            self._metrics.increment_rooms_deleted()
            logger.info("Empty room deleted", room_id=room_id)

        await self._locks.discard_room_lock(room_id)

    async def shutdown(self) -> None:
        """Cancel every armed timer and wait for them to finish."""
        tasks = list(self._pending.values())
        self._pending.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled pending room deletions", count=len(tasks))
