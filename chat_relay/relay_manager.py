"""
Relay Manager.

Thin orchestrator that owns one instance of every relay component:
- ConnectionRegistry: live connections and their memberships
- RoomStore: rooms, members and message history
- LockManager: per-room serialization
- ConnectionBroadcaster: fan-out to sinks
- BroadcastRouter: inbound actions
- LifecycleReaper: disconnects and deferred room deletion
- PersistenceDispatcher: fire-and-forget message and presence persistence
- MetricsCollector: counters

Constructed at process start and torn down by ``shutdown()``. Tests build
their own instance with short grace periods instead of touching a global.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from shared.config.logging import get_logger
from chat_relay.components.connection.locks import LockManager
from chat_relay.components.connection.registry import ConnectionRegistry
from chat_relay.components.core.constants import RelayConstants, WSCloseCode
from chat_relay.components.events.types import welcome_event
from chat_relay.components.metrics.collector import MetricsCollector
from chat_relay.components.persistence.hooks import (
    NullPersistence,
    PersistenceDispatcher,
    PersistenceHook,
    WebhookPersistence,
)
from chat_relay.components.rooms.store import RoomStore
from chat_relay.core.broadcaster import ConnectionBroadcaster
from chat_relay.core.reaper import LifecycleReaper
from chat_relay.core.router import BroadcastRouter

if TYPE_CHECKING:
    from shared.config.settings import Settings
    from chat_relay.components.core.models import Connection, EventSink, Identity

logger = get_logger(__name__)


class RelayManager:
    """
    Composition root for the chat relay.

    Usage:
        manager = RelayManager.from_settings(settings)
        await manager.connect(connection_id, identity, websocket)
        await manager.handle(connection_id, "join-room", {"roomId": room_id})
        await manager.disconnect(connection_id)
    """

    def __init__(
        self,
        grace_period: float = RelayConstants.ROOM_GRACE_PERIOD,
        history_limit: int = RelayConstants.ROOM_HISTORY_LIMIT,
        name_max_length: int = 100,
        description_max_length: int = 500,
        message_max_length: int = 4000,
        broadcast_batch_size: int = RelayConstants.BROADCAST_BATCH_SIZE,
        send_timeout: float = RelayConstants.WS_SEND_TIMEOUT,
        persistence_hook: PersistenceHook | None = None,
    ) -> None:
        self._metrics = MetricsCollector()
        self._registry = ConnectionRegistry()
        self._locks = LockManager()
        self._store = RoomStore(
            self._registry,
            history_limit=history_limit,
            name_max_length=name_max_length,
            description_max_length=description_max_length,
            message_max_length=message_max_length,
        )
        self._broadcaster = ConnectionBroadcaster(
            self._registry,
            self._metrics,
            on_dead=self._mark_dead,
            batch_size=broadcast_batch_size,
            send_timeout=send_timeout,
        )
        self._persistence = PersistenceDispatcher(persistence_hook, metrics=self._metrics)
        self._router = BroadcastRouter(
            self._registry,
            self._store,
            self._locks,
            self._broadcaster,
            self._persistence,
            self._metrics,
        )
        self._reaper = LifecycleReaper(
            self._registry,
            self._store,
            self._locks,
            self._router,
            self._metrics,
            persistence=self._persistence,
            grace_period=grace_period,
        )

        self._shutting_down = False
        self._drop_tasks: set[asyncio.Task[None]] = set()

    @classmethod
    def from_settings(cls, settings: "Settings") -> "RelayManager":
        """Build a manager from application settings."""
        hook: PersistenceHook = NullPersistence()
        if settings.persistence_webhook_url or settings.persistence_presence_url:
            hook = WebhookPersistence(
                settings.persistence_webhook_url,
                timeout=settings.persistence_timeout,
                presence_url=settings.persistence_presence_url,
            )
        return cls(
            grace_period=settings.room_grace_period_seconds,
            history_limit=settings.room_history_limit,
            name_max_length=settings.room_name_max_length,
            description_max_length=settings.room_description_max_length,
            message_max_length=settings.message_max_length,
            broadcast_batch_size=settings.ws_broadcast_batch_size,
            send_timeout=settings.ws_send_timeout,
            persistence_hook=hook,
        )

    # =========================================================================
    # Components
    # =========================================================================

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def locks(self) -> LockManager:
        return self._locks

    @property
    def store(self) -> RoomStore:
        return self._store

    @property
    def router(self) -> BroadcastRouter:
        return self._router

    @property
    def reaper(self) -> LifecycleReaper:
        return self._reaper

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def persistence(self) -> PersistenceDispatcher:
        return self._persistence

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    async def connect(
        self,
        connection_id: str,
        identity: "Identity",
        sink: "EventSink",
    ) -> "Connection":
        """
        Register a connection and greet it.

        Raises:
            ConnectionError: If the relay is shutting down.
            DuplicateConnectionError: If the id is already registered.
        """
        if self._shutting_down:
            self._metrics.increment_connection_rejected_shutdown()
            raise ConnectionError("Relay is shutting down")

        connection = self._registry.register(connection_id, identity, sink)
        self._metrics.increment_connections_opened()
        # Only the first socket of a user brings it online
        if self._registry.get_user_connections(identity.user_id) == {connection_id}:
            self._persistence.submit_presence(identity, online=True)
        await self._broadcaster.send_to_connection(
            connection_id,
            welcome_event(identity.user_id, identity.display_name, connection_id),
        )
        return connection

    async def handle(self, connection_id: str, event: Any, data: Any = None) -> None:
        """Route one inbound action."""
        await self._router.handle(connection_id, event, data)

    async def disconnect(self, connection_id: str) -> frozenset[str]:
        """Run the disconnect path. Idempotent."""
        return await self._reaper.on_disconnect(connection_id)

    def _mark_dead(self, connection_id: str) -> None:
        """Schedule removal of a connection whose send failed."""
        task = asyncio.create_task(
            self._drop_connection(connection_id),
            name=f"drop_{connection_id}",
        )
        self._drop_tasks.add(task)
        task.add_done_callback(self._drop_tasks.discard)

    async def _drop_connection(self, connection_id: str) -> None:
        connection = self._registry.lookup(connection_id)
        if connection is None:
            return
        logger.info("Dropping unresponsive connection", connection_id=connection_id)
        if connection.sink is not None:
            try:
                await connection.sink.close(code=WSCloseCode.GOING_AWAY, reason="Unresponsive")
            except Exception as e:
                logger.debug("Close of dead connection failed", connection_id=connection_id, error=str(e))
        await self.disconnect(connection_id)

    # =========================================================================
    # Administration
    # =========================================================================

    async def delete_room(self, room_id: str) -> bool:
        """
        Delete a room immediately, cancelling any pending deletion timer.

        Returns:
            True if a room was deleted.
        """
        async with self._locks.hold_room(room_id):
            self._reaper.cancel_deletion(room_id)
            deleted = self._store.delete_room(room_id)
            if deleted:
                self._metrics.increment_rooms_deleted()
        await self._locks.discard_room_lock(room_id)
        return deleted

    async def cleanup_locks(self) -> int:
        """Drop cached locks of rooms that no longer exist."""
        return await self._locks.cleanup_stale_locks(self._store.get_room_ids())

    # =========================================================================
    # Stats
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        return {
            "connections": len(self._registry),
            "rooms": len(self._store),
            "pendingDeletions": len(self._reaper.pending_deletions),
            "pendingPersistence": self._persistence.pending,
            "registry": self._registry.get_stats(),
            "store": self._store.get_stats(),
            "locks": self._locks.get_stats(),
            "metrics": self._metrics.get_snapshot(),
        }

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(self) -> int:
        """
        Graceful shutdown: refuse new connections, close every live sink,
        run the disconnect path for each, cancel room timers and drain
        persistence.

        Returns:
            Number of sinks closed cleanly.
        """
        self._shutting_down = True
        logger.info("Relay manager shutting down...")

        connections = list(self._registry.connections.values())

        async def close_one(connection: "Connection") -> bool:
            if connection.sink is None:
                return False
            try:
                await connection.sink.close(code=WSCloseCode.GOING_AWAY, reason="Server shutdown")
                return True
            except Exception:
                return False

        results = await asyncio.gather(
            *[close_one(c) for c in connections],
            return_exceptions=True,
        )
        closed = sum(1 for r in results if r is True)

        for connection in connections:
            await self.disconnect(connection.connection_id)

        for task in list(self._drop_tasks):
            task.cancel()
        if self._drop_tasks:
            await asyncio.gather(*self._drop_tasks, return_exceptions=True)

        await self._reaper.shutdown()
        await self._persistence.drain()

        logger.info("Relay shutdown complete", closed=closed, connections=len(connections))
        return closed
