"""
Broadcast Router - turns inbound client actions into room mutations and
outbound events.

Usage:
    router = BroadcastRouter(registry, store, locks, broadcaster, persistence, metrics)
    await router.handle(connection_id, "join-room", {"roomId": room_id})

Every mutation of a room and the fan-out it causes run while that room's
lock is held, so all members observe joins, leaves and messages in commit
order. User-correctable errors become a single ``error`` event for the
originating connection; invariant violations propagate to the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol

from shared.config.logging import get_logger
from shared.exceptions import USER_CORRECTABLE_ERRORS, RelayError
from chat_relay.components.events.types import (
    CreateRoomPayload,
    InboundEvent,
    RoomRefPayload,
    SendMessagePayload,
    error_event,
    new_message_event,
    parse_payload,
    room_created_event,
    room_joined_event,
    rooms_list_event,
    user_joined_event,
    user_left_event,
)

if TYPE_CHECKING:
    from chat_relay.components.connection.locks import LockManager
    from chat_relay.components.connection.registry import ConnectionRegistry
    from chat_relay.components.metrics.collector import MetricsCollector
    from chat_relay.components.persistence.hooks import PersistenceDispatcher
    from chat_relay.components.rooms.store import RoomStore
    from chat_relay.core.broadcaster import ConnectionBroadcaster

logger = get_logger(__name__)


class RoomLifecycleListener(Protocol):
    """Told when a room loses its last member or gains one back."""

    def room_emptied(self, room_id: str) -> None: ...

    def room_occupied(self, room_id: str) -> None: ...


class BroadcastRouter:
    """
    Dispatches client actions.

    | Action       | Fan-out                                                  |
    |--------------|----------------------------------------------------------|
    | create-room  | room-created to the creator                              |
    | join-room    | room-joined to the joiner, user-joined to other members  |
    | send-message | new-message to every member, sender included             |
    | leave-room   | user-left to the remaining members                       |
    | list-rooms   | rooms-list to the requester                              |
    """

    def __init__(
        self,
        registry: "ConnectionRegistry",
        store: "RoomStore",
        locks: "LockManager",
        broadcaster: "ConnectionBroadcaster",
        persistence: "PersistenceDispatcher",
        metrics: "MetricsCollector",
        lifecycle: RoomLifecycleListener | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._locks = locks
        self._broadcaster = broadcaster
        self._persistence = persistence
        self._metrics = metrics
        self._lifecycle = lifecycle

        self._handlers: dict[InboundEvent, Callable[[str, Any], Awaitable[None]]] = {
            InboundEvent.CREATE_ROOM: self._handle_create_room,
            InboundEvent.JOIN_ROOM: self._handle_join_room,
            InboundEvent.LEAVE_ROOM: self._handle_leave_room,
            InboundEvent.SEND_MESSAGE: self._handle_send_message,
            InboundEvent.LIST_ROOMS: self._handle_list_rooms,
        }

    def set_lifecycle_listener(self, lifecycle: RoomLifecycleListener) -> None:
        self._lifecycle = lifecycle

    # =========================================================================
    # Entry point
    # =========================================================================

    async def handle(self, connection_id: str, event: Any, data: Any = None) -> None:
        """
        Route one inbound action from a connection.

        Raises:
            InvariantViolationError: Never caught here.
        """
        try:
            action = InboundEvent.parse(event)
            payload = parse_payload(action, data)
            await self._handlers[action](connection_id, payload)
        except USER_CORRECTABLE_ERRORS as e:
            await self.report_error(connection_id, e, event)

    async def report_error(self, connection_id: str, error: RelayError, event: Any = None) -> None:
        """Send a structured error to one connection only."""
        self._metrics.increment_errors_reported()
        event_name = event if isinstance(event, str) else None
        await self._broadcaster.send_to_connection(
            connection_id,
            error_event(error.message, error.code, event_name),
        )

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _handle_create_room(self, connection_id: str, payload: CreateRoomPayload) -> None:
        room = self._store.create_room(
            connection_id,
            name=payload.name,
            description=payload.description,
            is_private=payload.is_private,
        )
        self._metrics.increment_rooms_created()

        async with self._locks.hold_room(room.id):
            await self._broadcaster.send_to_connection(connection_id, room_created_event(room.to_dict()))

    async def _handle_join_room(self, connection_id: str, payload: RoomRefPayload) -> None:
        room_id = payload.room_id
        async with self._locks.hold_room(room_id):
            already_member = connection_id in self._store.get_member_ids(room_id)
            snapshot = self._store.join(room_id, connection_id)
            if self._lifecycle is not None:
                self._lifecycle.room_occupied(room_id)

            await self._broadcaster.send_to_connection(
                connection_id,
                room_joined_event(snapshot, self._member_users(snapshot.member_ids)),
            )

            if not already_member:
                joiner = self._registry.get(connection_id)
                await self._broadcaster.broadcast(
                    snapshot.member_ids - {connection_id},
                    user_joined_event(room_id, joiner.user_dict(), snapshot.member_count),
                    context="user-joined",
                )

    async def _handle_leave_room(self, connection_id: str, payload: RoomRefPayload) -> None:
        room_id = payload.room_id
        async with self._locks.hold_room(room_id):
            # Leaving an unknown room, or one the connection is not in, is a no-op
            if connection_id not in self._store.get_member_ids(room_id):
                return
            connection = self._registry.get(connection_id)
            member_count = self._store.leave(room_id, connection_id)
            await self.announce_departure(room_id, connection.user_dict(), member_count)

    async def _handle_send_message(self, connection_id: str, payload: SendMessagePayload) -> None:
        room_id = payload.room_id
        async with self._locks.hold_room(room_id):
            message = self._store.append_message(room_id, connection_id, payload.content)
            self._metrics.increment_messages_sent()
            await self._broadcaster.broadcast(
                self._store.get_member_ids(room_id),
                new_message_event(message),
                context="new-message",
            )
        self._persistence.submit(message)

    async def _handle_list_rooms(self, connection_id: str, payload: Any) -> None:
        await self._broadcaster.send_to_connection(
            connection_id,
            rooms_list_event(self._store.list_rooms()),
        )

    # =========================================================================
    # Shared with the Lifecycle Reaper
    # =========================================================================

    async def announce_departure(
        self,
        room_id: str,
        user: dict[str, str],
        member_count: int,
    ) -> int:
        """
        Tell the remaining members of a room that a user left.

        Must be called with the room's lock held, right after the leave
        was committed. Arms deferred deletion when the room became empty.
        """
        sent = await self._broadcaster.broadcast(
            self._store.get_member_ids(room_id),
            user_left_event(room_id, user, member_count),
            context="user-left",
        )
        if member_count == 0 and self._lifecycle is not None:
            self._lifecycle.room_emptied(room_id)
        return sent

    def _member_users(self, member_ids: frozenset[str]) -> list[dict[str, str]]:
        users = []
        for member_id in member_ids:
            connection = self._registry.lookup(member_id)
            if connection is not None:
                users.append(connection.user_dict())
        return sorted(users, key=lambda u: (u["username"], u["connectionId"]))
