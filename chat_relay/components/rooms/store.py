"""
Room Store - owns every room, its member set and its message log.

The store is the only writer of Room objects. It keeps the Connection
Registry's per-connection membership sets in step with each room's member
set, so a room never lists a connection the registry does not know.

All methods are synchronous. Callers that need a mutation and its fan-out
to be observed in the same order by every member hold the room's lock
from LockManager around both.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from shared.config.logging import get_logger, sanitize_log_data
from shared.exceptions import (
    EmptyContentError,
    InvalidInputError,
    NotAMemberError,
    RoomNotFoundError,
)
from chat_relay.components.core.constants import RelayConstants
from chat_relay.components.core.models import (
    Message,
    Room,
    RoomSnapshot,
    RoomSummary,
    generate_message_id,
    generate_room_id,
    utc_now,
)

if TYPE_CHECKING:
    from chat_relay.components.connection.registry import ConnectionRegistry

logger = get_logger(__name__)


class RoomStore:
    """
    In-memory room table.

    Rooms are kept in insertion order, which is creation order, so
    ``list_rooms`` needs no sort.
    """

    def __init__(
        self,
        registry: "ConnectionRegistry",
        history_limit: int = RelayConstants.ROOM_HISTORY_LIMIT,
        name_max_length: int = 100,
        description_max_length: int = 500,
        message_max_length: int = 4000,
    ) -> None:
        self._registry = registry
        self._history_limit = history_limit
        self._name_max_length = name_max_length
        self._description_max_length = description_max_length
        self._message_max_length = message_max_length
        self._rooms: dict[str, Room] = {}

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    @property
    def history_limit(self) -> int:
        return self._history_limit

    # =========================================================================
    # Room lifecycle
    # =========================================================================

    def create_room(
        self,
        creator_connection_id: str,
        name: str | None = None,
        description: str | None = None,
        is_private: bool = False,
    ) -> Room:
        """
        Create a room with the creator as its first member.

        A missing or blank name is replaced with the default room name and a
        missing description with the default description; over-long values
        are rejected.

        Raises:
            ConnectionNotFoundError: If the creator is not registered.
            InvalidInputError: If name or description exceed their limits.
        """
        creator = self._registry.get(creator_connection_id)

        name = (name or "").strip() or RelayConstants.DEFAULT_ROOM_NAME
        if len(name) > self._name_max_length:
            raise InvalidInputError(
                f"Room name must be at most {self._name_max_length} characters",
                field="name",
                length=len(name),
            )

        description = (description or "").strip() or RelayConstants.DEFAULT_ROOM_DESCRIPTION
        if len(description) > self._description_max_length:
            raise InvalidInputError(
                f"Room description must be at most {self._description_max_length} characters",
                field="description",
                length=len(description),
            )

        room_id = generate_room_id()
        while room_id in self._rooms:
            room_id = generate_room_id()

        room = Room(
            id=room_id,
            name=name,
            description=description,
            is_private=bool(is_private),
            created_by=creator.identity,
            history_limit=self._history_limit,
        )
        self._rooms[room_id] = room
        room.members.add(creator_connection_id)
        self._registry.add_membership(creator_connection_id, room_id)

        logger.info(
            "Room created",
            room_id=room_id,
            name=sanitize_log_data(name),
            creator=creator.identity.user_id,
        )
        return room

    def delete_room(self, room_id: str) -> bool:
        """
        Remove a room and its history. Idempotent.

        Any remaining members lose the room from their membership set.

        Returns:
            True if a room was removed.
        """
        room = self._rooms.pop(room_id, None)
        if room is None:
            return False

        for connection_id in room.members:
            self._registry.remove_membership(connection_id, room_id)
        room.members.clear()
        room.messages.clear()

        logger.info("Room deleted", room_id=room_id, name=sanitize_log_data(room.name))
        return True

    # =========================================================================
    # Queries
    # =========================================================================

    def get_room(self, room_id: str) -> Room:
        """
        Raises:
            RoomNotFoundError: If the room does not exist.
        """
        room = self._rooms.get(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        return room

    def list_rooms(self) -> list[RoomSummary]:
        """Summaries of every room, oldest first."""
        return [room.summary() for room in self._rooms.values()]

    def get_member_ids(self, room_id: str) -> frozenset[str]:
        """Current members of a room (empty if it does not exist)."""
        room = self._rooms.get(room_id)
        if room is None:
            return frozenset()
        return frozenset(room.members)

    def member_count(self, room_id: str) -> int:
        room = self._rooms.get(room_id)
        return len(room.members) if room is not None else 0

    def get_room_ids(self) -> frozenset[str]:
        return frozenset(self._rooms)

    # =========================================================================
    # Membership
    # =========================================================================

    def join(self, room_id: str, connection_id: str) -> RoomSnapshot:
        """
        Add a connection to a room. Joining twice is a no-op.

        Returns:
            Snapshot with room metadata, members and retained history.

        Raises:
            RoomNotFoundError: If the room does not exist.
            ConnectionNotFoundError: If the connection is not registered.
        """
        room = self.get_room(room_id)
        if connection_id not in room.members:
            self._registry.add_membership(connection_id, room_id)
            room.members.add(connection_id)
            logger.info(
                "Room joined",
                room_id=room_id,
                connection_id=connection_id,
                member_count=len(room.members),
            )
        return room.snapshot()

    def leave(self, room_id: str, connection_id: str) -> int:
        """
        Remove a connection from a room. Leaving a room one is not in is a no-op.

        Returns:
            The room's member count after the call.

        Raises:
            RoomNotFoundError: If the room does not exist.
        """
        room = self.get_room(room_id)
        if connection_id in room.members:
            room.members.discard(connection_id)
            self._registry.remove_membership(connection_id, room_id)
            logger.info(
                "Room left",
                room_id=room_id,
                connection_id=connection_id,
                member_count=len(room.members),
            )
        return len(room.members)

    # =========================================================================
    # Messages
    # =========================================================================

    def append_message(self, room_id: str, connection_id: str, content: str | None) -> Message:
        """
        Append a message from a member to the room's log.

        Content is trimmed before validation and storage. The sender identity
        is captured from the registry at this moment. When history retention
        is enabled the oldest entry is dropped once the cap is exceeded.

        Raises:
            RoomNotFoundError: If the room does not exist.
            NotAMemberError: If the connection is not a member of the room.
            EmptyContentError: If content is empty after trimming.
            InvalidInputError: If content exceeds the maximum length.
        """
        room = self.get_room(room_id)

        connection = self._registry.lookup(connection_id)
        if connection is None or connection_id not in room.members:
            raise NotAMemberError(room_id, connection_id)

        text = (content or "").strip()
        if not text:
            raise EmptyContentError(room_id=room_id, connection_id=connection_id)
        if len(text) > self._message_max_length:
            raise InvalidInputError(
                f"Message must be at most {self._message_max_length} characters",
                field="content",
                length=len(text),
            )

        message = Message(
            id=generate_message_id(),
            room_id=room_id,
            sender=connection.identity,
            content=text,
            created_at=utc_now(),
        )
        if self._history_limit > 0:
            room.messages.append(message)

        logger.debug(
            "Message appended",
            room_id=room_id,
            message_id=message.id,
            sender=connection.identity.user_id,
            content=sanitize_log_data(text, max_length=50),
        )
        return message

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> dict[str, int]:
        return {
            "rooms": len(self._rooms),
            "empty_rooms": sum(1 for room in self._rooms.values() if not room.members),
            "messages_retained": sum(len(room.messages) for room in self._rooms.values()),
        }
