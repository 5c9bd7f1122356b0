"""
Connection Registry - tracks every live connection.

Holds each connection's identity, outbound sink, connect time and the set
of rooms it currently belongs to. All methods are synchronous and never
await, so each call is atomic with respect to the event loop.

Thread Safety:
- Single event loop only; callers serialize per-room work with LockManager.
- Read-only views are returned as MappingProxyType / frozenset.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import TYPE_CHECKING

from shared.config.logging import get_logger
from shared.exceptions import ConnectionNotFoundError, DuplicateConnectionError
from chat_relay.components.core.models import Connection, utc_now

if TYPE_CHECKING:
    from chat_relay.components.core.models import EventSink, Identity

logger = get_logger(__name__)


class ConnectionRegistry:
    """
    Registry of live connections keyed by connection id.

    Indices maintained:
    - connections: connection_id -> Connection
    - by_user: user_id -> set[connection_id] (one user may hold several sockets)
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._by_user: dict[str, set[str]] = {}

    # =========================================================================
    # Views
    # =========================================================================

    @property
    def connections(self) -> MappingProxyType[str, Connection]:
        """Connections indexed by id (immutable view)."""
        return MappingProxyType(self._connections)

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    # =========================================================================
    # Registration
    # =========================================================================

    def register(
        self,
        connection_id: str,
        identity: "Identity",
        sink: "EventSink | None" = None,
    ) -> Connection:
        """
        Insert a new connection with empty membership.

        Raises:
            DuplicateConnectionError: If the id is already registered.
        """
        if connection_id in self._connections:
            raise DuplicateConnectionError(connection_id, user_id=identity.user_id)

        connection = Connection(
            connection_id=connection_id,
            identity=identity,
            sink=sink,
            connected_at=utc_now(),
        )
        self._connections[connection_id] = connection
        self._by_user.setdefault(identity.user_id, set()).add(connection_id)

        logger.info(
            "Connection registered",
            connection_id=connection_id,
            user_id=identity.user_id,
            username=identity.display_name,
        )
        return connection

    def deregister(self, connection_id: str) -> frozenset[str]:
        """
        Remove a connection and return the rooms it belonged to.

        Idempotent: an unknown id returns an empty set. Responsibility for
        leaving those rooms passes to the caller.
        """
        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return frozenset()

        user_connections = self._by_user.get(connection.identity.user_id)
        if user_connections is not None:
            user_connections.discard(connection_id)
            if not user_connections:
                del self._by_user[connection.identity.user_id]

        rooms = frozenset(connection.rooms)
        connection.rooms.clear()

        logger.info(
            "Connection deregistered",
            connection_id=connection_id,
            user_id=connection.identity.user_id,
            rooms=sorted(rooms),
        )
        return rooms

    # =========================================================================
    # Lookup
    # =========================================================================

    def lookup(self, connection_id: str) -> Connection | None:
        """Return the connection, or None when it is not registered."""
        return self._connections.get(connection_id)

    def get(self, connection_id: str) -> Connection:
        """
        Return the connection.

        Raises:
            ConnectionNotFoundError: If the id is not registered.
        """
        connection = self._connections.get(connection_id)
        if connection is None:
            raise ConnectionNotFoundError(connection_id)
        return connection

    def get_rooms(self, connection_id: str) -> frozenset[str]:
        """Rooms the connection currently belongs to (empty if unknown)."""
        connection = self._connections.get(connection_id)
        if connection is None:
            return frozenset()
        return frozenset(connection.rooms)

    def get_user_connections(self, user_id: str) -> frozenset[str]:
        """All live connection ids of a user."""
        return frozenset(self._by_user.get(user_id, ()))

    def get_all_connection_ids(self) -> list[str]:
        return list(self._connections)

    # =========================================================================
    # Membership bookkeeping (called by the Room Store)
    # =========================================================================

    def add_membership(self, connection_id: str, room_id: str) -> None:
        self.get(connection_id).rooms.add(room_id)

    def remove_membership(self, connection_id: str, room_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.rooms.discard(room_id)

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> dict[str, int]:
        return {
            "connections": len(self._connections),
            "users_connected": len(self._by_user),
            "memberships": sum(len(c.rooms) for c in self._connections.values()),
        }
