"""
Domain objects for the chat relay.

Identity and Message are immutable value objects: a message keeps the
sender identity captured at send time, so later identity changes never
alter history. Room and Connection are mutable and owned exclusively by
the Room Store and Connection Registry respectively.
"""

from __future__ import annotations

import secrets
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, Self

from chat_relay.components.core.constants import RelayConstants


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def isoformat(value: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and ``Z`` suffix."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _time_based_id(prefix: str) -> str:
    millis = time.time_ns() // 1_000_000
    return f"{prefix}{millis}_{secrets.token_hex(RelayConstants.ID_SUFFIX_BYTES)}"


def generate_room_id() -> str:
    """Room id: creation time in milliseconds plus a random suffix."""
    return _time_based_id(RelayConstants.ROOM_ID_PREFIX)


def generate_message_id() -> str:
    """Message id: timestamp plus random suffix (distinguishable, not totally ordered)."""
    return _time_based_id(RelayConstants.MESSAGE_ID_PREFIX)


def generate_connection_id() -> str:
    """Opaque id for a live socket."""
    return uuid.uuid4().hex


class EventSink(Protocol):
    """Outbound side of a live connection (a WebSocket in production)."""

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


@dataclass(frozen=True, slots=True)
class Identity:
    """Resolved user identity handed to the core at connection time."""

    user_id: str
    display_name: str

    @classmethod
    def anonymous(cls, connection_id: str) -> Self:
        """Placeholder identity for connections without a credential."""
        short = connection_id[: RelayConstants.ANONYMOUS_NAME_CHARS]
        return cls(
            user_id=connection_id,
            display_name=f"{RelayConstants.ANONYMOUS_NAME_PREFIX}{short}",
        )

    def to_dict(self) -> dict[str, str]:
        return {"id": self.user_id, "username": self.display_name}


@dataclass(frozen=True, slots=True)
class Message:
    """Immutable chat message, appended to exactly one room."""

    id: str
    room_id: str
    sender: Identity
    content: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "roomId": self.room_id,
            "content": self.content,
            "user": self.sender.to_dict(),
            "timestamp": isoformat(self.created_at),
        }


@dataclass(frozen=True, slots=True)
class RoomSummary:
    """
    Public view of a room for listings.

    Exposes the live member count only, never the member ids.
    """

    id: str
    name: str
    description: str
    is_private: bool
    member_count: int
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "isPrivate": self.is_private,
            "memberCount": self.member_count,
            "createdAt": isoformat(self.created_at),
        }


@dataclass(frozen=True, slots=True)
class RoomSnapshot:
    """Room state returned to a joining connection."""

    room: RoomSummary
    created_by: Identity
    history: tuple[Message, ...]
    member_ids: frozenset[str]

    @property
    def member_count(self) -> int:
        return len(self.member_ids)

    def room_dict(self) -> dict[str, Any]:
        return {**self.room.to_dict(), "createdBy": self.created_by.to_dict()}


@dataclass(eq=False)
class Room:
    """
    A named channel with a member set and bounded message history.

    ``messages`` is a deque whose maxlen is the history cap, so appending
    past the cap drops the oldest entry.
    """

    id: str
    name: str
    description: str
    is_private: bool
    created_by: Identity
    created_at: datetime = field(default_factory=utc_now)
    history_limit: int = RelayConstants.ROOM_HISTORY_LIMIT
    members: set[str] = field(default_factory=set)
    messages: deque[Message] = field(init=False)

    def __post_init__(self) -> None:
        self.messages = deque(maxlen=max(0, self.history_limit))

    @property
    def member_count(self) -> int:
        return len(self.members)

    def summary(self) -> RoomSummary:
        return RoomSummary(
            id=self.id,
            name=self.name,
            description=self.description,
            is_private=self.is_private,
            member_count=len(self.members),
            created_at=self.created_at,
        )

    def snapshot(self) -> RoomSnapshot:
        return RoomSnapshot(
            room=self.summary(),
            created_by=self.created_by,
            history=tuple(self.messages),
            member_ids=frozenset(self.members),
        )

    def to_dict(self) -> dict[str, Any]:
        return {**self.summary().to_dict(), "createdBy": self.created_by.to_dict()}


@dataclass(eq=False)
class Connection:
    """A live client session, owned by the Connection Registry."""

    connection_id: str
    identity: Identity
    sink: EventSink | None = None
    connected_at: datetime = field(default_factory=utc_now)
    rooms: set[str] = field(default_factory=set)

    def user_dict(self) -> dict[str, str]:
        """Identity as shown to other members."""
        return {**self.identity.to_dict(), "connectionId": self.connection_id}
