"""
Event types and payload schemas for the chat wire protocol.

Inbound payloads are validated with pydantic models that accept the
camelCase names clients send. Outbound events are built by small helper
functions so every frame has the same ``{"event", "data"}`` envelope.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shared.exceptions import InvalidInputError
from chat_relay.components.core.models import isoformat, utc_now

if TYPE_CHECKING:
    from chat_relay.components.core.models import (
        Message,
        RoomSnapshot,
        RoomSummary,
    )


class InboundEvent(str, Enum):
    """Actions a client may request."""

    CREATE_ROOM = "create-room"
    JOIN_ROOM = "join-room"
    LEAVE_ROOM = "leave-room"
    SEND_MESSAGE = "send-message"
    LIST_ROOMS = "list-rooms"

    @classmethod
    def parse(cls, name: Any) -> "InboundEvent":
        """
        Resolve an event name, accepting the ``get-rooms`` alias.

        Raises:
            InvalidInputError: If the name is not a known event.
        """
        if name == "get-rooms":
            return cls.LIST_ROOMS
        try:
            return cls(name)
        except ValueError:
            raise InvalidInputError(
                f"Unknown event: {str(name)[:50]}",
                event=str(name)[:50],
            ) from None


class OutboundEvent(str, Enum):
    """Events the relay sends to clients."""

    WELCOME = "welcome"
    ROOM_CREATED = "room-created"
    ROOM_JOINED = "room-joined"
    USER_JOINED = "user-joined"
    USER_LEFT = "user-left"
    NEW_MESSAGE = "new-message"
    ROOMS_LIST = "rooms-list"
    ERROR = "error"


WELCOME_MESSAGE = "Welcome to Local Messenger!"


# =============================================================================
# Inbound payloads
# =============================================================================


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CreateRoomPayload(_Payload):
    name: str | None = None
    description: str | None = None
    is_private: bool = Field(default=False, alias="isPrivate")


class RoomRefPayload(_Payload):
    """Payload of join-room and leave-room."""

    room_id: str = Field(alias="roomId", min_length=1)

    @field_validator("room_id", mode="before")
    @classmethod
    def _coerce_room_id(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class SendMessagePayload(RoomRefPayload):
    content: str | None = None


class ListRoomsPayload(_Payload):
    pass


PAYLOAD_MODELS: dict[InboundEvent, type[_Payload]] = {
    InboundEvent.CREATE_ROOM: CreateRoomPayload,
    InboundEvent.JOIN_ROOM: RoomRefPayload,
    InboundEvent.LEAVE_ROOM: RoomRefPayload,
    InboundEvent.SEND_MESSAGE: SendMessagePayload,
    InboundEvent.LIST_ROOMS: ListRoomsPayload,
}


def parse_payload(event: InboundEvent, data: Any) -> _Payload:
    """
    Validate raw event data against the event's payload model.

    A bare string is accepted as the room id for join-room and leave-room.

    Raises:
        InvalidInputError: If the data does not match the payload shape.
    """
    if data is None:
        data = {}
    elif isinstance(data, str) and event in (InboundEvent.JOIN_ROOM, InboundEvent.LEAVE_ROOM):
        data = {"roomId": data}

    if not isinstance(data, dict):
        raise InvalidInputError("Invalid payload", event=event.value)

    try:
        return PAYLOAD_MODELS[event].model_validate(data)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise InvalidInputError(
            f"Invalid payload: {', '.join(fields) or 'data'}",
            event=event.value,
        ) from None


# =============================================================================
# Outbound builders
# =============================================================================


def envelope(event: OutboundEvent, data: dict[str, Any]) -> dict[str, Any]:
    return {"event": event.value, "data": data}


def welcome_event(user_id: str, username: str, connection_id: str) -> dict[str, Any]:
    return envelope(
        OutboundEvent.WELCOME,
        {
            "message": WELCOME_MESSAGE,
            "userId": user_id,
            "username": username,
            "connectionId": connection_id,
            "serverTime": isoformat(utc_now()),
        },
    )


def room_created_event(room: dict[str, Any]) -> dict[str, Any]:
    return envelope(OutboundEvent.ROOM_CREATED, {"room": room})


def room_joined_event(
    snapshot: "RoomSnapshot",
    users: list[dict[str, str]],
) -> dict[str, Any]:
    return envelope(
        OutboundEvent.ROOM_JOINED,
        {
            "room": snapshot.room_dict(),
            "history": [message.to_dict() for message in snapshot.history],
            "memberCount": snapshot.member_count,
            "users": users,
        },
    )


def user_joined_event(room_id: str, user: dict[str, str], member_count: int) -> dict[str, Any]:
    return envelope(
        OutboundEvent.USER_JOINED,
        {"roomId": room_id, "user": user, "memberCount": member_count},
    )


def user_left_event(room_id: str, user: dict[str, str], member_count: int) -> dict[str, Any]:
    return envelope(
        OutboundEvent.USER_LEFT,
        {"roomId": room_id, "user": user, "memberCount": member_count},
    )


def new_message_event(message: "Message") -> dict[str, Any]:
    return envelope(OutboundEvent.NEW_MESSAGE, {"message": message.to_dict()})


def rooms_list_event(rooms: Iterable["RoomSummary"]) -> dict[str, Any]:
    return envelope(OutboundEvent.ROOMS_LIST, {"rooms": [room.to_dict() for room in rooms]})


def error_event(message: str, code: str, event: str | None = None) -> dict[str, Any]:
    return envelope(OutboundEvent.ERROR, {"message": message, "code": code, "event": event})
