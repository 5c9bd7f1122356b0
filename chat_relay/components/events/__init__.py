"""
Event handling components.

Inbound action names and payload schemas, outbound event builders.
"""

from chat_relay.components.events.types import (
    InboundEvent,
    OutboundEvent,
    CreateRoomPayload,
    RoomRefPayload,
    SendMessagePayload,
    parse_payload,
    error_event,
    new_message_event,
    room_created_event,
    room_joined_event,
    rooms_list_event,
    user_joined_event,
    user_left_event,
    welcome_event,
)

__all__ = [
    # Types
    "InboundEvent",
    "OutboundEvent",
    # Payloads
    "CreateRoomPayload",
    "RoomRefPayload",
    "SendMessagePayload",
    "parse_payload",
    # Outbound builders
    "error_event",
    "new_message_event",
    "room_created_event",
    "room_joined_event",
    "rooms_list_event",
    "user_joined_event",
    "user_left_event",
    "welcome_event",
]
