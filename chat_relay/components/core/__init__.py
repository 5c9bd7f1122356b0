"""
Core relay components: constants and domain models.
"""

from chat_relay.components.core.constants import (
    WSCloseCode,
    RelayConstants,
    MSG_PING_PLAIN,
    MSG_PING_JSON,
    MSG_PONG_JSON,
)
from chat_relay.components.core.models import (
    Connection,
    EventSink,
    Identity,
    Message,
    Room,
    RoomSnapshot,
    RoomSummary,
    generate_connection_id,
    generate_message_id,
    generate_room_id,
    isoformat,
    utc_now,
)

__all__ = [
    # Constants
    "WSCloseCode",
    "RelayConstants",
    "MSG_PING_PLAIN",
    "MSG_PING_JSON",
    "MSG_PONG_JSON",
    # Models
    "Connection",
    "EventSink",
    "Identity",
    "Message",
    "Room",
    "RoomSnapshot",
    "RoomSummary",
    # Helpers
    "generate_connection_id",
    "generate_message_id",
    "generate_room_id",
    "isoformat",
    "utc_now",
]
