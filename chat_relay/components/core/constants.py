"""
Chat Relay Constants.

Centralized constants with documentation explaining the value of each.
Runtime-tunable values are defaults only; the relay manager reads the
effective values from settings.
"""

from enum import IntEnum
from typing import Final

__all__ = [
    "WSCloseCode",
    "RelayConstants",
    "MSG_PING_PLAIN",
    "MSG_PING_JSON",
    "MSG_PONG_JSON",
]


class WSCloseCode(IntEnum):
    """
    WebSocket close codes used by the relay.

    Standard codes (1000-1999) from RFC 6455.
    Custom codes (4000-4999) for application-specific errors.
    """

    # Standard codes (RFC 6455)
    NORMAL = 1000  # Normal closure
    GOING_AWAY = 1001  # Server shutting down or client navigating away
    POLICY_VIOLATION = 1008  # Generic policy violation
    MESSAGE_TOO_BIG = 1009  # Message too large to process
    SERVER_ERROR = 1011  # Invariant violation while serving the connection
    SERVER_OVERLOADED = 1013  # Server shutting down, try again later

    # Custom application codes (4000-4999)
    AUTH_FAILED = 4001  # Identity token missing, invalid or expired


class RelayConstants:
    """
    Relay operational constants.

    Each constant is documented with the reason for its value.
    """

    # ==========================================================================
    # Room Defaults
    # ==========================================================================

    # DEFAULT_ROOM_NAME: substituted for a missing or blank room name.
    # Room creation never fails for lack of a name.
    DEFAULT_ROOM_NAME: Final[str] = "New Room"

    # DEFAULT_ROOM_DESCRIPTION: substituted for a missing description.
    DEFAULT_ROOM_DESCRIPTION: Final[str] = "Chat room"

    # ROOM_GRACE_PERIOD: 5 minutes
    # A client reloading the page drops its socket and rejoins moments later.
    # Five minutes absorbs that churn without keeping abandoned rooms forever.
    ROOM_GRACE_PERIOD: Final[float] = 300.0

    # ROOM_HISTORY_LIMIT: 500 messages
    # Bounds per-room memory. At ~1 KB per message a full room holds ~500 KB.
    ROOM_HISTORY_LIMIT: Final[int] = 500

    # ==========================================================================
    # Identifiers
    # ==========================================================================

    ROOM_ID_PREFIX: Final[str] = "room_"
    MESSAGE_ID_PREFIX: Final[str] = "msg_"

    # ID_SUFFIX_BYTES: 4 bytes = 8 hex chars
    # Two ids generated in the same millisecond collide with probability 2^-32.
    ID_SUFFIX_BYTES: Final[int] = 4

    # ANONYMOUS_NAME_PREFIX: display name for connections without identity,
    # followed by the first ANONYMOUS_NAME_CHARS characters of the connection id.
    ANONYMOUS_NAME_PREFIX: Final[str] = "user_"
    ANONYMOUS_NAME_CHARS: Final[int] = 6

    # ==========================================================================
    # Transport
    # ==========================================================================

    # WS_RECEIVE_TIMEOUT: 90 seconds
    # Three times the usual client ping interval (30s), so network jitter does
    # not close healthy connections.
    WS_RECEIVE_TIMEOUT: Final[float] = 90.0

    # WS_SEND_TIMEOUT: 5 seconds
    # A recipient that cannot take a frame within 5s is treated as dead.
    WS_SEND_TIMEOUT: Final[float] = 5.0

    # BROADCAST_BATCH_SIZE: 50 concurrent sends per batch
    BROADCAST_BATCH_SIZE: Final[int] = 50

    # ==========================================================================
    # Shutdown
    # ==========================================================================

    # PERSISTENCE_DRAIN_TIMEOUT: 5 seconds
    # In-flight persistence tasks get this long to finish at shutdown before
    # they are cancelled.
    PERSISTENCE_DRAIN_TIMEOUT: Final[float] = 5.0

    # ==========================================================================
    # Lock Management
    # ==========================================================================

    # LOCK_CLEANUP_THRESHOLD: 400 cached room locks
    # Unheld locks of deleted rooms are dropped once this many are cached.
    LOCK_CLEANUP_THRESHOLD: Final[int] = 400

    # LOCK_CLEANUP_INTERVAL: 60 seconds between sweeps of cached room locks
    LOCK_CLEANUP_INTERVAL: Final[float] = 60.0


# Message type constants for heartbeat protocol
MSG_PING_PLAIN: Final[str] = "ping"
MSG_PING_JSON: Final[str] = '{"type":"ping"}'
MSG_PONG_JSON: Final[str] = '{"type":"pong"}'
