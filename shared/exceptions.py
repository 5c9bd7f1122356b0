"""
Centralized relay exceptions for consistent error handling.

Usage:
    from shared.exceptions import RoomNotFoundError, NotAMemberError

    raise RoomNotFoundError(room_id)
    raise NotAMemberError(room_id, connection_id)
    raise InvalidInputError("Room name is too long", field="name")

User-correctable errors (NotFound, InvalidInput, NotAMember) are converted to
an ``error`` event for the originating connection. Invariant violations are
never handled locally.
"""

from typing import Any

from shared.config.logging import get_logger

logger = get_logger(__name__)


class RelayError(Exception):
    """
    Base exception with automatic logging.

    All relay exceptions inherit from this class so that each carries a
    stable machine-readable ``code`` and a client-facing ``message``.
    """

    code: str = "relay_error"

    def __init__(
        self,
        message: str,
        log_level: str = "info",
        **log_context: Any,
    ):
        log_fn = getattr(logger, log_level, logger.warning)
        log_fn(message, code=self.code, **log_context)

        self.message = message
        self.context = log_context
        super().__init__(message)


# =============================================================================
# Not Found Errors
# =============================================================================


class NotFoundError(RelayError):
    """
    Entity not found error.

    Usage:
        raise NotFoundError("Room", "room_1700000000000_ab12cd")
    """

    code = "not_found"

    def __init__(self, entity: str, entity_id: str | None = None, **log_context: Any):
        # The id stays out of the client-facing message, it is logged instead
        super().__init__(f"{entity} not found", entity=entity, entity_id=entity_id, **log_context)


class RoomNotFoundError(NotFoundError):
    """Room does not exist (never created, or already deleted)."""

    def __init__(self, room_id: str | None = None, **log_context: Any):
        super().__init__("Room", room_id, **log_context)
        self.room_id = room_id


class ConnectionNotFoundError(NotFoundError):
    """Connection is not registered."""

    def __init__(self, connection_id: str | None = None, **log_context: Any):
        super().__init__("Connection", connection_id, **log_context)
        self.connection_id = connection_id


# =============================================================================
# Invalid Input Errors
# =============================================================================


class InvalidInputError(RelayError):
    """
    Input validation error.

    Usage:
        raise InvalidInputError("Room name is too long", field="name", length=512)
    """

    code = "invalid_input"

    def __init__(self, message: str, **log_context: Any):
        super().__init__(message, **log_context)


class EmptyContentError(InvalidInputError):
    """Message content is empty after trimming whitespace."""

    def __init__(self, **log_context: Any):
        super().__init__("Message content cannot be empty", **log_context)


# =============================================================================
# Membership Errors
# =============================================================================


class NotAMemberError(RelayError):
    """Action against a room the connection is not a member of."""

    code = "not_a_member"

    def __init__(self, room_id: str, connection_id: str, **log_context: Any):
        super().__init__(
            "Not in this room",
            room_id=room_id,
            connection_id=connection_id,
            **log_context,
        )
        self.room_id = room_id
        self.connection_id = connection_id


# =============================================================================
# Authentication Errors
# =============================================================================


class AuthError(RelayError):
    """Identity could not be resolved from the supplied credential."""

    code = "auth_failed"

    def __init__(self, reason: str = "Authentication error", **log_context: Any):
        super().__init__(reason, log_level="warning", **log_context)


# =============================================================================
# Invariant Violations
# =============================================================================


class InvariantViolationError(RelayError):
    """
    Programmer or transport contract error.

    Not user-correctable: the offending connection is dropped and the error
    is logged loudly.
    """

    code = "invariant_violation"

    def __init__(self, message: str, **log_context: Any):
        super().__init__(message, log_level="error", **log_context)


class DuplicateConnectionError(InvariantViolationError):
    """A connection id was registered twice."""

    def __init__(self, connection_id: str, **log_context: Any):
        super().__init__(
            "Connection already registered",
            connection_id=connection_id,
            **log_context,
        )
        self.connection_id = connection_id


# Errors that are reported back to the originating connection only
USER_CORRECTABLE_ERRORS: tuple[type[RelayError], ...] = (
    NotFoundError,
    InvalidInputError,
    NotAMemberError,
)
