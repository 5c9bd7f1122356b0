"""
WebSocket chat endpoint.

Transport adapter between one WebSocket and the relay manager. It owns
the connection lifecycle (accept, identity, register, message loop,
disconnect) and never touches room state directly.

Frames are JSON text of the form ``{"event": "<name>", "data": {...}}``.
Heartbeat pings are answered here and never reach the router.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

from fastapi import WebSocket, WebSocketDisconnect

from shared.config.logging import connection_id_var, get_logger, sanitize_log_data
from shared.exceptions import AuthError, InvalidInputError, InvariantViolationError
from chat_relay.components.core.constants import (
    MSG_PING_JSON,
    MSG_PING_PLAIN,
    MSG_PONG_JSON,
    RelayConstants,
    WSCloseCode,
)
from chat_relay.components.core.models import generate_connection_id

if TYPE_CHECKING:
    from chat_relay.components.auth.identity import IdentityResolver
    from chat_relay.relay_manager import RelayManager

logger = get_logger(__name__)


async def handle_heartbeat(ws: WebSocket, data: str) -> bool:
    """
    Respond to ping messages with pong.

    Supports both plain text and JSON formatted pings.

    Returns:
        True if message was a heartbeat and was handled, False otherwise.
    """
    if data == MSG_PING_PLAIN or data == MSG_PING_JSON:
        try:
            await ws.send_text(MSG_PONG_JSON)
        except (ConnectionError, RuntimeError, OSError):
            # Connection may have closed - the message loop handles cleanup
            pass
        return True
    return False


class ChatEndpoint:
    """
    Handles one client WebSocket from accept to disconnect.

    Usage:
        endpoint = ChatEndpoint(websocket, manager, resolver, token)
        await endpoint.run()
    """

    endpoint_name = "/ws/chat"

    def __init__(
        self,
        websocket: WebSocket,
        manager: "RelayManager",
        resolver: "IdentityResolver",
        token: str | None = None,
        receive_timeout: float = RelayConstants.WS_RECEIVE_TIMEOUT,
        max_message_size: int = 64 * 1024,
        raise_invariant_violations: bool = False,
    ) -> None:
        """
        Args:
            websocket: The WebSocket connection.
            manager: RelayManager instance.
            resolver: Turns the token into an identity.
            token: Credential from the ``token`` query parameter.
            receive_timeout: Idle seconds before the connection is closed.
            max_message_size: Largest accepted frame, in characters.
            raise_invariant_violations: Re-raise invariant violations after
                cleanup (development) instead of only logging them.
        """
        self.websocket = websocket
        self.manager = manager
        self.resolver = resolver
        self.token = token
        self.receive_timeout = receive_timeout
        self.max_message_size = max_message_size
        self.raise_invariant_violations = raise_invariant_violations

        self.connection_id = generate_connection_id()
        self._is_running = False

    async def run(self) -> None:
        """
        Main entry point.

        1. Accept and resolve identity
        2. Register with the relay manager
        3. Message loop
        4. Disconnect
        """
        await self.websocket.accept()
        token = connection_id_var.set(self.connection_id)
        try:
            await self._run()
        finally:
            connection_id_var.reset(token)

    async def _run(self) -> None:
        # Step 1: Identity
        try:
            identity = self.resolver.resolve(self.token, self.connection_id)
        except AuthError as e:
            self.manager.metrics.increment_connection_rejected_auth()
            await self.websocket.close(code=WSCloseCode.AUTH_FAILED, reason=e.message)
            return

        # Step 2: Register
        try:
            await self.manager.connect(self.connection_id, identity, self.websocket)
        except ConnectionError as e:
            logger.info("Connection rejected", endpoint=self.endpoint_name, reason=str(e))
            await self.websocket.close(code=WSCloseCode.SERVER_OVERLOADED, reason="Server shutting down")
            return
        except InvariantViolationError:
            self.manager.metrics.increment_connection_rejected_invariant()
            await self.websocket.close(code=WSCloseCode.SERVER_ERROR, reason="Internal error")
            if self.raise_invariant_violations:
                raise
            return

        logger.info(
            "WebSocket connected",
            endpoint=self.endpoint_name,
            user_id=identity.user_id,
            username=sanitize_log_data(identity.display_name),
        )

        # Step 3: Message loop
        self._is_running = True
        try:
            await self._message_loop()
        except WebSocketDisconnect as e:
            logger.info("WebSocket disconnected", endpoint=self.endpoint_name, close_code=e.code)
        except RuntimeError as e:
            # Socket closed from the server side (shutdown or dropped as dead)
            logger.info("WebSocket closed", endpoint=self.endpoint_name, reason=str(e))
        except InvariantViolationError:
            logger.exception("Invariant violation, dropping connection", endpoint=self.endpoint_name)
            self.manager.metrics.increment_connection_rejected_invariant()
            await self._close_quietly(WSCloseCode.SERVER_ERROR, "Internal error")
            if self.raise_invariant_violations:
                raise
        finally:
            # Step 4: Disconnect
            self._is_running = False
            await self.manager.disconnect(self.connection_id)

    async def _message_loop(self) -> None:
        while self._is_running:
            try:
                data = await self._receive_with_timeout()
            except InvalidInputError as e:
                await self.manager.router.report_error(self.connection_id, e)
                continue
            if data is None:
                logger.info(
                    "Connection timed out (no messages)",
                    endpoint=self.endpoint_name,
                    timeout=self.receive_timeout,
                )
                await self._close_quietly(WSCloseCode.NORMAL, "Connection timeout")
                break

            if not await self.validate_message_size(data):
                break

            if await handle_heartbeat(self.websocket, data):
                continue

            await self.handle_message(data)

    async def _receive_with_timeout(self) -> str | None:
        """
        Receive a text frame, or None on timeout.

        Raises:
            InvalidInputError: If the client sent a binary frame.
        """
        try:
            return await asyncio.wait_for(
                self.websocket.receive_text(),
                timeout=self.receive_timeout,
            )
        except asyncio.TimeoutError:
            return None
        except KeyError:
            # receive_text() finds no "text" key in a binary frame
            raise InvalidInputError("Binary frames are not supported") from None

    async def validate_message_size(self, data: str) -> bool:
        """Close with 1009 when a frame exceeds the size limit."""
        if len(data) > self.max_message_size:
            logger.warning(
                "Message size exceeded limit",
                endpoint=self.endpoint_name,
                size=len(data),
                max_size=self.max_message_size,
            )
            await self._close_quietly(WSCloseCode.MESSAGE_TOO_BIG, "Message too large")
            return False
        return True

    async def handle_message(self, data: str) -> None:
        """Decode one frame and hand it to the relay."""
        try:
            frame: Any = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Malformed frame", frame=sanitize_log_data(data))
            await self.manager.router.report_error(
                self.connection_id,
                InvalidInputError("Malformed JSON frame"),
            )
            return

        if not isinstance(frame, dict) or "event" not in frame:
            await self.manager.router.report_error(
                self.connection_id,
                InvalidInputError("Frame must be an object with an 'event' field"),
            )
            return

        await self.manager.handle(self.connection_id, frame["event"], frame.get("data"))

    async def _close_quietly(self, code: int, reason: str) -> None:
        try:
            await self.websocket.close(code=code, reason=reason)
        except (ConnectionError, RuntimeError, OSError):
            pass
