"""
WebSocket endpoint components.
"""

from chat_relay.components.endpoints.base import ChatEndpoint, handle_heartbeat

__all__ = [
    "ChatEndpoint",
    "handle_heartbeat",
]
