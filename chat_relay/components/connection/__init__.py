"""
Connection management components.

Tracks live connections and serializes per-room work.
"""

from chat_relay.components.connection.registry import ConnectionRegistry
from chat_relay.components.connection.locks import LockManager

__all__ = [
    "ConnectionRegistry",
    "LockManager",
]
