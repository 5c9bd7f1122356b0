"""
Room storage.
"""

from chat_relay.components.rooms.store import RoomStore

__all__ = ["RoomStore"]
