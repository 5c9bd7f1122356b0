"""
Relay core: fan-out, action routing and room lifecycle.

- broadcaster: batched, isolated delivery to connections
- router: inbound actions to room mutations and outbound events
- reaper: disconnect handling and deferred deletion of empty rooms
"""

from chat_relay.core.broadcaster import ConnectionBroadcaster
from chat_relay.core.router import BroadcastRouter, RoomLifecycleListener
from chat_relay.core.reaper import LifecycleReaper

__all__ = [
    "ConnectionBroadcaster",
    "BroadcastRouter",
    "RoomLifecycleListener",
    "LifecycleReaper",
]
