"""
Pytest configuration and fixtures for relay tests.

Every test builds its own components; nothing touches module-level state.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from chat_relay.components.connection.registry import ConnectionRegistry
from chat_relay.components.core.models import Identity
from chat_relay.components.rooms.store import RoomStore
from chat_relay.relay_manager import RelayManager

# Short grace period so deferred deletion can be observed with real timers
TEST_GRACE_PERIOD = 0.05


def make_sink() -> MagicMock:
    """Sink double recording every event sent to it."""
    sink = MagicMock()
    sink.send_json = AsyncMock()
    sink.close = AsyncMock()
    return sink


def sent_events(sink: MagicMock) -> list[dict]:
    """All events delivered to a sink, in order."""
    return [call.args[0] for call in sink.send_json.await_args_list]


def event_names(sink: MagicMock) -> list[str]:
    return [event["event"] for event in sent_events(sink)]


def events_named(sink: MagicMock, name: str) -> list[dict]:
    return [event["data"] for event in sent_events(sink) if event["event"] == name]


def identity(name: str) -> Identity:
    return Identity(user_id=f"id-{name}", display_name=name)


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def store(registry):
    registry.register("alice", identity("alice"))
    registry.register("bob", identity("bob"))
    registry.register("carol", identity("carol"))
    return RoomStore(registry, history_limit=5, name_max_length=20, message_max_length=50)


@pytest.fixture
def manager():
    return RelayManager(grace_period=TEST_GRACE_PERIOD, history_limit=10, send_timeout=0.2)


async def connect_all(manager: RelayManager, *names: str) -> dict[str, MagicMock]:
    """Connect one sink per name; the connection id is the name."""
    sinks = {}
    for name in names:
        sinks[name] = make_sink()
        await manager.connect(name, identity(name), sinks[name])
    return sinks


async def create_room(manager: RelayManager, connection_id: str, name: str = "Team") -> str:
    """Create a room through the router and return its id."""
    await manager.handle(connection_id, "create-room", {"name": name, "description": "desc"})
    return manager.store.list_rooms()[-1].id


def reset(*sinks: MagicMock) -> None:
    for sink in sinks:
        sink.send_json.reset_mock()
