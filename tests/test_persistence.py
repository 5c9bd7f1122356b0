"""
Tests for persistence hooks (messages and presence) and the dispatcher.
"""

import asyncio
import json
from unittest.mock import AsyncMock, call

import httpx
import pytest

from chat_relay.components.core.models import Identity, Message, utc_now
from chat_relay.components.metrics.collector import MetricsCollector
from chat_relay.components.persistence.hooks import (
    NullPersistence,
    PersistenceDispatcher,
    PersistenceHook,
    WebhookPersistence,
)
from chat_relay.relay_manager import RelayManager
from tests.conftest import make_sink


def make_message(content: str = "hello") -> Message:
    return Message(
        id="msg_1_abcd",
        room_id="room_1",
        sender=Identity(user_id="u1", display_name="alice"),
        content=content,
        created_at=utc_now(),
    )


class TestDispatcher:
    """Background persistence tasks."""

    @pytest.mark.asyncio
    async def test_submit_runs_hook(self):
        hook = AsyncMock()
        dispatcher = PersistenceDispatcher(hook)
        message = make_message()

        task = dispatcher.submit(message)
        await task

        hook.persist_message.assert_awaited_once_with(message)
        assert dispatcher.pending == 0

    @pytest.mark.asyncio
    async def test_null_hook_schedules_nothing(self):
        dispatcher = PersistenceDispatcher()

        assert isinstance(dispatcher.hook, NullPersistence)
        assert isinstance(dispatcher.hook, PersistenceHook)
        assert dispatcher.submit(make_message()) is None

    @pytest.mark.asyncio
    async def test_hook_failure_is_logged_and_counted(self):
        hook = AsyncMock()
        hook.persist_message.side_effect = ValueError("boom")
        metrics = MetricsCollector()
        dispatcher = PersistenceDispatcher(hook, metrics=metrics)

        await dispatcher.submit(make_message())

        assert metrics.get_snapshot()["persistence_failures"] == 1

    @pytest.mark.asyncio
    async def test_drain_cancels_slow_tasks(self):
        hook = AsyncMock()

        async def slow(_message):
            await asyncio.sleep(10)

        hook.persist_message.side_effect = slow
        dispatcher = PersistenceDispatcher(hook, drain_timeout=0.05)
        task = dispatcher.submit(make_message())

        await asyncio.wait_for(dispatcher.drain(), timeout=1)

        assert task.cancelled()
        hook.close.assert_awaited_once()
        # Closed dispatchers accept nothing new
        assert dispatcher.submit(make_message()) is None


class TestWebhookPersistence:
    """httpx webhook hook."""

    @pytest.mark.asyncio
    async def test_posts_message_json(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(201)

        hook = WebhookPersistence("http://persist.local/messages")
        hook._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        await hook.persist_message(make_message("stored"))
        await hook.close()

        assert len(received) == 1
        assert received[0].method == "POST"
        assert received[0].url == "http://persist.local/messages"
        body = received[0].read()
        assert b'"content":"stored"' in body.replace(b" ", b"")

    @pytest.mark.asyncio
    async def test_error_status_is_swallowed(self):
        hook = WebhookPersistence("http://persist.local/messages")
        hook._client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(500))
        )

        await hook.persist_message(make_message())
        await hook.close()

    @pytest.mark.asyncio
    async def test_transport_error_is_swallowed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        hook = WebhookPersistence("http://persist.local/messages")
        hook._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        await hook.persist_message(make_message())
        await hook.close()


class TestPresence:
    """Online status reported through the persistence hook."""

    @pytest.mark.asyncio
    async def test_submit_presence_runs_hook(self):
        hook = AsyncMock()
        dispatcher = PersistenceDispatcher(hook)
        alice = Identity(user_id="u1", display_name="alice")

        await dispatcher.submit_presence(alice, online=True)

        hook.update_presence.assert_awaited_once_with(alice, True)

    @pytest.mark.asyncio
    async def test_null_hook_skips_presence(self):
        dispatcher = PersistenceDispatcher()
        alice = Identity(user_id="u1", display_name="alice")

        assert dispatcher.submit_presence(alice, online=True) is None

    @pytest.mark.asyncio
    async def test_presence_failure_is_counted(self):
        hook = AsyncMock()
        hook.update_presence.side_effect = RuntimeError("profiles table locked")
        metrics = MetricsCollector()
        dispatcher = PersistenceDispatcher(hook, metrics=metrics)

        await dispatcher.submit_presence(Identity(user_id="u1", display_name="alice"), online=False)

        assert metrics.get_snapshot()["persistence_failures"] == 1

    @pytest.mark.asyncio
    async def test_webhook_posts_presence(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(204)

        hook = WebhookPersistence("", presence_url="http://persist.local/presence")
        hook._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        await hook.update_presence(Identity(user_id="u1", display_name="alice"), online=False)
        # No message URL configured
        await hook.persist_message(make_message())
        await hook.close()

        assert len(received) == 1
        assert received[0].url == "http://persist.local/presence"
        body = json.loads(received[0].read())
        assert body["userId"] == "u1"
        assert body["username"] == "alice"
        assert body["isOnline"] is False
        assert body["lastSeen"].endswith("Z")

    @pytest.mark.asyncio
    async def test_webhook_without_presence_url_sends_nothing(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("unexpected request")

        hook = WebhookPersistence("http://persist.local/messages")
        hook._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        await hook.update_presence(Identity(user_id="u1", display_name="alice"), online=True)
        await hook.close()

    @pytest.mark.asyncio
    async def test_user_online_while_any_connection_is_open(self):
        hook = AsyncMock()
        manager = RelayManager(grace_period=0.05, persistence_hook=hook)
        alice = Identity(user_id="u1", display_name="alice")

        await manager.connect("tab-1", alice, make_sink())
        await manager.connect("tab-2", alice, make_sink())
        await manager.disconnect("tab-1")
        await asyncio.sleep(0)
        assert hook.update_presence.await_args_list == [call(alice, True)]

        await manager.disconnect("tab-2")
        await manager.persistence.drain()

        assert hook.update_presence.await_args_list == [call(alice, True), call(alice, False)]
