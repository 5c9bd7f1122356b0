"""
Persistence collaborators.

Persistence is fire-and-forget from the relay's point of view: a message
is handed to the hook after it has been committed in memory and its
fan-out has started, and a user's online status is reported after the
connection is registered or deregistered. Nothing the hook does can reach
the client.

Implementations:
- NullPersistence: no-op (default).
- WebhookPersistence: POSTs messages and presence changes as JSON with httpx.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Coroutine, Protocol, runtime_checkable

import httpx

from shared.config.logging import get_logger
from chat_relay.components.core.constants import RelayConstants
from chat_relay.components.core.models import isoformat, utc_now

if TYPE_CHECKING:
    from chat_relay.components.core.models import Identity, Message
    from chat_relay.components.metrics.collector import MetricsCollector

logger = get_logger(__name__)


@runtime_checkable
class PersistenceHook(Protocol):
    """Stores committed messages and user presence somewhere durable."""

    async def persist_message(self, message: "Message") -> None: ...

    async def update_presence(self, identity: "Identity", online: bool) -> None: ...

    async def close(self) -> None: ...


class NullPersistence:
    """Discards everything."""

    async def persist_message(self, message: "Message") -> None:
        return None

    async def update_presence(self, identity: "Identity", online: bool) -> None:
        return None

    async def close(self) -> None:
        return None


class WebhookPersistence:
    """
    POSTs each message to ``url`` and each presence change to ``presence_url``.

    An empty URL disables that kind of call. Uses one pooled
    httpx.AsyncClient, created lazily inside the running event loop.
    Non-2xx responses and transport errors are logged and swallowed here.
    """

    def __init__(self, url: str, timeout: float = 5.0, presence_url: str = "") -> None:
        self.url = url
        self.presence_url = presence_url
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        # Fast path: client already initialized
        if self._client is not None and not self._client.is_closed:
            return self._client

        async with self._client_lock:
            if self._client is None or self._client.is_closed:
                self._client = httpx.AsyncClient(
                    timeout=self.timeout,
                    limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
                )
        return self._client

    async def _post(self, url: str, body: dict[str, Any], **log_context: Any) -> None:
        try:
            client = await self._get_client()
            response = await client.post(url, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Persistence webhook rejected call",
                status_code=e.response.status_code,
                **log_context,
            )
        except httpx.HTTPError as e:
            logger.warning(
                "Persistence webhook unreachable",
                error=f"{type(e).__name__}: {e}",
                **log_context,
            )

    async def persist_message(self, message: "Message") -> None:
        if not self.url:
            return
        await self._post(
            self.url,
            message.to_dict(),
            message_id=message.id,
            room_id=message.room_id,
        )

    async def update_presence(self, identity: "Identity", online: bool) -> None:
        if not self.presence_url:
            return
        await self._post(
            self.presence_url,
            {
                "userId": identity.user_id,
                "username": identity.display_name,
                "isOnline": online,
                "lastSeen": isoformat(utc_now()),
            },
            user_id=identity.user_id,
            online=online,
        )

    async def close(self) -> None:
        """Close the HTTP client. Called on shutdown."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class PersistenceDispatcher:
    """
    Runs persistence hook calls as background tasks.

    Keeps a strong reference to every in-flight task so none is garbage
    collected mid-flight, and logs whatever escapes the hook.
    """

    def __init__(
        self,
        hook: PersistenceHook | None = None,
        metrics: "MetricsCollector | None" = None,
        drain_timeout: float = RelayConstants.PERSISTENCE_DRAIN_TIMEOUT,
    ) -> None:
        self._hook: PersistenceHook = hook or NullPersistence()
        self._metrics = metrics
        self._drain_timeout = drain_timeout
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def hook(self) -> PersistenceHook:
        return self._hook

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def accepting(self) -> bool:
        """False after shutdown or for the null hook."""
        return not self._closed and not isinstance(self._hook, NullPersistence)

    def submit(self, message: "Message") -> asyncio.Task[None] | None:
        """
        Schedule persistence of a committed message.

        Returns the task, or None after shutdown or for the null hook.
        """
        if not self.accepting:
            return None
        return self._spawn(
            self._hook.persist_message(message),
            f"persist_{message.id}",
            message_id=message.id,
            room_id=message.room_id,
        )

    def submit_presence(self, identity: "Identity", online: bool) -> asyncio.Task[None] | None:
        """Schedule a presence update. Returns None like ``submit``."""
        if not self.accepting:
            return None
        return self._spawn(
            self._hook.update_presence(identity, online),
            f"presence_{identity.user_id}",
            user_id=identity.user_id,
            online=online,
        )

    def _spawn(
        self,
        call: Coroutine[Any, Any, None],
        name: str,
        **log_context: Any,
    ) -> asyncio.Task[None]:
        task = asyncio.create_task(self._run(call, **log_context), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, call: Coroutine[Any, Any, None], **log_context: Any) -> None:
        try:
            await call
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._metrics is not None:
                self._metrics.increment_persistence_failures()
            logger.warning(
                "Persistence call failed",
                error=f"{type(e).__name__}: {e}",
                **log_context,
            )

    async def drain(self) -> None:
        """
        Wait for in-flight tasks, cancel whatever outlives the drain timeout,
        and close the hook.
        """
        self._closed = True
        tasks = list(self._tasks)
        if tasks:
            _done, pending = await asyncio.wait(tasks, timeout=self._drain_timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning("Cancelled pending persistence tasks", count=len(pending))
        await self._hook.close()
