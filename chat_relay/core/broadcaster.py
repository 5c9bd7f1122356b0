"""
Connection Broadcaster.

Delivers outbound events to a set of connections. Sends run concurrently
in batches; each send is bounded by a timeout and isolated, so a slow or
closed recipient never delays or breaks delivery to the others.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Callable, Iterable

from shared.config.logging import get_logger
from chat_relay.components.core.constants import RelayConstants

if TYPE_CHECKING:
    from chat_relay.components.connection.registry import ConnectionRegistry
    from chat_relay.components.core.models import EventSink
    from chat_relay.components.metrics.collector import MetricsCollector

logger = get_logger(__name__)


class ConnectionBroadcaster:
    """
    Sends events to registered connections.

    Responsibilities:
    - Send to an individual connection
    - Batch broadcast to a set of connection ids
    - Report recipients whose send failed to ``on_dead``
    """

    def __init__(
        self,
        registry: "ConnectionRegistry",
        metrics: "MetricsCollector",
        on_dead: Callable[[str], None] | None = None,
        batch_size: int = RelayConstants.BROADCAST_BATCH_SIZE,
        send_timeout: float = RelayConstants.WS_SEND_TIMEOUT,
    ) -> None:
        """
        Args:
            registry: Resolves connection ids to their sinks.
            metrics: Collects delivery metrics.
            on_dead: Called with the id of every recipient whose send failed.
                Must not block; the relay manager schedules a disconnect.
            batch_size: Number of sends run concurrently.
            send_timeout: Seconds a single send may take.
        """
        self._registry = registry
        self._metrics = metrics
        self._on_dead = on_dead
        self._batch_size = max(1, batch_size)
        self._send_timeout = send_timeout

    def set_dead_callback(self, on_dead: Callable[[str], None]) -> None:
        self._on_dead = on_dead

    async def _send(self, sink: "EventSink", payload: dict[str, Any]) -> None:
        await asyncio.wait_for(sink.send_json(payload), timeout=self._send_timeout)

    async def send_to_connection(self, connection_id: str, payload: dict[str, Any]) -> bool:
        """
        Send to a single connection, returning success status.

        Unknown connection ids are skipped.
        """
        return await self.broadcast([connection_id], payload, context="direct") == 1

    async def broadcast(
        self,
        connection_ids: Iterable[str],
        payload: dict[str, Any],
        context: str = "broadcast",
    ) -> int:
        """
        Send to many connections in parallel batches.

        Args:
            connection_ids: Recipients. Ids no longer registered are skipped.
            payload: Event to send.
            context: Label for logging.

        Returns:
            Number of connections that received the event.
        """
        targets: list[tuple[str, "EventSink"]] = []
        for connection_id in connection_ids:
            connection = self._registry.lookup(connection_id)
            if connection is not None and connection.sink is not None:
                targets.append((connection_id, connection.sink))

        if not targets:
            return 0

        sent = 0
        failed: list[str] = []

        for i in range(0, len(targets), self._batch_size):
            batch = targets[i : i + self._batch_size]
            results = await asyncio.gather(
                *[self._send(sink, payload) for _, sink in batch],
                return_exceptions=True,
            )

            for (connection_id, _), result in zip(batch, results):
                if isinstance(result, BaseException):
                    failed.append(connection_id)
                    logger.debug(
                        "Send failed",
                        context=context,
                        connection_id=connection_id,
                        error=f"{type(result).__name__}: {result}",
                    )
                else:
                    sent += 1

        self._metrics.add_events_delivered(sent)
        if failed:
            self._metrics.add_delivery_failures(len(failed))
            logger.info(
                "Broadcast completed with failures",
                context=context,
                event=payload.get("event"),
                sent=sent,
                failed=len(failed),
            )
            if self._on_dead is not None:
                for connection_id in failed:
                    self._on_dead(connection_id)

        return sent
