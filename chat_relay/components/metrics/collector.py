"""
Metrics Collector for the chat relay.

Centralizes counters for observability. Counters are plain integers
guarded by a threading lock so that health checks running in a worker
thread see a consistent snapshot.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any


@dataclass
class ConnectionMetrics:
    """Metrics for connection management."""
    opened: int = 0
    closed: int = 0
    rejected_auth: int = 0
    rejected_shutdown: int = 0
    rejected_invariant: int = 0


@dataclass
class RoomMetrics:
    """Metrics for room lifecycle."""
    created: int = 0
    deleted: int = 0
    deletions_scheduled: int = 0
    deletions_cancelled: int = 0


@dataclass
class DeliveryMetrics:
    """Metrics for messages and fan-out."""
    messages_sent: int = 0
    events_delivered: int = 0
    delivery_failures: int = 0
    errors_reported: int = 0
    persistence_failures: int = 0


class MetricsCollector:
    """
    Thread-safe metrics collector for the relay.

    Usage:
        metrics = MetricsCollector()
        metrics.increment_rooms_created()
        stats = metrics.get_snapshot()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._connection = ConnectionMetrics()
        self._room = RoomMetrics()
        self._delivery = DeliveryMetrics()

    # ==========================================================================
    # Connection Metrics
    # ==========================================================================

    def increment_connections_opened(self) -> None:
        with self._lock:
            self._connection.opened += 1

    def increment_connections_closed(self) -> None:
        with self._lock:
            self._connection.closed += 1

    def increment_connection_rejected_auth(self) -> None:
        """Increment count of connections rejected due to auth failure."""
        with self._lock:
            self._connection.rejected_auth += 1

    def increment_connection_rejected_shutdown(self) -> None:
        """Increment count of connections refused while shutting down."""
        with self._lock:
            self._connection.rejected_shutdown += 1

    def increment_connection_rejected_invariant(self) -> None:
        """Increment count of connections dropped after an invariant violation."""
        with self._lock:
            self._connection.rejected_invariant += 1

    # ==========================================================================
    # Room Metrics
    # ==========================================================================

    def increment_rooms_created(self) -> None:
        with self._lock:
            self._room.created += 1

    def increment_rooms_deleted(self) -> None:
        with self._lock:
            self._room.deleted += 1

    def increment_deletions_scheduled(self) -> None:
        with self._lock:
            self._room.deletions_scheduled += 1

    def increment_deletions_cancelled(self) -> None:
        with self._lock:
            self._room.deletions_cancelled += 1

    # ==========================================================================
    # Delivery Metrics
    # ==========================================================================

    def increment_messages_sent(self) -> None:
        with self._lock:
            self._delivery.messages_sent += 1

    def add_events_delivered(self, count: int) -> None:
        with self._lock:
            self._delivery.events_delivered += count

    def add_delivery_failures(self, count: int) -> None:
        """Add count of recipients a fan-out could not reach."""
        with self._lock:
            self._delivery.delivery_failures += count

    def increment_errors_reported(self) -> None:
        """Increment count of error events sent back to an originator."""
        with self._lock:
            self._delivery.errors_reported += 1

    def increment_persistence_failures(self) -> None:
        with self._lock:
            self._delivery.persistence_failures += 1

    # ==========================================================================
    # Snapshot
    # ==========================================================================

    def get_snapshot(self) -> dict[str, Any]:
        """
        Get a snapshot of all metrics.

        Metric names follow the pattern {category}_{metric}.
        """
        with self._lock:
            return {
                "connections_opened": self._connection.opened,
                "connections_closed": self._connection.closed,
                "connections_rejected_auth": self._connection.rejected_auth,
                "connections_rejected_shutdown": self._connection.rejected_shutdown,
                "connections_rejected_invariant": self._connection.rejected_invariant,
                "rooms_created": self._room.created,
                "rooms_deleted": self._room.deleted,
                "rooms_deletions_scheduled": self._room.deletions_scheduled,
                "rooms_deletions_cancelled": self._room.deletions_cancelled,
                "messages_sent": self._delivery.messages_sent,
                "events_delivered": self._delivery.events_delivered,
                "events_delivery_failures": self._delivery.delivery_failures,
                "events_errors_reported": self._delivery.errors_reported,
                "persistence_failures": self._delivery.persistence_failures,
            }

    def reset(self) -> dict[str, Any]:
        """Reset all metrics and return the previous values."""
        snapshot = self.get_snapshot()
        with self._lock:
            self._connection = ConnectionMetrics()
            self._room = RoomMetrics()
            self._delivery = DeliveryMetrics()
        return snapshot
