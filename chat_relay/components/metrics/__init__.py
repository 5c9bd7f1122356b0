"""
Metrics and observability components.
"""

from chat_relay.components.metrics.collector import (
    MetricsCollector,
    ConnectionMetrics,
    RoomMetrics,
    DeliveryMetrics,
)

__all__ = [
    "MetricsCollector",
    "ConnectionMetrics",
    "RoomMetrics",
    "DeliveryMetrics",
]
