"""Infrastructure layer for the BullsEye live feed.

This package provides the WebSocket feed connection manager, its
auto-reconnect wrapper, and the HTTP metrics client.
"""

from infra.feed_connection import (
    ConnectionState,
    FeedConfig,
    FeedConnectionManager,
    FeedHandle,
)
from infra.feed_reconnect import ReconnectingFeed, ReconnectPolicy
from infra.metrics_client import Metrics, MetricsClient, MetricsClientConfig

__all__: list[str] = [
    "ConnectionState",
    "FeedConfig",
    "FeedConnectionManager",
    "FeedHandle",
    "Metrics",
    "MetricsClient",
    "MetricsClientConfig",
    "ReconnectPolicy",
    "ReconnectingFeed",
]
