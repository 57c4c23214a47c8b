"""Core domain layer for the BullsEye live feed.

This package provides the quote model, the single-slot latest-value
cache, the notification timer, feed liveness tracking, and the error
taxonomy shared by the feed and the metrics client. Models are
Pydantic-based with frozen configuration for immutability.
"""

from core.errors import FeedConnectionError, RetrievalError
from core.feed_health import FeedHealthConfig, FeedHealthMonitor
from core.quote_slot import QuoteSlot, QuoteSlotStats
from core.quotes import LatestQuote
from core.ticker import NotificationTimer

__all__: list[str] = [
    "FeedConnectionError",
    "FeedHealthConfig",
    "FeedHealthMonitor",
    "LatestQuote",
    "NotificationTimer",
    "QuoteSlot",
    "QuoteSlotStats",
    "RetrievalError",
]
