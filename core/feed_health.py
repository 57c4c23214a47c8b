"""Feed silence detection for a single live quote stream.

A WebSocket can stay open while the server stops sending frames. The
connection state alone then keeps reporting ``CONNECTED`` and the
consumer keeps receiving the same cached quote on every tick. This
monitor answers the other half of "is the feed healthy": *has anything
arrived recently?*

It uses monotonic timestamps (``time.perf_counter_ns()``) exclusively,
never wall clock, to avoid false alerts from NTP adjustments.

Thread safety:
    Single writer. :meth:`on_event` is called from the feed I/O thread
    only. Queries may run on any thread and see eventually consistent
    values (each read is a single attribute load).

Startup-aware state:
    Before the first event :meth:`is_feed_dead` returns ``False``
    (unknown, not dead). Use :meth:`has_ever_received` to tell
    "unknown" from "healthy".

Example:
    >>> monitor = FeedHealthMonitor(FeedHealthConfig(max_gap_seconds=2.0))
    >>> monitor.is_feed_dead()
    False
    >>> monitor.on_event(now_ns=0)
    >>> monitor.is_feed_dead(now_ns=3_000_000_000)
    True
"""

import time

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class FeedHealthConfig(BaseModel):
    """Immutable configuration for :class:`FeedHealthMonitor`.

    Frozen because the gap is cached in nanoseconds at construction.

    Attributes:
        max_gap_seconds: Silence (in seconds) after which the feed is
            considered dead. Default 5.0 seconds.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_gap_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Silence (seconds) before the feed is considered dead.",
    )


# ---------------------------------------------------------------------------
# Feed Health Monitor
# ---------------------------------------------------------------------------


class FeedHealthMonitor:
    """Liveness tracker for one feed, driven by message arrivals."""

    __slots__ = (
        "_config",
        "_max_gap_ns",
        "_last_event_mono_ns",
        "_event_count",
    )

    def __init__(self, config: FeedHealthConfig | None = None) -> None:
        self._config: FeedHealthConfig = config or FeedHealthConfig()
        self._max_gap_ns: int = int(
            self._config.max_gap_seconds * 1_000_000_000,
        )
        # None = no event received yet
        self._last_event_mono_ns: int | None = None
        self._event_count: int = 0

    def on_event(self, now_ns: int | None = None) -> None:
        """Record that a frame arrived.

        Args:
            now_ns: Optional pre-captured ``time.perf_counter_ns()`` so the
                caller can share one clock read with the quote it builds.
        """
        now: int = now_ns if now_ns is not None else time.perf_counter_ns()
        self._last_event_mono_ns = now
        self._event_count += 1

    def is_feed_dead(self, now_ns: int | None = None) -> bool:
        """Check whether the feed has been silent longer than allowed.

        Returns ``False`` before the first event.

        Args:
            now_ns: Optional pre-captured ``time.perf_counter_ns()``.

        Returns:
            ``True`` if the gap since the last event exceeds
            ``max_gap_seconds``.
        """
        last: int | None = self._last_event_mono_ns
        if last is None:
            return False
        now: int = now_ns if now_ns is not None else time.perf_counter_ns()
        return max(0, now - last) > self._max_gap_ns

    def has_ever_received(self) -> bool:
        """Whether any event has been recorded so far."""
        return self._last_event_mono_ns is not None

    def last_seen_gap_ms(self, now_ns: int | None = None) -> float | None:
        """Milliseconds since the last event, ``None`` before the first."""
        last: int | None = self._last_event_mono_ns
        if last is None:
            return None
        now: int = now_ns if now_ns is not None else time.perf_counter_ns()
        return max(0, now - last) / 1_000_000

    def event_count(self) -> int:
        """Number of events recorded so far."""
        return self._event_count
