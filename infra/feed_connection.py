"""Throttled live-quote feed over a WebSocket connection.

This module maintains one streaming connection to a quote source,
caches the latest inbound frame, and hands that cached value to a
consumer at a fixed, lower cadence while reporting connection state
transitions.

Architecture note:
    This module uses the synchronous ``websockets`` client on a
    dedicated I/O thread rather than asyncio, so callers need no event
    loop and ``start()`` can return as soon as the thread is spawned.
    Inbound frames are stored inline in the I/O thread; the consumer is
    only ever called from the notification thread or, for state
    changes, from whichever thread observed the transition.

Connection semantics:
    At-most-once, freshest-wins. There is no replay and no buffering:
    a burst of N frames between two notification ticks yields exactly
    one notification carrying the N-th frame. The manager never retries
    a failed connection; a caller wanting auto-reconnect composes
    :class:`infra.feed_reconnect.ReconnectingFeed` around it.

Serialization:
    Open, error, close, tick and stop handlers of one handle run under a
    per-handle re-entrant event lock, so no two of them ever overlap and
    consumer callbacks never see a half-applied transition. Message
    ingestion does not take that lock; it hands the quote to the
    :class:`~core.quote_slot.QuoteSlot` under the slot's own mutex, so it
    never waits on a slow consumer.

Callback contract:
    ``on_update`` and ``on_state_change`` run while the event lock is
    held. They may call ``stop()`` (including on their own handle), but
    should return quickly: a slow callback delays the next transition of
    the same handle. Exceptions they raise are logged and counted, never
    propagated.
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field
from websockets.sync.client import ClientConnection, connect

from core.errors import FeedConnectionError
from core.feed_health import FeedHealthConfig, FeedHealthMonitor
from core.quote_slot import QuoteSlot
from core.quotes import LatestQuote
from core.ticker import NotificationTimer

logger: logging.Logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ConnectionState(str, Enum):
    """Connection state machine for :class:`FeedHandle`.

    States:
        DISCONNECTED: Not started yet, closed by the server, or stopped.
        CONNECTING: ``start()`` called, WebSocket handshake in progress.
        CONNECTED: Handshake complete; the notification timer is armed.
        ERRORED: Handshake or transport failure. See ``last_error``.

    ``DISCONNECTED`` and ``ERRORED`` are terminal for one handle; a new
    ``start()`` on the manager produces a fresh handle.
    """

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    ERRORED = "ERRORED"


_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset(
        {
            ConnectionState.CONNECTED,
            ConnectionState.ERRORED,
            ConnectionState.DISCONNECTED,
        }
    ),
    ConnectionState.CONNECTED: frozenset(
        {ConnectionState.ERRORED, ConnectionState.DISCONNECTED}
    ),
    ConnectionState.ERRORED: frozenset(),
}
"""Legal transitions within one connection attempt."""

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

UpdateCallback = Callable[[LatestQuote], None]
"""Callback signature: ``(quote: LatestQuote) -> None``."""

StateCallback = Callable[[ConnectionState], None]
"""Callback signature: ``(state: ConnectionState) -> None``."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class FeedConfig(BaseModel):
    """Configuration for :class:`FeedConnectionManager`.

    Attributes:
        notification_interval_ms: Cadence of consumer notifications in
            milliseconds. Default 5000. ``start()`` may override it per
            connection attempt.
        open_timeout: WebSocket handshake timeout in seconds.
        close_timeout: Closing handshake timeout in seconds.
        join_timeout: Upper bound on each thread join during ``stop()``.
        skip_unchanged: If ``True``, a tick does not re-deliver a quote
            that an earlier tick already delivered. Default ``False``:
            every tick delivers the current latest quote.
        stale_after_seconds: Silence after which ``stats()`` reports the
            feed as stale even though the socket is still open.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    notification_interval_ms: int = Field(
        default=5000,
        ge=1,
        description="Consumer notification cadence in milliseconds",
    )
    open_timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="WebSocket handshake timeout in seconds",
    )
    close_timeout: float = Field(
        default=5.0,
        gt=0.0,
        description="Closing handshake timeout in seconds",
    )
    join_timeout: float = Field(
        default=5.0,
        gt=0.0,
        description="Upper bound on each thread join during stop()",
    )
    skip_unchanged: bool = Field(
        default=False,
        description="Do not re-deliver an already delivered quote",
    )
    stale_after_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Silence (seconds) before the feed is reported stale",
    )


# ---------------------------------------------------------------------------
# Handle
# ---------------------------------------------------------------------------


class FeedHandle:
    """One started connection attempt of a :class:`FeedConnectionManager`.

    Owns the WebSocket, the I/O thread, the notification timer and the
    latest-quote slot of that attempt. Everything it allocates is freed
    by a single release path reached from ``stop()``, from a transport
    error, and from a remote close.

    Handles are created by :meth:`FeedConnectionManager.start`; do not
    construct them directly.

    Attributes:
        generation: 1-based attempt number within the manager. Also
            stamped on every quote as ``connection_epoch``.
        endpoint: WebSocket URL of this attempt.
    """

    def __init__(
        self,
        generation: int,
        endpoint: str,
        config: FeedConfig,
        notification_interval_ms: int,
        on_update: UpdateCallback,
        on_state_change: StateCallback | None = None,
    ) -> None:
        self.generation: int = generation
        self.endpoint: str = endpoint
        self._config: FeedConfig = config
        self._on_update: UpdateCallback = on_update
        self._on_state_change: StateCallback | None = on_state_change

        # Serializes open/error/close/tick/stop and consumer callbacks
        self._event_lock: threading.RLock = threading.RLock()
        self._callback_thread: int | None = None

        # State machine (guarded by _state_lock for cross-thread reads)
        self._state: ConnectionState = ConnectionState.DISCONNECTED
        self._finished: bool = False
        self._stopped: bool = False
        self._released: bool = False
        self._last_error: FeedConnectionError | None = None
        self._state_lock: threading.Lock = threading.Lock()

        # Resources
        self._ws: ClientConnection | None = None
        self._reader: threading.Thread | None = None
        self._timer: NotificationTimer = NotificationTimer(
            interval_seconds=notification_interval_ms / 1000,
            on_tick=self._on_tick,
            name=f"feed-notify-{generation}",
        )

        # Latest value and liveness (written by the I/O thread only)
        self._slot: QuoteSlot = QuoteSlot()
        self._health: FeedHealthMonitor = FeedHealthMonitor(
            FeedHealthConfig(max_gap_seconds=config.stale_after_seconds),
        )
        self._sequence: int = 0
        self._last_delivered_sequence: int = 0

        # Counters (guarded by _counter_lock)
        self._ticks: int = 0
        self._updates_delivered: int = 0
        self._callback_errors: int = 0
        self._counter_lock: threading.Lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        with self._state_lock:
            return self._state

    @property
    def connected(self) -> bool:
        """Whether the feed is active (``CONNECTED``)."""
        return self.state == ConnectionState.CONNECTED

    @property
    def stopped(self) -> bool:
        """Whether ``stop()`` has been called on this handle."""
        with self._state_lock:
            return self._stopped

    @property
    def last_error(self) -> FeedConnectionError | None:
        """Failure that moved this handle to ``ERRORED``, if any."""
        with self._state_lock:
            return self._last_error

    @property
    def notification_interval_ms(self) -> int:
        """Notification cadence of this attempt in milliseconds."""
        return round(self._timer.interval_seconds * 1000)

    def latest_quote(self) -> LatestQuote | None:
        """Return the cached quote without consuming it."""
        return self._slot.peek()

    def stop(self) -> None:
        """Close the connection and disarm the timer.

        Safe from any state and from any thread, including from inside
        this handle's own callbacks. Idempotent.

        A handle that is ``CONNECTING`` or ``CONNECTED`` reports
        ``DISCONNECTED`` to ``on_state_change`` before this returns;
        after it returns no further callback of this handle runs.
        """
        with self._event_lock:
            with self._state_lock:
                if self._stopped:
                    return
                self._stopped = True
            if self._transition(ConnectionState.DISCONNECTED):
                self._notify_state(ConnectionState.DISCONNECTED)
            in_callback: bool = self._callback_thread == threading.get_ident()

        self._release(wait=not in_callback)
        logger.info(
            "Feed stopped (gen=%d, messages=%d, delivered=%d, errors=%d)",
            self.generation,
            self._health.event_count(),
            self._updates_delivered,
            self._callback_errors,
        )

    def stats(self) -> dict[str, str | int | float | bool | None]:
        """Return connection statistics.

        Returns:
            Dictionary with state, counters, and liveness figures.
        """
        now_ns: int = time.perf_counter_ns()
        current_state: str = self.state.value
        with self._counter_lock:
            ticks: int = self._ticks
            delivered: int = self._updates_delivered
            errs: int = self._callback_errors
        return {
            "state": current_state,
            "connected": current_state == ConnectionState.CONNECTED.value,
            "generation": self.generation,
            "endpoint": self.endpoint,
            "messages_received": self._health.event_count(),
            "updates_delivered": delivered,
            "ticks": ticks,
            "coalesced": self._slot.stats().total_coalesced,
            "callback_errors": errs,
            "feed_stale": self._health.is_feed_dead(now_ns=now_ns),
            "last_quote_age_ms": self._health.last_seen_gap_ms(now_ns=now_ns),
            "has_received": self._health.has_ever_received(),
            "pending_update": self._slot.has_unread,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _begin(self) -> None:
        """Move to CONNECTING and spawn the I/O thread."""
        with self._event_lock:
            if self.stopped or not self._transition(ConnectionState.CONNECTING):
                return
            self._notify_state(ConnectionState.CONNECTING)
            # The CONNECTING callback may have stopped this handle
            if self.stopped:
                return
            self._reader = threading.Thread(
                target=self._run,
                daemon=True,
                name=f"feed-io-{self.generation}",
            )
            self._reader.start()

    def _run(self) -> None:
        """I/O thread body: handshake, then ingest until the socket ends."""
        try:
            ws: ClientConnection = connect(
                self.endpoint,
                open_timeout=self._config.open_timeout,
                close_timeout=self._config.close_timeout,
            )
        except Exception as exc:
            self._handle_error(exc)
            return

        if not self._handle_open(ws):
            # Stopped while the handshake was in flight
            try:
                ws.close()
            except Exception:
                logger.debug("Exception closing abandoned socket", exc_info=True)
            return

        try:
            for message in ws:
                self._handle_message(message)
        except Exception as exc:
            self._handle_error(exc)
            return
        self._handle_close()

    def _release(self, wait: bool = True) -> None:
        """Free the timer, the socket and the I/O thread exactly once.

        Must be called without holding the event lock: joining threads
        that may be waiting on it would otherwise deadlock.

        Args:
            wait: Join the timer and I/O threads. ``False`` when called
                from inside a consumer callback, where those threads may
                be blocked on the event lock this thread holds.
        """
        with self._state_lock:
            if self._released:
                return
            self._released = True
            ws: ClientConnection | None = self._ws
            self._ws = None

        self._timer.disarm(wait=wait, timeout=self._config.join_timeout)

        if ws is not None:
            try:
                ws.close()
            except Exception:
                logger.debug("Exception during close", exc_info=True)

        reader: threading.Thread | None = self._reader
        if wait and reader is not None and reader is not threading.current_thread():
            reader.join(timeout=self._config.join_timeout)
            if reader.is_alive():
                logger.warning(
                    "Feed I/O thread did not exit within %.1fs (gen=%d)",
                    self._config.join_timeout,
                    self.generation,
                )

    # ------------------------------------------------------------------
    # Connection events
    # ------------------------------------------------------------------

    def _handle_open(self, ws: ClientConnection) -> bool:
        """Handle a completed handshake.

        Returns:
            ``False`` if the handle was stopped meanwhile; the caller
            then owns ``ws`` and must close it.
        """
        with self._event_lock:
            with self._state_lock:
                if self._stopped:
                    return False
                self._ws = ws
            if not self._transition(ConnectionState.CONNECTED):
                return True
            self._timer.arm()
            logger.info("Feed connected to %s (gen=%d)", self.endpoint, self.generation)
            self._notify_state(ConnectionState.CONNECTED)
            return True

    def _handle_message(self, message: str | bytes) -> None:
        """Overwrite the cached quote with an inbound frame.

        **HOT PATH** — runs in the I/O thread for every frame. Takes no
        event lock and never calls the consumer.
        """
        if self._stopped:
            return
        payload: str = (
            message
            if isinstance(message, str)
            else message.decode("utf-8", errors="replace")
        )
        now_ns: int = time.perf_counter_ns()
        self._sequence += 1
        quote: LatestQuote = LatestQuote.model_construct(
            payload=payload,
            sequence=self._sequence,
            recv_ts=time.time_ns(),
            recv_mono_ns=now_ns,
            connection_epoch=self.generation,
        )
        self._slot.put(quote)
        self._health.on_event(now_ns=now_ns)

    def _handle_error(self, exc: BaseException) -> None:
        """Move to ERRORED and release resources. Never raises."""
        if isinstance(exc, FeedConnectionError):
            error: FeedConnectionError = exc
        else:
            error = FeedConnectionError(
                f"Feed connection to {self.endpoint} failed: {exc}",
                endpoint=self.endpoint,
            )
            error.__cause__ = exc

        with self._event_lock:
            if self.stopped or not self._transition(ConnectionState.ERRORED):
                return
            with self._state_lock:
                self._last_error = error
            logger.warning(
                "Feed error on %s (gen=%d): %s",
                self.endpoint,
                self.generation,
                exc,
            )
            self._notify_state(ConnectionState.ERRORED)
        self._release()

    def _handle_close(self) -> None:
        """Move to DISCONNECTED after a clean remote close."""
        with self._event_lock:
            if self.stopped or not self._transition(ConnectionState.DISCONNECTED):
                return
            logger.info("Feed closed by %s (gen=%d)", self.endpoint, self.generation)
            self._notify_state(ConnectionState.DISCONNECTED)
        self._release()

    def _on_tick(self) -> None:
        """Deliver the cached quote to the consumer.

        Runs in the notification thread. Does nothing unless the handle
        is ``CONNECTED`` and at least one quote has arrived.
        """
        with self._event_lock:
            if self.stopped or self.state != ConnectionState.CONNECTED:
                return
            with self._counter_lock:
                self._ticks += 1
            quote: LatestQuote | None = self._slot.read()
            if quote is None:
                return
            if (
                self._config.skip_unchanged
                and quote.sequence == self._last_delivered_sequence
            ):
                return
            self._last_delivered_sequence = quote.sequence
            if self._invoke(self._on_update, quote):
                with self._counter_lock:
                    self._updates_delivered += 1

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, new_state: ConnectionState) -> bool:
        """Apply ``new_state`` if legal. Caller holds the event lock.

        Returns:
            ``True`` if the state changed.
        """
        with self._state_lock:
            if self._finished or new_state not in _TRANSITIONS[self._state]:
                return False
            logger.debug(
                "Feed state %s -> %s (gen=%d)",
                self._state.value,
                new_state.value,
                self.generation,
            )
            self._state = new_state
            if new_state in (ConnectionState.DISCONNECTED, ConnectionState.ERRORED):
                self._finished = True
        if new_state != ConnectionState.CONNECTED:
            # Timer only ticks while CONNECTED; joined later by _release
            self._timer.disarm(wait=False)
        return True

    def _notify_state(self, state: ConnectionState) -> None:
        if self._on_state_change is not None:
            self._invoke(self._on_state_change, state)

    def _invoke(self, callback: Callable[..., None], arg: object) -> bool:
        """Run a consumer callback with isolation.

        Returns:
            ``True`` if the callback returned normally.
        """
        previous: int | None = self._callback_thread
        self._callback_thread = threading.get_ident()
        try:
            callback(arg)
            return True
        except Exception:
            with self._counter_lock:
                self._callback_errors += 1
            logger.exception("Feed consumer callback error (gen=%d)", self.generation)
            return False
        finally:
            self._callback_thread = previous


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class FeedConnectionManager:
    """Starts and stops throttled live-quote connections.

    Holds at most one live :class:`FeedHandle` at a time. Each
    ``start()`` creates a fresh handle with a new generation, a new
    empty quote slot and a new timer.

    Args:
        config: Feed configuration. Defaults to ``FeedConfig()``.

    Example::

        manager = FeedConnectionManager()
        handle = manager.start(
            "ws://localhost:3000/ws",
            on_update=lambda quote: print(quote.payload),
            on_state_change=lambda state: print(state.value),
            notification_interval_ms=1000,
        )
        # ... quotes arrive at most once per second ...
        manager.stop(handle)
    """

    def __init__(self, config: FeedConfig | None = None) -> None:
        self._config: FeedConfig = config or FeedConfig()
        self._handle: FeedHandle | None = None
        self._generation: int = 0
        self._lock: threading.Lock = threading.Lock()

    @property
    def config(self) -> FeedConfig:
        """Manager configuration."""
        return self._config

    @property
    def handle(self) -> FeedHandle | None:
        """Most recently started handle, if any."""
        with self._lock:
            return self._handle

    @property
    def state(self) -> ConnectionState:
        """State of the most recent handle, ``DISCONNECTED`` if none."""
        handle: FeedHandle | None = self.handle
        if handle is None:
            return ConnectionState.DISCONNECTED
        return handle.state

    @property
    def connected(self) -> bool:
        """Whether the most recent handle is ``CONNECTED``."""
        return self.state == ConnectionState.CONNECTED

    def start(
        self,
        endpoint: str,
        on_update: UpdateCallback,
        on_state_change: StateCallback | None = None,
        notification_interval_ms: int | None = None,
    ) -> FeedHandle:
        """Open a feed connection and return its handle.

        Returns immediately; the handshake runs on the handle's I/O
        thread. No quote is delivered as a direct result of this call.

        Args:
            endpoint: WebSocket URL (``ws://`` or ``wss://``).
            on_update: Receives the latest quote on each notification
                tick while connected.
            on_state_change: Receives every state transition, starting
                with ``CONNECTING``.
            notification_interval_ms: Per-attempt override of
                ``FeedConfig.notification_interval_ms``.

        Returns:
            The new :class:`FeedHandle`.

        Raises:
            ValueError: If ``endpoint`` is empty or the interval is not
                positive.
            RuntimeError: If the current handle is still ``CONNECTING``
                or ``CONNECTED``.
        """
        if not endpoint:
            raise ValueError("endpoint must be a non-empty WebSocket URL")
        interval_ms: int = (
            notification_interval_ms
            if notification_interval_ms is not None
            else self._config.notification_interval_ms
        )
        if interval_ms <= 0:
            raise ValueError(
                f"notification_interval_ms must be > 0, got {interval_ms}"
            )

        with self._lock:
            previous: FeedHandle | None = self._handle
            if previous is not None and previous.state in (
                ConnectionState.CONNECTING,
                ConnectionState.CONNECTED,
            ):
                raise RuntimeError(
                    f"Cannot start: feed is in {previous.state.value} state"
                )
            self._generation += 1
            handle: FeedHandle = FeedHandle(
                generation=self._generation,
                endpoint=endpoint,
                config=self._config,
                notification_interval_ms=interval_ms,
                on_update=on_update,
                on_state_change=on_state_change,
            )
            self._handle = handle

        if previous is not None:
            previous.stop()

        logger.info(
            "Starting feed to %s (gen=%d, interval=%dms)",
            endpoint,
            handle.generation,
            interval_ms,
        )
        handle._begin()
        return handle

    def stop(self, handle: FeedHandle | None = None) -> None:
        """Stop ``handle``, or the most recent handle when omitted.

        Idempotent; a no-op when nothing was started.
        """
        target: FeedHandle | None = handle if handle is not None else self.handle
        if target is not None:
            target.stop()
