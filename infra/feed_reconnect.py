"""Auto-reconnect wrapper around :class:`FeedConnectionManager`.

The feed connection manager never retries on its own: an ``ERRORED``
handle stays errored. ``ReconnectingFeed`` composes a retry policy on
top of the manager's ``start()`` / ``stop()`` contract, watching the
state callback and starting a fresh handle after an exponential backoff
with jitter.

Backoff:
    The n-th consecutive reconnect waits
    ``min(min_delay * 2 ** (n - 1), max_delay)`` seconds, scaled by a
    random factor in ``[0.8, 1.2]`` so many viewers restarting together
    do not hit the server in lockstep. Reaching ``CONNECTED`` resets the
    count.

Thread ownership:
    Reconnects run on a background ``feed-reconnect`` thread; only one
    exists at a time. ``start()`` and ``stop()`` may be called from any
    thread.

Example::

    feed = ReconnectingFeed(
        FeedConnectionManager(FeedConfig(notification_interval_ms=1000)),
        policy=ReconnectPolicy(min_delay=0.5, max_delay=10.0),
    )
    feed.start("ws://localhost:3000/ws", on_update=print)
    # ... connection drops and comes back on its own ...
    feed.stop()
"""

import logging
import random
import threading

from pydantic import BaseModel, ConfigDict, Field, model_validator

from infra.feed_connection import (
    ConnectionState,
    FeedConnectionManager,
    FeedHandle,
    StateCallback,
    UpdateCallback,
)

logger: logging.Logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ReconnectPolicy(BaseModel):
    """Retry policy for :class:`ReconnectingFeed`.

    Attributes:
        min_delay: Delay before the first reconnect, in seconds.
        max_delay: Cap on the backoff delay, in seconds.
        max_attempts: Consecutive reconnects allowed without reaching
            ``CONNECTED``. ``None`` retries forever.
        reconnect_on_close: Also reconnect after a clean remote close,
            not only after an error.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    min_delay: float = Field(
        default=1.0,
        ge=0.01,
        description="Delay before the first reconnect in seconds",
    )
    max_delay: float = Field(
        default=30.0,
        ge=0.01,
        description="Maximum backoff delay in seconds",
    )
    max_attempts: int | None = Field(
        default=None,
        ge=1,
        description="Consecutive reconnects before giving up (None = forever)",
    )
    reconnect_on_close: bool = Field(
        default=True,
        description="Reconnect after a clean remote close as well",
    )

    @model_validator(mode="after")
    def _check_delay_order(self) -> "ReconnectPolicy":
        if self.max_delay < self.min_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= min_delay ({self.min_delay})"
            )
        return self

    def delay_for(self, attempt: int) -> float:
        """Un-jittered backoff delay for the 1-based ``attempt``."""
        return min(self.min_delay * 2 ** (attempt - 1), self.max_delay)


# ---------------------------------------------------------------------------
# Reconnecting feed
# ---------------------------------------------------------------------------


class ReconnectingFeed:
    """Keeps a live feed running across transport failures.

    Args:
        manager: The manager whose ``start()`` / ``stop()`` are driven.
        policy: Retry policy. Defaults to ``ReconnectPolicy()``.
    """

    def __init__(
        self,
        manager: FeedConnectionManager,
        policy: ReconnectPolicy | None = None,
    ) -> None:
        self._manager: FeedConnectionManager = manager
        self._policy: ReconnectPolicy = policy or ReconnectPolicy()

        self._endpoint: str | None = None
        self._on_update: UpdateCallback | None = None
        self._on_state_change: StateCallback | None = None

        # Serializes manager.start() against stop()
        self._lifecycle_lock: threading.RLock = threading.RLock()
        self._shutdown_event: threading.Event = threading.Event()
        self._running: bool = False

        # Reconnect guard and counters
        self._reconnecting: bool = False
        self._failures: int = 0
        self._reconnect_count: int = 0
        self._gave_up: bool = False
        self._reconnect_lock: threading.Lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def handle(self) -> FeedHandle | None:
        """Handle of the current attempt."""
        return self._manager.handle

    @property
    def reconnect_count(self) -> int:
        """Reconnect attempts started since ``start()``."""
        with self._reconnect_lock:
            return self._reconnect_count

    @property
    def consecutive_failures(self) -> int:
        """Failures since the last time the feed reached ``CONNECTED``."""
        with self._reconnect_lock:
            return self._failures

    @property
    def gave_up(self) -> bool:
        """Whether ``max_attempts`` was exhausted."""
        with self._reconnect_lock:
            return self._gave_up

    def start(
        self,
        endpoint: str,
        on_update: UpdateCallback,
        on_state_change: StateCallback | None = None,
    ) -> FeedHandle:
        """Start the first attempt and keep reconnecting until ``stop()``.

        Raises:
            RuntimeError: If already running.
        """
        with self._lifecycle_lock:
            if self._running:
                raise RuntimeError("ReconnectingFeed is already running")
            self._running = True
            self._shutdown_event.clear()
            self._endpoint = endpoint
            self._on_update = on_update
            self._on_state_change = on_state_change
            with self._reconnect_lock:
                self._failures = 0
                self._reconnect_count = 0
                self._gave_up = False
            try:
                return self._start_attempt()
            except Exception:
                self._running = False
                raise

    def stop(self) -> None:
        """Stop reconnecting and stop the current handle. Idempotent."""
        with self._lifecycle_lock:
            self._shutdown_event.set()
            if not self._running:
                return
            self._running = False
            self._manager.stop()
        logger.info(
            "Reconnecting feed stopped (reconnects=%d)",
            self.reconnect_count,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_attempt(self) -> FeedHandle:
        return self._manager.start(
            self._endpoint,  # type: ignore[arg-type]
            on_update=self._on_update,  # type: ignore[arg-type]
            on_state_change=self._on_state,
        )

    def _on_state(self, state: ConnectionState) -> None:
        """Forward the transition, then decide whether to reconnect."""
        if self._on_state_change is not None:
            try:
                self._on_state_change(state)
            except Exception:
                logger.exception("State callback error")

        if self._shutdown_event.is_set():
            return
        if state == ConnectionState.CONNECTED:
            with self._reconnect_lock:
                self._failures = 0
        elif state == ConnectionState.ERRORED or (
            state == ConnectionState.DISCONNECTED
            and self._policy.reconnect_on_close
        ):
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        """Spawn the reconnect thread unless one is already pending."""
        with self._reconnect_lock:
            if self._reconnecting or self._shutdown_event.is_set():
                return
            self._failures += 1
            attempt: int = self._failures
            max_attempts: int | None = self._policy.max_attempts
            if max_attempts is not None and attempt > max_attempts:
                self._gave_up = True
                logger.error(
                    "Giving up on %s after %d reconnect attempts",
                    self._endpoint,
                    max_attempts,
                )
                return
            self._reconnecting = True

        thread: threading.Thread = threading.Thread(
            target=self._reconnect_loop,
            args=(attempt,),
            daemon=True,
            name="feed-reconnect",
        )
        thread.start()

    def _reconnect_loop(self, attempt: int) -> None:
        """Wait out the backoff, then start a fresh handle."""
        delay: float = self._policy.delay_for(attempt)
        jittered_delay: float = delay * random.uniform(0.8, 1.2)
        logger.info(
            "Reconnect attempt %d to %s in %.2fs",
            attempt,
            self._endpoint,
            jittered_delay,
        )
        try:
            if self._shutdown_event.wait(timeout=jittered_delay):
                return
        finally:
            # Cleared before start() so a fast failure can schedule again
            with self._reconnect_lock:
                self._reconnecting = False

        with self._lifecycle_lock:
            if self._shutdown_event.is_set():
                return
            try:
                self._start_attempt()
            except Exception:
                logger.exception("Reconnect attempt %d failed to start", attempt)
                return
            with self._reconnect_lock:
                self._reconnect_count += 1
