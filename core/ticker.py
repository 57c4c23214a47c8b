"""Periodic notification timer for the throttled feed.

``NotificationTimer`` runs a callback at a fixed interval on a daemon
thread between ``arm()`` and ``disarm()``. The feed connection manager
arms one per connection once the socket is open and disarms it on
every exit path.

The loop waits on a ``threading.Event`` with a timeout rather than
sleeping, so ``disarm()`` wakes it immediately instead of after up to
one full interval.

Thread ownership:
    - ``arm()`` / ``disarm()`` — any thread. ``disarm()`` may be called
      from inside the tick callback itself; it then signals the loop
      but does not join its own thread.
    - the tick callback — timer thread only.

Example:
    >>> ticks = []
    >>> timer = NotificationTimer(interval_seconds=0.01,
    ...                           on_tick=lambda: ticks.append(1))
    >>> timer.arm()
    >>> # ... some ticks later ...
    >>> timer.disarm()
    >>> timer.armed
    False
"""

import logging
import threading
from typing import Callable

logger: logging.Logger = logging.getLogger(__name__)

TickCallback = Callable[[], None]
"""Callback signature: ``() -> None``."""


class NotificationTimer:
    """Fixed-interval repeating timer backed by one daemon thread.

    A disarmed timer can be armed again; each arm gets a fresh stop
    event, so a late ``disarm()`` of an earlier arming never cancels a
    later one.

    Exceptions raised by the tick callback are logged and the timer
    keeps running.

    Args:
        interval_seconds: Time between ticks. Must be > 0.
        on_tick: Callback invoked once per interval.
        name: Thread name, useful in logs and debuggers.

    Raises:
        ValueError: If ``interval_seconds`` is not greater than zero.
    """

    def __init__(
        self,
        interval_seconds: float,
        on_tick: TickCallback,
        name: str = "feed-notify",
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError(
                f"interval_seconds must be > 0, got {interval_seconds}"
            )
        self._interval: float = interval_seconds
        self._on_tick: TickCallback = on_tick
        self._name: str = name

        self._lock: threading.Lock = threading.Lock()
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None

    @property
    def interval_seconds(self) -> float:
        """Configured tick interval in seconds."""
        return self._interval

    @property
    def armed(self) -> bool:
        """Whether the timer is currently scheduled to tick."""
        with self._lock:
            return self._stop_event is not None and not self._stop_event.is_set()

    def arm(self) -> None:
        """Start ticking. No-op if already armed."""
        with self._lock:
            if self._stop_event is not None and not self._stop_event.is_set():
                return
            stop_event: threading.Event = threading.Event()
            self._stop_event = stop_event
            self._thread = threading.Thread(
                target=self._run,
                args=(stop_event,),
                daemon=True,
                name=self._name,
            )
            self._thread.start()
        logger.debug("Timer %s armed (interval=%.3fs)", self._name, self._interval)

    def disarm(self, wait: bool = True, timeout: float | None = None) -> None:
        """Stop ticking, optionally waiting for the timer thread to exit.

        Safe to call when not armed, and safe to call repeatedly; a
        signal-only call may be followed by a waiting one.

        Args:
            wait: Join the timer thread. Never joins when called from
                the timer thread itself.
            timeout: Upper bound on the join, in seconds. ``None`` waits
                for the thread to exit (at most one in-flight tick).
        """
        with self._lock:
            stop_event: threading.Event | None = self._stop_event
            thread: threading.Thread | None = self._thread
        if stop_event is None:
            return
        stop_event.set()
        if not wait or thread is None or thread is threading.current_thread():
            return
        thread.join(timeout=timeout)
        if thread.is_alive():
            logger.warning(
                "Timer %s did not stop within %.1fs",
                self._name,
                timeout or 0.0,
            )

    def _run(self, stop_event: threading.Event) -> None:
        """Tick loop. Exits as soon as ``stop_event`` is set."""
        while not stop_event.wait(timeout=self._interval):
            try:
                self._on_tick()
            except Exception:
                logger.exception("Tick callback error in %s", self._name)
