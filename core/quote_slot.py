"""Single-slot latest-value cache between feed ingestion and notification.

This module provides the ``QuoteSlot``: the only synchronisation point
between the WebSocket I/O thread (which writes every inbound quote) and
the notification thread (which reads the current value on each tick).
It holds exactly one :class:`~core.quotes.LatestQuote`; a new write
replaces the previous value, so a burst of N frames between two ticks
leaves only the N-th one behind.

Thread ownership:
    - ``put(quote)`` — I/O thread only (single writer).
    - ``read()`` — notification thread only (single consuming reader).
    - ``peek()`` / ``stats()`` — any thread, never marks anything read.

Locking:
    All access goes through one ``threading.Lock``. The critical sections
    are a handful of attribute assignments, so neither side ever waits
    on the other for longer than that; in particular the writer never
    waits for a consumer callback, because callbacks run after
    ``read()`` has returned.

Overwrite policy:
    Replace-latest. A write that replaces a value the reader has not
    seen yet is counted as *coalesced*. Under quiescent conditions the
    invariant ``total_written - total_coalesced == total_fresh_reads +
    (1 if has_unread else 0)`` holds exactly.

Example:
    >>> from core.quotes import LatestQuote
    >>> slot = QuoteSlot()
    >>> slot.read() is None
    True
    >>> for seq in (1, 2, 3):
    ...     slot.put(LatestQuote(payload=f"Price: {seq}", sequence=seq,
    ...                          recv_ts=0, recv_mono_ns=0))
    >>> slot.read().payload
    'Price: 3'
    >>> slot.stats().total_coalesced
    2
"""

import logging
import threading

from pydantic import BaseModel, ConfigDict, Field

from core.quotes import LatestQuote

logger: logging.Logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Stats Model
# ---------------------------------------------------------------------------


class QuoteSlotStats(BaseModel):
    """Immutable snapshot of slot counters.

    Attributes:
        total_written: Quotes written via ``put()``.
        total_read: ``read()`` calls that returned a quote.
        total_fresh_reads: ``read()`` calls that returned a quote not
            returned by an earlier ``read()``.
        total_coalesced: Writes that replaced an unread quote.
        has_value: Whether any quote has been written.
        has_unread: Whether the current quote is still unread.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    total_written: int = Field(ge=0, description="Quotes written via put().")
    total_read: int = Field(ge=0, description="read() calls returning a quote.")
    total_fresh_reads: int = Field(
        ge=0,
        description="read() calls returning a not-yet-read quote.",
    )
    total_coalesced: int = Field(
        ge=0,
        description="Writes that replaced an unread quote.",
    )
    has_value: bool = Field(description="Whether any quote has been written.")
    has_unread: bool = Field(description="Whether the current quote is unread.")


# ---------------------------------------------------------------------------
# QuoteSlot
# ---------------------------------------------------------------------------


class QuoteSlot:
    """Mutex-guarded single-value cache of the latest quote.

    Created per connection attempt, so "empty" always means "nothing
    received since this attempt started".
    """

    __slots__ = (
        "_lock",
        "_quote",
        "_unread",
        "_total_written",
        "_total_read",
        "_total_fresh_reads",
        "_total_coalesced",
    )

    def __init__(self) -> None:
        self._lock: threading.Lock = threading.Lock()
        self._quote: LatestQuote | None = None
        self._unread: bool = False
        self._total_written: int = 0
        self._total_read: int = 0
        self._total_fresh_reads: int = 0
        self._total_coalesced: int = 0

    # ------------------------------------------------------------------
    # Writer (I/O thread)
    # ------------------------------------------------------------------

    def put(self, quote: LatestQuote) -> None:
        """Replace the cached quote unconditionally.

        Args:
            quote: The newly received quote.
        """
        with self._lock:
            if self._unread:
                self._total_coalesced += 1
            self._quote = quote
            self._unread = True
            self._total_written += 1

    # ------------------------------------------------------------------
    # Reader (notification thread)
    # ------------------------------------------------------------------

    def read(self) -> LatestQuote | None:
        """Return the current quote and mark it as read.

        Returns:
            The latest quote, or ``None`` if nothing was written yet.
        """
        with self._lock:
            quote: LatestQuote | None = self._quote
            if quote is not None:
                self._total_read += 1
                if self._unread:
                    self._total_fresh_reads += 1
                    self._unread = False
            return quote

    def peek(self) -> LatestQuote | None:
        """Return the current quote without marking it as read."""
        with self._lock:
            return self._quote

    @property
    def has_unread(self) -> bool:
        """Whether the current quote has not been returned by ``read()``."""
        with self._lock:
            return self._unread

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def stats(self) -> QuoteSlotStats:
        """Return a consistent snapshot of the slot counters."""
        with self._lock:
            return QuoteSlotStats(
                total_written=self._total_written,
                total_read=self._total_read,
                total_fresh_reads=self._total_fresh_reads,
                total_coalesced=self._total_coalesced,
                has_value=self._quote is not None,
                has_unread=self._unread,
            )

    def _invariant_ok(self) -> bool:
        """Check the written/coalesced/read accounting invariant.

        Returns:
            ``True`` if ``total_written - total_coalesced`` equals the
            fresh reads plus the pending unread value.
        """
        with self._lock:
            pending: int = 1 if self._unread else 0
            return (
                self._total_written - self._total_coalesced
                == self._total_fresh_reads + pending
            )
