"""Quote model delivered by the live feed.

This module defines :class:`LatestQuote`, the single value the feed
connection manager caches and hands to its consumer on every
notification tick. The model is Pydantic-based with ``frozen=True`` so
one instance can be read from the notification thread while the I/O
thread is already building its replacement.

Architecture note:
    Quotes are constructed in the WebSocket I/O thread for every inbound
    frame. That path uses ``model_construct()`` to skip validation.
    Regular construction (with validation) is for tests, examples, and
    any payload coming from outside the feed.

Timestamp convention:
    Every quote carries two receipt timestamps:
    - ``recv_ts``: ``time.time_ns()`` wall clock, for correlating with
      logs and server time. Subject to NTP adjustment.
    - ``recv_mono_ns``: ``time.perf_counter_ns()`` monotonic, for age
      and staleness. Never goes backwards.

Connection epoch:
    ``connection_epoch`` is the generation of the feed handle that
    received the frame. It increments with every ``start()``, so a
    consumer can tell quotes of a new connection from the previous one.

Payload contract:
    The payload is opaque text. The reference server sends frames like
    ``"Price: 123.456"``; :meth:`LatestQuote.price` pulls the first
    number out of such a frame, but nothing in the feed depends on it.

Example:
    >>> quote = LatestQuote(
    ...     payload="Price: 123.45",
    ...     sequence=1,
    ...     recv_ts=1739500000000000000,
    ...     recv_mono_ns=123456789,
    ... )
    >>> quote.price()
    Decimal('123.45')
    >>> quote.connection_epoch
    0
"""

import re
import time
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Price extraction
# ---------------------------------------------------------------------------

_PRICE_PATTERN: re.Pattern[str] = re.compile(r"[-+]?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?")
"""First signed decimal number in a payload."""


# ---------------------------------------------------------------------------
# LatestQuote
# ---------------------------------------------------------------------------


class LatestQuote(BaseModel):
    """Most recently received price payload of one feed connection.

    Immutable. The cache replaces the whole instance on every inbound
    message; nothing ever mutates a quote in place.

    Attributes:
        payload: Raw text frame as received (decoded from UTF-8 when the
            server sent a binary frame).
        sequence: 1-based position of the frame within its connection.
            Gaps between two delivered quotes show how many frames were
            coalesced by the notification cadence.
        recv_ts: Wall clock receipt time (``time.time_ns()``).
        recv_mono_ns: Monotonic receipt time (``time.perf_counter_ns()``).
        connection_epoch: Generation of the handle that received it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    payload: str = Field(description="Opaque price payload text")
    sequence: int = Field(
        ge=1,
        description="1-based frame number within the connection",
    )
    recv_ts: int = Field(
        ge=0,
        description="Wall clock receipt time in nanoseconds (time.time_ns)",
    )
    recv_mono_ns: int = Field(
        ge=0,
        description="Monotonic receipt time in nanoseconds (perf_counter_ns)",
    )
    connection_epoch: int = Field(
        default=0,
        ge=0,
        description="Generation of the feed handle that received the frame",
    )

    def price(self) -> Decimal | None:
        """Extract the numeric price from the payload.

        Returns:
            The first number found in ``payload`` as a ``Decimal``, or
            ``None`` when the payload holds no number.

        Example:
            >>> LatestQuote(payload="Price: 101.5", sequence=1,
            ...             recv_ts=0, recv_mono_ns=0).price()
            Decimal('101.5')
        """
        match: re.Match[str] | None = _PRICE_PATTERN.search(self.payload)
        if match is None:
            return None
        try:
            return Decimal(match.group(0))
        except InvalidOperation:
            return None

    def age_ms(self, now_ns: int | None = None) -> float:
        """Milliseconds elapsed since the quote was received.

        Args:
            now_ns: Optional pre-captured ``time.perf_counter_ns()``.

        Returns:
            Non-negative age in milliseconds.
        """
        now: int = now_ns if now_ns is not None else time.perf_counter_ns()
        return max(0, now - self.recv_mono_ns) / 1_000_000
