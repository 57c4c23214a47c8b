"""Example: Throttled live quote feed with an active/inactive indicator.

This script demonstrates the viewer-side pipeline:

    WebSocket server → FeedConnectionManager → (every N ms) on_update
                                 ↓
                         on_state_change → 🟢 active / 🔴 inactive

The server may push a price every 100 ms; the console only shows the
latest one once per notification interval.

Prerequisites:
    1. Optionally put ``BULLSEYE_FEED_URL=ws://host:3000/ws`` in ``.env``.
    2. Install dependencies: ``pip install -e .``

Usage:
    python -m examples.example_live_quote
    python -m examples.example_live_quote --url ws://localhost:3000/ws
    python -m examples.example_live_quote --interval-ms 1000 --reconnect

Press Ctrl+C to stop.
"""

import argparse
import logging
import os
import threading

from dotenv import load_dotenv

from core.quotes import LatestQuote
from infra.feed_connection import (
    ConnectionState,
    FeedConfig,
    FeedConnectionManager,
    FeedHandle,
)
from infra.feed_reconnect import ReconnectingFeed, ReconnectPolicy

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger: logging.Logger = logging.getLogger(__name__)

_DEFAULT_FEED_URL: str = "ws://localhost:3000/ws"


def _on_update(quote: LatestQuote) -> None:
    logger.info(
        "price=%s (seq=%d, epoch=%d, age=%.1fms)",
        quote.price() or quote.payload,
        quote.sequence,
        quote.connection_epoch,
        quote.age_ms(),
    )


def _on_state_change(state: ConnectionState) -> None:
    indicator: str = "🟢 active" if state == ConnectionState.CONNECTED else "🔴 inactive"
    logger.info("%s (%s)", indicator, state.value)


def main() -> None:
    """Run the live quote example."""
    load_dotenv()

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Throttled live quote feed",
    )
    parser.add_argument(
        "--url",
        type=str,
        default=os.environ.get("BULLSEYE_FEED_URL", _DEFAULT_FEED_URL),
        help=f"WebSocket URL (default: $BULLSEYE_FEED_URL or {_DEFAULT_FEED_URL})",
    )
    parser.add_argument(
        "--interval-ms",
        type=int,
        default=5000,
        help="Notification interval in milliseconds (default: 5000)",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until Ctrl+C)",
    )
    parser.add_argument(
        "--reconnect",
        action="store_true",
        help="Reconnect automatically after errors and remote closes",
    )
    args: argparse.Namespace = parser.parse_args()

    manager: FeedConnectionManager = FeedConnectionManager(
        config=FeedConfig(notification_interval_ms=args.interval_ms),
    )
    reconnecting: ReconnectingFeed | None = None
    if args.reconnect:
        reconnecting = ReconnectingFeed(manager, policy=ReconnectPolicy())
        reconnecting.start(args.url, _on_update, _on_state_change)
    else:
        manager.start(args.url, _on_update, _on_state_change)

    done: threading.Event = threading.Event()
    try:
        done.wait(timeout=args.duration)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        handle: FeedHandle | None = manager.handle
        if reconnecting is not None:
            reconnecting.stop()
        else:
            manager.stop()

        if handle is not None:
            stats = handle.stats()
            logger.info("=" * 60)
            logger.info("Final Statistics")
            logger.info("-" * 60)
            logger.info("State: %s", stats["state"])
            logger.info(
                "Messages received: %d, delivered: %d, coalesced: %d",
                stats["messages_received"],
                stats["updates_delivered"],
                stats["coalesced"],
            )
            if handle.last_error is not None:
                logger.info("Last error: %s", handle.last_error)
            logger.info("=" * 60)


if __name__ == "__main__":
    main()
