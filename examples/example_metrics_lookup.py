"""Example: Metrics snapshot lookup with normalized error messages.

Fetches one company's metrics, or the whole screener list, and prints
it as JSON. Any failure is printed as the viewer would show it.

Prerequisites:
    1. Optionally put ``BULLSEYE_API_URL=http://host/api`` in ``.env``.
    2. Install dependencies: ``pip install -e .``

Usage:
    python -m examples.example_metrics_lookup --ticker AAPL
    python -m examples.example_metrics_lookup --screener
"""

import argparse
import json
import logging
import os
import sys

from dotenv import load_dotenv

from core.errors import RetrievalError
from infra.metrics_client import MetricsClient, MetricsClientConfig

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger: logging.Logger = logging.getLogger(__name__)


def main() -> int:
    """Run the metrics lookup example.

    Returns:
        Exit code: 0 on success, 1 on a retrieval error.
    """
    load_dotenv()

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Metrics snapshot lookup",
    )
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--ticker", type=str, help="Ticker to look up")
    group.add_argument(
        "--screener",
        action="store_true",
        help="Fetch the screener list instead of one ticker",
    )
    parser.add_argument(
        "--base-url",
        type=str,
        default=os.environ.get("BULLSEYE_API_URL", "http://localhost/api"),
        help="Metrics API root (default: $BULLSEYE_API_URL or http://localhost/api)",
    )
    args: argparse.Namespace = parser.parse_args()

    config: MetricsClientConfig = MetricsClientConfig(base_url=args.base_url)
    with MetricsClient(config=config) as client:
        try:
            if args.screener:
                result: object = client.fetch_all_snapshots()
            else:
                result = client.fetch_quote_snapshot(args.ticker)
        except RetrievalError as exc:
            logger.error("%s", exc.message)
            return 1

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
