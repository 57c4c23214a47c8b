"""HTTP client for company metrics snapshots.

Single-shot request/response lookups against the metrics service:

- ``GET {base_url}/companies/{ticker}`` returns one metrics object.
- ``GET {base_url}/screener`` returns an array of metrics objects.

Every failure (non-2xx status, transport error, malformed body) is
normalized into one :class:`~core.errors.RetrievalError` whose message
starts with an explanatory sentence for the viewer, followed by the
detail. No retries, no caching: a failed lookup is re-issued by the
caller if it wants to.

The metrics payload has no fixed schema on this side; it is returned
exactly as decoded (``Metrics`` is ``dict[str, Any]``). Only its outer
shape (object vs. array of objects) is validated.

Example::

    with MetricsClient(MetricsClientConfig(base_url="http://localhost/api")) as client:
        try:
            metrics = client.fetch_quote_snapshot("AAPL")
        except RetrievalError as exc:
            print(exc.message)
"""

import logging
from typing import Any, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from core.errors import RetrievalError

logger: logging.Logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

Metrics = dict[str, Any]
"""One company's metrics snapshot, exactly as decoded from JSON."""

T = TypeVar("T")

_METRICS_ADAPTER: TypeAdapter[Metrics] = TypeAdapter(Metrics)
_METRICS_LIST_ADAPTER: TypeAdapter[list[Metrics]] = TypeAdapter(list[Metrics])

# ---------------------------------------------------------------------------
# Error messages
# ---------------------------------------------------------------------------

RETRIEVAL_ERROR_PREFIX: str = "There was an error retrieving data. Please try again."
"""First sentence of every retrieval error message."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MetricsClientConfig(BaseModel):
    """Configuration for :class:`MetricsClient`.

    Attributes:
        base_url: Root of the metrics API, including the ``/api`` prefix.
        timeout: Per-request timeout in seconds.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    base_url: str = Field(
        default="http://localhost/api",
        min_length=1,
        description="Root URL of the metrics API (including /api)",
    )
    timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="Per-request timeout in seconds",
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class MetricsClient:
    """Metrics lookups with uniform error normalization.

    Args:
        config: Client configuration. Defaults to ``MetricsClientConfig()``.
        http_client: Pre-built ``httpx.Client`` (tests inject one with a
            ``MockTransport``). When given, ``config.base_url`` and
            ``config.timeout`` are not applied to it and :meth:`close`
            leaves it open.
    """

    def __init__(
        self,
        config: MetricsClientConfig | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._config: MetricsClientConfig = config or MetricsClientConfig()
        self._owns_client: bool = http_client is None
        self._http: httpx.Client = http_client or httpx.Client(
            base_url=self._config.base_url,
            timeout=self._config.timeout,
        )

    def __enter__(self) -> "MetricsClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            self._http.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fetch_quote_snapshot(self, symbol: str) -> Metrics:
        """Fetch the metrics snapshot of one company.

        Args:
            symbol: Ticker symbol, case-insensitive (sent lower-cased).

        Returns:
            The decoded metrics object.

        Raises:
            ValueError: If ``symbol`` is blank.
            RetrievalError: On non-2xx status, transport failure, or a
                body that is not a JSON object.
        """
        ticker: str = symbol.strip().lower()
        if not ticker:
            raise ValueError("symbol must be a non-empty ticker")
        return self._fetch(f"/companies/{quote(ticker, safe='')}", _METRICS_ADAPTER)

    def fetch_all_snapshots(self) -> list[Metrics]:
        """Fetch the screener list of metrics snapshots.

        Returns:
            The decoded list of metrics objects.

        Raises:
            RetrievalError: On non-2xx status, transport failure, or a
                body that is not a JSON array of objects.
        """
        return self._fetch("/screener", _METRICS_LIST_ADAPTER)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fetch(self, path: str, adapter: TypeAdapter[T]) -> T:
        """Issue one GET and decode the body with ``adapter``."""
        try:
            response: httpx.Response = self._http.get(path)
        except httpx.HTTPError as exc:
            logger.warning("Metrics request %s failed: %s", path, exc)
            raise RetrievalError(f"{RETRIEVAL_ERROR_PREFIX}\n{exc}") from exc

        if not response.is_success:
            body: str = response.text
            logger.warning(
                "Metrics request %s returned %d",
                path,
                response.status_code,
            )
            raise RetrievalError(
                f"{RETRIEVAL_ERROR_PREFIX}\n"
                f"Status: {response.status_code}, Message: {body}",
                status_code=response.status_code,
                body=body,
            )

        try:
            return adapter.validate_json(response.content)
        except ValidationError as exc:
            logger.warning("Metrics response for %s is malformed", path)
            raise RetrievalError(
                f"{RETRIEVAL_ERROR_PREFIX}\nMalformed response body: {exc}",
                status_code=response.status_code,
                body=response.text,
            ) from exc
