"""Error taxonomy for the live feed and the metrics client.

Two failure families exist and they travel differently:

- :class:`FeedConnectionError` never crosses the feed manager boundary.
  It is stored on the handle (``FeedHandle.last_error``) and announced
  through the ``ERRORED`` state notification.
- :class:`RetrievalError` is raised straight out of the metrics client
  call that failed, since that call is a single request/response.

Example:
    >>> err = RetrievalError(
    ...     "There was an error retrieving data. Please try again.\\n"
    ...     "Status: 404, Message: not found",
    ...     status_code=404,
    ...     body="not found",
    ... )
    >>> err.status_code
    404
"""


class FeedConnectionError(ConnectionError):
    """Transport open/read failure on a live feed connection.

    Attributes:
        message: Human-readable description.
        endpoint: WebSocket URL the failure belongs to.
    """

    def __init__(self, message: str, endpoint: str) -> None:
        self.message: str = message
        self.endpoint: str = endpoint
        super().__init__(message)


class RetrievalError(Exception):
    """Metrics request failed (non-2xx, transport failure, bad body).

    Attributes:
        message: Explanatory sentence followed by the failure detail.
        status_code: HTTP status when a response was received.
        body: Response body text when a response was received.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        self.message: str = message
        self.status_code: int | None = status_code
        self.body: str | None = body
        super().__init__(message)
