"""Pass-level feed failures.

Any of these aborts a reconciliation pass before the store is touched.
"""

from __future__ import annotations


class FeedError(Exception):
    """Base class for failures that abort a whole pass."""

    error_code = "feed_error"


class FetchError(FeedError):
    """Transport failure, timeout, non-2xx response or empty body."""

    error_code = "fetch_error"


class ParseError(FeedError):
    """The feed document is not well-formed."""

    error_code = "parse_error"


class UnknownTypeCode(FeedError):
    """An item carries an event type code outside the closed table."""

    error_code = "unknown_type_code"

    def __init__(self, code: str | None) -> None:
        super().__init__(f"unknown disaster type code: {code!r}")
        self.code = code
