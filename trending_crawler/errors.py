from typing import Optional


class TrendingError(Exception):
    """Base class for errors raised by the crawl pipeline."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class FetchError(TrendingError):
    """A page could not be retrieved through the rendering proxy."""


class EmptyResultError(TrendingError):
    """The trending page was retrieved but contained no keywords."""


class CompletionError(TrendingError):
    """
    The language model call failed (transport, quota or non-success status).

    An empty completion is not an error; it simply parses to zero records.
    """
