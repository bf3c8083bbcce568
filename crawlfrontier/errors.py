"""Exception taxonomy for the crawl frontier.

Only StorageError is meant to stop a crawl. Everything else describes a single
URL or host and is logged, counted and dropped by the component that sees it.
"""


class FrontierError(Exception):
    """Base class for all frontier errors."""


class MalformedURL(FrontierError, ValueError):
    """Raw URL could not be split into scheme, host and path."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Malformed URL {url!r}: {reason}")
        self.url = url
        self.reason = reason


class DecodeError(FrontierError):
    """A single query parameter could not be percent-decoded."""


class QueueFull(FrontierError):
    """Frontier queue reached its configured capacity."""


class DepthExceeded(FrontierError):
    """Work item is deeper than the configured crawl depth."""


class RedirectionLoopSuspected(FrontierError):
    """Work item followed more redirects than allowed."""


class RobotsFetchFailed(FrontierError):
    """robots.txt could not be retrieved (transport error or 5xx)."""


class RobotsParseFailed(FrontierError):
    """robots.txt body could not be decoded or parsed."""


class StorageError(FrontierError):
    """Durable state could not be read or written."""
