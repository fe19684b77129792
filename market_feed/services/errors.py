"""Exception taxonomy for the market data engine."""


class MarketDataError(Exception):
    """Base class for every error raised by the market data engine."""


class FetchError(MarketDataError):
    """A single upstream source could not produce a record."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class SourceUnavailable(FetchError):
    """Network-level failure talking to an upstream source."""


class FetchTimeout(SourceUnavailable):
    """The upstream did not answer within the request timeout."""


class SourceUnreachable(SourceUnavailable):
    """Connection failure or a non-success HTTP status."""

    def __init__(self, source: str, message: str, status_code: int | None = None):
        super().__init__(source, message)
        self.status_code = status_code


class UpstreamRateLimited(SourceUnreachable):
    """The upstream answered HTTP 429."""

    def __init__(self, source: str, retry_after: float | None = None):
        super().__init__(source, "upstream rate limit exceeded", status_code=429)
        self.retry_after = retry_after


class InvalidResponse(FetchError):
    """The upstream answered but the payload is not a usable price."""


class RateLimited(MarketDataError):
    """Local admission denial for a source."""

    def __init__(self, source: str):
        super().__init__(f"{source}: local request budget exhausted")
        self.source = source


class PersistenceFailure(MarketDataError):
    """The key-value store could not be read or written."""


class UnknownSourceError(MarketDataError, ValueError):
    """A caller named a source that is not registered."""

    def __init__(self, source: str):
        super().__init__(f"Unknown market data source: {source}")
        self.source = source


class AggregatorNotRunningError(MarketDataError, RuntimeError):
    """A refresh was requested while the aggregator worker is stopped."""
