"""Single-attempt HTTP fetch of one upstream source."""

import json
import time
from typing import Callable, Optional

import requests

from market_feed.models.market_data import PriceRecord
from market_feed.services.errors import (
    FetchTimeout,
    InvalidResponse,
    SourceUnreachable,
    UpstreamRateLimited,
)
from market_feed.services.source_registry import SourceDescriptor
from market_feed.utils.logger import StructuredLogger

DEFAULT_TIMEOUT = 10.0
USER_AGENT = "market-feed/1.0"
CHUNK_SIZE = 4096


class FetchPipeline:
    """Issues one deadline-bounded request per call and classifies failures.

    The timeout covers the whole exchange, headers and body: the body is
    streamed and the deadline is checked between reads, so an upstream that
    trickles bytes is abandoned and its late payload discarded. There is no
    retry here: moving on to the next source is the aggregator's job.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the pipeline.

        Args:
            session: HTTP session to reuse; a new one is created when omitted
            timeout: Default per-request deadline in seconds
            clock: Monotonic time source used for the deadline
        """
        self.session = session or requests.Session()
        self.timeout = timeout
        self._clock = clock
        self.logger = StructuredLogger("FetchPipeline")

    def fetch(self, source: SourceDescriptor, timeout: Optional[float] = None) -> PriceRecord:
        """
        Fetch and parse one source.

        Args:
            source: The source to query
            timeout: Override of the default deadline in seconds

        Returns:
            The parsed PriceRecord

        Raises:
            FetchTimeout: the request did not complete within its deadline
            UpstreamRateLimited: the upstream answered 429
            SourceUnreachable: connection failure or other non-2xx status
            InvalidResponse: the body is not JSON or lacks required fields
        """
        if source.is_fallback:
            return source.parser.parse(None)

        timeout = timeout if timeout is not None else self.timeout
        headers = {"Accept": "application/json", "User-Agent": USER_AGENT, **source.headers}
        started = self._clock()
        deadline = started + timeout

        try:
            response = self.session.get(source.locator, headers=headers, timeout=timeout, stream=True)
        except requests.Timeout as e:
            raise FetchTimeout(source.name, f"no response within {timeout}s") from e
        except requests.RequestException as e:
            raise SourceUnreachable(source.name, str(e)) from e

        try:
            if response.status_code == 429:
                raise UpstreamRateLimited(source.name, _retry_after(response))
            if not response.ok:
                raise SourceUnreachable(
                    source.name,
                    f"HTTP {response.status_code}: {response.reason}",
                    status_code=response.status_code,
                )
            body = self._read_body(source, response, deadline, timeout)
        finally:
            response.close()

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise InvalidResponse(source.name, "response body is not JSON") from e

        record = source.parser.parse(payload)
        self.logger.debug(
            f"Fetched price from {source.name}",
            context={
                "source": source.name,
                "price": record.price,
                "duration_ms": (self._clock() - started) * 1000,
            },
        )
        return record

    def _read_body(
        self,
        source: SourceDescriptor,
        response: requests.Response,
        deadline: float,
        timeout: float,
    ) -> bytes:
        """Read the streamed body, giving up once ``deadline`` has passed."""
        chunks: list[bytes] = []
        try:
            self._check_deadline(source, deadline, timeout)
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                chunks.append(chunk)
                self._check_deadline(source, deadline, timeout)
        except requests.Timeout as e:
            raise FetchTimeout(source.name, f"no response within {timeout}s") from e
        except requests.RequestException as e:
            raise SourceUnreachable(source.name, f"body read failed: {e}") from e
        return b"".join(chunks)

    def _check_deadline(self, source: SourceDescriptor, deadline: float, timeout: float) -> None:
        if self._clock() > deadline:
            raise FetchTimeout(source.name, f"response not complete within {timeout}s")


def _retry_after(response: requests.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        # HTTP-date form; callers fall back to their default cool-down
        return None
