"""Tests for the single-attempt fetch pipeline."""

import json
from unittest.mock import Mock

import pytest
import requests

from conftest import FakeClock, make_registry
from market_feed.services.errors import (
    FetchTimeout,
    InvalidResponse,
    SourceUnavailable,
    SourceUnreachable,
    UpstreamRateLimited,
)
from market_feed.services.fetch_pipeline import USER_AGENT, FetchPipeline

COINGECKO_PAYLOAD = {"internet-computer": {"usd": 12.5, "usd_24h_change": 1.0}}


def _response(status_code=200, payload=None, body=None, headers=None, reason="OK"):
    response = Mock(spec=requests.Response)
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    response.reason = reason
    response.headers = headers or {}
    if body is None:
        body = json.dumps(payload).encode() if payload is not None else b""
    response.iter_content.return_value = iter([body])
    return response


def _trickling_response(clock, chunks, seconds_per_chunk):
    """A 200 response whose body arrives one chunk every ``seconds_per_chunk``."""
    response = _response()

    def iter_content(chunk_size=1):
        for chunk in chunks:
            clock.advance(seconds_per_chunk)
            yield chunk

    response.iter_content.side_effect = iter_content
    return response


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


@pytest.fixture
def coingecko():
    return make_registry().get("CoinGecko")


class TestFetchPipeline:
    """Tests for request issuing and failure classification."""

    def test_successful_fetch_parses_record(self, session, coingecko):
        """Test that a 200 JSON body is parsed and the request carries the default headers."""
        response = _response(payload=COINGECKO_PAYLOAD)
        session.get.return_value = response
        pipeline = FetchPipeline(session=session, timeout=10)

        record = pipeline.fetch(coingecko)

        assert record.price == 12.5
        assert record.source == "CoinGecko"
        session.get.assert_called_once()
        args, kwargs = session.get.call_args
        assert args[0] == coingecko.locator
        assert kwargs["timeout"] == 10
        assert kwargs["stream"] is True
        assert kwargs["headers"]["Accept"] == "application/json"
        assert kwargs["headers"]["User-Agent"] == USER_AGENT
        response.close.assert_called_once()

    def test_timeout_override_and_source_headers(self, session):
        """Test that a per-call timeout and source headers are passed through."""
        source = make_registry().get("CoinMarketCap")
        source.headers = {"X-CMC_PRO_API_KEY": "key"}
        session.get.return_value = _response(
            payload={"data": {"ICP": {"quote": {"USD": {"price": 11.0}}}}}
        )
        pipeline = FetchPipeline(session=session)

        pipeline.fetch(source, timeout=2.5)

        kwargs = session.get.call_args.kwargs
        assert kwargs["timeout"] == 2.5
        assert kwargs["headers"]["X-CMC_PRO_API_KEY"] == "key"

    def test_timeout_is_classified(self, session, coingecko):
        """Test that a requests timeout becomes FetchTimeout, a SourceUnavailable."""
        session.get.side_effect = requests.Timeout("read timed out")
        pipeline = FetchPipeline(session=session)

        with pytest.raises(FetchTimeout) as exc_info:
            pipeline.fetch(coingecko)

        assert isinstance(exc_info.value, SourceUnavailable)
        assert exc_info.value.source == "CoinGecko"

    def test_connection_error_is_unreachable(self, session, coingecko):
        """Test that a connection error becomes SourceUnreachable."""
        session.get.side_effect = requests.ConnectionError("connection refused")
        pipeline = FetchPipeline(session=session)

        with pytest.raises(SourceUnreachable):
            pipeline.fetch(coingecko)

    def test_http_error_status_is_unreachable(self, session, coingecko):
        """Test that a non-2xx status becomes SourceUnreachable carrying the status."""
        session.get.return_value = _response(status_code=503, reason="Service Unavailable")
        pipeline = FetchPipeline(session=session)

        with pytest.raises(SourceUnreachable) as exc_info:
            pipeline.fetch(coingecko)

        assert exc_info.value.status_code == 503
        assert "HTTP 503" in str(exc_info.value)

    def test_http_429_carries_retry_after(self, session, coingecko):
        """Test that a 429 becomes UpstreamRateLimited with the Retry-After seconds."""
        session.get.return_value = _response(
            status_code=429, reason="Too Many Requests", headers={"Retry-After": "30"}
        )
        pipeline = FetchPipeline(session=session)

        with pytest.raises(UpstreamRateLimited) as exc_info:
            pipeline.fetch(coingecko)

        assert exc_info.value.retry_after == 30.0
        assert exc_info.value.status_code == 429

    def test_http_429_with_date_retry_after(self, session, coingecko):
        """Test that a date-form Retry-After is ignored rather than misread."""
        session.get.return_value = _response(
            status_code=429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"}
        )
        pipeline = FetchPipeline(session=session)

        with pytest.raises(UpstreamRateLimited) as exc_info:
            pipeline.fetch(coingecko)

        assert exc_info.value.retry_after is None

    def test_non_json_body_is_invalid_response(self, session, coingecko):
        """Test that an HTML body becomes InvalidResponse."""
        session.get.return_value = _response(body=b"<html>maintenance</html>")
        pipeline = FetchPipeline(session=session)

        with pytest.raises(InvalidResponse):
            pipeline.fetch(coingecko)

    def test_parser_rejection_is_invalid_response(self, session, coingecko):
        """Test that JSON without the configured asset becomes InvalidResponse."""
        session.get.return_value = _response(payload={"bitcoin": {"usd": 60000}})
        pipeline = FetchPipeline(session=session)

        with pytest.raises(InvalidResponse):
            pipeline.fetch(coingecko)

    def test_no_retry_on_failure(self, session, coingecko):
        """Test that a failed request is attempted exactly once."""
        session.get.side_effect = requests.ConnectionError("reset")
        pipeline = FetchPipeline(session=session)

        with pytest.raises(SourceUnreachable):
            pipeline.fetch(coingecko)

        assert session.get.call_count == 1

    def test_fallback_is_constructed_without_network(self, session):
        """Test that the fallback source never issues a request."""
        fallback = make_registry(fallback_price=7.5).fallback
        pipeline = FetchPipeline(session=session)

        record = pipeline.fetch(fallback)

        assert record.price == 7.5
        assert record.source == "Fallback"
        session.get.assert_not_called()


class TestFetchDeadline:
    """Tests for the whole-request deadline."""

    def test_trickling_body_past_deadline_is_abandoned(self, session, coingecko):
        """Test that a body still arriving after the deadline raises FetchTimeout, not a record."""
        clock = FakeClock()
        body = json.dumps(COINGECKO_PAYLOAD).encode()
        chunks = [body[i:i + 4] for i in range(0, len(body), 4)]
        response = _trickling_response(clock, chunks, seconds_per_chunk=0.4)
        session.get.return_value = response
        pipeline = FetchPipeline(session=session, timeout=1.0, clock=clock)

        with pytest.raises(FetchTimeout):
            pipeline.fetch(coingecko)

        # Gave up on the third chunk, 1.2s in, instead of reading all of them
        assert clock.now - 1000.0 == pytest.approx(1.2)
        response.close.assert_called_once()

    def test_slow_headers_past_deadline_are_abandoned(self, session, coingecko):
        """Test that a response whose headers arrive after the deadline is discarded."""
        clock = FakeClock()

        def slow_get(*args, **kwargs):
            clock.advance(1.5)
            return _response(payload=COINGECKO_PAYLOAD)

        session.get.side_effect = slow_get
        pipeline = FetchPipeline(session=session, timeout=1.0, clock=clock)

        with pytest.raises(FetchTimeout):
            pipeline.fetch(coingecko)

    def test_body_within_deadline_is_accepted(self, session, coingecko):
        """Test that a chunked body completing before the deadline is parsed."""
        clock = FakeClock()
        body = json.dumps(COINGECKO_PAYLOAD).encode()
        chunks = [body[:10], body[10:20], body[20:]]
        session.get.return_value = _trickling_response(clock, chunks, seconds_per_chunk=0.2)
        pipeline = FetchPipeline(session=session, timeout=1.0, clock=clock)

        record = pipeline.fetch(coingecko)

        assert record.price == 12.5

    def test_read_timeout_while_streaming_is_fetch_timeout(self, session, coingecko):
        """Test that a socket timeout during the body read is classified as FetchTimeout."""
        response = _response()
        response.iter_content.side_effect = requests.Timeout("read timed out")
        session.get.return_value = response
        pipeline = FetchPipeline(session=session)

        with pytest.raises(FetchTimeout):
            pipeline.fetch(coingecko)

    def test_broken_body_stream_is_unreachable(self, session, coingecko):
        """Test that a dropped connection mid-body is classified as SourceUnreachable."""
        response = _response()
        response.iter_content.side_effect = requests.exceptions.ChunkedEncodingError("reset")
        session.get.return_value = response
        pipeline = FetchPipeline(session=session)

        with pytest.raises(SourceUnreachable):
            pipeline.fetch(coingecko)
