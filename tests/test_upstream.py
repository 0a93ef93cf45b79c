"""Tests for the upstream HTTP client."""

from __future__ import annotations

import anyio
import httpx
import pytest

from hookrelay.upstream import (
    NameLookupError,
    Outcome,
    RateLimitSignals,
    UpstreamClient,
    classify_status,
    parse_rate_limit_headers,
)

TEMPLATE = "https://upstream.test/api/webhooks/{id}/{token}"


def _client(handler, timeout: float = 5.0) -> UpstreamClient:
    return UpstreamClient(
        TEMPLATE,
        timeout=timeout,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


class TestParseRateLimitHeaders:
    def test_all_present(self):
        signals = parse_rate_limit_headers(
            {
                "X-RateLimit-Limit": "5",
                "X-RateLimit-Remaining": "4",
                "X-RateLimit-Reset": "1470173023.123",
            }
        )
        assert signals == RateLimitSignals(limit=5, remaining=4, reset_at=1470173023.123)

    def test_absent_headers_are_none(self):
        assert parse_rate_limit_headers({}) == RateLimitSignals()

    def test_non_numeric_ignored_independently(self):
        signals = parse_rate_limit_headers(
            {
                "x-ratelimit-limit": "five",
                "x-ratelimit-remaining": "0",
                "x-ratelimit-reset": "NaN",
            }
        )
        assert signals == RateLimitSignals(limit=None, remaining=0, reset_at=None)


def test_classify_status():
    assert classify_status(200) is Outcome.DELIVERED
    assert classify_status(204) is Outcome.DELIVERED
    assert classify_status(429) is Outcome.THROTTLED
    assert classify_status(404) is Outcome.REJECTED
    assert classify_status(500) is Outcome.REJECTED


@pytest.mark.anyio
async def test_forward_posts_json_to_templated_url():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            204,
            headers={
                "x-ratelimit-limit": "5",
                "x-ratelimit-remaining": "4",
                "x-ratelimit-reset": "100",
            },
        )

    client = _client(handler)
    result = await client.forward("123", "abc", b'{"content": "hi"}')
    await client.close()

    assert result.outcome is Outcome.DELIVERED
    assert result.status == 204
    assert result.signals == RateLimitSignals(limit=5, remaining=4, reset_at=100.0)
    [request] = seen
    assert str(request.url) == "https://upstream.test/api/webhooks/123/abc"
    assert request.method == "POST"
    assert request.headers["content-type"] == "application/json"
    assert request.content == b'{"content": "hi"}'


@pytest.mark.anyio
async def test_forward_throttled():
    client = _client(
        lambda request: httpx.Response(429, headers={"x-ratelimit-remaining": "0"})
    )
    result = await client.forward("1", "t", b"{}")
    assert result.outcome is Outcome.THROTTLED
    assert result.outcome.retryable
    assert result.signals.remaining == 0


@pytest.mark.anyio
async def test_forward_rejected():
    client = _client(lambda request: httpx.Response(401))
    result = await client.forward("1", "t", b"{}")
    assert result.outcome is Outcome.REJECTED
    assert not result.outcome.retryable


@pytest.mark.anyio
async def test_forward_network_failure_is_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    result = await _client(handler).forward("1", "t", b"{}")
    assert result.outcome is Outcome.TRANSPORT_ERROR
    assert result.signals == RateLimitSignals()


@pytest.mark.anyio
async def test_forward_timeout_is_transport_error():
    async def handler(request: httpx.Request) -> httpx.Response:
        await anyio.sleep(1)
        return httpx.Response(204)

    result = await _client(handler, timeout=0.05).forward("1", "t", b"{}")
    assert result.outcome is Outcome.TRANSPORT_ERROR


@pytest.mark.anyio
async def test_fetch_display_name():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        return httpx.Response(200, json={"id": "1", "name": "Deploy Bot"})

    assert await _client(handler).fetch_display_name("1", "t") == "Deploy Bot"


@pytest.mark.anyio
async def test_fetch_display_name_definite_answers_return_none():
    assert await _client(lambda r: httpx.Response(404)).fetch_display_name("1", "t") is None
    no_name = _client(lambda r: httpx.Response(200, json={"id": "1"}))
    assert await no_name.fetch_display_name("1", "t") is None


@pytest.mark.anyio
async def test_fetch_display_name_without_answer_raises():
    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    for handler in (
        refused,
        lambda r: httpx.Response(503),
        lambda r: httpx.Response(200, text="nope"),
    ):
        with pytest.raises(NameLookupError):
            await _client(handler).fetch_display_name("1", "t")
