from __future__ import annotations

import asyncio

import httpx
from aiolimiter import AsyncLimiter

from docsync.adapters.http_resilience import ResilientClient, build_limiter
from docsync.config.http_resilience import RateLimit, ResilienceConfig, RetryPolicy


def _config(ratelimit: RateLimit | None = None) -> ResilienceConfig:
    return ResilienceConfig(
        name="test",
        base_url="https://example.test/",
        retry=RetryPolicy(total=0),
        ratelimit=ratelimit,
        default_headers={"X-Client": "docsync"},
    )


def test_build_limiter_follows_rate_limit() -> None:
    limiter = build_limiter(RateLimit(max_calls=5, per_seconds=2.0))

    assert limiter is not None
    assert limiter.max_rate == 5
    assert limiter.time_period == 2.0
    assert build_limiter(None) is None


def test_client_uses_given_limiter_over_config() -> None:
    shared = AsyncLimiter(1, 1.0)

    client = ResilientClient(_config(RateLimit(max_calls=25, per_seconds=1.0)), limiter=shared)

    assert client.limiter is shared
    assert ResilientClient(_config()).limiter is None


def test_request_goes_through_transport_with_defaults() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    async def call() -> httpx.Response:
        async with ResilientClient(
            _config(RateLimit(max_calls=10, per_seconds=1.0)),
            transport=httpx.MockTransport(handler),
        ) as client:
            return await client.request("GET", "data/query", params={"query": "*"})

    response = asyncio.run(call())

    assert response.json() == {"ok": True}
    assert seen[0].url.path == "/data/query"
    assert seen[0].url.params["query"] == "*"
    assert seen[0].headers["X-Client"] == "docsync"
