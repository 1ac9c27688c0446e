"""Tests for plugin rate limiting."""

import pytest
from httpx import AsyncClient

from portal.core.config import settings
from portal.core.errors import PluginAPIError
from portal.core.rate_limit import PluginRateLimiter, enforce_plugin_rate_limit


def test_limiter_allows_up_to_limit_then_blocks():
    limiter = PluginRateLimiter()
    results = [limiter.check(3, "license:https://a.example.com") for _ in range(4)]

    assert [r.is_rate_limited for r in results] == [False, False, False, True]
    assert results[0].remaining == 2
    assert results[3].retry_after >= 1


def test_limiter_keys_are_independent():
    limiter = PluginRateLimiter()
    assert not limiter.check(1, "payments:https://a.example.com").is_rate_limited
    assert limiter.check(1, "payments:https://a.example.com").is_rate_limited
    assert not limiter.check(1, "payments:https://b.example.com").is_rate_limited


def test_non_positive_limit_disables_limiting():
    limiter = PluginRateLimiter()
    assert not any(limiter.check(0, "k").is_rate_limited for _ in range(5))


def test_reset_clears_counters():
    limiter = PluginRateLimiter()
    limiter.check(1, "k")
    assert limiter.check(1, "k").is_rate_limited
    limiter.reset()
    assert not limiter.check(1, "k").is_rate_limited


def test_enforce_raises_429_with_retry_after():
    limiter = PluginRateLimiter()
    enforce_plugin_rate_limit(limiter, 1, "oauth:https://a.example.com")
    with pytest.raises(PluginAPIError) as exc:
        enforce_plugin_rate_limit(limiter, 1, "oauth:https://a.example.com")
    assert exc.value.status_code == 429
    assert exc.value.to_body() == {"error": "Rate limit exceeded", "retry_after": 60}


@pytest.mark.asyncio
async def test_license_endpoint_rate_limited_per_site(
    client: AsyncClient, sign_plugin_request, monkeypatch
):
    monkeypatch.setattr(settings, "RATE_LIMIT_PLUGIN_LICENSE", 2)
    payload = {"license_key": "missing-key", "action": "check"}

    for _ in range(2):
        signed = sign_plugin_request(payload)
        response = await client.post("/api/v1/license/register", content=signed.body, headers=signed.headers)
        assert response.status_code == 200

    signed = sign_plugin_request(payload)
    response = await client.post("/api/v1/license/register", content=signed.body, headers=signed.headers)
    assert response.status_code == 429
    assert response.json() == {"error": "Rate limit exceeded", "retry_after": 60}

    # Another site has its own budget
    other = sign_plugin_request(payload, site_url="https://other.example.com")
    response = await client.post("/api/v1/license/register", content=other.body, headers=other.headers)
    assert response.status_code == 200
