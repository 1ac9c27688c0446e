"""Tests for plugin HMAC request signing."""

import time

import pytest
from httpx import AsyncClient

from portal.core.errors import PluginAPIError
from portal.core.plugin_auth import compute_signature, verify_plugin_signature

SECRET = "unit-secret"
SITE = "https://shop.example.com/"


def _headers(body: str, *, timestamp: int, site: str = SITE, secret: str = SECRET) -> dict:
    return {
        "X-Plugin-Signature": compute_signature(secret, site, str(timestamp), body),
        "X-Site-URL": site,
        "X-Timestamp": str(timestamp),
    }


def test_valid_signature_returns_site_without_trailing_slash():
    now = int(time.time())
    body = '{"action":"check"}'
    site = verify_plugin_signature(_headers(body, timestamp=now), body.encode(), secret=SECRET, now=now)
    assert site == "https://shop.example.com"


def test_empty_body_signs_empty_string():
    now = int(time.time())
    assert verify_plugin_signature(_headers("", timestamp=now), b"", secret=SECRET, now=now)


@pytest.mark.parametrize("missing", ["X-Plugin-Signature", "X-Site-URL", "X-Timestamp"])
def test_missing_header_is_401(missing):
    now = int(time.time())
    headers = _headers("{}", timestamp=now)
    headers.pop(missing)
    with pytest.raises(PluginAPIError) as exc:
        verify_plugin_signature(headers, b"{}", secret=SECRET, now=now)
    assert exc.value.status_code == 401
    assert exc.value.error == f"Missing {missing} header"


def test_stale_timestamp_is_401():
    now = int(time.time())
    headers = _headers("{}", timestamp=now - 301)
    with pytest.raises(PluginAPIError) as exc:
        verify_plugin_signature(headers, b"{}", secret=SECRET, now=now)
    assert exc.value.status_code == 401
    assert exc.value.error == "Request timestamp expired"


def test_future_timestamp_is_401():
    now = int(time.time())
    headers = _headers("{}", timestamp=now + 301)
    with pytest.raises(PluginAPIError) as exc:
        verify_plugin_signature(headers, b"{}", secret=SECRET, now=now)
    assert exc.value.status_code == 401


def test_timestamp_inside_window_is_accepted():
    now = int(time.time())
    headers = _headers("{}", timestamp=now - 299)
    assert verify_plugin_signature(headers, b"{}", secret=SECRET, now=now)


def test_malformed_timestamp_is_401():
    headers = {
        "X-Plugin-Signature": "abc",
        "X-Site-URL": SITE,
        "X-Timestamp": "yesterday",
    }
    with pytest.raises(PluginAPIError) as exc:
        verify_plugin_signature(headers, b"{}", secret=SECRET)
    assert exc.value.status_code == 401


def test_tampered_body_is_403():
    now = int(time.time())
    headers = _headers('{"amount":5000}', timestamp=now)
    with pytest.raises(PluginAPIError) as exc:
        verify_plugin_signature(headers, b'{"amount":50}', secret=SECRET, now=now)
    assert exc.value.status_code == 403
    assert exc.value.error == "Invalid signature"


def test_wrong_secret_is_403():
    now = int(time.time())
    headers = _headers("{}", timestamp=now, secret="other-secret")
    with pytest.raises(PluginAPIError) as exc:
        verify_plugin_signature(headers, b"{}", secret=SECRET, now=now)
    assert exc.value.status_code == 403


def test_site_url_without_domain_is_400():
    now = int(time.time())
    headers = _headers("{}", timestamp=now, site="https:///")
    with pytest.raises(PluginAPIError) as exc:
        verify_plugin_signature(headers, b"{}", secret=SECRET, now=now)
    assert exc.value.status_code == 400
    assert exc.value.error == "Invalid X-Site-URL"


def test_missing_server_secret_is_500():
    with pytest.raises(PluginAPIError) as exc:
        verify_plugin_signature({}, b"", secret="")
    assert exc.value.status_code == 500
    assert exc.value.error == "Server configuration error"


# =============================================================================
# Through the API
# =============================================================================

@pytest.mark.asyncio
async def test_unsigned_plugin_request_rejected(client: AsyncClient):
    response = await client.post("/api/v1/license/register", json={"action": "check"})
    assert response.status_code == 401
    assert response.json() == {"error": "Missing X-Plugin-Signature header"}


@pytest.mark.asyncio
async def test_signature_over_different_body_rejected(client: AsyncClient, sign_plugin_request):
    signed = sign_plugin_request({"license_key": "k", "action": "check"})
    response = await client.post(
        "/api/v1/license/register",
        content=b'{"license_key": "other", "action": "check"}',
        headers=signed.headers,
    )
    assert response.status_code == 403
    assert response.json() == {"error": "Invalid signature"}


@pytest.mark.asyncio
async def test_expired_plugin_request_rejected(client: AsyncClient, sign_plugin_request):
    signed = sign_plugin_request({"action": "check"}, timestamp=int(time.time()) - 3600)
    response = await client.post("/api/v1/license/register", content=signed.body, headers=signed.headers)
    assert response.status_code == 401
    assert response.json() == {"error": "Request timestamp expired"}
