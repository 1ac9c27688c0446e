"""Stripe Connect onboarding helpers for the WordPress plugin.

The plugin starts Stripe's OAuth flow with a ``state`` that carries its own
callback URL. Stripe always redirects to this portal (the only registered
redirect URI) and we bounce the browser back to the WordPress site with the
code or error attached.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from portal.core.config import settings
from portal.core.errors import PluginAPIError
from portal.core.outcomes import ErrorOutcome, Outcome, RedirectOutcome

logger = logging.getLogger(__name__)

_RETURN_URL_KEYS = ("return_url", "returnUrl", "redirect_uri")
_ALLOWED_SCHEMES = ("http", "https")


def get_connect_credentials() -> dict:
    """OAuth app credentials handed to signed plugin requests."""
    if not settings.STRIPE_CONNECT_CLIENT_ID or not settings.STRIPE_CONNECT_CLIENT_SECRET:
        logger.error("Stripe Connect OAuth credentials not configured")
        raise PluginAPIError(500, "Server configuration error")
    return {
        "client_id": settings.STRIPE_CONNECT_CLIENT_ID,
        "client_secret": settings.STRIPE_CONNECT_CLIENT_SECRET,
    }


def _b64_decode(value: str) -> str | None:
    padded = value + "=" * (-len(value) % 4)
    for decoder in (base64.b64decode, base64.urlsafe_b64decode):
        try:
            return decoder(padded).decode("utf-8")
        except (binascii.Error, ValueError, UnicodeDecodeError):
            continue
    return None


def _looks_like_url(value: str | None) -> bool:
    return bool(value) and value.startswith(("http://", "https://"))


def decode_return_url(state: str) -> str | None:
    """
    Recover the plugin's return URL from ``state``.

    Accepts base64(JSON({"return_url": ...})) (also ``returnUrl`` and
    ``redirect_uri``), base64 of a plain URL, or a plain URL.
    """
    decoded = _b64_decode(state)
    candidate: str | None = None

    if decoded:
        try:
            data = json.loads(decoded)
        except ValueError:
            data = None
        if isinstance(data, dict):
            candidate = next((data[k] for k in _RETURN_URL_KEYS if data.get(k)), None)
        elif _looks_like_url(decoded):
            candidate = decoded

    if not candidate and _looks_like_url(state):
        candidate = state

    if not isinstance(candidate, str):
        return None
    parts = urlsplit(candidate)
    if parts.scheme not in _ALLOWED_SCHEMES or not parts.netloc:
        return None
    return candidate


def _with_query(url: str, params: dict[str, str]) -> str:
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update(params)
    return urlunsplit(parts._replace(query=urlencode(query)))


def build_oauth_redirect(
    *,
    state: str | None,
    code: str | None,
    error: str | None,
    error_description: str | None,
) -> Outcome:
    if not state:
        return ErrorOutcome(
            error="Missing state parameter. OAuth flow may have been tampered with.",
            message="missing_state",
        )

    return_url = decode_return_url(state)
    if not return_url:
        logger.warning("Stripe OAuth callback with undecodable state")
        return ErrorOutcome(
            error="Invalid state parameter. Unable to determine return destination.",
            message="invalid_state",
        )

    params = {"state": state}
    if error:
        params["error"] = error
        if error_description:
            params["error_description"] = error_description
    elif code:
        params["code"] = code
    else:
        return ErrorOutcome(error="Invalid OAuth response from Stripe", message="invalid_response")

    return RedirectOutcome(to=_with_query(return_url, params))
