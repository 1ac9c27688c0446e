"""HMAC request signing for the WordPress plugin API.

The plugin signs every request with a secret shared with the portal:

    X-Plugin-Signature: hex(HMAC-SHA256(secret, "{X-Site-URL}:{X-Timestamp}:{body}"))

``body`` is the raw request body exactly as sent ('' for empty bodies), so
the portal never has to re-serialize JSON to check a signature. Timestamps
older or newer than PLUGIN_SIGNATURE_MAX_AGE_SECONDS are rejected.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Mapping

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.deps import get_db
from portal.core.errors import PluginAPIError
from portal.db.models import Organization
from portal.utils.normalization import normalize_domain, strip_trailing_slash

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Plugin-Signature"
SITE_URL_HEADER = "X-Site-URL"
TIMESTAMP_HEADER = "X-Timestamp"


@dataclass(frozen=True)
class PluginContext:
    """Verified caller identity for a plugin request."""

    site_url: str
    organization: Organization | None = None

    @property
    def site_domain(self) -> str:
        return normalize_domain(self.site_url)


def compute_signature(secret: str, site_url: str, timestamp: str, body: str) -> str:
    payload = f"{site_url}:{timestamp}:{body}"
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_plugin_signature(
    headers: Mapping[str, str],
    raw_body: bytes,
    *,
    secret: str | None = None,
    now: float | None = None,
) -> str:
    """
    Check signature headers; return the caller's site URL (trailing slash removed).

    Raises:
        PluginAPIError 500: server secret not configured
        PluginAPIError 401: missing header, stale or malformed timestamp
        PluginAPIError 403: signature mismatch
        PluginAPIError 400: site URL has no domain
    """
    secret = settings.PLUGIN_SECRET_KEY if secret is None else secret
    if not secret:
        logger.error("PLUGIN_SECRET_KEY not configured")
        raise PluginAPIError(500, "Server configuration error")

    signature = headers.get(SIGNATURE_HEADER)
    site_url = headers.get(SITE_URL_HEADER)
    timestamp = headers.get(TIMESTAMP_HEADER)

    for name, value in (
        (SIGNATURE_HEADER, signature),
        (SITE_URL_HEADER, site_url),
        (TIMESTAMP_HEADER, timestamp),
    ):
        if not value:
            raise PluginAPIError(401, f"Missing {name} header")

    try:
        request_time = int(timestamp)
    except (TypeError, ValueError):
        raise PluginAPIError(401, "Request timestamp expired")

    current_time = int(now if now is not None else time.time())
    if abs(current_time - request_time) > settings.PLUGIN_SIGNATURE_MAX_AGE_SECONDS:
        raise PluginAPIError(401, "Request timestamp expired")

    body = raw_body.decode("utf-8") if raw_body else ""
    expected = compute_signature(secret, site_url, timestamp, body)
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Invalid plugin signature from site=%s", site_url)
        raise PluginAPIError(403, "Invalid signature")

    if not normalize_domain(site_url):
        raise PluginAPIError(400, "Invalid X-Site-URL")

    return strip_trailing_slash(site_url)


def find_organization_for_site(db: Session, site_url: str) -> Organization | None:
    domain = normalize_domain(site_url)
    if not domain:
        return None
    return db.query(Organization).filter(Organization.site_domain == domain).first()


def plugin_context(require_organization: bool = False):
    """
    Dependency factory: verify the request signature and resolve the caller.

    Usage:
        ctx: PluginContext = Depends(plugin_context(require_organization=True))
    """
    async def dependency(request: Request, db: Session = Depends(get_db)) -> PluginContext:
        raw_body = await request.body()
        site_url = verify_plugin_signature(request.headers, raw_body)
        if not require_organization:
            return PluginContext(site_url=site_url)

        organization = find_organization_for_site(db, site_url)
        if not organization:
            logger.warning("No organization found for site=%s", site_url)
            raise PluginAPIError(404, "Site not registered")
        return PluginContext(site_url=site_url, organization=organization)

    return dependency
