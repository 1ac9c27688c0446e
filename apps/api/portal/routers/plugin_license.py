"""Plugin license registration: activate, deactivate and check a site."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.deps import get_client_ip, get_db
from portal.core.errors import PluginAPIError
from portal.core.plugin_auth import PluginContext, plugin_context
from portal.core.rate_limit import (
    PluginRateLimiter,
    enforce_plugin_rate_limit,
    get_plugin_rate_limiter,
)
from portal.core.security import mask_secret
from portal.schemas.licensing import LicenseRegisterRequest
from portal.services import license_service

router = APIRouter()
logger = logging.getLogger(__name__)

ACTIONS = ("activate", "deactivate", "check")


@router.post("/license/register")
def register_license(
    body: LicenseRegisterRequest,
    request: Request,
    ctx: PluginContext = Depends(plugin_context(require_organization=False)),
    limiter: PluginRateLimiter = Depends(get_plugin_rate_limiter),
    db: Session = Depends(get_db),
):
    """
    Activate, deactivate or check the license for the calling site.

    The domain is always the signed X-Site-URL, never a body field.
    Business failures (expired, limit reached) answer 200 with a status.
    """
    enforce_plugin_rate_limit(limiter, settings.RATE_LIMIT_PLUGIN_LICENSE, f"license:{ctx.site_url}")

    if not body.license_key and body.action != "deactivate":
        raise PluginAPIError(400, "Missing license_key")
    if not body.action:
        raise PluginAPIError(400, "Missing action")
    if body.action not in ACTIONS:
        raise PluginAPIError(400, "Invalid action")

    logger.info(
        "License %s request for %s (key=%s)",
        body.action,
        ctx.site_url,
        mask_secret(body.license_key),
    )
    client_ip = get_client_ip(request)

    if body.action == "deactivate":
        result = license_service.deactivate_license(
            db,
            license_key=body.license_key,
            domain=ctx.site_domain,
            ip_address=client_ip,
        )
        return result.to_plugin_response()

    if body.action == "check":
        result = license_service.check_license(
            db, license_key=body.license_key, domain=ctx.site_domain
        )
        return result.to_plugin_response()

    result = license_service.activate_license(
        db,
        license_key=body.license_key,
        domain=ctx.site_domain,
        ip_address=client_ip,
    )
    return result.to_plugin_response()
