"""Stripe Connect onboarding endpoints used by the plugin."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, RedirectResponse

from portal.core.config import settings
from portal.core.outcomes import RedirectOutcome
from portal.core.plugin_auth import PluginContext, plugin_context
from portal.core.rate_limit import (
    PluginRateLimiter,
    enforce_plugin_rate_limit,
    get_plugin_rate_limiter,
)
from portal.services import stripe_connect_service

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/stripe-credentials")
def get_stripe_credentials(
    ctx: PluginContext = Depends(plugin_context(require_organization=True)),
    limiter: PluginRateLimiter = Depends(get_plugin_rate_limiter),
):
    """
    Hand the Connect OAuth app credentials to a registered site.

    Every plan uses the same OAuth app; fees are applied by the payment proxy.
    """
    enforce_plugin_rate_limit(
        limiter, settings.RATE_LIMIT_PLUGIN_CREDENTIALS, f"oauth:{ctx.site_url}"
    )
    credentials = stripe_connect_service.get_connect_credentials()
    logger.info("Providing Stripe Connect credentials to %s", ctx.site_url)
    return {"success": True, "data": credentials}


@router.get("/stripe-credentials")
def stripe_credentials_get_not_allowed():
    return JSONResponse(
        status_code=405,
        content={"error": "GET method deprecated. Use POST with HMAC signature."},
    )


@router.get("/stripe-oauth/callback")
def stripe_oauth_callback(
    state: str | None = None,
    code: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
):
    """Bounce Stripe's OAuth redirect back to the WordPress site named in ``state``."""
    outcome = stripe_connect_service.build_oauth_redirect(
        state=state, code=code, error=error, error_description=error_description
    )
    if isinstance(outcome, RedirectOutcome):
        logger.info("Stripe OAuth callback redirecting (%s)", "error" if error else "code")
        return RedirectResponse(outcome.to)
    logger.warning("Stripe OAuth callback rejected: %s", outcome.message)
    return JSONResponse(status_code=outcome.status_code, content=outcome.to_body())
