"""Plugin payment proxy: PaymentIntents on the store's connected account."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.deps import get_db
from portal.core.plugin_auth import PluginContext, plugin_context
from portal.core.rate_limit import (
    PluginRateLimiter,
    enforce_plugin_rate_limit,
    get_plugin_rate_limiter,
)
from portal.schemas.payments import (
    ConfirmPaymentRequest,
    CreatePaymentRequest,
    CreatePaymentResponse,
    PaymentStatusResponse,
    VerifyPaymentRequest,
)
from portal.services import payment_proxy_service

router = APIRouter(prefix="/payments")


@router.post("/create", response_model=CreatePaymentResponse)
def create_payment(
    body: CreatePaymentRequest,
    ctx: PluginContext = Depends(plugin_context()),
    limiter: PluginRateLimiter = Depends(get_plugin_rate_limiter),
    db: Session = Depends(get_db),
) -> CreatePaymentResponse:
    """Create an unconfirmed PaymentIntent; the browser completes 3-D Secure."""
    enforce_plugin_rate_limit(limiter, settings.RATE_LIMIT_PLUGIN_PAYMENTS, f"payments:{ctx.site_url}")
    return payment_proxy_service.create_payment_intent(db, request=body, site_url=ctx.site_url)


@router.post(
    "/confirm",
    response_model=PaymentStatusResponse,
    response_model_exclude_none=True,
)
def confirm_payment(
    body: ConfirmPaymentRequest,
    ctx: PluginContext = Depends(plugin_context()),
    limiter: PluginRateLimiter = Depends(get_plugin_rate_limiter),
) -> PaymentStatusResponse:
    enforce_plugin_rate_limit(limiter, settings.RATE_LIMIT_PLUGIN_PAYMENTS, f"payments:{ctx.site_url}")
    return payment_proxy_service.confirm_payment_intent(request=body, site_url=ctx.site_url)


@router.post(
    "/verify",
    response_model=PaymentStatusResponse,
    response_model_exclude_none=True,
)
def verify_payment(
    body: VerifyPaymentRequest,
    ctx: PluginContext = Depends(plugin_context()),
    limiter: PluginRateLimiter = Depends(get_plugin_rate_limiter),
) -> PaymentStatusResponse:
    enforce_plugin_rate_limit(limiter, settings.RATE_LIMIT_PLUGIN_PAYMENTS, f"payments:{ctx.site_url}")
    return payment_proxy_service.verify_payment_intent(request=body, site_url=ctx.site_url)
