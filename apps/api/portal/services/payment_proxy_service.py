"""Stripe Connect payment proxy for the WordPress plugin.

Payments are direct charges on the store's connected account. The card is
first saved to a customer on the platform account, then cloned onto the
connected account (a PaymentMethod cannot move between accounts), and the
PaymentIntent is created there with ``setup_future_usage=off_session`` so
later installments can reuse the card. The platform takes an application fee
unless the store's domain holds a usable license.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.errors import PluginAPIError
from portal.core.structured_logging import build_log_context, mask_email
from portal.db.enums import PlanType
from portal.schemas.payments import (
    ConfirmPaymentRequest,
    CreatePaymentRequest,
    CreatePaymentResponse,
    FeeInfo,
    PaymentStatusResponse,
    VerifyPaymentRequest,
)
from portal.services import license_service, stripe_service
from portal.utils.normalization import normalize_email

logger = logging.getLogger(__name__)

CUSTOMER_SOURCE = "pixeldev-stripe-deposits"


@dataclass(frozen=True)
class FeeDecision:
    percentage: int
    amount: int
    plan_type: PlanType


def compute_application_fee(amount: int, percentage: int) -> int:
    """round(amount * pct / 100), halves rounded up."""
    fee = (Decimal(amount) * Decimal(percentage) / Decimal(100)).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return int(fee)


def decide_fee(db: Session, *, site_url: str, amount: int) -> FeeDecision:
    if license_service.has_active_license_for_domain(db, site_url):
        percentage, plan = settings.LICENSED_FEE_PERCENT, PlanType.PRO
    else:
        percentage, plan = settings.UNLICENSED_FEE_PERCENT, PlanType.FREE
    return FeeDecision(
        percentage=percentage,
        amount=compute_application_fee(amount, percentage),
        plan_type=plan,
    )


def _validate_create(request: CreatePaymentRequest) -> None:
    if not request.amount or request.amount < settings.MIN_PAYMENT_AMOUNT_CENTS:
        raise PluginAPIError(400, "Invalid amount (minimum $0.50)")
    if not request.currency:
        raise PluginAPIError(400, "Missing currency")
    if not request.customer_email or not request.customer_email.strip():
        raise PluginAPIError(400, "Missing customer_email")
    if not request.payment_method_id:
        raise PluginAPIError(400, "Missing payment_method_id")
    if not request.order_id:
        raise PluginAPIError(400, "Missing order_id")
    if not request.stripe_account_id:
        raise PluginAPIError(400, "Missing stripe_account_id")


def _pick_customer(customers: list[Any], email: str) -> Any | None:
    """Newest non-deleted customer whose email matches case-insensitively."""
    matches = [
        c
        for c in customers
        if (c.get("email") or "").lower() == email and not c.get("deleted")
    ]
    if not matches:
        return None
    return max(matches, key=lambda c: c.get("created") or 0)


def _attach_tolerating_existing(
    payment_method_id: str, *, customer: str, stripe_account: str | None = None
) -> None:
    try:
        stripe_service.attach_payment_method(
            payment_method_id, customer=customer, stripe_account=stripe_account
        )
    except stripe.StripeError as e:
        if not stripe_service.is_already_attached(e):
            raise
        logger.info("Payment method %s already attached", payment_method_id)


def _resolve_platform_customer(email: str, request: CreatePaymentRequest, site_url: str) -> Any:
    existing = _pick_customer(stripe_service.list_customers_by_email(email), email)
    if existing:
        return existing
    return stripe_service.create_customer(
        email=email,
        name=request.customer_name or None,
        metadata={"site_url": site_url, "source": CUSTOMER_SOURCE},
    )


def _resolve_connected_customer(
    email: str,
    *,
    request: CreatePaymentRequest,
    site_url: str,
    platform_customer_id: str,
    cloned_payment_method_id: str,
) -> Any:
    account = request.stripe_account_id
    existing = _pick_customer(
        stripe_service.list_customers_by_email(email, stripe_account=account), email
    )
    if existing:
        _attach_tolerating_existing(
            cloned_payment_method_id, customer=existing["id"], stripe_account=account
        )
        stripe_service.update_customer(
            existing["id"],
            stripe_account=account,
            invoice_settings={"default_payment_method": cloned_payment_method_id},
        )
        return existing

    return stripe_service.create_customer(
        stripe_account=account,
        email=email,
        name=request.customer_name or None,
        payment_method=cloned_payment_method_id,
        invoice_settings={"default_payment_method": cloned_payment_method_id},
        metadata={
            "platform_customer_id": platform_customer_id,
            "site_url": site_url,
            "wp_order_id": str(request.order_id),
        },
    )


def create_payment_intent(
    db: Session, *, request: CreatePaymentRequest, site_url: str
) -> CreatePaymentResponse:
    """
    Create an unconfirmed PaymentIntent on the store's connected account.

    Raises:
        PluginAPIError 400: validation (checked before any Stripe call)
        PluginAPIError 402: Stripe rejected a call
        PluginAPIError 500: platform key missing
    """
    _validate_create(request)
    email = normalize_email(request.customer_email)
    account = request.stripe_account_id
    fee = decide_fee(db, site_url=site_url, amount=request.amount)

    log_context = build_log_context(
        site_url=site_url,
        amount=request.amount,
        fee_percentage=fee.percentage,
        fee_amount=fee.amount,
        plan_type=fee.plan_type.value,
        stripe_account=account,
    )
    logger.info("Creating PaymentIntent for %s", site_url, extra=log_context)

    try:
        platform_customer = _resolve_platform_customer(email, request, site_url)
        _attach_tolerating_existing(request.payment_method_id, customer=platform_customer["id"])

        cloned = stripe_service.clone_payment_method(
            request.payment_method_id,
            platform_customer=platform_customer["id"],
            stripe_account=account,
        )
        connected_customer = _resolve_connected_customer(
            email,
            request=request,
            site_url=site_url,
            platform_customer_id=platform_customer["id"],
            cloned_payment_method_id=cloned["id"],
        )

        params: dict[str, Any] = {
            "amount": request.amount,
            "currency": request.currency.lower(),
            "customer": connected_customer["id"],
            "payment_method": cloned["id"],
            "confirm": False,
            "setup_future_usage": "off_session",
            "metadata": {
                "site_url": site_url,
                "wp_order_id": str(request.order_id),
                "payment_type": request.payment_type,
                "fee_percentage": str(fee.percentage),
                "platform_customer_id": platform_customer["id"],
            },
        }
        if fee.amount > 0:
            params["application_fee_amount"] = fee.amount

        intent = stripe_service.create_payment_intent(
            params, stripe_account=account, idempotency_key=request.idempotency_key
        )
    except stripe_service.StripeNotConfigured:
        logger.error("Payment proxy called without platform Stripe key")
        raise PluginAPIError(500, "Server configuration error")
    except stripe.StripeError as e:
        logger.warning(
            "Stripe error creating PaymentIntent for %s (customer=%s): %s",
            site_url,
            mask_email(email),
            stripe_service.error_message(e),
            extra=log_context,
        )
        raise PluginAPIError(402, stripe_service.error_message(e), type=type(e).__name__)

    logger.info("PaymentIntent %s created for %s", intent["id"], site_url, extra=log_context)
    return CreatePaymentResponse(
        client_secret=intent.get("client_secret"),
        payment_intent_id=intent["id"],
        customer_id=connected_customer["id"],
        payment_method_id=cloned["id"],
        fee=FeeInfo(percentage=fee.percentage, amount=fee.amount, plan_type=fee.plan_type.value),
    )


def _stripe_failure(e: stripe.StripeError) -> PluginAPIError:
    return PluginAPIError(e.http_status or 400, stripe_service.error_message(e))


def confirm_payment_intent(*, request: ConfirmPaymentRequest, site_url: str) -> PaymentStatusResponse:
    """Confirm on the connected account; surface 3-D Secure redirects."""
    for name in ("payment_intent_id", "payment_method_id", "stripe_account_id", "return_url"):
        if not getattr(request, name):
            raise PluginAPIError(400, f"Missing {name}")

    try:
        intent = stripe_service.confirm_payment_intent(
            request.payment_intent_id,
            payment_method=request.payment_method_id,
            return_url=request.return_url,
            stripe_account=request.stripe_account_id,
        )
    except stripe_service.StripeNotConfigured:
        raise PluginAPIError(500, "Stripe not configured on server")
    except stripe.StripeError as e:
        logger.warning("Stripe error confirming %s for %s", request.payment_intent_id, site_url)
        raise _stripe_failure(e)

    next_action = intent.get("next_action") or {}
    if intent.get("status") == "requires_action" and next_action.get("type") == "redirect_to_url":
        redirect = next_action.get("redirect_to_url") or {}
        return PaymentStatusResponse(
            status="requires_action",
            next_action_redirect_url=redirect.get("url"),
        )
    return PaymentStatusResponse(status=intent.get("status"))


def verify_payment_intent(*, request: VerifyPaymentRequest, site_url: str) -> PaymentStatusResponse:
    if not request.payment_intent_id:
        raise PluginAPIError(400, "Missing payment_intent_id")

    try:
        intent = stripe_service.retrieve_payment_intent(
            request.payment_intent_id, stripe_account=request.stripe_account_id
        )
    except stripe_service.StripeNotConfigured:
        raise PluginAPIError(500, "Stripe not configured on server")
    except stripe.StripeError as e:
        logger.warning("Stripe error verifying %s for %s", request.payment_intent_id, site_url)
        raise _stripe_failure(e)

    return PaymentStatusResponse(status=intent.get("status"))
