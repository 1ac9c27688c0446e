"""Thin wrappers over the Stripe SDK.

Every call passes its API key explicitly so the platform (Connect) account
and our own billing account never share global ``stripe.api_key`` state.
Connected-account calls pass ``stripe_account``. Nothing here retries;
the SDK's own network retry setting applies.
"""

from __future__ import annotations

import logging
from typing import Any

import stripe

from portal.core.config import settings

logger = logging.getLogger(__name__)

ALREADY_ATTACHED_CODE = "resource_already_exists"


class StripeNotConfigured(RuntimeError):
    """Raised when the platform or billing secret key is missing."""


def _platform_key(*, billing_fallback: bool = False) -> str:
    if settings.STRIPE_CONNECT_CLIENT_SECRET:
        return settings.STRIPE_CONNECT_CLIENT_SECRET
    # Confirm and verify may run on the billing key
    if billing_fallback and settings.BILLING_STRIPE_SECRET_KEY:
        return settings.BILLING_STRIPE_SECRET_KEY
    raise StripeNotConfigured("STRIPE_CONNECT_CLIENT_SECRET not configured")


def _billing_key() -> str:
    if not settings.BILLING_STRIPE_SECRET_KEY:
        raise StripeNotConfigured("BILLING_STRIPE_SECRET_KEY not configured")
    return settings.BILLING_STRIPE_SECRET_KEY


def _common(
    stripe_account: str | None = None,
    idempotency_key: str | None = None,
    *,
    billing_fallback: bool = False,
) -> dict[str, Any]:
    opts: dict[str, Any] = {"api_key": _platform_key(billing_fallback=billing_fallback)}
    if settings.STRIPE_API_VERSION:
        opts["stripe_version"] = settings.STRIPE_API_VERSION
    if stripe_account:
        opts["stripe_account"] = stripe_account
    if idempotency_key:
        opts["idempotency_key"] = idempotency_key
    return opts


def error_message(error: stripe.StripeError) -> str:
    return error.user_message or str(error)


def is_already_attached(error: stripe.StripeError) -> bool:
    return getattr(error, "code", None) == ALREADY_ATTACHED_CODE


# =============================================================================
# Customers & payment methods (platform or connected account)
# =============================================================================

def list_customers_by_email(email: str, *, stripe_account: str | None = None) -> list[Any]:
    result = stripe.Customer.list(email=email, limit=10, **_common(stripe_account))
    return list(result.get("data", []))


def create_customer(*, stripe_account: str | None = None, **params: Any) -> Any:
    return stripe.Customer.create(**params, **_common(stripe_account))


def update_customer(customer_id: str, *, stripe_account: str | None = None, **params: Any) -> Any:
    return stripe.Customer.modify(customer_id, **params, **_common(stripe_account))


def attach_payment_method(
    payment_method_id: str, *, customer: str, stripe_account: str | None = None
) -> Any:
    return stripe.PaymentMethod.attach(
        payment_method_id, customer=customer, **_common(stripe_account)
    )


def clone_payment_method(
    payment_method_id: str, *, platform_customer: str, stripe_account: str
) -> Any:
    """Copy a platform payment method onto a connected account."""
    return stripe.PaymentMethod.create(
        customer=platform_customer,
        payment_method=payment_method_id,
        **_common(stripe_account),
    )


# =============================================================================
# PaymentIntents (always on the connected account)
# =============================================================================

def create_payment_intent(
    params: dict[str, Any], *, stripe_account: str, idempotency_key: str | None = None
) -> Any:
    return stripe.PaymentIntent.create(**params, **_common(stripe_account, idempotency_key))


def confirm_payment_intent(
    payment_intent_id: str, *, payment_method: str, return_url: str, stripe_account: str
) -> Any:
    return stripe.PaymentIntent.confirm(
        payment_intent_id,
        payment_method=payment_method,
        return_url=return_url,
        **_common(stripe_account, billing_fallback=True),
    )


def retrieve_payment_intent(payment_intent_id: str, *, stripe_account: str | None) -> Any:
    return stripe.PaymentIntent.retrieve(
        payment_intent_id, **_common(stripe_account, billing_fallback=True)
    )


# =============================================================================
# Billing (our own account)
# =============================================================================

def construct_billing_event(payload: bytes, sig_header: str) -> Any:
    """
    Verify and parse a billing webhook.

    Raises:
        ValueError: malformed payload
        stripe.SignatureVerificationError: bad signature
    """
    return stripe.Webhook.construct_event(
        payload=payload,
        sig_header=sig_header,
        secret=settings.BILLING_STRIPE_WEBHOOK_SECRET,
    )


def retrieve_subscription(subscription_id: str) -> Any:
    return stripe.Subscription.retrieve(subscription_id, api_key=_billing_key())
