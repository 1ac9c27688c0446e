"""Billing (Stripe) webhook handler."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

import stripe
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from portal.core.config import settings
from portal.db.enums import SubscriptionStatus
from portal.services import billing_service, stripe_service

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"


def _checkout_completed(db: Session, data: dict) -> Any:
    return billing_service.handle_checkout_completed(
        db, data, fetch_subscription=stripe_service.retrieve_subscription
    )


def _subscription_deleted(db: Session, data: dict) -> Any:
    return billing_service.set_subscription_state(
        db, data["id"], status=SubscriptionStatus.CANCELED
    )


def _subscription_paused(db: Session, data: dict) -> Any:
    logger.info("Subscription paused: %s", data.get("id"))
    return billing_service.set_subscription_state(
        db, data["id"], status=SubscriptionStatus.PAUSED
    )


def _invoice_payment_failed(db: Session, data: dict) -> Any:
    logger.warning(
        "Invoice payment failed: invoice=%s subscription=%s",
        data.get("id"),
        data.get("subscription"),
    )
    return None


EVENT_HANDLERS: dict[str, Callable[[Session, dict], Any]] = {
    "checkout.session.completed": _checkout_completed,
    "customer.subscription.created": billing_service.handle_subscription_changed,
    "customer.subscription.updated": billing_service.handle_subscription_changed,
    "customer.subscription.resumed": billing_service.handle_subscription_changed,
    "customer.subscription.deleted": _subscription_deleted,
    "customer.subscription.paused": _subscription_paused,
    "invoice.paid": billing_service.handle_invoice_paid,
    "invoice.payment_failed": _invoice_payment_failed,
}


def dispatch_event(db: Session, event: dict) -> bool:
    """Run the handler for ``event``; returns False for event types we ignore."""
    event_type = event.get("type")
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info("Unhandled billing event type %s", event_type)
        return False
    handler(db, (event.get("data") or {}).get("object") or {})
    return True


class BillingWebhookHandler:
    async def handle(self, request: Request, db: Session, **kwargs):
        """
        Receive Stripe billing events for our own account.

        Security:
        - Signature checked by stripe.Webhook.construct_event before parsing

        Processing:
        - Subscription lifecycle → Subscription row → license sync
        - Unknown events are acknowledged
        - Handler failures return 500 so Stripe retries
        - Event handlers run in the threadpool (Stripe API calls block)
        """
        if not settings.BILLING_STRIPE_WEBHOOK_SECRET:
            logger.error("BILLING_STRIPE_WEBHOOK_SECRET not configured")
            raise HTTPException(status_code=500, detail="Webhook not configured")

        body = await request.body()
        signature = request.headers.get(SIGNATURE_HEADER)
        if not signature:
            raise HTTPException(status_code=400, detail="Missing stripe-signature header")

        try:
            stripe_service.construct_billing_event(body, signature)
        except stripe.SignatureVerificationError:
            logger.warning("Billing webhook invalid signature")
            raise HTTPException(status_code=400, detail="Invalid signature")
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid payload")

        # Verified above; handlers work on plain dicts
        event = json.loads(body)
        event_type = event.get("type")
        try:
            handled = await run_in_threadpool(dispatch_event, db, event)
        except Exception:
            db.rollback()
            logger.exception("Billing webhook handler failed for %s (%s)", event.get("id"), event_type)
            return JSONResponse(
                status_code=500,
                content={"error": "Webhook handler failed"},
                headers={"Cache-Control": "no-store"},
            )

        return {"received": True, "handled": handled, "type": event_type}
