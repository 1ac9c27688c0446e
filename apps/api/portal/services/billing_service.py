"""Billing events → Subscription rows → license sync."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from portal.db.enums import SubscriptionStatus
from portal.db.models import Organization, Subscription
from portal.services import license_service, subscription_sync_service

logger = logging.getLogger(__name__)

# Subscription.active: the customer is still entitled to the product
ENTITLED_STATUSES = frozenset(
    {
        SubscriptionStatus.ACTIVE.value,
        SubscriptionStatus.TRIALING.value,
        SubscriptionStatus.PAST_DUE.value,
    }
)


def _from_timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _period_bounds(data: dict) -> tuple[datetime | None, datetime | None]:
    """Period start/end from the subscription, or its first item (newer API versions)."""
    start = data.get("current_period_start")
    end = data.get("current_period_end")
    if end is None:
        items = (data.get("items") or {}).get("data") or []
        if items:
            start = items[0].get("current_period_start")
            end = items[0].get("current_period_end")
    return _from_timestamp(start), _from_timestamp(end)


def _price_id(data: dict) -> str | None:
    items = (data.get("items") or {}).get("data") or []
    if not items:
        return None
    return (items[0].get("price") or {}).get("id")


def _parse_uuid(value: Any) -> UUID | None:
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def resolve_organization(
    db: Session, *, customer_id: str | None, reference: Any = None
) -> Organization | None:
    """Find the organization by explicit reference (org id) or billing customer id."""
    org_id = _parse_uuid(reference)
    if org_id:
        org = db.get(Organization, org_id)
        if org:
            if customer_id and not org.billing_customer_id:
                org.billing_customer_id = customer_id
            return org
    if customer_id:
        return (
            db.query(Organization)
            .filter(Organization.billing_customer_id == customer_id)
            .first()
        )
    return None


def upsert_subscription(
    db: Session, data: dict, *, organization: Organization | None = None
) -> Subscription | None:
    """Create or update the Subscription row from a Stripe subscription object."""
    subscription_id = data.get("id")
    if not subscription_id:
        return None

    subscription = db.get(Subscription, subscription_id)
    if organization is None:
        if subscription:
            organization = subscription.organization
        else:
            organization = resolve_organization(
                db,
                customer_id=data.get("customer"),
                reference=(data.get("metadata") or {}).get("organization_id"),
            )
    if organization is None:
        logger.warning("No organization for subscription %s", subscription_id)
        return None

    status = data.get("status") or SubscriptionStatus.INCOMPLETE.value
    period_start, period_end = _period_bounds(data)
    if subscription is None:
        subscription = Subscription(id=subscription_id, organization_id=organization.id)
        db.add(subscription)

    subscription.status = status
    subscription.active = status in ENTITLED_STATUSES
    subscription.cancel_at_period_end = bool(data.get("cancel_at_period_end"))
    subscription.price_id = _price_id(data) or subscription.price_id
    if period_start:
        subscription.period_starts_at = period_start
    if period_end:
        subscription.period_ends_at = period_end
    db.flush()
    return subscription


def handle_checkout_completed(db: Session, session: dict, *, fetch_subscription) -> str | None:
    """
    Subscription checkout: store the subscription, make sure the organization
    holds a license, then sync. One-off payments are ignored.
    """
    if session.get("mode") != "subscription" or not session.get("subscription"):
        logger.info("Checkout session %s is not a subscription; ignored", session.get("id"))
        return None

    organization = resolve_organization(
        db,
        customer_id=session.get("customer"),
        reference=session.get("client_reference_id")
        or (session.get("metadata") or {}).get("organization_id"),
    )
    if organization is None:
        logger.warning("Checkout session %s has no matching organization", session.get("id"))
        return None

    subscription_data = fetch_subscription(session["subscription"])
    subscription = upsert_subscription(db, subscription_data, organization=organization)
    if subscription is None:
        return None
    license_service.ensure_license_for_organization(
        db,
        organization,
        subscription_id=subscription.id,
        expires_at=subscription.period_ends_at,
    )
    db.commit()
    subscription_sync_service.sync_license_from_subscription(db, subscription.id)
    return subscription.id


def handle_subscription_changed(db: Session, data: dict) -> str | None:
    subscription = upsert_subscription(db, data)
    if subscription is None:
        return None
    db.commit()
    subscription_sync_service.sync_license_from_subscription(db, subscription.id)
    return subscription.id


def set_subscription_state(
    db: Session, subscription_id: str, *, status: SubscriptionStatus
) -> bool:
    """Mark a subscription paused/canceled (inactive) and sync its licenses."""
    subscription = db.get(Subscription, subscription_id)
    if not subscription:
        logger.warning("Subscription %s not found for %s", subscription_id, status.value)
        return False
    subscription.status = status.value
    subscription.active = False
    db.commit()
    subscription_sync_service.sync_license_from_subscription(db, subscription_id)
    return True


def handle_invoice_paid(db: Session, invoice: dict) -> str | None:
    """Advance the paid-through date and let the sync carry it to the license."""
    subscription_id = invoice.get("subscription")
    if not subscription_id:
        parent = (invoice.get("parent") or {}).get("subscription_details") or {}
        subscription_id = parent.get("subscription")
    if not subscription_id:
        return None

    subscription = db.get(Subscription, subscription_id)
    if not subscription:
        logger.warning("Invoice paid for unknown subscription %s", subscription_id)
        return None

    period_end = _invoice_period_end(invoice)
    if period_end and (subscription.period_ends_at is None or period_end > subscription.period_ends_at):
        subscription.period_ends_at = period_end
    db.commit()
    subscription_sync_service.sync_license_from_subscription(db, subscription_id)
    return subscription_id


def _invoice_period_end(invoice: dict) -> datetime | None:
    lines = (invoice.get("lines") or {}).get("data") or []
    if lines:
        period = lines[0].get("period") or {}
        if period.get("end"):
            return _from_timestamp(period["end"])
    return _from_timestamp(invoice.get("period_end"))
