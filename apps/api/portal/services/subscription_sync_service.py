"""Keep licenses in step with their billing subscription.

sync_license_from_subscription is the only code that writes
License.expires_at from billing data; webhook handlers update the
Subscription row and then call it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import or_
from sqlalchemy.orm import Session

from portal.db.enums import AutoDeactivateReason, LicenseActionType, SubscriptionStatus
from portal.db.models import License, LicenseDomainActivation, Subscription
from portal.services import license_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncResult:
    subscription_id: str
    found: bool
    linked: int = 0
    updated: int = 0
    auto_deactivated: int = 0


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def should_be_active(subscription: Subscription) -> bool:
    return subscription.active and subscription.status == SubscriptionStatus.ACTIVE.value


def should_be_deleted(subscription: Subscription) -> bool:
    return not subscription.active and subscription.status == SubscriptionStatus.CANCELED.value


def is_paused(subscription: Subscription) -> bool:
    return subscription.status == SubscriptionStatus.PAUSED.value


def sync_license_from_subscription(db: Session, subscription_id: str) -> SyncResult:
    """
    Reconcile every license of the subscription's organization with the
    subscription's current state, in one transaction.

    - Unlinked, non-deleted licenses of the organization are linked first.
    - expires_at follows period_ends_at; active follows should_be_active.
    - Canceled subscriptions soft-delete their licenses (the first deletion
      timestamp is kept); any other state clears deleted_at.
    - Paused or canceled: live activations are removed, each logged as
      AUTO_DEACTIVATE. Re-running finds nothing left to remove.
    """
    subscription = db.get(Subscription, subscription_id)
    if not subscription:
        logger.warning("Subscription %s not found for license sync", subscription_id)
        return SyncResult(subscription_id=subscription_id, found=False)

    active = should_be_active(subscription)
    deleted = should_be_deleted(subscription)
    paused = is_paused(subscription)
    reason: AutoDeactivateReason | None = None
    if deleted:
        reason = AutoDeactivateReason.SUBSCRIPTION_CANCELED
    elif paused:
        reason = AutoDeactivateReason.SUBSCRIPTION_PAUSED

    licenses = (
        db.query(License)
        .filter(
            or_(
                License.subscription_id == subscription.id,
                (License.organization_id == subscription.organization_id)
                & License.subscription_id.is_(None)
                & License.deleted_at.is_(None),
            )
        )
        .with_for_update()
        .all()
    )

    now = _now_utc()
    linked = 0
    auto_deactivated = 0
    for license in licenses:
        if license.subscription_id is None:
            license.subscription_id = subscription.id
            linked += 1

        if subscription.period_ends_at is not None:
            license.expires_at = subscription.period_ends_at
        license.active = active
        if deleted:
            if license.deleted_at is None:
                license.deleted_at = now
        else:
            license.deleted_at = None

        if reason is None:
            continue

        activations = (
            db.query(LicenseDomainActivation)
            .filter(LicenseDomainActivation.license_id == license.id)
            .all()
        )
        for activation in activations:
            license_service.create_license_activity(
                db,
                license_id=license.id,
                action_type=LicenseActionType.AUTO_DEACTIVATE,
                domain=activation.domain,
                metadata={"reason": reason.value, "subscription_id": subscription.id},
            )
            db.delete(activation)
            auto_deactivated += 1

    db.commit()

    if linked:
        logger.info("Linked %d unlinked license(s) to subscription %s", linked, subscription_id)
    if auto_deactivated:
        logger.info(
            "AUTO_DEACTIVATE %d domain(s) for subscription %s (%s)",
            auto_deactivated,
            subscription_id,
            reason.value if reason else "",
        )
    logger.info(
        "Synced %d license(s) for subscription %s: status=%s active=%s",
        len(licenses),
        subscription_id,
        subscription.status,
        active,
    )
    return SyncResult(
        subscription_id=subscription_id,
        found=True,
        linked=linked,
        updated=len(licenses),
        auto_deactivated=auto_deactivated,
    )
