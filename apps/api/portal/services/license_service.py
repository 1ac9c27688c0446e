"""License store and activation workflow.

A license may be live on at most ``max_domains`` domains at once. Every
activation change is written together with its LicenseActivity row in one
transaction, and the quota check for a license runs under a row lock on the
license so two concurrent activations cannot both take the last slot.

Domains are always passed through normalize_domain before they are compared
or stored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.security import generate_license_key, mask_secret
from portal.db.enums import LicenseActionType, LicenseOutcome, SubscriptionStatus
from portal.db.models import (
    License,
    LicenseActivity,
    LicenseDomainActivation,
    Organization,
    Subscription,
)
from portal.utils.normalization import normalize_domain

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# =============================================================================
# Result types
# =============================================================================

@dataclass(frozen=True)
class LicenseActionResult:
    """Outcome of activate/deactivate/check, shaped for the plugin API."""

    success: bool
    status: LicenseOutcome
    expires_at: datetime | None = None
    activated_domains: list[str] | None = None
    max_domains: int | None = None
    message: str | None = None
    newly_activated: bool = False

    def to_plugin_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": self.success,
            "status": self.status.value,
            "expires_at": _iso(self.expires_at),
        }
        if self.message is not None:
            body["message"] = self.message
        if self.activated_domains is not None:
            body["activated_domains"] = self.activated_domains
        if self.max_domains is not None:
            body["max_domains"] = self.max_domains
        return body


@dataclass(frozen=True)
class DeactivationResult:
    removed_domains: list[str]
    remaining_domains: list[str]
    license_found: bool

    def to_plugin_response(self) -> dict[str, Any]:
        return {"success": True, "status": LicenseOutcome.INACTIVE.value, "expires_at": None}


@dataclass(frozen=True)
class LicenseStatusView:
    """Portal license status card."""

    status: LicenseOutcome
    message: str
    expires_at: datetime | None
    renewal_date: datetime | None
    subscription_status: str | None
    activated_domains: list[str]
    max_domains: int
    can_activate: bool

    @property
    def valid(self) -> bool:
        return self.status == LicenseOutcome.ACTIVE

    @property
    def slots_remaining(self) -> int:
        return max(0, self.max_domains - len(self.activated_domains))


@dataclass(frozen=True)
class LicenseHistory:
    license_key: str
    max_domains: int
    current_domains: list[str]
    activities: list[LicenseActivity] = field(default_factory=list)


# =============================================================================
# Store
# =============================================================================

def get_license_by_key(db: Session, license_key: str | None, *, for_update: bool = False) -> License | None:
    if not license_key:
        return None
    query = db.query(License).filter(License.license_key == license_key)
    if for_update:
        query = query.with_for_update()
    return query.first()


def get_organization_license(db: Session, organization_id: UUID) -> License | None:
    """The organization's current license (newest non-deleted first)."""
    return (
        db.query(License)
        .filter(License.organization_id == organization_id)
        .order_by(License.deleted_at.is_not(None), License.created_at.desc())
        .first()
    )


def list_organization_licenses(db: Session, organization_id: UUID) -> list[License]:
    return (
        db.query(License)
        .filter(License.organization_id == organization_id)
        .order_by(License.created_at.desc())
        .all()
    )


def get_activations(db: Session, license_id: UUID) -> list[LicenseDomainActivation]:
    """Live activations read straight from the table (never a cached relationship)."""
    return (
        db.query(LicenseDomainActivation)
        .filter(LicenseDomainActivation.license_id == license_id)
        .order_by(LicenseDomainActivation.activated_at)
        .all()
    )


def count_live_activations(db: Session, license_id: UUID) -> int:
    return (
        db.query(func.count(LicenseDomainActivation.id))
        .filter(LicenseDomainActivation.license_id == license_id)
        .scalar()
        or 0
    )


def find_activation(
    activations: list[LicenseDomainActivation], domain: str
) -> LicenseDomainActivation | None:
    normalized = normalize_domain(domain)
    for activation in activations:
        if normalize_domain(activation.domain) == normalized:
            return activation
    return None


def create_license_activity(
    db: Session,
    *,
    license_id: UUID,
    action_type: LicenseActionType,
    domain: str,
    ip_address: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> LicenseActivity:
    """Append one audit row. Caller owns the transaction."""
    activity = LicenseActivity(
        license_id=license_id,
        action_type=action_type,
        domain=domain,
        ip_address=ip_address,
        activity_metadata=metadata,
        occurred_at=_now_utc(),
    )
    db.add(activity)
    return activity


def create_license(
    db: Session,
    *,
    organization_id: UUID,
    max_domains: int | None = None,
    expires_at: datetime | None = None,
    subscription_id: str | None = None,
    active: bool = True,
    license_key: str | None = None,
) -> License:
    license = License(
        license_key=license_key or generate_license_key(),
        organization_id=organization_id,
        subscription_id=subscription_id,
        max_domains=max_domains if max_domains is not None else settings.LICENSE_DEFAULT_MAX_DOMAINS,
        activation_count=0,
        active=active,
        expires_at=expires_at,
    )
    db.add(license)
    db.flush()
    return license


def ensure_license_for_organization(
    db: Session,
    organization: Organization,
    *,
    subscription_id: str | None = None,
    expires_at: datetime | None = None,
) -> License:
    """Return the organization's live license, issuing one on first checkout."""
    existing = (
        db.query(License)
        .filter(License.organization_id == organization.id, License.deleted_at.is_(None))
        .order_by(License.created_at.desc())
        .first()
    )
    if existing:
        return existing
    license = create_license(
        db,
        organization_id=organization.id,
        subscription_id=subscription_id,
        expires_at=expires_at,
    )
    logger.info("Issued license for org=%s", organization.id)
    return license


def _is_expired(license: License, now: datetime) -> bool:
    return license.expires_at is not None and license.expires_at < now


def _is_usable(license: License, now: datetime) -> bool:
    return license.active and license.deleted_at is None and not _is_expired(license, now)


# =============================================================================
# Activation workflow
# =============================================================================

def activate_license(
    db: Session,
    *,
    license_key: str,
    domain: str,
    ip_address: str | None = None,
    source: str = "plugin_activation",
) -> LicenseActionResult:
    """
    Activate ``license_key`` on ``domain``.

    Already-activated domains succeed without a new row. The license row is
    locked for the quota check and live activations are counted in SQL, so
    a concurrent activation that committed first is always seen.
    """
    normalized = normalize_domain(domain)
    if not normalized:
        return LicenseActionResult(
            success=False, status=LicenseOutcome.INVALID, message="Invalid domain"
        )
    now = _now_utc()

    license = get_license_by_key(db, license_key, for_update=True)
    if not license:
        return LicenseActionResult(
            success=False, status=LicenseOutcome.INVALID, message="Invalid license key"
        )

    if license.deleted_at is not None:
        db.rollback()
        return LicenseActionResult(
            success=False, status=LicenseOutcome.CANCELED, message="License has been canceled"
        )
    if _is_expired(license, now):
        db.rollback()
        return LicenseActionResult(
            success=False,
            status=LicenseOutcome.EXPIRED,
            expires_at=license.expires_at,
            message="License has expired",
        )
    if not license.active:
        db.rollback()
        return LicenseActionResult(
            success=False,
            status=LicenseOutcome.INACTIVE,
            expires_at=license.expires_at,
            message="License is not active",
        )

    activations = get_activations(db, license.id)
    domains = [a.domain for a in activations]

    if find_activation(activations, normalized):
        db.rollback()
        return LicenseActionResult(
            success=True,
            status=LicenseOutcome.ACTIVE,
            expires_at=license.expires_at,
            activated_domains=domains,
            max_domains=license.max_domains,
        )

    if count_live_activations(db, license.id) >= license.max_domains:
        db.rollback()
        return LicenseActionResult(
            success=False,
            status=LicenseOutcome.LIMIT_REACHED,
            expires_at=license.expires_at,
            activated_domains=domains,
            max_domains=license.max_domains,
            message=(
                f"License activation limit reached ({license.max_domains} domains). "
                f"Currently activated on: {', '.join(domains)}"
            ),
        )

    db.add(
        LicenseDomainActivation(
            license_id=license.id,
            domain=normalized,
            ip_address=ip_address,
            activated_at=now,
        )
    )
    try:
        db.flush()
    except IntegrityError:
        # Same domain inserted concurrently; the other request owns the row.
        db.rollback()
        logger.info("Concurrent activation for license=%s domain=%s", mask_secret(license_key), normalized)
        refreshed = get_license_by_key(db, license_key)
        return LicenseActionResult(
            success=True,
            status=LicenseOutcome.ACTIVE,
            expires_at=refreshed.expires_at if refreshed else None,
            activated_domains=[a.domain for a in get_activations(db, license.id)],
            max_domains=refreshed.max_domains if refreshed else None,
        )

    license.activation_count = (license.activation_count or 0) + 1
    create_license_activity(
        db,
        license_id=license.id,
        action_type=LicenseActionType.ACTIVATE,
        domain=normalized,
        ip_address=ip_address,
        metadata={"source": source},
    )
    db.commit()

    logger.info(
        "Activated license=%s on domain=%s (source=%s)",
        mask_secret(license_key),
        normalized,
        source,
    )
    return LicenseActionResult(
        success=True,
        status=LicenseOutcome.ACTIVE,
        expires_at=license.expires_at,
        activated_domains=[a.domain for a in get_activations(db, license.id)],
        max_domains=license.max_domains,
        newly_activated=True,
    )


def deactivate_license(
    db: Session,
    *,
    license_key: str | None,
    domain: str | None = None,
    ip_address: str | None = None,
    source: str = "plugin_deactivation",
) -> DeactivationResult:
    """
    Remove one activation (``domain`` given) or all of them.

    Never fails: unknown licenses and non-activated domains return an empty
    result so callers cannot probe for valid keys.
    """
    license = get_license_by_key(db, license_key, for_update=True)
    if not license:
        return DeactivationResult(removed_domains=[], remaining_domains=[], license_found=False)

    activations = get_activations(db, license.id)
    if domain is not None:
        match = find_activation(activations, domain)
        targets = [match] if match else []
    else:
        targets = list(activations)

    if not targets:
        db.rollback()
        return DeactivationResult(
            removed_domains=[],
            remaining_domains=[a.domain for a in activations],
            license_found=True,
        )

    removed: list[str] = []
    for activation in targets:
        removed.append(activation.domain)
        create_license_activity(
            db,
            license_id=license.id,
            action_type=LicenseActionType.DEACTIVATE,
            domain=activation.domain,
            ip_address=ip_address,
            metadata={"source": source},
        )
        db.delete(activation)
    db.commit()

    remaining = [a.domain for a in get_activations(db, license.id)]
    logger.info(
        "Deactivated license=%s on %d domain(s) (source=%s)",
        mask_secret(license_key),
        len(removed),
        source,
    )
    return DeactivationResult(removed_domains=removed, remaining_domains=remaining, license_found=True)


def check_license(db: Session, *, license_key: str | None, domain: str) -> LicenseActionResult:
    """Read-only status of ``license_key`` for ``domain``."""
    license = get_license_by_key(db, license_key)
    if not license:
        return LicenseActionResult(success=True, status=LicenseOutcome.INACTIVE)

    now = _now_utc()
    activations = get_activations(db, license.id)
    if _is_usable(license, now):
        status = (
            LicenseOutcome.ACTIVE
            if find_activation(activations, domain)
            else LicenseOutcome.NOT_ACTIVATED
        )
    elif _is_expired(license, now):
        status = LicenseOutcome.EXPIRED
    else:
        status = LicenseOutcome.INACTIVE

    return LicenseActionResult(
        success=True,
        status=status,
        expires_at=license.expires_at,
        activated_domains=[a.domain for a in activations],
        max_domains=license.max_domains,
    )


def has_active_license_for_domain(db: Session, domain: str) -> bool:
    """True when ``domain`` is activated on a usable license (fee waiver check)."""
    normalized = normalize_domain(domain)
    if not normalized:
        return False
    now = _now_utc()
    rows = (
        db.query(License)
        .join(LicenseDomainActivation, LicenseDomainActivation.license_id == License.id)
        .filter(
            LicenseDomainActivation.domain == normalized,
            License.active.is_(True),
            License.deleted_at.is_(None),
        )
        .all()
    )
    return any(not _is_expired(license, now) for license in rows)


# =============================================================================
# Portal views
# =============================================================================

def get_license_status(db: Session, license: License) -> LicenseStatusView:
    """
    Status card for the portal.

    Precedence: canceled (deleted) > expired > paused > canceled (no active
    subscription) > active. Licenses issued without a subscription skip the
    subscription check.
    """
    now = _now_utc()
    domains = [a.domain for a in get_activations(db, license.id)]
    subscription = license.subscription
    subscription_status = subscription.status if subscription else None

    has_active_subscription = (
        db.query(Subscription.id)
        .filter(
            Subscription.organization_id == license.organization_id,
            Subscription.active.is_(True),
        )
        .first()
        is not None
    )
    requires_subscription = license.subscription_id is not None

    can_activate = False
    if license.deleted_at is not None:
        status, message = LicenseOutcome.CANCELED, "License has been canceled"
    elif _is_expired(license, now):
        status, message = LicenseOutcome.EXPIRED, "License has expired"
    elif subscription_status == SubscriptionStatus.PAUSED.value:
        status, message = LicenseOutcome.PAUSED, "Subscription is paused"
    elif requires_subscription and not has_active_subscription:
        status, message = LicenseOutcome.CANCELED, "No active subscription"
    else:
        status, message = LicenseOutcome.ACTIVE, "License is valid and active"
        can_activate = len(domains) < license.max_domains

    return LicenseStatusView(
        status=status,
        message=message,
        expires_at=license.expires_at,
        renewal_date=subscription.period_ends_at if subscription else None,
        subscription_status=subscription_status,
        activated_domains=domains,
        max_domains=license.max_domains,
        can_activate=can_activate,
    )


def get_license_history(db: Session, license: License) -> LicenseHistory:
    activities = (
        db.query(LicenseActivity)
        .filter(LicenseActivity.license_id == license.id)
        .order_by(LicenseActivity.occurred_at.desc())
        .limit(HISTORY_LIMIT)
        .all()
    )
    return LicenseHistory(
        license_key=license.license_key,
        max_domains=license.max_domains,
        current_domains=[a.domain for a in get_activations(db, license.id)],
        activities=activities,
    )


_VALIDATION_MESSAGES = {
    LicenseOutcome.CANCELED: "License has been deactivated",
    LicenseOutcome.EXPIRED: "License has expired",
    LicenseOutcome.INACTIVE: "License is not active",
}


@dataclass(frozen=True)
class LicenseValidation:
    valid: bool
    message: str
    expires_at: datetime | None = None
    activated_domains: list[str] = field(default_factory=list)
    max_domains: int = 0
    activated_domain: str | None = None


def validate_license(
    db: Session,
    *,
    license_key: str,
    domain: str,
    ip_address: str | None = None,
) -> LicenseValidation | None:
    """
    Portal "validate" action: confirm ``domain`` may use the license, taking a
    free slot on the way (source ``api_validation``).

    Returns None for unknown keys.
    """
    result = activate_license(
        db,
        license_key=license_key,
        domain=domain,
        ip_address=ip_address,
        source="api_validation",
    )
    if result.status == LicenseOutcome.INVALID:
        return None

    domains = result.activated_domains or []
    if result.status in _VALIDATION_MESSAGES:
        return LicenseValidation(
            valid=False,
            message=_VALIDATION_MESSAGES[result.status],
            expires_at=result.expires_at,
        )
    if result.status == LicenseOutcome.LIMIT_REACHED:
        return LicenseValidation(
            valid=False,
            message=f"License activation limit reached. Currently activated on: {', '.join(domains)}",
            activated_domains=domains,
            max_domains=result.max_domains or 0,
            activated_domain=domains[0] if domains else None,
        )
    return LicenseValidation(
        valid=True,
        message="License activated successfully" if result.newly_activated else "License is valid",
        expires_at=result.expires_at,
        activated_domains=domains,
        max_domains=result.max_domains or 0,
        activated_domain=normalize_domain(domain),
    )
