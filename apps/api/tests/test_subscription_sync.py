"""Tests for subscription-to-license sync."""

from datetime import datetime, timedelta, timezone

from portal.db.enums import LicenseActionType, SubscriptionStatus
from portal.db.models import LicenseActivity, Subscription
from portal.services import license_service
from portal.services.subscription_sync_service import (
    is_paused,
    should_be_active,
    should_be_deleted,
    sync_license_from_subscription,
)

PERIOD_END = datetime(2031, 1, 31, 12, 0, tzinfo=timezone.utc)


def _subscription(db, org, *, status=SubscriptionStatus.ACTIVE, active=True, period_ends_at=PERIOD_END, sub_id="sub_123"):
    subscription = Subscription(
        id=sub_id,
        organization_id=org.id,
        status=status.value,
        active=active,
        period_ends_at=period_ends_at,
    )
    db.add(subscription)
    db.commit()
    return subscription


def _set_state(db, subscription, status, *, active):
    subscription.status = status.value
    subscription.active = active
    db.commit()


def _auto_deactivations(db, license_id):
    return (
        db.query(LicenseActivity)
        .filter(
            LicenseActivity.license_id == license_id,
            LicenseActivity.action_type == LicenseActionType.AUTO_DEACTIVATE,
        )
        .all()
    )


def test_predicates():
    sub = Subscription(id="s", status="active", active=True)
    assert should_be_active(sub) and not should_be_deleted(sub) and not is_paused(sub)

    trialing = Subscription(id="s", status="trialing", active=True)
    assert not should_be_active(trialing)

    canceled = Subscription(id="s", status="canceled", active=False)
    assert should_be_deleted(canceled)

    paused = Subscription(id="s", status="paused", active=False)
    assert is_paused(paused) and not should_be_deleted(paused)


def test_unknown_subscription_is_reported(db):
    result = sync_license_from_subscription(db, "sub_missing")
    assert result.found is False


def test_links_unlinked_licenses_and_follows_period(db, test_org, make_license):
    license = make_license(expires_at=None)
    subscription = _subscription(db, test_org)

    result = sync_license_from_subscription(db, subscription.id)

    assert result.linked == 1
    assert result.updated == 1
    db.refresh(license)
    assert license.subscription_id == "sub_123"
    assert license.expires_at == PERIOD_END
    assert license.active is True
    assert license.deleted_at is None


def test_sync_is_idempotent(db, test_org, make_license):
    license = make_license()
    subscription = _subscription(db, test_org)

    first = sync_license_from_subscription(db, subscription.id)
    db.refresh(license)
    snapshot = (license.subscription_id, license.expires_at, license.active, license.deleted_at)

    second = sync_license_from_subscription(db, subscription.id)
    db.refresh(license)

    assert first.linked == 1
    assert second.linked == 0
    assert (license.subscription_id, license.expires_at, license.active, license.deleted_at) == snapshot


def test_trialing_subscription_leaves_license_inactive(db, test_org, make_license):
    license = make_license()
    subscription = _subscription(db, test_org, status=SubscriptionStatus.TRIALING)

    sync_license_from_subscription(db, subscription.id)

    db.refresh(license)
    assert license.active is False
    assert license.deleted_at is None


def test_pause_removes_activations_once(db, test_org, make_license):
    license = make_license(max_domains=2)
    subscription = _subscription(db, test_org)
    sync_license_from_subscription(db, subscription.id)
    for domain in ("a.example.com", "b.example.com"):
        license_service.activate_license(db, license_key=license.license_key, domain=domain)

    _set_state(db, subscription, SubscriptionStatus.PAUSED, active=False)
    first = sync_license_from_subscription(db, subscription.id)
    second = sync_license_from_subscription(db, subscription.id)

    assert first.auto_deactivated == 2
    assert second.auto_deactivated == 0
    assert license_service.get_activations(db, license.id) == []

    rows = _auto_deactivations(db, license.id)
    assert sorted(r.domain for r in rows) == ["a.example.com", "b.example.com"]
    assert all(r.activity_metadata["reason"] == "subscription_paused" for r in rows)

    db.refresh(license)
    assert license.active is False
    assert license.deleted_at is None


def test_cancel_keeps_first_deletion_timestamp(db, test_org, make_license):
    license = make_license()
    subscription = _subscription(db, test_org)
    sync_license_from_subscription(db, subscription.id)
    license_service.activate_license(db, license_key=license.license_key, domain="a.example.com")

    _set_state(db, subscription, SubscriptionStatus.CANCELED, active=False)
    sync_license_from_subscription(db, subscription.id)
    db.refresh(license)
    first_deleted_at = license.deleted_at
    assert first_deleted_at is not None

    sync_license_from_subscription(db, subscription.id)
    db.refresh(license)
    assert license.deleted_at == first_deleted_at
    assert [r.activity_metadata["reason"] for r in _auto_deactivations(db, license.id)] == [
        "subscription_canceled"
    ]


def test_reactivation_clears_deletion(db, test_org, make_license):
    license = make_license()
    subscription = _subscription(db, test_org)
    sync_license_from_subscription(db, subscription.id)

    _set_state(db, subscription, SubscriptionStatus.CANCELED, active=False)
    sync_license_from_subscription(db, subscription.id)

    _set_state(db, subscription, SubscriptionStatus.ACTIVE, active=True)
    sync_license_from_subscription(db, subscription.id)

    db.refresh(license)
    assert license.deleted_at is None
    assert license.active is True


def test_renewal_moves_expiry(db, test_org, make_license):
    license = make_license()
    subscription = _subscription(db, test_org)
    sync_license_from_subscription(db, subscription.id)

    subscription.period_ends_at = PERIOD_END + timedelta(days=31)
    db.commit()
    sync_license_from_subscription(db, subscription.id)

    db.refresh(license)
    assert license.expires_at == PERIOD_END + timedelta(days=31)


def test_deleted_unlinked_licenses_are_not_adopted(db, test_org, make_license):
    old = make_license(deleted_at=datetime.now(timezone.utc) - timedelta(days=30), active=False)
    subscription = _subscription(db, test_org)

    result = sync_license_from_subscription(db, subscription.id)

    assert result.linked == 0
    db.refresh(old)
    assert old.subscription_id is None
