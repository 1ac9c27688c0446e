"""License, activation and subscription ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portal.db.base import Base
from portal.db.enums import LicenseActionType
from portal.db.models._types import JSONType, enum_type

if TYPE_CHECKING:
    from portal.db.models.auth import Organization


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Subscription(Base):
    """Billing subscription mirrored from Stripe (id is the Stripe id)."""

    __tablename__ = "subscriptions"
    __table_args__ = (Index("ix_subscriptions_org", "organization_id"),)

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    price_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    period_starts_at: Mapped[datetime | None] = mapped_column(nullable=True)
    period_ends_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow, nullable=False)

    organization: Mapped["Organization"] = relationship(back_populates="subscriptions")


class License(Base):
    """
    A license key entitling an organization to activate the plugin on up to
    ``max_domains`` domains.

    Invariant: live activation rows never exceed max_domains. activation_count
    is a lifetime counter (never decremented).
    """

    __tablename__ = "licenses"
    __table_args__ = (
        Index("ix_licenses_org", "organization_id"),
        Index("ix_licenses_subscription", "subscription_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    license_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    subscription_id: Mapped[str | None] = mapped_column(
        String(255), ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True
    )
    max_domains: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    activation_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow, nullable=False)

    organization: Mapped["Organization"] = relationship(back_populates="licenses")
    subscription: Mapped["Subscription | None"] = relationship()
    activations: Mapped[list["LicenseDomainActivation"]] = relationship(
        back_populates="license",
        order_by="LicenseDomainActivation.activated_at",
        cascade="all, delete-orphan",
    )


class LicenseDomainActivation(Base):
    """One live activation of a license on a normalized domain."""

    __tablename__ = "license_domain_activations"
    __table_args__ = (
        UniqueConstraint("license_id", "domain", name="uq_license_domain"),
        Index("ix_license_domain_activations_domain", "domain"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    license_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("licenses.id", ondelete="CASCADE"), nullable=False
    )
    domain: Mapped[str] = mapped_column(String(255), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    activated_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)

    license: Mapped["License"] = relationship(back_populates="activations")


class LicenseActivity(Base):
    """Append-only audit trail of activations and deactivations."""

    __tablename__ = "license_activities"
    __table_args__ = (Index("ix_license_activities_license_time", "license_id", "occurred_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    license_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("licenses.id", ondelete="CASCADE"), nullable=False
    )
    action_type: Mapped[LicenseActionType] = mapped_column(
        enum_type(LicenseActionType, name="license_action_type"), nullable=False
    )
    domain: Mapped[str] = mapped_column(String(255), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    activity_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONType, nullable=True
    )
    occurred_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
