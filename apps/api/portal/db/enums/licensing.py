"""License and subscription enums."""

from enum import Enum


class LicenseActionType(str, Enum):
    """Audit action recorded for a license domain."""

    ACTIVATE = "ACTIVATE"
    DEACTIVATE = "DEACTIVATE"
    AUTO_DEACTIVATE = "AUTO_DEACTIVATE"


class LicenseOutcome(str, Enum):
    """Result status reported to the plugin and the portal."""

    ACTIVE = "active"
    INVALID = "invalid"
    CANCELED = "canceled"
    EXPIRED = "expired"
    INACTIVE = "inactive"
    PAUSED = "paused"
    LIMIT_REACHED = "limit_reached"
    NOT_ACTIVATED = "not_activated"


class SubscriptionStatus(str, Enum):
    """Billing subscription status (mirrors Stripe's values)."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    PAUSED = "paused"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"


class PlanType(str, Enum):
    """Fee tier applied by the payment proxy."""

    PRO = "pro"
    FREE = "free"


class AutoDeactivateReason(str, Enum):
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    SUBSCRIPTION_PAUSED = "subscription_paused"
