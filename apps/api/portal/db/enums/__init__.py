"""Enum definitions for application constants."""

from portal.db.enums.auth import Role
from portal.db.enums.licensing import (
    AutoDeactivateReason,
    LicenseActionType,
    LicenseOutcome,
    PlanType,
    SubscriptionStatus,
)
from portal.db.enums.support import (
    TICKET_CLOSED_STATUSES,
    SupportTicketPriority,
    SupportTicketStatus,
)

__all__ = [
    "Role",
    "AutoDeactivateReason",
    "LicenseActionType",
    "LicenseOutcome",
    "PlanType",
    "SubscriptionStatus",
    "TICKET_CLOSED_STATUSES",
    "SupportTicketPriority",
    "SupportTicketStatus",
]
