"""SQLAlchemy ORM models."""

from portal.db.models.auth import (
    AccountActivationToken,
    Membership,
    Organization,
    PasswordResetToken,
    User,
)
from portal.db.models.licensing import (
    License,
    LicenseActivity,
    LicenseDomainActivation,
    Subscription,
)
from portal.db.models.support import (
    Counter,
    SupportTicket,
    SupportTicketMessage,
    SupportTicketMessageAttachment,
)

__all__ = [
    "AccountActivationToken",
    "Membership",
    "Organization",
    "PasswordResetToken",
    "User",
    "License",
    "LicenseActivity",
    "LicenseDomainActivation",
    "Subscription",
    "Counter",
    "SupportTicket",
    "SupportTicketMessage",
    "SupportTicketMessageAttachment",
]
