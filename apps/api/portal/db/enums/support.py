"""Support desk enums."""

from enum import Enum


class SupportTicketStatus(str, Enum):
    """Support ticket lifecycle status."""

    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    WAITING_CUSTOMER = "WAITING_CUSTOMER"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class SupportTicketPriority(str, Enum):
    """Support ticket priority level."""

    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


# Statuses that no longer accept customer replies
TICKET_CLOSED_STATUSES = frozenset(
    {SupportTicketStatus.CLOSED, SupportTicketStatus.RESOLVED}
)
