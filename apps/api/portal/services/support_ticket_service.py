"""Support tickets: creation, replies, staff actions and read views.

Every mutation commits the ticket change before any notification is sent.
Email failures are logged and swallowed; they never undo a ticket change.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from portal.core.config import settings
from portal.db.enums import TICKET_CLOSED_STATUSES, SupportTicketPriority, SupportTicketStatus
from portal.db.models import (
    Counter,
    SupportTicket,
    SupportTicketMessage,
    SupportTicketMessageAttachment,
    User,
)
from portal.services import email_service

logger = logging.getLogger(__name__)

TICKET_COUNTER = "support_ticket_number"

SUBJECT_MIN_LENGTH = 5
SUBJECT_MAX_LENGTH = 255
MESSAGE_MIN_LENGTH = 10
REPLY_MIN_LENGTH = 1
MESSAGE_MAX_LENGTH = 5000


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Result types
# =============================================================================

@dataclass(frozen=True)
class TicketReplyResult:
    """Reply outcome; replies to closed tickets fail without raising."""

    success: bool
    ticket: SupportTicket | None = None
    message: SupportTicketMessage | None = None
    error: str | None = None


# =============================================================================
# Message ids
# =============================================================================

def initial_message_id(ticket_id: UUID) -> str:
    return f"ticket-{ticket_id}-msg-initial@{settings.EMAIL_DOMAIN}"


def reply_message_id(ticket_id: UUID) -> str:
    return (
        f"ticket-{ticket_id}-msg-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"
        f"@{settings.EMAIL_DOMAIN}"
    )


def first_message_id(db: Session, ticket_id: UUID) -> str | None:
    first = (
        db.query(SupportTicketMessage)
        .filter(SupportTicketMessage.ticket_id == ticket_id)
        .order_by(SupportTicketMessage.created_at.asc())
        .first()
    )
    return first.message_id if first else None


# =============================================================================
# Helpers
# =============================================================================

def _lock_counter(db: Session) -> Counter | None:
    return (
        db.query(Counter)
        .filter(Counter.name == TICKET_COUNTER)
        .with_for_update()
        .first()
    )


def generate_ticket_number(db: Session) -> int:
    """
    Next sequential ticket number; the counter row is locked until commit.

    Must run before anything else is added to the transaction: losing the
    race to create the counter row rolls the session back.
    """
    counter = _lock_counter(db)
    if counter is None:
        db.add(Counter(name=TICKET_COUNTER, current_value=0))
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.info("Ticket counter created concurrently")
        counter = _lock_counter(db)
    counter.current_value = (counter.current_value or 0) + 1
    db.flush()
    return counter.current_value


def _validate_length(value: str, *, field: str, minimum: int, maximum: int) -> str:
    text = (value or "").strip()
    if len(text) < minimum:
        raise HTTPException(
            status_code=422, detail=f"{field} must be at least {minimum} characters"
        )
    if len(text) > maximum:
        raise HTTPException(
            status_code=422, detail=f"{field} must be at most {maximum} characters"
        )
    return text


def _get_owned_ticket(db: Session, *, ticket_id: UUID, user_id: UUID) -> SupportTicket:
    ticket = (
        db.query(SupportTicket)
        .filter(SupportTicket.id == ticket_id, SupportTicket.user_id == user_id)
        .first()
    )
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return ticket


def _get_ticket(db: Session, ticket_id: UUID) -> SupportTicket:
    ticket = db.get(SupportTicket, ticket_id)
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return ticket


# =============================================================================
# Customer actions
# =============================================================================

def create_ticket(
    db: Session,
    *,
    user: User,
    organization_id: UUID,
    subject: str,
    message: str,
    priority: SupportTicketPriority = SupportTicketPriority.NORMAL,
) -> SupportTicket:
    """Create a ticket and its first message in one transaction, then notify support."""
    subject = _validate_length(
        subject, field="Subject", minimum=SUBJECT_MIN_LENGTH, maximum=SUBJECT_MAX_LENGTH
    )
    message = _validate_length(
        message, field="Message", minimum=MESSAGE_MIN_LENGTH, maximum=MESSAGE_MAX_LENGTH
    )

    ticket = SupportTicket(
        ticket_number=generate_ticket_number(db),
        organization_id=organization_id,
        user_id=user.id,
        subject=subject,
        priority=priority,
        status=SupportTicketStatus.OPEN,
    )
    db.add(ticket)
    db.flush()

    first = SupportTicketMessage(
        ticket_id=ticket.id,
        user_id=user.id,
        is_staff=False,
        message=message,
        message_id=initial_message_id(ticket.id),
        created_at=_now_utc(),
    )
    db.add(first)
    db.commit()
    db.refresh(ticket)

    logger.info("Created support ticket #%d for org=%s", ticket.ticket_number, organization_id)

    try:
        email_service.send_ticket_created_email(
            ticket_number=ticket.ticket_number,
            ticket_id=ticket.id,
            subject=ticket.subject,
            message=message,
            priority=priority.value,
            customer_name=user.name or "Customer",
            customer_email=user.email,
            message_id=first.message_id,
        )
    except Exception:
        logger.exception("Failed to send new-ticket notification for #%d", ticket.ticket_number)

    return ticket


def reply_to_ticket(
    db: Session,
    *,
    user: User,
    ticket_id: UUID,
    message: str,
) -> TicketReplyResult:
    """
    Customer reply. Only the ticket's owner may reply (404 otherwise);
    closed or resolved tickets return a failed result.
    """
    message = _validate_length(
        message, field="Message", minimum=REPLY_MIN_LENGTH, maximum=MESSAGE_MAX_LENGTH
    )
    ticket = _get_owned_ticket(db, ticket_id=ticket_id, user_id=user.id)

    if ticket.status in TICKET_CLOSED_STATUSES:
        return TicketReplyResult(
            success=False,
            ticket=ticket,
            error="Cannot reply to a closed or resolved ticket",
        )

    anchor = first_message_id(db, ticket.id)
    reply = SupportTicketMessage(
        ticket_id=ticket.id,
        user_id=user.id,
        is_staff=False,
        message=message,
        message_id=reply_message_id(ticket.id),
        created_at=_now_utc(),
    )
    db.add(reply)
    ticket.status = SupportTicketStatus.IN_PROGRESS
    ticket.updated_at = _now_utc()
    db.commit()

    try:
        email_service.send_ticket_user_reply_email(
            ticket_number=ticket.ticket_number,
            ticket_id=ticket.id,
            subject=ticket.subject,
            message=message,
            customer_name=user.name or "Customer",
            customer_email=user.email,
            message_id=reply.message_id,
            in_reply_to=anchor,
        )
    except Exception:
        logger.exception("Failed to send reply notification for ticket #%d", ticket.ticket_number)

    return TicketReplyResult(success=True, ticket=ticket, message=reply)


# =============================================================================
# Staff actions
# =============================================================================

def staff_reply(db: Session, *, ticket_id: UUID, message: str) -> TicketReplyResult:
    """Reply as support; the customer is now expected to respond."""
    message = _validate_length(
        message, field="Message", minimum=REPLY_MIN_LENGTH, maximum=MESSAGE_MAX_LENGTH
    )
    ticket = _get_ticket(db, ticket_id)
    if ticket.status in TICKET_CLOSED_STATUSES:
        return TicketReplyResult(
            success=False,
            ticket=ticket,
            error="Cannot reply to a closed or resolved ticket",
        )

    anchor = first_message_id(db, ticket.id)
    reply = SupportTicketMessage(
        ticket_id=ticket.id,
        user_id=None,
        is_staff=True,
        message=message,
        message_id=reply_message_id(ticket.id),
        created_at=_now_utc(),
    )
    db.add(reply)
    ticket.status = SupportTicketStatus.WAITING_CUSTOMER
    ticket.updated_at = _now_utc()
    db.commit()

    if ticket.user and ticket.user.email:
        try:
            email_service.send_ticket_staff_reply_email(
                recipient=ticket.user.email,
                ticket_number=ticket.ticket_number,
                ticket_id=ticket.id,
                subject=ticket.subject,
                message=message,
                message_id=reply.message_id,
                in_reply_to=anchor,
            )
        except Exception:
            logger.exception("Failed to notify customer for ticket #%d", ticket.ticket_number)

    return TicketReplyResult(success=True, ticket=ticket, message=reply)


def update_ticket_status(
    db: Session, *, ticket_id: UUID, status: SupportTicketStatus
) -> SupportTicket:
    ticket = _get_ticket(db, ticket_id)
    ticket.status = status
    ticket.updated_at = _now_utc()
    db.commit()
    db.refresh(ticket)
    logger.info("Ticket #%d status -> %s", ticket.ticket_number, status.value)
    return ticket


# =============================================================================
# Read views
# =============================================================================

def list_user_tickets(db: Session, *, user_id: UUID) -> list[SupportTicket]:
    return (
        db.query(SupportTicket)
        .filter(SupportTicket.user_id == user_id)
        .order_by(SupportTicket.updated_at.desc())
        .all()
    )


def list_all_tickets(
    db: Session, *, status: SupportTicketStatus | None = None, limit: int = 100
) -> list[SupportTicket]:
    query = db.query(SupportTicket)
    if status is not None:
        query = query.filter(SupportTicket.status == status)
    return query.order_by(SupportTicket.updated_at.desc()).limit(limit).all()


def get_ticket_details(
    db: Session, *, ticket_id: UUID, user_id: UUID | None = None
) -> SupportTicket:
    """
    Ticket with messages and attachment metadata.

    ``user_id`` restricts the lookup to the owner; support admins pass None.
    """
    query = (
        db.query(SupportTicket)
        .options(
            selectinload(SupportTicket.messages).selectinload(SupportTicketMessage.attachments)
        )
        .filter(SupportTicket.id == ticket_id)
    )
    if user_id is not None:
        query = query.filter(SupportTicket.user_id == user_id)
    ticket = query.first()
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return ticket


def get_attachment(db: Session, attachment_id: UUID) -> SupportTicketMessageAttachment | None:
    return db.get(SupportTicketMessageAttachment, attachment_id)


def attachment_url(attachment: SupportTicketMessageAttachment) -> str:
    return f"/api/ticket-attachments/{attachment.id}?v={attachment.hash}"
