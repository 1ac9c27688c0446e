"""Postmark inbound email → support ticket messages.

Matching order:
1. Our own outbound mail (Message-ID on EMAIL_DOMAIN) and system senders are
   ignored, so notifications never loop back into tickets.
2. In-Reply-To against a stored message id.
3. ``[Ticket #N]`` in the subject.

Anything unmatched is acknowledged and dropped. Postmark retries on non-2xx,
so only an empty reply body is reported as an error.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.structured_logging import mask_email
from portal.db.enums import SupportTicketStatus
from portal.db.models import (
    SupportTicket,
    SupportTicketMessage,
    SupportTicketMessageAttachment,
)
from portal.services import email_service, support_ticket_service
from portal.utils.email_parsing import extract_reply_text, extract_ticket_number, find_header

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})

_ANGLE_ADDRESS = re.compile(r"<([^>]+)>")


@dataclass(frozen=True)
class InboundResult:
    status_code: int = 200
    body: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ignored(cls, reason: str) -> "InboundResult":
        return cls(body={"success": True, "ignored": True, "reason": reason})


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def parse_from_address(value: str | None) -> str:
    """``"Jane <Jane@Example.com>"`` → ``jane@example.com``."""
    sender = (value or "").lower()
    match = _ANGLE_ADDRESS.search(sender)
    return (match.group(1) if match else sender).strip()


def strip_angle_brackets(value: str | None) -> str | None:
    if not value:
        return None
    return value.strip().strip("<>").strip() or None


def is_own_outbound(headers: list[dict] | None) -> bool:
    message_id = find_header(headers, "Message-ID")
    return bool(message_id) and f"@{settings.EMAIL_DOMAIN}" in message_id


def is_system_sender(from_address: str) -> bool:
    if "noreply@" in from_address or "no-reply@" in from_address:
        return True
    return from_address.endswith(f"@{settings.EMAIL_DOMAIN}") and not from_address.startswith(
        "support@"
    )


def is_staff_sender(from_address: str) -> bool:
    inbound = (settings.SUPPORT_EMAIL_INBOUND or "").lower()
    if inbound and inbound in from_address:
        return True
    return from_address == (settings.SUPPORT_EMAIL or "").lower()


def match_ticket(
    db: Session, *, in_reply_to: str | None, ticket_number: int | None
) -> SupportTicket | None:
    """In-Reply-To wins over the subject's ticket number."""
    reference = strip_angle_brackets(in_reply_to)
    if reference:
        message = (
            db.query(SupportTicketMessage)
            .filter(SupportTicketMessage.message_id == reference)
            .first()
        )
        if message:
            logger.info("Inbound email matched ticket via In-Reply-To")
            return message.ticket

    if ticket_number is not None:
        ticket = (
            db.query(SupportTicket)
            .filter(SupportTicket.ticket_number == ticket_number)
            .first()
        )
        if ticket:
            logger.info("Inbound email matched ticket #%d via subject", ticket_number)
            return ticket
    return None


def select_attachments(attachments: list[dict] | None) -> list[dict]:
    """Allow-listed images within the per-file and total caps; others are dropped."""
    selected: list[dict] = []
    total = 0
    for attachment in attachments or []:
        content_type = str(attachment.get("ContentType") or "").lower()
        if content_type not in ALLOWED_IMAGE_TYPES:
            continue
        size = int(attachment.get("ContentLength") or 0)
        if size > settings.MAX_ATTACHMENT_BYTES:
            logger.info("Skipping oversized attachment %s (%d bytes)", attachment.get("Name"), size)
            continue
        if total + size > settings.MAX_TOTAL_ATTACHMENT_BYTES:
            logger.info("Skipping attachment %s: total size limit", attachment.get("Name"))
            continue
        total += size
        selected.append(attachment)
    return selected


def _store_attachments(db: Session, message: SupportTicketMessage, attachments: list[dict]) -> int:
    stored = 0
    for attachment in attachments:
        try:
            data = base64.b64decode(attachment.get("Content") or "", validate=True)
            content_id = attachment.get("ContentID") or None
            if content_id:
                content_id = re.sub(r"^<|>$", "", content_id)
            db.add(
                SupportTicketMessageAttachment(
                    message_id=message.id,
                    filename=attachment.get("Name") or "attachment",
                    content_type=attachment["ContentType"],
                    content_id=content_id,
                    size=int(attachment.get("ContentLength") or len(data)),
                    hash=hashlib.sha256(data).hexdigest(),
                    data=data,
                )
            )
            stored += 1
        except (binascii.Error, ValueError, KeyError) as e:
            logger.warning("Failed to store attachment %s: %s", attachment.get("Name"), e)
    return stored


def process_inbound_email(db: Session, payload: dict[str, Any]) -> InboundResult:
    headers = payload.get("Headers") or []

    if is_own_outbound(headers):
        logger.info("Ignoring outbound notification email (Message-ID on own domain)")
        return InboundResult.ignored("Outbound notification email")

    from_address = parse_from_address(payload.get("From"))
    if is_system_sender(from_address):
        logger.info("Ignoring system notification email from %s", mask_email(from_address))
        return InboundResult.ignored("System notification email")

    ticket = match_ticket(
        db,
        in_reply_to=find_header(headers, "In-Reply-To"),
        ticket_number=extract_ticket_number(payload.get("Subject")),
    )
    if not ticket:
        logger.info("Inbound email from %s matched no ticket", mask_email(from_address))
        return InboundResult.ignored("No matching ticket found")

    text = extract_reply_text(payload.get("TextBody"), payload.get("StrippedTextReply"))
    if not text:
        logger.warning("Inbound email for ticket #%d was empty after stripping", ticket.ticket_number)
        return InboundResult(status_code=400, body={"error": "Empty message"})

    inbound_id = f"{payload.get('MessageID')}@postmark"
    if (
        db.query(SupportTicketMessage.id)
        .filter(SupportTicketMessage.message_id == inbound_id)
        .first()
    ):
        # Postmark redelivery of a message we already stored
        return InboundResult.ignored("Duplicate message")

    is_staff = is_staff_sender(from_address)
    anchor = support_ticket_service.first_message_id(db, ticket.id)

    message = SupportTicketMessage(
        ticket_id=ticket.id,
        user_id=None if is_staff else ticket.user_id,
        is_staff=is_staff,
        message=text,
        message_id=inbound_id,
        created_at=_now_utc(),
    )
    db.add(message)
    db.flush()

    stored = _store_attachments(db, message, select_attachments(payload.get("Attachments")))

    ticket.status = SupportTicketStatus.WAITING_CUSTOMER if is_staff else SupportTicketStatus.IN_PROGRESS
    ticket.updated_at = _now_utc()
    db.commit()

    logger.info(
        "Inbound %s message on ticket #%d (%d attachment(s)), status=%s",
        "staff" if is_staff else "customer",
        ticket.ticket_number,
        stored,
        ticket.status.value,
    )

    _notify(ticket, text=text, is_staff=is_staff, message_id=message.message_id, anchor=anchor)
    return InboundResult(body={"success": True, "message_id": str(message.id)})


def _notify(
    ticket: SupportTicket, *, text: str, is_staff: bool, message_id: str, anchor: str | None
) -> None:
    user = ticket.user
    try:
        if is_staff:
            if user and user.email:
                email_service.send_ticket_staff_reply_email(
                    recipient=user.email,
                    ticket_number=ticket.ticket_number,
                    ticket_id=ticket.id,
                    subject=ticket.subject,
                    message=text,
                    message_id=message_id,
                    in_reply_to=anchor,
                )
        else:
            email_service.send_ticket_user_reply_email(
                ticket_number=ticket.ticket_number,
                ticket_id=ticket.id,
                subject=ticket.subject,
                message=text,
                customer_name=(user.name if user else None) or "Customer",
                customer_email=(user.email if user else None) or "unknown",
                message_id=message_id,
                in_reply_to=anchor,
            )
    except Exception:
        logger.exception("Failed to send inbound notification for ticket #%d", ticket.ticket_number)
