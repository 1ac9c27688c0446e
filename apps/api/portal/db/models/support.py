"""Support desk ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from portal.db.base import Base
from portal.db.enums import SupportTicketPriority, SupportTicketStatus
from portal.db.models._types import enum_type

if TYPE_CHECKING:
    from portal.db.models.auth import Organization, User


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Counter(Base):
    """Named monotonically increasing counter (ticket numbers)."""

    __tablename__ = "counters"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    current_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class SupportTicket(Base):
    """Customer support ticket; ticket_number is what appears in email subjects."""

    __tablename__ = "support_tickets"
    __table_args__ = (
        Index("ix_support_tickets_user", "user_id"),
        Index("ix_support_tickets_org_status", "organization_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_number: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    priority: Mapped[SupportTicketPriority] = mapped_column(
        enum_type(SupportTicketPriority, name="support_ticket_priority"),
        default=SupportTicketPriority.NORMAL,
        nullable=False,
    )
    status: Mapped[SupportTicketStatus] = mapped_column(
        enum_type(SupportTicketStatus, name="support_ticket_status"),
        default=SupportTicketStatus.OPEN,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=_utcnow, onupdate=_utcnow, nullable=False)

    organization: Mapped["Organization"] = relationship()
    user: Mapped["User"] = relationship()
    messages: Mapped[list["SupportTicketMessage"]] = relationship(
        back_populates="ticket",
        order_by="SupportTicketMessage.created_at",
        cascade="all, delete-orphan",
    )


class SupportTicketMessage(Base):
    """
    One message in a ticket thread.

    message_id is the email Message-ID used for threading: outbound ids are
    ``ticket-{id}-msg-...@EMAIL_DOMAIN``, inbound ids are ``{postmark id}@postmark``.
    """

    __tablename__ = "support_ticket_messages"
    __table_args__ = (
        Index("ix_support_ticket_messages_ticket_time", "ticket_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("support_tickets.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    is_staff: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    message_id: Mapped[str | None] = mapped_column(String(512), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)

    ticket: Mapped["SupportTicket"] = relationship(back_populates="messages")
    attachments: Mapped[list["SupportTicketMessageAttachment"]] = relationship(
        back_populates="message", cascade="all, delete-orphan"
    )


class SupportTicketMessageAttachment(Base):
    """Inline image received on an inbound email, served by hash-checked URL."""

    __tablename__ = "support_ticket_message_attachments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    message_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("support_ticket_messages.id", ondelete="CASCADE"), nullable=False
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    content_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, nullable=False)

    message: Mapped["SupportTicketMessage"] = relationship(back_populates="attachments")
