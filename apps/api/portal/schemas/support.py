"""Support ticket schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from portal.db.enums import SupportTicketPriority, SupportTicketStatus


class TicketCreateRequest(BaseModel):
    subject: str = Field(min_length=5, max_length=255)
    message: str = Field(min_length=10, max_length=5000)
    priority: SupportTicketPriority = SupportTicketPriority.NORMAL


class TicketReplyRequest(BaseModel):
    message: str = Field(min_length=1, max_length=5000)


class TicketStatusUpdateRequest(BaseModel):
    status: SupportTicketStatus


class TicketAttachmentRead(BaseModel):
    id: UUID
    filename: str
    content_type: str
    content_id: str | None
    size: int
    url: str


class TicketMessageRead(BaseModel):
    id: UUID
    is_staff: bool
    user_id: UUID | None
    message: str
    created_at: datetime
    attachments: list[TicketAttachmentRead] = []


class TicketListItem(BaseModel):
    id: UUID
    ticket_number: int
    subject: str
    priority: SupportTicketPriority
    status: SupportTicketStatus
    created_at: datetime
    updated_at: datetime


class TicketDetailResponse(TicketListItem):
    messages: list[TicketMessageRead]


class TicketReplyResponse(BaseModel):
    success: bool
    error: str | None = None
    status: SupportTicketStatus | None = None
    message_id: UUID | None = None
