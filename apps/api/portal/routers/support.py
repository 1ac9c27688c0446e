"""Support ticket APIs for customers and support admins."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from portal.core.deps import (
    get_current_session,
    get_db,
    is_support_admin,
    require_csrf_header,
    require_support_admin,
)
from portal.db.enums import SupportTicketStatus
from portal.db.models import SupportTicket, User
from portal.schemas.auth import UserSession
from portal.schemas.support import (
    TicketAttachmentRead,
    TicketCreateRequest,
    TicketDetailResponse,
    TicketListItem,
    TicketMessageRead,
    TicketReplyRequest,
    TicketReplyResponse,
    TicketStatusUpdateRequest,
)
from portal.services import support_ticket_service

router = APIRouter(prefix="/support/tickets", tags=["support"])


def _list_item(ticket: SupportTicket) -> TicketListItem:
    return TicketListItem(
        id=ticket.id,
        ticket_number=ticket.ticket_number,
        subject=ticket.subject,
        priority=ticket.priority,
        status=ticket.status,
        created_at=ticket.created_at,
        updated_at=ticket.updated_at,
    )


def _detail(ticket: SupportTicket) -> TicketDetailResponse:
    return TicketDetailResponse(
        **_list_item(ticket).model_dump(),
        messages=[
            TicketMessageRead(
                id=message.id,
                is_staff=message.is_staff,
                user_id=message.user_id,
                message=message.message,
                created_at=message.created_at,
                attachments=[
                    TicketAttachmentRead(
                        id=attachment.id,
                        filename=attachment.filename,
                        content_type=attachment.content_type,
                        content_id=attachment.content_id,
                        size=attachment.size,
                        url=support_ticket_service.attachment_url(attachment),
                    )
                    for attachment in message.attachments
                ],
            )
            for message in ticket.messages
        ],
    )


def _current_user(db: Session, session: UserSession) -> User:
    user = db.get(User, session.user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


@router.get("", response_model=list[TicketListItem])
def list_my_tickets(
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> list[TicketListItem]:
    tickets = support_ticket_service.list_user_tickets(db, user_id=session.user_id)
    return [_list_item(ticket) for ticket in tickets]


@router.post(
    "",
    response_model=TicketListItem,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_ticket(
    body: TicketCreateRequest,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> TicketListItem:
    ticket = support_ticket_service.create_ticket(
        db,
        user=_current_user(db, session),
        organization_id=session.org_id,
        subject=body.subject,
        message=body.message,
        priority=body.priority,
    )
    return _list_item(ticket)


@router.get("/admin", response_model=list[TicketListItem])
def list_all_tickets(
    status: SupportTicketStatus | None = None,
    db: Session = Depends(get_db),
    session: UserSession = Depends(require_support_admin),
) -> list[TicketListItem]:
    """Support admin inbox."""
    tickets = support_ticket_service.list_all_tickets(db, status=status)
    return [_list_item(ticket) for ticket in tickets]


@router.get("/{ticket_id}", response_model=TicketDetailResponse)
def get_ticket(
    ticket_id: UUID,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> TicketDetailResponse:
    """Ticket thread; owners see their own tickets, support admins see all."""
    owner_id = None if is_support_admin(session) else session.user_id
    ticket = support_ticket_service.get_ticket_details(db, ticket_id=ticket_id, user_id=owner_id)
    return _detail(ticket)


@router.post(
    "/{ticket_id}/reply",
    response_model=TicketReplyResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(require_csrf_header)],
)
def reply_to_ticket(
    ticket_id: UUID,
    body: TicketReplyRequest,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> TicketReplyResponse:
    """Customer reply. Closed and resolved tickets answer success=false."""
    result = support_ticket_service.reply_to_ticket(
        db, user=_current_user(db, session), ticket_id=ticket_id, message=body.message
    )
    return TicketReplyResponse(
        success=result.success,
        error=result.error,
        status=result.ticket.status if result.ticket else None,
        message_id=result.message.id if result.message else None,
    )


@router.post(
    "/{ticket_id}/staff-reply",
    response_model=TicketReplyResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(require_csrf_header)],
)
def staff_reply(
    ticket_id: UUID,
    body: TicketReplyRequest,
    db: Session = Depends(get_db),
    session: UserSession = Depends(require_support_admin),
) -> TicketReplyResponse:
    result = support_ticket_service.staff_reply(db, ticket_id=ticket_id, message=body.message)
    return TicketReplyResponse(
        success=result.success,
        error=result.error,
        status=result.ticket.status if result.ticket else None,
        message_id=result.message.id if result.message else None,
    )


@router.patch(
    "/{ticket_id}/status",
    response_model=TicketListItem,
    dependencies=[Depends(require_csrf_header)],
)
def update_ticket_status(
    ticket_id: UUID,
    body: TicketStatusUpdateRequest,
    db: Session = Depends(get_db),
    session: UserSession = Depends(require_support_admin),
) -> TicketListItem:
    ticket = support_ticket_service.update_ticket_status(db, ticket_id=ticket_id, status=body.status)
    return _list_item(ticket)
