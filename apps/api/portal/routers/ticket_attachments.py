"""Serves inline images and files attached to support ticket messages."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from portal.core.deps import get_db
from portal.services import support_ticket_service

router = APIRouter(tags=["support"])


@router.get("/ticket-attachments/{attachment_id}")
def get_ticket_attachment(
    attachment_id: UUID,
    v: str | None = None,
    db: Session = Depends(get_db),
) -> Response:
    """
    Attachment bytes by id.

    ``v`` is the content hash from the attachment URL. A wrong hash is a 403,
    so the long-lived cache headers only ever apply to the right content.
    """
    attachment = support_ticket_service.get_attachment(db, attachment_id)
    if not attachment:
        raise HTTPException(status_code=404, detail="Attachment not found")
    if v is not None and v != attachment.hash:
        raise HTTPException(status_code=403, detail="Invalid attachment hash")

    filename = attachment.filename.replace('"', "")
    return Response(
        content=attachment.data,
        media_type=attachment.content_type,
        headers={
            "Content-Disposition": f'inline; filename="{filename}"',
            "Cache-Control": "public, max-age=31536000, immutable",
            "ETag": f'"{attachment.hash}"',
        },
    )
