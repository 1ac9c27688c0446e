"""Webhooks router - external service integrations."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from portal.core.deps import get_db
from portal.services.webhooks.registry import get_handler

router = APIRouter(tags=["webhooks"])


@router.post("/webhooks/billing")
async def receive_billing_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
    """Stripe billing events (checkout, subscription lifecycle, invoices)."""
    return await get_handler("billing").handle(request, db)


@router.post("/api/webhooks/postmark/inbound")
async def receive_postmark_inbound(
    request: Request,
    db: Session = Depends(get_db),
):
    """Customer replies to support tickets, delivered by Postmark."""
    return await get_handler("postmark_inbound").handle(request, db)
