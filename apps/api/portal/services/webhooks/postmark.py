"""Postmark inbound email webhook handler."""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import logging

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from portal.core.config import settings
from portal.services import inbound_email_service

logger = logging.getLogger(__name__)


def _basic_auth_ok(request: Request) -> bool:
    """Optional HTTP basic auth configured on the Postmark inbound URL."""
    username = settings.POSTMARK_INBOUND_USERNAME
    password = settings.POSTMARK_INBOUND_PASSWORD
    if not username and not password:
        return True

    header = request.headers.get("authorization", "")
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return False
    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return False
    given_user, _, given_password = decoded.partition(":")
    return hmac.compare_digest(given_user, username) and hmac.compare_digest(
        given_password, password
    )


class PostmarkInboundWebhookHandler:
    async def handle(self, request: Request, db: Session, **kwargs):
        """
        Receive inbound support email from Postmark.

        Unmatched or looped mail is acknowledged with 200 so Postmark does
        not retry it; only an empty reply body is a 400.
        """
        if not _basic_auth_ok(request):
            logger.warning("Postmark inbound webhook failed basic auth")
            raise HTTPException(status_code=401, detail="Unauthorized")

        body = await request.body()
        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            raise HTTPException(status_code=400, detail="Invalid JSON")
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")

        logger.info("Postmark inbound email received (MessageID=%s)", payload.get("MessageID"))

        result = await run_in_threadpool(inbound_email_service.process_inbound_email, db, payload)
        if result.status_code != 200:
            return JSONResponse(status_code=result.status_code, content=result.body)
        return result.body
