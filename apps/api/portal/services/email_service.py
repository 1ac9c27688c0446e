"""Postmark email sender.

Sends transactional notifications (support tickets, account emails)
through Postmark's HTTP API. Threading headers are set explicitly so replies
land in the right ticket when they come back through the inbound webhook.

Callers treat a send as fire-and-forget: they catch and log failures and
never roll back the mutation that triggered the email.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass

import httpx

from portal.core.config import settings
from portal.core.structured_logging import mask_email

logger = logging.getLogger(__name__)

POSTMARK_TIMEOUT_SECONDS = 15.0


class EmailSendError(RuntimeError):
    """Postmark rejected the message or could not be reached."""


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    text_body: str
    html_body: str | None = None
    reply_to: str | None = None
    message_id: str | None = None
    in_reply_to: str | None = None


def _headers(message: EmailMessage) -> list[dict[str, str]]:
    headers: list[dict[str, str]] = []
    if message.message_id:
        headers.append({"Name": "Message-ID", "Value": f"<{message.message_id}>"})
    if message.in_reply_to:
        headers.append({"Name": "In-Reply-To", "Value": f"<{message.in_reply_to}>"})
        headers.append({"Name": "References", "Value": f"<{message.in_reply_to}>"})
    return headers


def build_payload(message: EmailMessage) -> dict:
    payload: dict = {
        "From": settings.EMAIL_FROM,
        "To": message.to,
        "Subject": message.subject,
        "TextBody": message.text_body,
        "MessageStream": "outbound",
    }
    if message.html_body:
        payload["HtmlBody"] = message.html_body
    if message.reply_to:
        payload["ReplyTo"] = message.reply_to
    headers = _headers(message)
    if headers:
        payload["Headers"] = headers
    return payload


def send_email(message: EmailMessage) -> str | None:
    """
    Send one message. Returns Postmark's MessageID.

    Raises:
        EmailSendError: token missing, transport failure, or Postmark ErrorCode > 0
    """
    if not settings.POSTMARK_SERVER_TOKEN:
        raise EmailSendError("POSTMARK_SERVER_TOKEN not configured")

    try:
        with httpx.Client(timeout=POSTMARK_TIMEOUT_SECONDS) as client:
            response = client.post(
                f"{settings.POSTMARK_API_URL.rstrip('/')}/email",
                json=build_payload(message),
                headers={
                    "Accept": "application/json",
                    "X-Postmark-Server-Token": settings.POSTMARK_SERVER_TOKEN,
                },
            )
    except httpx.HTTPError as e:
        raise EmailSendError(f"Postmark request failed: {e}") from e

    try:
        data = response.json()
    except ValueError:
        data = {}

    error_code = data.get("ErrorCode") or 0
    if response.status_code >= 400 or error_code > 0:
        raise EmailSendError(
            f"Postmark error {error_code or response.status_code}: {data.get('Message', response.text)}"
        )

    logger.info("Email sent to %s (subject=%r)", mask_email(message.to), message.subject)
    return data.get("MessageID")


# =============================================================================
# Notifications
# =============================================================================

def ticket_subject(ticket_number: int, subject: str) -> str:
    return f"[Ticket #{ticket_number}] {subject}"


def ticket_url(ticket_id) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/account/support/{ticket_id}"


def _html_paragraphs(text: str) -> str:
    return "".join(f"<p>{html.escape(line)}</p>" for line in text.splitlines() if line.strip())


def send_ticket_created_email(
    *,
    ticket_number: int,
    ticket_id,
    subject: str,
    message: str,
    priority: str,
    customer_name: str,
    customer_email: str,
    message_id: str,
) -> str | None:
    """New ticket → support inbox."""
    text = (
        f"New support ticket from {customer_name} <{customer_email}>\n"
        f"Priority: {priority}\n\n"
        f"{message}\n\n"
        f"View ticket: {ticket_url(ticket_id)}"
    )
    return send_email(
        EmailMessage(
            to=settings.SUPPORT_EMAIL,
            subject=ticket_subject(ticket_number, subject),
            text_body=text,
            html_body=_html_paragraphs(text),
            reply_to=settings.SUPPORT_EMAIL_INBOUND or None,
            message_id=message_id,
        )
    )


def send_ticket_user_reply_email(
    *,
    ticket_number: int,
    ticket_id,
    subject: str,
    message: str,
    customer_name: str,
    customer_email: str,
    message_id: str,
    in_reply_to: str | None,
) -> str | None:
    """Customer reply → support inbox, threaded on the first message."""
    text = (
        f"{customer_name} <{customer_email}> replied:\n\n"
        f"{message}\n\n"
        f"View ticket: {ticket_url(ticket_id)}"
    )
    return send_email(
        EmailMessage(
            to=settings.SUPPORT_EMAIL,
            subject=f"Re: {ticket_subject(ticket_number, subject)}",
            text_body=text,
            html_body=_html_paragraphs(text),
            reply_to=settings.SUPPORT_EMAIL_INBOUND or None,
            message_id=message_id,
            in_reply_to=in_reply_to,
        )
    )


def send_ticket_staff_reply_email(
    *,
    recipient: str,
    ticket_number: int,
    ticket_id,
    subject: str,
    message: str,
    message_id: str,
    in_reply_to: str | None,
) -> str | None:
    """Staff reply → customer. Replies come back through the inbound webhook."""
    text = (
        f"{settings.APP_NAME} support replied to your ticket:\n\n"
        f"{message}\n\n"
        f"Reply to this email or view the ticket: {ticket_url(ticket_id)}"
    )
    return send_email(
        EmailMessage(
            to=recipient,
            subject=f"Re: {ticket_subject(ticket_number, subject)}",
            text_body=text,
            html_body=_html_paragraphs(text),
            reply_to=settings.SUPPORT_EMAIL_INBOUND or None,
            message_id=message_id,
            in_reply_to=in_reply_to,
        )
    )


def send_account_activation_email(*, recipient: str, name: str | None, token: str) -> str | None:
    link = f"{settings.FRONTEND_URL.rstrip('/')}/auth/activate-account/{token}"
    text = (
        f"Hi {name or 'there'},\n\n"
        f"Thanks for your purchase. Set a password to access your {settings.APP_NAME} account:\n"
        f"{link}\n\n"
        "This link expires in 7 days."
    )
    return send_email(
        EmailMessage(
            to=recipient,
            subject=f"Activate your {settings.APP_NAME} account",
            text_body=text,
            html_body=_html_paragraphs(text),
        )
    )


def send_password_reset_email(*, recipient: str, name: str | None, token: str) -> str | None:
    link = f"{settings.FRONTEND_URL.rstrip('/')}/auth/reset-password/{token}"
    text = (
        f"Hi {name or 'there'},\n\n"
        f"Someone asked to reset the password for your {settings.APP_NAME} account. "
        f"Choose a new password here:\n{link}\n\n"
        f"This link expires in {settings.PASSWORD_RESET_EXPIRY_HOURS} hours. "
        "If you did not ask for a reset you can ignore this email."
    )
    return send_email(
        EmailMessage(
            to=recipient,
            subject=f"Reset your {settings.APP_NAME} password",
            text_body=text,
            html_body=_html_paragraphs(text),
        )
    )
