"""Tests for the Postmark sender."""

import json

import httpx
import pytest

from portal.core.config import settings
from portal.services import email_service
from portal.services.email_service import EmailMessage, EmailSendError, build_payload

# Captured before the autouse fixture swaps in the outbox
REAL_SEND = email_service.send_email


def _mock_postmark(monkeypatch, handler):
    """Route email_service's httpx.Client through a MockTransport."""
    real_client = httpx.Client
    seen: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    def client_factory(*args, **kwargs):
        return real_client(*args, transport=httpx.MockTransport(recording), **kwargs)

    monkeypatch.setattr(email_service.httpx, "Client", client_factory)
    monkeypatch.setattr(settings, "POSTMARK_SERVER_TOKEN", "pm-token")
    return seen


def test_payload_sets_threading_headers():
    payload = build_payload(
        EmailMessage(
            to="customer@example.com",
            subject="Re: [Ticket #4] Help",
            text_body="Hello",
            reply_to="abc123@inbound.postmarkapp.com",
            message_id="ticket-1-msg-2@pixeldev.local",
            in_reply_to="ticket-1-msg-initial@pixeldev.local",
        )
    )

    assert payload["To"] == "customer@example.com"
    assert payload["ReplyTo"] == "abc123@inbound.postmarkapp.com"
    assert payload["MessageStream"] == "outbound"
    assert payload["Headers"] == [
        {"Name": "Message-ID", "Value": "<ticket-1-msg-2@pixeldev.local>"},
        {"Name": "In-Reply-To", "Value": "<ticket-1-msg-initial@pixeldev.local>"},
        {"Name": "References", "Value": "<ticket-1-msg-initial@pixeldev.local>"},
    ]
    assert "HtmlBody" not in payload


def test_payload_without_threading_has_no_headers():
    payload = build_payload(EmailMessage(to="a@example.com", subject="Hi", text_body="Hi"))
    assert "Headers" not in payload
    assert "ReplyTo" not in payload


def test_missing_token_raises(monkeypatch):
    monkeypatch.setattr(settings, "POSTMARK_SERVER_TOKEN", "")
    with pytest.raises(EmailSendError):
        REAL_SEND(EmailMessage(to="a@example.com", subject="Hi", text_body="Hi"))


def test_send_posts_to_postmark(monkeypatch):
    seen = _mock_postmark(
        monkeypatch,
        lambda request: httpx.Response(200, json={"ErrorCode": 0, "MessageID": "pm-abc"}),
    )

    message_id = REAL_SEND(EmailMessage(to="a@example.com", subject="Hi", text_body="Body"))

    assert message_id == "pm-abc"
    request = seen[0]
    assert str(request.url) == "https://api.postmarkapp.com/email"
    assert request.headers["X-Postmark-Server-Token"] == "pm-token"
    assert json.loads(request.content)["Subject"] == "Hi"


def test_postmark_error_code_raises(monkeypatch):
    _mock_postmark(
        monkeypatch,
        lambda request: httpx.Response(422, json={"ErrorCode": 300, "Message": "Invalid email request"}),
    )

    with pytest.raises(EmailSendError, match="300"):
        REAL_SEND(EmailMessage(to="bad", subject="Hi", text_body="Hi"))


def test_transport_failure_raises(monkeypatch):
    def unreachable(request):
        raise httpx.ConnectError("connection refused", request=request)

    _mock_postmark(monkeypatch, unreachable)

    with pytest.raises(EmailSendError, match="request failed"):
        REAL_SEND(EmailMessage(to="a@example.com", subject="Hi", text_body="Hi"))


def test_activation_email_links_to_token(sent_emails):
    email_service.send_account_activation_email(recipient="new@example.com", name="New", token="tok123")

    message = sent_emails[0]
    assert message.to == "new@example.com"
    assert "/auth/activate-account/tok123" in message.text_body
    assert message.html_body.startswith("<p>")


def test_password_reset_email_links_to_token(sent_emails):
    email_service.send_password_reset_email(recipient="owner@example.com", name=None, token="reset123")

    message = sent_emails[0]
    assert message.to == "owner@example.com"
    assert "/auth/reset-password/reset123" in message.text_body
    assert message.text_body.startswith("Hi there,")


def test_ticket_html_is_escaped(sent_emails):
    email_service.send_ticket_created_email(
        ticket_number=7,
        ticket_id="t-7",
        subject="XSS",
        message="<script>alert(1)</script>",
        priority="NORMAL",
        customer_name="Eve",
        customer_email="eve@example.com",
        message_id="ticket-t-7-msg-initial@pixeldev.local",
    )

    message = sent_emails[0]
    assert "<script>" not in message.html_body
    assert "&lt;script&gt;" in message.html_body
    assert message.subject == "[Ticket #7] XSS"
