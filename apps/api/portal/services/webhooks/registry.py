"""Webhook handler registry."""

from __future__ import annotations

from portal.services.webhooks.base import WebhookHandler
from portal.services.webhooks.billing import BillingWebhookHandler
from portal.services.webhooks.postmark import PostmarkInboundWebhookHandler

_HANDLERS: dict[str, WebhookHandler] = {
    "billing": BillingWebhookHandler(),
    "postmark_inbound": PostmarkInboundWebhookHandler(),
}


def get_handler(name: str):
    handler = _HANDLERS.get(name)
    if not handler:
        raise KeyError(f"Unknown webhook handler: {name}")
    return handler
