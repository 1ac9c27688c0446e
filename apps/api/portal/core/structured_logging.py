"""Structured logging helpers (secret-safe)."""

from typing import Any


def build_log_context(
    *,
    user_id: str | None = None,
    org_id: str | None = None,
    site_url: str | None = None,
    route: str | None = None,
    method: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    """Return a log context dict with only the non-empty, non-secret values."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = user_id
    if org_id:
        context["org_id"] = org_id
    if site_url:
        context["site_url"] = site_url
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    for key, value in extra.items():
        if value is not None:
            context[key] = value
    return context


def mask_email(email: str | None) -> str:
    """Mask the local part of an email address for logs."""
    if not email or "@" not in email:
        return ""
    local, _, domain = email.partition("@")
    if len(local) <= 2:
        return f"{local[:1]}***@{domain}"
    return f"{local[:2]}***@{domain}"
