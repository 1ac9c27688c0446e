"""Normalization helpers for domains and emails."""

import re
from typing import Optional

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
_WWW_RE = re.compile(r"^www\.", re.IGNORECASE)


def normalize_domain(domain: Optional[str]) -> str:
    """
    Normalize a domain or site URL for activation matching.

    Strips whitespace, ``http(s)://``, a leading ``www.`` and trailing
    slashes, then lowercases. Paths are kept so sub-directory installs stay
    distinct (``example.com/shop``).

    Examples:
        "https://www.Example.com/" -> "example.com"
        "http://shop.example.com" -> "shop.example.com"
    """
    if not domain:
        return ""
    value = domain.strip()
    value = _SCHEME_RE.sub("", value)
    value = _WWW_RE.sub("", value)
    value = value.rstrip("/")
    return value.lower()


def normalize_email(email: Optional[str]) -> Optional[str]:
    """
    Normalize email to lowercase.

    Returns:
        Lowercased, trimmed email or None if empty
    """
    if not email:
        return None
    return email.strip().lower()


def strip_trailing_slash(url: str) -> str:
    return url[:-1] if url.endswith("/") else url
