"""Tests for domain/email normalization and email header helpers."""

import pytest

from portal.utils.email_parsing import extract_ticket_number, find_header
from portal.utils.normalization import normalize_domain, normalize_email, strip_trailing_slash


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("https://www.Example.com/", "example.com"),
        ("http://shop.example.com", "shop.example.com"),
        ("  HTTPS://WWW.EXAMPLE.COM//  ", "example.com"),
        ("example.com/shop/", "example.com/shop"),
        ("www.example.com", "example.com"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_domain(raw, expected):
    assert normalize_domain(raw) == expected


def test_normalize_domain_keeps_subdomains_distinct():
    assert normalize_domain("https://store.example.com") != normalize_domain("https://example.com")


def test_normalize_domain_is_idempotent():
    once = normalize_domain("https://www.Example.com/Shop/")
    assert normalize_domain(once) == once


def test_normalize_email():
    assert normalize_email("  Jane@Example.COM ") == "jane@example.com"
    assert normalize_email("") is None
    assert normalize_email(None) is None


def test_strip_trailing_slash():
    assert strip_trailing_slash("https://shop.example.com/") == "https://shop.example.com"
    assert strip_trailing_slash("https://shop.example.com") == "https://shop.example.com"


@pytest.mark.parametrize(
    "subject,expected",
    [
        ("Re: [Ticket #42] Checkout broken", 42),
        ("[Ticket #7] Hello", 7),
        ("Ticket 42", None),
        ("[Ticket #abc]", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_ticket_number(subject, expected):
    assert extract_ticket_number(subject) == expected


def test_find_header_is_case_insensitive():
    headers = [
        {"Name": "Message-ID", "Value": "<abc@mail.example.com>"},
        {"Name": "in-reply-to", "Value": "<ticket-1@pixeldev.local>"},
    ]
    assert find_header(headers, "In-Reply-To") == "<ticket-1@pixeldev.local>"
    assert find_header(headers, "message-id") == "<abc@mail.example.com>"
    assert find_header(headers, "References") is None
    assert find_header(None, "Message-ID") is None
