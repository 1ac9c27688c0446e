"""Reply extraction for inbound support emails.

Email clients quote the previous message below the new text. We keep only
the new text: Postmark's ``StrippedTextReply`` when present, otherwise the
body is cut at each quote marker in turn.
"""

import re

_QUOTE_MARKERS: tuple[re.Pattern, ...] = (
    # Gmail: "On Mon, Dec 16, 2025 at 10:30 AM Someone wrote:"
    re.compile(r"On .{1,100} wrote:", re.IGNORECASE),
    # Apple Mail
    re.compile(r"On .{1,50}, at .{1,30}, .{1,50} wrote:", re.IGNORECASE),
    re.compile(r"-{3,}.*Original Message.*-{3,}", re.IGNORECASE | re.DOTALL),
    re.compile(r"_{5,}"),
    re.compile(r"\*{5,}"),
    # Outlook header block
    re.compile(r"From:\s*.+\nSent:\s*.+\nTo:\s*", re.IGNORECASE | re.DOTALL),
    re.compile(r"From:\s*.+\nDate:\s*.+\nSubject:\s*", re.IGNORECASE | re.DOTALL),
    re.compile(r"^>+ ?.*", re.MULTILINE),
)
_TRAILING_QUOTES = re.compile(r"(\n>+\s*)+$")


def extract_reply_text(text_body: str | None, stripped_reply: str | None = None) -> str:
    """Return the new text of a reply with quoted history removed."""
    if stripped_reply and stripped_reply.strip():
        return stripped_reply.strip()

    text = (text_body or "").strip()
    for pattern in _QUOTE_MARKERS:
        match = pattern.search(text)
        # A marker at position 0 means the body is all quote; leave it alone.
        if match and match.start() > 0:
            text = text[: match.start()].strip()

    return _TRAILING_QUOTES.sub("", text).strip()


TICKET_NUMBER_RE = re.compile(r"\[Ticket #(\d+)\]")


def extract_ticket_number(subject: str | None) -> int | None:
    """Parse ``[Ticket #123]`` from an email subject."""
    if not subject:
        return None
    match = TICKET_NUMBER_RE.search(subject)
    if not match:
        return None
    return int(match.group(1))


def find_header(headers: list[dict] | None, name: str) -> str | None:
    """Case-insensitive lookup in Postmark's ``[{Name, Value}]`` header list."""
    wanted = name.lower()
    for header in headers or []:
        if str(header.get("Name", "")).lower() == wanted:
            return header.get("Value")
    return None
