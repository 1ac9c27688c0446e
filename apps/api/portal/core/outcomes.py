"""Explicit results for flows that end in a redirect.

Services return one of these instead of raising a redirect; the router turns
``RedirectOutcome`` into a 303/302 response and ``ErrorOutcome`` into JSON.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal


@dataclass(frozen=True)
class RedirectOutcome:
    to: str
    kind: Literal["redirect"] = "redirect"


@dataclass(frozen=True)
class ErrorOutcome:
    error: str
    message: str
    status_code: int = 400
    kind: Literal["error"] = "error"
    extra: dict = field(default_factory=dict)

    def to_body(self) -> dict:
        return {"error": self.error, "message": self.message, **self.extra}


Outcome = RedirectOutcome | ErrorOutcome
