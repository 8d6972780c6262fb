from __future__ import annotations

import re
from datetime import date

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_SLUG_RE = re.compile(r"[^a-z0-9]+")


def clean_text(value: object) -> str | None:
    """Strip a form value; empty becomes None."""
    if value is None:
        return None
    v = str(value).strip()
    return v or None


def parse_date(value: str | None) -> tuple[date | None, str | None]:
    """Parse an ISO date from form input."""
    v = (value or "").strip()
    if not v:
        return None, None
    try:
        return date.fromisoformat(v), None
    except ValueError:
        return None, f"Invalid date {v!r}. Use YYYY-MM-DD."


def parse_int(value: str | None) -> int | None:
    v = (value or "").strip()
    if not v:
        return None
    try:
        return int(v)
    except ValueError:
        return None


def parse_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "on", "yes")


def is_valid_email(value: str | None) -> bool:
    return bool(value and _EMAIL_RE.match(value.strip()))


def slugify(value: str) -> str:
    return _SLUG_RE.sub("-", (value or "").strip().lower()).strip("-")
