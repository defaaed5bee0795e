from __future__ import annotations

import re
from datetime import datetime
from typing import Any

_PERSON_NUMBER_RE = re.compile(r"^\d{12}$")
_SWEDISH_PHONE_RE = re.compile(r"^\+46[0-9]{9}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def parse_percentage(value: Any) -> float | None:
    """Parse an ownership percentage; accepts a decimal comma ("50,5")."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    s = str(value).strip().replace(",", ".")
    if not s:
        return None
    try:
        return float(s)
    except ValueError:
        return None


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def format_timestamp(value: Any, fmt: str = "%Y-%m-%d %H:%M") -> str:
    if value is None or value == "":
        return "-"
    if isinstance(value, str):
        parsed = parse_timestamp(value)
        if parsed is None:
            return "-"
        value = parsed
    if hasattr(value, "strftime"):
        return value.strftime(fmt)
    return str(value)


def is_valid_person_number(value: str | None) -> bool:
    return bool(value and _PERSON_NUMBER_RE.match(value.strip()))


def is_valid_email(value: str | None) -> bool:
    return bool(value and _EMAIL_RE.match(value.strip()))


def is_valid_swedish_phone(value: str | None) -> bool:
    return bool(value and _SWEDISH_PHONE_RE.match(value.strip()))


def safe_next_url(nxt: str | None) -> str | None:
    """Only allow local paths to avoid open redirects."""
    nxt = (nxt or "").strip()
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


def parse_positive_int(raw: str | None, default: int) -> int:
    try:
        value = int(raw or default)
    except (TypeError, ValueError):
        return default
    return value if value >= 1 else default
