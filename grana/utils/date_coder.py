"""
ISO-8601 Timestamp Coding.

The server and the credential store exchange timestamps as ISO-8601
strings.  Writing always produces UTC with a millisecond fraction
(``2026-01-01T10:00:00.000Z``).  Reading is lenient:

- with or without a fractional part;
- fractions longer than six digits (.NET emits seven) are trimmed;
- a timestamp without a zone designator is taken as UTC.

A date without a time part is rejected.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional

__all__ = ["format_timestamp", "parse_timestamp"]

_FRACTION_RE: re.Pattern[str] = re.compile(r"\.(\d+)")


def format_timestamp(value: datetime) -> str:
    """Render *value* as UTC ISO-8601 with millisecond precision.

    Naive datetimes are assumed to already be in UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S") + f".{utc.microsecond // 1000:03d}Z"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC ``datetime``.

    Returns ``None`` instead of raising when *value* is empty or not a
    recognisable timestamp, so callers can treat corrupt input the same
    as missing input.
    """
    if not value:
        return None

    text = value.strip()
    if "T" not in text:
        return None

    text = _FRACTION_RE.sub(_trim_fraction, text, count=1)

    try:
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


def _trim_fraction(match: re.Match[str]) -> str:
    return "." + match.group(1)[:6]
