"""Conversion between :class:`~datetime.datetime` and persisted text timestamps.

Timestamps are written in a single canonical form (ISO-8601 with a space
separator, microseconds and a UTC offset).  Older writers used a handful
of other layouts, so :func:`parse_timestamp` accepts all of them; a
trailing ``Z`` is treated as UTC, and naive values are assumed to be UTC.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

TIMESTAMP_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d %H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%d %H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M",
    "%Y-%m-%d",
)
"""Accepted layouts, canonical first."""

# strptime's %f takes at most six digits; nanosecond writers produce nine.
_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(tz=timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render *value* in the canonical persisted form.

    Naive datetimes are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(sep=" ", timespec="microseconds")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a persisted timestamp, returning ``None`` for NULL/empty.

    Raises
    ------
    ValueError
        If *value* matches none of :data:`TIMESTAMP_FORMATS`.
    """
    if value is None or value == "":
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1]
    text = _FRACTION_RE.sub(r".\1", text)

    for fmt in TIMESTAMP_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    raise ValueError(f"Unrecognised timestamp {value!r}")
