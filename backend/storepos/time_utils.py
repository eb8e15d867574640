"""
Timestamps are stored as naive UTC and rendered with a trailing 'Z'.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional

from .errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def bill_day(moment: Optional[datetime] = None) -> str:
    """The YYYYMMDD stamp used in bill numbers."""
    return (moment or utcnow()).strftime("%Y%m%d")


def _as_naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.replace(tzinfo=None)


def parse_date_bound(value: Optional[str], field: str, *, end: bool = False) -> Optional[datetime]:
    """
    Read one side of an inclusive date range from a query argument.

    Accepts "YYYY-MM-DD" or a full ISO-8601 datetime ("Z" and offsets are
    converted to UTC). A bare date used as the end bound covers the whole day.
    Blank values mean "unbounded".
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    try:
        if len(text) == 10:
            day = date.fromisoformat(text)
            return datetime.combine(day, time.max if end else time.min)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return _as_naive_utc(datetime.fromisoformat(text))
    except ValueError:
        raise ValidationError(
            f"{field} must be an ISO-8601 date or datetime", details={field: value}
        ) from None


def to_utc_z(moment: Optional[datetime]) -> Optional[str]:
    """Render a stored timestamp as 'YYYY-MM-DDTHH:MM:SSZ'; None stays None."""
    if moment is None:
        return None
    return _as_naive_utc(moment).strftime("%Y-%m-%dT%H:%M:%SZ")
