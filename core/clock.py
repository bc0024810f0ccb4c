"""
core/clock.py -- UTC time helpers shared by the stores and the auth service.

Timestamps are persisted as fixed-width ISO-8601 strings. isoformat() drops
the microsecond field when it is zero, which breaks lexicographic ordering in
SQL comparisons (locked_until <= :now, expires_at > :now). to_iso() always
emits the same width so string order equals chronological order.
"""

from __future__ import annotations

from datetime import datetime, timezone

_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Render an aware datetime as a fixed-width UTC ISO string."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(_FORMAT)


def from_iso(value: str | None) -> datetime | None:
    """Parse a stored timestamp back into an aware UTC datetime (None passes through)."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
