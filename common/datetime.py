"""Datetime helpers shared by the engine, stores and API.

The engine keeps every timestamp as a *naive UTC* datetime so values
round-trip through SQLite/Postgres ``DateTime`` columns unchanged and can be
compared without tz mismatches. Input at the boundary may be aware or naive:

    • trailing "Z" or explicit offsets are converted to UTC
    • naive values are assumed to already be UTC
"""
from __future__ import annotations

import datetime as _dt
from typing import Optional, Union

from dateutil.parser import isoparse as _isoparse

__all__ = ["parse_iso8601", "to_naive_utc", "utcnow"]


def utcnow() -> _dt.datetime:
    """Current time as naive UTC."""
    return _dt.datetime.now(_dt.timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[_dt.datetime]) -> Optional[_dt.datetime]:
    """Return *value* converted to UTC with tzinfo stripped (``None`` passes through)."""
    if value is None or not isinstance(value, _dt.datetime):
        return value
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value
    return value.astimezone(_dt.timezone.utc).replace(tzinfo=None)


def parse_iso8601(value: Union[str, _dt.datetime]) -> _dt.datetime:
    """Parse *value* into a naive UTC datetime.

    Accepts ISO-8601 strings or datetime objects.
    """
    if isinstance(value, _dt.datetime):
        return to_naive_utc(value)  # type: ignore[return-value]

    if not isinstance(value, str):
        raise TypeError("parse_iso8601 expects str or datetime, got " + type(value).__name__)

    try:
        dt = _isoparse(value)
    except ValueError as exc:
        raise ValueError(f"invalid ISO-8601 datetime: {value}") from exc

    return to_naive_utc(dt)  # type: ignore[return-value]
