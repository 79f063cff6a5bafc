from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the timezone-less DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def clean_str(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def ordered_unique(values: Iterable[str] | None) -> list[str]:
    """Strip, drop blanks and duplicates, keep first-seen order."""
    out: list[str] = []
    seen: set[str] = set()
    for v in values or ():
        v = (v or "").strip()
        if not v or v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


def isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat() + "Z"
