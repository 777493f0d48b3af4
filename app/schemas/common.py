from datetime import datetime, timezone
from typing import Optional


def blank_to_none(v):
    if v is None:
        return None
    v = str(v).strip()
    return v or None


def required_text(v):
    if v is None:
        raise ValueError("is required")
    v = str(v).strip()
    if not v:
        raise ValueError("is required")
    return v


def naive_utc(v: Optional[datetime]) -> Optional[datetime]:
    """Stored datetimes are naive UTC; convert aware inputs."""
    if v is None:
        return None
    if v.tzinfo is not None:
        return v.astimezone(timezone.utc).replace(tzinfo=None)
    return v


def iso(v: Optional[datetime]) -> Optional[str]:
    return v.isoformat() if v else None
