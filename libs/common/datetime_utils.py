"""Timezone-aware UTC helpers for timestamps and payment deadlines.

SQLite hands ``DateTime(timezone=True)`` columns back as naive values, so
anything compared against ``utc_now()`` goes through ``as_utc`` first.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime. Use for every stored timestamp."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes read back from the database as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def minutes_from_now(minutes: int) -> datetime:
    return utc_now() + timedelta(minutes=minutes)


def has_passed(deadline: Optional[datetime]) -> bool:
    """True when ``deadline`` is set and not in the future."""
    deadline = as_utc(deadline)
    return deadline is not None and deadline <= utc_now()
