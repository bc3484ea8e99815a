"""Clock and timestamp helpers."""
from datetime import datetime, timezone
from typing import Callable, Optional

# A clock is any zero-argument callable returning a naive UTC datetime.
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """
    Current time as a naive UTC datetime.

    Naive values are stored and compared everywhere so SQLite and PostgreSQL
    round-trip the same objects.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """ISO 8601 string for a datetime, or None."""
    return value.isoformat() if value else None
