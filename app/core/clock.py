"""
Time helpers.

Every timestamp written by the core is a naive UTC datetime so that values
round-trip identically through PostgreSQL and SQLite.
"""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
