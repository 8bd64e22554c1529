"""
Time helpers: a UTC clock, ISO-8601 round-tripping, and scan deadlines.
"""

import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone

from .errors import AnalyticsTimeoutError

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Serialize a datetime as ISO-8601 UTC with microsecond precision."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 string into an aware UTC datetime.

    Accepts a trailing ``Z`` and offset-naive values (assumed UTC).
    """
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def truncate_to_second(dt: datetime) -> datetime:
    return dt.replace(microsecond=0)


class Deadline:
    """Cancellation signal for long graph scans.

    A deadline expires either when its time budget runs out or when
    ``cancel()`` is called from another thread. Scans call ``check()``
    between items and fail closed with ``AnalyticsTimeoutError``.
    """

    def __init__(self, seconds: float | None = None):
        self._expires_at = (
            time.monotonic() + seconds if seconds is not None else None
        )
        self._cancelled = threading.Event()

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(seconds)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def expired(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def check(self, operation: str = "scan") -> None:
        if self._cancelled.is_set():
            raise AnalyticsTimeoutError(f"{operation} cancelled")
        if self._expires_at is not None and time.monotonic() >= self._expires_at:
            raise AnalyticsTimeoutError(f"{operation} exceeded its deadline")


def check_deadline(deadline: Deadline | None, operation: str = "scan") -> None:
    if deadline is not None:
        deadline.check(operation)
