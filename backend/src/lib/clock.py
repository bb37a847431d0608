"""
Clock abstraction so the campaign tick can be driven without real time passing.
"""
from datetime import datetime, timezone
from typing import Optional, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.lib.logging import get_logger

logger = get_logger(__name__)


class Clock(Protocol):
    """Anything that can tell the current time as an aware UTC datetime."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    Naive values are assumed to already be UTC (some drivers drop tzinfo
    on read).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_timezone(name: Optional[str], default: str = "UTC") -> ZoneInfo:
    """Look up a zone by name, falling back to the default on unknown names."""
    for candidate in (name, default, "UTC"):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone '{candidate}', falling back")
    return ZoneInfo("UTC")


_system_clock = SystemClock()


def get_clock() -> Clock:
    """Get the process-wide clock."""
    return _system_clock
