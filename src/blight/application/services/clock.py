from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(moment: datetime | None) -> datetime | None:
    """Treat naive datetimes read back from storage as UTC."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def resolve_now(now: datetime | None, clock: Clock) -> datetime:
    if now is None:
        return clock()
    aware = ensure_aware(now)
    assert aware is not None
    return aware
