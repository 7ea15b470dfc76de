from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from slotkeeper.core.config import settings


def slot_clock(now: datetime | None = None) -> datetime:
    """`now` in the timezone slot dates and start times are written in."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(settings.SLOT_TIMEZONE))
