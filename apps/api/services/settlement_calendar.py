"""
Reference-zone calendar helpers.

Every "today" and "yesterday" in the gamification core is computed in the
single configured SETTLEMENT_TIMEZONE, so the batch, reward redemption and the
status lookups agree on which calendar day an instant belongs to.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
import zoneinfo

from core.config import settings


def reference_zone() -> zoneinfo.ZoneInfo:
    return zoneinfo.ZoneInfo(settings.SETTLEMENT_TIMEZONE)


def local_today(now: Optional[datetime] = None) -> date:
    """Calendar date of `now` (default: current time) in the reference zone. Naive input is UTC."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(reference_zone()).date()


def settlement_date_for(now: Optional[datetime] = None) -> date:
    """The day a batch started at `now` settles: yesterday in the reference zone."""
    return local_today(now) - timedelta(days=1)


def is_settleable(day: date, now: Optional[datetime] = None) -> bool:
    """Only strictly past days can be settled."""
    return day < local_today(now)


def end_of_day(day: date) -> datetime:
    """First instant after `day` in the reference zone, as an aware UTC datetime."""
    next_midnight = datetime.combine(day + timedelta(days=1), time.min, tzinfo=reference_zone())
    return next_midnight.astimezone(timezone.utc)


def existed_by_end_of(moment: datetime, day: date) -> bool:
    """True if `moment` falls before `day` ended in the reference zone. Naive input is UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment < end_of_day(day)
