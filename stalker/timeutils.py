"""Timezone-aware time utilities and the week numbering used for reports."""

import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from .config import TIMEZONE
from .models import WeekInfo


def get_timezone():
    """Get the timezone object for the bot."""
    return ZoneInfo(TIMEZONE)


def now() -> datetime.datetime:
    """Get current timezone-aware datetime."""
    return datetime.datetime.now(get_timezone())


def now_iso() -> str:
    """Current UTC time as an ISO 8601 string, for stored timestamps."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z")


def iso_week(date: datetime.date) -> int:
    """ISO-8601 week number of a date."""
    return date.isocalendar()[1]


def week_info(moment: Optional[datetime.datetime] = None) -> WeekInfo:
    """Week a report made at ``moment`` belongs to.

    Monday still counts as the previous week, so the week effectively turns
    over on Tuesday. The year is the calendar year of the shifted date.
    """
    moment = moment or now()
    day = moment.date() if isinstance(moment, datetime.datetime) else moment
    if day.weekday() == 0:
        day = day - datetime.timedelta(days=1)
    return WeekInfo(week_number=iso_week(day), year=day.year)


def decay_week_key(moment: Optional[datetime.datetime] = None) -> str:
    """Idempotency key of the weekly punishment decay, e.g. '2025-W41'."""
    moment = moment or now()
    return f"{moment.year}-W{iso_week(moment.date())}"


def next_monday_midnight(moment: Optional[datetime.datetime] = None) -> datetime.datetime:
    """Next Monday 00:00 in the bot timezone, when decay runs."""
    moment = moment or now()
    days_ahead = (7 - moment.weekday()) % 7 or 7
    target = moment + datetime.timedelta(days=days_ahead)
    return target.replace(hour=0, minute=0, second=0, microsecond=0)


def hours_since(timestamp: float) -> float:
    """Get hours since the given POSIX timestamp."""
    past = datetime.datetime.fromtimestamp(timestamp, get_timezone())
    return (now() - past).total_seconds() / 3600
