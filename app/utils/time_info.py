"""
TIME GROUNDING UTILITY
======================

Resolves "today", "tomorrow" and "day after tomorrow" into calendar dates in a
fixed reference timezone (Asia/Kolkata by default). The result is injected into
the interpreter and persona instructions so relative dates in a user's message
("udya", "parva") are grounded to absolute dates regardless of where the server
runs.

Day arithmetic is done on the zone's calendar date, never by adding 24 hours to
an instant, so it stays correct across DST transitions in zones that have them.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from config import GURUJI_TIMEZONE


def local_date(instant: datetime, tz_name: str = GURUJI_TIMEZONE) -> date:
    """Calendar date of `instant` in the given zone. Naive instants are taken as UTC."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(ZoneInfo(tz_name)).date()


def add_days(day: date, days: int) -> date:
    return day + timedelta(days=days)


def date_iso(day: date) -> str:
    """e.g. 2026-02-08"""
    return day.isoformat()


def date_human(day: date) -> str:
    """e.g. 08 February 2026"""
    return day.strftime("%d %B %Y")


@dataclass(frozen=True)
class GroundedDates:
    """Today, tomorrow and the day after, as dates in the reference zone."""
    today: date
    tomorrow: date
    day_after: date
    tz_name: str = GURUJI_TIMEZONE

    @property
    def today_iso(self) -> str:
        return date_iso(self.today)

    @property
    def tomorrow_iso(self) -> str:
        return date_iso(self.tomorrow)

    @property
    def day_after_iso(self) -> str:
        return date_iso(self.day_after)

    @property
    def today_human(self) -> str:
        return date_human(self.today)

    @property
    def tomorrow_human(self) -> str:
        return date_human(self.tomorrow)

    @property
    def day_after_human(self) -> str:
        return date_human(self.day_after)


def ground_dates(now: Optional[datetime] = None, tz_name: str = GURUJI_TIMEZONE) -> GroundedDates:
    """Return today/tomorrow/day-after for the reference instant (default: now)."""
    today = local_date(now or datetime.now(timezone.utc), tz_name)
    return GroundedDates(
        today=today,
        tomorrow=add_days(today, 1),
        day_after=add_days(today, 2),
        tz_name=tz_name,
    )
