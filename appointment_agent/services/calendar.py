from __future__ import annotations

import os
import re
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Callable, Iterable, List, Optional, Tuple
from urllib.parse import quote_plus

from dateutil import parser as dateparser
from dateutil import tz

from appointment_agent.models.booking import ExistingAppointment

SLOT_DURATION = timedelta(hours=1)
DEFAULT_HOUR = 9

DAYPART_HOURS = (
    ("morning", 10),
    ("afternoon", 14),
    ("evening", 17),
)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_CLOCK_12H = re.compile(r"\b(\d{1,2})(?::([0-5]\d))?\s*([ap])\.?\s*m\b\.?", re.I)
_CLOCK_24H = re.compile(r"\b([01]?\d|2[0-3]):([0-5]\d)\b")

Clock = Callable[[], datetime]


class InvalidDateTime(ValueError):
    def __init__(self, raw_date: Optional[str], raw_time: Optional[str], reason: str) -> None:
        super().__init__(f"Invalid date or time format. Received: date={raw_date!r}, time={raw_time!r} ({reason})")
        self.raw_date = raw_date
        self.raw_time = raw_time


def business_timezone() -> tzinfo:
    name = os.getenv("BUSINESS_TIMEZONE")
    if not name:
        return tz.tzlocal()
    zone = tz.gettz(name)
    if zone is None:
        raise ValueError(f"Invalid BUSINESS_TIMEZONE: {name!r}")
    return zone


def system_clock() -> datetime:
    return datetime.now(business_timezone())


def resolve_date(token: Optional[str], today: date) -> date:
    """Map a date token to a calendar day. Missing means tomorrow; a weekday is never today."""
    if not token or not token.strip():
        return today + timedelta(days=1)
    lowered = token.lower()
    if "tomorrow" in lowered:
        return today + timedelta(days=1)
    for index, weekday in enumerate(WEEKDAYS):
        if weekday in lowered:
            return today + timedelta(days=(index - today.weekday()) % 7 or 7)
    try:
        parsed = dateparser.parse(token, default=datetime.combine(today, time()))
    except (ValueError, OverflowError) as exc:
        raise ValueError(f"unrecognised date {token!r}") from exc
    if parsed.date() < today:
        raise ValueError(f"date {token!r} is in the past")
    return parsed.date()


def resolve_time(token: Optional[str]) -> time:
    """Map a time token to a wall-clock time. Missing means 09:00."""
    if not token or not token.strip():
        return time(DEFAULT_HOUR)
    lowered = token.lower()
    for keyword, hour in DAYPART_HOURS:
        if keyword in lowered:
            return time(hour)

    match = _CLOCK_12H.search(token)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        if not 1 <= hour <= 12:
            raise ValueError(f"hour out of range in {token!r}")
        if match.group(3).lower() == "p" and hour != 12:
            hour += 12
        elif match.group(3).lower() == "a" and hour == 12:
            hour = 0
        return time(hour, minute)

    match = _CLOCK_24H.search(token)
    if match:
        return time(int(match.group(1)), int(match.group(2)))
    raise ValueError(f"unrecognised time {token!r}")


def resolve_interval(
    date_token: Optional[str],
    time_token: Optional[str],
    now: datetime,
) -> Tuple[datetime, datetime]:
    """Concrete one-hour slot for the draft's date/time tokens, in ``now``'s timezone."""
    try:
        day = resolve_date(date_token, now.date())
        clock = resolve_time(time_token)
    except ValueError as exc:
        raise InvalidDateTime(date_token, time_token, str(exc)) from exc
    start = datetime.combine(day, clock, tzinfo=now.tzinfo)
    return start, start + SLOT_DURATION


def day_bounds(moment: datetime) -> Tuple[datetime, datetime]:
    day_start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    day_end = moment.replace(hour=23, minute=59, second=59, microsecond=999000)
    return day_start, day_end


def overlaps(existing_start: datetime, existing_end: datetime, start: datetime, end: datetime) -> bool:
    # Half-open intervals: back-to-back slots do not collide
    return existing_start < end and existing_end > start


def find_conflicts(
    appointments: Iterable[ExistingAppointment], start: datetime, end: datetime
) -> List[ExistingAppointment]:
    return [item for item in appointments if overlaps(item.start, item.end, start, end)]


def create_google_event_link(summary: str, start: datetime, end: datetime, details: str, location: str = "") -> str:
    start_utc = start.astimezone(tz.UTC).strftime("%Y%m%dT%H%M%SZ")
    end_utc = end.astimezone(tz.UTC).strftime("%Y%m%dT%H%M%SZ")
    params = {
        "action": "TEMPLATE",
        "text": summary,
        "dates": f"{start_utc}/{end_utc}",
        "details": details,
        "location": location,
    }
    query = "&".join(f"{key}={quote_plus(value)}" for key, value in params.items() if value)
    return f"https://calendar.google.com/calendar/render?{query}"
