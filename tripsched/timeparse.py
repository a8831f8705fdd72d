# tripsched/timeparse.py
from __future__ import annotations
import re
from datetime import date, datetime, time, timedelta
from typing import Iterator, Tuple
from dateutil import parser as du

WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

MORNING = "morning"
AFTERNOON = "afternoon"

_HHMM = re.compile(r"^(\d{1,2}):?(\d{2})(?::\d{2})?$")

def parse_date(d) -> date:
    if isinstance(d, datetime):
        return d.date()
    if isinstance(d, date):
        return d
    s = str(d).strip()
    # ISO first; dayfirst only applies to ambiguous UK-style strings
    try:
        return date.fromisoformat(s)
    except ValueError:
        return du.parse(s, dayfirst=True).date()

def parse_time(t) -> Tuple[int, int]:
    if t is None:
        return (0, 0)
    if isinstance(t, time):
        return (t.hour, t.minute)
    s = str(t).strip()
    if s.isdigit():
        if len(s) <= 2:
            return (int(s), 0)
        return (int(s[:-2]), int(s[-2:]))
    m = _HHMM.match(s)
    if m:
        return (int(m.group(1)), int(m.group(2)))
    dt = du.parse(s)
    return (dt.hour, dt.minute)

def to_time(t) -> time:
    hh, mm = parse_time(t)
    if not (0 <= hh < 24 and 0 <= mm < 60):
        raise ValueError(f"Invalid time of day: {t!r}")
    return time(hh, mm)

def minutes_of(t: time) -> int:
    return t.hour * 60 + t.minute

def band_for(t: time, split_hour: int = 12) -> str:
    """Time-of-day band: pickups before ``split_hour`` are morning, the rest afternoon."""
    return MORNING if t.hour < split_hour else AFTERNOON

def weekday_of(d: date) -> str:
    return WEEKDAYS[d.weekday()]

def weekday_name(d: date) -> str:
    return WEEKDAY_NAMES[d.weekday()]

def normalize_weekday(value) -> str | None:
    text = str(value or "").strip().title()[:3]
    return text if text in WEEKDAYS else None

def daterange(start: date, end: date) -> Iterator[date]:
    d = start
    while d <= end:
        yield d
        d += timedelta(days=1)

def week_bounds(start: date) -> Tuple[date, date]:
    return start, start + timedelta(days=6)
