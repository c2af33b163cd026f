"""Calendar-day helpers — every date comparison in habitsync goes through here.

A calendar day is a plain `datetime.date` in UTC. Timestamps from the remote
store (date-only strings, ISO timestamps with or without offset, datetime
objects) are truncated to their UTC day, so completions written from
different timezones on the same server day compare equal.

All functions are pure. "Today" is read from the clock on each call.
"""

from datetime import date, datetime, timedelta, timezone

CalendarDay = date


def normalize(value: date | datetime | str) -> date:
    """Truncate a date, datetime or ISO string to its UTC calendar day.

    Naive datetimes are treated as UTC. Idempotent: normalize(normalize(x))
    == normalize(x).
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return _parse(value)
    raise TypeError(f"cannot normalize {type(value).__name__} to a calendar day")


def _parse(text: str) -> date:
    text = text.strip()
    if len(text) == 10:
        return date.fromisoformat(text)
    # fromisoformat() only accepts a trailing "Z" from 3.11 on
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return normalize(datetime.fromisoformat(text))
    except ValueError:
        # e.g. "2026-10-18T00:00:00.000000000+00:00": keep the date part
        return date.fromisoformat(text[:10])


def today() -> date:
    return datetime.now(timezone.utc).date()


def yesterday() -> date:
    return today() - timedelta(days=1)


def same_day(a: date | datetime | str, b: date | datetime | str) -> bool:
    return normalize(a) == normalize(b)


def is_today(value: date | datetime | str) -> bool:
    return normalize(value) == today()


def day_difference(a: date | datetime | str, b: date | datetime | str) -> int:
    """Signed number of calendar days from a to b (positive if a is before b)."""
    return (normalize(b) - normalize(a)).days


def last_n_days(n: int, end: date | None = None) -> list[date]:
    """The last n calendar days ending at `end` (default today), oldest first."""
    end = end or today()
    return [end - timedelta(days=i) for i in range(n - 1, -1, -1)]


def to_iso_date(value: date | datetime | str) -> str:
    """Storage form of a calendar day: midnight UTC as an ISO timestamp."""
    return normalize(value).strftime("%Y-%m-%dT00:00:00.000Z")


def to_date_string(value: date | datetime | str) -> str:
    """YYYY-MM-DD form of a calendar day."""
    return normalize(value).isoformat()
