"""Streak engine — pure functions over one habit's completion records.

Completions are treated as a set of calendar days: duplicate records for the
same day (possible for a moment during reconciliation) count once.

Each function accepts Completion objects, raw record dicts with a
"completed_date" key, or bare dates/strings. `today` defaults to the current
UTC day and can be pinned for deterministic results.
"""

import math
from datetime import date, timedelta
from typing import Any, Iterable

from habitsync import dates


def _day_of(item: Any) -> date:
    if isinstance(item, dict):
        return dates.normalize(item["completed_date"])
    if hasattr(item, "completed_date"):
        return dates.normalize(item.completed_date)
    return dates.normalize(item)


def completed_days(completions: Iterable[Any]) -> set[date]:
    """Distinct normalized days present in the completions."""
    return {_day_of(c) for c in completions}


def current_streak(completions: Iterable[Any], today: date | None = None) -> int:
    """Count consecutive days completed, ending today or yesterday.

    Yesterday-without-today still reports the in-progress streak: today is
    not broken until it ends. Neither today nor yesterday → 0.
    """
    days = completed_days(completions)
    today = today or dates.today()
    check = today if today in days else today - timedelta(days=1)

    streak = 0
    while check in days:
        streak += 1
        check -= timedelta(days=1)
    return streak


def longest_streak(completions: Iterable[Any]) -> int:
    """Longest run of consecutive completed days in the whole history."""
    days = sorted(completed_days(completions))
    if not days:
        return 0

    best = run = 1
    for prev, curr in zip(days, days[1:]):
        if (curr - prev).days == 1:
            run += 1
            best = max(best, run)
        else:
            run = 1
    return best


def weekly_completion_rate(completions: Iterable[Any], window_days: int = 7,
                           today: date | None = None) -> int:
    """Percent (0..100, rounded) of the last `window_days` days completed."""
    if window_days <= 0:
        return 0
    days = completed_days(completions)
    window = dates.last_n_days(window_days, end=today)
    count = sum(1 for d in window if d in days)
    # round half up, not Python's banker's rounding
    return math.floor(count * 100 / window_days + 0.5)


def total_completions(completions: Iterable[Any]) -> int:
    """Number of distinct days completed."""
    return len(completed_days(completions))


def last_completion_date(completions: Iterable[Any]) -> date | None:
    days = completed_days(completions)
    return max(days) if days else None


def is_date_completed(completions: Iterable[Any], day: date | str) -> bool:
    return dates.normalize(day) in completed_days(completions)
