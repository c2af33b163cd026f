"""Derived statistics over mirrored habits and completions.

Pure functions; archived habits are left out of every aggregate. Completions
for habits that are not in `habits` are ignored, so orphans never count.
"""

import math
from collections import defaultdict
from datetime import date, timedelta
from typing import Iterable

from habitsync import dates, streaks
from habitsync.models import Completion, Habit, HabitCategory


def _pct(part: float, whole: float) -> int:
    return math.floor(part * 100 / whole + 0.5) if whole else 0


def _days_by_habit(completions: Iterable[Completion]) -> dict[str, set[date]]:
    result: dict[str, set[date]] = defaultdict(set)
    for c in completions:
        result[c.habit_id].add(dates.normalize(c.completed_date))
    return result


def _active(habits: Iterable[Habit]) -> list[Habit]:
    return [h for h in habits if not h.archived]


def habit_stats(completions: Iterable[Completion], today: date | None = None) -> dict:
    """Streak-engine numbers for one habit's completions."""
    days = streaks.completed_days(completions)
    return {
        "current_streak": streaks.current_streak(days, today=today),
        "longest_streak": streaks.longest_streak(days),
        "weekly_rate": streaks.weekly_completion_rate(days, 7, today=today),
        "monthly_rate": streaks.weekly_completion_rate(days, 30, today=today),
        "total_days": len(days),
    }


def overview(habits: Iterable[Habit], completions: Iterable[Completion],
             today: date | None = None) -> dict:
    """Headline numbers across all active habits."""
    today = today or dates.today()
    active = _active(habits)
    by_habit = _days_by_habit(completions)

    per_habit = [habit_stats(by_habit.get(h.id, set()), today=today) for h in active]
    return {
        "total_habits": len(active),
        "today_completed": sum(1 for h in active if today in by_habit.get(h.id, ())),
        "best_streak": max((s["longest_streak"] for s in per_habit), default=0),
        "avg_weekly": (
            math.floor(sum(s["weekly_rate"] for s in per_habit) / len(per_habit) + 0.5)
            if per_habit else 0
        ),
    }


def daily_counts(habits: Iterable[Habit], completions: Iterable[Completion],
                 days: int = 28, today: date | None = None) -> list[dict]:
    """Active habits completed per day for the last N days.

    Returns: [{"date": "2026-10-01", "count": 3}, ...] ordered oldest→newest.
    Always returns exactly `days` entries (count=0 for empty days).
    """
    active = _active(habits)
    by_habit = _days_by_habit(completions)
    result = []
    for d in dates.last_n_days(days, end=today):
        count = sum(1 for h in active if d in by_habit.get(h.id, ()))
        result.append({"date": d.isoformat(), "count": count})
    return result


def weekly_trend(completions: Iterable[Completion], weeks: int = 8,
                 today: date | None = None) -> list[dict]:
    """7-day completion rate for each of the last N trailing weeks, oldest first."""
    today = today or dates.today()
    days = streaks.completed_days(completions)
    trend = []
    for w in range(weeks - 1, -1, -1):
        end = today - timedelta(days=w * 7)
        count = sum(1 for d in dates.last_n_days(7, end=end) if d in days)
        trend.append({"week": f"W{weeks - w}", "rate": _pct(count, 7)})
    return trend


def _week_days(today: date, weeks_ago: int) -> list[date]:
    # Weeks start on Sunday
    start = today - timedelta(days=(today.weekday() + 1) % 7 + weeks_ago * 7)
    return [start + timedelta(days=i) for i in range(7)]


def _change(this_week: int, last_week: int) -> int:
    if last_week:
        return _pct(this_week - last_week, last_week)
    return 100 if this_week else 0


def week_over_week(habits: Iterable[Habit], completions: Iterable[Completion],
                   today: date | None = None) -> dict:
    """This calendar week vs last, per active habit and in total."""
    today = today or dates.today()
    this_days = _week_days(today, 0)
    last_days = _week_days(today, 1)
    by_habit = _days_by_habit(completions)

    rows = []
    for h in _active(habits):
        done = by_habit.get(h.id, set())
        this_week = sum(1 for d in this_days if d in done)
        last_week = sum(1 for d in last_days if d in done)
        rows.append({
            "habit_id": h.id,
            "name": h.name,
            "this_week": this_week,
            "last_week": last_week,
            "change": _change(this_week, last_week),
        })

    total_this = sum(r["this_week"] for r in rows)
    total_last = sum(r["last_week"] for r in rows)
    return {
        "habits": rows,
        "this_week": total_this,
        "last_week": total_last,
        "change": _change(total_this, total_last),
    }


def category_breakdown(habits: Iterable[Habit]) -> list[dict]:
    """Active habit count per category, in category order, empty ones omitted."""
    counts: dict[HabitCategory, int] = defaultdict(int)
    for h in _active(habits):
        counts[h.category] += 1
    return [
        {"category": cat.value, "count": counts[cat]}
        for cat in HabitCategory if counts.get(cat)
    ]


def daily_summary(habits: Iterable[Habit], completions: Iterable[Completion],
                  today: date | None = None) -> dict:
    """Compact snapshot: what's done today, what's due, top streaks."""
    today = today or dates.today()
    active = _active(habits)
    if not active:
        return {}  # No habits defined, nothing to report

    by_habit = _days_by_habit(completions)
    logged_today = [h for h in active if today in by_habit.get(h.id, ())]
    due_today = [h.name for h in active if today not in by_habit.get(h.id, ())]

    # Top streaks (≥2 days, sorted descending)
    top_streaks = sorted(
        [{"name": h.name,
          "streak_days": streaks.current_streak(by_habit.get(h.id, set()), today=today)}
         for h in active],
        key=lambda x: x["streak_days"],
        reverse=True,
    )
    top_streaks = [s for s in top_streaks if s["streak_days"] >= 2][:3]

    parts = [f"{len(logged_today)}/{len(active)} habits done today"]
    if top_streaks:
        top = top_streaks[0]
        parts.append(f"{top['streak_days']}-day {top['name']} streak")

    result: dict = {
        "active_habits": len(active),
        "logged_today": len(logged_today),
        "summary": ", ".join(parts),
    }
    if due_today:
        result["due_today"] = due_today
    if top_streaks:
        result["streaks"] = top_streaks
    return result
