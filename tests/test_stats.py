"""Tests for derived statistics."""

from datetime import date, timedelta

from habitsync import stats
from habitsync.models import Completion, Habit, HabitCategory

TODAY = date(2026, 10, 18)  # a Sunday


def _habit(habit_id: str, name: str = "", category: str = "other", archived: bool = False) -> Habit:
    return Habit(id=habit_id, name=name or habit_id, user_id="u1",
                 category=HabitCategory(category), archived=archived)


def _done(habit_id: str, *days_ago: int) -> list[Completion]:
    return [
        Completion(id=f"{habit_id}_{n}", habit_id=habit_id,
                   completed_date=TODAY - timedelta(days=n), user_id="u1")
        for n in days_ago
    ]


class TestHabitStats:
    def test_numbers(self):
        s = stats.habit_stats(_done("a", 0, 1, 2, 5), today=TODAY)
        assert s == {
            "current_streak": 3,
            "longest_streak": 3,
            "weekly_rate": 57,
            "monthly_rate": 13,
            "total_days": 4,
        }

    def test_empty(self):
        s = stats.habit_stats([], today=TODAY)
        assert s["current_streak"] == 0
        assert s["weekly_rate"] == 0


class TestOverview:
    def test_archived_habits_excluded(self):
        habits = [_habit("a"), _habit("b"), _habit("c", archived=True)]
        completions = _done("a", 0, 1) + _done("c", *range(10))
        o = stats.overview(habits, completions, today=TODAY)
        assert o == {
            "total_habits": 2,
            "today_completed": 1,
            "best_streak": 2,
            "avg_weekly": 15,  # (29 + 0) / 2 rounds half up
        }

    def test_no_habits(self):
        assert stats.overview([], [], today=TODAY) == {
            "total_habits": 0, "today_completed": 0, "best_streak": 0, "avg_weekly": 0,
        }

    def test_orphan_completions_ignored(self):
        o = stats.overview([_habit("a")], _done("ghost", 0), today=TODAY)
        assert o["today_completed"] == 0


class TestSeries:
    def test_daily_counts(self):
        habits = [_habit("a"), _habit("b"), _habit("c", archived=True)]
        completions = _done("a", 0, 2) + _done("b", 0) + _done("c", 1)
        counts = stats.daily_counts(habits, completions, days=3, today=TODAY)
        assert counts == [
            {"date": "2026-10-16", "count": 1},
            {"date": "2026-10-17", "count": 0},
            {"date": "2026-10-18", "count": 2},
        ]

    def test_weekly_trend(self):
        trend = stats.weekly_trend(_done("a", *range(7)), weeks=2, today=TODAY)
        assert trend == [{"week": "W1", "rate": 0}, {"week": "W2", "rate": 100}]

    def test_weekly_trend_length(self):
        assert len(stats.weekly_trend([], today=TODAY)) == 8


class TestWeekOverWeek:
    def test_per_habit_and_total(self):
        habits = [_habit("a", "Read"), _habit("b", "Run")]
        # this week is Sunday 10-18 onwards; last week is 10-11..10-17
        completions = _done("a", 0, 1, 2) + _done("b", 0)
        result = stats.week_over_week(habits, completions, today=TODAY)

        rows = {r["habit_id"]: r for r in result["habits"]}
        assert rows["a"] == {"habit_id": "a", "name": "Read",
                             "this_week": 1, "last_week": 2, "change": -50}
        assert rows["b"]["change"] == 100
        assert result["this_week"] == 2
        assert result["last_week"] == 2
        assert result["change"] == 0

    def test_nothing_either_week(self):
        result = stats.week_over_week([_habit("a")], [], today=TODAY)
        assert result["change"] == 0


class TestCategoryBreakdown:
    def test_counts_in_category_order(self):
        habits = [
            _habit("a", category="learning"),
            _habit("b", category="health"),
            _habit("c", category="learning"),
            _habit("d", category="finance", archived=True),
        ]
        assert stats.category_breakdown(habits) == [
            {"category": "health", "count": 1},
            {"category": "learning", "count": 2},
        ]


class TestDailySummary:
    def test_no_habits(self):
        assert stats.daily_summary([], [], today=TODAY) == {}

    def test_summary(self):
        habits = [_habit("a", "Meditate"), _habit("b", "Run"), _habit("c", "Read")]
        completions = _done("a", 0, 1, 2, 3) + _done("b", 1, 2)
        result = stats.daily_summary(habits, completions, today=TODAY)

        assert result["active_habits"] == 3
        assert result["logged_today"] == 1
        assert result["due_today"] == ["Run", "Read"]
        assert result["streaks"] == [
            {"name": "Meditate", "streak_days": 4},
            {"name": "Run", "streak_days": 2},
        ]
        assert result["summary"] == "1/3 habits done today, 4-day Meditate streak"

    def test_all_done_has_no_due_list(self):
        result = stats.daily_summary([_habit("a")], _done("a", 0), today=TODAY)
        assert "due_today" not in result
        assert "streaks" not in result
