"""
Pure metric calculations shared by the progress, challenge and badge services.

No persistence and no clock access: every time-dependent function takes the
reference instant as an argument.
"""
from __future__ import annotations

import math
from collections import Counter, OrderedDict
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Mapping, Optional, Sequence

from fitquest.core.clock import ensure_utc, utc_day
from fitquest.core.errors import ValidationError
from fitquest.models.progress import DailyActivity, StreakMilestone, StreakState, WorkoutStatistics

XP_PER_SESSION = 50
XP_PER_LEVEL = 500
STREAK_MILESTONES = (7, 14, 30, 60, 100, 365)
PERIODS = ("week", "month", "year", "all")


def _field(entry: Any, name: str) -> float:
    """Read a numeric field from an exercise entry or mapping; missing counts as 0."""
    if isinstance(entry, Mapping):
        value = entry.get(name)
    else:
        value = getattr(entry, name, None)
    return value or 0


def round_metric(value: float) -> float:
    """Fixed-precision rule for stored calories, minutes and form scores."""
    return round(float(value or 0), 2)


def total_calories(exercises: Iterable[Any]) -> float:
    return sum(_field(ex, "calories_burned") for ex in exercises)


def average_form_score(exercises: Sequence[Any]) -> float:
    if not exercises:
        return 0
    return sum(_field(ex, "average_form_score") for ex in exercises) / len(exercises)


def streak_transition(
    last_workout_date: Optional[datetime],
    current_streak: int,
    longest_streak: int,
    today: datetime,
) -> StreakState:
    """
    Next streak state for a workout recorded ``today``.

    Days are compared on UTC calendar boundaries: same day keeps the streak,
    the next day extends it, any longer gap restarts it at 1.
    """
    current = current_streak or 0
    if last_workout_date is None:
        new_streak = 1
    else:
        days_diff = (utc_day(today) - utc_day(last_workout_date)).days
        if days_diff <= 0:
            # Same-day repeat (or an out-of-order event) never inflates the streak
            new_streak = max(current, 1)
        elif days_diff == 1:
            new_streak = current + 1
        else:
            new_streak = 1
    return StreakState(current_streak=new_streak, longest_streak=max(new_streak, longest_streak or 0))


def level_for_xp(xp: int) -> int:
    return max(int(xp), 0) // XP_PER_LEVEL + 1


def xp_to_next_level(xp: int) -> int:
    return level_for_xp(xp) * XP_PER_LEVEL - max(int(xp), 0)


def workouts_to_next_level(xp: int, xp_per_workout: int = XP_PER_SESSION) -> int:
    return math.ceil(xp_to_next_level(xp) / xp_per_workout)


def completion_percentage(current: float, target: float) -> float:
    if not target or target <= 0:
        return 0
    return min(round(current / target * 100, 2), 100)


def streak_milestone(current_streak: int) -> StreakMilestone:
    for milestone in STREAK_MILESTONES:
        if current_streak < milestone:
            return StreakMilestone(
                next_milestone=milestone,
                days_remaining=milestone - current_streak,
                progress=round(current_streak / milestone * 100, 2),
            )
    return StreakMilestone(next_milestone=None, days_remaining=0, progress=100)


def _months_back(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 - months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    # Clamp the day for shorter months (e.g. March 31 -> February 28)
    next_month_first = date(year + (month // 12), month % 12 + 1, 1)
    last_day = (next_month_first - timedelta(days=1)).day
    return moment.replace(year=year, month=month, day=min(moment.day, last_day))


def period_start(period: str, now: datetime) -> datetime:
    """Start of the reporting window ending at ``now``."""
    now = ensure_utc(now)
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return _months_back(now, 1)
    if period == "year":
        return _months_back(now, 12)
    if period == "all":
        return _months_back(now, 120)
    raise ValidationError(f"Unknown period '{period}'. Expected one of: {', '.join(PERIODS)}")


def workout_stats(sessions: Sequence[Any]) -> WorkoutStatistics:
    """Aggregate stored sessions into totals, per-exercise counts and daily activity."""
    if not sessions:
        return WorkoutStatistics()

    calories = 0.0
    minutes = 0.0
    form_total = 0.0
    breakdown: Counter = Counter()
    daily: "OrderedDict[str, list]" = OrderedDict()

    for session in sorted(sessions, key=lambda s: s.created_at):
        calories += session.total_calories or 0
        minutes += session.duration_minutes or 0
        form_total += session.overall_form_score or 0
        for exercise in session.exercises or []:
            name = exercise.get("exercise_name") if isinstance(exercise, Mapping) else None
            if name:
                breakdown[name] += 1
        day_key = utc_day(session.created_at).isoformat()
        bucket = daily.setdefault(day_key, [0, 0.0, 0.0])
        bucket[0] += 1
        bucket[1] += session.total_calories or 0
        bucket[2] += session.duration_minutes or 0

    return WorkoutStatistics(
        total_workouts=len(sessions),
        total_calories=round_metric(calories),
        total_minutes=round_metric(minutes),
        avg_form_score=round(form_total / len(sessions), 2),
        exercise_breakdown=dict(breakdown),
        daily_activity=[
            DailyActivity(day=day, workouts=w, calories=round_metric(c), minutes=round_metric(m))
            for day, (w, c, m) in daily.items()
        ],
    )
