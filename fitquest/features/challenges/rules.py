from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Iterable, Mapping

from fitquest.core.clock import ensure_utc
from fitquest.models.challenge import Challenge, ChallengeType, Difficulty, TimeRemaining

# Daily target thresholds per challenge type: (hard, medium)
_DIFFICULTY_THRESHOLDS = {
    ChallengeType.WORKOUT_COUNT: (2, 1),
    ChallengeType.CALORIES: (500, 300),
    ChallengeType.EXERCISE_COUNT: (50, 30),
}


def _get(entry: Any, name: str):
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


def progress_increment(challenge: Challenge, exercises: Iterable[Any]) -> float:
    """
    Amount a session contributes to ``challenge``.

    Exercise-scoped types only count exercises matching the goal's exercise
    name; an unset name matches every exercise.
    """
    if challenge.type is ChallengeType.WORKOUT_COUNT:
        return 1

    field_name = challenge.type.exercise_field
    target_name = challenge.goal.exercise_name
    total = 0
    for exercise in exercises:
        if challenge.type.filters_by_exercise and target_name:
            if _get(exercise, "exercise_name") != target_name:
                continue
        total += _get(exercise, field_name) or 0
    return total


def is_challenge_active(challenge: Challenge, now: datetime) -> bool:
    now = ensure_utc(now)
    return (
        challenge.status == "active"
        and ensure_utc(challenge.start_date) <= now <= ensure_utc(challenge.end_date)
    )


def _format_remaining(days: int, hours: int, minutes: int) -> str:
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def time_remaining(end_date: datetime, now: datetime) -> TimeRemaining:
    seconds = int((ensure_utc(end_date) - ensure_utc(now)).total_seconds())
    if seconds <= 0:
        return TimeRemaining(expired=True, days=0, hours=0, minutes=0, total_seconds=0, formatted="0m")
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60
    return TimeRemaining(
        expired=False,
        days=days,
        hours=hours,
        minutes=minutes,
        total_seconds=seconds,
        formatted=_format_remaining(days, hours, minutes),
    )


def challenge_difficulty(challenge: Challenge) -> Difficulty:
    """Rate a challenge by the daily pace its goal demands."""
    thresholds = _DIFFICULTY_THRESHOLDS.get(challenge.type)
    if thresholds is None:
        return "medium"
    span = ensure_utc(challenge.end_date) - ensure_utc(challenge.start_date)
    duration_days = math.ceil(span.total_seconds() / 86400)
    daily_target = (challenge.goal.target_value or 0) / max(duration_days, 1)
    hard, medium = thresholds
    if daily_target >= hard:
        return "hard"
    if daily_target >= medium:
        return "medium"
    return "easy"
