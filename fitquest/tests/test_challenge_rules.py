from datetime import datetime, timedelta, timezone

from fitquest.features.challenges.rules import (
    challenge_difficulty,
    is_challenge_active,
    progress_increment,
    time_remaining,
)
from fitquest.models.challenge import Challenge, ChallengeGoal, ChallengeType

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)

EXERCISES = [
    {"exercise_name": "Push-ups", "total_reps": 25, "calories_burned": 40, "duration_seconds": 60},
    {"exercise_name": "Squats", "total_reps": 15, "calories_burned": 30, "duration_seconds": 90},
    {"exercise_name": "Push-ups", "total_reps": 10, "calories_burned": 10},
]


def _challenge(type_, target=100, exercise_name=None, days=30, status="active", start=None):
    start = start or NOW - timedelta(days=1)
    return Challenge(
        challenge_id="c1",
        name="c1",
        type=ChallengeType(type_),
        goal=ChallengeGoal(target_value=target, exercise_name=exercise_name),
        status=status,
        start_date=start,
        end_date=start + timedelta(days=days),
    )


def test_exercise_count_sums_matching_reps():
    assert progress_increment(_challenge("exercise_count", exercise_name="Push-ups"), EXERCISES) == 35


def test_exercise_count_without_name_matches_every_exercise():
    assert progress_increment(_challenge("exercise_count"), EXERCISES) == 50


def test_duration_sums_matching_seconds_and_treats_missing_as_zero():
    assert progress_increment(_challenge("duration", exercise_name="Push-ups"), EXERCISES) == 60


def test_calories_ignore_exercise_filter():
    assert progress_increment(_challenge("calories", exercise_name="Push-ups"), EXERCISES) == 80


def test_workout_count_always_contributes_one():
    assert progress_increment(_challenge("workout_count"), EXERCISES) == 1
    assert progress_increment(_challenge("workout_count"), []) == 1


def test_time_remaining_formats():
    long_left = time_remaining(NOW + timedelta(days=2, hours=3, minutes=5), NOW)
    assert (long_left.days, long_left.hours, long_left.minutes) == (2, 3, 5)
    assert long_left.formatted == "2d 3h"
    assert long_left.expired is False

    assert time_remaining(NOW + timedelta(hours=3, minutes=5), NOW).formatted == "3h 5m"
    assert time_remaining(NOW + timedelta(minutes=5, seconds=30), NOW).formatted == "5m"


def test_time_remaining_expired():
    result = time_remaining(NOW - timedelta(minutes=1), NOW)
    assert result.expired is True
    assert result.total_seconds == 0


def test_difficulty_by_daily_target():
    assert challenge_difficulty(_challenge("workout_count", target=60, days=30)) == "hard"
    assert challenge_difficulty(_challenge("workout_count", target=30, days=30)) == "medium"
    assert challenge_difficulty(_challenge("calories", target=6000, days=30)) == "easy"
    assert challenge_difficulty(_challenge("exercise_count", target=900, days=30)) == "medium"
    assert challenge_difficulty(_challenge("duration", target=10, days=1)) == "medium"


def test_is_challenge_active():
    assert is_challenge_active(_challenge("calories"), NOW) is True
    assert is_challenge_active(_challenge("calories", status="cancelled"), NOW) is False
    assert is_challenge_active(_challenge("calories", start=NOW + timedelta(days=1)), NOW) is False
