import pytest

from fitquest.core.config import settings
from fitquest.core.errors import ConflictError, NotFoundError, ValidationError
from fitquest.features.progress import service as progress_module
from fitquest.features.progress.service import ProgressService


@pytest.fixture
def service(clock):
    return ProgressService(clock=clock)


def test_first_session_creates_progress(service, push_ups):
    """45 minutes of push-ups: 30 reps, 50 calories, form 85."""
    record, snapshot = service.record_session(
        user_id="u1", exercises=[push_ups()], duration_minutes=45
    )

    assert snapshot.total_workouts == 1
    assert snapshot.total_calories == 50
    assert snapshot.total_minutes == 45
    assert snapshot.current_streak == 1
    assert snapshot.longest_streak == 1
    assert snapshot.level == 1
    assert snapshot.experience_points == 50

    assert record.total_calories == 50
    assert record.overall_form_score == 85
    assert record.exercises[0]["exercise_name"] == "Push-ups"

    progress = service.get_user_progress("u1")
    assert progress.weekly_stats.workouts == 1
    assert progress.monthly_stats.minutes == 45

    streak = service.get_streak("u1")
    assert streak.current_streak_days == 1
    assert streak.streak_status == "active"


def test_session_is_persisted(service, push_ups):
    record, _ = service.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=30)

    history = service.workout_history("u1")

    assert [s.session_id for s in history] == [record.session_id]
    assert history[0].status == "completed"


def test_consecutive_days_extend_streak(service, clock, push_ups):
    for _ in range(3):
        _, snapshot = service.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=20)
        clock.advance(days=1)

    assert snapshot.current_streak == 3
    assert snapshot.longest_streak == 3


def test_same_day_sessions_count_workouts_not_streak(service, clock, push_ups):
    service.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=20)
    clock.advance(hours=2)
    _, snapshot = service.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=20)

    assert snapshot.total_workouts == 2
    assert snapshot.current_streak == 1
    assert snapshot.total_calories == 100


def test_gap_resets_streak_and_keeps_longest(service, clock, push_ups):
    for _ in range(4):
        service.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=20)
        clock.advance(days=1)
    clock.advance(days=2)

    _, snapshot = service.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=20)

    assert snapshot.current_streak == 1
    assert snapshot.longest_streak == 4


def test_streak_reported_broken_after_idle_days(service, clock, push_ups):
    service.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=20)
    clock.advance(days=3)

    assert service.get_streak("u1").streak_status == "broken"


def test_level_follows_xp(service, push_ups):
    for _ in range(10):
        _, snapshot = service.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=10)

    assert snapshot.experience_points == 500
    assert snapshot.level == 2


@pytest.mark.parametrize(
    "kwargs",
    [
        {"user_id": "", "duration_minutes": 30},
        {"user_id": "   ", "duration_minutes": 30},
        {"user_id": "u1", "duration_minutes": 0},
        {"user_id": "u1", "duration_minutes": -5},
        {"user_id": "u1", "duration_minutes": float("nan")},
        {"user_id": "u1", "duration_minutes": float("inf")},
        {"user_id": "u1", "duration_minutes": None},
        {"user_id": "u1", "duration_minutes": "half an hour"},
    ],
)
def test_invalid_session_arguments_persist_nothing(service, push_ups, kwargs):
    with pytest.raises(ValidationError):
        service.record_session(exercises=[push_ups()], **kwargs)

    assert service.get_user_progress("u1") is None
    assert service.workout_history("u1") == []


@pytest.mark.parametrize(
    "exercise",
    [
        {"exerciseName": "Push-ups", "totalReps": -1},
        {"exerciseName": "Push-ups", "caloriesBurned": -10},
        {"exerciseName": "Push-ups", "caloriesBurned": float("nan")},
        {"exerciseName": "Push-ups", "durationSeconds": float("inf")},
        {"exerciseName": "Push-ups", "averageFormScore": 101},
        {"exerciseName": ""},
        {"totalReps": 10},
    ],
)
def test_invalid_exercises_persist_nothing(service, exercise):
    with pytest.raises(ValidationError):
        service.record_session(user_id="u1", exercises=[exercise], duration_minutes=30)

    assert service.get_user_progress("u1") is None


def test_empty_exercise_list_is_rejected(service):
    with pytest.raises(ValidationError):
        service.record_session(user_id="u1", exercises=[], duration_minutes=30)


def test_get_progress_requires_existing_user(service):
    with pytest.raises(NotFoundError):
        service.get_progress("nobody")


def test_get_progress_view(service, push_ups):
    service.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=45)

    view = service.get_progress("u1")

    assert view.progress.total_workouts == 1
    assert len(view.workout_history) == 1
    assert view.workouts_to_next_level == 9
    assert view.streak_milestone.next_milestone == 7
    payload = view.to_dict()
    assert payload["progress"]["totalCalories"] == 50
    assert payload["streak"]["currentStreakDays"] == 1


def test_history_respects_period(service, clock, push_ups):
    service.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=20)
    clock.advance(days=10)
    service.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=20)

    assert len(service.workout_history("u1", "week")) == 1
    assert len(service.workout_history("u1", "month")) == 2
    assert len(service.workout_history("u1", "all")) == 2

    with pytest.raises(ValidationError):
        service.workout_history("u1", "decade")


def test_workout_statistics(service, push_ups):
    squats = {"exerciseName": "Squats", "totalReps": 20, "caloriesBurned": 30, "averageFormScore": 75}
    service.record_session(user_id="u1", exercises=[push_ups(), squats], duration_minutes=30)
    service.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=15)

    stats = service.get_workout_statistics("u1", "week")

    assert stats.total_workouts == 2
    assert stats.total_calories == 130
    assert stats.total_minutes == 45
    assert stats.exercise_breakdown == {"Push-ups": 2, "Squats": 1}


def test_lost_race_is_retried_and_rolled_back(service, monkeypatch, push_ups):
    """A conflict after the session insert must not leave a duplicate session behind."""
    service.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=20)

    real_level_for_xp = progress_module.level_for_xp
    calls = {"n": 0}

    def flaky_level_for_xp(xp):
        calls["n"] += 1
        if calls["n"] == 1:
            raise ConflictError("simulated version race")
        return real_level_for_xp(xp)

    monkeypatch.setattr(progress_module, "level_for_xp", flaky_level_for_xp)

    _, snapshot = service.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=20)

    assert calls["n"] == 2
    assert snapshot.total_workouts == 2
    assert service.get_user_progress("u1").total_workouts == 2
    assert len(service.workout_history("u1")) == 2


def test_conflict_surfaces_after_retries_exhausted(service, monkeypatch, push_ups):
    monkeypatch.setattr(settings, "TXN_MAX_ATTEMPTS", 2)
    calls = {"n": 0}

    def always_conflict(xp):
        calls["n"] += 1
        raise ConflictError("simulated version race")

    monkeypatch.setattr(progress_module, "level_for_xp", always_conflict)

    with pytest.raises(ConflictError):
        service.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=20)

    assert calls["n"] == 2
    assert service.get_user_progress("u1") is None
    assert service.workout_history("u1") == []
