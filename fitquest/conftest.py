# fitquest/conftest.py
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import insert

from fitquest.core.config import settings
from fitquest.core.database import (
    badges,
    challenges,
    create_all_tables,
    dispose_engine,
    drop_all_tables,
    get_db_session,
    init_engine,
)


class FakeClock:
    """Controllable clock; call it like ``utc_now``."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def db(monkeypatch):
    """
    Fresh in-memory SQLite database for every test.

    Retry backoff is shrunk to zero so conflict tests do not sleep.
    """
    monkeypatch.setattr(settings, "TXN_RETRY_MIN_WAIT_SECONDS", 0.0)
    monkeypatch.setattr(settings, "TXN_RETRY_MAX_WAIT_SECONDS", 0.0)

    init_engine("sqlite://")
    create_all_tables()
    yield
    drop_all_tables()
    dispose_engine()


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def make_challenge(clock):
    """Insert challenge metadata directly; challenges are managed outside the engine."""

    def _make(
        challenge_id="push-100",
        *,
        type="exercise_count",
        target=100,
        exercise_name="Push-ups",
        status="active",
        reward_points=100,
        start=None,
        end=None,
        participant_count=0,
        name=None,
    ):
        start = start or clock.now - timedelta(days=1)
        end = end or clock.now + timedelta(days=30)
        with get_db_session() as session:
            session.execute(
                insert(challenges).values(
                    id=challenge_id,
                    name=name or challenge_id,
                    description=f"{challenge_id} challenge",
                    type=type,
                    goal_target_value=target,
                    goal_exercise_name=exercise_name,
                    status=status,
                    start_date=start,
                    end_date=end,
                    reward_points=reward_points,
                    reward_badges=[],
                    participant_count=participant_count,
                    created_at=clock.now,
                )
            )
        return challenge_id

    return _make


@pytest.fixture
def make_badge(clock):
    def _make(badge_id, condition_type, condition_value, *, points=25, name=None, tier="common"):
        with get_db_session() as session:
            session.execute(
                insert(badges).values(
                    id=badge_id,
                    name=name or badge_id,
                    description=f"{badge_id} badge",
                    category="milestone",
                    tier=tier,
                    points=points,
                    condition_type=condition_type,
                    condition_value=condition_value,
                    created_at=clock.now,
                )
            )
        return badge_id

    return _make


@pytest.fixture
def push_ups():
    """Factory for a Push-ups exercise entry in the camelCase wire shape."""

    def _make(reps=30, calories=50, form=85, **extra):
        entry = {
            "exerciseName": "Push-ups",
            "totalReps": reps,
            "caloriesBurned": calories,
            "averageFormScore": form,
        }
        entry.update(extra)
        return entry

    return _make
