from __future__ import annotations

import logging
import math
from typing import Any, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError

from fitquest.core.clock import Clock, ensure_utc, utc_day, utc_now
from fitquest.core.config import settings
from fitquest.core.database import get_db_session, user_progress, workout_sessions, workout_streaks
from fitquest.core.errors import ConflictError, NotFoundError, ValidationError
from fitquest.core.logging import log_event
from fitquest.core.retry import run_with_retry
from fitquest.features.metrics.calculations import (
    XP_PER_SESSION,
    average_form_score,
    level_for_xp,
    period_start,
    round_metric,
    streak_milestone,
    streak_transition,
    total_calories,
    workout_stats,
    workouts_to_next_level,
)
from fitquest.models.progress import (
    Period,
    PeriodStats,
    ProgressSnapshot,
    ProgressView,
    UserProgress,
    WorkoutStatistics,
    WorkoutStreak,
)
from fitquest.models.workout import ExerciseEntry, WorkoutSessionRecord

logger = logging.getLogger("fitquest.progress")


def parse_exercises(exercises: Iterable[Any]) -> List[ExerciseEntry]:
    """Coerce raw exercise payloads into validated entries."""
    parsed: List[ExerciseEntry] = []
    for index, raw in enumerate(exercises or []):
        if isinstance(raw, ExerciseEntry):
            parsed.append(raw)
            continue
        try:
            parsed.append(ExerciseEntry.model_validate(raw))
        except PydanticValidationError as exc:
            first = exc.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise ValidationError(f"exercises[{index}].{location}: {first.get('msg')}") from exc
    return parsed


class ProgressService:
    """Owns cumulative statistics, the paired streak row and the session log."""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or utc_now

    def record_session(
        self,
        *,
        user_id: str,
        exercises: Iterable[Any],
        duration_minutes: float,
        workout_plan_id: Optional[str] = None,
    ) -> Tuple[WorkoutSessionRecord, ProgressSnapshot]:
        """
        Persist a session and fold it into the user's progress and streak.

        The session row, the progress row and the streak row are written in a
        single transaction; a lost race re-runs the whole operation.
        """
        entries = self._validate(user_id, exercises, duration_minutes)
        record, snapshot = run_with_retry(
            self._record_once, user_id, entries, float(duration_minutes), workout_plan_id
        )
        log_event(
            "info",
            "progress.session_recorded",
            user_id=user_id,
            event_type="workout.session",
            extra={
                "session_id": record.session_id,
                "total_workouts": snapshot.total_workouts,
                "current_streak": snapshot.current_streak,
                "level": snapshot.level,
            },
        )
        return record, snapshot

    def get_snapshot(self, user_id: str) -> Optional[ProgressSnapshot]:
        progress = self.get_user_progress(user_id)
        return progress.snapshot() if progress else None

    def get_user_progress(self, user_id: str) -> Optional[UserProgress]:
        with get_db_session() as session:
            row = session.execute(
                select(user_progress).where(user_progress.c.user_id == user_id)
            ).first()
        return self._to_progress(row) if row else None

    def get_streak(self, user_id: str) -> Optional[WorkoutStreak]:
        with get_db_session() as session:
            row = session.execute(
                select(workout_streaks).where(workout_streaks.c.user_id == user_id)
            ).first()
        if row is None:
            return None
        last = ensure_utc(row.last_workout_date)
        status = row.streak_status
        if last is not None and (utc_day(self._clock()) - utc_day(last)).days >= 2:
            status = "broken"
        return WorkoutStreak(
            user_id=row.user_id,
            current_streak_days=row.current_streak_days,
            longest_streak_days=row.longest_streak_days,
            last_workout_date=last,
            streak_status=status,
        )

    def get_progress(self, user_id: str, period: Period = "all") -> ProgressView:
        progress = self.get_user_progress(user_id)
        if progress is None:
            raise NotFoundError(f"No progress found for user {user_id}")
        history = self.workout_history(user_id, period, limit=settings.WORKOUT_HISTORY_LIMIT)
        return ProgressView(
            progress=progress,
            streak=self.get_streak(user_id),
            workout_history=history,
            workouts_to_next_level=workouts_to_next_level(progress.experience_points),
            streak_milestone=streak_milestone(progress.current_streak),
        )

    def workout_history(
        self, user_id: str, period: Period = "all", limit: Optional[int] = None
    ) -> List[WorkoutSessionRecord]:
        since = period_start(period, self._clock())
        stmt = (
            select(workout_sessions)
            .where(workout_sessions.c.user_id == user_id)
            .where(workout_sessions.c.created_at >= since)
            .order_by(workout_sessions.c.created_at.desc(), workout_sessions.c.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with get_db_session() as session:
            rows = session.execute(stmt).fetchall()
        return [self._to_session(row) for row in rows]

    def get_workout_statistics(self, user_id: str, period: Period = "all") -> WorkoutStatistics:
        return workout_stats(self.workout_history(user_id, period))

    # Internal helpers -------------------------------------------------
    @staticmethod
    def _validate(user_id: str, exercises: Iterable[Any], duration_minutes: float) -> List[ExerciseEntry]:
        if not user_id or not str(user_id).strip():
            raise ValidationError("user_id is required")
        try:
            minutes = float(duration_minutes)
        except (TypeError, ValueError):
            raise ValidationError("duration_minutes must be a number") from None
        if not math.isfinite(minutes) or minutes <= 0:
            raise ValidationError("duration_minutes must be a finite number greater than 0")
        entries = parse_exercises(exercises)
        if not entries:
            raise ValidationError("exercises must be a non-empty list")
        return entries

    def _record_once(
        self,
        user_id: str,
        entries: Sequence[ExerciseEntry],
        duration_minutes: float,
        workout_plan_id: Optional[str],
    ) -> Tuple[WorkoutSessionRecord, ProgressSnapshot]:
        now = self._clock()
        calories = round_metric(total_calories(entries))
        minutes = round_metric(duration_minutes)
        record = WorkoutSessionRecord(
            session_id=str(uuid4()),
            user_id=user_id,
            workout_plan_id=workout_plan_id,
            exercises=[entry.to_record() for entry in entries],
            duration_minutes=minutes,
            total_calories=calories,
            overall_form_score=round_metric(average_form_score(entries)),
            status="completed",
            created_at=now,
        )

        with get_db_session() as session:
            session.execute(
                insert(workout_sessions).values(
                    id=record.session_id,
                    user_id=user_id,
                    workout_plan_id=workout_plan_id,
                    duration_minutes=record.duration_minutes,
                    total_calories=record.total_calories,
                    overall_form_score=record.overall_form_score,
                    exercises=record.exercises,
                    status=record.status,
                    created_at=now,
                )
            )

            row = session.execute(
                select(user_progress).where(user_progress.c.user_id == user_id)
            ).first()
            current = self._to_progress(row) if row else UserProgress(user_id=user_id)

            streak = streak_transition(
                current.last_workout_date, current.current_streak, current.longest_streak, now
            )
            xp = current.experience_points + XP_PER_SESSION
            last_workout = now
            if current.last_workout_date and current.last_workout_date > now:
                last_workout = current.last_workout_date

            values = dict(
                total_workouts=current.total_workouts + 1,
                total_calories=round_metric(current.total_calories + calories),
                total_minutes=round_metric(current.total_minutes + minutes),
                current_streak=streak.current_streak,
                longest_streak=streak.longest_streak,
                level=level_for_xp(xp),
                experience_points=xp,
                weekly_workouts=current.weekly_stats.workouts + 1,
                weekly_calories=round_metric(current.weekly_stats.calories + calories),
                weekly_minutes=round_metric(current.weekly_stats.minutes + minutes),
                monthly_workouts=current.monthly_stats.workouts + 1,
                monthly_calories=round_metric(current.monthly_stats.calories + calories),
                monthly_minutes=round_metric(current.monthly_stats.minutes + minutes),
                last_workout_date=last_workout,
                updated_at=now,
            )
            streak_values = dict(
                current_streak_days=streak.current_streak,
                longest_streak_days=streak.longest_streak,
                last_workout_date=last_workout,
                streak_status="active" if streak.current_streak > 0 else "broken",
                updated_at=now,
            )

            if row is None:
                try:
                    session.execute(
                        insert(user_progress).values(user_id=user_id, version=1, created_at=now, **values)
                    )
                    session.execute(insert(workout_streaks).values(user_id=user_id, **streak_values))
                except IntegrityError as exc:
                    raise ConflictError(f"Progress for user {user_id} created concurrently") from exc
            else:
                result = session.execute(
                    update(user_progress)
                    .where(user_progress.c.user_id == user_id)
                    .where(user_progress.c.version == current.version)
                    .values(version=current.version + 1, **values)
                )
                if result.rowcount != 1:
                    raise ConflictError(f"Progress for user {user_id} changed concurrently")
                streak_result = session.execute(
                    update(workout_streaks)
                    .where(workout_streaks.c.user_id == user_id)
                    .values(**streak_values)
                )
                if streak_result.rowcount != 1:
                    session.execute(insert(workout_streaks).values(user_id=user_id, **streak_values))

        snapshot = ProgressSnapshot(
            total_workouts=values["total_workouts"],
            total_calories=values["total_calories"],
            total_minutes=values["total_minutes"],
            current_streak=values["current_streak"],
            longest_streak=values["longest_streak"],
            level=values["level"],
            experience_points=values["experience_points"],
        )
        return record, snapshot

    @staticmethod
    def _to_progress(row) -> UserProgress:
        return UserProgress(
            user_id=row.user_id,
            total_workouts=row.total_workouts,
            total_calories=row.total_calories,
            total_minutes=row.total_minutes,
            current_streak=row.current_streak,
            longest_streak=row.longest_streak,
            level=row.level,
            experience_points=row.experience_points,
            weekly_stats=PeriodStats(row.weekly_workouts, row.weekly_calories, row.weekly_minutes),
            monthly_stats=PeriodStats(row.monthly_workouts, row.monthly_calories, row.monthly_minutes),
            last_workout_date=ensure_utc(row.last_workout_date),
            updated_at=ensure_utc(row.updated_at),
            version=row.version,
        )

    @staticmethod
    def _to_session(row) -> WorkoutSessionRecord:
        return WorkoutSessionRecord(
            session_id=row.id,
            user_id=row.user_id,
            workout_plan_id=row.workout_plan_id,
            exercises=list(row.exercises or []),
            duration_minutes=row.duration_minutes,
            total_calories=row.total_calories,
            overall_form_score=row.overall_form_score,
            status=row.status,
            created_at=ensure_utc(row.created_at),
        )


# Singleton service used by the engine facade
progress_service = ProgressService()
