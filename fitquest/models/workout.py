from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ExerciseEntry(BaseModel):
    """One pre-scored exercise inside a submitted workout session."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, allow_inf_nan=False)

    exercise_name: str = Field(alias="exerciseName", min_length=1)
    total_reps: int = Field(default=0, alias="totalReps", ge=0)
    calories_burned: float = Field(default=0, alias="caloriesBurned", ge=0)
    average_form_score: float = Field(default=0, alias="averageFormScore", ge=0, le=100)
    duration_seconds: Optional[float] = Field(default=None, alias="durationSeconds", ge=0)

    def to_record(self) -> dict:
        return self.model_dump(by_alias=False)


@dataclass(frozen=True)
class WorkoutSessionRecord:
    """Immutable stored workout session."""

    session_id: str
    user_id: str
    workout_plan_id: Optional[str]
    exercises: List[dict]
    duration_minutes: float
    total_calories: float
    overall_form_score: float
    status: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.session_id,
            "user_id": self.user_id,
            "workout_plan_id": self.workout_plan_id,
            "exercises": list(self.exercises),
            "duration_minutes": self.duration_minutes,
            "total_calories": self.total_calories,
            "overall_form_score": self.overall_form_score,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class SessionResult:
    """Response for a recorded session."""

    session_id: str
    total_calories: int
    avg_form_score: float
    badges_earned: list = field(default_factory=list)
    challenges_completed: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "totalCalories": self.total_calories,
            "avgFormScore": self.avg_form_score,
            "badgesEarned": [badge.to_dict() for badge in self.badges_earned],
            "challengesCompleted": [c.to_dict() for c in self.challenges_completed],
        }
