from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Literal, Optional

from fitquest.core.clock import iso

StreakStatus = Literal["active", "broken"]
Period = Literal["week", "month", "year", "all"]


@dataclass(frozen=True)
class PeriodStats:
    workouts: int = 0
    calories: float = 0
    minutes: float = 0

    def to_dict(self) -> dict:
        return {"workouts": self.workouts, "calories": self.calories, "minutes": self.minutes}


@dataclass(frozen=True)
class StreakState:
    current_streak: int
    longest_streak: int


@dataclass(frozen=True)
class ProgressSnapshot:
    """Statistics handed from the progress aggregator to challenges and badges."""

    total_workouts: int
    total_calories: float
    total_minutes: float
    current_streak: int
    longest_streak: int
    level: int
    experience_points: int

    def to_dict(self) -> dict:
        return {
            "totalWorkouts": self.total_workouts,
            "totalCalories": self.total_calories,
            "totalMinutes": self.total_minutes,
            "currentStreak": self.current_streak,
            "longestStreak": self.longest_streak,
            "level": self.level,
            "experiencePoints": self.experience_points,
        }


@dataclass(frozen=True)
class UserProgress:
    """
    Cumulative statistics for one user. Level is a cache of experience points.
    """

    user_id: str
    total_workouts: int = 0
    total_calories: float = 0
    total_minutes: float = 0
    current_streak: int = 0
    longest_streak: int = 0
    level: int = 1
    experience_points: int = 0
    weekly_stats: PeriodStats = field(default_factory=PeriodStats)
    monthly_stats: PeriodStats = field(default_factory=PeriodStats)
    last_workout_date: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            total_workouts=self.total_workouts,
            total_calories=self.total_calories,
            total_minutes=self.total_minutes,
            current_streak=self.current_streak,
            longest_streak=self.longest_streak,
            level=self.level,
            experience_points=self.experience_points,
        )

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "totalWorkouts": self.total_workouts,
            "totalCalories": round(self.total_calories),
            "totalMinutes": self.total_minutes,
            "currentStreak": self.current_streak,
            "longestStreak": self.longest_streak,
            "level": self.level,
            "experiencePoints": self.experience_points,
            "weeklyStats": self.weekly_stats.to_dict(),
            "monthlyStats": self.monthly_stats.to_dict(),
            "lastWorkoutDate": iso(self.last_workout_date),
            "updatedAt": iso(self.updated_at),
        }


@dataclass(frozen=True)
class WorkoutStreak:
    user_id: str
    current_streak_days: int
    longest_streak_days: int
    last_workout_date: Optional[datetime]
    streak_status: StreakStatus

    def to_dict(self) -> dict:
        return {
            "currentStreakDays": self.current_streak_days,
            "longestStreakDays": self.longest_streak_days,
            "lastWorkoutDate": iso(self.last_workout_date),
            "streakStatus": self.streak_status,
        }


@dataclass(frozen=True)
class StreakMilestone:
    next_milestone: Optional[int]
    days_remaining: int
    progress: float

    def to_dict(self) -> dict:
        return {
            "nextMilestone": self.next_milestone,
            "daysRemaining": self.days_remaining,
            "progress": self.progress,
        }


@dataclass(frozen=True)
class ProgressView:
    progress: UserProgress
    streak: Optional[WorkoutStreak]
    workout_history: list
    workouts_to_next_level: int
    streak_milestone: StreakMilestone

    def to_dict(self) -> dict:
        return {
            "progress": self.progress.to_dict(),
            "streak": self.streak.to_dict() if self.streak else None,
            "workoutHistory": [s.to_dict() for s in self.workout_history],
            "workoutsToNextLevel": self.workouts_to_next_level,
            "streakMilestone": self.streak_milestone.to_dict(),
        }


@dataclass(frozen=True)
class DailyActivity:
    day: str
    workouts: int
    calories: float
    minutes: float

    def to_dict(self) -> dict:
        return {"date": self.day, "workouts": self.workouts, "calories": self.calories, "minutes": self.minutes}


@dataclass(frozen=True)
class WorkoutStatistics:
    total_workouts: int = 0
    total_calories: float = 0
    total_minutes: float = 0
    avg_form_score: float = 0
    exercise_breakdown: Dict[str, int] = field(default_factory=dict)
    daily_activity: List[DailyActivity] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "totalWorkouts": self.total_workouts,
            "totalCalories": self.total_calories,
            "totalMinutes": self.total_minutes,
            "avgFormScore": self.avg_form_score,
            "exerciseBreakdown": dict(self.exercise_breakdown),
            "dailyActivity": [d.to_dict() for d in self.daily_activity],
        }
