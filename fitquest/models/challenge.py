from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from fitquest.core.clock import iso

ChallengeStatus = Literal["active", "completed", "cancelled", "deleted"]
ParticipantStatus = Literal["in_progress", "completed", "abandoned"]
Difficulty = Literal["easy", "medium", "hard"]


class ChallengeType(str, Enum):
    """Closed set of challenge kinds and the exercise field each one sums."""

    EXERCISE_COUNT = "exercise_count"
    CALORIES = "calories"
    DURATION = "duration"
    WORKOUT_COUNT = "workout_count"

    @property
    def exercise_field(self) -> Optional[str]:
        return {
            ChallengeType.EXERCISE_COUNT: "total_reps",
            ChallengeType.CALORIES: "calories_burned",
            ChallengeType.DURATION: "duration_seconds",
            ChallengeType.WORKOUT_COUNT: None,
        }[self]

    @property
    def filters_by_exercise(self) -> bool:
        return self in (ChallengeType.EXERCISE_COUNT, ChallengeType.DURATION)


@dataclass(frozen=True)
class ChallengeGoal:
    target_value: float
    exercise_name: Optional[str] = None


@dataclass(frozen=True)
class Challenge:
    """Challenge metadata as read by the engine."""

    challenge_id: str
    name: str
    type: ChallengeType
    goal: ChallengeGoal
    status: ChallengeStatus
    start_date: datetime
    end_date: datetime
    reward_points: int = 0
    reward_badges: List[str] = field(default_factory=list)
    participant_count: int = 0
    description: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.challenge_id,
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "goal": {"targetValue": self.goal.target_value, "exerciseName": self.goal.exercise_name},
            "status": self.status,
            "startDate": iso(self.start_date),
            "endDate": iso(self.end_date),
            "rewards": {"points": self.reward_points, "badges": list(self.reward_badges)},
            "participantCount": self.participant_count,
            "createdAt": iso(self.created_at),
        }


@dataclass(frozen=True)
class ChallengeParticipant:
    participant_id: int
    user_id: str
    challenge_id: str
    progress: float
    status: ParticipantStatus
    created_at: datetime
    completed_at: Optional[datetime] = None
    version: int = 1


@dataclass(frozen=True)
class JoinResult:
    participant_id: str
    joined: bool = False
    rejoined: bool = False

    def to_dict(self) -> dict:
        key = "rejoined" if self.rejoined else "joined"
        return {key: True, "participantId": self.participant_id}


@dataclass(frozen=True)
class LeaveResult:
    success: bool = True

    def to_dict(self) -> dict:
        return {"success": self.success}


@dataclass(frozen=True)
class ChallengeCompletion:
    """Emitted once, when a participation transitions to completed."""

    challenge_id: str
    challenge_name: str
    progress: float
    reward_points: int
    completed_at: datetime

    def to_dict(self) -> dict:
        return {
            "challengeId": self.challenge_id,
            "name": self.challenge_name,
            "progress": self.progress,
            "rewardPoints": self.reward_points,
            "completedAt": iso(self.completed_at),
        }


@dataclass(frozen=True)
class ChallengeWithUserProgress:
    challenge: Challenge
    user_progress: float
    user_status: ParticipantStatus
    completion_percentage: float
    joined_at: datetime
    completed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        payload = self.challenge.to_dict()
        payload.update(
            {
                "userProgress": self.user_progress,
                "userStatus": self.user_status,
                "completionPercentage": self.completion_percentage,
                "joinedAt": iso(self.joined_at),
                "completedAt": iso(self.completed_at),
            }
        )
        return payload


@dataclass(frozen=True)
class LeaderboardEntry:
    user_id: str
    progress: float
    status: ParticipantStatus
    rank: int
    joined_at: datetime
    completed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "progress": self.progress,
            "status": self.status,
            "rank": self.rank,
            "completedAt": iso(self.completed_at),
            "joinedAt": iso(self.joined_at),
        }


@dataclass(frozen=True)
class TimeRemaining:
    expired: bool
    days: int
    hours: int
    minutes: int
    total_seconds: int
    formatted: str

    def to_dict(self) -> dict:
        return {
            "expired": self.expired,
            "days": self.days,
            "hours": self.hours,
            "minutes": self.minutes,
            "totalSeconds": self.total_seconds,
            "formatted": self.formatted,
        }


@dataclass(frozen=True)
class ChallengeDetails:
    challenge: Challenge
    leaderboard: List[LeaderboardEntry]
    time_remaining: TimeRemaining
    difficulty: Difficulty

    def to_dict(self) -> dict:
        return {
            "challenge": self.challenge.to_dict(),
            "leaderboard": [entry.to_dict() for entry in self.leaderboard],
            "timeRemaining": self.time_remaining.to_dict(),
            "difficulty": self.difficulty,
        }
