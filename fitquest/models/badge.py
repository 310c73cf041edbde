from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from fitquest.core.clock import iso


class BadgeConditionType(str, Enum):
    """Badge conditions the engine can evaluate from a progress snapshot."""

    WORKOUT_COUNT = "workout_count"
    TOTAL_CALORIES = "total_calories"
    STREAK_DAYS = "streak_days"
    LEVEL = "level"
    TOTAL_MINUTES = "total_minutes"

    @property
    def snapshot_field(self) -> str:
        return {
            BadgeConditionType.WORKOUT_COUNT: "total_workouts",
            BadgeConditionType.TOTAL_CALORIES: "total_calories",
            BadgeConditionType.STREAK_DAYS: "current_streak",
            BadgeConditionType.LEVEL: "level",
            BadgeConditionType.TOTAL_MINUTES: "total_minutes",
        }[self]

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["BadgeConditionType"]:
        """Return the member for ``raw`` or None for types the engine cannot evaluate."""
        if not raw:
            return None
        try:
            return cls(raw)
        except ValueError:
            return None


@dataclass(frozen=True)
class BadgeCondition:
    # Raw type string from metadata; may name conditions the engine cannot evaluate
    type: Optional[str]
    value: Optional[float]


@dataclass(frozen=True)
class Badge:
    badge_id: str
    name: str
    condition: BadgeCondition
    points: int = 0
    category: Optional[str] = None
    tier: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.badge_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "tier": self.tier,
            "points": self.points,
            "condition": {"type": self.condition.type, "value": self.condition.value},
        }


@dataclass(frozen=True)
class AwardedBadge:
    badge: Badge
    earned_at: datetime

    def to_dict(self) -> dict:
        payload = self.badge.to_dict()
        payload["earnedAt"] = iso(self.earned_at)
        return payload


@dataclass(frozen=True)
class EarnedBadge:
    badge: Badge
    earned_at: datetime
    progress: int = 100

    def to_dict(self) -> dict:
        payload = self.badge.to_dict()
        payload.update({"earnedAt": iso(self.earned_at), "progress": self.progress})
        return payload


@dataclass(frozen=True)
class LockedBadge:
    badge: Badge
    progress: float
    requirement: str

    def to_dict(self) -> dict:
        payload = self.badge.to_dict()
        payload.update({"progress": self.progress, "requirement": self.requirement, "locked": True})
        return payload


@dataclass(frozen=True)
class BadgeCollection:
    earned: List[EarnedBadge] = field(default_factory=list)
    locked: List[LockedBadge] = field(default_factory=list)
    next_badges: List[LockedBadge] = field(default_factory=list)

    @property
    def total_earned(self) -> int:
        return len(self.earned)

    @property
    def total_available(self) -> int:
        return len(self.earned) + len(self.locked)

    def to_dict(self) -> dict:
        return {
            "earned": [b.to_dict() for b in self.earned],
            "locked": [b.to_dict() for b in self.locked],
            "nextBadges": [b.to_dict() for b in self.next_badges],
            "totalEarned": self.total_earned,
            "totalAvailable": self.total_available,
        }
