from __future__ import annotations

from typing import List, Optional, Sequence

from fitquest.features.metrics.calculations import completion_percentage
from fitquest.models.badge import Badge, BadgeCondition, BadgeConditionType, LockedBadge
from fitquest.models.progress import ProgressSnapshot

# Points thresholds, highest first
_TIERS = (
    (500, "legendary"),
    (300, "epic"),
    (150, "rare"),
    (50, "uncommon"),
)

_REQUIREMENT_TEMPLATES = {
    "workout_count": "Complete {value} workout{plural}",
    "total_calories": "Burn {value} total calories",
    "streak_days": "Maintain a {value}-day workout streak",
    "level": "Reach level {value}",
    "total_minutes": "Exercise for {value} total minutes",
    "perfect_form": "Complete {value} exercises with perfect form",
    "challenge_completion": "Complete {value} challenge{plural}",
}


def _current_and_target(condition: BadgeCondition, snapshot: ProgressSnapshot) -> Optional[tuple]:
    condition_type = BadgeConditionType.parse(condition.type)
    if condition_type is None or condition.value is None:
        return None
    return getattr(snapshot, condition_type.snapshot_field), condition.value


def condition_met(condition: BadgeCondition, snapshot: ProgressSnapshot) -> bool:
    """
    True when the snapshot satisfies ``condition``.

    Conditions that need data the snapshot does not carry (form quality,
    duel wins, challenge completions) are never met rather than raising.
    """
    pair = _current_and_target(condition, snapshot)
    if pair is None:
        return False
    current, target = pair
    return current >= target


def progress_towards(badge: Badge, snapshot: ProgressSnapshot) -> float:
    pair = _current_and_target(badge.condition, snapshot)
    if pair is None:
        return 0
    current, target = pair
    return completion_percentage(current, target)


def tier_for_points(points: int) -> str:
    for threshold, tier in _TIERS:
        if points >= threshold:
            return tier
    return "common"


def _format_value(value: float):
    return int(value) if float(value).is_integer() else value


def format_requirement(condition: BadgeCondition) -> str:
    if not condition.type or not condition.value:
        return "Unknown requirement"
    value = _format_value(condition.value)
    template = _REQUIREMENT_TEMPLATES.get(condition.type)
    if template is None:
        return f"{condition.type}: {value}"
    return template.format(value=value, plural="s" if condition.value > 1 else "")


def next_milestone_badges(locked: Sequence[LockedBadge], limit: int = 3) -> List[LockedBadge]:
    """Locked badges the user has started on, closest to earning first."""
    started = [badge for badge in locked if badge.progress > 0]
    return sorted(started, key=lambda badge: badge.progress, reverse=True)[:limit]
