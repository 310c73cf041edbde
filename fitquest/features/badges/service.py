from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError

from fitquest.core.clock import Clock, ensure_utc, utc_now
from fitquest.core.database import badges, get_db_session, user_badges, user_progress
from fitquest.core.logging import log_event
from fitquest.core.retry import run_with_retry
from fitquest.features.badges.conditions import (
    condition_met,
    format_requirement,
    next_milestone_badges,
    progress_towards,
)
from fitquest.features.xp.ledger import apply_credits, enqueue_credit
from fitquest.models.badge import (
    AwardedBadge,
    Badge,
    BadgeCollection,
    BadgeCondition,
    EarnedBadge,
    LockedBadge,
)
from fitquest.models.progress import ProgressSnapshot

logger = logging.getLogger("fitquest.badges")


def row_to_badge(row) -> Badge:
    return Badge(
        badge_id=row.id,
        name=row.name,
        description=row.description,
        category=row.category,
        tier=row.tier,
        points=row.points or 0,
        condition=BadgeCondition(type=row.condition_type, value=row.condition_value),
    )


class BadgeService:
    """Evaluates badge conditions and awards each badge at most once per user."""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or utc_now

    def list_badges(self) -> List[Badge]:
        with get_db_session() as session:
            rows = session.execute(select(badges).order_by(badges.c.id.asc())).fetchall()
        return [row_to_badge(row) for row in rows]

    def earned_badges(self, user_id: str) -> Dict[str, object]:
        """Map of badge id to earned_at for ``user_id``."""
        with get_db_session() as session:
            rows = session.execute(
                select(user_badges.c.badge_id, user_badges.c.earned_at)
                .where(user_badges.c.user_id == user_id)
            ).fetchall()
        return {row.badge_id: ensure_utc(row.earned_at) for row in rows}

    def check_and_award(self, user_id: str, snapshot: ProgressSnapshot) -> List[AwardedBadge]:
        """
        Award every unearned badge whose condition ``snapshot`` satisfies.

        The (user_id, badge_id) unique key decides concurrent awards: the
        insert that loses the race is skipped, together with its credit.
        Each award is its own retried transaction. A badge that still fails
        is logged and left for the next evaluation; this never raises once
        candidates have been selected.
        """
        earned = self.earned_badges(user_id)
        candidates = [
            badge
            for badge in self.list_badges()
            if badge.badge_id not in earned and condition_met(badge.condition, snapshot)
        ]
        if not candidates:
            return []

        awarded: List[AwardedBadge] = []
        credit_ids: List[Optional[int]] = []
        for badge in candidates:
            try:
                award, credit_id = run_with_retry(self._award_once, user_id, badge)
            except Exception as exc:
                log_event(
                    "error",
                    "badge.award_failed",
                    user_id=user_id,
                    badge_id=badge.badge_id,
                    event_type="badge.awarded",
                    error_code=getattr(exc, "code", "internal_error"),
                    extra={"error": exc},
                    exc_info=True,
                )
                continue
            if award is None:
                continue
            awarded.append(award)
            credit_ids.append(credit_id)
            log_event(
                "info",
                "badge.awarded",
                user_id=user_id,
                badge_id=badge.badge_id,
                event_type="badge.awarded",
                extra={"points": badge.points},
            )

        apply_credits(credit_ids, self._clock())
        return awarded

    def _award_once(self, user_id: str, badge: Badge) -> Tuple[Optional[AwardedBadge], Optional[int]]:
        """Insert the award and its pending credit; ``(None, None)`` if already awarded."""
        now = self._clock()
        try:
            with get_db_session() as session:
                session.execute(
                    insert(user_badges).values(
                        user_id=user_id,
                        badge_id=badge.badge_id,
                        earned_at=now,
                        progress=100,
                    )
                )
                credit_id = enqueue_credit(
                    session,
                    user_id=user_id,
                    source_type="badge",
                    source_id=badge.badge_id,
                    points=badge.points,
                    now=now,
                )
        except IntegrityError:
            logger.info("Badge %s already awarded to %s; skipping", badge.badge_id, user_id)
            return None, None
        return AwardedBadge(badge=badge, earned_at=now), credit_id

    def progress_towards(self, badge: Badge, snapshot: ProgressSnapshot) -> float:
        return progress_towards(badge, snapshot)

    def get_user_badges(self, user_id: str) -> BadgeCollection:
        """Earned and locked badges for ``user_id``, with the closest locked ones highlighted."""
        with get_db_session() as session:
            row = session.execute(
                select(user_progress).where(user_progress.c.user_id == user_id)
            ).first()
        snapshot = ProgressSnapshot(
            total_workouts=row.total_workouts if row else 0,
            total_calories=row.total_calories if row else 0,
            total_minutes=row.total_minutes if row else 0,
            current_streak=row.current_streak if row else 0,
            longest_streak=row.longest_streak if row else 0,
            level=row.level if row else 1,
            experience_points=row.experience_points if row else 0,
        )

        earned_at = self.earned_badges(user_id)
        earned: List[EarnedBadge] = []
        locked: List[LockedBadge] = []
        for badge in self.list_badges():
            if badge.badge_id in earned_at:
                earned.append(EarnedBadge(badge=badge, earned_at=earned_at[badge.badge_id]))
            else:
                locked.append(
                    LockedBadge(
                        badge=badge,
                        progress=progress_towards(badge, snapshot),
                        requirement=format_requirement(badge.condition),
                    )
                )
        earned.sort(key=lambda item: item.earned_at, reverse=True)
        return BadgeCollection(earned=earned, locked=locked, next_badges=next_milestone_badges(locked))


# Singleton service used by the engine facade
badge_service = BadgeService()
