from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import select

from fitquest.core.clock import ensure_utc
from fitquest.core.config import settings
from fitquest.core.database import challenge_participants, challenges, get_db_session
from fitquest.core.errors import NotFoundError, ValidationError
from fitquest.models.challenge import LeaderboardEntry

logger = logging.getLogger("fitquest.leaderboard")


class LeaderboardService:
    """Read-only ranking of a challenge's participants."""

    def leaderboard(self, challenge_id: str, limit: Optional[int] = None) -> List[LeaderboardEntry]:
        """
        Participants ordered by progress descending.

        Equal progress keeps storage insertion order, so ranks are stable
        between calls. Ranks are 1-based positions in the returned list.
        """
        if limit is None:
            limit = settings.LEADERBOARD_DEFAULT_LIMIT
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        limit = min(limit, settings.LEADERBOARD_MAX_LIMIT)

        with get_db_session() as session:
            exists = session.execute(
                select(challenges.c.id).where(challenges.c.id == challenge_id)
            ).first()
            if exists is None:
                raise NotFoundError(f"Challenge {challenge_id} not found")

            rows = session.execute(
                select(challenge_participants)
                .where(challenge_participants.c.challenge_id == challenge_id)
                .order_by(challenge_participants.c.progress.desc(), challenge_participants.c.id.asc())
                .limit(limit)
            ).fetchall()

        return [
            LeaderboardEntry(
                user_id=row.user_id,
                progress=row.progress,
                status=row.status,
                rank=index + 1,
                joined_at=ensure_utc(row.created_at),
                completed_at=ensure_utc(row.completed_at),
            )
            for index, row in enumerate(rows)
        ]


# Singleton service
leaderboard_service = LeaderboardService()
