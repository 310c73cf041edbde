"""
Progress engine facade.

Pipeline for one recorded session:
    ProgressService.record_session  -> stats + streak snapshot
    ChallengeService.apply_progress -> participation updates, completions
    BadgeService.check_and_award    -> newly earned badges

Every call runs under one operation_id so its log lines correlate.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from fitquest.core.clock import Clock, utc_now
from fitquest.core.logging import bind_operation_id, log_event
from fitquest.features.badges.service import BadgeService, badge_service
from fitquest.features.challenges.service import ChallengeService, challenge_service
from fitquest.features.leaderboard.service import LeaderboardService, leaderboard_service
from fitquest.features.progress.service import ProgressService, progress_service
from fitquest.features.xp.ledger import reconcile_pending
from fitquest.models.badge import BadgeCollection
from fitquest.models.challenge import (
    Challenge,
    ChallengeDetails,
    ChallengeWithUserProgress,
    JoinResult,
    LeaderboardEntry,
    LeaveResult,
)
from fitquest.models.progress import Period, ProgressView, WorkoutStatistics
from fitquest.models.workout import SessionResult

logger = logging.getLogger("fitquest.engine")


class ProgressEngine:
    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or utc_now
        if clock is None:
            self.leaderboards = leaderboard_service
            self.progress = progress_service
            self.challenges = challenge_service
            self.badges = badge_service
        else:
            self.leaderboards = LeaderboardService()
            self.progress = ProgressService(clock=clock)
            self.challenges = ChallengeService(clock=clock, leaderboards=self.leaderboards)
            self.badges = BadgeService(clock=clock)

    def record_session(
        self,
        user_id: str,
        exercises: Iterable[Any],
        duration_minutes: float,
        workout_plan_id: Optional[str] = None,
    ) -> SessionResult:
        with bind_operation_id():
            record, snapshot = self.progress.record_session(
                user_id=user_id,
                exercises=exercises,
                duration_minutes=duration_minutes,
                workout_plan_id=workout_plan_id,
            )
            completions = self.challenges.apply_progress(user_id, record.exercises)

            # Challenge rewards may have moved XP and level since the snapshot
            refreshed = self.progress.get_snapshot(user_id) or snapshot
            awarded = self.badges.check_and_award(user_id, refreshed)

            log_event(
                "info",
                "engine.session_processed",
                user_id=user_id,
                event_type="workout.session",
                extra={
                    "session_id": record.session_id,
                    "challenges_completed": len(completions),
                    "badges_earned": len(awarded),
                },
            )
            return SessionResult(
                session_id=record.session_id,
                total_calories=round(record.total_calories),
                avg_form_score=round(record.overall_form_score, 2),
                badges_earned=awarded,
                challenges_completed=completions,
            )

    def get_progress(self, user_id: str, period: Period = "all") -> ProgressView:
        return self.progress.get_progress(user_id, period)

    def get_workout_statistics(self, user_id: str, period: Period = "all") -> WorkoutStatistics:
        return self.progress.get_workout_statistics(user_id, period)

    def join_challenge(self, user_id: str, challenge_id: str) -> JoinResult:
        with bind_operation_id():
            return self.challenges.join(user_id, challenge_id)

    def leave_challenge(self, user_id: str, challenge_id: str) -> LeaveResult:
        with bind_operation_id():
            return self.challenges.leave(user_id, challenge_id)

    def get_user_challenges(self, user_id: str, status: str = "all") -> List[ChallengeWithUserProgress]:
        return self.challenges.get_user_challenges(user_id, status)

    def get_challenge_leaderboard(self, challenge_id: str, limit: Optional[int] = None) -> List[LeaderboardEntry]:
        return self.leaderboards.leaderboard(challenge_id, limit)

    def list_active_challenges(self, now: Optional[datetime] = None) -> List[Challenge]:
        return self.challenges.list_active_challenges(now)

    def get_challenge_details(self, challenge_id: str) -> ChallengeDetails:
        return self.challenges.get_challenge_details(challenge_id)

    def get_user_badges(self, user_id: str) -> BadgeCollection:
        return self.badges.get_user_badges(user_id)

    def reconcile_xp_credits(self, limit: int = 100) -> Dict[str, int]:
        with bind_operation_id():
            return reconcile_pending(limit=limit, now=self._clock())


# Singleton engine
engine = ProgressEngine()
