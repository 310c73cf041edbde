"""
Challenge participation: join, leave, per-session progress and read views.

Participation state machine per (user, challenge):
    none -> in_progress -> completed
    in_progress -> abandoned -> in_progress (rejoin resets progress)
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional, Tuple

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError

from fitquest.core.clock import Clock, ensure_utc, utc_now
from fitquest.core.database import challenge_participants, challenges, get_db_session
from fitquest.core.errors import (
    AlreadyCompletedError,
    AlreadyJoinedError,
    CannotLeaveCompletedError,
    ConflictError,
    InactiveChallengeError,
    NotFoundError,
    NotJoinedError,
    ValidationError,
)
from fitquest.core.logging import log_event
from fitquest.core.retry import run_with_retry
from fitquest.features.challenges.rules import challenge_difficulty, progress_increment, time_remaining
from fitquest.features.leaderboard.service import LeaderboardService, leaderboard_service
from fitquest.features.metrics.calculations import completion_percentage
from fitquest.features.xp.ledger import apply_credits, enqueue_credit
from fitquest.models.challenge import (
    Challenge,
    ChallengeCompletion,
    ChallengeDetails,
    ChallengeGoal,
    ChallengeParticipant,
    ChallengeType,
    ChallengeWithUserProgress,
    JoinResult,
    LeaveResult,
)

logger = logging.getLogger("fitquest.challenges")

USER_CHALLENGE_FILTERS = ("all", "in_progress", "completed", "abandoned")
DETAILS_LEADERBOARD_SIZE = 10


def participant_key(user_id: str, challenge_id: str) -> str:
    """Deterministic identity of a (user, challenge) participation."""
    return f"{user_id}_{challenge_id}"


def row_to_challenge(row) -> Challenge:
    return Challenge(
        challenge_id=row.id,
        name=row.name,
        description=row.description,
        type=ChallengeType(row.type),
        goal=ChallengeGoal(target_value=row.goal_target_value, exercise_name=row.goal_exercise_name),
        status=row.status,
        start_date=ensure_utc(row.start_date),
        end_date=ensure_utc(row.end_date),
        reward_points=row.reward_points or 0,
        reward_badges=list(row.reward_badges or []),
        participant_count=row.participant_count or 0,
        created_at=ensure_utc(row.created_at),
    )


def row_to_participant(row) -> ChallengeParticipant:
    return ChallengeParticipant(
        participant_id=row.id,
        user_id=row.user_id,
        challenge_id=row.challenge_id,
        progress=row.progress,
        status=row.status,
        created_at=ensure_utc(row.created_at),
        completed_at=ensure_utc(row.completed_at),
        version=row.version,
    )


def _select_participant(session, user_id: str, challenge_id: str):
    return session.execute(
        select(challenge_participants)
        .where(challenge_participants.c.user_id == user_id)
        .where(challenge_participants.c.challenge_id == challenge_id)
    ).first()


def _adjust_participant_count(session, challenge_id: str, delta: int) -> None:
    stmt = update(challenges).where(challenges.c.id == challenge_id)
    if delta < 0:
        stmt = stmt.where(challenges.c.participant_count > 0)
    session.execute(stmt.values(participant_count=challenges.c.participant_count + delta))


class ChallengeService:
    def __init__(self, clock: Optional[Clock] = None, leaderboards: Optional[LeaderboardService] = None):
        self._clock = clock or utc_now
        self._leaderboards = leaderboards or leaderboard_service

    # Participation ----------------------------------------------------
    def join(self, user_id: str, challenge_id: str) -> JoinResult:
        if not user_id or not challenge_id:
            raise ValidationError("user_id and challenge_id are required")
        result = run_with_retry(self._join_once, user_id, challenge_id)
        log_event(
            "info",
            "challenge.rejoined" if result.rejoined else "challenge.joined",
            user_id=user_id,
            challenge_id=challenge_id,
            event_type="challenge.join",
        )
        return result

    def _join_once(self, user_id: str, challenge_id: str) -> JoinResult:
        now = self._clock()
        key = participant_key(user_id, challenge_id)
        with get_db_session() as session:
            challenge = session.execute(
                select(challenges.c.id, challenges.c.status).where(challenges.c.id == challenge_id)
            ).first()
            if challenge is None:
                raise NotFoundError(f"Challenge {challenge_id} not found")
            if challenge.status != "active":
                raise InactiveChallengeError(f"Challenge {challenge_id} is not active")

            existing = _select_participant(session, user_id, challenge_id)
            if existing is None:
                try:
                    session.execute(
                        insert(challenge_participants).values(
                            participant_key=key,
                            user_id=user_id,
                            challenge_id=challenge_id,
                            progress=0,
                            status="in_progress",
                            version=1,
                            created_at=now,
                            updated_at=now,
                        )
                    )
                except IntegrityError as exc:
                    raise ConflictError(f"Participation {key} created concurrently") from exc
                _adjust_participant_count(session, challenge_id, 1)
                return JoinResult(participant_id=key, joined=True)

            if existing.status == "in_progress":
                raise AlreadyJoinedError("Already joined this challenge")
            if existing.status == "completed":
                raise AlreadyCompletedError("Challenge already completed")

            rejoined = session.execute(
                update(challenge_participants)
                .where(challenge_participants.c.id == existing.id)
                .where(challenge_participants.c.version == existing.version)
                .values(
                    status="in_progress",
                    progress=0,
                    completed_at=None,
                    updated_at=now,
                    version=existing.version + 1,
                )
            )
            if rejoined.rowcount != 1:
                raise ConflictError(f"Participation {key} changed concurrently")
            _adjust_participant_count(session, challenge_id, 1)
        return JoinResult(participant_id=key, rejoined=True)

    def leave(self, user_id: str, challenge_id: str) -> LeaveResult:
        if not user_id or not challenge_id:
            raise ValidationError("user_id and challenge_id are required")
        result = run_with_retry(self._leave_once, user_id, challenge_id)
        log_event(
            "info",
            "challenge.left",
            user_id=user_id,
            challenge_id=challenge_id,
            event_type="challenge.leave",
        )
        return result

    def _leave_once(self, user_id: str, challenge_id: str) -> LeaveResult:
        now = self._clock()
        with get_db_session() as session:
            existing = _select_participant(session, user_id, challenge_id)
            if existing is None or existing.status == "abandoned":
                raise NotJoinedError("Not participating in this challenge")
            if existing.status == "completed":
                raise CannotLeaveCompletedError("Cannot leave a completed challenge")

            left = session.execute(
                update(challenge_participants)
                .where(challenge_participants.c.id == existing.id)
                .where(challenge_participants.c.version == existing.version)
                .values(status="abandoned", updated_at=now, version=existing.version + 1)
            )
            if left.rowcount != 1:
                raise ConflictError(f"Participation {existing.participant_key} changed concurrently")
            _adjust_participant_count(session, challenge_id, -1)
        return LeaveResult(success=True)

    # Session propagation ----------------------------------------------
    def apply_progress(self, user_id: str, exercises: Iterable[Any]) -> List[ChallengeCompletion]:
        """
        Advance every in-progress participation of ``user_id`` by one session.

        Each participation is updated in its own retried transaction. A
        participation that cannot be updated is logged and skipped so the
        others still advance. Reward credits are applied once all
        transitions have committed.
        """
        exercises = list(exercises)
        with get_db_session() as session:
            participant_ids = [
                row.id
                for row in session.execute(
                    select(challenge_participants.c.id)
                    .where(challenge_participants.c.user_id == user_id)
                    .where(challenge_participants.c.status == "in_progress")
                    .order_by(challenge_participants.c.id.asc())
                ).fetchall()
            ]

        completions: List[ChallengeCompletion] = []
        credit_ids: List[Optional[int]] = []
        for participant_id in participant_ids:
            try:
                completion, credit_id = run_with_retry(self._advance_once, participant_id, exercises)
            except Exception as exc:
                log_event(
                    "error",
                    "challenge.progress_update_failed",
                    user_id=user_id,
                    event_type="challenge.progress",
                    error_code=getattr(exc, "code", "internal_error"),
                    extra={"participant_id": participant_id, "error": exc},
                    exc_info=True,
                )
                continue
            if completion is not None:
                completions.append(completion)
                credit_ids.append(credit_id)
                log_event(
                    "info",
                    "challenge.completed",
                    user_id=user_id,
                    challenge_id=completion.challenge_id,
                    event_type="challenge.completed",
                    extra={"progress": completion.progress, "reward_points": completion.reward_points},
                )

        apply_credits(credit_ids, self._clock())
        return completions

    def _advance_once(
        self, participant_id: int, exercises: List[Any]
    ) -> Tuple[Optional[ChallengeCompletion], Optional[int]]:
        now = self._clock()
        with get_db_session() as session:
            row = session.execute(
                select(challenge_participants).where(challenge_participants.c.id == participant_id)
            ).first()
            if row is None or row.status != "in_progress":
                return None, None

            challenge_row = session.execute(
                select(challenges).where(challenges.c.id == row.challenge_id)
            ).first()
            if challenge_row is None:
                raise NotFoundError(f"Challenge {row.challenge_id} not found")
            challenge = row_to_challenge(challenge_row)

            increment = progress_increment(challenge, exercises)
            if increment <= 0:
                return None, None

            new_progress = row.progress + increment
            completed = new_progress >= challenge.goal.target_value
            values = dict(progress=new_progress, updated_at=now, version=row.version + 1)
            if completed:
                values.update(status="completed", completed_at=now)

            updated = session.execute(
                update(challenge_participants)
                .where(challenge_participants.c.id == participant_id)
                .where(challenge_participants.c.version == row.version)
                .where(challenge_participants.c.status == "in_progress")
                .values(**values)
            )
            if updated.rowcount != 1:
                raise ConflictError(f"Participation {row.participant_key} changed concurrently")

            if not completed:
                return None, None

            credit_id = enqueue_credit(
                session,
                user_id=row.user_id,
                source_type="challenge",
                source_id=challenge.challenge_id,
                points=challenge.reward_points,
                now=now,
            )
        completion = ChallengeCompletion(
            challenge_id=challenge.challenge_id,
            challenge_name=challenge.name,
            progress=new_progress,
            reward_points=challenge.reward_points,
            completed_at=now,
        )
        return completion, credit_id

    # Read views -------------------------------------------------------
    def get_challenge(self, challenge_id: str) -> Challenge:
        with get_db_session() as session:
            row = session.execute(select(challenges).where(challenges.c.id == challenge_id)).first()
        if row is None:
            raise NotFoundError(f"Challenge {challenge_id} not found")
        return row_to_challenge(row)

    def get_participation(self, user_id: str, challenge_id: str) -> Optional[ChallengeParticipant]:
        with get_db_session() as session:
            row = _select_participant(session, user_id, challenge_id)
        return row_to_participant(row) if row else None

    def get_user_challenges(self, user_id: str, status: str = "all") -> List[ChallengeWithUserProgress]:
        if status not in USER_CHALLENGE_FILTERS:
            raise ValidationError(
                f"Invalid status '{status}'. Expected one of: {', '.join(USER_CHALLENGE_FILTERS)}"
            )
        stmt = (
            select(challenge_participants)
            .where(challenge_participants.c.user_id == user_id)
            .order_by(challenge_participants.c.created_at.desc(), challenge_participants.c.id.desc())
        )
        if status != "all":
            stmt = stmt.where(challenge_participants.c.status == status)

        with get_db_session() as session:
            participations = [row_to_participant(row) for row in session.execute(stmt).fetchall()]
            challenge_ids = {p.challenge_id for p in participations}
            by_id = {}
            if challenge_ids:
                by_id = {
                    row.id: row_to_challenge(row)
                    for row in session.execute(
                        select(challenges).where(challenges.c.id.in_(challenge_ids))
                    ).fetchall()
                }

        results = []
        for participation in participations:
            challenge = by_id.get(participation.challenge_id)
            if challenge is None:
                continue
            results.append(
                ChallengeWithUserProgress(
                    challenge=challenge,
                    user_progress=participation.progress,
                    user_status=participation.status,
                    completion_percentage=completion_percentage(
                        participation.progress, challenge.goal.target_value
                    ),
                    joined_at=participation.created_at,
                    completed_at=participation.completed_at,
                )
            )
        return results

    def list_active_challenges(self, now: Optional[datetime] = None) -> List[Challenge]:
        moment = ensure_utc(now) if now is not None else self._clock()
        with get_db_session() as session:
            rows = session.execute(
                select(challenges)
                .where(challenges.c.status == "active")
                .where(challenges.c.start_date <= moment)
                .where(challenges.c.end_date >= moment)
                .order_by(challenges.c.start_date.desc())
            ).fetchall()
        return [row_to_challenge(row) for row in rows]

    def get_challenge_details(self, challenge_id: str) -> ChallengeDetails:
        challenge = self.get_challenge(challenge_id)
        return ChallengeDetails(
            challenge=challenge,
            leaderboard=self._leaderboards.leaderboard(challenge_id, DETAILS_LEADERBOARD_SIZE),
            time_remaining=time_remaining(challenge.end_date, self._clock()),
            difficulty=challenge_difficulty(challenge),
        )


# Singleton service used by the engine facade
challenge_service = ChallengeService()
