"""
XP credit ledger.

Reward points owed for a challenge completion or a badge award are written
as a pending credit inside the same transaction as the rewarding state
change. Application to the user's XP happens afterwards in its own
transaction; credits that fail to apply stay pending and are picked up by
reconciliation, so a reward is delivered at least eventually and at most
once (unique key on user, source type and source id).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Literal, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.orm import Session

from fitquest.core.clock import ensure_utc, utc_now
from fitquest.core.config import settings
from fitquest.core.database import get_db_session, user_progress, xp_credits
from fitquest.core.errors import ConflictError, NotFoundError
from fitquest.core.logging import log_event
from fitquest.core.retry import run_with_retry
from fitquest.features.metrics.calculations import level_for_xp

logger = logging.getLogger("fitquest.xp")

SourceType = Literal["challenge", "badge"]
CreditStatus = Literal["pending", "applied"]


@dataclass(frozen=True)
class XpCredit:
    credit_id: int
    user_id: str
    source_type: SourceType
    source_id: str
    points: int
    status: CreditStatus
    attempt_count: int
    created_at: datetime
    applied_at: Optional[datetime] = None
    last_error: Optional[str] = None


def _to_credit(row) -> XpCredit:
    return XpCredit(
        credit_id=row.id,
        user_id=row.user_id,
        source_type=row.source_type,
        source_id=row.source_id,
        points=row.points,
        status=row.status,
        attempt_count=row.attempt_count,
        created_at=ensure_utc(row.created_at),
        applied_at=ensure_utc(row.applied_at),
        last_error=row.last_error,
    )


def enqueue_credit(
    session: Session,
    *,
    user_id: str,
    source_type: SourceType,
    source_id: str,
    points: int,
    now: datetime,
) -> Optional[int]:
    """
    Record a pending credit inside the caller's transaction.

    Returns the credit id, or None when there is nothing to credit.
    """
    if not points or points <= 0:
        return None
    result = session.execute(
        insert(xp_credits).values(
            user_id=user_id,
            source_type=source_type,
            source_id=source_id,
            points=int(points),
            status="pending",
            attempt_count=0,
            created_at=now,
        )
    )
    return result.inserted_primary_key[0]


def _apply_once(credit_id: int, now: datetime) -> bool:
    with get_db_session() as session:
        credit = session.execute(select(xp_credits).where(xp_credits.c.id == credit_id)).first()
        if credit is None:
            raise NotFoundError(f"XP credit {credit_id} not found")
        if credit.status == "applied":
            return False

        progress = session.execute(
            select(user_progress.c.experience_points, user_progress.c.version)
            .where(user_progress.c.user_id == credit.user_id)
        ).first()
        if progress is None:
            raise NotFoundError(f"No progress recorded for user {credit.user_id}")

        new_xp = progress.experience_points + credit.points
        updated = session.execute(
            update(user_progress)
            .where(user_progress.c.user_id == credit.user_id)
            .where(user_progress.c.version == progress.version)
            .values(
                experience_points=new_xp,
                level=level_for_xp(new_xp),
                version=progress.version + 1,
                updated_at=now,
            )
        )
        if updated.rowcount != 1:
            raise ConflictError(f"Progress for user {credit.user_id} changed concurrently")

        marked = session.execute(
            update(xp_credits)
            .where(xp_credits.c.id == credit_id)
            .where(xp_credits.c.status == "pending")
            .values(status="applied", applied_at=now, attempt_count=credit.attempt_count + 1)
        )
        if marked.rowcount != 1:
            raise ConflictError(f"XP credit {credit_id} applied concurrently")
    return True


def apply_credit(credit_id: int, now: Optional[datetime] = None) -> bool:
    """Apply one pending credit. Returns False if it was already applied."""
    return run_with_retry(_apply_once, credit_id, now or utc_now())


def _record_failure(credit_id: int, exc: BaseException) -> None:
    try:
        with get_db_session() as session:
            session.execute(
                update(xp_credits)
                .where(xp_credits.c.id == credit_id)
                .where(xp_credits.c.status == "pending")
                .values(
                    attempt_count=xp_credits.c.attempt_count + 1,
                    last_error=str(exc)[:500],
                )
            )
    except Exception:
        logger.exception("Could not record failure for XP credit %s", credit_id)


def apply_credits(credit_ids: Iterable[Optional[int]], now: Optional[datetime] = None) -> int:
    """
    Apply credits right after the rewarding transaction committed.

    Failures are logged and left pending for reconciliation; they never undo
    the state change that earned the reward.
    """
    applied = 0
    for credit_id in credit_ids:
        if credit_id is None:
            continue
        try:
            if apply_credit(credit_id, now):
                applied += 1
        except Exception as exc:
            _record_failure(credit_id, exc)
            log_event(
                "error",
                "xp.credit.apply_failed",
                event_type="xp.credit",
                error_code=getattr(exc, "code", "internal_error"),
                extra={"credit_id": credit_id, "error": exc},
                exc_info=True,
            )
    return applied


def pending_credits(user_id: Optional[str] = None, limit: Optional[int] = None) -> List[XpCredit]:
    stmt = (
        select(xp_credits)
        .where(xp_credits.c.status == "pending")
        .order_by(xp_credits.c.created_at.asc(), xp_credits.c.id.asc())
    )
    if user_id is not None:
        stmt = stmt.where(xp_credits.c.user_id == user_id)
    if limit is not None:
        stmt = stmt.limit(limit)
    with get_db_session() as session:
        return [_to_credit(row) for row in session.execute(stmt).fetchall()]


def credits_for_user(user_id: str) -> List[XpCredit]:
    with get_db_session() as session:
        rows = session.execute(
            select(xp_credits)
            .where(xp_credits.c.user_id == user_id)
            .order_by(xp_credits.c.id.asc())
        ).fetchall()
    return [_to_credit(row) for row in rows]


def reconcile_pending(
    limit: int = 100,
    max_attempts: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """
    Re-apply pending credits oldest first.

    Credits that already failed ``max_attempts`` times are left for manual
    inspection and not counted as scanned.
    """
    ceiling = max_attempts if max_attempts is not None else settings.XP_CREDIT_MAX_ATTEMPTS
    ts = now or utc_now()

    with get_db_session() as session:
        ids = [
            row.id
            for row in session.execute(
                select(xp_credits.c.id)
                .where(xp_credits.c.status == "pending")
                .where(xp_credits.c.attempt_count < ceiling)
                .order_by(xp_credits.c.created_at.asc(), xp_credits.c.id.asc())
                .limit(limit)
            ).fetchall()
        ]

    applied = apply_credits(ids, ts)
    report = {"scanned": len(ids), "applied": applied, "failed": len(ids) - applied}
    logger.info("[reconcile] xp credits", extra=report)
    return report
