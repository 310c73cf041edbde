import pytest

from fitquest.core.errors import NotFoundError
from fitquest.core.database import get_db_session
from fitquest.features.progress.service import ProgressService
from fitquest.features.xp.ledger import (
    apply_credit,
    apply_credits,
    credits_for_user,
    enqueue_credit,
    pending_credits,
    reconcile_pending,
)


def _enqueue(user_id, source_id, points, now, source_type="challenge"):
    with get_db_session() as session:
        return enqueue_credit(
            session,
            user_id=user_id,
            source_type=source_type,
            source_id=source_id,
            points=points,
            now=now,
        )


@pytest.fixture
def progress(clock):
    return ProgressService(clock=clock)


def test_non_positive_points_are_not_enqueued(clock):
    assert _enqueue("u1", "c1", 0, clock.now) is None
    assert credits_for_user("u1") == []


def test_credit_is_applied_at_most_once(progress, clock, push_ups):
    progress.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=10)
    credit_id = _enqueue("u1", "c1", 100, clock.now)

    assert apply_credit(credit_id, clock.now) is True
    assert apply_credit(credit_id, clock.now) is False

    assert progress.get_snapshot("u1").experience_points == 150
    assert pending_credits("u1") == []


def test_credit_recomputes_level(progress, clock, push_ups):
    for _ in range(9):
        progress.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=10)
    credit_id = _enqueue("u1", "c1", 100, clock.now)

    apply_credit(credit_id, clock.now)

    snapshot = progress.get_snapshot("u1")
    assert snapshot.experience_points == 550
    assert snapshot.level == 2


def test_unknown_credit():
    with pytest.raises(NotFoundError):
        apply_credit(12345)


def test_failed_credit_stays_pending_until_reconciled(progress, clock, push_ups):
    credit_id = _enqueue("u1", "c1", 100, clock.now)

    assert apply_credits([credit_id, None], clock.now) == 0

    [credit] = pending_credits("u1")
    assert credit.attempt_count == 1
    assert "No progress" in credit.last_error

    progress.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=10)
    report = reconcile_pending(now=clock.now)

    assert report == {"scanned": 1, "applied": 1, "failed": 0}
    assert progress.get_snapshot("u1").experience_points == 150
    assert [c.status for c in credits_for_user("u1")] == ["applied"]


def test_reconcile_skips_credits_over_attempt_ceiling(clock):
    credit_id = _enqueue("u1", "c1", 100, clock.now)
    apply_credits([credit_id], clock.now)
    apply_credits([credit_id], clock.now)

    report = reconcile_pending(max_attempts=2, now=clock.now)

    assert report["scanned"] == 0
    assert pending_credits("u1")[0].attempt_count == 2


def test_reconcile_counts_failures(clock):
    _enqueue("u1", "c1", 100, clock.now)
    _enqueue("u2", "b1", 25, clock.now, source_type="badge")

    report = reconcile_pending(now=clock.now)

    assert report == {"scanned": 2, "applied": 0, "failed": 2}
