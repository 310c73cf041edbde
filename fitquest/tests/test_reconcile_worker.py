from fitquest.core.database import get_db_session
from fitquest.features.progress.service import ProgressService
from fitquest.features.xp.ledger import enqueue_credit
from fitquest.workers.reconcile_xp_credits import run


def _pending_credit(user_id, points, now):
    with get_db_session() as session:
        enqueue_credit(session, user_id=user_id, source_type="badge", source_id="b1", points=points, now=now)


def test_dry_run_only_counts(clock):
    _pending_credit("u1", 25, clock.now)

    report = run(dry_run=True, limit=10)

    assert report == {"dry_run": True, "pending": 1, "points": 25}


def test_live_run_applies(clock, push_ups):
    progress = ProgressService(clock=clock)
    progress.record_session(user_id="u1", exercises=[push_ups()], duration_minutes=10)
    _pending_credit("u1", 25, clock.now)

    report = run(dry_run=False, limit=10)

    assert report["applied"] == 1
    assert report["dry_run"] is False
    assert progress.get_snapshot("u1").experience_points == 75
