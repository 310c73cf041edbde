import pytest
from sqlalchemy import update

from fitquest.core.config import settings
from fitquest.core.database import challenge_participants, get_db_session
from fitquest.core.errors import NotFoundError, ValidationError
from fitquest.features.challenges.service import ChallengeService
from fitquest.features.leaderboard.service import LeaderboardService


@pytest.fixture
def board(clock, make_challenge):
    challenge_id = make_challenge()
    challenges = ChallengeService(clock=clock)
    for user_id, progress in (("alice", 90), ("bob", 90), ("carol", 50)):
        challenges.join(user_id, challenge_id)
        with get_db_session() as session:
            session.execute(
                update(challenge_participants)
                .where(challenge_participants.c.user_id == user_id)
                .values(progress=progress)
            )
    return challenge_id


def test_ranks_by_progress_with_stable_ties(board):
    entries = LeaderboardService().leaderboard(board, 10)

    assert [(e.user_id, e.progress, e.rank) for e in entries] == [
        ("alice", 90, 1),
        ("bob", 90, 2),
        ("carol", 50, 3),
    ]
    assert entries[0].to_dict()["status"] == "in_progress"


def test_ranking_is_repeatable(board):
    service = LeaderboardService()

    first = [e.user_id for e in service.leaderboard(board, 10)]
    second = [e.user_id for e in service.leaderboard(board, 10)]

    assert first == second


def test_limit_truncates(board):
    entries = LeaderboardService().leaderboard(board, 2)

    assert [e.rank for e in entries] == [1, 2]


def test_limit_is_capped(board, monkeypatch):
    monkeypatch.setattr(settings, "LEADERBOARD_MAX_LIMIT", 1)

    assert len(LeaderboardService().leaderboard(board, 50)) == 1


def test_invalid_limit(board):
    with pytest.raises(ValidationError):
        LeaderboardService().leaderboard(board, 0)


def test_unknown_challenge():
    with pytest.raises(NotFoundError):
        LeaderboardService().leaderboard("missing", 10)


def test_empty_challenge(make_challenge):
    challenge_id = make_challenge("quiet")

    assert LeaderboardService().leaderboard(challenge_id) == []
