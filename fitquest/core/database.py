"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults (static pool for in-memory SQLite)
- Table definitions for every aggregate the engine owns or reads
- Translation of store-level contention into ConflictError
"""
from typing import Optional, Generator
from contextlib import contextmanager
from sqlalchemy import (
    create_engine, MetaData, Table, Column, Integer, String, DateTime, Float, JSON, Text,
    Index, UniqueConstraint, select,
)
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.sql import func
import logging
import os

from fitquest.core.config import settings
from fitquest.core.errors import ConflictError

logger = logging.getLogger("fitquest.database")

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

_CONTENTION_MARKERS = (
    "database is locked",
    "could not serialize",
    "deadlock detected",
    "lock wait timeout",
)

# Global engine and session factory
_engine = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """
    Get the database URL from settings or environment.

    For testing, use TEST_DATABASE_URL if available.
    """
    test_url = os.getenv("TEST_DATABASE_URL")
    if test_url:
        return test_url

    return settings.DATABASE_URL


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:"):
            # One shared connection so every session sees the same in-memory database
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {
        "poolclass": QueuePool,
        "pool_size": POOL_SIZE,
        "max_overflow": MAX_OVERFLOW,
        "pool_timeout": POOL_TIMEOUT,
        "pool_recycle": POOL_RECYCLE,
    }


def init_engine(database_url: Optional[str] = None):
    """
    Initialize the SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine, _SessionLocal

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if _engine is not None:
        _engine.dispose()

    _engine = create_engine(url, echo=settings.DB_ECHO, **_engine_kwargs(url))

    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


def dispose_engine() -> None:
    """Dispose the current engine (tests and worker shutdown)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine():
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory():
    """Get the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


def is_contention_error(exc: BaseException) -> bool:
    """True when the store rejected a transaction because of a concurrent writer."""
    if not isinstance(exc, OperationalError):
        return False
    text = str(getattr(exc, "orig", exc)).lower()
    return any(marker in text for marker in _CONTENTION_MARKERS)


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager for one database transaction.

    Commits on clean exit and rolls back on any exception. Lock and
    serialization failures surface as ConflictError so callers can retry
    the whole logical operation.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except OperationalError as exc:
        session.rollback()
        if is_contention_error(exc):
            raise ConflictError("Transaction aborted due to contention") from exc
        raise
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables():
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    engine = get_engine()
    metadata.create_all(bind=engine)


def drop_all_tables():
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    engine = get_engine()
    metadata.drop_all(bind=engine)


def reset_database():
    """
    Reset the database by dropping and recreating all tables.

    WARNING: This is destructive! Only use in tests.
    """
    drop_all_tables()
    create_all_tables()


def check_connection() -> bool:
    """
    Check if database connection is available.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(select(1))
        return True
    except Exception as e:
        logger.warning("Database connection check failed: %s", e)
        return False


# Cumulative statistics, one row per user
user_progress = Table(
    'user_progress',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('total_workouts', Integer, nullable=False, server_default='0'),
    Column('total_calories', Float, nullable=False, server_default='0'),
    Column('total_minutes', Float, nullable=False, server_default='0'),
    Column('current_streak', Integer, nullable=False, server_default='0'),
    Column('longest_streak', Integer, nullable=False, server_default='0'),
    Column('level', Integer, nullable=False, server_default='1'),
    Column('experience_points', Integer, nullable=False, server_default='0'),
    Column('weekly_workouts', Integer, nullable=False, server_default='0'),
    Column('weekly_calories', Float, nullable=False, server_default='0'),
    Column('weekly_minutes', Float, nullable=False, server_default='0'),
    Column('monthly_workouts', Integer, nullable=False, server_default='0'),
    Column('monthly_calories', Float, nullable=False, server_default='0'),
    Column('monthly_minutes', Float, nullable=False, server_default='0'),
    Column('last_workout_date', DateTime(timezone=True), nullable=True),
    # Optimistic concurrency token, bumped by every writer
    Column('version', Integer, nullable=False, server_default='1'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Denormalized streak view, always written together with user_progress
workout_streaks = Table(
    'workout_streaks',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('current_streak_days', Integer, nullable=False, server_default='0'),
    Column('longest_streak_days', Integer, nullable=False, server_default='0'),
    Column('last_workout_date', DateTime(timezone=True), nullable=True),
    Column('streak_status', String(20), nullable=False, server_default='active'),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Append-only workout sessions
workout_sessions = Table(
    'workout_sessions',
    metadata,
    Column('id', String(36), primary_key=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('workout_plan_id', String(100), nullable=True),
    Column('duration_minutes', Float, nullable=False),
    Column('total_calories', Float, nullable=False),
    Column('overall_form_score', Float, nullable=False),
    Column('exercises', JSON, nullable=False),
    Column('status', String(20), nullable=False, server_default='completed'),
    Column('created_at', DateTime(timezone=True), nullable=False),
    # Composite index for history queries: (user_id, created_at)
    Index('idx_workout_sessions_user_created', 'user_id', 'created_at'),
)

# Challenge metadata (managed outside the engine)
challenges = Table(
    'challenges',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('name', Text, nullable=False),
    Column('description', Text, nullable=True),
    Column('type', String(30), nullable=False),
    Column('goal_target_value', Float, nullable=False),
    Column('goal_exercise_name', String(200), nullable=True),
    Column('status', String(20), nullable=False, server_default='active', index=True),
    Column('start_date', DateTime(timezone=True), nullable=False),
    Column('end_date', DateTime(timezone=True), nullable=False),
    Column('reward_points', Integer, nullable=False, server_default='0'),
    Column('reward_badges', JSON, nullable=True),
    Column('participant_count', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_challenges_status_start', 'status', 'start_date'),
)

# One row per (user, challenge); id preserves insertion order for ranking ties
challenge_participants = Table(
    'challenge_participants',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('participant_key', String(210), nullable=False, unique=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('challenge_id', String(100), nullable=False, index=True),
    Column('progress', Float, nullable=False, server_default='0'),
    Column('status', String(20), nullable=False, server_default='in_progress'),
    Column('version', Integer, nullable=False, server_default='1'),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), nullable=False),
    Column('completed_at', DateTime(timezone=True), nullable=True),
    UniqueConstraint('user_id', 'challenge_id', name='uq_challenge_participants_user_challenge'),
    # Leaderboard pattern: (challenge_id, progress)
    Index('idx_challenge_participants_challenge_progress', 'challenge_id', 'progress'),
    Index('idx_challenge_participants_user_status', 'user_id', 'status'),
)

# Badge metadata (managed outside the engine)
badges = Table(
    'badges',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('name', Text, nullable=False),
    Column('description', Text, nullable=True),
    Column('category', String(50), nullable=True),
    Column('tier', String(30), nullable=True),
    Column('points', Integer, nullable=False, server_default='0'),
    Column('condition_type', String(50), nullable=True),
    Column('condition_value', Float, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Earned badges; the unique key makes awarding insert-if-absent
user_badges = Table(
    'user_badges',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('badge_id', String(100), nullable=False),
    Column('earned_at', DateTime(timezone=True), nullable=False),
    Column('progress', Integer, nullable=False, server_default='100'),
    UniqueConstraint('user_id', 'badge_id', name='uq_user_badges_user_badge'),
    Index('idx_user_badges_user_earned', 'user_id', 'earned_at'),
)

# XP owed to users for challenge completions and badge awards
xp_credits = Table(
    'xp_credits',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('source_type', String(30), nullable=False),
    Column('source_id', String(100), nullable=False),
    Column('points', Integer, nullable=False),
    Column('status', String(20), nullable=False, server_default='pending', index=True),
    Column('attempt_count', Integer, nullable=False, server_default='0'),
    Column('last_error', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Column('applied_at', DateTime(timezone=True), nullable=True),
    UniqueConstraint('user_id', 'source_type', 'source_id', name='uq_xp_credits_user_source'),
    Index('idx_xp_credits_status_created', 'status', 'created_at'),
)
