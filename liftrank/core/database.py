"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults (SQLite gets a static pool)
- Table definitions for metrics, snapshots and weight configuration
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    BigInteger,
    String,
    DateTime,
    Float,
    JSON,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
import os

from liftrank.core.config import settings


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

# Global engine and session factory
_engine: Optional[Engine] = None
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


def build_engine(url: str) -> Engine:
    """Create an engine with pooling suited to the backend."""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        echo=False,  # Set to True for SQL query logging
    )


def init_engine(database_url: Optional[str] = None) -> Engine:
    """
    Initialize the global SQLAlchemy engine.

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

    _engine = build_engine(url)
    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    return _engine


def get_engine() -> Engine:
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


@contextmanager
def get_db_session(engine: Optional[Engine] = None):
    """
    Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    if engine is not None:
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    else:
        if _SessionLocal is None:
            init_engine()
        SessionLocal = _SessionLocal
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Optional[Engine] = None):
    """Create all tables defined in metadata (idempotent)."""
    metadata.create_all(engine or get_engine())


def drop_all_tables(engine: Optional[Engine] = None):
    """Drop all tables. Tests only."""
    metadata.drop_all(engine or get_engine())


def check_connection(engine: Optional[Engine] = None) -> bool:
    """Return True when a trivial query succeeds."""
    try:
        with (engine or get_engine()).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

user_metrics = Table(
    "user_metrics",
    metadata,
    Column("user_id", String(128), primary_key=True),
    Column("max_weight_lifted", Float, nullable=False, default=0.0),
    Column("total_workouts", Integer, nullable=False, default=0),
    Column("workout_streak", Integer, nullable=False, default=0),
    Column("consistency_score", Float, nullable=False, default=0.0),
    Column("improvement_rate", Float, nullable=False, default=0.0),
    Column("total_calories_burned", Float, nullable=False, default=0.0),
    Column("average_heart_rate", Float, nullable=False, default=0.0),
    Column("flexibility_score", Float, nullable=False, default=0.0),
    Column("endurance_score", Float, nullable=False, default=0.0),
    Column("last_workout_date", DateTime(timezone=True), nullable=True),
    Column("last_updated", DateTime(timezone=True), nullable=False, server_default=func.now()),
)

leaderboard_snapshots = Table(
    "leaderboard_snapshots",
    metadata,
    Column("cohort", String(16), primary_key=True),
    Column("sequence", BigInteger, nullable=False),
    Column("weights_version", Integer, nullable=False),
    Column("computed_at", DateTime(timezone=True), nullable=False),
    Column("payload", JSON, nullable=False),
)

ranking_weights = Table(
    "ranking_weights",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("strength", Float, nullable=False),
    Column("stamina", Float, nullable=False),
    Column("consistency", Float, nullable=False),
    Column("improvement", Float, nullable=False),
    Column("version", Integer, nullable=False),
    Column("last_updated", DateTime(timezone=True), nullable=False),
)
