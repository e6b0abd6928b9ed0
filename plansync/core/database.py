"""
Database engine, sessions and the plan tables.

All three plan stores (profiles, identity metadata, change log) are tables in
the database named by DATABASE_URL, or TEST_DATABASE_URL when set. SQLite URLs
are supported so tests run without Postgres.
"""
import logging
import os
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import JSON, Column, DateTime, Index, Integer, MetaData, String, Table, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func

from plansync.core.config import settings

logger = logging.getLogger("plansync.database")

metadata = MetaData()

# Pool sizing for server databases (Postgres)
POOL_OPTIONS = {
    "poolclass": QueuePool,
    "pool_size": 10,
    "max_overflow": 20,
    "pool_timeout": 30,
    "pool_recycle": 3600,
    "pool_pre_ping": True,
}

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_database_url() -> Optional[str]:
    """TEST_DATABASE_URL from the environment wins over settings.DATABASE_URL."""
    return os.getenv("TEST_DATABASE_URL") or settings.DATABASE_URL


def engine_options(url: str) -> dict:
    """create_engine keyword arguments suited to the URL's backend."""
    if not url.startswith("sqlite"):
        return dict(POOL_OPTIONS)
    options = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in url or url.rstrip("/") == "sqlite:":
        # One shared connection, otherwise each checkout sees an empty database
        options["poolclass"] = StaticPool
    return options


def init_engine(database_url: Optional[str] = None) -> Engine:
    """(Re)build the process-wide engine and session factory."""
    global _engine, _session_factory

    url = database_url or get_database_url()
    if not url:
        raise ValueError("DATABASE_URL is not configured. Set it in the environment or .env file.")

    if _engine is not None:
        _engine.dispose()

    _engine = create_engine(url, **engine_options(url))
    _session_factory = sessionmaker(bind=_engine, autoflush=False)
    logger.info("database.engine_initialized", extra={"event_type": _engine.dialect.name})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


@contextmanager
def get_db_session() -> Iterator[Session]:
    """Session that commits on success and rolls back on any exception."""
    if _session_factory is None:
        init_engine()
    session = _session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    """Create missing plan tables (idempotent)."""
    metadata.create_all(bind=get_engine())


# Primary profile store: authoritative plan per account
profiles = Table(
    'profiles',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('display_name', Text, nullable=True),
    Column('email', String(320), nullable=True),
    Column('role', String(50), nullable=False, server_default='user'),
    Column('plan', String(20), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    # Index for finding all accounts on a plan
    Index('idx_profiles_plan', 'plan'),
)

# Identity/auth metadata store: denormalized, never authoritative
identity_metadata = Table(
    'identity_metadata',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('plan', String(20), nullable=True),
    Column('plan_synced_at', DateTime(timezone=True), nullable=True),
    Column('metadata', JSON, nullable=True),
)

# Plan change audit log (append-only)
plan_change_logs = Table(
    'plan_change_logs',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('old_plan', String(20), nullable=True),
    Column('new_plan', String(20), nullable=False),
    Column('change_date', DateTime(timezone=True), nullable=False),
    Column('change_method', String(50), nullable=False),
    # Composite index for history lookups: (user_id, change_date)
    Index('idx_plan_change_logs_user_date', 'user_id', 'change_date'),
)
