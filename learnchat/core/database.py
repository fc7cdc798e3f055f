"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- Connection pooling with sane defaults
- Test database support (TEST_DATABASE_URL, SQLite files)
- Dialect-aware insert-if-absent for idempotent creation
- Table definitions for accounts, credits, conversations and quizzes
"""
from typing import Any, Dict, Optional
from contextlib import contextmanager
from sqlalchemy import (
    create_engine,
    MetaData,
    Table,
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    JSON,
    Text,
    Date,
    Index,
    ForeignKey,
    UniqueConstraint,
    select,
    true,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import QueuePool
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.sql import func
import logging
import os

from learnchat.core.config import settings

logger = logging.getLogger(__name__)

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour

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

    connect_args: Dict[str, Any] = {}
    if url.startswith("sqlite"):
        # Sessions are handed between request threads
        connect_args["check_same_thread"] = False

    if _engine is not None:
        _engine.dispose()

    # Create engine with connection pooling
    _engine = create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        connect_args=connect_args,
        echo=False,  # Set to True for SQL query logging
    )

    # Create session factory
    _SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=_engine
    )

    return _engine


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


@contextmanager
def get_db_session():
    """
    Context manager for database sessions.

    Commits when the block exits cleanly, rolls back on any exception.

    Usage:
        with get_db_session() as session:
            session.execute(...)
    """
    SessionLocal = get_session_factory()
    session = SessionLocal()
    try:
        yield session
        session.commit()
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


def insert_if_absent(session: Session, table: Table, values: Dict[str, Any], conflict_columns: list) -> bool:
    """
    Insert a row unless one already exists for `conflict_columns`.

    Uses ON CONFLICT DO NOTHING where the dialect supports it, otherwise
    falls back to a savepoint + IntegrityError. Returns True when this call
    inserted the row, False when another writer got there first. Callers
    re-read the row afterwards either way.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(table).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
        return session.execute(stmt).rowcount == 1
    if dialect == "sqlite":
        stmt = sqlite_insert(table).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
        return session.execute(stmt).rowcount == 1

    try:
        with session.begin_nested():
            session.execute(table.insert().values(**values))
        return True
    except IntegrityError:
        return False


# Organizations and accounts (owner/admin/member/individual)
organizations = Table(
    'organizations',
    metadata,
    Column('organization_id', String(100), primary_key=True),
    Column('name', Text, nullable=False),
    Column('plan', String(50), nullable=False, server_default='business'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

accounts = Table(
    'accounts',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('display_name', Text, nullable=True),
    Column('user_type', String(20), nullable=False, server_default='individual'),
    Column('organization_id', String(100), ForeignKey('organizations.organization_id'), nullable=True),
    Column('individual_plan', String(50), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_accounts_organization', 'organization_id'),
)

# Access keys issued by organization admins (read-only for the credit engine)
access_keys = Table(
    'access_keys',
    metadata,
    Column('key_code', String(64), primary_key=True),
    Column('user_id', String(100), nullable=True, index=True),
    Column('organization_id', String(100), ForeignKey('organizations.organization_id'), nullable=False),
    Column('daily_token_limit', Integer, nullable=True),
    Column('is_active', Boolean, nullable=False, server_default=true()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Per-account point balance (individual user XOR organization)
credit_balances = Table(
    'credit_balances',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('owner_type', String(20), nullable=False),  # user | organization
    Column('owner_id', String(100), nullable=False),
    Column('monthly_used', Integer, nullable=False, server_default='0'),
    Column('balance', Integer, nullable=False, server_default='0'),
    Column('purchased_used', Integer, nullable=False, server_default='0'),
    Column('period_start', DateTime(timezone=True), nullable=False),
    Column('period_end', DateTime(timezone=True), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    UniqueConstraint('owner_type', 'owner_id', name='uq_credit_balances_owner'),
)

# Per-member, per-period sub-budget of an organization
credit_allocations = Table(
    'credit_allocations',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('organization_id', String(100), ForeignKey('organizations.organization_id'), nullable=False),
    Column('user_id', String(100), nullable=False),
    Column('allocated_points', Integer, nullable=False),
    Column('used_points', Integer, nullable=False, server_default='0'),
    Column('period_start', DateTime(timezone=True), nullable=False),
    Column('period_end', DateTime(timezone=True), nullable=False),
    Column('note', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('organization_id', 'user_id', 'period_start', 'period_end', name='uq_credit_allocations_member_period'),
    Index('idx_credit_allocations_lookup', 'organization_id', 'user_id', 'period_start'),
)

# Append-only debit/credit breakdown
credit_usage_events = Table(
    'credit_usage_events',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('account_type', String(20), nullable=False),  # user | organization | allocation
    Column('account_id', String(100), nullable=False),
    Column('category', String(50), nullable=False),
    Column('model_key', String(50), nullable=True),
    Column('points', Integer, nullable=False),
    Column('occurred_at', DateTime(timezone=True), nullable=False),
    Index('idx_credit_usage_events_account', 'account_type', 'account_id', 'occurred_at'),
)

# Daily token meter per user
token_usage = Table(
    'token_usage',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('usage_date', Date, nullable=False),
    Column('tokens_used', Integer, nullable=False, server_default='0'),
    Column('breakdown', JSON, nullable=False),
    UniqueConstraint('user_id', 'usage_date', name='uq_token_usage_user_date'),
)

conversations = Table(
    'conversations',
    metadata,
    Column('conversation_id', String(100), primary_key=True),
    Column('user_id', String(100), nullable=False, index=True),
    Column('mode', String(20), nullable=False),  # explanation | generation | brainstorm
    Column('title', Text, nullable=True),
    Column('messages', JSON, nullable=False),
    Column('compact_summary', JSON, nullable=True),
    Column('summary_through_index', Integer, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
)

artifacts = Table(
    'artifacts',
    metadata,
    Column('artifact_id', String(100), primary_key=True),
    Column('conversation_id', String(100), ForeignKey('conversations.conversation_id'), nullable=False, index=True),
    Column('user_id', String(100), nullable=False),
    Column('title', Text, nullable=True),
    Column('language', String(50), nullable=True),
    Column('content', Text, nullable=False),
    Column('unlock_level', Integer, nullable=False, server_default='0'),
    Column('total_questions', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

quizzes = Table(
    'quizzes',
    metadata,
    Column('quiz_id', String(100), primary_key=True),
    Column('artifact_id', String(100), ForeignKey('artifacts.artifact_id', ondelete='CASCADE'), nullable=False),
    Column('level', Integer, nullable=False),
    Column('question', Text, nullable=False),
    Column('options', JSON, nullable=False),
    Column('correct_label', String(1), nullable=False),
    Column('hint', Text, nullable=True),
    Column('code_snippet', Text, nullable=True),
    Column('code_language', String(50), nullable=True),
    Column('status', String(20), nullable=False, server_default='pending'),  # pending | answered
    Column('user_answer', String(1), nullable=True),
    Column('is_correct', Boolean, nullable=True),
    Column('answered_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('artifact_id', 'level', name='uq_quizzes_artifact_level'),
)
