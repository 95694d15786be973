"""
CallSim - Database Utilities
============================

Database connection management, session handling, and dialect helpers for
the knowledge pipeline.

Usage:
    from callsim.core.db import get_engine, get_session, init_db

    engine = get_engine()
    init_db(engine)

    with get_session() as session:
        session.add(Tenant(name="acme"))
"""

import os
from collections.abc import Generator
from contextlib import contextmanager
from uuid import UUID

from sqlalchemy import create_engine, event, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from ..resilience.error_handler import InvalidKbTypeError
from .models import Base, KbTypeEnum, Tenant

# =============================================================================
# CONFIGURATION
# =============================================================================


def get_database_url() -> str:
    """
    Get database URL from settings or environment.

    Environment variables (in order of precedence):
    - DATABASE_URL: Full connection string
    - POSTGRES_* variables: Individual connection parameters
    """
    if url := os.getenv("DATABASE_URL"):
        return url

    host = os.getenv("POSTGRES_HOST")
    if not host:
        from ..config import get_settings

        return get_settings().DATABASE_URL

    port = os.getenv("POSTGRES_PORT", "5432")
    user = os.getenv("POSTGRES_USER", "postgres")
    password = os.getenv("POSTGRES_PASSWORD", "")
    database = os.getenv("POSTGRES_DB", "callsim")

    if password:
        return f"postgresql+psycopg://{user}:{password}@{host}:{port}/{database}"
    return f"postgresql+psycopg://{user}@{host}:{port}/{database}"


# =============================================================================
# ENGINE AND SESSION MANAGEMENT
# =============================================================================

_engine: Engine | None = None
_SessionFactory: sessionmaker | None = None


def get_engine(
    url: str | None = None,
    pool_size: int = 5,
    max_overflow: int = 10,
    echo: bool = False,
) -> Engine:
    """
    Get or create the SQLAlchemy engine.

    Args:
        url: Database URL (uses get_database_url() if not provided)
        pool_size: Number of connections in the pool
        max_overflow: Max connections above pool_size
        echo: Enable SQL logging

    Returns:
        SQLAlchemy Engine instance
    """
    global _engine

    if _engine is None:
        db_url = url or get_database_url()
        is_sqlite = db_url.startswith("sqlite")

        engine_kwargs = {"echo": echo}

        if is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            engine_kwargs["poolclass"] = QueuePool
            engine_kwargs["pool_size"] = pool_size
            engine_kwargs["max_overflow"] = max_overflow
            engine_kwargs["pool_pre_ping"] = True
            engine_kwargs["connect_args"] = {"prepare_threshold": None}

        _engine = create_engine(db_url, **engine_kwargs)
        if is_sqlite:
            enable_sqlite_savepoints(_engine)

    return _engine


def get_session_factory(engine: Engine | None = None) -> sessionmaker:
    """Get or create session factory."""
    global _SessionFactory

    if _SessionFactory is None:
        _SessionFactory = sessionmaker(
            bind=engine or get_engine(),
            autoflush=False,
            expire_on_commit=False,
        )

    return _SessionFactory


@contextmanager
def get_session(session_factory: sessionmaker | None = None) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Commits on success, rolls back on any exception.

    Usage:
        with get_session() as session:
            sources = session.query(KnowledgeSource).all()
    """
    session = (session_factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# =============================================================================
# DATABASE INITIALIZATION
# =============================================================================


def init_db(engine: Engine | None = None) -> None:
    """
    Initialize the database schema.

    Creates all tables and enables the pgvector extension.
    For production, use migrations instead.
    """
    engine = engine or get_engine()

    if engine.dialect.name == "postgresql":
        with engine.connect() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
            conn.commit()

    Base.metadata.create_all(engine)


def drop_all_tables(engine: Engine | None = None) -> None:
    """
    Drop all tables. USE WITH CAUTION!

    Only for development/testing.
    """
    engine = engine or get_engine()
    Base.metadata.drop_all(engine)


# =============================================================================
# TENANT HELPERS
# =============================================================================


def get_or_create_tenant_id(session: Session, name: str = "default") -> UUID:
    """Get or create a tenant by name."""
    tenant = session.query(Tenant).filter(Tenant.name == name).first()
    if tenant:
        return tenant.id

    tenant = Tenant(name=name)
    session.add(tenant)
    session.flush()
    return tenant.id


# =============================================================================
# DIALECT HELPERS
# =============================================================================


def enable_sqlite_savepoints(engine: Engine) -> None:
    """
    Let pysqlite honour SAVEPOINT / nested transactions.

    The driver's own transaction handling is switched off and SQLAlchemy
    emits BEGIN itself; foreign keys are enforced on every connection.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def dialect_insert(session: Session, model):
    """
    Build an INSERT supporting ON CONFLICT for the session's dialect.

    Both PostgreSQL and SQLite expose on_conflict_do_nothing / do_update.
    """
    if session.get_bind().dialect.name == "sqlite":
        return sqlite.insert(model)
    return postgresql.insert(model)


def is_postgres(session: Session) -> bool:
    return session.get_bind().dialect.name == "postgresql"


def coerce_kb_type(value) -> KbTypeEnum:
    """
    Resolve a caller-supplied kb type.

    Accepts the enum itself, "client"/"operator" and the Portuguese
    aliases "cliente"/"operador", ignoring case and surrounding spaces.
    """
    if isinstance(value, KbTypeEnum):
        return value
    normalized = str(value or "").strip().lower()
    resolved = _KB_TYPE_ALIASES.get(normalized)
    if resolved is None:
        raise InvalidKbTypeError(f"Invalid kb_type: {value!r}", details={"allowed": ["client", "operator"]})
    return resolved


_KB_TYPE_ALIASES = {
    "client": KbTypeEnum.CLIENT,
    "cliente": KbTypeEnum.CLIENT,
    "operator": KbTypeEnum.OPERATOR,
    "operador": KbTypeEnum.OPERATOR,
}


# =============================================================================
# TESTING UTILITIES
# =============================================================================


def create_test_engine(echo: bool = False) -> Engine:
    """Create a shared in-memory SQLite engine with the full schema."""
    engine = create_engine(
        "sqlite://",
        echo=echo,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    return engine
