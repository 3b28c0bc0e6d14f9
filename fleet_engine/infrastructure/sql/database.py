# fleet_engine/infrastructure/sql/database.py

"""SQLAlchemy database setup and session management."""

from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from fleet_engine.config import settings


# ============================================
# Base for ORM models
# ============================================
Base = declarative_base()


# ============================================
# Engine configuration
# ============================================
def create_db_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Create SQLAlchemy engine for the embedded state store."""

    url = database_url or settings.database_url
    kwargs = {"echo": settings.echo_sql if echo is None else echo}

    if url.startswith("sqlite"):
        # Fleet runner threads share the engine
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)

    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def set_sqlite_pragmas(dbapi_conn, connection_record):
            """Enable WAL and a busy timeout on connect."""
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    return engine


# Global engine instance (for production use)
engine = create_db_engine()

# Session factory (for production use)
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False
)


# ============================================
# Session factory function
# ============================================
def get_session_factory(engine_instance: Optional[Engine] = None):
    """
    Get a session factory bound to the given engine.

    If no engine provided, uses the default production engine.
    This allows tests to inject an in-memory engine.
    """
    if engine_instance is None:
        engine_instance = engine

    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine_instance,
        expire_on_commit=False
    )


# ============================================
# Database initialization
# ============================================
def init_db(engine_instance: Optional[Engine] = None) -> None:
    """Create all tables."""
    # Registers the ORM tables on Base.metadata
    from fleet_engine.infrastructure.sql import models  # noqa: F401

    if engine_instance is None:
        engine_instance = engine
    Base.metadata.create_all(bind=engine_instance)

