"""
Café Aroma - Database Configuration

SQLModel database setup with connection pooling.
Supports PostgreSQL (production) and SQLite (development).

Usage:
    from aroma.auth.database import get_engine, init_db

    engine = get_engine()
    init_db(engine)  # Creates tables
"""

from typing import Optional

from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy.pool import StaticPool

from aroma.config import settings


def get_database_url() -> str:
    """Database URL from settings, SQLite file by default."""
    return settings.DATABASE_URL or "sqlite:///./aroma.db"


def get_engine(database_url: Optional[str] = None, echo: bool = False):
    """
    Create SQLAlchemy engine with appropriate configuration.

    The storage timeout (DB_TIMEOUT_SECONDS) bounds lock waits and pool
    checkout; a timeout raises an SQLAlchemyError that the auth layer maps
    to INTERNAL.

    Args:
        database_url: Override database URL
        echo: Log SQL statements

    Returns:
        SQLAlchemy Engine
    """
    url = database_url or get_database_url()
    timeout = settings.DB_TIMEOUT_SECONDS

    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": timeout}
        if ":memory:" in url:
            return create_engine(
                url,
                echo=echo,
                connect_args=connect_args,
                poolclass=StaticPool,
            )
        return create_engine(url, echo=echo, connect_args=connect_args)

    # PostgreSQL configuration with connection pooling
    return create_engine(
        url,
        echo=echo,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=timeout,
        connect_args={
            "connect_timeout": timeout,
            "options": f"-c statement_timeout={timeout * 1000}",
        },
    )


def init_db(engine) -> None:
    """
    Initialize database tables.

    Safe to call multiple times (uses CREATE IF NOT EXISTS).
    """
    # Import models to register them with SQLModel
    from aroma.auth.models import User, UserSecurity  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session_factory(engine):
    """
    Create a session factory bound to engine.

    Returns:
        Callable that creates new database sessions
    """
    def session_factory() -> Session:
        return Session(engine)

    return session_factory

