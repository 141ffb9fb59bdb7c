"""
Synchronous Database Access for EventReel

RQ tasks are sync and the API handlers that touch the job store run in a
threadpool, so both processes share one sync engine and session factory.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from .core.config import get_settings


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""
    pass


def get_database_url() -> str:
    """
    Get the database URL from settings.
    Converts async driver URLs to their sync equivalents.
    """
    url = get_settings().database_url

    if url.startswith("sqlite+aiosqlite://"):
        url = url.replace("sqlite+aiosqlite://", "sqlite://")
    elif url.startswith("postgresql+asyncpg://"):
        url = url.replace("postgresql+asyncpg://", "postgresql://")

    return url


def create_db_engine(url: str, echo: bool = False):
    """
    Create a sync engine for url.

    In-memory SQLite shares a single connection across threads so every
    session sees the same database.
    """
    if url.startswith("sqlite") and (":memory:" in url or url in ("sqlite://", "sqlite:///")):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(url, echo=echo, pool_pre_ping=True)


_engine = None


def get_engine():
    """Get or create the sync database engine."""
    global _engine
    if _engine is None:
        _engine = create_db_engine(get_database_url(), echo=get_settings().debug)
    return _engine


_SessionLocal = None


def get_session_factory():
    """Get or create the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            bind=get_engine(),
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
    return _SessionLocal


def create_all_tables(engine=None) -> None:
    """Create all tables that do not exist yet."""
    from . import models  # noqa: F401  registers the mappers

    Base.metadata.create_all(bind=engine or get_engine())
