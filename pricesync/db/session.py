"""
Database Session
Provides database session factory for use in Celery tasks, scripts and the job runners.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from pricesync.config.settings import get_settings


def build_engine(database_url: str, **kwargs) -> Engine:
    """
    Create an engine for the given URL.

    SQLite engines skip the pool sizing options, which only apply to
    server databases.
    """
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False}, **kwargs)

    settings = get_settings()
    return create_engine(
        database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,  # Verify connections before using
        **kwargs,
    )


# Create engine
engine = build_engine(get_settings().database_url)

# Create session factory
SessionLocal = sessionmaker(autoflush=False, bind=engine)
