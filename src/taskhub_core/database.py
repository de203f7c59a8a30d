"""Database connection and session management."""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator

from .config import get_settings

settings = get_settings()


def _engine_options(database_url: str) -> dict:
    """Pool settings for the configured backend."""
    if database_url.startswith("sqlite"):
        # SQLite is used for local development; sessions cross FastAPI's thread pool
        return {"connect_args": {"check_same_thread": False}}
    # Conservative pool settings for a shared PostgreSQL instance
    return {
        "pool_pre_ping": True,       # Verify connections before using
        "pool_size": 5,              # Base pool of 5 connections
        "max_overflow": 10,          # Allow up to 15 total connections
        "pool_recycle": 3600,        # Recycle connections every hour
        "pool_timeout": 30,          # Timeout after 30 seconds
    }


# Create database engine
engine = create_engine(settings.database_url, **_engine_options(settings.database_url))

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function to get database session.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
