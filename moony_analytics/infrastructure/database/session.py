"""Database session management with connection pooling"""

from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from moony_analytics.config import settings


def _connect_args(database_url: str) -> Dict[str, Any]:
    """Bound connect and statement time on PostgreSQL so a hung query cannot stall a retry attempt"""
    if database_url.startswith("postgresql"):
        statement_timeout_ms = int(settings.db_timeout_seconds * 1000)
        return {
            "connect_timeout": max(1, int(settings.db_timeout_seconds)),
            "options": f"-c statement_timeout={statement_timeout_ms}",
        }
    return {}


# Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,  # Verify connections before using
    pool_size=10,
    max_overflow=10,
    pool_recycle=3600,
    pool_timeout=settings.db_timeout_seconds,
    connect_args=_connect_args(settings.database_url),
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Session:
    """Dependency injection for database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
