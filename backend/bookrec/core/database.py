"""Database connection and session management."""

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from bookrec.config import get_settings
from bookrec.models.database import Base

settings = get_settings()


def _connect_args(database_url: str, timeout_ms: int) -> dict:
    """Per-statement deadline for the catalog store.

    PostgreSQL cancels statements running longer than statement_timeout;
    the store layer reports those cancellations as StoreTimeoutError.
    """
    if database_url.startswith("postgresql"):
        return {"options": f"-c statement_timeout={timeout_ms}"}
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


# Create database engine
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,  # Verify connections before using
    echo=settings.debug,  # Log SQL queries in debug mode
    connect_args=_connect_args(settings.database_url, settings.store_query_timeout_ms),
)

# Create session factory
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def init_db() -> None:
    """Create catalog tables that do not exist yet (development convenience)."""
    Base.metadata.create_all(bind=engine)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency for database sessions.

    The recommender only reads from the catalog, so the session is closed
    without committing.
    """
    with SessionLocal() as session:
        yield session
