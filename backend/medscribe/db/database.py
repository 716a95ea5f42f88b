"""Database engine & session utilities."""

# The DB helper is deliberately minimal: sync engine + classic session maker.
# The same factory is used by the API process and by the Celery worker.

import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from medscribe.config import settings
from medscribe.db.base import Base

# ---------------------------------------------------------------------------
# Engine & session factory
# ---------------------------------------------------------------------------

logger = logging.getLogger(__name__)
logger.info("Creating database engine for %s", settings.DATABASE_URL.split('@')[-1])

_engine_kwargs = {"echo": settings.DB_ECHO, "future": True}
if settings.DATABASE_URL.startswith("sqlite"):
    # One shared connection so an in-memory database is visible to every
    # session, including those opened from FastAPI's worker threads.
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
    if ":memory:" in settings.DATABASE_URL:
        _engine_kwargs["poolclass"] = StaticPool

engine = create_engine(settings.DATABASE_URL, **_engine_kwargs)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)


def create_tables() -> None:
    """Create all tables if they do not yet exist. Harmless when they do."""

    # Registers every mapped class on Base.metadata.
    from medscribe import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ensured")


def get_db():
    """Yields a database session and ensures it's closed after use."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        logger.debug("DB session closed")
