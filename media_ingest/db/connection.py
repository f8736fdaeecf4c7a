"""Database connection and session management."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .config import settings
from .models import Base

logger = logging.getLogger(__name__)


def make_engine(url: str, echo: bool = False) -> Engine:
    """
    Create an engine for ``url``.

    PostgreSQL gets a pooled engine. SQLite (local runs and tests) gets a
    busy timeout so concurrent writers queue instead of failing.
    """
    kwargs: Dict[str, Any] = {"echo": echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    else:
        kwargs.update(pool_pre_ping=True, pool_size=10, max_overflow=20)

    return create_engine(url, **kwargs)


# Create SQLAlchemy engine
engine = make_engine(settings.database_url, echo=settings.sql_echo)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def make_session_factory(bind: Engine) -> sessionmaker:
    """Session factory bound to an arbitrary engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


def init_db(bind: Engine = None) -> None:
    """Initialize database by creating all tables."""
    logger.info("Initializing database...")
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database initialized successfully")


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Get database session for use in context manager.

    Usage:
        with get_db_context() as db:
            job = db.get(Job, job_id)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
