"""SQLAlchemy engine and session factory for the durable engagement store.

Sessions are synchronous; async callers run their unit of work through
``asyncio.to_thread`` so the event loop is never blocked on the database.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.orm import Session
from sqlalchemy.orm import sessionmaker

from app.core.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def _build_engine(url: str) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


engine: Engine = _build_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


def configure_database(url: str) -> Engine:
    """Rebind the session factory to a new database URL (used by tests and scripts)."""
    global engine
    engine.dispose()
    engine = _build_engine(url)
    SessionLocal.configure(bind=engine)
    logger.info("Database rebound to %s", url)
    return engine


def init_db() -> None:
    """Create all tables that do not exist yet."""
    # Model modules register their tables on Base.metadata when imported
    from app.models import db_models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ensured")


@contextmanager
def session_scope() -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
