"""Database connection and session management."""
import logging
import os
from contextlib import contextmanager
from typing import Iterator, Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import NullPool, StaticPool
from langcampus.core.config import settings
from langcampus.core.errors import StoreUnavailable
from langcampus.models.tables import Base

logger = logging.getLogger(__name__)


def _create_engine(database_url: str):
    """Create engine: SQLite uses NullPool (StaticPool for :memory:); PostgreSQL uses pooling."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        database_path = url.database
        if not database_path or database_path == ":memory:":
            # One shared connection so every session sees the same in-memory database
            return create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        parent = os.path.dirname(database_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=NullPool,
        )
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )


engine = _create_engine(settings.database_url)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def make_session_factory(database_url: str) -> sessionmaker:
    """Session factory bound to its own engine, with tables created."""
    other = _create_engine(database_url)
    Base.metadata.create_all(bind=other)
    return sessionmaker(autocommit=False, autoflush=False, bind=other)


def init_db():
    """Initialize database tables."""
    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """
    Transactional scope: commit on success, roll back on any error.

    Driver and connection errors surface as StoreUnavailable so callers can
    fail closed and offer a retry.
    """
    db = (factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Store error: {e}", exc_info=True)
        raise StoreUnavailable("The data store is unavailable. Please try again.") from e
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
