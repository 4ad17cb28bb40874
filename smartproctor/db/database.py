"""
SQLAlchemy engine and session factory for the operator config store.

The engine is created on first use from `DATABASE_URL` so that importing
this module never opens a connection.
"""
import logging
from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from smartproctor.config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


@lru_cache
def get_engine() -> Engine:
    url = get_settings().database_url
    kwargs = {"pool_pre_ping": True, "echo": False}
    if url.startswith("sqlite"):
        # sqlite connections are used from request and ticker threads
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs.update(pool_size=5, max_overflow=10, pool_recycle=3600)
    return create_engine(url, **kwargs)


def session_factory(engine: Engine | None = None) -> sessionmaker:
    return sessionmaker(bind=engine or get_engine(), autocommit=False, autoflush=False)


@contextmanager
def get_db(factory: sessionmaker | None = None):
    """Provide a transactional DB session. Rolls back on exception."""
    session = (factory or session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def check_db_connection(engine: Engine | None = None) -> bool:
    """Returns True if the DB is reachable."""
    try:
        with (engine or get_engine()).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        logger.warning("DB connectivity check failed: %s", exc)
        return False
