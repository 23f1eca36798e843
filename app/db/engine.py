# =============================================================================
# Engines & Sessions — PostgreSQL (asyncpg for queries, psycopg2 for ingestion)
# =============================================================================
#
#   async_session_factory()  → AsyncSession for the /ask document lookup and
#                              pgvector similarity search
#   get_sync_session()       → committing Session scope for the ingestion
#                              pipeline and registration (worker thread or
#                              Celery worker)
#
# Both engines are built on first use and cached, so importing the package
# never opens a pool and test runs that fake the repository never need a
# database driver.
# =============================================================================

from collections.abc import Generator
from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy import Engine, create_engine
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import Session, sessionmaker

from app.config import settings

_POOL = {"pool_size": 5, "max_overflow": 10, "pool_pre_ping": True}


@lru_cache
def get_async_engine() -> AsyncEngine:
    return create_async_engine(settings.database_url, echo=settings.debug, **_POOL)


@lru_cache
def _async_sessionmaker() -> async_sessionmaker[AsyncSession]:
    # Query results are read after the session closes
    return async_sessionmaker(bind=get_async_engine(), expire_on_commit=False)


def async_session_factory() -> AsyncSession:
    """New AsyncSession; use as `async with async_session_factory() as s:`."""
    return _async_sessionmaker()()


@lru_cache
def get_sync_engine() -> Engine:
    return create_engine(settings.database_url_sync, echo=settings.debug, **_POOL)


@lru_cache
def _sync_sessionmaker() -> sessionmaker[Session]:
    return sessionmaker(bind=get_sync_engine(), expire_on_commit=False)


@contextmanager
def get_sync_session() -> Generator[Session, None, None]:
    """
    Transactional scope for the ingestion path.

        with get_sync_session() as session:
            session.execute(delete(Chunk).where(Chunk.document_id == doc_id))

    Commits on clean exit, rolls back and re-raises otherwise.
    """
    session = _sync_sessionmaker()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
