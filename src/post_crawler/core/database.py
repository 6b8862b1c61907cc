"""Synchronous SQLAlchemy engine and session factory.

Provides:
- get_sync_session():   context manager yielding a Session for worker code
- Base.metadata:        re-exported so tooling can reference it without
                        importing individual models

The crawl worker runs inside Celery prefork processes and only issues short
single-row UPDATEs, so a small synchronous pool is enough:
- pool_size=5:          baseline connections held open
- max_overflow=5:       burst connections allowed above pool_size
- pool_pre_ping=True:   verify connection health before handing out

The ``posts`` table itself is created and migrated by the API service.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from post_crawler.core.models.base import Base  # noqa: F401


def _get_database_url() -> str:
    """Resolve the database URL from application settings."""
    from post_crawler.config.settings import get_settings  # noqa: PLC0415

    return str(get_settings().database_url)


def _get_sync_database_url() -> str:
    """Return a psycopg2 database URL derived from the configured URL.

    The API service shares its asyncpg DSN with the worker; the driver
    prefix is swapped so the same value can be reused.
    """
    url = _get_database_url()
    return url.replace("postgresql+asyncpg://", "postgresql+psycopg2://").replace(
        "postgresql://", "postgresql+psycopg2://"
    )


# ---------------------------------------------------------------------------
# Process-wide engine and session factory, created on first import.
# ---------------------------------------------------------------------------

sync_engine = create_engine(
    _get_sync_database_url(),
    pool_size=5,
    max_overflow=5,
    pool_pre_ping=True,
)

SyncSessionLocal: sessionmaker[Session] = sessionmaker(
    bind=sync_engine,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


@contextmanager
def get_sync_session() -> Generator[Session, None, None]:
    """Yield a synchronous SQLAlchemy Session.

    The session is rolled back on exception and always closed.  Callers
    commit explicitly.

    Usage::

        with get_sync_session() as session:
            session.execute(update(Post).where(...).values(...))
            session.commit()
    """
    session = SyncSessionLocal()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
