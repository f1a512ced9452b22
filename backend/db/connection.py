"""Engine and unit-of-work sessions for the bonus catalog database."""

import logging
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from db.models import Base

logger = logging.getLogger(__name__)

_engine: Engine | None = None
_sessions: sessionmaker[Session] | None = None


def _enable_sqlite_foreign_keys(dbapi_conn, _connection_record) -> None:
    # history rows reference bonus_master.id; SQLite ignores that unless asked
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()


def get_engine(url: str | None = None) -> Engine:
    """Shared engine for the configured database, or for ``url`` on first use."""
    global _engine

    if _engine is None:
        settings = get_settings()
        target: str = url or settings.database.url
        logger.info(
            "Bonus database: %s", target if url else settings.database.db_info_for_logging()
        )
        _engine = create_engine(target, echo=settings.debug, pool_pre_ping=True)
        if _engine.dialect.name == "sqlite":
            event.listen(_engine, "connect", _enable_sqlite_foreign_keys)
    return _engine


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """One unit of work: commit on success, roll back on any error."""
    global _sessions

    if _sessions is None:
        _sessions = sessionmaker(bind=get_engine(), expire_on_commit=False)
    session: Session = _sessions()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_database(url: str | None = None) -> Engine:
    """Create missing bonus tables (local development; deployments run migrations)."""
    engine: Engine = get_engine(url)
    Base.metadata.create_all(engine)
    return engine


def reset_engine() -> None:
    """Dispose the shared engine so the next call reconnects (tests, url changes)."""
    global _engine, _sessions
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _sessions = None
