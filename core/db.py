# compensation-core/core/db.py
"""
Database management for the compensation core.

One database holds the core-owned tables (tree, counters, carry-forward,
placements) and the tables of the default collaborators (packages,
settings, sponsor links, ledger).
"""
import logging
from contextlib import contextmanager
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session

from config import Config
from models.base import Base

logger = logging.getLogger(__name__)

_engine = None
_SessionFactory = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # Tree links are foreign keys; SQLite ignores them unless asked
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine():
    """Create the engine on first use from Config.DATABASE_URL."""
    global _engine
    if _engine is not None:
        return _engine

    database_url = Config.get(Config.DATABASE_URL, "sqlite:///compensation.db")

    if database_url.startswith("sqlite"):
        _engine = create_engine(database_url, echo=False)
        event.listen(_engine, "connect", _enable_sqlite_foreign_keys)
    else:
        # Pool checkout timeout bounds every collaborator lookup
        _engine = create_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
            pool_timeout=Config.get(Config.DEPENDENCY_TIMEOUT, 5),
        )

    logger.info(f"Database engine created: {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def get_session_factory():
    global _SessionFactory
    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=get_engine())
    return _SessionFactory


def get_session() -> Session:
    """New session; the caller closes it."""
    return get_session_factory()()


@contextmanager
def get_db_session_ctx():
    """
    Session for one unit of work: committed on success, rolled back on error.

    Usage:
        with get_db_session_ctx() as session:
            summary = await MatchingBonusService(session).runMatchingForAll(Period.DAY)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database error, transaction rolled back: {e}")
        raise
    finally:
        session.close()


def setup_database():
    """Create every table the core and its default collaborators use."""
    import models  # noqa: F401  registers all tables on Base.metadata

    engine = get_engine()
    Base.metadata.create_all(engine)
    logger.info(f"Database ready: {', '.join(sorted(Base.metadata.tables))}")


def dispose_engine():
    """Close pooled connections (worker shutdown)."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _SessionFactory = None
