"""Database engine, sessions and schema creation for the mirror."""

import logging
from functools import lru_cache

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def configure_sqlite(engine: Engine) -> None:
    """Register a ``connect`` listener that sets per-connection pragmas.

    Foreign keys are off by default in SQLite, so the account and holding
    cascades only hold once they are enabled. WAL lets the fleet's worker
    sessions read while another Item's page commits.
    """

    @event.listens_for(engine, "connect")
    def _set_pragmas(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()


@lru_cache
def get_engine() -> Engine:
    """Get or create the database engine (cached)."""
    database_url = settings.DATABASE_URL
    is_sqlite = database_url.startswith("sqlite")

    engine = create_engine(
        database_url,
        # Fleet sync hands sessions to worker threads
        connect_args={"check_same_thread": False} if is_sqlite else {},
        echo=False,
    )
    if is_sqlite:
        configure_sqlite(engine)
    logger.debug("Database engine created for %s", engine.url.render_as_string(hide_password=True))
    return engine


def get_session_local():
    """Get a sessionmaker bound to the engine.

    Transaction conventions:
    - The persistence gateway ``flush()``es record writes and owns the
      ``commit()`` that pairs a page with its cursor.
    - Cursor resets and reauth flag changes commit immediately so that
      readers in other sessions observe them before the next fetch.
    """
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def init_db() -> None:
    """Create any missing tables. Existing tables are left untouched."""
    import models  # noqa: F401  (registers mappers on Base.metadata)

    Base.metadata.create_all(bind=get_engine())

