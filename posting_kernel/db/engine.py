"""
Module: posting_kernel.db.engine
Responsibility: The process-wide engine and session factory, table
    creation, and a commit-or-rollback scope for scripts.
Architecture position: Kernel > DB.  May import from db/base.py and, inside
    create_tables/drop_tables, the models package so every table is
    registered on Base.metadata.

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED.  Concurrent writers to one slot are
      serialized by the partial unique index on active postings, so no
      stronger isolation is needed.
    - SQLite gets SAVEPOINT support, which per-item isolation in batches and
      the slot-conflict mapping in PostingWriter both rely on.

Failure modes:
    - RuntimeError from get_engine/get_session before an engine exists.
"""

import atexit
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from posting_kernel.logging_config import configure_logging, get_logger

if TYPE_CHECKING:
    from posting_config.schema import EngineSettings

logger = get_logger("db.engine")

_engine: Engine | None = None
_sessions: sessionmaker[Session] | None = None


def _sqlite_savepoints(engine: Engine) -> None:
    # pysqlite only opens a transaction at the first DML statement, so a
    # SAVEPOINT issued before it fails.  Take BEGIN over from the driver.
    @event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _explicit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_engine_from_url(database_url: str, echo: bool = False, pool_size: int = 10) -> Engine:
    """
    Create the process-wide engine for ``database_url`` and a session
    factory bound to it.  Calling again replaces both.

    Sessions from the factory keep attribute values after commit, so DTOs
    built from rows stay readable once the orchestrator has committed.
    """
    global _engine, _sessions

    if make_url(database_url).get_backend_name() == "sqlite":
        engine = create_engine(database_url, echo=echo)
        _sqlite_savepoints(engine)
    else:
        engine = create_engine(
            database_url,
            echo=echo,
            pool_size=pool_size,
            pool_pre_ping=True,
            isolation_level="READ COMMITTED",
        )

    if _engine is not None:
        _engine.dispose()
    _engine = engine
    _sessions = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info("engine_initialized", extra={"dialect": engine.dialect.name, "echo": echo})
    return engine


def init_engine_from_settings(settings: "EngineSettings") -> Engine:
    """Engine for ``settings.database_url`` with its SQL echo flag."""
    return init_engine_from_url(settings.database_url, echo=settings.echo_sql)


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("No database engine; call init_engine_from_url() first")
    return _engine


def get_session() -> Session:
    """A new Session from the process-wide factory."""
    if _sessions is None:
        raise RuntimeError("No database engine; call init_engine_from_url() first")
    return _sessions()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Commit on normal exit, roll back and re-raise on error, always close.

    For scripts that drive services directly::

        with session_scope() as session:
            PostingOrchestrator(session, auto_commit=False).clear_postings(...)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("session_scope_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create every posting table and index on the current engine."""
    from posting_kernel.db.base import Base
    import posting_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    from posting_kernel.db.base import Base
    import posting_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory (tests)."""
    global _engine, _sessions
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _sessions = None


atexit.register(reset_engine)
