"""
Module: grant_kernel.db.engine
Responsibility: Process-wide SQLAlchemy engine for the project store, the
    session factory bound to it, and the unit-of-work helper services use.
Architecture position: Kernel > DB.  Imports models/ lazily, only to
    register tables before create_tables().

Invariants enforced:
    - session_scope() commits when the block exits normally and rolls back
      otherwise; the exception is always re-raised.
    - An in-memory SQLite store lives on a single shared connection, so
      every session opened against it sees the same projects.

Failure modes:
    - RuntimeError from get_engine()/get_session() before
      init_engine_from_url().
"""

import atexit
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from grant_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_make_session: sessionmaker[Session] | None = None

_NOT_READY = "Project store not initialized; call init_engine_from_url() first."


def _engine_options(database_url: str, echo: bool) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": echo}
    if not database_url.startswith("sqlite"):
        options["pool_pre_ping"] = True
        return options
    options["connect_args"] = {"check_same_thread": False}
    in_memory = ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///")
    if in_memory:
        options["poolclass"] = StaticPool
    return options


def init_engine_from_url(database_url: str, echo: bool = False) -> Engine:
    """
    Open the project store at ``database_url``, replacing any previous one.

    ``sqlite:///:memory:`` is what the tests and the CLI use; a PostgreSQL
    URL works unchanged since the schema uses only generic column types.
    """
    global _engine, _make_session

    reset_engine()
    _engine = create_engine(database_url, **_engine_options(database_url, echo))
    _make_session = sessionmaker(bind=_engine, expire_on_commit=False)

    logger.info("project_store_opened", extra={"dialect": _engine.dialect.name})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_READY)
    return _engine


def get_session() -> Session:
    if _make_session is None:
        raise RuntimeError(_NOT_READY)
    return _make_session()


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    One unit of work against the project store::

        with session_scope() as session:
            ProjectRepository(session).save(project)
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("project_store_rollback", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    from grant_kernel.db.base import Base
    import grant_kernel.models  # noqa: F401  (registers the ORM tables)

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    from grant_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose of the current engine, if any, and forget the session factory."""
    global _engine, _make_session

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _make_session = None


def _atexit_dispose() -> None:
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)
