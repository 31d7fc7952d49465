import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings
from errors import StorageFailure


logger = logging.getLogger(__name__)

# Writers queue on the SQLite write lock for this long (ms) before failing.
SQLITE_BUSY_TIMEOUT_MS = 5000


def create_ledger_engine(database_url: str) -> Engine:
    is_sqlite = database_url.startswith("sqlite")
    connect_args: dict[str, object] = {"check_same_thread": False} if is_sqlite else {}
    eng = create_engine(
        database_url, connect_args=connect_args, pool_pre_ping=not is_sqlite
    )
    if is_sqlite:
        event.listen(eng, "connect", _sqlite_on_connect)
        event.listen(eng, "begin", _sqlite_begin_immediate)
    return eng


def _sqlite_on_connect(dbapi_conn, _record):
    # pysqlite defers BEGIN until the first write; _sqlite_begin_immediate
    # issues it instead.
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS};")
    cursor.close()


def _sqlite_begin_immediate(conn):
    # Take the write lock up front so a balance read inside a unit of work
    # cannot go stale before its write.
    conn.exec_driver_sql("BEGIN IMMEDIATE")


engine = create_ledger_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for one scheduler job or startup step, closed afterwards."""
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        logger.warning("session_scope: rolled back after error")
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def atomic(session: Session, action: str) -> Iterator[Session]:
    """Run one unit of work on ``session``: commit on success, roll back on error.

    Database errors are re-raised as ``StorageFailure``; domain errors raised
    inside the block propagate unchanged after the rollback.
    """
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise StorageFailure(f"{action} failed: {exc}") from exc
    except Exception:
        session.rollback()
        raise
