from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.core.config import settings
from app.core.errors import PersistenceFailureError


logger = logging.getLogger(__name__)


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


def use_immediate_transactions(engine: Engine) -> None:
    """Start every SQLite transaction with BEGIN IMMEDIATE.

    pysqlite only emits BEGIN right before the first write, so two sessions
    can both run a dedup lookup before either inserts. Taking the write lock
    at BEGIN serializes check-then-insert where SELECT ... FOR UPDATE is
    unavailable. Other dialects are left alone.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, *, echo: bool = False) -> Engine:
    db_engine = create_engine(url, connect_args=_connect_args(url), echo=echo, future=True)
    use_immediate_transactions(db_engine)
    return db_engine


engine = build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
Base = declarative_base()


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session, *, operation: str = "write") -> Iterator[Session]:
    """Commit the enclosed writes together or roll all of them back.

    Store errors surface as PersistenceFailureError; domain errors raised
    inside the block propagate unchanged after the rollback.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("db.transaction_failed", extra={"operation": operation})
        raise PersistenceFailureError(f"Persistence store failed during {operation}") from exc
    except Exception:
        db.rollback()
        raise
