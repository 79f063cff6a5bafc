"""
Engine, sessions and transaction scopes.

Request handlers get one session per request (``db_session``) and wrap each
mutation in ``unit_of_work``. Card mutations take row locks with
``SELECT ... FOR UPDATE``, so Postgres connections carry a ``lock_timeout``
and a blocked writer fails instead of waiting forever.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from collections.abc import Generator

from flask import Flask, current_app, g
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)


def _engine_options(db_url: str, lock_timeout_ms: int) -> dict[str, object]:
    opts: dict[str, object] = {"future": True, "pool_pre_ping": True}
    if db_url.startswith("postgres"):
        opts.update(
            {
                "pool_recycle": 1800,
                "pool_size": 5,
                "max_overflow": 10,
                "pool_timeout": 30,
                "connect_args": {"options": f"-c lock_timeout={lock_timeout_ms}"},
            }
        )
    elif db_url.startswith("sqlite"):
        # SQLite has no row locks; writers serialize on the file instead.
        opts["connect_args"] = {"timeout": max(lock_timeout_ms // 1000, 1)}
    return opts


def _install_sqlite_pragmas(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_connection, connection_record):  # type: ignore[no-redef]
        cur = dbapi_connection.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()


def init_db(app: Flask) -> None:
    db_url = app.config["DATABASE_URL"]
    lock_timeout_ms = int(app.config.get("DB_LOCK_TIMEOUT_MS") or 5000)
    engine = create_engine(db_url, **_engine_options(db_url, lock_timeout_ms))
    if db_url.startswith("sqlite"):
        _install_sqlite_pragmas(engine)

    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        expire_on_commit=False,
    )
    logger.info("database ready dialect=%s lock_timeout_ms=%s", engine.dialect.name, lock_timeout_ms)


def db_session() -> Session:
    """Request-scoped session, closed by ``teardown_db_session``."""
    s: Session | None = getattr(g, "db_session", None)
    if s is None:
        s = current_app.extensions["sqlalchemy_sessionmaker"]()
        g.db_session = s
    return s


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = g.pop("db_session", None)
    if s is not None:
        s.close()


@contextmanager
def unit_of_work(s: Session) -> Generator[Session, None, None]:
    """
    Commit everything the block wrote, or nothing. Row locks taken inside
    the block are held until the commit or rollback here.
    """
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """Own session and transaction outside a request (tests, shell)."""
    s: Session = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def ping(s: Session) -> bool:
    return s.execute(text("SELECT 1")).scalar() == 1
