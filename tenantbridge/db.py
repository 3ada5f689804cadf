# tenantbridge/db.py
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import settings


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    # Stored naive; every timestamp column is UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ignores REFERENCES clauses unless asked; keep it honest like Postgres.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(url: str | None = None, **kwargs) -> Engine:
    url = url or settings.database_url
    if url.startswith("sqlite"):
        connect_args = dict(kwargs.pop("connect_args", {}) or {})
        connect_args.setdefault("check_same_thread", False)
        eng = create_engine(url, connect_args=connect_args, future=True, **kwargs)
        event.listen(eng, "connect", _enable_sqlite_foreign_keys)
    else:
        eng = create_engine(url, pool_pre_ping=True, future=True, **kwargs)

    from .monitoring import install_query_monitor

    install_query_monitor(eng)
    return eng


def make_session_factory(bind: Engine) -> sessionmaker[Session]:
    # Services hand plain rows back to callers after the unit of work closes.
    return sessionmaker(
        bind=bind,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


engine = make_engine()

SessionLocal = make_session_factory(engine)


def get_session_factory() -> sessionmaker[Session]:
    """
    FastAPI dependency. Routes open their own units of work from this
    factory, so tests swap the database with one dependency override.
    """
    return SessionLocal
