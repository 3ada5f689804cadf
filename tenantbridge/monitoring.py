# tenantbridge/monitoring.py
from __future__ import annotations

import logging
import time

from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import settings

log = logging.getLogger("tenantbridge.sql")

_START_ATTR = "_tb_query_start"


# The start time rides on the statement's execution context, which is
# discarded with the statement whether it succeeds or fails.
def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany) -> None:
    if context is not None:
        setattr(context, _START_ATTR, time.perf_counter())


def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany) -> None:
    started = getattr(context, _START_ATTR, None)
    if started is None:
        return
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    if elapsed_ms >= int(settings.slow_query_ms):
        # Statement text only; bound parameters may carry tenant data.
        log.warning(
            "slow query",
            extra={"duration_ms": elapsed_ms, "operation": " ".join(statement.split())[:300]},
        )


def install_query_monitor(engine: Engine) -> None:
    if event.contains(engine, "before_cursor_execute", _before_cursor_execute):
        return
    event.listen(engine, "before_cursor_execute", _before_cursor_execute)
    event.listen(engine, "after_cursor_execute", _after_cursor_execute)


def check_database_connection(db: Session) -> bool:
    try:
        db.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        log.exception("database connection check failed")
        return False
