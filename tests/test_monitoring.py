# tests/test_monitoring.py
from __future__ import annotations

import logging

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from tenantbridge.config import settings
from tenantbridge.monitoring import check_database_connection


def _slow_records(caplog):
    return [r for r in caplog.records if r.name == "tenantbridge.sql" and r.getMessage() == "slow query"]


def test_failed_statements_leave_no_timing_state_on_the_connection(engine, monkeypatch, caplog):
    monkeypatch.setattr(settings, "slow_query_ms", 0)
    caplog.set_level(logging.WARNING, logger="tenantbridge.sql")

    with engine.connect() as conn:
        for _ in range(3):
            with pytest.raises(OperationalError):
                conn.execute(text("SELECT * FROM no_such_table"))
            conn.rollback()
        assert not [k for k in conn.info if "start" in str(k)]

        conn.execute(text("SELECT 1"))

    slow = _slow_records(caplog)
    assert len(slow) == 1
    assert slow[0].operation == "SELECT 1"
    assert slow[0].duration_ms >= 0


def test_fast_queries_are_not_reported(engine, monkeypatch, caplog):
    monkeypatch.setattr(settings, "slow_query_ms", 60_000)
    caplog.set_level(logging.WARNING, logger="tenantbridge.sql")

    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))

    assert _slow_records(caplog) == []


def test_database_connection_check(db):
    assert check_database_connection(db) is True
