# tests/test_errors.py
from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from tenantbridge.config import settings
from tenantbridge.errors import (
    NOT_FOUND_OR_NOT_PERMITTED,
    AccessDenied,
    Conflict,
    NotFound,
    StorageError,
    TransientStorage,
    ValidationFailed,
    error_response,
    retry_read,
    translate_storage_error,
)


def test_storage_errors_are_translated():
    assert isinstance(translate_storage_error(IntegrityError("insert", {}, Exception("unique"))), Conflict)
    assert isinstance(translate_storage_error(OperationalError("select", {}, Exception("gone"))), TransientStorage)
    assert isinstance(translate_storage_error(SQLAlchemyError("boom")), StorageError)

    already = ValidationFailed("bad")
    assert translate_storage_error(already) is already

    with pytest.raises(TypeError):
        translate_storage_error(ValueError("not ours"))


def test_denied_and_missing_look_the_same():
    denied = error_response(AccessDenied("row belongs to another organization"))
    missing = error_response(NotFound("contract not found"))
    assert denied == missing == {"ok": False, "kind": "not_found", "message": NOT_FOUND_OR_NOT_PERMITTED}
    assert AccessDenied.http_status == NotFound.http_status == 404


def test_storage_detail_hidden_outside_development(monkeypatch):
    exc = StorageError("relation \"contracts\" does not exist")
    assert error_response(exc)["message"] == exc.message

    monkeypatch.setattr(settings, "app_env", "prod")
    assert error_response(exc) == {"ok": False, "kind": "storage", "message": "storage error"}
    assert error_response(Conflict("unit taken"))["message"] == "unit taken"


def test_retry_read_backs_off_on_transient_errors():
    calls = []
    sleeps = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise TransientStorage("db restarting")
        return "ok"

    assert retry_read(flaky, attempts=3, delay_ms=100, sleep=sleeps.append) == "ok"
    assert len(calls) == 3
    assert sleeps == [0.1, 0.2]


def test_retry_read_gives_up():
    sleeps = []

    def down():
        raise TransientStorage("still down")

    with pytest.raises(TransientStorage):
        retry_read(down, attempts=2, delay_ms=10, sleep=sleeps.append)
    assert sleeps == [0.01]


def test_retry_read_does_not_retry_other_errors():
    calls = []

    def denied():
        calls.append(1)
        raise AccessDenied("nope")

    with pytest.raises(AccessDenied):
        retry_read(denied, attempts=5, delay_ms=1, sleep=lambda s: None)
    assert calls == [1]
