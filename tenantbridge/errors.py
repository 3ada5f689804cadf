# tenantbridge/errors.py
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)

from .config import settings

log = logging.getLogger("tenantbridge.errors")

T = TypeVar("T")

GENERIC_STORAGE_MESSAGE = "storage error"
NOT_FOUND_OR_NOT_PERMITTED = "not found or not permitted"


class TenantBridgeError(Exception):
    """Base for every typed error the data-access core raises."""

    kind = "error"
    http_status = 500

    def __init__(self, message: str = "", *, entity: Optional[str] = None):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.entity = entity


class NotFound(TenantBridgeError):
    kind = "not_found"
    http_status = 404


class AccessDenied(NotFound):
    """
    The row exists but the caller's predicate excludes it, or the caller's role
    may not perform the write. Subclasses NotFound so callers that only care
    about "can I see it" handle both the same way.
    """

    kind = "access_denied"
    http_status = 404


class ValidationFailed(TenantBridgeError):
    kind = "validation"
    http_status = 422


class Conflict(TenantBridgeError):
    kind = "conflict"
    http_status = 409


class TransientStorage(TenantBridgeError):
    kind = "transient_storage"
    http_status = 503


class StorageError(TenantBridgeError):
    kind = "storage"
    http_status = 500


def translate_storage_error(exc: BaseException) -> TenantBridgeError:
    if isinstance(exc, TenantBridgeError):
        return exc
    if isinstance(exc, IntegrityError):
        return Conflict("a unique or reference constraint was violated")
    if isinstance(exc, (OperationalError, DisconnectionError, PoolTimeoutError)):
        return TransientStorage("database temporarily unavailable")
    if isinstance(exc, SQLAlchemyError):
        return StorageError(str(exc))
    raise TypeError(f"not a storage error: {type(exc).__name__}")


def _is_development() -> bool:
    return (settings.app_env or "local").strip().lower() in ("local", "dev", "development", "test")


def error_response(exc: TenantBridgeError) -> dict[str, Any]:
    """Stable outward shape. Driver text never leaves the process outside development."""
    kind = exc.kind
    message = exc.message

    if isinstance(exc, NotFound):
        kind = NotFound.kind
        message = NOT_FOUND_OR_NOT_PERMITTED
    elif isinstance(exc, (StorageError, TransientStorage)) and not _is_development():
        message = GENERIC_STORAGE_MESSAGE

    return {"ok": False, "kind": kind, "message": message}


def retry_read(
    fn: Callable[[], T],
    *,
    attempts: Optional[int] = None,
    delay_ms: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Retries fn on TransientStorage with exponential backoff.

    Only for read-only units of work; writes are never retried here.
    """
    attempts = max(1, int(attempts if attempts is not None else settings.read_retry_attempts))
    delay = max(0, int(delay_ms if delay_ms is not None else settings.read_retry_delay_ms)) / 1000.0

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except TransientStorage:
            if attempt >= attempts:
                raise
            log.warning(
                "transient storage error, retrying read",
                extra={"operation": getattr(fn, "__name__", "read"), "error_kind": TransientStorage.kind},
            )
            sleep(delay * (2 ** (attempt - 1)))

    raise AssertionError("unreachable")
