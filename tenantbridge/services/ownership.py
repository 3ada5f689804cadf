# tenantbridge/services/ownership.py
from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping, Optional, Type, TypeVar

from sqlalchemy import Select, select, update as sa_update
from sqlalchemy.orm import Session

from ..config import settings
from ..context import RequestContext, require_context
from ..db import utcnow
from ..errors import AccessDenied, NotFound
from ..policy import can_create, scoped, write_predicate
from ..schemas import Page, parse_uuid

log = logging.getLogger("tenantbridge.services")

R = TypeVar("R")


def get_scoped(db: Session, model: Type[R], row_id: Any) -> Optional[R]:
    """The row if it exists and the caller's predicate admits it, else None."""
    ctx = require_context(db)
    rid = parse_uuid(row_id, f"{model.__name__.lower()}_id")
    return db.scalar(scoped(model, ctx).where(model.id == rid))


def must_get(db: Session, model: Type[R], row_id: Any) -> R:
    ctx = require_context(db)
    rid = parse_uuid(row_id, f"{model.__name__.lower()}_id")
    row = db.scalar(scoped(model, ctx).where(model.id == rid))
    if row is not None:
        return row

    # Existence probe only decides which error type to raise; nothing from
    # the row leaves this function.
    exists = db.scalar(select(model.id).where(model.id == rid))
    if exists is None:
        raise NotFound(f"{model.__name__.lower()} not found", entity=model.__name__)

    log.info(
        "access denied",
        extra={**ctx.log_extra(), "entity": model.__name__, "operation": "read"},
    )
    raise AccessDenied(f"{model.__name__.lower()} not permitted", entity=model.__name__)


def must_get_writable(db: Session, model: Type[R], row_id: Any) -> R:
    """Readable AND inside the caller's write scope."""
    ctx = require_context(db)
    row = must_get(db, model, row_id)
    allowed = db.scalar(select(model.id).where(model.id == row.id, write_predicate(model, ctx)))
    if allowed is None:
        raise AccessDenied(f"{model.__name__.lower()} is read-only for this user", entity=model.__name__)
    return row


def require_admin(db: Session) -> RequestContext:
    ctx = require_context(db)
    if not ctx.is_admin:
        raise AccessDenied("landlord admin required")
    return ctx


def require_create(db: Session, model: type) -> RequestContext:
    ctx = require_context(db)
    if not can_create(model, ctx):
        raise AccessDenied(f"{ctx.role} may not create {model.__name__.lower()}", entity=model.__name__)
    return ctx


def page_bounds(page: Page) -> tuple[int, int]:
    limit = page.limit if page.limit is not None else settings.default_page_size
    return min(limit, settings.max_page_size), page.offset


def paged(stmt: Select, page: Page) -> Select:
    limit, offset = page_bounds(page)
    return stmt.limit(limit).offset(offset)


def apply_patch(row: Any, values: Mapping[str, Any]) -> bool:
    changed = False
    for k, v in values.items():
        if getattr(row, k) != v:
            setattr(row, k, v)
            changed = True
    if changed and hasattr(row, "updated_at"):
        row.updated_at = utcnow()
    return changed


def lock_row(db: Session, model: type, row_id: uuid.UUID) -> None:
    """
    Takes the write lock on one guarding row before a check-then-act sequence.

    A no-op UPDATE works everywhere: a row lock on Postgres, the database
    write lock on SQLite. Concurrent writers queue here until commit, so
    the re-read that follows sees their rows.
    """
    db.execute(sa_update(model).where(model.id == row_id).values(updated_at=utcnow()))
