# tenantbridge/context.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy import event, text
from sqlalchemy.orm import Session

from .config import settings
from .errors import AccessDenied, ValidationFailed
from .models import ROLE_BOOTSTRAP, ROLE_LANDLORD_ADMIN, ROLE_TENANT, USER_ROLES

log = logging.getLogger("tenantbridge.context")

T = TypeVar("T")

_INFO_KEY = "tenantbridge.context"
_BOOTSTRAP_KEY = "tenantbridge.bootstrap"

_SET_SESSION_VARS = text(
    "select set_config('app.current_organization_id', :org_id, true), "
    "set_config('app.current_user_id', :user_id, true), "
    "set_config('app.current_user_role', :role, true)"
)


def _as_uuid(value: Any, field: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    if value is None or value == "":
        raise ValidationFailed(f"{field} is required")
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise ValidationFailed(f"{field} must be a UUID")


@dataclass(frozen=True)
class RequestContext:
    """The (org, user, role) triple every scoped query is built from."""

    org_id: uuid.UUID
    user_id: uuid.UUID
    role: str

    @classmethod
    def from_user(cls, user) -> "RequestContext":
        return cls(org_id=user.org_id, user_id=user.id, role=user.role)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_LANDLORD_ADMIN

    @property
    def is_tenant(self) -> bool:
        return self.role == ROLE_TENANT

    def validated(self) -> "RequestContext":
        role = (self.role or "").strip()
        if role not in USER_ROLES:
            raise ValidationFailed(f"unknown role: {self.role!r}")
        return RequestContext(
            org_id=_as_uuid(self.org_id, "org_id"),
            user_id=_as_uuid(self.user_id, "user_id"),
            role=role,
        )

    def log_extra(self) -> dict[str, str]:
        return {"org_id": str(self.org_id), "user_id": str(self.user_id), "role": self.role}


def _uses_session_vars(db: Session) -> bool:
    bind = db.get_bind()
    return bool(settings.rls_session_variables) and bind.dialect.name == "postgresql"


def session_vars(ctx: Optional[RequestContext], *, bootstrap: bool = False) -> dict[str, str]:
    if ctx is not None:
        return {"org_id": str(ctx.org_id), "user_id": str(ctx.user_id), "role": ctx.role}
    return {"org_id": "", "user_id": "", "role": ROLE_BOOTSTRAP if bootstrap else ""}


def _push_session_vars(conn, ctx: Optional[RequestContext], *, bootstrap: bool = False) -> None:
    conn.execute(_SET_SESSION_VARS, session_vars(ctx, bootstrap=bootstrap))


def mark_bootstrap(db: Session) -> None:
    """
    Flag a context-free unit of work. Its transactions run under the
    bootstrap storage role, which the row-level policies let through so
    principal lookup, organization signup and invitation lookup still see
    rows when the application connects as a non-owner role.
    """
    db.info[_BOOTSTRAP_KEY] = True


def is_bootstrap(db: Session) -> bool:
    return bool(db.info.get(_BOOTSTRAP_KEY))


@event.listens_for(Session, "after_begin")
def _reassert_context_on_begin(session, transaction, connection) -> None:
    # Postgres settings are transaction-local; every new transaction of a
    # context-bearing session gets them again.
    ctx = session.info.get(_INFO_KEY)
    bootstrap = bool(session.info.get(_BOOTSTRAP_KEY))
    if ctx is None and not bootstrap:
        return
    if settings.rls_session_variables and connection.dialect.name == "postgresql":
        _push_session_vars(connection, ctx, bootstrap=bootstrap)


@event.listens_for(Session, "before_flush")
def _stamp_org_on_new_rows(session, flush_context, instances) -> None:
    ctx = session.info.get(_INFO_KEY)
    if ctx is None:
        return
    for obj in session.new:
        if not hasattr(obj, "org_id"):
            continue
        if obj.org_id is None:
            obj.org_id = ctx.org_id
        elif obj.org_id != ctx.org_id:
            raise AccessDenied("row belongs to another organization", entity=type(obj).__name__)


class ContextStore:
    """
    Binds a RequestContext to one Session (one unit of work).

    The context lives in Session.info, never in process state, so two
    concurrent sessions cannot observe each other's triple. On Postgres the
    triple is also pushed into transaction-local settings read by the
    row-level policies.
    """

    @staticmethod
    def set(db: Session, ctx: RequestContext) -> RequestContext:
        if db.info.get(_INFO_KEY) is not None:
            raise RuntimeError("context already set on this session; clear it first")

        ctx = ctx.validated()
        db.info[_INFO_KEY] = ctx

        # A transaction that already began missed the after_begin hook.
        if db.in_transaction() and _uses_session_vars(db):
            _push_session_vars(db.connection(), ctx)

        log.debug("context set", extra=ctx.log_extra())
        return ctx

    @staticmethod
    def clear(db: Session, *, reset_storage: bool = True) -> None:
        ctx = db.info.pop(_INFO_KEY, None)
        if ctx is None:
            return
        # A failed transaction is about to roll back, which drops the settings anyway.
        if reset_storage and db.in_transaction() and _uses_session_vars(db):
            _push_session_vars(db.connection(), None, bootstrap=is_bootstrap(db))

    @staticmethod
    def with_context(db: Session, ctx: RequestContext, fn: Callable[[Session], T]) -> T:
        ContextStore.set(db, ctx)
        try:
            result = fn(db)
        except BaseException:
            ContextStore.clear(db, reset_storage=False)
            raise
        ContextStore.clear(db)
        return result


def current_context(db: Session) -> Optional[RequestContext]:
    return db.info.get(_INFO_KEY)


def require_context(db: Session) -> RequestContext:
    ctx = db.info.get(_INFO_KEY)
    if ctx is None:
        raise AccessDenied("no request context on this session")
    return ctx
