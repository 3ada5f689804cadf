# tenantbridge/services/users.py
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..context import require_context
from ..errors import Conflict
from ..models import ROLE_TENANT, Contract, TenantContract, User
from ..policy import scoped, visibility_predicate, writable_fields
from ..schemas import UserCreate, UserFilters, UserUpdate, parse
from .ownership import apply_patch, get_scoped, must_get, paged, require_admin

log = logging.getLogger("tenantbridge.services.users")


def is_email_available(db: Session, email: str) -> bool:
    # Emails are unique across organizations; this probe returns a bool only.
    return db.scalar(select(User.id).where(User.email == (email or "").strip().lower())) is None


def create_user(db: Session, data: Any) -> User:
    ctx = require_admin(db)
    payload = parse(UserCreate, data)
    if not is_email_available(db, payload.email):
        raise Conflict("email already registered", entity="User")

    user = User(org_id=ctx.org_id, **payload.model_dump())
    db.add(user)
    db.flush()
    log.info("user created", extra={**ctx.log_extra(), "entity": "User", "operation": "create_user"})
    return user


def get_by_id(db: Session, user_id: Any) -> Optional[User]:
    return get_scoped(db, User, user_id)


def must_get_user(db: Session, user_id: Any) -> User:
    return must_get(db, User, user_id)


def get_by_email(db: Session, email: str) -> Optional[User]:
    ctx = require_context(db)
    return db.scalar(scoped(User, ctx).where(User.email == (email or "").strip().lower()))


def list_users(db: Session, filters: Any = None) -> list[User]:
    ctx = require_context(db)
    f = parse(UserFilters, filters)

    stmt = scoped(User, ctx)
    if f.role is not None:
        stmt = stmt.where(User.role == f.role)
    if f.is_active is not None:
        stmt = stmt.where(User.is_active.is_(f.is_active))
    if f.search:
        like = f"%{f.search}%"
        stmt = stmt.where(or_(User.name.ilike(like), User.email.ilike(like)))

    stmt = stmt.order_by(User.created_at.desc(), User.id.desc())
    return list(db.scalars(paged(stmt, f)))


def search(db: Session, term: str, *, limit: int = 20) -> list[User]:
    return list_users(db, {"search": term, "limit": limit})


def update(db: Session, user_id: Any, patch: Mapping[str, Any]) -> Optional[User]:
    ctx = require_context(db)
    user = get_scoped(db, User, user_id)
    if user is None:
        return None

    allowed = writable_fields(User, ctx, dict(patch))
    if not allowed:
        return user
    values = parse(UserUpdate, allowed).model_dump(exclude_unset=True)
    # activation changes go through the same guard as deactivate/reactivate
    active = values.pop("is_active", None)
    if active is not None and active != user.is_active:
        _set_active(db, user.id, active)

    new_email = values.get("email")
    if new_email and new_email != user.email and not is_email_available(db, new_email):
        raise Conflict("email already registered", entity="User")

    apply_patch(user, values)
    db.flush()
    return user


def _set_active(db: Session, user_id: Any, active: bool) -> User:
    ctx = require_admin(db)
    user = must_get(db, User, user_id)
    if not active and user.id == ctx.user_id:
        raise Conflict("cannot deactivate yourself", entity="User")
    apply_patch(user, {"is_active": active})
    db.flush()
    log.info(
        "user %s",
        "reactivated" if active else "deactivated",
        extra={**ctx.log_extra(), "entity": "User", "operation": "set_active"},
    )
    return user


def deactivate(db: Session, user_id: Any) -> User:
    return _set_active(db, user_id, False)


def reactivate(db: Session, user_id: Any) -> User:
    return _set_active(db, user_id, True)


def get_stats(db: Session) -> dict[str, int]:
    ctx = require_context(db)
    base = select(User.role, User.is_active, func.count(User.id)).where(visibility_predicate(User, ctx))
    rows = db.execute(base.group_by(User.role, User.is_active)).all()

    out = {"total": 0, "active": 0, "inactive": 0, "landlord_admin": 0, "tenant": 0}
    for role, active, n in rows:
        n = int(n or 0)
        out["total"] += n
        out["active" if active else "inactive"] += n
        out[role] = out.get(role, 0) + n
    return out


def get_tenant_with_contracts(db: Session, tenant_id: Any) -> Optional[dict[str, Any]]:
    ctx = require_context(db)
    tenant = get_scoped(db, User, tenant_id)
    if tenant is None or tenant.role != ROLE_TENANT:
        return None

    stmt = (
        select(TenantContract, Contract)
        .join(Contract, Contract.id == TenantContract.contract_id)
        .where(
            TenantContract.tenant_id == tenant.id,
            visibility_predicate(TenantContract, ctx),
            visibility_predicate(Contract, ctx),
        )
        .order_by(Contract.start_date.desc())
    )
    links = [{"link": link, "contract": contract} for link, contract in db.execute(stmt).all()]
    return {"tenant": tenant, "contracts": links}


def get_available_tenants(db: Session, *, contract_id: Any = None) -> list[User]:
    """Active tenants of the organization, minus those already on the given contract."""
    ctx = require_admin(db)
    stmt = scoped(User, ctx).where(User.role == ROLE_TENANT, User.is_active.is_(True))
    if contract_id is not None:
        contract = must_get(db, Contract, contract_id)
        linked = (
            select(TenantContract.tenant_id)
            .where(TenantContract.contract_id == contract.id, TenantContract.org_id == ctx.org_id)
            .correlate(None)
        )
        stmt = stmt.where(User.id.not_in(linked))
    return list(db.scalars(stmt.order_by(User.name.asc())))
