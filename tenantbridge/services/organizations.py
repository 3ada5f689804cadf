# tenantbridge/services/organizations.py
from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Optional

from sqlalchemy import func, select, update as sa_update
from sqlalchemy.orm import Session

from ..context import require_context
from ..db import utcnow
from ..errors import Conflict, ValidationFailed
from ..models import (
    ROLE_LANDLORD_ADMIN,
    ROLE_TENANT,
    Building,
    Contract,
    Organization,
    Ticket,
    User,
)
from ..policy import scoped, visibility_predicate, writable_fields
from ..schemas import SLUG_RE, OrganizationCreate, OrganizationUpdate, UserCreate, parse
from .ownership import apply_patch, must_get, require_admin

log = logging.getLogger("tenantbridge.services.organizations")


def slugify(name: str) -> str:
    s = re.sub(r"[^a-z0-9]+", "-", (name or "").strip().lower()).strip("-")
    return (s[:60].strip("-") or "org")


def is_slug_available(db: Session, slug: str) -> bool:
    return db.scalar(select(Organization.id).where(Organization.slug == slug)) is None


def generate_slug(db: Session, name: str) -> str:
    base = slugify(name)
    if len(base) < 3:
        base = f"{base}-org"
    candidate = base
    n = 2
    while not is_slug_available(db, candidate):
        candidate = f"{base}-{n}"
        n += 1
    return candidate


def get_by_slug(db: Session, slug: str) -> Optional[Organization]:
    """Unscoped: resolves the organization of an inbound session before any context exists."""
    return db.scalar(select(Organization).where(Organization.slug == (slug or "").strip().lower()))


def create_organization(
    db: Session,
    data: Any,
    *,
    admin: Optional[Mapping[str, Any]] = None,
) -> Organization:
    """
    Bootstrap: runs without a request context, since the organization the
    context would point at does not exist yet. Optionally creates the first
    landlord admin in the same unit of work.
    """
    payload = parse(OrganizationCreate, data)

    slug = payload.slug or generate_slug(db, payload.name)
    if not SLUG_RE.match(slug):
        raise ValidationFailed("invalid slug")
    if not is_slug_available(db, slug):
        raise Conflict(f"slug already taken: {slug}", entity="Organization")

    org = Organization(**payload.model_dump(exclude={"slug"}), slug=slug)
    db.add(org)
    db.flush()

    if admin is not None:
        user_in = parse(UserCreate, {**dict(admin), "role": ROLE_LANDLORD_ADMIN})
        if db.scalar(select(User.id).where(User.email == user_in.email)) is not None:
            raise Conflict("email already registered", entity="User")
        db.add(User(org_id=org.id, **user_in.model_dump()))
        db.flush()

    log.info("organization created", extra={"org_id": str(org.id), "operation": "create_organization"})
    return org


def get_current(db: Session) -> Organization:
    ctx = require_context(db)
    return must_get(db, Organization, ctx.org_id)


def update(db: Session, patch: Mapping[str, Any]) -> Organization:
    ctx = require_admin(db)
    org = must_get(db, Organization, ctx.org_id)
    allowed = writable_fields(Organization, ctx, dict(patch))
    values = parse(OrganizationUpdate, allowed).model_dump(exclude_unset=True)
    apply_patch(org, values)
    db.flush()
    return org


def deactivate(db: Session) -> int:
    """Organizations are never deleted; deactivation disables every user of it."""
    ctx = require_admin(db)
    org = must_get(db, Organization, ctx.org_id)
    org.is_active = False
    org.updated_at = utcnow()

    res = db.execute(
        sa_update(User)
        .where(User.org_id == org.id, User.is_active.is_(True))
        .values(is_active=False, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    db.flush()
    log.warning(
        "organization deactivated",
        extra={**ctx.log_extra(), "operation": "deactivate_organization"},
    )
    return int(res.rowcount or 0)


def get_with_stats(db: Session) -> dict[str, Any]:
    ctx = require_context(db)
    org = get_current(db)

    def _count(model, *where) -> int:
        stmt = select(func.count()).select_from(model).where(visibility_predicate(model, ctx), *where)
        return int(db.scalar(stmt) or 0)

    return {
        "organization": org,
        "buildings": _count(Building),
        "active_contracts": _count(Contract, Contract.is_active.is_(True)),
        "tenants": _count(User, User.role == ROLE_TENANT, User.is_active.is_(True)),
        "admins": _count(User, User.role == ROLE_LANDLORD_ADMIN, User.is_active.is_(True)),
        "open_tickets": _count(Ticket, Ticket.status.in_(("open", "in_progress", "waiting_for_tenant"))),
    }


def search(db: Session, term: str) -> list[Organization]:
    # Only the caller's own organization can ever match.
    ctx = require_context(db)
    like = f"%{(term or '').strip()}%"
    stmt = scoped(Organization, ctx).where(Organization.name.ilike(like) | Organization.slug.ilike(like))
    return list(db.scalars(stmt))
