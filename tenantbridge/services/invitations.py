# tenantbridge/services/invitations.py
from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import settings
from ..db import utcnow
from ..errors import Conflict, NotFound, ValidationFailed
from ..models import Contract, InvitationToken, User
from ..policy import scoped
from ..schemas import InvitationCreate, parse, parse_uuid
from .contracts import percentage_total
from .ownership import must_get, require_admin

log = logging.getLogger("tenantbridge.services.invitations")


def _new_token() -> str:
    return secrets.token_urlsafe(32)


def invitation_url(inv: InvitationToken) -> str:
    return f"{settings.app_url.rstrip('/')}/invite/{inv.token}"


def create_invitation(db: Session, data: Any) -> InvitationToken:
    ctx = require_admin(db)
    payload = parse(InvitationCreate, data)

    days = payload.expires_in_days or settings.invitation_expiry_days
    if days > settings.invitation_max_expiry_days:
        raise ValidationFailed(f"invitations expire after at most {settings.invitation_max_expiry_days} days")

    contract = must_get(db, Contract, payload.contract_id)
    if not contract.is_active:
        raise Conflict("cannot invite onto an inactive contract", entity="InvitationToken")
    if db.scalar(select(User.id).where(User.email == payload.email)) is not None:
        raise Conflict("email already registered", entity="InvitationToken")
    if percentage_total(db, contract.id) + payload.percentage > 100.0 + 1e-6:
        raise Conflict("invited share would push the contract over 100%", entity="InvitationToken")

    inv = InvitationToken(
        org_id=ctx.org_id,
        contract_id=contract.id,
        token=_new_token(),
        email=payload.email,
        tenant_name=payload.tenant_name,
        percentage=payload.percentage,
        is_main_tenant=payload.is_main_tenant,
        expires_at=utcnow() + timedelta(days=days),
        created_by_id=ctx.user_id,
    )
    db.add(inv)
    db.flush()
    log.info("invitation created", extra={**ctx.log_extra(), "entity": "InvitationToken", "operation": "invite"})
    return inv


def _is_valid(inv: InvitationToken, now: Optional[datetime] = None) -> bool:
    return inv.used_at is None and inv.expires_at > (now or utcnow())


def get_valid(db: Session, token: str) -> Optional[InvitationToken]:
    ctx = require_admin(db)
    inv = db.scalar(scoped(InvitationToken, ctx).where(InvitationToken.token == token))
    if inv is None or not _is_valid(inv):
        return None
    return inv


def must_get_valid(db: Session, token: str) -> InvitationToken:
    inv = get_valid(db, token)
    if inv is None:
        raise NotFound("invitation not found or no longer valid", entity="InvitationToken")
    return inv


def list_pending(db: Session, *, contract_id: Any = None) -> list[InvitationToken]:
    ctx = require_admin(db)
    stmt = scoped(InvitationToken, ctx).where(
        InvitationToken.used_at.is_(None),
        InvitationToken.expires_at > utcnow(),
    )
    if contract_id is not None:
        stmt = stmt.where(InvitationToken.contract_id == parse_uuid(contract_id, "contract_id"))
    return list(db.scalars(stmt.order_by(InvitationToken.created_at.desc())))


def revoke(db: Session, invitation_id: Any) -> bool:
    ctx = require_admin(db)
    inv = must_get(db, InvitationToken, invitation_id)
    if inv.used_at is not None:
        raise Conflict("invitation already used", entity="InvitationToken")
    db.delete(inv)
    db.flush()
    log.info("invitation revoked", extra={**ctx.log_extra(), "entity": "InvitationToken", "operation": "revoke"})
    return True


def mark_used(db: Session, inv: InvitationToken) -> InvitationToken:
    require_admin(db)
    if inv.used_at is not None:
        raise Conflict("invitation already used", entity="InvitationToken")
    inv.used_at = utcnow()
    db.flush()
    return inv


def resolve_token(db: Session, token: str) -> InvitationToken:
    """
    Unscoped lookup for onboarding: the invitee has no context yet. The
    returned row tells the caller which organization and admin to act as.
    """
    inv = db.scalar(select(InvitationToken).where(InvitationToken.token == (token or "").strip()))
    if inv is None:
        raise NotFound("invitation not found", entity="InvitationToken")
    if inv.used_at is not None:
        raise Conflict("invitation already used", entity="InvitationToken")
    if inv.expires_at <= utcnow():
        raise Conflict("invitation expired", entity="InvitationToken")
    return inv
