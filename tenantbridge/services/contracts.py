# tenantbridge/services/contracts.py
from __future__ import annotations

import logging
import re
from datetime import date, timedelta
from typing import Any, Mapping, Optional

from sqlalchemy import func, or_, select, update as sa_update
from sqlalchemy.orm import Session

from ..config import settings
from ..context import require_context
from ..errors import Conflict, NotFound, ValidationFailed
from ..models import (
    ROLE_TENANT,
    Building,
    ConsumptionRecord,
    Contract,
    Document,
    TenantContract,
    Ticket,
    User,
)
from ..policy import scoped, tenant_contract_ids, visibility_predicate, writable_fields
from ..schemas import ContractCreate, ContractFilters, ContractUpdate, TenantLinkCreate, parse, parse_uuid
from .ownership import apply_patch, get_scoped, lock_row, must_get, paged, require_admin, require_create

log = logging.getLogger("tenantbridge.services.contracts")

PERCENT_EPSILON = 1e-6


# -----------------------------
# Numbering / availability
# -----------------------------
def generate_contract_number(db: Session, *, year: Optional[int] = None) -> str:
    """Next free `PREFIX-YYYY-NNN` inside the caller's organization."""
    ctx = require_context(db)
    year = year or date.today().year
    prefix = f"{settings.contract_number_prefix}-{year}-"

    existing = db.scalars(
        select(Contract.contract_number).where(
            Contract.org_id == ctx.org_id,
            Contract.contract_number.like(f"{prefix}%"),
        )
    ).all()

    seq = 0
    pat = re.compile(rf"^{re.escape(prefix)}(\d+)$")
    for num in existing:
        m = pat.match(num or "")
        if m:
            seq = max(seq, int(m.group(1)))
    return f"{prefix}{seq + 1:03d}"


def is_contract_number_available(db: Session, contract_number: str) -> bool:
    ctx = require_context(db)
    stmt = select(Contract.id).where(Contract.org_id == ctx.org_id, Contract.contract_number == contract_number)
    return db.scalar(stmt) is None


def is_unit_available(
    db: Session,
    building_id: Any,
    unit_number: str,
    *,
    exclude_contract_id: Any = None,
) -> bool:
    ctx = require_context(db)
    stmt = select(Contract.id).where(
        Contract.org_id == ctx.org_id,
        Contract.building_id == parse_uuid(building_id, "building_id"),
        Contract.unit_number == unit_number,
        Contract.is_active.is_(True),
    )
    if exclude_contract_id is not None:
        stmt = stmt.where(Contract.id != parse_uuid(exclude_contract_id, "contract_id"))
    return db.scalar(stmt.limit(1)) is None


def _check_capacity(db: Session, building: Building, ctx) -> None:
    active = db.scalar(
        select(func.count(Contract.id)).where(
            Contract.building_id == building.id,
            Contract.org_id == ctx.org_id,
            Contract.is_active.is_(True),
        )
    )
    if int(active or 0) > int(building.total_units or 0):
        # advisory only
        log.warning(
            "building over capacity: %s active contracts for %s units",
            active,
            building.total_units,
            extra={**ctx.log_extra(), "entity": "Building", "operation": "capacity_check"},
        )


# -----------------------------
# CRUD
# -----------------------------
def create_contract(db: Session, data: Any) -> Contract:
    ctx = require_create(db, Contract)
    payload = parse(ContractCreate, data)
    building = must_get(db, Building, payload.building_id)

    # Serialize writers on this building before the availability re-read.
    lock_row(db, Building, building.id)

    if payload.is_active and not is_unit_available(db, building.id, payload.unit_number):
        raise Conflict(f"unit {payload.unit_number} already has an active contract", entity="Contract")

    number = payload.contract_number or generate_contract_number(db, year=payload.start_date.year)
    if not is_contract_number_available(db, number):
        raise Conflict(f"contract number already used: {number}", entity="Contract")

    c = Contract(
        org_id=ctx.org_id,
        **payload.model_dump(exclude={"building_id", "contract_number"}),
        building_id=building.id,
        contract_number=number,
    )
    db.add(c)
    db.flush()

    _check_capacity(db, building, ctx)
    log.info("contract created", extra={**ctx.log_extra(), "entity": "Contract", "operation": "create_contract"})
    return c


def get_by_id(db: Session, contract_id: Any) -> Optional[Contract]:
    return get_scoped(db, Contract, contract_id)


def must_get_contract(db: Session, contract_id: Any) -> Contract:
    return must_get(db, Contract, contract_id)


def list_contracts(db: Session, filters: Any = None) -> list[Contract]:
    ctx = require_context(db)
    f = parse(ContractFilters, filters)

    stmt = scoped(Contract, ctx)
    if f.building_id is not None:
        stmt = stmt.where(Contract.building_id == f.building_id)
    if f.is_active is not None:
        stmt = stmt.where(Contract.is_active.is_(f.is_active))
    if f.search:
        like = f"%{f.search}%"
        stmt = stmt.where(or_(Contract.contract_number.ilike(like), Contract.unit_number.ilike(like)))

    stmt = stmt.order_by(Contract.created_at.desc(), Contract.id.desc())
    return list(db.scalars(paged(stmt, f)))


def list_for_tenant(db: Session, tenant_id: Any = None, *, active_only: bool = False) -> list[Contract]:
    ctx = require_context(db)
    tid = parse_uuid(tenant_id, "tenant_id") if tenant_id is not None else ctx.user_id

    stmt = scoped(Contract, ctx).where(Contract.id.in_(tenant_contract_ids(ctx.org_id, tid)))
    if active_only:
        stmt = stmt.where(Contract.is_active.is_(True))
    return list(db.scalars(stmt.order_by(Contract.start_date.desc())))


def update(db: Session, contract_id: Any, patch: Mapping[str, Any]) -> Optional[Contract]:
    ctx = require_context(db)
    c = get_scoped(db, Contract, contract_id)
    if c is None:
        return None

    allowed = writable_fields(Contract, ctx, dict(patch))
    # building moves and renumbering are not updates
    allowed.pop("building_id", None)
    allowed.pop("contract_number", None)
    if not allowed:
        return c
    values = parse(ContractUpdate, allowed).model_dump(exclude_unset=True)

    start = values.get("start_date", c.start_date)
    end = values.get("end_date", c.end_date)
    if end is not None and start is not None and end < start:
        raise ValidationFailed("end_date must not be before start_date")

    unit = values.get("unit_number", c.unit_number)
    becomes_active = values.get("is_active", c.is_active)
    if becomes_active and (unit != c.unit_number or not c.is_active):
        lock_row(db, Building, c.building_id)
        if not is_unit_available(db, c.building_id, unit, exclude_contract_id=c.id):
            raise Conflict(f"unit {unit} already has an active contract", entity="Contract")

    apply_patch(c, values)
    db.flush()
    return c


def set_active(db: Session, contract_id: Any, active: bool) -> Contract:
    require_admin(db)
    c = update(db, contract_id, {"is_active": active})
    if c is None:
        raise NotFound("contract not found", entity="Contract")
    return c


def get_expiring(db: Session, *, within_days: Optional[int] = None, today: Optional[date] = None) -> list[Contract]:
    ctx = require_context(db)
    days = int(within_days if within_days is not None else settings.expiring_contract_window_days)
    if days < 0:
        raise ValidationFailed("within_days must be >= 0")
    today = today or date.today()

    stmt = scoped(Contract, ctx).where(
        Contract.is_active.is_(True),
        Contract.end_date.is_not(None),
        Contract.end_date >= today,
        Contract.end_date <= today + timedelta(days=days),
    )
    return list(db.scalars(stmt.order_by(Contract.end_date.asc())))


def get_with_details(db: Session, contract_id: Any) -> dict[str, Any]:
    ctx = require_context(db)
    c = must_get(db, Contract, contract_id)
    building = get_scoped(db, Building, c.building_id)

    open_tickets = db.scalar(
        select(func.count(Ticket.id)).where(
            Ticket.contract_id == c.id,
            Ticket.status.in_(("open", "in_progress", "waiting_for_tenant")),
            visibility_predicate(Ticket, ctx),
        )
    )
    return {
        "contract": c,
        "building": building,
        "tenants": list_tenant_links(db, c.id),
        "percentage_total": percentage_total(db, c.id),
        "open_tickets": int(open_tickets or 0),
    }


def get_with_activity(db: Session, contract_id: Any, *, limit: int = 5) -> dict[str, Any]:
    ctx = require_context(db)
    c = must_get(db, Contract, contract_id)

    tickets = db.scalars(
        scoped(Ticket, ctx).where(Ticket.contract_id == c.id).order_by(Ticket.created_at.desc()).limit(limit)
    ).all()
    consumption = db.scalars(
        scoped(ConsumptionRecord, ctx)
        .where(ConsumptionRecord.contract_id == c.id)
        .order_by(ConsumptionRecord.period.desc(), ConsumptionRecord.consumption_type.asc())
        .limit(limit)
    ).all()
    documents = db.scalars(
        scoped(Document, ctx).where(Document.contract_id == c.id).order_by(Document.created_at.desc()).limit(limit)
    ).all()
    return {
        "contract": c,
        "recent_tickets": list(tickets),
        "recent_consumption": list(consumption),
        "recent_documents": list(documents),
    }


# -----------------------------
# Tenant links
# -----------------------------
def percentage_total(db: Session, contract_id) -> float:
    ctx = require_context(db)
    total = db.scalar(
        select(func.coalesce(func.sum(TenantContract.percentage), 0.0)).where(
            TenantContract.contract_id == contract_id,
            TenantContract.org_id == ctx.org_id,
        )
    )
    return float(total or 0.0)


def add_tenant(db: Session, contract_id: Any, data: Any) -> TenantContract:
    """
    Links a tenant to a contract.

    The share check is check-then-act: the contract row is write-locked
    first, then the current sum is re-read inside this transaction. Two
    concurrent additions queue on the lock and the second sees the first.
    """
    ctx = require_admin(db)
    payload = parse(TenantLinkCreate, data)
    c = must_get(db, Contract, contract_id)

    tenant = must_get(db, User, payload.tenant_id)
    if tenant.role != ROLE_TENANT:
        raise ValidationFailed("user is not a tenant")
    if not tenant.is_active:
        raise Conflict("tenant is deactivated", entity="User")

    lock_row(db, Contract, c.id)

    if get_link(db, c.id, tenant.id) is not None:
        raise Conflict("tenant already linked to this contract", entity="TenantContract")

    current = percentage_total(db, c.id)
    if current + payload.percentage > 100.0 + PERCENT_EPSILON:
        raise Conflict(
            f"tenant shares would exceed 100% ({current:g}% + {payload.percentage:g}%)",
            entity="TenantContract",
        )

    if payload.is_main_tenant:
        db.execute(
            sa_update(TenantContract)
            .where(TenantContract.contract_id == c.id, TenantContract.org_id == ctx.org_id)
            .values(is_main_tenant=False)
            .execution_options(synchronize_session="fetch")
        )

    link = TenantContract(
        org_id=ctx.org_id,
        contract_id=c.id,
        tenant_id=tenant.id,
        percentage=payload.percentage,
        is_main_tenant=payload.is_main_tenant,
    )
    db.add(link)
    db.flush()
    log.info("tenant linked", extra={**ctx.log_extra(), "entity": "TenantContract", "operation": "add_tenant"})
    return link


def get_link(db: Session, contract_id: Any, tenant_id: Any) -> Optional[TenantContract]:
    ctx = require_context(db)
    stmt = scoped(TenantContract, ctx).where(
        TenantContract.contract_id == parse_uuid(contract_id, "contract_id"),
        TenantContract.tenant_id == parse_uuid(tenant_id, "tenant_id"),
    )
    return db.scalar(stmt)


def list_tenant_links(db: Session, contract_id: Any) -> list[dict[str, Any]]:
    ctx = require_context(db)
    c = must_get(db, Contract, contract_id)
    stmt = (
        select(TenantContract, User)
        .join(User, User.id == TenantContract.tenant_id)
        .where(
            TenantContract.contract_id == c.id,
            visibility_predicate(TenantContract, ctx),
            visibility_predicate(User, ctx),
        )
        .order_by(TenantContract.is_main_tenant.desc(), TenantContract.created_at.asc())
    )
    return [{"link": link, "tenant": user} for link, user in db.execute(stmt).all()]


def remove_tenant(db: Session, contract_id: Any, tenant_id: Any) -> TenantContract:
    ctx = require_admin(db)
    link = get_link(db, contract_id, tenant_id)
    if link is None:
        raise NotFound("tenant link not found", entity="TenantContract")
    db.delete(link)
    db.flush()
    log.info("tenant unlinked", extra={**ctx.log_extra(), "entity": "TenantContract", "operation": "remove_tenant"})
    return link
