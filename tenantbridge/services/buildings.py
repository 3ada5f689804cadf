# tenantbridge/services/buildings.py
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from sqlalchemy import case, func, or_, select, update as sa_update
from sqlalchemy.orm import Session

from ..context import require_context
from ..db import utcnow
from ..errors import Conflict
from ..models import Building, Contract, Document, Ticket
from ..policy import scoped, visibility_predicate, writable_fields
from ..schemas import BuildingCreate, BuildingFilters, BuildingUpdate, parse
from .ownership import apply_patch, get_scoped, must_get, paged, require_admin, require_create

log = logging.getLogger("tenantbridge.services.buildings")

OPEN_TICKET_STATUSES = ("open", "in_progress", "waiting_for_tenant")


def create_building(db: Session, data: Any) -> Building:
    ctx = require_create(db, Building)
    payload = parse(BuildingCreate, data)
    b = Building(org_id=ctx.org_id, **payload.model_dump())
    db.add(b)
    db.flush()
    log.info("building created", extra={**ctx.log_extra(), "entity": "Building", "operation": "create_building"})
    return b


def get_by_id(db: Session, building_id: Any) -> Optional[Building]:
    return get_scoped(db, Building, building_id)


def must_get_building(db: Session, building_id: Any) -> Building:
    return must_get(db, Building, building_id)


def list_buildings(db: Session, filters: Any = None) -> list[Building]:
    ctx = require_context(db)
    f = parse(BuildingFilters, filters)

    stmt = scoped(Building, ctx)
    if f.city:
        stmt = stmt.where(Building.city.ilike(f.city))
    if f.property_type:
        stmt = stmt.where(Building.property_type == f.property_type)
    if f.search:
        like = f"%{f.search}%"
        stmt = stmt.where(or_(Building.name.ilike(like), Building.address.ilike(like), Building.city.ilike(like)))

    stmt = stmt.order_by(Building.created_at.desc(), Building.id.desc())
    return list(db.scalars(paged(stmt, f)))


def search(db: Session, term: str, *, limit: int = 20) -> list[Building]:
    return list_buildings(db, {"search": term, "limit": limit})


def update(db: Session, building_id: Any, patch: Mapping[str, Any]) -> Optional[Building]:
    ctx = require_context(db)
    b = get_scoped(db, Building, building_id)
    if b is None:
        return None

    allowed = writable_fields(Building, ctx, dict(patch))
    if not allowed:
        return b
    values = parse(BuildingUpdate, allowed).model_dump(exclude_unset=True)
    apply_patch(b, values)
    db.flush()

    active = count_active_contracts(db, b.id)
    if active > b.total_units:
        log.warning(
            "building over capacity",
            extra={**ctx.log_extra(), "entity": "Building", "operation": "update_building"},
        )
    return b


def count_active_contracts(db: Session, building_id) -> int:
    ctx = require_context(db)
    stmt = select(func.count(Contract.id)).where(
        Contract.building_id == building_id,
        Contract.is_active.is_(True),
        visibility_predicate(Contract, ctx),
    )
    return int(db.scalar(stmt) or 0)


def delete(db: Session, building_id: Any) -> dict[str, Any]:
    """
    Removes a building after checking what still points at it.

    Contracts block the delete (active or historical: their consumption and
    invitation rows hang off them). Documents are detached, tickets are
    closed and detached, then the building row goes.
    """
    ctx = require_admin(db)
    b = must_get(db, Building, building_id)

    active, total = db.execute(
        select(
            func.coalesce(func.sum(case((Contract.is_active.is_(True), 1), else_=0)), 0),
            func.count(Contract.id),
        ).where(Contract.building_id == b.id, visibility_predicate(Contract, ctx))
    ).one()
    if int(active or 0) > 0:
        raise Conflict(f"building has {int(active)} active contract(s); terminate them first", entity="Building")
    if int(total or 0) > 0:
        raise Conflict(
            f"building still has {int(total)} historical contract(s) with their consumption history",
            entity="Building",
        )

    now = utcnow()
    docs = db.execute(
        sa_update(Document)
        .where(Document.building_id == b.id, Document.org_id == ctx.org_id)
        .values(building_id=None)
        .execution_options(synchronize_session="fetch")
    )
    closed = db.execute(
        sa_update(Ticket)
        .where(
            Ticket.building_id == b.id,
            Ticket.org_id == ctx.org_id,
            Ticket.status.in_(OPEN_TICKET_STATUSES),
        )
        .values(status="closed", resolved_at=func.coalesce(Ticket.resolved_at, now), updated_at=now)
        .execution_options(synchronize_session="fetch")
    )
    detached = db.execute(
        sa_update(Ticket)
        .where(Ticket.building_id == b.id, Ticket.org_id == ctx.org_id)
        .values(building_id=None, updated_at=now)
        .execution_options(synchronize_session="fetch")
    )

    db.delete(b)
    db.flush()

    summary = {
        "building_id": str(b.id),
        "documents_detached": int(docs.rowcount or 0),
        "tickets_closed": int(closed.rowcount or 0),
        "tickets_detached": int(detached.rowcount or 0),
    }
    log.info("building deleted", extra={**ctx.log_extra(), "entity": "Building", "operation": "delete_building"})
    return summary


def get_occupancy(db: Session, building_id: Any) -> dict[str, Any]:
    ctx = require_context(db)
    b = must_get(db, Building, building_id)
    occupied = int(
        db.scalar(
            select(func.count(func.distinct(Contract.unit_number))).where(
                Contract.building_id == b.id,
                Contract.is_active.is_(True),
                visibility_predicate(Contract, ctx),
            )
        )
        or 0
    )
    total = int(b.total_units or 0)
    return {
        "building_id": str(b.id),
        "total_units": total,
        "occupied_units": occupied,
        "vacant_units": max(0, total - occupied),
        "occupancy_rate": round(occupied / total * 100.0, 1) if total else 0.0,
        "over_capacity": occupied > total,
    }


def get_with_stats(db: Session, building_id: Any) -> dict[str, Any]:
    ctx = require_context(db)
    b = must_get(db, Building, building_id)

    contracts = (
        select(
            func.count(Contract.id),
            func.coalesce(func.sum(case((Contract.is_active.is_(True), 1), else_=0)), 0),
            func.coalesce(func.sum(case((Contract.is_active.is_(True), Contract.rent_amount), else_=0.0)), 0.0),
        )
        .where(Contract.building_id == b.id, visibility_predicate(Contract, ctx))
    )
    total_contracts, active_contracts, monthly_rent = db.execute(contracts).one()

    tickets = (
        select(
            func.count(Ticket.id),
            func.coalesce(func.sum(case((Ticket.status.in_(OPEN_TICKET_STATUSES), 1), else_=0)), 0),
        )
        .where(Ticket.building_id == b.id, visibility_predicate(Ticket, ctx))
    )
    total_tickets, open_tickets = db.execute(tickets).one()

    return {
        "building": b,
        "contracts_total": int(total_contracts or 0),
        "contracts_active": int(active_contracts or 0),
        "monthly_rent": float(monthly_rent or 0.0),
        "tickets_total": int(total_tickets or 0),
        "tickets_open": int(open_tickets or 0),
        "occupancy": get_occupancy(db, b.id),
    }
