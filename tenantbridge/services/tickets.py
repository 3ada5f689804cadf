# tenantbridge/services/tickets.py
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Mapping, Optional

from sqlalchemy import case, func, or_, select, update as sa_update
from sqlalchemy.orm import Session

from ..context import RequestContext, require_context
from ..db import utcnow
from ..errors import AccessDenied, Conflict, ValidationFailed
from ..models import ROLE_LANDLORD_ADMIN, Building, Contract, Document, Ticket, User
from ..policy import scoped, visibility_predicate, writable_fields, write_predicate
from ..schemas import TicketCreate, TicketFilters, TicketUpdate, parse, parse_uuid
from .ownership import apply_patch, get_scoped, must_get, paged, require_admin, require_create

log = logging.getLogger("tenantbridge.services.tickets")

# -----------------------------------------------------------------------------
# Ticket lifecycle
# -----------------------------------------------------------------------------
#   open -> in_progress -> (waiting_for_tenant <-> in_progress) -> resolved -> closed
#
# Shortcuts: resolve/close straight from open or waiting_for_tenant,
# in_progress back to open (unassigned). resolved/closed reopen to open for
# admins only, which clears resolved_at.
# -----------------------------------------------------------------------------

TRANSITIONS: dict[str, frozenset[str]] = {
    "open": frozenset({"in_progress", "resolved", "closed"}),
    "in_progress": frozenset({"open", "waiting_for_tenant", "resolved", "closed"}),
    "waiting_for_tenant": frozenset({"in_progress", "resolved", "closed"}),
    "resolved": frozenset({"closed", "open"}),
    "closed": frozenset({"open"}),
}

TERMINAL = frozenset({"resolved", "closed"})
OPEN_STATUSES = ("open", "in_progress", "waiting_for_tenant")


def can_transition(current: str, target: str) -> bool:
    return target == current or target in TRANSITIONS.get(current, frozenset())


def apply_transition(
    t: Ticket,
    target: str,
    ctx: RequestContext,
    *,
    resolved_at: Optional[datetime] = None,
) -> bool:
    """Moves t to target in place. Returns False for a same-status no-op."""
    current = t.status
    if target == current:
        return False
    if target not in TRANSITIONS.get(current, frozenset()):
        raise Conflict(f"ticket cannot move from {current} to {target}", entity="Ticket")

    if current in TERMINAL and target == "open":
        if ctx.role != ROLE_LANDLORD_ADMIN:
            raise AccessDenied("only a landlord admin may reopen a ticket", entity="Ticket")
        t.resolved_at = None
    elif target in TERMINAL:
        # First resolution time wins; resolved -> closed keeps it.
        if t.resolved_at is None:
            t.resolved_at = resolved_at or utcnow()
    elif current == "in_progress" and target == "open":
        t.assigned_to_id = None

    t.status = target
    t.updated_at = utcnow()
    return True


def _check_assignee(db: Session, assignee_id) -> User:
    user = get_scoped(db, User, assignee_id)
    if user is None or user.role != ROLE_LANDLORD_ADMIN or not user.is_active:
        raise ValidationFailed("tickets can only be assigned to an active landlord admin")
    return user


# -----------------------------
# CRUD
# -----------------------------
def create_ticket(db: Session, data: Any) -> Ticket:
    ctx = require_create(db, Ticket)
    payload = parse(TicketCreate, data)
    values = payload.model_dump()

    building = must_get(db, Building, payload.building_id)
    if payload.contract_id is not None:
        contract = must_get(db, Contract, payload.contract_id)
        if contract.building_id != building.id:
            raise ValidationFailed("contract does not belong to this building")

    if ctx.is_admin:
        if payload.assigned_to_id is not None:
            _check_assignee(db, payload.assigned_to_id)
    else:
        # tenants report; assignment and costing belong to the landlord
        values.pop("assigned_to_id", None)
        values.pop("estimated_cost", None)

    t = Ticket(org_id=ctx.org_id, created_by_id=ctx.user_id, **values)
    db.add(t)
    db.flush()
    log.info("ticket created", extra={**ctx.log_extra(), "entity": "Ticket", "operation": "create_ticket"})
    return t


def get_by_id(db: Session, ticket_id: Any) -> Optional[Ticket]:
    return get_scoped(db, Ticket, ticket_id)


def must_get_ticket(db: Session, ticket_id: Any) -> Ticket:
    return must_get(db, Ticket, ticket_id)


def list_tickets(db: Session, filters: Any = None) -> list[Ticket]:
    ctx = require_context(db)
    f = parse(TicketFilters, filters)

    stmt = scoped(Ticket, ctx)
    if f.status:
        stmt = stmt.where(Ticket.status == f.status)
    if f.priority:
        stmt = stmt.where(Ticket.priority == f.priority)
    if f.category:
        stmt = stmt.where(Ticket.category == f.category)
    if f.building_id is not None:
        stmt = stmt.where(Ticket.building_id == f.building_id)
    if f.contract_id is not None:
        stmt = stmt.where(Ticket.contract_id == f.contract_id)
    if f.created_by_id is not None:
        stmt = stmt.where(Ticket.created_by_id == f.created_by_id)
    if f.assigned_to_id is not None:
        stmt = stmt.where(Ticket.assigned_to_id == f.assigned_to_id)
    if f.created_from is not None:
        stmt = stmt.where(Ticket.created_at >= f.created_from)
    if f.created_to is not None:
        stmt = stmt.where(Ticket.created_at <= f.created_to)
    if f.search:
        like = f"%{f.search}%"
        stmt = stmt.where(or_(Ticket.title.ilike(like), Ticket.description.ilike(like)))

    stmt = stmt.order_by(Ticket.created_at.desc(), Ticket.id.desc())
    return list(db.scalars(paged(stmt, f)))


def search(db: Session, term: str, *, limit: int = 20) -> list[Ticket]:
    return list_tickets(db, {"search": term, "limit": limit})


def _in_write_scope(db: Session, t: Ticket, ctx: RequestContext) -> bool:
    return db.scalar(select(Ticket.id).where(Ticket.id == t.id, write_predicate(Ticket, ctx))) is not None


def update(db: Session, ticket_id: Any, patch: Mapping[str, Any]) -> Optional[Ticket]:
    """
    Scoped read first, so an invisible ticket and a missing one both give None.

    The patch goes through the write allow-list before validation: for a
    tenant, {"status": ..., "title": ...} simply disappears. Status changes
    go through the lifecycle above.
    """
    ctx = require_context(db)
    t = get_scoped(db, Ticket, ticket_id)
    if t is None:
        return None
    if not _in_write_scope(db, t, ctx):
        return None

    allowed = writable_fields(Ticket, ctx, dict(patch))
    if not allowed:
        return t
    values = parse(TicketUpdate, allowed).model_dump(exclude_unset=True)

    status = values.pop("status", None)
    resolved_at = values.pop("resolved_at", None)
    if values.get("assigned_to_id") is not None:
        _check_assignee(db, values["assigned_to_id"])

    if status is not None:
        apply_transition(t, status, ctx, resolved_at=resolved_at)
    elif resolved_at is not None and t.status in TERMINAL and t.resolved_at is None:
        t.resolved_at = resolved_at

    apply_patch(t, values)
    db.flush()
    return t


def change_status(
    db: Session,
    ticket_id: Any,
    status: str,
    *,
    resolved_at: Optional[datetime] = None,
) -> Ticket:
    ctx = require_admin(db)
    parse(TicketUpdate, {"status": status})
    t = must_get(db, Ticket, ticket_id)
    if apply_transition(t, status, ctx, resolved_at=resolved_at):
        db.flush()
        log.info(
            "ticket status -> %s",
            status,
            extra={**ctx.log_extra(), "entity": "Ticket", "operation": "change_status"},
        )
    return t


def reopen(db: Session, ticket_id: Any) -> Ticket:
    ctx = require_admin(db)
    t = must_get(db, Ticket, ticket_id)
    if t.status not in TERMINAL:
        raise Conflict(f"ticket is {t.status}, not resolved or closed", entity="Ticket")
    apply_transition(t, "open", ctx)
    db.flush()
    return t


def assign(db: Session, ticket_id: Any, assignee_id: Any) -> Ticket:
    """Assigning starts work on an open ticket; unassigning an in-progress one reopens it."""
    ctx = require_admin(db)
    t = must_get(db, Ticket, ticket_id)

    if assignee_id is not None:
        user = _check_assignee(db, parse_uuid(assignee_id, "assigned_to_id"))
        apply_patch(t, {"assigned_to_id": user.id})
        if t.status == "open":
            apply_transition(t, "in_progress", ctx)
    else:
        if t.status == "in_progress":
            apply_transition(t, "open", ctx)
        apply_patch(t, {"assigned_to_id": None})

    db.flush()
    return t


def delete(db: Session, ticket_id: Any) -> bool:
    ctx = require_admin(db)
    t = must_get(db, Ticket, ticket_id)
    db.execute(
        sa_update(Document)
        .where(Document.ticket_id == t.id, Document.org_id == ctx.org_id)
        .values(ticket_id=None)
        .execution_options(synchronize_session="fetch")
    )
    db.delete(t)
    db.flush()
    log.info("ticket deleted", extra={**ctx.log_extra(), "entity": "Ticket", "operation": "delete_ticket"})
    return True


def close_open_for_contract(db: Session, contract_id, *, now: Optional[datetime] = None) -> int:
    """Bulk close used by contract termination; same lifecycle outcome as change_status."""
    ctx = require_admin(db)
    now = now or utcnow()
    res = db.execute(
        sa_update(Ticket)
        .where(
            Ticket.contract_id == contract_id,
            Ticket.org_id == ctx.org_id,
            Ticket.status.in_(OPEN_STATUSES),
        )
        .values(status="closed", resolved_at=func.coalesce(Ticket.resolved_at, now), updated_at=now)
        .execution_options(synchronize_session="fetch")
    )
    return int(res.rowcount or 0)


# -----------------------------
# Aggregates
# -----------------------------
def get_stats(db: Session, *, today: Optional[date] = None) -> dict[str, int]:
    ctx = require_context(db)
    today = today or utcnow().date()

    def _n(cond):
        return func.coalesce(func.sum(case((cond, 1), else_=0)), 0)

    base = (
        select(
            func.count(Ticket.id),
            _n(Ticket.status == "open"),
            _n(Ticket.status == "in_progress"),
            _n(Ticket.status == "waiting_for_tenant"),
            _n(Ticket.status == "resolved"),
            _n(Ticket.status == "closed"),
            _n(Ticket.priority == "urgent"),
            _n(Ticket.priority == "high"),
            _n((Ticket.due_date < today) & Ticket.status.in_(OPEN_STATUSES)),
        )
        .where(visibility_predicate(Ticket, ctx))
    )
    row = db.execute(base).one()
    keys = ("total", "open", "in_progress", "waiting_for_tenant", "resolved", "closed", "urgent", "high", "overdue")
    return {k: int(v or 0) for k, v in zip(keys, row)}
