# tenantbridge/services/reporting.py
"""
Cross-entity read models.

Every figure is computed from a base select that already carries the
caller's visibility predicate; the derived aggregates only group and sum
what the base admits.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Any, Optional

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.orm import Session

from ..config import settings
from ..context import require_context
from ..db import utcnow
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
from ..policy import scoped, tenant_contract_ids, visibility_predicate
from ..schemas import ConsumptionFilters, parse, parse_uuid
from . import tickets as ticket_svc
from .ownership import get_scoped, must_get, require_admin

OPEN_STATUSES = ("open", "in_progress", "waiting_for_tenant")


def _month(db: Session, col):
    if db.get_bind().dialect.name == "sqlite":
        return func.strftime("%Y-%m", col)
    return func.to_char(col, "YYYY-MM")


def _ticket_brief(t: Ticket) -> dict[str, Any]:
    return {
        "id": str(t.id),
        "title": t.title,
        "status": t.status,
        "priority": t.priority,
        "created_at": t.created_at,
    }


def _n(cond):
    return func.coalesce(func.sum(case((cond, 1), else_=0)), 0)


@dataclass(frozen=True)
class LandlordDashboard:
    buildings: int
    total_units: int
    active_contracts: int
    occupancy_rate: float
    monthly_rent: float
    tenants: int
    expiring_contracts: int
    tickets: dict[str, int]
    recent_tickets: list[dict[str, Any]]


@dataclass(frozen=True)
class TenantDashboard:
    contracts: list[dict[str, Any]]
    open_tickets: int
    recent_tickets: list[dict[str, Any]]
    consumption: dict[str, Any]
    documents: int


def landlord_dashboard(db: Session, *, today: Optional[date] = None) -> LandlordDashboard:
    ctx = require_admin(db)
    today = today or utcnow().date()

    buildings, units = db.execute(
        select(func.count(Building.id), func.coalesce(func.sum(Building.total_units), 0)).where(
            visibility_predicate(Building, ctx)
        )
    ).one()

    window_end = today + timedelta(days=settings.expiring_contract_window_days)
    active, rent, expiring = db.execute(
        select(
            func.count(Contract.id),
            func.coalesce(func.sum(Contract.rent_amount), 0.0),
            _n(and_(Contract.end_date.is_not(None), Contract.end_date >= today, Contract.end_date <= window_end)),
        ).where(visibility_predicate(Contract, ctx), Contract.is_active.is_(True))
    ).one()

    tenants = db.scalar(
        select(func.count(User.id)).where(
            visibility_predicate(User, ctx), User.role == ROLE_TENANT, User.is_active.is_(True)
        )
    )

    recent = db.scalars(scoped(Ticket, ctx).order_by(Ticket.created_at.desc(), Ticket.id.desc()).limit(5)).all()

    units = int(units or 0)
    active = int(active or 0)
    return LandlordDashboard(
        buildings=int(buildings or 0),
        total_units=units,
        active_contracts=active,
        occupancy_rate=round(active / units * 100.0, 1) if units else 0.0,
        monthly_rent=float(rent or 0.0),
        tenants=int(tenants or 0),
        expiring_contracts=int(expiring or 0),
        tickets=ticket_svc.get_stats(db, today=today),
        recent_tickets=[_ticket_brief(t) for t in recent],
    )


def tenant_dashboard(db: Session) -> TenantDashboard:
    ctx = require_context(db)

    rows = db.execute(
        select(Contract, Building, TenantContract)
        .join(Building, Building.id == Contract.building_id)
        .join(TenantContract, and_(TenantContract.contract_id == Contract.id, TenantContract.tenant_id == ctx.user_id))
        .where(
            visibility_predicate(Contract, ctx),
            visibility_predicate(Building, ctx),
            visibility_predicate(TenantContract, ctx),
        )
        .order_by(Contract.is_active.desc(), Contract.start_date.desc())
    ).all()
    contracts = [
        {
            "contract_id": str(c.id),
            "contract_number": c.contract_number,
            "unit_number": c.unit_number,
            "building_name": b.name,
            "is_active": c.is_active,
            "rent_amount": float(c.rent_amount or 0.0),
            "percentage": float(link.percentage or 0.0),
            "is_main_tenant": link.is_main_tenant,
        }
        for c, b, link in rows
    ]

    open_tickets = db.scalar(
        select(func.count(Ticket.id)).where(visibility_predicate(Ticket, ctx), Ticket.status.in_(OPEN_STATUSES))
    )
    recent = db.scalars(scoped(Ticket, ctx).order_by(Ticket.created_at.desc(), Ticket.id.desc()).limit(5)).all()
    documents = db.scalar(select(func.count(Document.id)).where(visibility_predicate(Document, ctx)))

    summary = tenant_consumption_summary(db)
    return TenantDashboard(
        contracts=contracts,
        open_tickets=int(open_tickets or 0),
        recent_tickets=[_ticket_brief(t) for t in recent],
        consumption=summary["summary"] if summary else {"records": 0, "total_reading": 0.0, "total_cost": 0.0},
        documents=int(documents or 0),
    )


def dashboard_for_current_user(db: Session) -> dict[str, Any]:
    ctx = require_context(db)
    if ctx.is_admin:
        return {"role": ctx.role, "dashboard": asdict(landlord_dashboard(db))}
    return {"role": ctx.role, "dashboard": asdict(tenant_dashboard(db))}


def building_overview(db: Session, building_id: Any) -> dict[str, Any]:
    ctx = require_context(db)
    b = must_get(db, Building, building_id)

    total_contracts, active_contracts = db.execute(
        select(func.count(Contract.id), _n(Contract.is_active.is_(True))).where(
            Contract.building_id == b.id, visibility_predicate(Contract, ctx)
        )
    ).one()
    total_tickets, open_tickets = db.execute(
        select(func.count(Ticket.id), _n(Ticket.status.in_(OPEN_STATUSES))).where(
            Ticket.building_id == b.id, visibility_predicate(Ticket, ctx)
        )
    ).one()

    contracts = db.scalars(
        scoped(Contract, ctx).where(Contract.building_id == b.id).order_by(Contract.unit_number.asc())
    ).all()

    tenants_by_contract: dict[Any, list[dict[str, Any]]] = defaultdict(list)
    if contracts:
        link_rows = db.execute(
            select(TenantContract, User)
            .join(User, User.id == TenantContract.tenant_id)
            .where(
                TenantContract.contract_id.in_([c.id for c in contracts]),
                visibility_predicate(TenantContract, ctx),
                visibility_predicate(User, ctx),
            )
        ).all()
        for link, user in link_rows:
            tenants_by_contract[link.contract_id].append(
                {
                    "id": str(user.id),
                    "name": user.name,
                    "email": user.email,
                    "percentage": float(link.percentage or 0.0),
                    "is_main_tenant": link.is_main_tenant,
                }
            )

    recent = db.scalars(
        scoped(Ticket, ctx).where(Ticket.building_id == b.id).order_by(Ticket.created_at.desc()).limit(10)
    ).all()

    active_contracts = int(active_contracts or 0)
    return {
        "building": b,
        "stats": {
            "total_contracts": int(total_contracts or 0),
            "active_contracts": active_contracts,
            "total_tickets": int(total_tickets or 0),
            "open_tickets": int(open_tickets or 0),
            "occupancy_rate": round(active_contracts / b.total_units * 100.0) if b.total_units else 0,
        },
        "contracts": [{"contract": c, "tenants": tenants_by_contract.get(c.id, [])} for c in contracts],
        "recent_tickets": [_ticket_brief(t) for t in recent],
    }


def organization_analytics(
    db: Session,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> dict[str, Any]:
    ctx = require_admin(db)

    ticket_conds = [visibility_predicate(Ticket, ctx)]
    if start is not None:
        ticket_conds.append(Ticket.created_at >= start)
    if end is not None:
        ticket_conds.append(Ticket.created_at <= end)

    month = _month(db, Ticket.created_at)
    by_month = db.execute(
        select(month, func.count(Ticket.id), _n(Ticket.priority == "urgent"), _n(Ticket.status == "resolved"))
        .where(*ticket_conds)
        .group_by(month)
        .order_by(month)
    ).all()

    trends = db.execute(
        select(
            ConsumptionRecord.period,
            ConsumptionRecord.consumption_type,
            func.coalesce(func.sum(ConsumptionRecord.reading), 0.0),
            func.coalesce(func.sum(ConsumptionRecord.cost), 0.0),
            func.coalesce(func.avg(ConsumptionRecord.reading), 0.0),
        )
        .where(visibility_predicate(ConsumptionRecord, ctx))
        .group_by(ConsumptionRecord.period, ConsumptionRecord.consumption_type)
        .order_by(ConsumptionRecord.period.asc(), ConsumptionRecord.consumption_type.asc())
    ).all()

    # per-building figures from independent grouped subqueries, so contract
    # and ticket rows never multiply each other
    contract_stats = (
        select(
            Contract.building_id.label("building_id"),
            func.count(Contract.id).label("active"),
            func.coalesce(func.sum(Contract.rent_amount), 0.0).label("revenue"),
        )
        .where(visibility_predicate(Contract, ctx), Contract.is_active.is_(True))
        .group_by(Contract.building_id)
        .subquery("contract_stats")
    )
    ticket_stats = (
        select(
            Ticket.building_id.label("building_id"),
            _n(Ticket.status.in_(OPEN_STATUSES)).label("open_tickets"),
        )
        .where(visibility_predicate(Ticket, ctx), Ticket.building_id.is_not(None))
        .group_by(Ticket.building_id)
        .subquery("ticket_stats")
    )
    perf_rows = db.execute(
        select(
            Building,
            func.coalesce(contract_stats.c.active, 0),
            func.coalesce(contract_stats.c.revenue, 0.0),
            func.coalesce(ticket_stats.c.open_tickets, 0),
        )
        .outerjoin(contract_stats, contract_stats.c.building_id == Building.id)
        .outerjoin(ticket_stats, ticket_stats.c.building_id == Building.id)
        .where(visibility_predicate(Building, ctx))
        .order_by(func.coalesce(contract_stats.c.active, 0).desc(), Building.name.asc())
    ).all()

    resolution_days: dict[Any, list[float]] = defaultdict(list)
    for bid, created, resolved in db.execute(
        select(Ticket.building_id, Ticket.created_at, Ticket.resolved_at).where(
            visibility_predicate(Ticket, ctx), Ticket.resolved_at.is_not(None), Ticket.building_id.is_not(None)
        )
    ).all():
        resolution_days[bid].append((resolved - created).total_seconds() / 86400.0)

    performance = []
    for b, active, revenue, open_tickets in perf_rows:
        days = resolution_days.get(b.id) or []
        performance.append(
            {
                "building_id": str(b.id),
                "building_name": b.name,
                "total_units": b.total_units,
                "active_contracts": int(active or 0),
                "occupancy_rate": round(int(active or 0) * 100.0 / b.total_units, 2) if b.total_units else 0.0,
                "total_revenue": float(revenue or 0.0),
                "open_tickets": int(open_tickets or 0),
                "avg_resolution_days": round(sum(days) / len(days), 2) if days else 0.0,
            }
        )

    return {
        "tickets_by_month": [
            {"month": m, "total": int(t or 0), "urgent": int(u or 0), "resolved": int(r or 0)}
            for m, t, u, r in by_month
        ],
        "consumption_trends": [
            {
                "period": p,
                "consumption_type": ct,
                "total_reading": float(r),
                "total_cost": float(c),
                "avg_reading": float(a),
            }
            for p, ct, r, c, a in trends
        ],
        "building_performance": performance,
    }


def tenant_consumption_summary(
    db: Session,
    tenant_id: Any = None,
    *,
    start_period: Optional[str] = None,
    end_period: Optional[str] = None,
) -> Optional[dict[str, Any]]:
    """None when the tenant holds no visible contract."""
    ctx = require_context(db)
    f = parse(ConsumptionFilters, {"start_period": start_period, "end_period": end_period})
    tid = parse_uuid(tenant_id, "tenant_id") if tenant_id is not None else ctx.user_id

    held = tenant_contract_ids(ctx.org_id, tid)
    has_contract = db.scalar(
        select(Contract.id).where(visibility_predicate(Contract, ctx), Contract.id.in_(held)).limit(1)
    )
    if has_contract is None:
        return None

    conds = [visibility_predicate(ConsumptionRecord, ctx), ConsumptionRecord.contract_id.in_(held)]
    if f.start_period:
        conds.append(ConsumptionRecord.period >= f.start_period)
    if f.end_period:
        conds.append(ConsumptionRecord.period <= f.end_period)

    total_cost, total_reading, avg_cost, n = db.execute(
        select(
            func.coalesce(func.sum(ConsumptionRecord.cost), 0.0),
            func.coalesce(func.sum(ConsumptionRecord.reading), 0.0),
            func.coalesce(func.avg(ConsumptionRecord.cost), 0.0),
            func.count(ConsumptionRecord.id),
        ).where(*conds)
    ).one()

    rows = db.execute(
        select(
            ConsumptionRecord.period,
            ConsumptionRecord.consumption_type,
            ConsumptionRecord.contract_id,
            Contract.unit_number,
            Building.name,
            func.coalesce(func.sum(ConsumptionRecord.reading), 0.0),
            func.coalesce(func.sum(ConsumptionRecord.cost), 0.0),
        )
        .select_from(ConsumptionRecord)
        .join(Contract, Contract.id == ConsumptionRecord.contract_id)
        .join(Building, Building.id == Contract.building_id)
        .where(*conds)
        .group_by(
            ConsumptionRecord.period,
            ConsumptionRecord.consumption_type,
            ConsumptionRecord.contract_id,
            Contract.unit_number,
            Building.name,
        )
        .order_by(ConsumptionRecord.period.desc(), ConsumptionRecord.consumption_type.asc())
    ).all()

    return {
        "summary": {
            "records": int(n or 0),
            "total_reading": float(total_reading or 0.0),
            "total_cost": float(total_cost or 0.0),
            "avg_monthly_cost": float(avg_cost or 0.0),
        },
        "consumption": [
            {
                "period": p,
                "consumption_type": ct,
                "contract_id": str(cid),
                "unit_number": unit,
                "building_name": bname,
                "total_reading": float(r),
                "total_cost": float(c),
            }
            for p, ct, cid, unit, bname, r, c in rows
        ],
    }


def contract_financials(
    db: Session,
    contract_id: Any,
    *,
    start_period: Optional[str] = None,
    end_period: Optional[str] = None,
) -> dict[str, Any]:
    ctx = require_context(db)
    c = must_get(db, Contract, contract_id)
    building = get_scoped(db, Building, c.building_id)
    f = parse(ConsumptionFilters, {"start_period": start_period, "end_period": end_period})

    conds = [visibility_predicate(ConsumptionRecord, ctx), ConsumptionRecord.contract_id == c.id]
    if f.start_period:
        conds.append(ConsumptionRecord.period >= f.start_period)
    if f.end_period:
        conds.append(ConsumptionRecord.period <= f.end_period)

    total_cost = func.coalesce(func.sum(ConsumptionRecord.cost), 0.0)
    by_type = db.execute(
        select(
            ConsumptionRecord.consumption_type,
            total_cost,
            func.coalesce(func.sum(ConsumptionRecord.reading), 0.0),
            func.coalesce(func.avg(ConsumptionRecord.cost), 0.0),
            func.count(ConsumptionRecord.id),
        )
        .where(*conds)
        .group_by(ConsumptionRecord.consumption_type)
        .order_by(total_cost.desc())
    ).all()

    monthly = db.execute(
        select(
            ConsumptionRecord.period,
            func.coalesce(func.sum(ConsumptionRecord.cost), 0.0),
            func.coalesce(func.sum(ConsumptionRecord.reading), 0.0),
        )
        .where(*conds)
        .group_by(ConsumptionRecord.period)
        .order_by(ConsumptionRecord.period.asc())
    ).all()

    est, actual, n_tickets = db.execute(
        select(
            func.coalesce(func.sum(Ticket.estimated_cost), 0.0),
            func.coalesce(func.sum(Ticket.actual_cost), 0.0),
            func.count(Ticket.id),
        ).where(visibility_predicate(Ticket, ctx), Ticket.contract_id == c.id)
    ).one()

    consumption_cost = sum(float(row[1] or 0.0) for row in by_type)
    ticket_cost = float(actual or 0.0)
    return {
        "contract": c,
        "building": building,
        "financial": {
            "monthly_rent": float(c.rent_amount or 0.0),
            "total_consumption_cost": consumption_cost,
            "total_ticket_cost": ticket_cost,
            "total_operational_cost": consumption_cost + ticket_cost,
        },
        "consumption_by_type": [
            {
                "consumption_type": t,
                "total_cost": float(tc),
                "total_reading": float(tr),
                "avg_cost": float(ac),
                "records": int(k),
            }
            for t, tc, tr, ac, k in by_type
        ],
        "monthly_breakdown": [
            {"period": p, "total_cost": float(tc), "total_reading": float(tr)} for p, tc, tr in monthly
        ],
        "ticket_costs": {"estimated": float(est or 0.0), "actual": ticket_cost, "count": int(n_tickets or 0)},
    }


def global_search(db: Session, term: str, *, limit: Optional[int] = None) -> list[dict[str, Any]]:
    """Buildings, contracts, tickets, users and documents matching term, each through its own predicate."""
    ctx = require_context(db)
    term = (term or "").strip()
    if not term:
        return []
    like = f"%{term}%"
    limit = min(int(limit or settings.search_limit), settings.max_page_size)

    out: list[dict[str, Any]] = []

    for b in db.scalars(
        scoped(Building, ctx).where(or_(Building.name.ilike(like), Building.address.ilike(like))).limit(limit)
    ):
        out.append({"type": "building", "id": str(b.id), "name": b.name, "description": b.address})

    for c in db.scalars(
        scoped(Contract, ctx)
        .where(or_(Contract.contract_number.ilike(like), Contract.unit_number.ilike(like)))
        .limit(limit)
    ):
        out.append(
            {"type": "contract", "id": str(c.id), "name": f"{c.contract_number} - {c.unit_number}", "description": None}
        )

    for t in db.scalars(
        scoped(Ticket, ctx).where(or_(Ticket.title.ilike(like), Ticket.description.ilike(like))).limit(limit)
    ):
        out.append({"type": "ticket", "id": str(t.id), "name": t.title, "description": t.status})

    if ctx.is_admin:
        for u in db.scalars(
            scoped(User, ctx).where(or_(User.name.ilike(like), User.email.ilike(like))).limit(limit)
        ):
            out.append({"type": "user", "id": str(u.id), "name": u.name, "description": f"{u.email} - {u.role}"})

    for d in db.scalars(
        scoped(Document, ctx)
        .where(or_(Document.original_file_name.ilike(like), Document.description.ilike(like)))
        .limit(limit)
    ):
        out.append({"type": "document", "id": str(d.id), "name": d.original_file_name, "description": d.category})

    return out
