# tenantbridge/services/consumption.py
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..context import require_context
from ..errors import Conflict, NotFound
from ..models import Building, ConsumptionRecord, Contract
from ..policy import visibility_predicate, writable_fields
from ..schemas import ConsumptionCreate, ConsumptionFilters, ConsumptionUpdate, parse, parse_uuid
from .ownership import apply_patch, get_scoped, must_get, paged, require_admin, require_create

log = logging.getLogger("tenantbridge.services.consumption")

UPSERT_FIELDS = ("reading", "unit", "cost", "meter_number", "reading_date")


def _natural_key_row(db: Session, contract_id, consumption_type: str, period: str) -> Optional[ConsumptionRecord]:
    ctx = require_context(db)
    return db.scalar(
        select(ConsumptionRecord).where(
            ConsumptionRecord.org_id == ctx.org_id,
            ConsumptionRecord.contract_id == contract_id,
            ConsumptionRecord.consumption_type == consumption_type,
            ConsumptionRecord.period == period,
        )
    )


def exists_for_period(db: Session, contract_id: Any, consumption_type: str, period: str) -> bool:
    ctx = require_context(db)
    stmt = select(ConsumptionRecord.id).where(
        visibility_predicate(ConsumptionRecord, ctx),
        ConsumptionRecord.contract_id == parse_uuid(contract_id, "contract_id"),
        ConsumptionRecord.consumption_type == consumption_type,
        ConsumptionRecord.period == period,
    )
    return db.scalar(stmt) is not None


def create_record(db: Session, data: Any) -> ConsumptionRecord:
    ctx = require_create(db, ConsumptionRecord)
    payload = parse(ConsumptionCreate, data)
    contract = must_get(db, Contract, payload.contract_id)

    if _natural_key_row(db, contract.id, payload.consumption_type, payload.period) is not None:
        raise Conflict(
            f"{payload.consumption_type} reading for {payload.period} already recorded",
            entity="ConsumptionRecord",
        )

    rec = ConsumptionRecord(org_id=ctx.org_id, **payload.model_dump(exclude={"contract_id"}), contract_id=contract.id)
    db.add(rec)
    db.flush()
    return rec


def upsert_record(db: Session, data: Any) -> tuple[ConsumptionRecord, bool]:
    """
    Insert or update by (contract, type, period). Returns (row, created).

    Safe to repeat: a retried write lands on the same row.
    """
    ctx = require_create(db, ConsumptionRecord)
    payload = parse(ConsumptionCreate, data)
    contract = must_get(db, Contract, payload.contract_id)

    existing = _natural_key_row(db, contract.id, payload.consumption_type, payload.period)
    if existing is not None:
        values = payload.model_dump(include=set(UPSERT_FIELDS))
        apply_patch(existing, values)
        db.flush()
        return existing, False

    rec = ConsumptionRecord(org_id=ctx.org_id, **payload.model_dump(exclude={"contract_id"}), contract_id=contract.id)
    db.add(rec)
    db.flush()
    return rec, True


def get_by_id(db: Session, record_id: Any) -> Optional[ConsumptionRecord]:
    return get_scoped(db, ConsumptionRecord, record_id)


def _filtered(ctx, f: ConsumptionFilters):
    conds = [visibility_predicate(ConsumptionRecord, ctx)]
    if f.contract_id is not None:
        conds.append(ConsumptionRecord.contract_id == f.contract_id)
    if f.consumption_type:
        conds.append(ConsumptionRecord.consumption_type == f.consumption_type)
    if f.period:
        conds.append(ConsumptionRecord.period == f.period)
    if f.start_period:
        conds.append(ConsumptionRecord.period >= f.start_period)
    if f.end_period:
        conds.append(ConsumptionRecord.period <= f.end_period)
    return conds


def list_records(db: Session, filters: Any = None) -> list[ConsumptionRecord]:
    ctx = require_context(db)
    f = parse(ConsumptionFilters, filters)
    stmt = (
        select(ConsumptionRecord)
        .where(*_filtered(ctx, f))
        .order_by(ConsumptionRecord.period.desc(), ConsumptionRecord.created_at.desc())
    )
    return list(db.scalars(paged(stmt, f)))


def update(db: Session, record_id: Any, patch: Mapping[str, Any]) -> Optional[ConsumptionRecord]:
    ctx = require_context(db)
    rec = get_scoped(db, ConsumptionRecord, record_id)
    if rec is None:
        return None
    allowed = writable_fields(ConsumptionRecord, ctx, dict(patch))
    # natural key is fixed once written
    for k in ("contract_id", "consumption_type", "period"):
        allowed.pop(k, None)
    if not allowed:
        return rec
    apply_patch(rec, parse(ConsumptionUpdate, allowed).model_dump(exclude_unset=True))
    db.flush()
    return rec


def delete(db: Session, record_id: Any) -> bool:
    require_admin(db)
    rec = get_scoped(db, ConsumptionRecord, record_id)
    if rec is None:
        raise NotFound("consumption record not found", entity="ConsumptionRecord")
    db.delete(rec)
    db.flush()
    return True


def get_analytics(db: Session, filters: Any = None) -> dict[str, Any]:
    """Summary, per-type and per-period figures, all derived from one scoped base."""
    ctx = require_context(db)
    f = parse(ConsumptionFilters, filters)

    base = (
        select(
            ConsumptionRecord.consumption_type.label("consumption_type"),
            ConsumptionRecord.period.label("period"),
            ConsumptionRecord.reading.label("reading"),
            ConsumptionRecord.cost.label("cost"),
        )
        .where(*_filtered(ctx, f))
        .subquery("scoped_consumption")
    )

    total_n, total_reading, total_cost, avg_reading = db.execute(
        select(
            func.count(),
            func.coalesce(func.sum(base.c.reading), 0.0),
            func.coalesce(func.sum(base.c.cost), 0.0),
            func.coalesce(func.avg(base.c.reading), 0.0),
        ).select_from(base)
    ).one()

    by_type = db.execute(
        select(
            base.c.consumption_type,
            func.count(),
            func.coalesce(func.sum(base.c.reading), 0.0),
            func.coalesce(func.sum(base.c.cost), 0.0),
        )
        .group_by(base.c.consumption_type)
        .order_by(base.c.consumption_type)
    ).all()

    by_period = db.execute(
        select(
            base.c.period,
            base.c.consumption_type,
            func.coalesce(func.sum(base.c.reading), 0.0),
            func.coalesce(func.sum(base.c.cost), 0.0),
        )
        .group_by(base.c.period, base.c.consumption_type)
        .order_by(base.c.period, base.c.consumption_type)
    ).all()

    return {
        "summary": {
            "records": int(total_n or 0),
            "total_reading": float(total_reading or 0.0),
            "total_cost": float(total_cost or 0.0),
            "avg_reading": float(avg_reading or 0.0),
        },
        "by_type": [
            {"consumption_type": t, "records": int(n), "total_reading": float(r), "total_cost": float(c)}
            for t, n, r, c in by_type
        ],
        "by_period": [
            {"period": p, "consumption_type": t, "total_reading": float(r), "total_cost": float(c)}
            for p, t, r, c in by_period
        ],
    }


def get_comparison(
    db: Session,
    contract_ids: Iterable[Any],
    *,
    consumption_type: Optional[str] = None,
    period: Optional[str] = None,
) -> list[dict[str, Any]]:
    """Per-contract totals for side-by-side comparison, largest consumer first."""
    ctx = require_context(db)
    f = parse(ConsumptionFilters, {"consumption_type": consumption_type, "period": period})
    ids = [parse_uuid(x, "contract_id") for x in contract_ids]
    if not ids:
        return []

    total_reading = func.coalesce(func.sum(ConsumptionRecord.reading), 0.0)
    stmt = (
        select(
            Contract.id,
            Contract.contract_number,
            Contract.unit_number,
            Building.name,
            total_reading,
            func.coalesce(func.sum(ConsumptionRecord.cost), 0.0),
            func.coalesce(func.avg(ConsumptionRecord.reading), 0.0),
            func.count(ConsumptionRecord.id),
        )
        .select_from(ConsumptionRecord)
        .join(Contract, Contract.id == ConsumptionRecord.contract_id)
        .join(Building, Building.id == Contract.building_id)
        .where(
            *_filtered(ctx, f),
            ConsumptionRecord.contract_id.in_(ids),
            visibility_predicate(Contract, ctx),
            visibility_predicate(Building, ctx),
        )
        .group_by(Contract.id, Contract.contract_number, Contract.unit_number, Building.name)
        .order_by(total_reading.desc())
    )
    return [
        {
            "contract_id": str(cid),
            "contract_number": number,
            "unit_number": unit,
            "building_name": building_name,
            "total_reading": float(r),
            "total_cost": float(c),
            "avg_reading": float(a),
            "records": int(n),
        }
        for cid, number, unit, building_name, r, c, a, n in db.execute(stmt).all()
    ]
