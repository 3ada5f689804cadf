# tenantbridge/routers/consumption.py
from __future__ import annotations

import uuid
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.orm import sessionmaker

from ..auth import get_principal
from ..context import RequestContext
from ..db import get_session_factory
from ..errors import NotFound
from ..schemas import BulkConsumptionIn, ConsumptionCreate, ConsumptionOut, to_out
from ..services import consumption as svc
from ..services import reporting
from ..transactions import bulk_upsert_consumption, with_read_context, with_transaction_and_context

router = APIRouter(prefix="/consumption", tags=["consumption"])


@router.post("", response_model=ConsumptionOut)
def create_record(
    payload: ConsumptionCreate,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_transaction_and_context(
        p, lambda db: svc.create_record(db, payload), session_factory=session_factory, operation="create_consumption"
    )


@router.post("/bulk")
def bulk_upsert(
    payload: BulkConsumptionIn,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    rows = bulk_upsert_consumption(p, payload.records, session_factory=session_factory)
    return {"ok": True, "records": to_out(rows)}


@router.get("", response_model=list[ConsumptionOut])
def list_records(
    request: Request,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    filters = dict(request.query_params)
    return with_read_context(p, lambda db: svc.list_records(db, filters), session_factory=session_factory)


@router.get("/analytics")
def analytics(
    request: Request,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    filters = dict(request.query_params)
    return with_read_context(p, lambda db: svc.get_analytics(db, filters), session_factory=session_factory)


@router.get("/comparison")
def comparison(
    contract_ids: list[uuid.UUID] = Query(...),
    consumption_type: Optional[str] = Query(default=None),
    period: Optional[str] = Query(default=None),
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_read_context(
        p,
        lambda db: svc.get_comparison(db, contract_ids, consumption_type=consumption_type, period=period),
        session_factory=session_factory,
    )


@router.get("/summary")
def tenant_summary(
    tenant_id: Optional[uuid.UUID] = Query(default=None),
    start_period: Optional[str] = Query(default=None),
    end_period: Optional[str] = Query(default=None),
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    out = with_read_context(
        p,
        lambda db: reporting.tenant_consumption_summary(
            db, tenant_id, start_period=start_period, end_period=end_period
        ),
        session_factory=session_factory,
    )
    if out is None:
        raise NotFound("no contract for this tenant", entity="Contract")
    return out


@router.get("/{record_id}", response_model=ConsumptionOut)
def get_record(
    record_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    row = with_read_context(p, lambda db: svc.get_by_id(db, record_id), session_factory=session_factory)
    if row is None:
        raise NotFound("consumption record not found", entity="ConsumptionRecord")
    return row


@router.patch("/{record_id}", response_model=ConsumptionOut)
def update_record(
    record_id: uuid.UUID,
    patch: dict[str, Any] = Body(...),
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    row = with_transaction_and_context(
        p, lambda db: svc.update(db, record_id, patch), session_factory=session_factory, operation="update_consumption"
    )
    if row is None:
        raise NotFound("consumption record not found", entity="ConsumptionRecord")
    return row


@router.delete("/{record_id}")
def delete_record(
    record_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    with_transaction_and_context(
        p, lambda db: svc.delete(db, record_id), session_factory=session_factory, operation="delete_consumption"
    )
    return {"ok": True}
