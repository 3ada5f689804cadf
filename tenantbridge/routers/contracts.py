# tenantbridge/routers/contracts.py
from __future__ import annotations

import uuid
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import sessionmaker

from ..auth import get_principal
from ..context import RequestContext
from ..db import get_session_factory
from ..errors import NotFound
from ..schemas import ContractCreate, ContractOut, TenantLinkCreate, TenantLinkOut, TerminateContractIn, to_out
from ..services import contracts as svc
from ..services import reporting
from ..transactions import (
    onboard_tenant,
    terminate_contract,
    with_read_context,
    with_transaction_and_context,
)

router = APIRouter(prefix="/contracts", tags=["contracts"])


class OnboardIn(BaseModel):
    email: str
    name: str = Field(..., min_length=1, max_length=160)
    percentage: float = Field(default=100.0, gt=0, le=100)
    is_main_tenant: bool = False


@router.post("", response_model=ContractOut)
def create_contract(
    payload: ContractCreate,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_transaction_and_context(
        p, lambda db: svc.create_contract(db, payload), session_factory=session_factory, operation="create_contract"
    )


@router.get("", response_model=list[ContractOut])
def list_contracts(
    request: Request,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    filters = dict(request.query_params)
    return with_read_context(p, lambda db: svc.list_contracts(db, filters), session_factory=session_factory)


@router.get("/mine", response_model=list[ContractOut])
def list_my_contracts(
    active_only: bool = Query(default=False),
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_read_context(
        p, lambda db: svc.list_for_tenant(db, active_only=active_only), session_factory=session_factory
    )


@router.get("/expiring", response_model=list[ContractOut])
def expiring_contracts(
    within_days: Optional[int] = Query(default=None, ge=1, le=3650),
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_read_context(
        p, lambda db: svc.get_expiring(db, within_days=within_days), session_factory=session_factory
    )


@router.get("/next-number")
def next_contract_number(
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return {"contract_number": with_read_context(p, svc.generate_contract_number, session_factory=session_factory)}


@router.get("/{contract_id}")
def get_contract(
    contract_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    out = with_read_context(p, lambda db: svc.get_with_details(db, contract_id), session_factory=session_factory)
    return to_out(out)


@router.get("/{contract_id}/activity")
def get_contract_activity(
    contract_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    out = with_read_context(p, lambda db: svc.get_with_activity(db, contract_id), session_factory=session_factory)
    return to_out(out)


@router.get("/{contract_id}/financials")
def get_contract_financials(
    contract_id: uuid.UUID,
    start_period: Optional[str] = Query(default=None),
    end_period: Optional[str] = Query(default=None),
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    out = with_read_context(
        p,
        lambda db: reporting.contract_financials(db, contract_id, start_period=start_period, end_period=end_period),
        session_factory=session_factory,
    )
    return to_out(out)


@router.patch("/{contract_id}", response_model=ContractOut)
def update_contract(
    contract_id: uuid.UUID,
    patch: dict[str, Any] = Body(...),
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    row = with_transaction_and_context(
        p, lambda db: svc.update(db, contract_id, patch), session_factory=session_factory, operation="update_contract"
    )
    if row is None:
        raise NotFound("contract not found", entity="Contract")
    return row


@router.post("/{contract_id}/terminate")
def terminate(
    contract_id: uuid.UUID,
    payload: Optional[TerminateContractIn] = None,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    payload = payload or TerminateContractIn()
    out = terminate_contract(
        p,
        contract_id,
        end_date=payload.end_date,
        reason=payload.reason,
        session_factory=session_factory,
    )
    return to_out(out)


# -------------------- tenant links --------------------

@router.get("/{contract_id}/tenants")
def list_tenants(
    contract_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    out = with_read_context(p, lambda db: svc.list_tenant_links(db, contract_id), session_factory=session_factory)
    return to_out(out)


@router.post("/{contract_id}/tenants", response_model=TenantLinkOut)
def add_tenant(
    contract_id: uuid.UUID,
    payload: TenantLinkCreate,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_transaction_and_context(
        p, lambda db: svc.add_tenant(db, contract_id, payload), session_factory=session_factory, operation="add_tenant"
    )


@router.post("/{contract_id}/onboard")
def onboard(
    contract_id: uuid.UUID,
    payload: OnboardIn,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    out = onboard_tenant(
        p,
        contract_id=contract_id,
        email=payload.email,
        name=payload.name,
        percentage=payload.percentage,
        is_main_tenant=payload.is_main_tenant,
        session_factory=session_factory,
    )
    return to_out(out)


@router.delete("/{contract_id}/tenants/{tenant_id}")
def remove_tenant(
    contract_id: uuid.UUID,
    tenant_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    with_transaction_and_context(
        p,
        lambda db: svc.remove_tenant(db, contract_id, tenant_id),
        session_factory=session_factory,
        operation="remove_tenant",
    )
    return {"ok": True}
