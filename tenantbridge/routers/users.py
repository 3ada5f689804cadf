# tenantbridge/routers/users.py
from __future__ import annotations

import uuid
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.orm import sessionmaker

from ..auth import get_principal
from ..context import RequestContext
from ..db import get_session_factory
from ..errors import NotFound
from ..schemas import UserCreate, UserOut, to_out
from ..services import users as svc
from ..transactions import remove_tenant_from_system, with_read_context, with_transaction_and_context

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=list[UserOut])
def list_users(
    request: Request,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    filters = dict(request.query_params)
    return with_read_context(p, lambda db: svc.list_users(db, filters), session_factory=session_factory)


@router.post("", response_model=UserOut)
def create_user(
    payload: UserCreate,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_transaction_and_context(
        p, lambda db: svc.create_user(db, payload), session_factory=session_factory, operation="create_user"
    )


@router.get("/stats")
def user_stats(
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_read_context(p, svc.get_stats, session_factory=session_factory)


@router.get("/available-tenants", response_model=list[UserOut])
def available_tenants(
    contract_id: Optional[uuid.UUID] = Query(default=None),
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_read_context(
        p, lambda db: svc.get_available_tenants(db, contract_id=contract_id), session_factory=session_factory
    )


@router.get("/{user_id}", response_model=UserOut)
def get_user(
    user_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_read_context(p, lambda db: svc.must_get_user(db, user_id), session_factory=session_factory)


@router.get("/{user_id}/contracts")
def get_tenant_contracts(
    user_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    out = with_read_context(p, lambda db: svc.get_tenant_with_contracts(db, user_id), session_factory=session_factory)
    if out is None:
        raise NotFound("tenant not found", entity="User")
    return to_out(out)


@router.patch("/{user_id}", response_model=UserOut)
def update_user(
    user_id: uuid.UUID,
    patch: dict[str, Any] = Body(...),
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    row = with_transaction_and_context(
        p, lambda db: svc.update(db, user_id, patch), session_factory=session_factory, operation="update_user"
    )
    if row is None:
        raise NotFound("user not found", entity="User")
    return row


@router.post("/{user_id}/deactivate", response_model=UserOut)
def deactivate_user(
    user_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_transaction_and_context(
        p, lambda db: svc.deactivate(db, user_id), session_factory=session_factory, operation="deactivate_user"
    )


@router.post("/{user_id}/reactivate", response_model=UserOut)
def reactivate_user(
    user_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_transaction_and_context(
        p, lambda db: svc.reactivate(db, user_id), session_factory=session_factory, operation="reactivate_user"
    )


@router.delete("/{user_id}")
def remove_tenant(
    user_id: uuid.UUID,
    reassign_tickets_to: Optional[uuid.UUID] = Query(default=None),
    close_tickets: bool = Query(default=True),
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    out = remove_tenant_from_system(
        p,
        user_id,
        reassign_tickets_to=reassign_tickets_to,
        close_tickets=close_tickets,
        session_factory=session_factory,
    )
    return to_out(out)
