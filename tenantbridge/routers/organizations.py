# tenantbridge/routers/organizations.py
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel
from sqlalchemy.orm import sessionmaker

from ..auth import get_principal
from ..context import RequestContext
from ..db import get_session_factory
from ..schemas import OrganizationCreate, OrganizationOut, UserCreate, to_out
from ..services import organizations as svc
from ..transactions import with_read_context, with_transaction, with_transaction_and_context

router = APIRouter(prefix="/organizations", tags=["organizations"])


class SignupIn(BaseModel):
    organization: OrganizationCreate
    admin: Optional[UserCreate] = None


@router.post("", response_model=OrganizationOut)
def signup(payload: SignupIn, session_factory: sessionmaker = Depends(get_session_factory)):
    admin = payload.admin.model_dump() if payload.admin else None
    return with_transaction(
        lambda db: svc.create_organization(db, payload.organization, admin=admin),
        session_factory=session_factory,
        operation="create_organization",
    )


@router.get("/me", response_model=OrganizationOut)
def get_mine(
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_read_context(p, svc.get_current, session_factory=session_factory)


@router.get("/me/stats")
def get_mine_with_stats(
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return to_out(with_read_context(p, svc.get_with_stats, session_factory=session_factory))


@router.patch("/me", response_model=OrganizationOut)
def update_mine(
    patch: dict[str, Any] = Body(...),
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_transaction_and_context(
        p, lambda db: svc.update(db, patch), session_factory=session_factory, operation="update_organization"
    )


@router.post("/me/deactivate")
def deactivate_mine(
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    n = with_transaction_and_context(p, svc.deactivate, session_factory=session_factory)
    return {"ok": True, "users_deactivated": n}
