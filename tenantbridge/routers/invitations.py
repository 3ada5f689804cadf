# tenantbridge/routers/invitations.py
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import sessionmaker

from ..auth import get_principal
from ..context import RequestContext
from ..db import get_session_factory
from ..schemas import InvitationAccept, InvitationCreate, InvitationOut, to_out
from ..services import invitations as svc
from ..transactions import accept_invitation, with_read_context, with_transaction_and_context

router = APIRouter(prefix="/invitations", tags=["invitations"])


@router.post("")
def create_invitation(
    payload: InvitationCreate,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    inv = with_transaction_and_context(
        p, lambda db: svc.create_invitation(db, payload), session_factory=session_factory, operation="create_invitation"
    )
    return {"invitation": to_out(inv), "url": svc.invitation_url(inv)}


@router.get("", response_model=list[InvitationOut])
def list_pending(
    contract_id: Optional[uuid.UUID] = Query(default=None),
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_read_context(
        p, lambda db: svc.list_pending(db, contract_id=contract_id), session_factory=session_factory
    )


@router.get("/by-token/{token}", response_model=InvitationOut)
def get_by_token(
    token: str,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_read_context(p, lambda db: svc.must_get_valid(db, token), session_factory=session_factory)


@router.delete("/{invitation_id}")
def revoke(
    invitation_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    with_transaction_and_context(
        p, lambda db: svc.revoke(db, invitation_id), session_factory=session_factory, operation="revoke_invitation"
    )
    return {"ok": True}


@router.post("/accept")
def accept(payload: InvitationAccept, session_factory: sessionmaker = Depends(get_session_factory)):
    # public: the invitee has no principal until this succeeds
    out = accept_invitation(payload.token, name=payload.name, session_factory=session_factory)
    return to_out(out)
