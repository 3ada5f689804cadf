# tenantbridge/routers/tickets.py
from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.orm import sessionmaker

from ..auth import get_principal
from ..context import RequestContext
from ..db import get_session_factory
from ..errors import NotFound
from ..schemas import AssignIn, StatusChangeIn, TicketCreate, TicketOut
from ..services import tickets as svc
from ..transactions import with_read_context, with_transaction_and_context

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.post("", response_model=TicketOut)
def create_ticket(
    payload: TicketCreate,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_transaction_and_context(
        p, lambda db: svc.create_ticket(db, payload), session_factory=session_factory, operation="create_ticket"
    )


@router.get("", response_model=list[TicketOut])
def list_tickets(
    request: Request,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    filters = dict(request.query_params)
    return with_read_context(p, lambda db: svc.list_tickets(db, filters), session_factory=session_factory)


@router.get("/stats")
def ticket_stats(
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_read_context(p, svc.get_stats, session_factory=session_factory)


@router.get("/{ticket_id}", response_model=TicketOut)
def get_ticket(
    ticket_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_read_context(p, lambda db: svc.must_get_ticket(db, ticket_id), session_factory=session_factory)


@router.patch("/{ticket_id}", response_model=TicketOut)
def update_ticket(
    ticket_id: uuid.UUID,
    patch: dict[str, Any] = Body(...),
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    row = with_transaction_and_context(
        p, lambda db: svc.update(db, ticket_id, patch), session_factory=session_factory, operation="update_ticket"
    )
    if row is None:
        raise NotFound("ticket not found", entity="Ticket")
    return row


@router.post("/{ticket_id}/status", response_model=TicketOut)
def change_status(
    ticket_id: uuid.UUID,
    payload: StatusChangeIn,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_transaction_and_context(
        p,
        lambda db: svc.change_status(db, ticket_id, payload.status),
        session_factory=session_factory,
        operation="change_ticket_status",
    )


@router.post("/{ticket_id}/reopen", response_model=TicketOut)
def reopen_ticket(
    ticket_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_transaction_and_context(
        p, lambda db: svc.reopen(db, ticket_id), session_factory=session_factory, operation="reopen_ticket"
    )


@router.post("/{ticket_id}/assign", response_model=TicketOut)
def assign_ticket(
    ticket_id: uuid.UUID,
    payload: AssignIn,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_transaction_and_context(
        p,
        lambda db: svc.assign(db, ticket_id, payload.assigned_to_id),
        session_factory=session_factory,
        operation="assign_ticket",
    )


@router.delete("/{ticket_id}")
def delete_ticket(
    ticket_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    with_transaction_and_context(
        p, lambda db: svc.delete(db, ticket_id), session_factory=session_factory, operation="delete_ticket"
    )
    return {"ok": True}
