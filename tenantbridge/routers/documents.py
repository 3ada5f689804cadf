# tenantbridge/routers/documents.py
from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.orm import sessionmaker

from ..auth import get_principal
from ..context import RequestContext
from ..db import get_session_factory
from ..errors import NotFound
from ..schemas import DocumentCreate, DocumentOut
from ..services import documents as svc
from ..transactions import with_read_context, with_transaction_and_context

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post("", response_model=DocumentOut)
def create_document(
    payload: DocumentCreate,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_transaction_and_context(
        p, lambda db: svc.create_document(db, payload), session_factory=session_factory, operation="create_document"
    )


@router.get("", response_model=list[DocumentOut])
def list_documents(
    request: Request,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    filters = dict(request.query_params)
    return with_read_context(p, lambda db: svc.list_documents(db, filters), session_factory=session_factory)


@router.get("/stats")
def storage_stats(
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_read_context(p, svc.get_storage_stats, session_factory=session_factory)


@router.get("/{document_id}", response_model=DocumentOut)
def get_document(
    document_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    row = with_read_context(p, lambda db: svc.get_by_id(db, document_id), session_factory=session_factory)
    if row is None:
        raise NotFound("document not found", entity="Document")
    return row


@router.patch("/{document_id}", response_model=DocumentOut)
def update_document(
    document_id: uuid.UUID,
    patch: dict[str, Any] = Body(...),
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    row = with_transaction_and_context(
        p, lambda db: svc.update(db, document_id, patch), session_factory=session_factory, operation="update_document"
    )
    if row is None:
        raise NotFound("document not found", entity="Document")
    return row


@router.delete("/{document_id}")
def delete_document(
    document_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    doc = with_transaction_and_context(
        p, lambda db: svc.delete(db, document_id), session_factory=session_factory, operation="delete_document"
    )
    # the stored file itself is removed by whoever owns file storage
    return {"ok": True, "file_url": doc.file_url}
