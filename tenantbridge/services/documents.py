# tenantbridge/services/documents.py
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from ..context import require_context
from ..models import Building, Contract, Document, Ticket
from ..policy import scoped, visibility_predicate, writable_fields
from ..schemas import DocumentCreate, DocumentFilters, DocumentUpdate, parse
from .ownership import apply_patch, get_scoped, must_get, must_get_writable, paged, require_create

log = logging.getLogger("tenantbridge.services.documents")


def create_document(db: Session, data: Any) -> Document:
    ctx = require_create(db, Document)
    payload = parse(DocumentCreate, data)
    values = payload.model_dump()

    # every parent must be visible to the uploader
    if payload.building_id is not None:
        must_get(db, Building, payload.building_id)
    if payload.contract_id is not None:
        must_get(db, Contract, payload.contract_id)
    if payload.ticket_id is not None:
        must_get(db, Ticket, payload.ticket_id)

    if ctx.is_tenant:
        values["is_public"] = False

    doc = Document(org_id=ctx.org_id, uploaded_by_id=ctx.user_id, **values)
    db.add(doc)
    db.flush()
    log.info("document stored", extra={**ctx.log_extra(), "entity": "Document", "operation": "create_document"})
    return doc


def get_by_id(db: Session, document_id: Any) -> Optional[Document]:
    return get_scoped(db, Document, document_id)


def list_documents(db: Session, filters: Any = None) -> list[Document]:
    ctx = require_context(db)
    f = parse(DocumentFilters, filters)

    stmt = scoped(Document, ctx)
    if f.building_id is not None:
        stmt = stmt.where(Document.building_id == f.building_id)
    if f.contract_id is not None:
        stmt = stmt.where(Document.contract_id == f.contract_id)
    if f.ticket_id is not None:
        stmt = stmt.where(Document.ticket_id == f.ticket_id)
    if f.category:
        stmt = stmt.where(Document.category == f.category)
    if f.is_public is not None:
        stmt = stmt.where(Document.is_public.is_(f.is_public))
    if f.search:
        like = f"%{f.search}%"
        stmt = stmt.where(
            or_(
                Document.file_name.ilike(like),
                Document.original_file_name.ilike(like),
                Document.description.ilike(like),
            )
        )

    stmt = stmt.order_by(Document.created_at.desc(), Document.id.desc())
    return list(db.scalars(paged(stmt, f)))


def search(db: Session, term: str, *, limit: int = 20) -> list[Document]:
    return list_documents(db, {"search": term, "limit": limit})


def update(db: Session, document_id: Any, patch: Mapping[str, Any]) -> Optional[Document]:
    ctx = require_context(db)
    doc = get_scoped(db, Document, document_id)
    if doc is None:
        return None
    allowed = writable_fields(Document, ctx, dict(patch))
    for k in ("building_id", "contract_id", "ticket_id", "file_url", "file_size", "mime_type"):
        allowed.pop(k, None)
    if not allowed:
        return doc
    apply_patch(doc, parse(DocumentUpdate, allowed).model_dump(exclude_unset=True))
    db.flush()
    return doc


def delete(db: Session, document_id: Any) -> Document:
    """Removes the row; the stored file is the caller's to clean up (file_url is returned)."""
    ctx = require_context(db)
    doc = must_get_writable(db, Document, document_id)
    db.delete(doc)
    db.flush()
    log.info("document deleted", extra={**ctx.log_extra(), "entity": "Document", "operation": "delete_document"})
    return doc


def get_storage_stats(db: Session) -> dict[str, Any]:
    ctx = require_context(db)
    base = (
        select(Document.category.label("category"), Document.file_size.label("file_size"))
        .where(visibility_predicate(Document, ctx))
        .subquery("scoped_documents")
    )

    n, size = db.execute(
        select(func.count(), func.coalesce(func.sum(base.c.file_size), 0)).select_from(base)
    ).one()
    rows = db.execute(
        select(base.c.category, func.count(), func.coalesce(func.sum(base.c.file_size), 0))
        .group_by(base.c.category)
        .order_by(base.c.category)
    ).all()

    return {
        "documents": int(n or 0),
        "total_bytes": int(size or 0),
        "by_category": [{"category": c, "documents": int(k), "total_bytes": int(s)} for c, k, s in rows],
    }
