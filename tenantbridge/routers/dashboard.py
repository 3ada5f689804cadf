# tenantbridge/routers/dashboard.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import sessionmaker

from ..auth import get_principal
from ..context import RequestContext
from ..db import get_session_factory
from ..services import reporting
from ..transactions import validate_data_integrity, with_read_context

router = APIRouter(tags=["dashboard"])


@router.get("/dashboard")
def dashboard(
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_read_context(p, reporting.dashboard_for_current_user, session_factory=session_factory)


@router.get("/dashboard/analytics")
def analytics(
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_read_context(
        p, lambda db: reporting.organization_analytics(db, start=start, end=end), session_factory=session_factory
    )


@router.get("/search")
def search(
    q: str = Query(..., min_length=1, max_length=200),
    limit: Optional[int] = Query(default=None, ge=1),
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    results = with_read_context(p, lambda db: reporting.global_search(db, q, limit=limit), session_factory=session_factory)
    return {"query": q, "results": results}


@router.get("/integrity")
def integrity(
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return validate_data_integrity(p, session_factory=session_factory)
