# tenantbridge/routers/health.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import sessionmaker

from ..config import settings
from ..db import get_session_factory
from ..monitoring import check_database_connection

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    return {"ok": True, "env": settings.app_env}


@router.get("/health/db")
def health_db(session_factory: sessionmaker = Depends(get_session_factory)):
    db = session_factory()
    try:
        ok = check_database_connection(db)
    finally:
        db.close()
    return {"ok": ok}
