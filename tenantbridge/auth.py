# tenantbridge/auth.py
from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from .config import settings
from .context import RequestContext
from .db import get_session_factory
from .models import Organization, User
from .transactions import with_transaction


def _resolve_principal(db: Session, *, org_slug: str, email: str) -> tuple[Optional[RequestContext], int, str]:
    # Runs before any context exists, so lookups are explicit about the org.
    org = db.scalar(select(Organization).where(Organization.slug == org_slug))
    if org is None:
        return None, 401, "Unknown org"
    if not org.is_active:
        return None, 403, "Organization is deactivated"

    user = db.scalar(select(User).where(User.org_id == org.id, User.email == email))
    if user is None:
        return None, 401, "Unknown user"
    if not user.is_active:
        return None, 403, "User is deactivated"

    return RequestContext.from_user(user), 200, ""


def get_principal(
    request: Request,
    session_factory: sessionmaker = Depends(get_session_factory),
) -> RequestContext:
    """
    Dev header principal: X-Org-Slug + X-User-Email name an existing active
    user of an existing active organization. Real identity providers plug
    in here and must produce the same RequestContext.
    """
    if (settings.auth_mode or "").strip().lower() != "dev":
        raise HTTPException(status_code=401, detail="Not authenticated")

    org_slug = (request.headers.get(settings.dev_header_org_slug) or "").strip().lower()
    email = (request.headers.get(settings.dev_header_user_email) or "").strip().lower()
    if not org_slug:
        raise HTTPException(status_code=401, detail=f"Missing {settings.dev_header_org_slug}")
    if not email:
        raise HTTPException(status_code=401, detail=f"Missing {settings.dev_header_user_email}")

    ctx, status, detail = with_transaction(
        lambda db: _resolve_principal(db, org_slug=org_slug, email=email),
        session_factory=session_factory,
        operation="resolve_principal",
    )
    if ctx is None:
        raise HTTPException(status_code=status, detail=detail)

    # read by the structured logging middleware
    request.state.context = ctx
    return ctx
