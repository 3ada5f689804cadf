# tenantbridge/routers/buildings.py
from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.orm import sessionmaker

from ..auth import get_principal
from ..context import RequestContext
from ..db import get_session_factory
from ..errors import NotFound
from ..schemas import BuildingCreate, BuildingOut, to_out
from ..services import buildings as svc
from ..services import reporting
from ..transactions import delete_building_with_cleanup, with_read_context, with_transaction_and_context

router = APIRouter(prefix="/buildings", tags=["buildings"])


@router.post("", response_model=BuildingOut)
def create_building(
    payload: BuildingCreate,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_transaction_and_context(
        p, lambda db: svc.create_building(db, payload), session_factory=session_factory, operation="create_building"
    )


@router.get("", response_model=list[BuildingOut])
def list_buildings(
    request: Request,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    filters = dict(request.query_params)
    return with_read_context(p, lambda db: svc.list_buildings(db, filters), session_factory=session_factory)


@router.get("/{building_id}", response_model=BuildingOut)
def get_building(
    building_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_read_context(p, lambda db: svc.must_get_building(db, building_id), session_factory=session_factory)


@router.get("/{building_id}/occupancy")
def get_occupancy(
    building_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    return with_read_context(p, lambda db: svc.get_occupancy(db, building_id), session_factory=session_factory)


@router.get("/{building_id}/stats")
def get_building_stats(
    building_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    out = with_read_context(p, lambda db: svc.get_with_stats(db, building_id), session_factory=session_factory)
    return to_out(out)


@router.get("/{building_id}/overview")
def get_building_overview(
    building_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    out = with_read_context(
        p, lambda db: reporting.building_overview(db, building_id), session_factory=session_factory
    )
    return to_out(out)


@router.patch("/{building_id}", response_model=BuildingOut)
def update_building(
    building_id: uuid.UUID,
    patch: dict[str, Any] = Body(...),
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    row = with_transaction_and_context(
        p, lambda db: svc.update(db, building_id, patch), session_factory=session_factory, operation="update_building"
    )
    if row is None:
        raise NotFound("building not found", entity="Building")
    return row


@router.delete("/{building_id}")
def delete_building(
    building_id: uuid.UUID,
    p: RequestContext = Depends(get_principal),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    summary = delete_building_with_cleanup(p, building_id, session_factory=session_factory)
    return {"ok": True, **to_out(summary)}
