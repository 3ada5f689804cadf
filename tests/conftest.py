# tests/conftest.py
from __future__ import annotations

import os

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RLS_SESSION_VARIABLES", "false")

from datetime import date

import pytest
from sqlalchemy.pool import StaticPool

from tenantbridge.context import RequestContext
from tenantbridge.db import Base, make_engine, make_session_factory
from tenantbridge.models import Building, Contract, Organization, TenantContract, User


@pytest.fixture
def engine():
    eng = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.rollback()
        s.close()


# -------------------------
# Seed helpers (no context: fixtures write rows directly)
# -------------------------
def _mk_org(session_factory, slug: str, name: str | None = None) -> Organization:
    db = session_factory()
    try:
        org = Organization(slug=slug, name=name or slug.title())
        db.add(org)
        db.commit()
        return org
    finally:
        db.close()


def _mk_user(session_factory, org: Organization, email: str, *, role: str = "tenant", name: str | None = None) -> User:
    db = session_factory()
    try:
        u = User(org_id=org.id, email=email, name=name or email.split("@")[0], role=role)
        db.add(u)
        db.commit()
        return u
    finally:
        db.close()


def _mk_building(session_factory, org: Organization, name: str = "Main Street 1", *, total_units: int = 4) -> Building:
    db = session_factory()
    try:
        b = Building(
            org_id=org.id,
            name=name,
            address=f"{name}, 1",
            city="Berlin",
            postal_code="10115",
            total_units=total_units,
        )
        db.add(b)
        db.commit()
        return b
    finally:
        db.close()


def _mk_contract(
    session_factory,
    org: Organization,
    building: Building,
    unit: str,
    *,
    number: str | None = None,
    active: bool = True,
) -> Contract:
    db = session_factory()
    try:
        c = Contract(
            org_id=org.id,
            building_id=building.id,
            contract_number=number or f"TB-2025-{unit}",
            unit_number=unit,
            start_date=date(2025, 1, 1),
            rent_amount=900.0,
            is_active=active,
        )
        db.add(c)
        db.commit()
        return c
    finally:
        db.close()


def _link(session_factory, contract: Contract, tenant: User, percentage: float = 100.0) -> TenantContract:
    db = session_factory()
    try:
        link = TenantContract(
            org_id=contract.org_id,
            contract_id=contract.id,
            tenant_id=tenant.id,
            percentage=percentage,
        )
        db.add(link)
        db.commit()
        return link
    finally:
        db.close()


def ctx_for(user: User) -> RequestContext:
    return RequestContext.from_user(user)


@pytest.fixture
def world(session_factory):
    """
    Two organizations.

    acme: admin, tenants t1 (unit A1) and t2 (unit A2), one tenant without a
    contract, one building with two active contracts.
    beta: admin, one building, one contract.
    """
    acme = _mk_org(session_factory, "acme")
    beta = _mk_org(session_factory, "beta")

    admin = _mk_user(session_factory, acme, "admin@acme.test", role="landlord_admin")
    t1 = _mk_user(session_factory, acme, "t1@acme.test")
    t2 = _mk_user(session_factory, acme, "t2@acme.test")
    loner = _mk_user(session_factory, acme, "loner@acme.test")
    beta_admin = _mk_user(session_factory, beta, "admin@beta.test", role="landlord_admin")

    b1 = _mk_building(session_factory, acme, "Acme House")
    c1 = _mk_contract(session_factory, acme, b1, "A1", number="TB-2025-001")
    c2 = _mk_contract(session_factory, acme, b1, "A2", number="TB-2025-002")
    _link(session_factory, c1, t1)
    _link(session_factory, c2, t2)

    bb = _mk_building(session_factory, beta, "Beta Tower")
    cb = _mk_contract(session_factory, beta, bb, "B1", number="TB-2025-001")

    return {
        "acme": acme,
        "beta": beta,
        "admin": admin,
        "t1": t1,
        "t2": t2,
        "loner": loner,
        "beta_admin": beta_admin,
        "b1": b1,
        "c1": c1,
        "c2": c2,
        "bb": bb,
        "cb": cb,
    }
