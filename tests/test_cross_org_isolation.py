# tests/test_cross_org_isolation.py
from __future__ import annotations

import pytest

from conftest import ctx_for
from tenantbridge.context import ContextStore
from tenantbridge.errors import AccessDenied, NotFound
from tenantbridge.services import buildings, contracts, reporting, tickets, users


def _as(db, user):
    ContextStore.set(db, ctx_for(user))
    return db


def test_lists_never_cross_organizations(db, world):
    _as(db, world["admin"])
    assert {c.id for c in contracts.list_contracts(db)} == {world["c1"].id, world["c2"].id}
    assert all(u.org_id == world["acme"].id for u in users.list_users(db))
    assert [b.name for b in buildings.list_buildings(db)] == ["Acme House"]


def test_reading_foreign_row_is_access_denied_and_looks_like_not_found(db, world):
    _as(db, world["admin"])
    with pytest.raises(AccessDenied) as e:
        buildings.must_get_building(db, world["bb"].id)
    assert isinstance(e.value, NotFound)
    assert buildings.get_by_id(db, world["bb"].id) is None


def test_foreign_patch_changes_nothing(db, world, session_factory):
    _as(db, world["admin"])
    assert buildings.update(db, world["bb"].id, {"name": "Hijacked"}) is None
    db.commit()

    check = session_factory()
    try:
        _as(check, world["beta_admin"])
        assert buildings.must_get_building(check, world["bb"].id).name == "Beta Tower"
    finally:
        check.close()


def test_cannot_attach_ticket_to_foreign_building(db, world):
    _as(db, world["admin"])
    with pytest.raises(NotFound):
        tickets.create_ticket(
            db, {"building_id": str(world["bb"].id), "title": "x", "description": "y"}
        )


def test_contract_numbers_are_per_organization(db, world):
    # both orgs already hold TB-2025-001
    _as(db, world["beta_admin"])
    assert contracts.generate_contract_number(db, year=2025) == "TB-2025-002"


def test_search_only_returns_own_rows(db, world):
    _as(db, world["beta_admin"])
    hits = reporting.global_search(db, "House")
    assert hits == []
    hits = reporting.global_search(db, "Tower")
    assert [h["type"] for h in hits] == ["building"]
