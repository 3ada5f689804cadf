# tests/test_contracts.py
from __future__ import annotations

import threading
from datetime import date

import pytest

from conftest import _link, _mk_building, _mk_contract, _mk_org, _mk_user, ctx_for
from tenantbridge.context import ContextStore
from tenantbridge.db import Base, make_engine, make_session_factory
from tenantbridge.errors import Conflict, ValidationFailed
from tenantbridge.services import contracts
from tenantbridge.transactions import with_transaction_and_context


def _as(db, user):
    ContextStore.set(db, ctx_for(user))
    return db


def test_second_active_contract_on_same_unit_conflicts(db, world):
    _as(db, world["admin"])
    with pytest.raises(Conflict):
        contracts.create_contract(
            db,
            {"building_id": str(world["b1"].id), "unit_number": "A1", "start_date": "2025-02-01", "rent_amount": 800},
        )


def test_inactive_contract_may_share_a_unit(db, world):
    _as(db, world["admin"])
    c = contracts.create_contract(
        db,
        {
            "building_id": str(world["b1"].id),
            "unit_number": "A1",
            "start_date": "2024-01-01",
            "end_date": "2024-12-31",
            "rent_amount": 800,
            "is_active": False,
        },
    )
    assert c.is_active is False
    assert c.contract_number == "TB-2024-001"


def test_contract_number_is_generated_per_year(db, world):
    _as(db, world["admin"])
    c = contracts.create_contract(
        db, {"building_id": str(world["b1"].id), "unit_number": "A3", "start_date": "2025-05-01", "rent_amount": 700}
    )
    assert c.contract_number == "TB-2025-003"


def test_end_before_start_is_rejected(db, world):
    _as(db, world["admin"])
    with pytest.raises(ValidationFailed):
        contracts.create_contract(
            db,
            {
                "building_id": str(world["b1"].id),
                "unit_number": "A4",
                "start_date": "2025-05-01",
                "end_date": "2025-04-01",
                "rent_amount": 700,
            },
        )


def test_reactivating_onto_occupied_unit_conflicts(db, session_factory, world):
    old = _mk_contract(session_factory, world["acme"], world["b1"], "A1", number="TB-2023-001", active=False)
    _as(db, world["admin"])
    with pytest.raises(Conflict):
        contracts.update(db, old.id, {"is_active": True})


def test_expiring_window(db, world):
    _as(db, world["admin"])
    contracts.update(db, world["c1"].id, {"end_date": "2025-07-01"})
    contracts.update(db, world["c2"].id, {"end_date": "2026-07-01"})
    out = contracts.get_expiring(db, within_days=60, today=date(2025, 6, 1))
    assert [c.id for c in out] == [world["c1"].id]


def test_tenant_shares_cannot_exceed_100(db, session_factory, world):
    extra = _mk_user(session_factory, world["acme"], "extra@acme.test")
    _as(db, world["admin"])
    # c1 already carries t1 at 100%
    with pytest.raises(Conflict):
        contracts.add_tenant(db, world["c1"].id, {"tenant_id": str(extra.id), "percentage": 10})


def test_shares_split_and_main_tenant_is_unique(db, session_factory, world):
    c = _mk_contract(session_factory, world["acme"], world["b1"], "A5", number="TB-2025-050")
    a = _mk_user(session_factory, world["acme"], "a@acme.test")
    b = _mk_user(session_factory, world["acme"], "b@acme.test")

    _as(db, world["admin"])
    contracts.add_tenant(db, c.id, {"tenant_id": str(a.id), "percentage": 60, "is_main_tenant": True})
    contracts.add_tenant(db, c.id, {"tenant_id": str(b.id), "percentage": 40, "is_main_tenant": True})
    assert contracts.percentage_total(db, c.id) == pytest.approx(100.0)

    links = contracts.list_tenant_links(db, c.id)
    mains = [row["tenant"].email for row in links if row["link"].is_main_tenant]
    assert mains == ["b@acme.test"]

    with pytest.raises(Conflict):
        contracts.add_tenant(db, c.id, {"tenant_id": str(b.id), "percentage": 1})


def test_landlord_cannot_be_linked_as_tenant(db, session_factory, world):
    c = _mk_contract(session_factory, world["acme"], world["b1"], "A6", number="TB-2025-060")
    _as(db, world["admin"])
    with pytest.raises(ValidationFailed):
        contracts.add_tenant(db, c.id, {"tenant_id": str(world["admin"].id), "percentage": 50})


def test_concurrent_additions_never_exceed_100(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={"timeout": 30})
    Base.metadata.create_all(eng)
    factory = make_session_factory(eng)
    try:
        org = _mk_org(factory, "race")
        admin = _mk_user(factory, org, "admin@race.test", role="landlord_admin")
        building = _mk_building(factory, org)
        contract = _mk_contract(factory, org, building, "R1")
        first = _mk_user(factory, org, "first@race.test")
        _link(factory, contract, first, percentage=40.0)
        racers = [_mk_user(factory, org, f"racer{i}@race.test") for i in range(2)]

        barrier = threading.Barrier(len(racers))
        outcomes: list[str] = []
        lock = threading.Lock()

        def attempt(tenant):
            barrier.wait()
            try:
                with_transaction_and_context(
                    ctx_for(admin),
                    lambda db: contracts.add_tenant(db, contract.id, {"tenant_id": str(tenant.id), "percentage": 50}),
                    session_factory=factory,
                )
                result = "ok"
            except Conflict:
                result = "conflict"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt, args=(t,)) for t in racers]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert sorted(outcomes) == ["conflict", "ok"]

        check = factory()
        try:
            _as(check, admin)
            assert contracts.percentage_total(check, contract.id) == pytest.approx(90.0)
        finally:
            check.close()
    finally:
        eng.dispose()
