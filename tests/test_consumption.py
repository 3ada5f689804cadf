# tests/test_consumption.py
from __future__ import annotations

import pytest

from conftest import ctx_for
from tenantbridge.context import ContextStore
from tenantbridge.errors import AccessDenied, Conflict, ValidationFailed
from tenantbridge.services import consumption


def _as(db, user):
    ContextStore.set(db, ctx_for(user))
    return db


def _reading(contract, period="2025-03", ctype="electricity", reading=120.0, **extra):
    return {
        "contract_id": str(contract.id),
        "consumption_type": ctype,
        "period": period,
        "reading": reading,
        **extra,
    }


def test_one_reading_per_contract_type_and_period(db, world):
    _as(db, world["admin"])
    consumption.create_record(db, _reading(world["c1"]))
    with pytest.raises(Conflict):
        consumption.create_record(db, _reading(world["c1"], reading=130.0))

    # other type, other period, other contract are all fine
    consumption.create_record(db, _reading(world["c1"], ctype="gas"))
    consumption.create_record(db, _reading(world["c1"], period="2025-04"))
    consumption.create_record(db, _reading(world["c2"]))
    assert consumption.exists_for_period(db, world["c1"].id, "gas", "2025-03")
    assert not consumption.exists_for_period(db, world["c2"].id, "gas", "2025-03")


def test_upsert_is_idempotent(db, world):
    _as(db, world["admin"])
    first, created = consumption.upsert_record(db, _reading(world["c1"], cost=30.0))
    assert created is True

    again, created = consumption.upsert_record(db, _reading(world["c1"], reading=150.0, cost=36.0))
    assert created is False
    assert again.id == first.id
    assert again.reading == 150.0
    assert again.cost == 36.0
    assert len(consumption.list_records(db, {"contract_id": str(world["c1"].id)})) == 1


@pytest.mark.parametrize(
    "override",
    [
        {"period": "2999-01"},
        {"period": "2025-13"},
        {"period": "March"},
        {"consumption_type": "steam"},
        {"reading": -1},
    ],
)
def test_bad_readings_are_rejected(db, world, override):
    _as(db, world["admin"])
    with pytest.raises(ValidationFailed):
        consumption.create_record(db, {**_reading(world["c1"]), **override})


def test_tenants_cannot_record_readings(db, world):
    _as(db, world["t1"])
    with pytest.raises(AccessDenied):
        consumption.create_record(db, _reading(world["c1"]))


def test_natural_key_is_fixed_on_update(db, world):
    _as(db, world["admin"])
    rec = consumption.create_record(db, _reading(world["c1"]))
    out = consumption.update(db, rec.id, {"period": "2025-01", "consumption_type": "gas", "reading": 99.0})
    assert out.period == "2025-03"
    assert out.consumption_type == "electricity"
    assert out.reading == 99.0


def test_analytics_and_comparison(db, world):
    _as(db, world["admin"])
    consumption.create_record(db, _reading(world["c1"], reading=100.0, cost=20.0))
    consumption.create_record(db, _reading(world["c1"], period="2025-04", reading=50.0, cost=10.0))
    consumption.create_record(db, _reading(world["c1"], ctype="water", reading=5.0))
    consumption.create_record(db, _reading(world["c2"], reading=300.0, cost=60.0))

    out = consumption.get_analytics(db, {"consumption_type": "electricity"})
    assert out["summary"]["records"] == 3
    assert out["summary"]["total_reading"] == pytest.approx(450.0)
    assert out["summary"]["total_cost"] == pytest.approx(90.0)
    assert [row["period"] for row in out["by_period"]] == ["2025-03", "2025-04"]

    everything = consumption.get_analytics(db)
    assert {row["consumption_type"] for row in everything["by_type"]} == {"electricity", "water"}

    rows = consumption.get_comparison(db, [world["c1"].id, world["c2"].id], consumption_type="electricity")
    assert [r["contract_number"] for r in rows] == ["TB-2025-002", "TB-2025-001"]
    assert rows[1]["records"] == 2
    assert rows[0]["building_name"] == "Acme House"


def test_comparison_ignores_foreign_contracts(db, world):
    _as(db, world["admin"])
    consumption.create_record(db, _reading(world["c1"]))
    rows = consumption.get_comparison(db, [world["c1"].id, world["cb"].id])
    assert [r["contract_number"] for r in rows] == ["TB-2025-001"]
    assert consumption.get_comparison(db, []) == []
