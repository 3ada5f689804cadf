# tests/test_reporting.py
from __future__ import annotations

from datetime import date

import pytest

from conftest import ctx_for
from tenantbridge.context import ContextStore
from tenantbridge.errors import AccessDenied
from tenantbridge.services import consumption, reporting, tickets


def _as(db, user):
    ContextStore.set(db, ctx_for(user))
    return db


def _seed_activity(session_factory, world):
    db = session_factory()
    try:
        _as(db, world["admin"])
        for contract, period, reading, cost in (
            (world["c1"], "2025-01", 100.0, 20.0),
            (world["c1"], "2025-02", 50.0, 10.0),
            (world["c2"], "2025-01", 300.0, 60.0),
        ):
            consumption.create_record(
                db,
                {
                    "contract_id": str(contract.id),
                    "consumption_type": "electricity",
                    "period": period,
                    "reading": reading,
                    "cost": cost,
                },
            )
        tickets.create_ticket(
            db,
            {
                "building_id": str(world["b1"].id),
                "contract_id": str(world["c1"].id),
                "title": "Radiator noise",
                "description": "Clanks at night",
                "priority": "urgent",
                "estimated_cost": 120.0,
            },
        )
        db.commit()
    finally:
        db.close()


def test_landlord_dashboard(db, session_factory, world):
    _seed_activity(session_factory, world)
    d = reporting.landlord_dashboard(_as(db, world["admin"]), today=date(2025, 6, 1))
    assert d.buildings == 1
    assert d.total_units == 4
    assert d.active_contracts == 2
    assert d.occupancy_rate == 50.0
    assert d.monthly_rent == pytest.approx(1800.0)
    assert d.tenants == 3
    assert d.tickets["urgent"] == 1
    assert [t["title"] for t in d.recent_tickets] == ["Radiator noise"]


def test_dashboard_follows_role(db, session_factory, world):
    _seed_activity(session_factory, world)
    out = reporting.dashboard_for_current_user(_as(db, world["t1"]))
    assert out["role"] == "tenant"
    dash = out["dashboard"]
    assert [c["contract_number"] for c in dash["contracts"]] == ["TB-2025-001"]
    assert dash["contracts"][0]["building_name"] == "Acme House"
    assert dash["open_tickets"] == 1
    assert dash["consumption"]["records"] == 2
    assert dash["consumption"]["total_cost"] == pytest.approx(30.0)


def test_building_overview_is_scoped(db, session_factory, world):
    _seed_activity(session_factory, world)
    admin_view = reporting.building_overview(_as(db, world["admin"]), world["b1"].id)
    assert admin_view["stats"]["total_contracts"] == 2
    assert admin_view["stats"]["occupancy_rate"] == 50
    assert [row["contract"].unit_number for row in admin_view["contracts"]] == ["A1", "A2"]
    assert [t["email"] for t in admin_view["contracts"][0]["tenants"]] == ["t1@acme.test"]
    ContextStore.clear(db)

    tenant_view = reporting.building_overview(_as(db, world["t2"]), world["b1"].id)
    assert tenant_view["stats"]["total_contracts"] == 1
    assert tenant_view["stats"]["open_tickets"] == 0
    assert [row["contract"].unit_number for row in tenant_view["contracts"]] == ["A2"]


def test_organization_analytics(db, session_factory, world):
    _seed_activity(session_factory, world)
    out = reporting.organization_analytics(_as(db, world["admin"]))
    assert sum(m["total"] for m in out["tickets_by_month"]) == 1
    assert sum(m["urgent"] for m in out["tickets_by_month"]) == 1
    assert [(r["period"], r["total_reading"]) for r in out["consumption_trends"]] == [
        ("2025-01", 400.0),
        ("2025-02", 50.0),
    ]
    (perf,) = out["building_performance"]
    assert perf["building_name"] == "Acme House"
    assert perf["active_contracts"] == 2
    assert perf["total_revenue"] == pytest.approx(1800.0)
    assert perf["open_tickets"] == 1


def test_organization_analytics_is_admin_only(db, world):
    with pytest.raises(AccessDenied):
        reporting.organization_analytics(_as(db, world["t1"]))


def test_contract_financials(db, session_factory, world):
    _seed_activity(session_factory, world)
    out = reporting.contract_financials(_as(db, world["t1"]), world["c1"].id)
    assert out["financial"]["monthly_rent"] == pytest.approx(900.0)
    assert out["financial"]["total_consumption_cost"] == pytest.approx(30.0)
    assert [m["period"] for m in out["monthly_breakdown"]] == ["2025-01", "2025-02"]
    assert out["ticket_costs"]["count"] == 1

    with pytest.raises(AccessDenied):
        reporting.contract_financials(db, world["c2"].id)


def test_consumption_summary_for_holder(db, session_factory, world):
    _seed_activity(session_factory, world)
    out = reporting.tenant_consumption_summary(_as(db, world["t2"]), start_period="2025-01", end_period="2025-01")
    assert out["summary"]["records"] == 1
    assert out["consumption"][0]["unit_number"] == "A2"
