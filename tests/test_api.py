# tests/test_api.py
from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient

from conftest import _mk_contract
from tenantbridge.db import get_session_factory
from tenantbridge.main import create_app


@pytest.fixture
def client(session_factory, world):
    app = create_app()
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    with TestClient(app) as c:
        yield c


def _h(org: str, email: str) -> dict[str, str]:
    return {"X-Org-Slug": org, "X-User-Email": email}


ADMIN = _h("acme", "admin@acme.test")
T1 = _h("acme", "t1@acme.test")
BETA = _h("beta", "admin@beta.test")


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.headers.get("X-Request-ID")

    assert client.get("/api/health/db").json() == {"ok": True}


@pytest.mark.parametrize(
    "headers,status",
    [
        ({}, 401),
        (_h("acme", ""), 401),
        (_h("nowhere", "admin@acme.test"), 401),
        (_h("beta", "admin@acme.test"), 401),
    ],
)
def test_principal_is_required(client, headers, status):
    assert client.get("/api/buildings", headers=headers).status_code == status


def test_headers_are_case_insensitive(client):
    r = client.get("/api/organizations/me", headers=_h("ACME", "Admin@Acme.test"))
    assert r.status_code == 200
    assert r.json()["slug"] == "acme"


def test_lists_are_scoped_to_the_caller(client):
    acme = client.get("/api/buildings", headers=ADMIN).json()
    beta = client.get("/api/buildings", headers=BETA).json()
    assert [b["name"] for b in acme] == ["Acme House"]
    assert [b["name"] for b in beta] == ["Beta Tower"]


def test_foreign_and_missing_rows_answer_alike(client, world):
    foreign = client.get(f"/api/contracts/{world['cb'].id}", headers=ADMIN)
    missing = client.get(f"/api/contracts/{uuid.uuid4()}", headers=ADMIN)
    assert foreign.status_code == missing.status_code == 404
    assert foreign.json() == missing.json()
    assert foreign.json()["kind"] == "not_found"


def test_ticket_round_trip(client, world):
    r = client.post(
        "/api/tickets",
        headers=T1,
        json={
            "building_id": str(world["b1"].id),
            "contract_id": str(world["c1"].id),
            "title": "Window stuck",
            "description": "Bedroom window will not open",
            "estimated_cost": 500,
            "org_id": str(world["beta"].id),
        },
    )
    assert r.status_code == 200, r.text
    ticket = r.json()
    assert ticket["status"] == "open"
    assert ticket["estimated_cost"] is None
    assert ticket["org_id"] == str(world["acme"].id)

    r = client.get(f"/api/tickets/{ticket['id']}", headers=T1)
    assert r.status_code == 200
    again = r.json()
    assert again["id"] == ticket["id"]
    assert again["title"] == "Window stuck"
    assert again["description"] == "Bedroom window will not open"
    assert again["priority"] == "medium"
    assert again["category"] == "maintenance"
    assert again["status"] == "open"
    assert again["created_by_id"] == str(world["t1"].id)
    assert again["building_id"] == str(world["b1"].id)
    assert again["contract_id"] == str(world["c1"].id)

    assert client.get(f"/api/tickets/{ticket['id']}", headers=BETA).status_code == 404

    r = client.post(f"/api/tickets/{ticket['id']}/status", headers=ADMIN, json={"status": "in_progress"})
    assert r.status_code == 200
    assert r.json()["status"] == "in_progress"

    r = client.post(f"/api/tickets/{ticket['id']}/status", headers=T1, json={"status": "closed"})
    assert r.status_code == 404

    r = client.post(f"/api/tickets/{ticket['id']}/status", headers=ADMIN, json={"status": "bogus"})
    assert r.status_code == 422

    mine = client.get("/api/tickets", headers=T1).json()
    assert [t["id"] for t in mine] == [ticket["id"]]


def test_validation_and_conflict_shapes(client, world):
    r = client.post(
        "/api/contracts",
        headers=ADMIN,
        json={
            "building_id": str(world["b1"].id),
            "unit_number": "A1",
            "start_date": "2025-03-01",
            "rent_amount": 700,
        },
    )
    assert r.status_code == 409
    assert r.json()["kind"] == "conflict"

    r = client.post(
        "/api/consumption",
        headers=ADMIN,
        json={"contract_id": str(world["c1"].id), "consumption_type": "electricity", "period": "2999-01", "reading": 1},
    )
    assert r.status_code == 422


def test_tenant_cannot_create_buildings(client):
    r = client.post(
        "/api/buildings",
        headers=T1,
        json={"name": "Shed", "address": "Yard 1", "city": "Berlin", "postal_code": "10115", "total_units": 1},
    )
    assert r.status_code == 404
    assert r.json()["message"] == "not found or not permitted"


def test_integrity_endpoint(client):
    r = client.get("/api/integrity", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["is_valid"] is True


def test_invitation_lookup_by_token(client, session_factory, world):
    c3 = _mk_contract(session_factory, world["acme"], world["b1"], "A3", number="TB-2025-003")
    r = client.post(
        "/api/invitations",
        headers=ADMIN,
        json={"contract_id": str(c3.id), "email": "new@acme.test", "tenant_name": "New Tenant"},
    )
    assert r.status_code == 200, r.text
    token = r.json()["url"].rsplit("/", 1)[1]

    r = client.get(f"/api/invitations/by-token/{token}", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["email"] == "new@acme.test"
    assert r.json()["contract_id"] == str(c3.id)

    assert client.get(f"/api/invitations/by-token/{token}", headers=BETA).status_code == 404
    assert client.get(f"/api/invitations/by-token/{token}", headers=T1).status_code == 404

    assert client.post("/api/invitations/accept", json={"token": token}).status_code == 200
    assert client.get(f"/api/invitations/by-token/{token}", headers=ADMIN).status_code == 404
