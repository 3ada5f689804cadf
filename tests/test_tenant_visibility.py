# tests/test_tenant_visibility.py
from __future__ import annotations

import pytest

from conftest import ctx_for
from tenantbridge.context import ContextStore
from tenantbridge.errors import AccessDenied
from tenantbridge.models import ConsumptionRecord, Document, Ticket
from tenantbridge.services import consumption, contracts, documents, reporting, tickets


def _as(db, user):
    ContextStore.set(db, ctx_for(user))
    return db


def _seed_docs_and_readings(session_factory, world):
    db = session_factory()
    try:
        admin = world["admin"]
        db.add_all(
            [
                Document(
                    org_id=admin.org_id,
                    uploaded_by_id=admin.id,
                    file_name="house-rules.pdf",
                    original_file_name="House Rules.pdf",
                    mime_type="application/pdf",
                    file_url="/files/house-rules.pdf",
                    is_public=True,
                ),
                Document(
                    org_id=admin.org_id,
                    uploaded_by_id=admin.id,
                    contract_id=world["c2"].id,
                    file_name="c2-invoice.pdf",
                    original_file_name="Invoice.pdf",
                    mime_type="application/pdf",
                    file_url="/files/c2-invoice.pdf",
                    category="invoice",
                ),
                ConsumptionRecord(
                    org_id=admin.org_id,
                    contract_id=world["c1"].id,
                    consumption_type="electricity",
                    period="2025-01",
                    reading=120.0,
                    cost=36.0,
                ),
                ConsumptionRecord(
                    org_id=admin.org_id,
                    contract_id=world["c2"].id,
                    consumption_type="electricity",
                    period="2025-01",
                    reading=300.0,
                    cost=90.0,
                ),
            ]
        )
        db.commit()
    finally:
        db.close()


def test_tenant_sees_public_docs_and_own_contract_docs_only(db, session_factory, world):
    _seed_docs_and_readings(session_factory, world)

    _as(db, world["t1"])
    names = {d.file_name for d in documents.list_documents(db)}
    assert names == {"house-rules.pdf"}


def test_tenant_sees_only_consumption_of_held_contracts(db, session_factory, world):
    _seed_docs_and_readings(session_factory, world)

    _as(db, world["t1"])
    rows = consumption.list_records(db)
    assert [r.reading for r in rows] == [120.0]

    stats = consumption.get_analytics(db)
    assert stats["summary"]["records"] == 1
    assert stats["summary"]["total_reading"] == pytest.approx(120.0)


def test_tenant_summary_is_none_without_contract(db, world):
    _as(db, world["loner"])
    assert reporting.tenant_consumption_summary(db) is None
    assert contracts.list_for_tenant(db) == []


def test_tenant_cannot_read_neighbours_contract(db, world):
    _as(db, world["t1"])
    with pytest.raises(AccessDenied):
        contracts.must_get_contract(db, world["c2"].id)


def test_tenant_ticket_is_visible_to_admin_but_not_to_other_tenant(db, session_factory, world):
    _as(db, world["t1"])
    t = tickets.create_ticket(
        db,
        {
            "building_id": str(world["b1"].id),
            "contract_id": str(world["c1"].id),
            "title": "Heating broken",
            "description": "Radiator is cold",
            "assigned_to_id": str(world["admin"].id),
            "estimated_cost": 500,
        },
    )
    # tenants cannot assign or cost their own reports
    assert t.assigned_to_id is None
    assert t.estimated_cost is None
    db.commit()

    other = session_factory()
    admin = session_factory()
    try:
        _as(other, world["t2"])
        assert tickets.get_by_id(other, t.id) is None
        _as(admin, world["admin"])
        assert tickets.get_by_id(admin, t.id) is not None
    finally:
        other.close()
        admin.close()


def test_tenant_document_is_forced_private(db, world):
    _as(db, world["t1"])
    doc = documents.create_document(
        db,
        {
            "contract_id": str(world["c1"].id),
            "file_name": "meter.jpg",
            "original_file_name": "meter.jpg",
            "mime_type": "image/jpeg",
            "file_url": "/files/meter.jpg",
            "category": "photo",
            "is_public": True,
        },
    )
    assert doc.is_public is False
    assert doc.uploaded_by_id == world["t1"].id


def test_tenant_cannot_delete_someone_elses_document(db, session_factory, world):
    _seed_docs_and_readings(session_factory, world)
    _as(db, world["t1"])
    public = documents.list_documents(db)[0]
    with pytest.raises(AccessDenied):
        documents.delete(db, public.id)


def _seed_c1_activity(session_factory, world):
    db = session_factory()
    try:
        admin, t1, c1 = world["admin"], world["t1"], world["c1"]
        db.add_all(
            [
                Ticket(
                    org_id=admin.org_id,
                    building_id=world["b1"].id,
                    contract_id=c1.id,
                    created_by_id=t1.id,
                    title="Dripping tap",
                    description="Kitchen tap drips all night",
                ),
                ConsumptionRecord(
                    org_id=admin.org_id,
                    contract_id=c1.id,
                    consumption_type="electricity",
                    period="2025-03",
                    reading=140.0,
                    cost=42.0,
                ),
                Document(
                    org_id=admin.org_id,
                    uploaded_by_id=admin.id,
                    contract_id=c1.id,
                    file_name="c1-lease.pdf",
                    original_file_name="Lease.pdf",
                    mime_type="application/pdf",
                    file_url="/files/c1-lease.pdf",
                ),
                Document(
                    org_id=admin.org_id,
                    uploaded_by_id=admin.id,
                    file_name="waste-calendar.pdf",
                    original_file_name="Waste Calendar.pdf",
                    mime_type="application/pdf",
                    file_url="/files/waste-calendar.pdf",
                    is_public=True,
                ),
            ]
        )
        db.commit()
    finally:
        db.close()


def test_tenant_without_contracts_sees_no_contract_rows(db, session_factory, world):
    _seed_c1_activity(session_factory, world)

    holder = session_factory()
    try:
        _as(holder, world["t1"])
        assert [t.title for t in tickets.list_tickets(holder)] == ["Dripping tap"]
        assert [r.period for r in consumption.list_records(holder)] == ["2025-03"]
        assert "c1-lease.pdf" in {d.file_name for d in documents.list_documents(holder)}
        assert [c.id for c in contracts.list_contracts(holder)] == [world["c1"].id]
    finally:
        holder.close()

    _as(db, world["loner"])
    assert tickets.list_tickets(db) == []
    assert consumption.list_records(db) == []
    assert contracts.list_contracts(db) == []
    assert {d.file_name for d in documents.list_documents(db)} == {"waste-calendar.pdf"}
