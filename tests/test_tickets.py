# tests/test_tickets.py
from __future__ import annotations

from datetime import date, datetime

import pytest

from conftest import ctx_for
from tenantbridge.context import ContextStore
from tenantbridge.errors import AccessDenied, Conflict, ValidationFailed
from tenantbridge.services import tickets


def _as(db, user):
    ContextStore.set(db, ctx_for(user))
    return db


def _open_ticket(session_factory, world, *, by="t1", **extra):
    db = session_factory()
    try:
        _as(db, world[by])
        t = tickets.create_ticket(
            db,
            {
                "building_id": str(world["b1"].id),
                "contract_id": str(world["c1"].id),
                "title": "Leaking tap",
                "description": "Kitchen tap drips",
                **extra,
            },
        )
        db.commit()
        return t
    finally:
        db.close()


def test_tenant_update_only_touches_description(db, session_factory, world):
    t = _open_ticket(session_factory, world)

    _as(db, world["t1"])
    out = tickets.update(db, t.id, {"description": "Now it floods", "status": "closed", "priority": "urgent"})
    assert out is not None
    assert out.description == "Now it floods"
    assert out.status == "open"
    assert out.priority == "medium"


def test_tenant_cannot_update_ticket_they_did_not_create(db, session_factory, world):
    # admin-created ticket on t1's contract: visible to t1, but not writable
    t = _open_ticket(session_factory, world, by="admin")

    _as(db, world["t1"])
    assert tickets.get_by_id(db, t.id) is not None
    assert tickets.update(db, t.id, {"description": "mine now"}) is None


def test_admin_lifecycle_sets_resolved_at_once(db, session_factory, world):
    t = _open_ticket(session_factory, world)
    _as(db, world["admin"])

    first = datetime(2025, 3, 1, 12, 0, 0)
    tickets.change_status(db, t.id, "in_progress")
    tickets.change_status(db, t.id, "resolved", resolved_at=first)
    again = tickets.change_status(db, t.id, "resolved", resolved_at=datetime(2025, 4, 1))
    assert again.resolved_at == first

    closed = tickets.change_status(db, t.id, "closed")
    assert closed.status == "closed"
    assert closed.resolved_at == first


def test_reopen_clears_resolved_at(db, session_factory, world):
    t = _open_ticket(session_factory, world)
    _as(db, world["admin"])
    tickets.change_status(db, t.id, "resolved")

    reopened = tickets.reopen(db, t.id)
    assert reopened.status == "open"
    assert reopened.resolved_at is None

    with pytest.raises(Conflict):
        tickets.reopen(db, t.id)


def test_illegal_transition_is_conflict(db, session_factory, world):
    t = _open_ticket(session_factory, world)
    _as(db, world["admin"])
    with pytest.raises(Conflict):
        tickets.change_status(db, t.id, "waiting_for_tenant")


def test_unknown_status_is_validation_error(db, session_factory, world):
    t = _open_ticket(session_factory, world)
    _as(db, world["admin"])
    with pytest.raises(ValidationFailed):
        tickets.change_status(db, t.id, "done")


def test_tenant_cannot_change_status(db, session_factory, world):
    t = _open_ticket(session_factory, world)
    _as(db, world["t1"])
    with pytest.raises(AccessDenied):
        tickets.change_status(db, t.id, "closed")


def test_assign_moves_open_ticket_into_progress(db, session_factory, world):
    t = _open_ticket(session_factory, world)
    _as(db, world["admin"])

    out = tickets.assign(db, t.id, world["admin"].id)
    assert out.status == "in_progress"
    assert out.assigned_to_id == world["admin"].id

    back = tickets.assign(db, t.id, None)
    assert back.status == "open"
    assert back.assigned_to_id is None


def test_assign_to_tenant_is_rejected(db, session_factory, world):
    t = _open_ticket(session_factory, world)
    _as(db, world["admin"])
    with pytest.raises(ValidationFailed):
        tickets.assign(db, t.id, world["t2"].id)


def test_stats_follow_visibility(db, session_factory, world):
    _open_ticket(session_factory, world, priority="urgent", due_date="2020-01-01")
    _open_ticket(session_factory, world, by="admin", priority="high")

    _as(db, world["admin"])
    stats = tickets.get_stats(db, today=date(2025, 6, 1))
    assert stats["total"] == 2
    assert stats["open"] == 2
    assert stats["urgent"] == 1
    assert stats["high"] == 1
    assert stats["overdue"] == 1

    other = session_factory()
    try:
        _as(other, world["t2"])
        assert tickets.get_stats(other)["total"] == 0
    finally:
        other.close()


def test_filters_and_paging(db, session_factory, world):
    for i in range(3):
        _open_ticket(session_factory, world, title=f"Ticket {i}")

    _as(db, world["admin"])
    assert len(tickets.list_tickets(db, {"limit": 2})) == 2
    assert len(tickets.list_tickets(db, {"limit": 2, "offset": 2})) == 1
    assert [t.title for t in tickets.search(db, "Ticket 1")] == ["Ticket 1"]
    assert tickets.list_tickets(db, {"status": "closed"}) == []
