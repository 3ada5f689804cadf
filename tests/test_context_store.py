# tests/test_context_store.py
from __future__ import annotations

import uuid

import pytest

from conftest import ctx_for
from tenantbridge.context import (
    ContextStore,
    RequestContext,
    current_context,
    is_bootstrap,
    require_context,
    session_vars,
)
from tenantbridge.errors import AccessDenied, ValidationFailed
from tenantbridge.models import Building
from tenantbridge.services import buildings
from tenantbridge.transactions import with_read_context, with_transaction


def test_set_and_clear_roundtrip(db, world):
    ctx = ctx_for(world["admin"])
    assert current_context(db) is None

    ContextStore.set(db, ctx)
    assert current_context(db) == ctx

    ContextStore.clear(db)
    assert current_context(db) is None


def test_set_twice_without_clear_is_rejected(db, world):
    ContextStore.set(db, ctx_for(world["admin"]))
    with pytest.raises(RuntimeError):
        ContextStore.set(db, ctx_for(world["t1"]))


def test_string_ids_are_normalised(db, world):
    admin = world["admin"]
    raw = RequestContext(org_id=str(admin.org_id), user_id=str(admin.id), role="landlord_admin")
    ctx = ContextStore.set(db, raw)
    assert ctx.org_id == admin.org_id
    assert isinstance(ctx.user_id, uuid.UUID)


@pytest.mark.parametrize(
    "org_id,user_id,role",
    [
        ("not-a-uuid", uuid.uuid4(), "tenant"),
        (uuid.uuid4(), uuid.uuid4(), "superuser"),
        (uuid.uuid4(), "", "tenant"),
    ],
)
def test_malformed_context_is_rejected(db, org_id, user_id, role):
    with pytest.raises(ValidationFailed):
        ContextStore.set(db, RequestContext(org_id=org_id, user_id=user_id, role=role))
    assert current_context(db) is None


def test_scoped_operation_without_context_sees_nothing(db, world):
    with pytest.raises(AccessDenied):
        require_context(db)
    with pytest.raises(AccessDenied):
        buildings.list_buildings(db)


def test_with_context_clears_on_success_and_failure(db, world):
    ctx = ctx_for(world["admin"])

    names = ContextStore.with_context(db, ctx, lambda s: [b.name for b in buildings.list_buildings(s)])
    assert names == ["Acme House"]
    assert current_context(db) is None

    def boom(s):
        raise KeyError("boom")

    with pytest.raises(KeyError):
        ContextStore.with_context(db, ctx, boom)
    assert current_context(db) is None


def test_new_rows_are_stamped_with_context_org(db, world):
    ctx = ContextStore.set(db, ctx_for(world["admin"]))
    b = Building(name="Stamped", address="x", city="Berlin", postal_code="1")
    db.add(b)
    db.flush()
    assert b.org_id == ctx.org_id


def test_row_for_another_org_is_refused_at_flush(db, world):
    ContextStore.set(db, ctx_for(world["admin"]))
    db.add(Building(org_id=world["beta"].id, name="Smuggled", address="x", city="Berlin", postal_code="1"))
    with pytest.raises(AccessDenied):
        db.flush()


def test_two_sessions_hold_independent_contexts(session_factory, world):
    a = session_factory()
    b = session_factory()
    try:
        ContextStore.set(a, ctx_for(world["admin"]))
        ContextStore.set(b, ctx_for(world["beta_admin"]))
        assert [x.name for x in buildings.list_buildings(a)] == ["Acme House"]
        assert [x.name for x in buildings.list_buildings(b)] == ["Beta Tower"]
    finally:
        a.close()
        b.close()


def test_session_vars_for_context_and_bootstrap(world):
    ctx = ctx_for(world["t1"])
    assert session_vars(ctx) == {"org_id": str(ctx.org_id), "user_id": str(ctx.user_id), "role": "tenant"}
    assert session_vars(None, bootstrap=True) == {"org_id": "", "user_id": "", "role": "bootstrap"}
    assert session_vars(None) == {"org_id": "", "user_id": "", "role": ""}
    # a bound context always wins over the bootstrap flag
    assert session_vars(ctx, bootstrap=True)["role"] == "tenant"


def test_only_context_free_units_run_as_bootstrap(session_factory, world):
    seen = with_transaction(lambda db: (is_bootstrap(db), current_context(db)), session_factory=session_factory)
    assert seen == (True, None)

    scoped_seen = with_read_context(
        ctx_for(world["admin"]), lambda db: is_bootstrap(db), session_factory=session_factory
    )
    assert scoped_seen is False
