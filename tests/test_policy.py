# tests/test_policy.py
from __future__ import annotations

import uuid

from sqlalchemy import select

from conftest import ctx_for
from tenantbridge.context import RequestContext
from tenantbridge.models import (
    ORG_SCOPED_MODELS,
    Building,
    Contract,
    Document,
    InvitationToken,
    Organization,
    Ticket,
    User,
)
from tenantbridge.policy import (
    RLS_MODELS,
    TENANT_RULES,
    can_create,
    rls_drop_statements,
    rls_policy_sql,
    rls_statements,
    scoped,
    visibility_predicate,
    writable_fields,
)


def _ids(db, model, ctx):
    return {row.id for row in db.scalars(scoped(model, ctx))}


def test_admin_sees_whole_org_and_nothing_else(db, world):
    ctx = ctx_for(world["admin"])
    assert _ids(db, Contract, ctx) == {world["c1"].id, world["c2"].id}
    assert world["bb"].id not in _ids(db, Building, ctx)


def test_tenant_sees_only_linked_contracts(db, world):
    assert _ids(db, Contract, ctx_for(world["t1"])) == {world["c1"].id}
    assert _ids(db, Contract, ctx_for(world["t2"])) == {world["c2"].id}


def test_tenant_never_sees_invitations(db, world):
    stmt = select(InvitationToken.id).where(visibility_predicate(InvitationToken, ctx_for(world["t1"])))
    assert db.scalars(stmt).all() == []


def test_unknown_role_gets_false_predicate(db, world):
    weird = RequestContext(org_id=world["acme"].id, user_id=world["admin"].id, role="auditor")
    assert db.scalars(select(User.id).where(visibility_predicate(User, weird))).all() == []
    assert db.scalars(select(User.id).where(visibility_predicate(User, None))).all() == []


def test_tenant_patch_is_filtered_to_description():
    ctx = RequestContext(org_id=uuid.uuid4(), user_id=uuid.uuid4(), role="tenant")
    patch = {"description": "leaks again", "status": "closed", "priority": "urgent", "org_id": "x"}
    assert writable_fields(Ticket, ctx, patch) == {"description": "leaks again"}
    assert writable_fields(Contract, ctx, {"rent_amount": 1}) == {}


def test_admin_patch_drops_identity_columns():
    ctx = RequestContext(org_id=uuid.uuid4(), user_id=uuid.uuid4(), role="landlord_admin")
    out = writable_fields(Ticket, ctx, {"id": "x", "org_id": "y", "created_by_id": "z", "title": "t"})
    assert out == {"title": "t"}


def test_creatable_models_per_role():
    tenant = RequestContext(org_id=uuid.uuid4(), user_id=uuid.uuid4(), role="tenant")
    admin = RequestContext(org_id=uuid.uuid4(), user_id=uuid.uuid4(), role="landlord_admin")
    assert can_create(Ticket, tenant)
    assert can_create(Document, tenant)
    assert not can_create(Contract, tenant)
    assert can_create(Contract, admin)
    assert not can_create(Ticket, None)


def test_rls_sql_uses_session_functions():
    stmts = rls_policy_sql(Contract)
    assert stmts[0] == "ALTER TABLE contracts ENABLE ROW LEVEL SECURITY"
    create = stmts[-1]
    assert create.startswith("CREATE POLICY tb_contracts_visibility ON contracts USING (")
    assert "current_organization_id()" in create
    assert "current_user_id()" in create
    assert "current_user_role()" in create
    assert "tenant_contracts" in create
    check = create.split(" WITH CHECK ")[1]
    assert "current_user_role() = 'bootstrap'" in check
    assert "contracts.org_id = current_organization_id()" in check


def test_rls_covers_every_tenant_rule_table():
    creates = [s for s in rls_statements() if s.startswith("CREATE POLICY")]
    tables = {s.split(" ON ")[1].split(" ")[0] for s in creates}
    assert {"users", "buildings", "contracts", "tenant_contracts", "tickets", "documents"} <= tables
    assert "invitation_tokens" in tables


def test_every_org_scoped_model_has_a_rule_and_a_policy():
    assert set(RLS_MODELS) == {Organization, *ORG_SCOPED_MODELS}
    assert set(TENANT_RULES) == set(RLS_MODELS)

    creates = [s for s in rls_statements() if s.startswith("CREATE POLICY")]
    drops = [s for s in rls_drop_statements() if s.startswith("DROP POLICY")]
    assert len(creates) == len(drops) == len(RLS_MODELS)


def test_bootstrap_role_is_admitted_by_every_policy():
    for model in RLS_MODELS:
        create = rls_policy_sql(model)[-1]
        using, check = create.split(" USING (", 1)[1].split(" WITH CHECK ")
        assert "current_user_role() = 'bootstrap'" in using
        assert "current_user_role() = 'bootstrap'" in check
