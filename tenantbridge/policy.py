# tenantbridge/policy.py
"""
Row-visibility and write rules, one declarative entry per model.

Two independent questions are answered here:

- visibility_predicate(model, ctx): which rows may the caller read?
- writable_fields(model, ctx, patch): which columns may the caller change?

The read rule for a tenant is broad (everything tied to their contracts, plus
public documents); the write allow-list is narrow (ticket descriptions). They
are separate functions.

The same tenant rules render to Postgres CREATE POLICY statements, so the
storage-level policies and the application predicates come from one table.
"""
from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from sqlalchemy import Select, and_, false, func, literal, or_, select, true
from sqlalchemy.dialects import postgresql
from sqlalchemy.sql.elements import ColumnElement

from .context import RequestContext
from .models import (
    ORG_SCOPED_MODELS,
    ROLE_BOOTSTRAP,
    ROLE_LANDLORD_ADMIN,
    ROLE_TENANT,
    Building,
    ConsumptionRecord,
    Contract,
    Document,
    InvitationToken,
    Organization,
    TenantContract,
    Ticket,
    User,
)

Rule = Callable[[Any, Any], ColumnElement[bool]]


def tenant_contract_ids(org: Any, user: Any) -> Select:
    """
    Contract ids the user holds through a TenantContract link.

    Never correlated with the outer query. An empty link set makes
    `x IN (subquery)` false for every row.
    """
    return (
        select(TenantContract.contract_id)
        .where(TenantContract.tenant_id == user, TenantContract.org_id == org)
        .correlate(None)
    )


def _tickets_created_by(org: Any, user: Any) -> Select:
    return select(Ticket.id).where(Ticket.created_by_id == user, Ticket.org_id == org).correlate(None)


# tenant rule per model; AND-ed with the organization match
TENANT_RULES: dict[type, Rule] = {
    Organization: lambda org, user: true(),
    User: lambda org, user: true(),
    Building: lambda org, user: true(),
    Contract: lambda org, user: Contract.id.in_(tenant_contract_ids(org, user)),
    TenantContract: lambda org, user: TenantContract.tenant_id == user,
    Ticket: lambda org, user: or_(
        Ticket.created_by_id == user,
        Ticket.contract_id.in_(tenant_contract_ids(org, user)),
    ),
    ConsumptionRecord: lambda org, user: ConsumptionRecord.contract_id.in_(tenant_contract_ids(org, user)),
    Document: lambda org, user: or_(
        Document.is_public.is_(True),
        Document.uploaded_by_id == user,
        Document.contract_id.in_(tenant_contract_ids(org, user)),
        Document.ticket_id.in_(_tickets_created_by(org, user)),
    ),
    InvitationToken: lambda org, user: false(),
}

# tenant-side write scope: which existing rows a tenant may modify
TENANT_WRITE_RULES: dict[type, Rule] = {
    Ticket: lambda org, user: Ticket.created_by_id == user,
}

TENANT_WRITABLE_FIELDS: dict[type, frozenset[str]] = {
    Ticket: frozenset({"description"}),
}

TENANT_CREATABLE = frozenset({Ticket, Document})

NEVER_WRITABLE = frozenset({"id", "org_id", "created_at", "updated_at", "created_by_id", "uploaded_by_id"})


def _rule_for(model: type) -> Rule:
    try:
        return TENANT_RULES[model]
    except KeyError:
        raise LookupError(f"no visibility rule for {model.__name__}")


def org_match(model: type, org: Any) -> ColumnElement[bool]:
    if model is Organization:
        return Organization.id == org
    return model.org_id == org


def visibility_predicate(model: type, ctx: Optional[RequestContext]) -> ColumnElement[bool]:
    rule = _rule_for(model)
    if ctx is None:
        return false()
    if ctx.role == ROLE_LANDLORD_ADMIN:
        return org_match(model, ctx.org_id)
    if ctx.role == ROLE_TENANT:
        return and_(org_match(model, ctx.org_id), rule(ctx.org_id, ctx.user_id))
    return false()


def scoped(model: type, ctx: Optional[RequestContext]) -> Select:
    return select(model).where(visibility_predicate(model, ctx))


def write_predicate(model: type, ctx: Optional[RequestContext]) -> ColumnElement[bool]:
    _rule_for(model)
    if ctx is None:
        return false()
    if ctx.role == ROLE_LANDLORD_ADMIN:
        return org_match(model, ctx.org_id)
    if ctx.role == ROLE_TENANT and model in TENANT_WRITE_RULES:
        return and_(org_match(model, ctx.org_id), TENANT_WRITE_RULES[model](ctx.org_id, ctx.user_id))
    return false()


def can_create(model: type, ctx: Optional[RequestContext]) -> bool:
    if ctx is None or model is Organization:
        return False
    if ctx.role == ROLE_LANDLORD_ADMIN:
        return True
    if ctx.role == ROLE_TENANT:
        return model in TENANT_CREATABLE
    return False


def mutable_columns(model: type) -> frozenset[str]:
    return frozenset(c.key for c in model.__table__.columns if c.key not in NEVER_WRITABLE)


def writable_fields(model: type, ctx: Optional[RequestContext], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Keeps only the keys the caller may write. Everything else is dropped silently."""
    if ctx is None:
        return {}
    if ctx.role == ROLE_LANDLORD_ADMIN:
        allowed = mutable_columns(model)
    elif ctx.role == ROLE_TENANT:
        allowed = TENANT_WRITABLE_FIELDS.get(model, frozenset())
    else:
        allowed = frozenset()
    return {k: v for k, v in patch.items() if k in allowed}


# -----------------------------
# Storage-level policies (Postgres)
# -----------------------------
RLS_MODELS: tuple[type, ...] = (Organization, *ORG_SCOPED_MODELS)


def _is_bootstrap() -> ColumnElement[bool]:
    return func.current_user_role() == literal(ROLE_BOOTSTRAP)


def _storage_predicate(model: type) -> ColumnElement[bool]:
    org = func.current_organization_id()
    user = func.current_user_id()
    role = func.current_user_role()
    return or_(
        _is_bootstrap(),
        and_(
            org_match(model, org),
            or_(
                role == literal(ROLE_LANDLORD_ADMIN),
                and_(role == literal(ROLE_TENANT), _rule_for(model)(org, user)),
            ),
        ),
    )


def _compile_pg(expr: ColumnElement[bool]) -> str:
    return str(expr.compile(dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True}))


def rls_policy_sql(model: type) -> list[str]:
    table = model.__tablename__
    name = f"tb_{table}_visibility"
    using = _compile_pg(_storage_predicate(model))
    check = _compile_pg(or_(_is_bootstrap(), org_match(model, func.current_organization_id())))
    return [
        f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY",
        f"DROP POLICY IF EXISTS {name} ON {table}",
        f"CREATE POLICY {name} ON {table} USING ({using}) WITH CHECK ({check})",
    ]


def rls_statements() -> list[str]:
    out: list[str] = []
    for model in RLS_MODELS:
        out.extend(rls_policy_sql(model))
    return out


def rls_drop_statements() -> list[str]:
    out: list[str] = []
    for model in RLS_MODELS:
        table = model.__tablename__
        out.append(f"DROP POLICY IF EXISTS tb_{table}_visibility ON {table}")
        out.append(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")
    return out
