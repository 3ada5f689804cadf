# tenantbridge/transactions.py
"""
Units of work.

Every externally triggered operation runs inside one of these wrappers:
the session is opened, the request context is bound to it, the callable
runs, and the transaction commits or rolls back as a whole. Typed errors
propagate unchanged after the rollback; driver errors are translated.
"""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import date
from typing import Any, Callable, Iterable, Iterator, Mapping, Optional, TypeVar

from sqlalchemy import func, select, update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased, sessionmaker

from .config import settings
from .context import ContextStore, RequestContext, mark_bootstrap
from .db import SessionLocal, utcnow
from .errors import (
    Conflict,
    TenantBridgeError,
    ValidationFailed,
    retry_read,
    translate_storage_error,
)
from .models import (
    ROLE_LANDLORD_ADMIN,
    ROLE_TENANT,
    Building,
    ConsumptionRecord,
    Contract,
    Document,
    TenantContract,
    Ticket,
    User,
)
from .schemas import parse_uuid
from .services import buildings as building_svc
from .services import consumption as consumption_svc
from .services import contracts as contract_svc
from .services import invitations as invitation_svc
from .services import tickets as ticket_svc
from .services import users as user_svc
from .services.ownership import apply_patch, lock_row, must_get, require_admin

log = logging.getLogger("tenantbridge.tx")

T = TypeVar("T")


def _op_name(fn: Callable, operation: Optional[str]) -> str:
    return operation or getattr(fn, "__name__", None) or "unit_of_work"


def _run(
    fn: Callable[[Session], T],
    *,
    ctx: Optional[RequestContext],
    session_factory: Optional[sessionmaker],
    operation: Optional[str],
    read_only: bool = False,
) -> T:
    factory = session_factory or SessionLocal
    op = _op_name(fn, operation)
    extra: dict[str, Any] = {"operation": op}
    if ctx is not None:
        extra.update({"org_id": str(ctx.org_id), "user_id": str(ctx.user_id), "role": ctx.role})

    t0 = time.perf_counter()
    db = factory()
    ok = False
    try:
        if ctx is not None:
            ContextStore.set(db, ctx)
        else:
            mark_bootstrap(db)
        result = fn(db)
        if read_only:
            # detach first so the rollback does not expire what fn returned
            db.expunge_all()
            db.rollback()
        else:
            db.flush()
            db.commit()
        ok = True
        return result
    except TenantBridgeError as e:
        db.rollback()
        log.info("unit of work rejected: %s", e.message, extra={**extra, "error_kind": e.kind})
        raise
    except SQLAlchemyError as e:
        db.rollback()
        translated = translate_storage_error(e)
        log.exception("unit of work failed", extra={**extra, "error_kind": translated.kind})
        raise translated from e
    except BaseException:
        db.rollback()
        log.exception("unit of work crashed", extra=extra)
        raise
    finally:
        # The transaction already ended; nothing left to reset in storage.
        ContextStore.clear(db, reset_storage=False)
        db.close()
        duration_ms = int((time.perf_counter() - t0) * 1000)
        log.info(
            "unit of work %s",
            "committed" if ok and not read_only else ("read" if ok else "rolled back"),
            extra={**extra, "duration_ms": duration_ms},
        )


def with_transaction(
    fn: Callable[[Session], T],
    *,
    session_factory: Optional[sessionmaker] = None,
    operation: Optional[str] = None,
) -> T:
    """No context: bootstrap flows only (organization signup, invitation lookup)."""
    return _run(fn, ctx=None, session_factory=session_factory, operation=operation)


def with_transaction_and_context(
    ctx: RequestContext,
    fn: Callable[[Session], T],
    *,
    session_factory: Optional[sessionmaker] = None,
    operation: Optional[str] = None,
) -> T:
    return _run(fn, ctx=ctx, session_factory=session_factory, operation=operation)


def with_read_context(
    ctx: RequestContext,
    fn: Callable[[Session], T],
    *,
    session_factory: Optional[sessionmaker] = None,
    operation: Optional[str] = None,
) -> T:
    """Read-only unit of work; always rolled back, retried on transient storage errors."""

    def _attempt() -> T:
        return _run(fn, ctx=ctx, session_factory=session_factory, operation=operation, read_only=True)

    _attempt.__name__ = _op_name(fn, operation)
    return retry_read(_attempt)


@contextmanager
def scoped_session(
    ctx: RequestContext,
    *,
    session_factory: Optional[sessionmaker] = None,
) -> Iterator[Session]:
    factory = session_factory or SessionLocal
    db = factory()
    try:
        ContextStore.set(db, ctx)
        yield db
        db.flush()
        db.commit()
    except TenantBridgeError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        log.exception("scoped session failed", extra={"operation": "scoped_session", **ctx.log_extra()})
        raise translate_storage_error(e) from e
    except BaseException:
        db.rollback()
        raise
    finally:
        ContextStore.clear(db, reset_storage=False)
        db.close()


# -----------------------------------------------------------------------------
# Composite units
# -----------------------------------------------------------------------------
def _onboard(
    db: Session,
    *,
    contract_id: Any,
    email: str,
    name: str,
    percentage: float,
    is_main_tenant: bool,
) -> dict[str, Any]:
    user = user_svc.create_user(db, {"email": email, "name": name, "role": ROLE_TENANT})
    link = contract_svc.add_tenant(
        db,
        contract_id,
        {"tenant_id": user.id, "percentage": percentage, "is_main_tenant": is_main_tenant},
    )
    return {"tenant": user, "link": link}


def onboard_tenant(
    ctx: RequestContext,
    *,
    contract_id: Any,
    email: str,
    name: str,
    percentage: float = 100.0,
    is_main_tenant: bool = False,
    session_factory: Optional[sessionmaker] = None,
) -> dict[str, Any]:
    """Creates the tenant user and links it to the contract, as one unit."""

    def _fn(db: Session) -> dict[str, Any]:
        require_admin(db)
        return _onboard(
            db,
            contract_id=contract_id,
            email=email,
            name=name,
            percentage=percentage,
            is_main_tenant=is_main_tenant,
        )

    return with_transaction_and_context(ctx, _fn, session_factory=session_factory, operation="onboard_tenant")


def accept_invitation(
    token: str,
    *,
    name: Optional[str] = None,
    session_factory: Optional[sessionmaker] = None,
) -> dict[str, Any]:
    """
    Redeems an invitation: tenant user, contract link and used-marker in one
    transaction. The invitee has no context yet, so the token is resolved
    unscoped and the rest runs as the admin who issued it.
    """

    def _fn(db: Session) -> dict[str, Any]:
        inv = invitation_svc.resolve_token(db, token)
        issuer = db.scalar(select(User).where(User.id == inv.created_by_id, User.org_id == inv.org_id))
        if issuer is None or not issuer.is_active or issuer.role != ROLE_LANDLORD_ADMIN:
            raise Conflict("the inviting admin is no longer active", entity="InvitationToken")

        ctx = RequestContext(org_id=inv.org_id, user_id=issuer.id, role=ROLE_LANDLORD_ADMIN)

        def _redeem(scoped_db: Session) -> dict[str, Any]:
            out = _onboard(
                scoped_db,
                contract_id=inv.contract_id,
                email=inv.email,
                name=name or inv.tenant_name,
                percentage=inv.percentage,
                is_main_tenant=inv.is_main_tenant,
            )
            invitation_svc.mark_used(scoped_db, inv)
            out["invitation"] = inv
            return out

        return ContextStore.with_context(db, ctx, _redeem)

    return with_transaction(_fn, session_factory=session_factory, operation="accept_invitation")


def terminate_contract(
    ctx: RequestContext,
    contract_id: Any,
    *,
    end_date: Optional[date] = None,
    reason: Optional[str] = None,
    session_factory: Optional[sessionmaker] = None,
) -> dict[str, Any]:
    """Deactivates the contract, closes its open tickets, optionally files a private note."""

    def _fn(db: Session) -> dict[str, Any]:
        admin = require_admin(db)
        c = must_get(db, Contract, contract_id)
        if not c.is_active:
            raise Conflict("contract already terminated", entity="Contract")

        end = end_date or utcnow().date()
        if end < c.start_date:
            raise ValidationFailed("end_date must not be before start_date")

        lock_row(db, Contract, c.id)
        apply_patch(c, {"is_active": False, "end_date": end})
        closed = ticket_svc.close_open_for_contract(db, c.id)

        note = None
        if reason:
            note = Document(
                org_id=admin.org_id,
                contract_id=c.id,
                uploaded_by_id=admin.user_id,
                file_name=f"contract_termination_{c.contract_number}.txt",
                original_file_name="Contract Termination Notice.txt",
                file_size=len(reason.encode("utf-8")),
                mime_type="text/plain",
                file_url="#",
                category="document",
                description=f"Contract termination reason: {reason}",
                is_public=False,
            )
            db.add(note)
        db.flush()
        return {"contract": c, "tickets_closed": closed, "note": note}

    return with_transaction_and_context(ctx, _fn, session_factory=session_factory, operation="terminate_contract")


def delete_building_with_cleanup(
    ctx: RequestContext,
    building_id: Any,
    *,
    session_factory: Optional[sessionmaker] = None,
) -> dict[str, Any]:
    return with_transaction_and_context(
        ctx,
        lambda db: building_svc.delete(db, building_id),
        session_factory=session_factory,
        operation="delete_building_with_cleanup",
    )


def remove_tenant_from_system(
    ctx: RequestContext,
    tenant_id: Any,
    *,
    reassign_tickets_to: Any = None,
    close_tickets: bool = True,
    session_factory: Optional[sessionmaker] = None,
) -> dict[str, Any]:
    """Unlinks the tenant everywhere, hands over or closes their tickets, deactivates the user."""

    def _fn(db: Session) -> dict[str, Any]:
        admin = require_admin(db)
        tenant = must_get(db, User, tenant_id)
        if tenant.role != ROLE_TENANT:
            raise ValidationFailed("user is not a tenant")

        links = db.scalars(
            select(TenantContract).where(
                TenantContract.tenant_id == tenant.id,
                TenantContract.org_id == admin.org_id,
            )
        ).all()
        for link in links:
            db.delete(link)

        now = utcnow()
        reassigned = closed = 0
        if reassign_tickets_to is not None:
            target = must_get(db, User, parse_uuid(reassign_tickets_to, "reassign_tickets_to"))
            if not target.is_active:
                raise ValidationFailed("tickets can only be handed to an active user")
            res = db.execute(
                sa_update(Ticket)
                .where(Ticket.created_by_id == tenant.id, Ticket.org_id == admin.org_id)
                .values(created_by_id=target.id, updated_at=now)
                .execution_options(synchronize_session="fetch")
            )
            reassigned = int(res.rowcount or 0)
        elif close_tickets:
            res = db.execute(
                sa_update(Ticket)
                .where(
                    Ticket.created_by_id == tenant.id,
                    Ticket.org_id == admin.org_id,
                    Ticket.status.in_(ticket_svc.OPEN_STATUSES),
                )
                .values(status="closed", resolved_at=func.coalesce(Ticket.resolved_at, now), updated_at=now)
                .execution_options(synchronize_session="fetch")
            )
            closed = int(res.rowcount or 0)

        apply_patch(tenant, {"is_active": False})
        db.flush()
        return {
            "tenant": tenant,
            "links_removed": len(links),
            "tickets_reassigned": reassigned,
            "tickets_closed": closed,
        }

    return with_transaction_and_context(
        ctx, _fn, session_factory=session_factory, operation="remove_tenant_from_system"
    )


def bulk_upsert_consumption(
    ctx: RequestContext,
    records: Iterable[Mapping[str, Any]],
    *,
    session_factory: Optional[sessionmaker] = None,
) -> list[dict[str, Any]]:
    """Natural-key upsert of many readings; all or nothing."""
    rows = list(records)
    if not rows:
        raise ValidationFailed("no records given")
    if len(rows) > settings.bulk_consumption_max_rows:
        raise ValidationFailed(f"at most {settings.bulk_consumption_max_rows} records per call")

    def _fn(db: Session) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for i, data in enumerate(rows):
            try:
                rec, created = consumption_svc.upsert_record(db, data)
            except ValidationFailed as e:
                raise ValidationFailed(f"record {i}: {e.message}")
            out.append({"id": str(rec.id), "action": "created" if created else "updated", "record": rec})
        return out

    return with_transaction_and_context(ctx, _fn, session_factory=session_factory, operation="bulk_upsert_consumption")


# -----------------------------------------------------------------------------
# Integrity validator
# -----------------------------------------------------------------------------
def _count(db: Session, stmt) -> int:
    return int(db.scalar(stmt) or 0)


def _integrity_counts(db: Session) -> dict[str, int]:
    ctx = require_admin(db)
    org = ctx.org_id

    P = aliased(Building)
    C = aliased(Contract)
    U = aliased(User)
    Tk = aliased(Ticket)

    counts: dict[str, int] = {}

    counts["contracts_without_building"] = _count(
        db,
        select(func.count(Contract.id))
        .select_from(Contract)
        .outerjoin(P, P.id == Contract.building_id)
        .where(Contract.org_id == org, P.id.is_(None)),
    )
    counts["open_tickets_without_building"] = _count(
        db,
        select(func.count(Ticket.id)).where(
            Ticket.org_id == org,
            Ticket.building_id.is_(None),
            Ticket.status.in_(ticket_svc.OPEN_STATUSES),
        ),
    )
    counts["links_with_inactive_tenant"] = _count(
        db,
        select(func.count(TenantContract.id))
        .join(U, U.id == TenantContract.tenant_id)
        .where(TenantContract.org_id == org, U.is_active.is_(False)),
    )
    counts["consumption_on_inactive_contract"] = _count(
        db,
        select(func.count(ConsumptionRecord.id))
        .join(C, C.id == ConsumptionRecord.contract_id)
        .where(ConsumptionRecord.org_id == org, C.is_active.is_(False)),
    )

    over = (
        select(TenantContract.contract_id)
        .where(TenantContract.org_id == org)
        .group_by(TenantContract.contract_id)
        .having(func.sum(TenantContract.percentage) > 100.0 + contract_svc.PERCENT_EPSILON)
        .subquery()
    )
    counts["contracts_over_100_percent"] = _count(db, select(func.count()).select_from(over))

    active = (
        select(Contract.building_id.label("building_id"), func.count(Contract.id).label("n"))
        .where(Contract.org_id == org, Contract.is_active.is_(True))
        .group_by(Contract.building_id)
        .subquery()
    )
    counts["buildings_over_capacity"] = _count(
        db,
        select(func.count(Building.id))
        .join(active, active.c.building_id == Building.id)
        .where(Building.org_id == org, active.c.n > Building.total_units),
    )

    # rows of this organization pointing at another organization's parents
    cross = 0
    cross += _count(
        db,
        select(func.count(Contract.id))
        .join(P, P.id == Contract.building_id)
        .where(Contract.org_id == org, P.org_id != org),
    )
    cross += _count(
        db,
        select(func.count(TenantContract.id))
        .join(U, U.id == TenantContract.tenant_id)
        .join(C, C.id == TenantContract.contract_id)
        .where(TenantContract.org_id == org, (U.org_id != org) | (C.org_id != org)),
    )
    cross += _count(
        db,
        select(func.count(Ticket.id))
        .select_from(Ticket)
        .outerjoin(P, P.id == Ticket.building_id)
        .outerjoin(C, C.id == Ticket.contract_id)
        .join(U, U.id == Ticket.created_by_id)
        .where(Ticket.org_id == org, (P.org_id != org) | (C.org_id != org) | (U.org_id != org)),
    )
    cross += _count(
        db,
        select(func.count(ConsumptionRecord.id))
        .join(C, C.id == ConsumptionRecord.contract_id)
        .where(ConsumptionRecord.org_id == org, C.org_id != org),
    )
    cross += _count(
        db,
        select(func.count(Document.id))
        .select_from(Document)
        .outerjoin(P, P.id == Document.building_id)
        .outerjoin(C, C.id == Document.contract_id)
        .outerjoin(Tk, Tk.id == Document.ticket_id)
        .join(U, U.id == Document.uploaded_by_id)
        .where(
            Document.org_id == org,
            (P.org_id != org) | (C.org_id != org) | (Tk.org_id != org) | (U.org_id != org),
        ),
    )
    counts["cross_organization_references"] = cross
    return counts


_ISSUE_TEXT = {
    "contracts_without_building": "{n} contracts without valid buildings",
    "open_tickets_without_building": "{n} open tickets without a building",
    "links_with_inactive_tenant": "{n} tenant contracts with inactive users",
    "consumption_on_inactive_contract": "{n} consumption records for inactive contracts",
    "contracts_over_100_percent": "{n} contracts whose tenant shares exceed 100%",
    "buildings_over_capacity": "{n} buildings with more active contracts than units",
    "cross_organization_references": "{n} rows referencing another organization",
}


def validate_data_integrity(
    ctx: RequestContext,
    *,
    session_factory: Optional[sessionmaker] = None,
) -> dict[str, Any]:
    counts = with_read_context(ctx, _integrity_counts, session_factory=session_factory, operation="validate_data_integrity")
    issues = [_ISSUE_TEXT[k].format(n=n) for k, n in counts.items() if n > 0]
    if counts.get("cross_organization_references"):
        log.error(
            "cross-organization references found",
            extra={"operation": "validate_data_integrity", **ctx.log_extra()},
        )
    return {"is_valid": not issues, "issues": issues, "counts": counts}
