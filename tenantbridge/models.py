# tenantbridge/models.py
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base, utcnow

# -----------------------------
# Vocabularies
# -----------------------------
ROLE_LANDLORD_ADMIN = "landlord_admin"
ROLE_TENANT = "tenant"
USER_ROLES = (ROLE_LANDLORD_ADMIN, ROLE_TENANT)
# Storage-only role for context-free units (signup, login, invitation lookup).
# Never assigned to a user row.
ROLE_BOOTSTRAP = "bootstrap"

PROPERTY_TYPES = ("apartment", "house", "commercial", "mixed")

TICKET_STATUSES = ("open", "in_progress", "waiting_for_tenant", "resolved", "closed")
TICKET_PRIORITIES = ("low", "medium", "high", "urgent")
TICKET_CATEGORIES = ("maintenance", "repair", "cleaning", "utilities", "security", "other")

CONSUMPTION_TYPES = ("electricity", "gas", "water", "heating", "internet", "other")
DOCUMENT_CATEGORIES = ("contract", "invoice", "receipt", "photo", "document", "other")

# No relationship() attributes on purpose: lazy loads would skip the row predicate.
# Related rows are always fetched through the scoped services.


def _pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


def _org_fk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid, ForeignKey("organizations.id"), index=True, nullable=False)


# -----------------------------
# Isolation root
# -----------------------------
class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = _pk()
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    slug: Mapped[str] = mapped_column(String(80), nullable=False, unique=True, index=True)

    contact_email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    contact_phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    country: Mapped[str] = mapped_column(String(80), nullable=False, default="Germany")

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = _pk()
    org_id: Mapped[uuid.UUID] = _org_fk()

    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=ROLE_TENANT)  # landlord_admin|tenant
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    email_verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


# -----------------------------
# Property tree
# -----------------------------
class Building(Base):
    __tablename__ = "buildings"

    id: Mapped[uuid.UUID] = _pk()
    org_id: Mapped[uuid.UUID] = _org_fk()

    name: Mapped[str] = mapped_column(String(160), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str] = mapped_column(String(120), nullable=False)
    postal_code: Mapped[str] = mapped_column(String(20), nullable=False)
    country: Mapped[str] = mapped_column(String(80), nullable=False, default="Germany")

    total_units: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    year_built: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    property_type: Mapped[str] = mapped_column(String(20), nullable=False, default="apartment")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Contract(Base):
    __tablename__ = "contracts"
    __table_args__ = (
        UniqueConstraint("org_id", "contract_number", name="uq_contracts_org_number"),
        Index("ix_contracts_building_unit", "building_id", "unit_number"),
    )

    id: Mapped[uuid.UUID] = _pk()
    org_id: Mapped[uuid.UUID] = _org_fk()
    building_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("buildings.id"), index=True, nullable=False)

    contract_number: Mapped[str] = mapped_column(String(40), nullable=False)
    unit_number: Mapped[str] = mapped_column(String(40), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    rent_amount: Mapped[float] = mapped_column(Float, nullable=False)
    deposit_amount: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    contract_file_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class TenantContract(Base):
    __tablename__ = "tenant_contracts"
    __table_args__ = (UniqueConstraint("contract_id", "tenant_id", name="uq_tenant_contracts_contract_tenant"),)

    id: Mapped[uuid.UUID] = _pk()
    org_id: Mapped[uuid.UUID] = _org_fk()
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), index=True, nullable=False)
    contract_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("contracts.id"), index=True, nullable=False)

    percentage: Mapped[float] = mapped_column(Float, nullable=False, default=100.0)
    is_main_tenant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


# -----------------------------
# Operations
# -----------------------------
class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (Index("ix_tickets_org_status", "org_id", "status"),)

    id: Mapped[uuid.UUID] = _pk()
    org_id: Mapped[uuid.UUID] = _org_fk()
    # Nullable so a removed building leaves its closed tickets behind as history.
    building_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("buildings.id", ondelete="SET NULL"), index=True, nullable=True
    )
    contract_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("contracts.id"), index=True, nullable=True)
    created_by_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), index=True, nullable=False)
    assigned_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="open")
    category: Mapped[str] = mapped_column(String(30), nullable=False, default="maintenance")

    estimated_cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    actual_cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class ConsumptionRecord(Base):
    __tablename__ = "consumption_records"
    __table_args__ = (
        UniqueConstraint("contract_id", "consumption_type", "period", name="uq_consumption_contract_type_period"),
        Index("ix_consumption_contract_period_type", "contract_id", "period", "consumption_type"),
    )

    id: Mapped[uuid.UUID] = _pk()
    org_id: Mapped[uuid.UUID] = _org_fk()
    contract_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("contracts.id"), nullable=False)

    consumption_type: Mapped[str] = mapped_column(String(20), nullable=False)
    period: Mapped[str] = mapped_column(String(7), nullable=False)  # YYYY-MM
    reading: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False, default="kWh")
    cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    meter_number: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    reading_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = _pk()
    org_id: Mapped[uuid.UUID] = _org_fk()
    building_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("buildings.id", ondelete="SET NULL"), index=True, nullable=True
    )
    contract_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("contracts.id"), index=True, nullable=True)
    ticket_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="SET NULL"), index=True, nullable=True
    )
    uploaded_by_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), index=True, nullable=False)

    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    original_file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    mime_type: Mapped[str] = mapped_column(String(120), nullable=False)
    file_url: Mapped[str] = mapped_column(String(500), nullable=False)

    category: Mapped[str] = mapped_column(String(20), nullable=False, default="document")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)


class InvitationToken(Base):
    __tablename__ = "invitation_tokens"

    id: Mapped[uuid.UUID] = _pk()
    org_id: Mapped[uuid.UUID] = _org_fk()
    contract_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("contracts.id"), index=True, nullable=False)

    token: Mapped[str] = mapped_column(String(80), nullable=False, unique=True, index=True)
    email: Mapped[str] = mapped_column(String(200), nullable=False)
    tenant_name: Mapped[str] = mapped_column(String(160), nullable=False)
    percentage: Mapped[float] = mapped_column(Float, nullable=False, default=100.0)
    is_main_tenant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_by_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


ORG_SCOPED_MODELS = (
    User,
    Building,
    Contract,
    TenantContract,
    Ticket,
    ConsumptionRecord,
    Document,
    InvitationToken,
)
