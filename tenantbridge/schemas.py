# tenantbridge/schemas.py
from __future__ import annotations

import re
import uuid
from datetime import date, datetime
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .db import Base, utcnow
from .errors import ValidationFailed
from .models import (
    CONSUMPTION_TYPES,
    DOCUMENT_CATEGORIES,
    PROPERTY_TYPES,
    TICKET_CATEGORIES,
    TICKET_PRIORITIES,
    TICKET_STATUSES,
    USER_ROLES,
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

M = TypeVar("M", bound=BaseModel)

SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
PERIOD_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def parse(model: Type[M], data: Any) -> M:
    """Validate raw input into a schema; rejects before any query is issued."""
    if isinstance(data, model):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return model.model_validate(data or {})
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        where = ".".join(str(p) for p in first.get("loc", ()))
        msg = first.get("msg", "invalid input")
        raise ValidationFailed(f"{where}: {msg}" if where else msg)


def parse_uuid(value: Any, field: str = "id") -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationFailed(f"{field} must be a UUID")


def current_period() -> str:
    return utcnow().strftime("%Y-%m")


def _check_choice(value: Optional[str], choices: tuple[str, ...], field: str) -> Optional[str]:
    if value is None:
        return value
    if value not in choices:
        raise ValueError(f"{field} must be one of {', '.join(choices)}")
    return value


def _check_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    v = value.strip().lower()
    if not EMAIL_RE.match(v):
        raise ValueError("invalid email address")
    return v


def _check_period(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    if not PERIOD_RE.match(value):
        raise ValueError("period must be YYYY-MM")
    return value


class _In(BaseModel):
    # client-supplied org_id / created_by_id and other unknown keys are ignored
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


# -------------------- Paging --------------------

class Page(_In):
    limit: Optional[int] = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)


# -------------------- Organizations --------------------

class OrganizationCreate(_In):
    name: str = Field(..., min_length=1, max_length=160)
    slug: Optional[str] = Field(default=None, min_length=3, max_length=80)
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = Field(default=None, max_length=40)
    address: Optional[str] = Field(default=None, max_length=255)
    city: Optional[str] = Field(default=None, max_length=120)
    postal_code: Optional[str] = Field(default=None, max_length=20)
    country: str = "Germany"

    @field_validator("slug")
    @classmethod
    def _slug(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not SLUG_RE.match(v):
            raise ValueError("slug may contain lowercase letters, digits and single dashes")
        return v

    @field_validator("contact_email")
    @classmethod
    def _email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v)


class OrganizationUpdate(_In):
    name: Optional[str] = Field(default=None, min_length=1, max_length=160)
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = Field(default=None, max_length=40)
    address: Optional[str] = Field(default=None, max_length=255)
    city: Optional[str] = Field(default=None, max_length=120)
    postal_code: Optional[str] = Field(default=None, max_length=20)
    country: Optional[str] = None

    @field_validator("contact_email")
    @classmethod
    def _email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v)


# -------------------- Users --------------------

class UserCreate(_In):
    email: str
    name: str = Field(..., min_length=1, max_length=160)
    role: str = "tenant"
    is_active: bool = True

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return _check_email(v)

    @field_validator("role")
    @classmethod
    def _role(cls, v: str) -> str:
        return _check_choice(v, USER_ROLES, "role")


class UserUpdate(_In):
    email: Optional[str] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=160)
    role: Optional[str] = None
    is_active: Optional[bool] = None
    email_verified_at: Optional[datetime] = None

    @field_validator("email")
    @classmethod
    def _email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v)

    @field_validator("role")
    @classmethod
    def _role(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, USER_ROLES, "role")


class UserFilters(Page):
    role: Optional[str] = None
    is_active: Optional[bool] = None
    search: Optional[str] = None

    @field_validator("role")
    @classmethod
    def _role(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, USER_ROLES, "role")


# -------------------- Buildings --------------------

class BuildingCreate(_In):
    name: str = Field(..., min_length=1, max_length=160)
    address: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=120)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = "Germany"
    total_units: int = Field(default=1, ge=1, le=10000)
    year_built: Optional[int] = Field(default=None, ge=1000, le=2100)
    property_type: str = "apartment"

    @field_validator("property_type")
    @classmethod
    def _ptype(cls, v: str) -> str:
        return _check_choice(v, PROPERTY_TYPES, "property_type")


class BuildingUpdate(_In):
    name: Optional[str] = Field(default=None, min_length=1, max_length=160)
    address: Optional[str] = Field(default=None, min_length=1, max_length=255)
    city: Optional[str] = Field(default=None, min_length=1, max_length=120)
    postal_code: Optional[str] = Field(default=None, min_length=1, max_length=20)
    country: Optional[str] = None
    total_units: Optional[int] = Field(default=None, ge=1, le=10000)
    year_built: Optional[int] = Field(default=None, ge=1000, le=2100)
    property_type: Optional[str] = None

    @field_validator("property_type")
    @classmethod
    def _ptype(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, PROPERTY_TYPES, "property_type")


class BuildingFilters(Page):
    city: Optional[str] = None
    property_type: Optional[str] = None
    search: Optional[str] = None


# -------------------- Contracts --------------------

class ContractCreate(_In):
    building_id: uuid.UUID
    contract_number: Optional[str] = Field(default=None, min_length=1, max_length=40)
    unit_number: str = Field(..., min_length=1, max_length=40)
    start_date: date
    end_date: Optional[date] = None
    rent_amount: float = Field(..., ge=0)
    deposit_amount: Optional[float] = Field(default=None, ge=0)
    is_active: bool = True
    contract_file_url: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def _dates(self) -> "ContractCreate":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ContractUpdate(_In):
    unit_number: Optional[str] = Field(default=None, min_length=1, max_length=40)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    rent_amount: Optional[float] = Field(default=None, ge=0)
    deposit_amount: Optional[float] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    contract_file_url: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def _dates(self) -> "ContractUpdate":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ContractFilters(Page):
    building_id: Optional[uuid.UUID] = None
    is_active: Optional[bool] = None
    search: Optional[str] = None


class TenantLinkCreate(_In):
    tenant_id: uuid.UUID
    percentage: float = Field(default=100.0, gt=0, le=100)
    is_main_tenant: bool = False


# -------------------- Tickets --------------------

class TicketCreate(_In):
    building_id: uuid.UUID
    contract_id: Optional[uuid.UUID] = None
    assigned_to_id: Optional[uuid.UUID] = None
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    priority: str = "medium"
    category: str = "maintenance"
    estimated_cost: Optional[float] = Field(default=None, ge=0)
    due_date: Optional[date] = None

    @field_validator("priority")
    @classmethod
    def _priority(cls, v: str) -> str:
        return _check_choice(v, TICKET_PRIORITIES, "priority")

    @field_validator("category")
    @classmethod
    def _category(cls, v: str) -> str:
        return _check_choice(v, TICKET_CATEGORIES, "category")


class TicketUpdate(_In):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1)
    priority: Optional[str] = None
    status: Optional[str] = None
    category: Optional[str] = None
    assigned_to_id: Optional[uuid.UUID] = None
    estimated_cost: Optional[float] = Field(default=None, ge=0)
    actual_cost: Optional[float] = Field(default=None, ge=0)
    due_date: Optional[date] = None
    resolved_at: Optional[datetime] = None

    @field_validator("priority")
    @classmethod
    def _priority(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, TICKET_PRIORITIES, "priority")

    @field_validator("status")
    @classmethod
    def _status(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, TICKET_STATUSES, "status")

    @field_validator("category")
    @classmethod
    def _category(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, TICKET_CATEGORIES, "category")


class TicketFilters(Page):
    status: Optional[str] = None
    priority: Optional[str] = None
    category: Optional[str] = None
    building_id: Optional[uuid.UUID] = None
    contract_id: Optional[uuid.UUID] = None
    created_by_id: Optional[uuid.UUID] = None
    assigned_to_id: Optional[uuid.UUID] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    search: Optional[str] = None

    @field_validator("status")
    @classmethod
    def _status(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, TICKET_STATUSES, "status")

    @field_validator("priority")
    @classmethod
    def _priority(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, TICKET_PRIORITIES, "priority")

    @field_validator("category")
    @classmethod
    def _category(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, TICKET_CATEGORIES, "category")

    @model_validator(mode="after")
    def _range(self) -> "TicketFilters":
        if self.created_from and self.created_to and self.created_to < self.created_from:
            raise ValueError("created_to must not be before created_from")
        return self


# -------------------- Consumption --------------------

class ConsumptionCreate(_In):
    contract_id: uuid.UUID
    consumption_type: str
    period: str
    reading: float = Field(..., ge=0)
    unit: str = Field(default="kWh", min_length=1, max_length=20)
    cost: Optional[float] = Field(default=None, ge=0)
    meter_number: Optional[str] = Field(default=None, max_length=80)
    reading_date: Optional[date] = None

    @field_validator("consumption_type")
    @classmethod
    def _ctype(cls, v: str) -> str:
        return _check_choice(v, CONSUMPTION_TYPES, "consumption_type")

    @field_validator("period")
    @classmethod
    def _period(cls, v: str) -> str:
        _check_period(v)
        if v > current_period():
            raise ValueError("period must not be in the future")
        return v


class ConsumptionUpdate(_In):
    reading: Optional[float] = Field(default=None, ge=0)
    unit: Optional[str] = Field(default=None, min_length=1, max_length=20)
    cost: Optional[float] = Field(default=None, ge=0)
    meter_number: Optional[str] = Field(default=None, max_length=80)
    reading_date: Optional[date] = None


class ConsumptionFilters(Page):
    contract_id: Optional[uuid.UUID] = None
    consumption_type: Optional[str] = None
    period: Optional[str] = None
    start_period: Optional[str] = None
    end_period: Optional[str] = None

    @field_validator("consumption_type")
    @classmethod
    def _ctype(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, CONSUMPTION_TYPES, "consumption_type")

    @field_validator("period", "start_period", "end_period")
    @classmethod
    def _period(cls, v: Optional[str]) -> Optional[str]:
        return _check_period(v)

    @model_validator(mode="after")
    def _range(self) -> "ConsumptionFilters":
        if self.start_period and self.end_period and self.end_period < self.start_period:
            raise ValueError("end_period must not be before start_period")
        return self


class BulkConsumptionIn(_In):
    records: List[ConsumptionCreate] = Field(..., min_length=1)


# -------------------- Documents --------------------

class DocumentCreate(_In):
    building_id: Optional[uuid.UUID] = None
    contract_id: Optional[uuid.UUID] = None
    ticket_id: Optional[uuid.UUID] = None
    file_name: str = Field(..., min_length=1, max_length=255)
    original_file_name: str = Field(..., min_length=1, max_length=255)
    file_size: int = Field(default=0, ge=0)
    mime_type: str = Field(..., min_length=1, max_length=120)
    file_url: str = Field(..., min_length=1, max_length=500)
    category: str = "document"
    description: Optional[str] = None
    is_public: bool = False

    @field_validator("category")
    @classmethod
    def _category(cls, v: str) -> str:
        return _check_choice(v, DOCUMENT_CATEGORIES, "category")


class DocumentUpdate(_In):
    file_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category: Optional[str] = None
    description: Optional[str] = None
    is_public: Optional[bool] = None

    @field_validator("category")
    @classmethod
    def _category(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, DOCUMENT_CATEGORIES, "category")


class DocumentFilters(Page):
    building_id: Optional[uuid.UUID] = None
    contract_id: Optional[uuid.UUID] = None
    ticket_id: Optional[uuid.UUID] = None
    category: Optional[str] = None
    is_public: Optional[bool] = None
    search: Optional[str] = None

    @field_validator("category")
    @classmethod
    def _category(cls, v: Optional[str]) -> Optional[str]:
        return _check_choice(v, DOCUMENT_CATEGORIES, "category")


# -------------------- Invitations --------------------

class InvitationCreate(_In):
    contract_id: uuid.UUID
    email: str
    tenant_name: str = Field(..., min_length=1, max_length=160)
    percentage: float = Field(default=100.0, gt=0, le=100)
    is_main_tenant: bool = False
    expires_in_days: Optional[int] = Field(default=None, ge=1)

    @field_validator("email")
    @classmethod
    def _email(cls, v: str) -> str:
        return _check_email(v)


class InvitationAccept(_In):
    token: str = Field(..., min_length=8, max_length=80)
    name: Optional[str] = Field(default=None, min_length=1, max_length=160)


# -------------------- Outbound --------------------

class _Out(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class OrganizationOut(_Out):
    id: uuid.UUID
    name: str
    slug: str
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: str
    is_active: bool
    created_at: datetime


class UserOut(_Out):
    id: uuid.UUID
    org_id: uuid.UUID
    email: str
    name: str
    role: str
    is_active: bool
    email_verified_at: Optional[datetime] = None
    created_at: datetime


class BuildingOut(_Out):
    id: uuid.UUID
    org_id: uuid.UUID
    name: str
    address: str
    city: str
    postal_code: str
    country: str
    total_units: int
    year_built: Optional[int] = None
    property_type: str
    created_at: datetime
    updated_at: datetime


class ContractOut(_Out):
    id: uuid.UUID
    org_id: uuid.UUID
    building_id: uuid.UUID
    contract_number: str
    unit_number: str
    start_date: date
    end_date: Optional[date] = None
    rent_amount: float
    deposit_amount: Optional[float] = None
    is_active: bool
    contract_file_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class TenantLinkOut(_Out):
    id: uuid.UUID
    tenant_id: uuid.UUID
    contract_id: uuid.UUID
    percentage: float
    is_main_tenant: bool
    created_at: datetime


class TicketOut(_Out):
    id: uuid.UUID
    org_id: uuid.UUID
    building_id: Optional[uuid.UUID] = None
    contract_id: Optional[uuid.UUID] = None
    created_by_id: uuid.UUID
    assigned_to_id: Optional[uuid.UUID] = None
    title: str
    description: str
    priority: str
    status: str
    category: str
    estimated_cost: Optional[float] = None
    actual_cost: Optional[float] = None
    due_date: Optional[date] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ConsumptionOut(_Out):
    id: uuid.UUID
    contract_id: uuid.UUID
    consumption_type: str
    period: str
    reading: float
    unit: str
    cost: Optional[float] = None
    meter_number: Optional[str] = None
    reading_date: Optional[date] = None
    created_at: datetime
    updated_at: datetime


class DocumentOut(_Out):
    id: uuid.UUID
    building_id: Optional[uuid.UUID] = None
    contract_id: Optional[uuid.UUID] = None
    ticket_id: Optional[uuid.UUID] = None
    uploaded_by_id: uuid.UUID
    file_name: str
    original_file_name: str
    file_size: int
    mime_type: str
    file_url: str
    category: str
    description: Optional[str] = None
    is_public: bool
    created_at: datetime


class InvitationOut(_Out):
    id: uuid.UUID
    contract_id: uuid.UUID
    email: str
    tenant_name: str
    percentage: float
    is_main_tenant: bool
    expires_at: datetime
    used_at: Optional[datetime] = None
    created_at: datetime


class TerminateContractIn(_In):
    end_date: Optional[date] = None
    reason: Optional[str] = Field(default=None, max_length=2000)


class StatusChangeIn(_In):
    status: str

    @field_validator("status")
    @classmethod
    def _status(cls, v: str) -> str:
        return _check_choice(v, TICKET_STATUSES, "status")


class AssignIn(_In):
    assigned_to_id: Optional[uuid.UUID] = None


OUT_MODELS: dict[type, Type[BaseModel]] = {
    Organization: OrganizationOut,
    User: UserOut,
    Building: BuildingOut,
    Contract: ContractOut,
    TenantContract: TenantLinkOut,
    Ticket: TicketOut,
    ConsumptionRecord: ConsumptionOut,
    Document: DocumentOut,
    InvitationToken: InvitationOut,
}


def to_out(value: Any) -> Any:
    """ORM rows (also nested in dicts and lists) to their JSON-ready outbound shape."""
    if isinstance(value, Base):
        return OUT_MODELS[type(value)].model_validate(value).model_dump(mode="json")
    if isinstance(value, dict):
        return {k: to_out(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_out(v) for v in value]
    return value
