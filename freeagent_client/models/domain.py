"""FreeAgent domain models.

Field names follow the FreeAgent JSON representation. Cross references to
other resources are kept as the canonical URI strings the API returns
(e.g. ``"https://api.freeagent.com/v2/contacts/2"``) so that in-memory joins
compare identifiers exactly as served.

Models are frozen: derived views are produced with ``model_copy(update=...)``
or by wrapping, never by mutating a fetched entity.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class FreeAgentModel(BaseModel):
    """Base model for FreeAgent resources."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    url: Optional[str] = None

    @property
    def id(self) -> Optional[str]:
        """Trailing path segment of the resource URL."""
        if not self.url:
            return None
        return self.url.rstrip("/").rsplit("/", 1)[-1]


class Role(str, Enum):
    """FreeAgent user roles."""

    OWNER = "Owner"
    DIRECTOR = "Director"
    PARTNER = "Partner"
    COMPANY_SECRETARY = "Company Secretary"
    EMPLOYEE = "Employee"
    SHAREHOLDER = "Shareholder"
    ACCOUNTANT = "Accountant"


# =============================================================================
# Business entities
# =============================================================================


class Contact(FreeAgentModel):
    """Customer, supplier or other business relationship."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    organisation_name: Optional[str] = None
    email: Optional[str] = None
    billing_email: Optional[str] = None
    phone_number: Optional[str] = None
    country: Optional[str] = None
    status: Optional[str] = None
    active_projects_count: int = 0
    account_balance: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        if self.organisation_name:
            return self.organisation_name
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class Project(FreeAgentModel):
    """Project owned by a contact."""

    contact: Optional[str] = None
    contact_name: Optional[str] = None
    name: str
    status: Optional[str] = None
    currency: Optional[str] = None
    budget: Optional[Decimal] = None
    budget_units: Optional[str] = None
    hours_per_day: Optional[Decimal] = None
    normal_billing_rate: Optional[Decimal] = None
    billing_period: Optional[str] = None
    is_ir35: Optional[bool] = None
    starts_on: Optional[date] = None
    ends_on: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class TaskItem(FreeAgentModel):
    """Task within a project; its billing rate drives cost calculations."""

    project: Optional[str] = None
    name: str
    is_billable: Optional[bool] = None
    billing_rate: Optional[Decimal] = None
    billing_period: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Timeslip(FreeAgentModel):
    """Time logged by a user against a project task."""

    user: Optional[str] = None
    project: Optional[str] = None
    task: Optional[str] = None
    dated_on: Optional[date] = None
    hours: Optional[Decimal] = None
    comment: Optional[str] = None
    billed_on_invoice: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class User(FreeAgentModel):
    """FreeAgent user."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    hidden: Optional[bool] = None
    permission_level: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


class EstimateItem(BaseModel):
    """Line item of an estimate."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    url: Optional[str] = None
    position: Optional[int] = None
    item_type: Optional[str] = None
    quantity: Optional[Decimal] = None
    price: Optional[Decimal] = None
    description: Optional[str] = None
    sales_tax_rate: Optional[Decimal] = None
    category: Optional[str] = None


class Estimate(FreeAgentModel):
    """Quote sent to a contact, optionally tied to a project."""

    contact: Optional[str] = None
    project: Optional[str] = None
    invoice: Optional[str] = None
    reference: Optional[str] = None
    estimate_type: Optional[str] = None
    dated_on: Optional[date] = None
    status: Optional[str] = None
    currency: Optional[str] = None
    net_value: Optional[Decimal] = None
    total_value: Optional[Decimal] = None
    notes: Optional[str] = None
    estimate_items: List[EstimateItem] = []


class Bill(FreeAgentModel):
    """Bill received from a supplier."""

    contact: Optional[str] = None
    reference: Optional[str] = None
    dated_on: Optional[date] = None
    due_on: Optional[date] = None
    status: Optional[str] = None
    total_value: Optional[Decimal] = None
    paid_value: Optional[Decimal] = None
    due_value: Optional[Decimal] = None


class Invoice(FreeAgentModel):
    """Sales invoice."""

    contact: Optional[str] = None
    project: Optional[str] = None
    reference: Optional[str] = None
    dated_on: Optional[date] = None
    due_on: Optional[date] = None
    status: Optional[str] = None
    currency: Optional[str] = None
    net_value: Optional[Decimal] = None
    total_value: Optional[Decimal] = None
    paid_value: Optional[Decimal] = None
    due_value: Optional[Decimal] = None


# =============================================================================
# Reference data
# =============================================================================


class SalesTaxRate(BaseModel):
    """Sales tax rate band."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    rate: Optional[Decimal] = None
    description: Optional[str] = None


class CisBand(BaseModel):
    """Construction Industry Scheme deduction band."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    name: str
    deduction_rate: Optional[Decimal] = None
    income_description: Optional[str] = None
    deduction_description: Optional[str] = None
    nominal_code: Optional[str] = None


class CapitalAssetType(FreeAgentModel):
    """Capital asset type."""

    name: str
    system_default: Optional[bool] = None
