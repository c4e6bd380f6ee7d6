"""Derived, read-only views produced by enrichment and reporting."""

from datetime import date
from decimal import Decimal
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict

from freeagent_client.models.domain import Contact, Project, TaskItem, Timeslip, User


class ReportModel(BaseModel):
    """Base for derived views. Frozen so cached raw entities are never aliased."""

    model_config = ConfigDict(frozen=True)


class EnrichedTimeslip(ReportModel):
    """Timeslip joined with its task and user."""

    timeslip: Timeslip
    task: Optional[TaskItem] = None
    user: Optional[User] = None


class EnrichedProject(ReportModel):
    """Project joined with its contact and enriched timeslips."""

    project: Project
    contact: Optional[Contact] = None
    timeslips: Tuple[EnrichedTimeslip, ...] = ()


class BillingDetailEntry(ReportModel):
    """One timeslip line of the billing-detail report."""

    customer: str
    project: str
    user: str
    dated_on: date
    year: int
    week_number: int
    effort: Decimal
    day_rate: Optional[Decimal] = None
    hourly_rate: Optional[Decimal] = None
    level: str = ""
    cost: Optional[Decimal] = None
    comment: str = ""


class ProjectBillingDetail(ReportModel):
    """Billing-detail report section for one project."""

    project: EnrichedProject
    entries: Tuple[BillingDetailEntry, ...] = ()

    @property
    def total_cost(self) -> Decimal:
        return sum((entry.cost or Decimal("0") for entry in self.entries), Decimal("0"))


class WeeklySummary(ReportModel):
    """Effort and cost totals for one ISO week."""

    year: int
    week_number: int
    effort: Decimal
    cost: Decimal
    entry_count: int


class RevenueEntry(ReportModel):
    """Projected revenue from one estimate line item."""

    contact: Optional[Contact] = None
    project: Project
    amount: Decimal
    is_estimate: bool = False
    estimate_reference: Optional[str] = None
