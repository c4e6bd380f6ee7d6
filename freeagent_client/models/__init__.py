"""FreeAgent domain and report models."""

from freeagent_client.models.domain import (
    Bill,
    CapitalAssetType,
    CisBand,
    Contact,
    Estimate,
    EstimateItem,
    FreeAgentModel,
    Invoice,
    Project,
    Role,
    SalesTaxRate,
    TaskItem,
    Timeslip,
    User,
)
from freeagent_client.models.reports import (
    BillingDetailEntry,
    EnrichedProject,
    EnrichedTimeslip,
    ProjectBillingDetail,
    RevenueEntry,
    WeeklySummary,
)

__all__ = [
    "FreeAgentModel",
    "Role",
    "Contact",
    "Project",
    "TaskItem",
    "Timeslip",
    "User",
    "Estimate",
    "EstimateItem",
    "Bill",
    "Invoice",
    "SalesTaxRate",
    "CisBand",
    "CapitalAssetType",
    "EnrichedTimeslip",
    "EnrichedProject",
    "BillingDetailEntry",
    "ProjectBillingDetail",
    "WeeklySummary",
    "RevenueEntry",
]
