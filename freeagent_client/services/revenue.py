"""Projected monthly revenue from estimate line items.

Each estimate line item whose description names a month and year
("January 2024", "Sep 2025", ...) contributes ``price * quantity`` to that
month. Only the first month-year token of a description counts, and items
without one are skipped.
"""

import asyncio
import re
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, List, Optional, Sequence

from freeagent_client.core.errors import ConfigurationError, PartialBatchFailure
from freeagent_client.core.logging import LoggerAdapter, get_logger
from freeagent_client.models.domain import Contact, Estimate, Project
from freeagent_client.models.reports import RevenueEntry
from freeagent_client.services.dates import month_bucket
from freeagent_client.services.enrichment import index_by_identity

if TYPE_CHECKING:
    from freeagent_client.services.client import FreeAgentClient

logger = get_logger(__name__)

MONTH_YEAR_PATTERN = re.compile(
    r"\b(Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|Jun(?:e)?|Jul(?:y)?"
    r"|Aug(?:ust)?|Sep(?:tember)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)\s+(\d{4})\b"
)

MONTH_NUMBERS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

DetailFetcher = Callable[[Estimate], Awaitable[Estimate]]

RevenueByMonth = Dict[date, List[RevenueEntry]]


def extract_month(description: Optional[str]) -> Optional[date]:
    """First month of the first ``Month YYYY`` token in a description.

    Returns:
        First day of the named month, or None if there is no token
    """
    if not description:
        return None
    match = MONTH_YEAR_PATTERN.search(description)
    if match is None:
        return None
    return month_bucket(int(match.group(2)), MONTH_NUMBERS[match.group(1)[:3].lower()])


def _is_draft(estimate: Estimate) -> bool:
    return (estimate.status or "").lower() == "draft"


class RevenueProjector:
    """Buckets estimate line items into projected monthly revenue.

    Detail fetches that fail are logged and the remaining estimates are still
    projected. ``failures`` holds the skipped estimates of the most recently
    finished run; each run collects its own list and publishes it once at the
    end, so concurrent runs never see each other's failures.
    """

    def __init__(self, client: Optional["FreeAgentClient"] = None):
        self.client = client
        self.failures: List[PartialBatchFailure] = []

    async def project_monthly_revenue(
        self,
        estimates: Sequence[Estimate],
        projects: Sequence[Project],
        contacts: Sequence[Contact],
        fetch_detail: DetailFetcher,
        drafts: Sequence[Estimate] = (),
    ) -> RevenueByMonth:
        """Project revenue per month.

        Args:
            estimates: Approved estimates
            projects: Projects estimates are attached to, by ``estimate.project``
            contacts: Contacts projects belong to, by ``project.contact``
            fetch_detail: Coroutine returning an estimate with its line items
            drafts: Draft estimates; their entries are flagged ``is_estimate``

        Returns:
            Revenue entries keyed by first day of month, in ascending order
        """
        failures: List[PartialBatchFailure] = []
        projects_by_url = index_by_identity(projects)
        contacts_by_url = index_by_identity(contacts)
        run_logger = LoggerAdapter(logger, {"estimates": len(estimates) + len(drafts)})

        buckets: Dict[date, List[RevenueEntry]] = defaultdict(list)
        batch = [(estimate, False) for estimate in estimates] + [(estimate, True) for estimate in drafts]

        # One detail request at a time
        for estimate, from_draft_set in batch:
            label = estimate.reference or estimate.url or "unknown"
            try:
                detail = await fetch_detail(estimate)
            except Exception as e:
                failures.append(PartialBatchFailure(label, e))
                run_logger.warning(f"Skipping estimate {label}: {e}")
                continue

            project = projects_by_url.get(detail.project) if detail.project else None
            if project is None:
                continue
            contact = contacts_by_url.get(project.contact) if project.contact else None
            is_estimate = from_draft_set or _is_draft(estimate)

            for item in detail.estimate_items:
                if item.price is None or item.price <= 0:
                    continue
                month = extract_month(item.description)
                if month is None:
                    continue
                buckets[month].append(
                    RevenueEntry(
                        contact=contact,
                        project=project,
                        amount=item.price * (item.quantity or Decimal("0")),
                        is_estimate=is_estimate,
                        estimate_reference=detail.reference or estimate.reference,
                    )
                )

        if failures:
            run_logger.warning(f"{len(failures)} estimates could not be projected")
        self.failures = failures
        return {month: buckets[month] for month in sorted(buckets)}

    async def projected_monthly_revenue(self) -> RevenueByMonth:
        """Fetch sources concurrently and project revenue from approved and draft estimates."""
        if self.client is None:
            raise ConfigurationError("RevenueProjector needs a client to fetch its sources")

        contacts, projects, approved, drafts = await asyncio.gather(
            self.client.contacts.all_with_active_projects(),
            self.client.projects.active(),
            self.client.estimates.by_status("approved"),
            self.client.estimates.by_status("draft"),
        )

        async def fetch_detail(estimate: Estimate) -> Estimate:
            return await self.client.estimates.detail(estimate.url or "")

        return await self.project_monthly_revenue(
            approved, projects, contacts, fetch_detail, drafts=drafts
        )


def monthly_totals(revenue: RevenueByMonth) -> Dict[date, Decimal]:
    """Sum of entry amounts per month."""
    return {
        month: sum((entry.amount for entry in entries), Decimal("0"))
        for month, entries in revenue.items()
    }
