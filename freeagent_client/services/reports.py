"""Billing-detail reporting over active projects.

Builds, for a closed date range, one report section per active project
with a line per timeslip: who worked, when (ISO week), how long, at which
task rate, and what it cost.
"""

import asyncio
from collections import defaultdict
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Tuple

from freeagent_client.core.logging import LoggerAdapter, get_logger
from freeagent_client.models.domain import Contact, Project, TaskItem, Timeslip, User
from freeagent_client.models.reports import (
    BillingDetailEntry,
    EnrichedProject,
    ProjectBillingDetail,
    WeeklySummary,
)
from freeagent_client.services.cache import VolatilityClass
from freeagent_client.services.dates import DateInterval, week_of
from freeagent_client.services.enrichment import enrich_project, enrich_timeslips

if TYPE_CHECKING:
    from freeagent_client.services.client import FreeAgentClient

logger = get_logger(__name__)

ZERO = Decimal("0")


def billing_entries(
    enriched: EnrichedProject,
    hours_per_day: Decimal,
) -> List[BillingDetailEntry]:
    """Report lines for a project whose timeslips are already enriched.

    The task's billing rate is a day rate; the hourly rate divides it by
    ``hours_per_day``. Timeslips without a date are skipped.
    """
    customer = enriched.contact.organisation_name if enriched.contact else None
    entries = []
    for slip in enriched.timeslips:
        timeslip = slip.timeslip
        if timeslip.dated_on is None:
            continue

        effort = timeslip.hours or ZERO
        day_rate = slip.task.billing_rate if slip.task else None
        hourly_rate = day_rate / hours_per_day if day_rate is not None else None
        cost = hourly_rate * effort if hourly_rate is not None else None
        year, week_number = week_of(timeslip.dated_on)

        entries.append(
            BillingDetailEntry(
                customer=customer or "",
                project=enriched.project.name,
                user=(slip.user.full_name if slip.user else "") or "Unknown",
                dated_on=timeslip.dated_on,
                year=year,
                week_number=week_number,
                effort=effort,
                day_rate=day_rate,
                hourly_rate=hourly_rate,
                level=slip.task.name if slip.task else "",
                cost=cost,
                comment=timeslip.comment or "",
            )
        )
    return entries


def build_project_detail(
    project: Project,
    contacts: Sequence[Contact],
    tasks: Sequence[TaskItem],
    timeslips: Sequence[Timeslip],
    users: Sequence[User],
    interval: DateInterval,
    hours_per_day: Decimal,
) -> ProjectBillingDetail:
    """Filter a project's timeslips to the interval and build its report section."""
    in_range = [
        timeslip for timeslip in timeslips
        if timeslip.dated_on is not None and timeslip.dated_on in interval
    ]
    enriched = enrich_project(project, contacts, enrich_timeslips(in_range, tasks, users))
    return ProjectBillingDetail(
        project=enriched,
        entries=tuple(billing_entries(enriched, hours_per_day)),
    )


def weekly_summary(details: Iterable[ProjectBillingDetail]) -> List[WeeklySummary]:
    """Total effort and cost per ISO week across report sections, oldest week first."""
    effort: Dict[Tuple[int, int], Decimal] = defaultdict(lambda: ZERO)
    cost: Dict[Tuple[int, int], Decimal] = defaultdict(lambda: ZERO)
    counts: Dict[Tuple[int, int], int] = defaultdict(int)

    for detail in details:
        for entry in detail.entries:
            week = (entry.year, entry.week_number)
            effort[week] += entry.effort
            cost[week] += entry.cost or ZERO
            counts[week] += 1

    return [
        WeeklySummary(
            year=year,
            week_number=week_number,
            effort=effort[(year, week_number)],
            cost=cost[(year, week_number)],
            entry_count=counts[(year, week_number)],
        )
        for year, week_number in sorted(counts)
    ]


class ReportsService:
    """Reports assembled from several FreeAgent collections.

    Report results are cached as plain data under the projects key group
    with the report TTL policy, so a project write drops them.
    """

    def __init__(self, client: "FreeAgentClient"):
        self.client = client

    def _cache_key(self, interval: DateInterval) -> str:
        return f"projects/active/date/{interval.start.isoformat()}/{interval.end.isoformat()}"

    async def active_projects_details_by_date_range(
        self,
        interval: DateInterval,
        use_cache: bool = True,
    ) -> List[ProjectBillingDetail]:
        """Billing detail for active projects with timeslips in a date range.

        Contacts, active projects and users are fetched concurrently; each
        project's tasks and timeslips are then fetched one project at a time.
        Projects whose timeslips in range cost nothing are left out.

        Args:
            interval: Closed date range; timeslips dated on either end are included
            use_cache: Read and store the finished report in the cache

        Returns:
            One section per project, in active-project order
        """
        cache = self.client.cache if use_cache else None
        cache_key = self._cache_key(interval)
        if cache is not None:
            cached, found = await cache.get(cache_key)
            if found:
                logger.debug(f"Cache hit for {cache_key}")
                return [ProjectBillingDetail.model_validate(item) for item in cached]

        run_logger = LoggerAdapter(
            logger, {"from": interval.start.isoformat(), "to": interval.end.isoformat()}
        )
        contacts, projects, users = await asyncio.gather(
            self.client.contacts.all_with_active_projects(),
            self.client.projects.active(),
            self.client.users.all(),
        )

        hours_per_day = Decimal(self.client.config.hours_per_day)
        details: List[ProjectBillingDetail] = []
        for project in projects:
            if not project.url:
                continue
            tasks = await self.client.tasks.by_project(project.url)
            timeslips = await self.client.timeslips.by_project(project.url)

            detail = build_project_detail(
                project, contacts, tasks, timeslips, users, interval, hours_per_day
            )
            if detail.total_cost != ZERO:
                details.append(detail)

        run_logger.info(f"Built billing detail for {len(details)} of {len(projects)} active projects")

        if cache is not None:
            await cache.set(
                cache_key,
                [detail.model_dump(mode="json") for detail in details],
                self.client.policies[VolatilityClass.REPORT_DATA],
            )
        return details

    async def weekly_summary_by_date_range(
        self,
        interval: DateInterval,
        use_cache: bool = True,
    ) -> List[WeeklySummary]:
        details = await self.active_projects_details_by_date_range(interval, use_cache=use_cache)
        return weekly_summary(details)
