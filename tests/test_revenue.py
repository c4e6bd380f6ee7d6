"""Tests for projected monthly revenue.

Tests cover:
- Month-year extraction from free-text descriptions
- Bucketing line items by month
- Partial failure of estimate detail fetches
- Concurrent source fetch through the client
"""

import asyncio
from datetime import date
from decimal import Decimal

import httpx
import pytest

from freeagent_client.core.errors import HttpRequestFailure, NotFoundFailure, PartialBatchFailure
from freeagent_client.models.domain import Contact, Estimate, Project
from freeagent_client.services.revenue import RevenueProjector, extract_month, monthly_totals

from conftest import ACME, WEBSITE, SUPPORT, api_url, estimate_payload


def item(description, price="1000", quantity="1"):
    return {"description": description, "price": price, "quantity": quantity}


# =============================================================================
# Month extraction
# =============================================================================


class TestExtractMonth:
    """Tests for the month-year token heuristic."""

    @pytest.mark.parametrize(
        "description,expected",
        [
            ("Consulting — January 2024 retainer", date(2024, 1, 1)),
            ("Sep 2025 support", date(2025, 9, 1)),
            ("Work for Sept 2025", None),
            ("Delivery in May 2024", date(2024, 5, 1)),
            ("Phase 2: March 2024 and April 2024", date(2024, 3, 1)),
            ("Dec   2023", date(2023, 12, 1)),
            ("Monthly retainer", None),
            ("2024 January", None),
            ("January 24", None),
            ("", None),
            (None, None),
        ],
    )
    def test_extraction(self, description, expected):
        assert extract_month(description) == expected

    def test_word_boundaries(self):
        """A month abbreviation inside another word is not a token."""
        assert extract_month("Mayday 2024") is None
        assert extract_month("January 20245") is None


# =============================================================================
# Projection
# =============================================================================


@pytest.fixture
def projects():
    return [Project.model_validate(WEBSITE), Project.model_validate(SUPPORT)]


@pytest.fixture
def contacts():
    return [Contact.model_validate(ACME)]


def detail_fetcher(details, failing=(), error=None):
    """fetch_detail stand-in serving estimates by URL.

    Each call yields to the event loop once, so concurrent runs interleave.
    """
    fetched = []

    async def fetch_detail(estimate):
        fetched.append(estimate.url)
        await asyncio.sleep(0)
        if estimate.url in failing:
            raise error or HttpRequestFailure("Server refused", 500, estimate.url)
        return details[estimate.url]

    fetch_detail.fetched = fetched
    return fetch_detail


class TestProjectMonthlyRevenue:
    """Tests for bucketing estimate line items."""

    @pytest.mark.asyncio
    async def test_single_item_bucketed_by_month(self, projects, contacts):
        estimate = Estimate.model_validate(
            estimate_payload(1, WEBSITE["url"], [item("Consulting — January 2024 retainer")])
        )
        projector = RevenueProjector()

        revenue = await projector.project_monthly_revenue(
            [estimate], projects, contacts, detail_fetcher({estimate.url: estimate})
        )

        assert list(revenue) == [date(2024, 1, 1)]
        [entry] = revenue[date(2024, 1, 1)]
        assert entry.amount == Decimal("1000")
        assert entry.project.name == "Website rebuild"
        assert entry.contact.organisation_name == "Acme Ltd"
        assert entry.is_estimate is False
        assert entry.estimate_reference == "EST-001"

    @pytest.mark.asyncio
    async def test_items_without_token_or_price_skipped(self, projects, contacts):
        estimate = Estimate.model_validate(
            estimate_payload(
                1,
                WEBSITE["url"],
                [
                    item("Monthly retainer"),
                    item("Discount February 2024", price="-100"),
                    item("Free workshop March 2024", price="0"),
                    item("Support March 2024", price="250", quantity="2"),
                ],
            )
        )
        projector = RevenueProjector()

        revenue = await projector.project_monthly_revenue(
            [estimate], projects, contacts, detail_fetcher({estimate.url: estimate})
        )

        assert monthly_totals(revenue) == {date(2024, 3, 1): Decimal("500")}

    @pytest.mark.asyncio
    async def test_missing_quantity_counts_as_zero(self, projects, contacts):
        estimate = Estimate.model_validate(
            estimate_payload(1, WEBSITE["url"], [item("April 2024 delivery", quantity=None)])
        )

        revenue = await RevenueProjector().project_monthly_revenue(
            [estimate], projects, contacts, detail_fetcher({estimate.url: estimate})
        )

        assert revenue[date(2024, 4, 1)][0].amount == Decimal("0")

    @pytest.mark.asyncio
    async def test_estimate_without_known_project_skipped(self, projects, contacts):
        estimate = Estimate.model_validate(
            estimate_payload(1, api_url("projects/404"), [item("January 2024")])
        )

        revenue = await RevenueProjector().project_monthly_revenue(
            [estimate], projects, contacts, detail_fetcher({estimate.url: estimate})
        )

        assert revenue == {}

    @pytest.mark.asyncio
    async def test_drafts_flagged_as_estimates(self, projects, contacts):
        approved = Estimate.model_validate(
            estimate_payload(1, WEBSITE["url"], [item("January 2024")])
        )
        draft = Estimate.model_validate(
            estimate_payload(2, SUPPORT["url"], [item("January 2024", price="300")], status="Draft")
        )
        details = {approved.url: approved, draft.url: draft}

        revenue = await RevenueProjector().project_monthly_revenue(
            [approved], projects, contacts, detail_fetcher(details), drafts=[draft]
        )

        entries = revenue[date(2024, 1, 1)]
        assert [(e.project.name, e.is_estimate) for e in entries] == [
            ("Website rebuild", False),
            ("Support", True),
        ]

    @pytest.mark.asyncio
    async def test_months_in_ascending_order(self, projects, contacts):
        estimate = Estimate.model_validate(
            estimate_payload(
                1,
                WEBSITE["url"],
                [item("March 2024"), item("January 2024"), item("Feb 2024")],
            )
        )

        revenue = await RevenueProjector().project_monthly_revenue(
            [estimate], projects, contacts, detail_fetcher({estimate.url: estimate})
        )

        assert list(revenue) == [date(2024, 1, 1), date(2024, 2, 1), date(2024, 3, 1)]


class TestPartialFailure:
    """A failing detail fetch is recorded and the batch continues."""

    @pytest.mark.asyncio
    async def test_second_of_three_fails(self, projects, contacts):
        estimates = [
            Estimate.model_validate(estimate_payload(1, WEBSITE["url"], [item("January 2024", price="100")])),
            Estimate.model_validate(estimate_payload(2, WEBSITE["url"], [item("February 2024", price="200")])),
            Estimate.model_validate(estimate_payload(3, SUPPORT["url"], [item("March 2024", price="300")])),
        ]
        details = {e.url: e for e in estimates}
        fetch_detail = detail_fetcher(details, failing={estimates[1].url})
        projector = RevenueProjector()

        revenue = await projector.project_monthly_revenue(estimates, projects, contacts, fetch_detail)

        assert monthly_totals(revenue) == {
            date(2024, 1, 1): Decimal("100"),
            date(2024, 3, 1): Decimal("300"),
        }
        assert fetch_detail.fetched == [e.url for e in estimates]

        [failure] = projector.failures
        assert isinstance(failure, PartialBatchFailure)
        assert failure.item == "EST-002"
        assert isinstance(failure.cause, HttpRequestFailure)

    @pytest.mark.asyncio
    async def test_unexpected_exception_skips_estimate(self, projects, contacts):
        """Errors outside the client's taxonomy are recorded like any other failure."""
        estimates = [
            Estimate.model_validate(estimate_payload(1, WEBSITE["url"], [item("January 2024", price="100")])),
            Estimate.model_validate(estimate_payload(2, WEBSITE["url"], [item("February 2024", price="200")])),
            Estimate.model_validate(estimate_payload(3, SUPPORT["url"], [item("March 2024", price="300")])),
        ]
        fetch_detail = detail_fetcher(
            {e.url: e for e in estimates},
            failing={estimates[1].url},
            error=httpx.DecodingError("bad gzip body"),
        )
        projector = RevenueProjector()

        revenue = await projector.project_monthly_revenue(estimates, projects, contacts, fetch_detail)

        assert list(revenue) == [date(2024, 1, 1), date(2024, 3, 1)]
        [failure] = projector.failures
        assert isinstance(failure.cause, httpx.DecodingError)
        assert failure.details == {"item": "EST-002", "cause": "DecodingError"}

    @pytest.mark.asyncio
    async def test_failures_reset_per_run(self, projects, contacts):
        estimate = Estimate.model_validate(estimate_payload(1, WEBSITE["url"], [item("January 2024")]))
        projector = RevenueProjector()

        await projector.project_monthly_revenue(
            [estimate], projects, contacts, detail_fetcher({}, failing={estimate.url})
        )
        assert len(projector.failures) == 1

        await projector.project_monthly_revenue(
            [estimate], projects, contacts, detail_fetcher({estimate.url: estimate})
        )
        assert projector.failures == []

    @pytest.mark.asyncio
    async def test_concurrent_runs_keep_their_own_failures(self, projects, contacts):
        estimates = [
            Estimate.model_validate(estimate_payload(n, WEBSITE["url"], [item(f"{month} 2024")]))
            for n, month in enumerate(["January", "February", "March"], start=1)
        ]
        details = {e.url: e for e in estimates}
        projector = RevenueProjector()

        async def run(fetch_detail):
            revenue = await projector.project_monthly_revenue(estimates, projects, contacts, fetch_detail)
            return revenue, list(projector.failures)

        (failing_revenue, failing_failures), (clean_revenue, clean_failures) = await asyncio.gather(
            run(detail_fetcher(details, failing=set(details))),
            run(detail_fetcher(details)),
        )

        assert failing_revenue == {}
        assert [f.item for f in failing_failures] == ["EST-001", "EST-002", "EST-003"]
        assert len(clean_revenue) == 3
        assert clean_failures == []


# =============================================================================
# Through the client
# =============================================================================


class TestProjectedMonthlyRevenue:
    """End-to-end projection against the fake API."""

    @pytest.mark.asyncio
    async def test_sources_fetched_and_details_followed(self, client, api):
        approved = estimate_payload(1, WEBSITE["url"], [item("Consulting — January 2024 retainer")])
        draft = estimate_payload(2, WEBSITE["url"], [item("February 2024", price="500")], status="Draft")
        missing = estimate_payload(3, WEBSITE["url"], [], status="Draft")
        api.add_collection("contacts", "contacts", [ACME], view="all")
        api.add_collection("projects", "projects", [WEBSITE, SUPPORT], view="active")
        api.add_collection("estimates", "estimates", [approved], view="approved")
        api.add_collection("estimates", "estimates", [draft, missing], view="draft")
        api.add_item("estimates/1", "estimate", approved)
        api.add_item("estimates/2", "estimate", draft)
        api.add_item("estimates/3", "estimate", None)

        revenue = await client.revenue.projected_monthly_revenue()

        assert monthly_totals(revenue) == {
            date(2024, 1, 1): Decimal("1000"),
            date(2024, 2, 1): Decimal("500"),
        }
        assert revenue[date(2024, 2, 1)][0].is_estimate is True

        [failure] = client.revenue.failures
        assert isinstance(failure.cause, NotFoundFailure)
        assert len(api.requests_to("estimates/1")) == 1
