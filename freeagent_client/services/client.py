"""FreeAgent API client.

Composition root wiring the transport, cache, paged fetcher, resource
wrappers and reports together.
"""

from typing import Optional, Union

import httpx

from freeagent_client.core.config import Settings, settings
from freeagent_client.core.logging import get_logger
from freeagent_client.services.auth import AuthenticationProvider, StaticTokenProvider
from freeagent_client.services.cache import (
    CacheStore,
    RedisCacheStore,
    create_cache_store,
    default_policies,
)
from freeagent_client.services.pagination import PagedFetcher
from freeagent_client.services.reports import ReportsService
from freeagent_client.services.resources import (
    BillsResource,
    CapitalAssetTypesResource,
    CisBandsResource,
    ContactsResource,
    EstimatesResource,
    InvoicesResource,
    ProjectsResource,
    SalesTaxRatesResource,
    TasksResource,
    TimeslipsResource,
    UsersResource,
)
from freeagent_client.services.revenue import RevenueProjector
from freeagent_client.services.transport import Transport

logger = get_logger(__name__)

AnyCacheStore = Union[CacheStore, RedisCacheStore]


class FreeAgentClient:
    """Client for the FreeAgent accounting API.

    Provides:
    - Resource wrappers for contacts, projects, tasks, timeslips, users,
      estimates, bills, invoices and reference data
    - Billing-detail reports over active projects
    - Projected monthly revenue from estimates

    Features:
    - Bearer authentication with one token refresh on 401
    - Automatic pagination over ``Link`` headers
    - Read-through caching with sliding expiry and write invalidation
    - Exponential backoff retry for connection failures and 5xx responses

    Example:
        ```python
        async with FreeAgentClient(StaticTokenProvider("token")) as client:
            contacts = await client.contacts.all_with_active_projects()
            revenue = await client.revenue.projected_monthly_revenue()
        ```
    """

    def __init__(
        self,
        auth: Optional[AuthenticationProvider] = None,
        cache: Optional[AnyCacheStore] = None,
        config: Optional[Settings] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize FreeAgentClient.

        Args:
            auth: Token provider. Defaults to the configured static token.
            cache: Cache store. Defaults to the store selected by
                ``cache_backend``; caching is off when that is "none".
            config: Settings override
            http_transport: Optional httpx transport, mainly for tests
        """
        self.config = config or settings
        self._owns_cache = cache is None
        self.cache = cache if cache is not None else create_cache_store(self.config)
        self.policies = default_policies(self.config)

        self.transport = Transport(
            auth or StaticTokenProvider(self.config.access_token),
            config=self.config,
            http_transport=http_transport,
        )
        self.fetcher = PagedFetcher(self.transport, page_size=self.config.page_size)

        self.contacts = ContactsResource(self)
        self.projects = ProjectsResource(self)
        self.tasks = TasksResource(self)
        self.timeslips = TimeslipsResource(self)
        self.users = UsersResource(self)
        self.estimates = EstimatesResource(self)
        self.bills = BillsResource(self)
        self.invoices = InvoicesResource(self)
        self.sales_tax_rates = SalesTaxRatesResource(self)
        self.cis_bands = CisBandsResource(self)
        self.capital_asset_types = CapitalAssetTypesResource(self)

        self.reports = ReportsService(self)
        self.revenue = RevenueProjector(self)

    async def close(self) -> None:
        """Close the HTTP client and any Redis connection this client opened."""
        await self.transport.close()
        if self._owns_cache and isinstance(self.cache, RedisCacheStore):
            await self.cache.close()

    async def __aenter__(self) -> "FreeAgentClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
