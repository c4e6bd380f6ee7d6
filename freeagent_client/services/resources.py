"""Generic CRUD-over-REST resource wrappers.

One ``ResourceClient`` implements list / get / create / update / delete for
any FreeAgent collection, parameterized by endpoint, envelope keys, model
and cache volatility class. Subclasses only add the filters and derived
views specific to a resource.

Caching:
- ``list`` and ``get`` are read-through: the cache key is the endpoint plus
  the canonical query parameters (see ``build_cache_key``).
- Every write invalidates the resource's whole key group (list views,
  filtered views and by-id views) after the request succeeds.
- Cached values are plain JSON data; models are rebuilt on every read, so
  callers never share objects with the cache.
"""

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Generic, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from freeagent_client.core.errors import DecodeFailure, HttpRequestFailure, NotFoundFailure
from freeagent_client.core.logging import get_logger
from freeagent_client.models.domain import (
    Bill,
    CapitalAssetType,
    CisBand,
    Contact,
    Estimate,
    Invoice,
    Project,
    Role,
    SalesTaxRate,
    TaskItem,
    Timeslip,
    User,
)
from freeagent_client.models.reports import EnrichedProject
from freeagent_client.services.cache import TTLPolicy, VolatilityClass, build_cache_key
from freeagent_client.services.enrichment import attach_contacts
from freeagent_client.services.pagination import EnvelopeDecoder

if TYPE_CHECKING:
    from freeagent_client.services.client import FreeAgentClient

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


def resource_id(id_or_url: str) -> str:
    """Resource id from an id or a full resource URL."""
    return id_or_url.rstrip("/").rsplit("/", 1)[-1]


class ResourceClient(Generic[M]):
    """CRUD operations for one FreeAgent collection.

    Class attributes:
        endpoint: Collection path relative to the API base (e.g. "bills")
        collection_key: JSON key of the list envelope (e.g. "bills")
        item_key: JSON key of the single-entity envelope (e.g. "bill")
        model: pydantic model for one entity
        volatility: Cache TTL class for this resource
    """

    endpoint: str = ""
    collection_key: str = ""
    item_key: str = ""
    model: Type[M]
    volatility: VolatilityClass = VolatilityClass.BUSINESS_ENTITY

    def __init__(self, client: "FreeAgentClient"):
        self.client = client
        self.decoder: EnvelopeDecoder[M] = EnvelopeDecoder(self.collection_key, self.model)

    @property
    def policy(self) -> TTLPolicy:
        return self.client.policies[self.volatility]

    # =========================================================================
    # Cache helpers
    # =========================================================================

    async def _read_through(self, cache_key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return cached JSON data for a key, loading and storing it on a miss."""
        cache = self.client.cache
        if cache is not None:
            cached, found = await cache.get(cache_key)
            if found:
                logger.debug(f"Cache hit for {cache_key}")
                return cached

        data = await loader()

        if cache is not None:
            await cache.set(cache_key, data, self.policy)
        return data

    async def invalidate(self) -> None:
        """Drop every cached query shape of this resource."""
        if self.client.cache is not None:
            await self.client.cache.invalidate_group(self.endpoint)

    def _dump(self, entity: BaseModel) -> Dict[str, Any]:
        return entity.model_dump(mode="json", exclude_none=True)

    def _load_many(self, data: List[Dict[str, Any]]) -> List[M]:
        return [self.model.model_validate(item) for item in data]

    def _decode_item(self, response: httpx.Response, identifier: str) -> Optional[M]:
        endpoint = str(response.request.url)
        try:
            body = response.json() if response.content else {}
        except ValueError as e:
            raise DecodeFailure(
                f"Response from {endpoint} is not valid JSON: {e}",
                endpoint=endpoint,
                status_code=response.status_code,
            ) from e

        raw = body.get(self.item_key) if isinstance(body, dict) else None
        if not raw:
            return None
        try:
            return self.model.model_validate(raw)
        except ValidationError as e:
            raise DecodeFailure(
                f"Invalid {self.model.__name__} {identifier} in response from {endpoint}: {e}",
                endpoint=endpoint,
                status_code=response.status_code,
            ) from e

    # =========================================================================
    # CRUD
    # =========================================================================

    async def list(self, **params: Any) -> List[M]:
        """Fetch every entity matching the query parameters, following pagination."""
        query = {name: value for name, value in params.items() if value is not None}

        async def load() -> List[Dict[str, Any]]:
            items = await self.client.fetcher.fetch_all(self.endpoint, self.decoder, params=query)
            return [self._dump(item) for item in items]

        data = await self._read_through(build_cache_key(self.endpoint, query), load)
        return self._load_many(data)

    async def get(self, id_or_url: str) -> M:
        """Fetch one entity by id or URL.

        Raises:
            NotFoundFailure: If the API returns 404 or an empty entity
        """
        identifier = resource_id(id_or_url)
        path = f"{self.endpoint}/{identifier}"

        async def load() -> Dict[str, Any]:
            try:
                response = await self.client.transport.send("GET", path)
            except HttpRequestFailure as e:
                if e.status_code == 404:
                    raise NotFoundFailure(
                        f"{self.model.__name__} {identifier} not found", self.endpoint, identifier
                    ) from e
                raise
            entity = self._decode_item(response, identifier)
            if entity is None:
                raise NotFoundFailure(f"{self.model.__name__} {identifier} not found", self.endpoint, identifier)
            return self._dump(entity)

        data = await self._read_through(path, load)
        return self.model.model_validate(data)

    async def create(self, entity: M) -> M:
        """Create an entity and return the server's representation."""
        payload = {self.item_key: self._dump(entity)}
        response = await self.client.transport.send("POST", self.endpoint, json_data=payload)
        await self.invalidate()
        created = self._decode_item(response, "(new)")
        return created if created is not None else entity

    async def update(self, id_or_url: str, entity: M) -> M:
        """Update an entity; returns the server's representation when it sends one."""
        identifier = resource_id(id_or_url)
        payload = {self.item_key: self._dump(entity)}
        response = await self.client.transport.send(
            "PUT", f"{self.endpoint}/{identifier}", json_data=payload
        )
        await self.invalidate()
        updated = self._decode_item(response, identifier)
        return updated if updated is not None else entity

    async def delete(self, id_or_url: str) -> None:
        identifier = resource_id(id_or_url)
        await self.client.transport.send("DELETE", f"{self.endpoint}/{identifier}")
        await self.invalidate()


# =============================================================================
# Business entities
# =============================================================================


class ContactsResource(ResourceClient[Contact]):
    endpoint = "contacts"
    collection_key = "contacts"
    item_key = "contact"
    model = Contact

    async def all(self) -> List[Contact]:
        return await self.list(view="all")

    async def all_with_active_projects(self) -> List[Contact]:
        """Contacts with at least one active project."""
        return [contact for contact in await self.all() if contact.active_projects_count > 0]

    async def by_organisation_name(self, organisation_name: str) -> Contact:
        """Contact whose organisation name matches, ignoring case."""
        wanted = organisation_name.casefold()
        for contact in await self.all():
            if contact.organisation_name and contact.organisation_name.casefold() == wanted:
                return contact
        raise NotFoundFailure(
            f"Contact with organisation name '{organisation_name}' not found", self.endpoint, organisation_name
        )


class ProjectsResource(ResourceClient[Project]):
    endpoint = "projects"
    collection_key = "projects"
    item_key = "project"
    model = Project

    async def active(self) -> List[Project]:
        return await self.list(view="active")

    async def all_active(self) -> List[EnrichedProject]:
        """Active projects with their contacts attached.

        Contacts and projects are fetched concurrently.
        """
        contacts, projects = await asyncio.gather(
            self.client.contacts.all_with_active_projects(),
            self.active(),
        )
        return attach_contacts(projects, contacts)

    async def by_name(self, name: str) -> Project:
        for project in await self.list():
            if project.name == name:
                return project
        raise NotFoundFailure(f"Project '{name}' not found", self.endpoint, name)


class TasksResource(ResourceClient[TaskItem]):
    endpoint = "tasks"
    collection_key = "tasks"
    item_key = "task"
    model = TaskItem

    async def by_project(self, project_url: str) -> List[TaskItem]:
        return await self.list(project=project_url)


class TimeslipsResource(ResourceClient[Timeslip]):
    endpoint = "timeslips"
    collection_key = "timeslips"
    item_key = "timeslip"
    model = Timeslip

    async def filtered(
        self,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        view: Optional[str] = None,
        user: Optional[str] = None,
        task: Optional[str] = None,
        project: Optional[str] = None,
    ) -> List[Timeslip]:
        """Timeslips filtered server-side.

        Args:
            from_date: Start date (YYYY-MM-DD)
            to_date: End date (YYYY-MM-DD)
            view: "all", "unbilled" or "running"
            user: User URL
            task: Task URL
            project: Project URL
        """
        return await self.list(
            from_date=from_date,
            to_date=to_date,
            view=view,
            user=user,
            task=task,
            project=project,
        )

    async def by_project(self, project_url: str) -> List[Timeslip]:
        return await self.filtered(project=project_url)


class UsersResource(ResourceClient[User]):
    endpoint = "users"
    collection_key = "users"
    item_key = "user"
    model = User

    async def all(self) -> List[User]:
        return await self.list()

    async def active_employees(self) -> List[User]:
        """Visible employees ordered by last name."""
        employees = [
            user for user in await self.all()
            if not user.hidden and user.role == Role.EMPLOYEE.value
        ]
        return sorted(employees, key=lambda user: user.last_name or "")

    async def directors(self) -> List[User]:
        return [
            user for user in await self.all()
            if not user.hidden and user.role == Role.DIRECTOR.value
        ]


class EstimatesResource(ResourceClient[Estimate]):
    endpoint = "estimates"
    collection_key = "estimates"
    item_key = "estimate"
    model = Estimate

    async def by_status(self, status: str) -> List[Estimate]:
        """Estimates in one status view ("draft", "sent", "approved", ...)."""
        return await self.list(view=status)

    async def detail(self, id_or_url: str) -> Estimate:
        """Single estimate including its line items."""
        return await self.get(id_or_url)


class BillsResource(ResourceClient[Bill]):
    endpoint = "bills"
    collection_key = "bills"
    item_key = "bill"
    model = Bill

    async def all(self, view: str = "all") -> List[Bill]:
        return await self.list(view=view)


class InvoicesResource(ResourceClient[Invoice]):
    endpoint = "invoices"
    collection_key = "invoices"
    item_key = "invoice"
    model = Invoice

    async def all(self, view: str = "all") -> List[Invoice]:
        return await self.list(view=view)


# =============================================================================
# Reference data
# =============================================================================


class SalesTaxRatesResource(ResourceClient[SalesTaxRate]):
    endpoint = "sales_tax_rates"
    collection_key = "sales_tax_rates"
    item_key = "sales_tax_rate"
    model = SalesTaxRate
    volatility = VolatilityClass.REFERENCE_DATA


class CisBandsResource(ResourceClient[CisBand]):
    endpoint = "cis_bands"
    collection_key = "available_bands"
    item_key = "cis_band"
    model = CisBand
    volatility = VolatilityClass.REFERENCE_DATA


class CapitalAssetTypesResource(ResourceClient[CapitalAssetType]):
    endpoint = "capital_asset_types"
    collection_key = "capital_asset_types"
    item_key = "capital_asset_type"
    model = CapitalAssetType
    volatility = VolatilityClass.REFERENCE_DATA
