"""Paginated fetch accumulator.

FreeAgent collection endpoints return one page per response and advertise
the following page in the ``Link`` header (``rel='next'``). The fetcher
follows those links verbatim until none remains, keeping server order.

Guarantees:
- Page order is preserved; flattening concatenates in arrival order.
- A page URL seen twice in one fetch raises ``PaginationCycleError``.
- Any failure aborts the whole fetch; pages already fetched are discarded.
- No caching happens here.
"""

from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from freeagent_client.core.config import settings
from freeagent_client.core.errors import (
    DecodeFailure,
    HttpRequestFailure,
    PaginationCycleError,
    TransportFailure,
)
from freeagent_client.core.logging import LoggerAdapter, get_logger
from freeagent_client.services.transport import Transport

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


class PageEnvelope(BaseModel, Generic[T]):
    """One decoded page of a collection response."""

    items: List[T]
    next_url: Optional[str] = None


class EnvelopeDecoder(Generic[T]):
    """Decodes a collection response such as ``{"contacts": [...]}``.

    Args:
        collection_key: Top-level JSON key holding the page's items
        model: pydantic model each item is validated into
    """

    def __init__(self, collection_key: str, model: Type[T]):
        self.collection_key = collection_key
        self.model = model

    def decode(self, response: httpx.Response, page_index: Optional[int] = None) -> PageEnvelope[T]:
        endpoint = str(response.request.url)
        try:
            body = response.json()
        except ValueError as e:
            raise DecodeFailure(
                f"Response from {endpoint} is not valid JSON: {e}",
                endpoint=endpoint,
                status_code=response.status_code,
                page_index=page_index,
            ) from e

        if not isinstance(body, dict):
            raise DecodeFailure(
                f"Expected a JSON object from {endpoint}, got {type(body).__name__}",
                endpoint=endpoint,
                status_code=response.status_code,
                page_index=page_index,
            )

        if self.collection_key not in body:
            raise DecodeFailure(
                f"Response from {endpoint} has no '{self.collection_key}' collection",
                endpoint=endpoint,
                status_code=response.status_code,
                page_index=page_index,
            )

        raw_items = body[self.collection_key] or []
        if not isinstance(raw_items, list):
            raise DecodeFailure(
                f"Expected '{self.collection_key}' to be a list in response from {endpoint}",
                endpoint=endpoint,
                status_code=response.status_code,
                page_index=page_index,
            )

        try:
            items = [self.model.model_validate(item) for item in raw_items]
        except ValidationError as e:
            raise DecodeFailure(
                f"Invalid {self.model.__name__} in response from {endpoint}: {e}",
                endpoint=endpoint,
                status_code=response.status_code,
                page_index=page_index,
            ) from e

        next_url = response.links.get("next", {}).get("url") or None
        return PageEnvelope[self.model](items=items, next_url=next_url)


class PagedFetcher:
    """Follows ``next`` links until a collection is exhausted."""

    def __init__(self, transport: Transport, page_size: Optional[int] = None):
        """Initialize PagedFetcher.

        Args:
            transport: Transport used for every page request
            page_size: ``per_page`` sent with the first request. Later pages
                use the server's link, which already carries it.
        """
        self.transport = transport
        self.page_size = page_size if page_size is not None else settings.page_size

    async def fetch_all_pages(
        self,
        initial_url: str,
        decoder: EnvelopeDecoder[T],
        params: Optional[Dict[str, Any]] = None,
    ) -> List[PageEnvelope[T]]:
        """Fetch every page of a collection.

        Args:
            initial_url: Endpoint path or absolute URL of the first page
            decoder: Decoder for the collection's envelope
            params: Optional query parameters for the first request

        Returns:
            Decoded envelopes in page-arrival order

        Raises:
            HttpRequestFailure: On a non-success status, with ``page_index`` set
            DecodeFailure: On an undecodable page, with ``page_index`` set
            PaginationCycleError: If a page URL repeats within this fetch
        """
        session_logger = LoggerAdapter(logger, {"endpoint": initial_url})
        request_params: Optional[Dict[str, Any]] = {"per_page": self.page_size, **(params or {})}
        url: Optional[str] = self.transport.resolve_url(initial_url)
        # A link back to page 1 may omit the per_page we added, or every param
        first_page_aliases = {url, str(httpx.URL(url).copy_merge_params(params or {}))}

        envelopes: List[PageEnvelope[T]] = []
        seen: set = set()
        page_index = 0

        while url:
            page_identity = str(httpx.URL(url).copy_merge_params(request_params or {}))
            if page_identity in seen:
                raise PaginationCycleError(page_identity, page_index)
            seen.add(page_identity)
            if page_index == 0:
                seen.update(first_page_aliases)

            try:
                response = await self.transport.send("GET", url, params=request_params)
            except TransportFailure as e:
                e.details["page_index"] = page_index
                if isinstance(e, HttpRequestFailure):
                    e.page_index = page_index
                session_logger.warning(f"Page {page_index} failed, discarding {len(envelopes)} fetched pages: {e}")
                raise

            envelope = decoder.decode(response, page_index=page_index)
            envelopes.append(envelope)
            session_logger.debug(f"Fetched page {page_index} with {len(envelope.items)} items")

            # Follow the server's link exactly as given
            url = envelope.next_url
            request_params = None
            page_index += 1

        return envelopes

    async def fetch_all(
        self,
        initial_url: str,
        decoder: EnvelopeDecoder[T],
        params: Optional[Dict[str, Any]] = None,
    ) -> List[T]:
        """Fetch every page and flatten the items in server order."""
        envelopes = await self.fetch_all_pages(initial_url, decoder, params=params)
        return [item for envelope in envelopes for item in envelope.items]
