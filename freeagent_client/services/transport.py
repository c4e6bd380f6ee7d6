"""HTTP transport for the FreeAgent API.

Wraps one lazily created ``httpx.AsyncClient`` and provides:
- Bearer authentication from an ``AuthenticationProvider``
- One forced token refresh and replay on the first 401 of a request
- Mapping of non-success statuses onto the client's exception taxonomy
- Exponential backoff for connection failures and 5xx responses

Callers above this layer (pagination, resources, reports) never retry.
"""

import asyncio
from typing import Any, Optional

import httpx

from freeagent_client.core.config import Settings, settings
from freeagent_client.core.errors import (
    FreeAgentAuthenticationError,
    FreeAgentConnectionError,
    FreeAgentError,
    FreeAgentForbiddenError,
    FreeAgentServerError,
    FreeAgentValidationError,
    HttpRequestFailure,
)
from freeagent_client.core.logging import get_logger
from freeagent_client.services.auth import AuthenticationProvider

logger = get_logger(__name__)

JSON_MEDIA_TYPE = "application/json"


def raise_for_status(response: httpx.Response) -> None:
    """Raise the client exception matching a non-success response.

    Args:
        response: HTTP response to check

    Raises:
        FreeAgentAuthenticationError: For 401 responses
        FreeAgentForbiddenError: For 403 responses
        FreeAgentValidationError: For 422 responses
        FreeAgentServerError: For 5xx responses
        HttpRequestFailure: For any other non-success response
    """
    if response.is_success:
        return

    status = response.status_code
    try:
        url = str(response.request.url)
    except RuntimeError:
        # Response built without a request
        url = None

    try:
        error_detail = response.json()
        errors = error_detail.get("errors") if isinstance(error_detail, dict) else None
        if isinstance(errors, dict):
            message = errors.get("message", response.text)
        elif isinstance(errors, list) and errors:
            message = "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
        else:
            message = response.text or f"HTTP {status}"
    except ValueError:
        message = response.text or f"HTTP {status}"

    if status == 401:
        raise FreeAgentAuthenticationError(
            f"Authentication failed: {message}. Check the access token.", status, url
        )
    elif status == 403:
        raise FreeAgentForbiddenError(
            f"Access forbidden: {message}. The user may lack the required access level.", status, url
        )
    elif status == 422:
        raise FreeAgentValidationError(f"Validation error: {message}", status, url)
    elif status >= 500:
        raise FreeAgentServerError(f"Server error ({status}): {message}", status, url)
    else:
        raise HttpRequestFailure(f"API error ({status}): {message}", status, url)


class Transport:
    """Authenticated, retrying HTTP transport.

    Example:
        ```python
        transport = Transport(StaticTokenProvider("token"))
        async with transport:
            response = await transport.send("GET", "contacts", params={"view": "active"})
        ```
    """

    def __init__(
        self,
        auth: AuthenticationProvider,
        base_url: Optional[str] = None,
        config: Optional[Settings] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Transport.

        Args:
            auth: Provider of bearer tokens
            base_url: API base URL. Defaults to the configured environment.
            config: Settings override, mainly for tests
            http_transport: Optional httpx transport (e.g. ``httpx.MockTransport``)
        """
        self.config = config or settings
        self.auth = auth
        self.base_url = (base_url or self.config.base_url).rstrip("/") + "/"
        self.max_retries = self.config.max_retries
        self.initial_retry_delay = self.config.initial_retry_delay
        self.max_retry_delay = self.config.max_retry_delay
        self._http_transport = http_transport
        self._access_token: Optional[str] = None

        # HTTP client will be created lazily
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.request_timeout),
                transport=self._http_transport,
                headers={
                    "User-Agent": self.config.user_agent,
                    "Accept": JSON_MEDIA_TYPE,
                    "Content-Type": JSON_MEDIA_TYPE,
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "Transport":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def resolve_url(self, endpoint: str) -> str:
        """Absolute URL for an endpoint path; absolute URLs pass through."""
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return f"{self.base_url}{endpoint.lstrip('/')}"

    async def ensure_authorized(self, force_refresh: bool = False) -> str:
        """Make sure a bearer token is available before sending."""
        if self._access_token is None or force_refresh:
            self._access_token = await self.auth.get_access_token(force_refresh=force_refresh)
        return self._access_token

    async def _send_once(
        self,
        method: str,
        url: str,
        params: Optional[dict],
        json_data: Optional[Any],
    ) -> httpx.Response:
        client = await self._get_client()
        token = await self.ensure_authorized()
        response = await client.request(
            method=method,
            url=url,
            params=params,
            json=json_data,
            headers={"Authorization": f"Bearer {token}"},
        )

        if response.status_code == 401:
            # Access tokens expire; refresh once and replay before giving up
            logger.info(f"Received 401 for {method} {url}, refreshing access token")
            token = await self.ensure_authorized(force_refresh=True)
            response = await client.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                headers={"Authorization": f"Bearer {token}"},
            )

        raise_for_status(response)
        return response

    async def send(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_data: Optional[Any] = None,
        max_retries: Optional[int] = None,
    ) -> httpx.Response:
        """Make an HTTP request with exponential backoff retry.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            endpoint: Endpoint path relative to the base URL, or an absolute URL
            params: Optional query parameters
            json_data: Optional JSON body
            max_retries: Optional max retry count override

        Returns:
            Successful HTTP response

        Raises:
            FreeAgentConnectionError: If the server cannot be reached after all retries,
                or on any other httpx failure (not retried)
            HttpRequestFailure: For non-success statuses
        """
        max_retries = max_retries if max_retries is not None else self.max_retries
        url = self.resolve_url(endpoint)
        last_exception: Optional[FreeAgentError] = None

        for attempt in range(max_retries + 1):
            try:
                return await self._send_once(method, url, params, json_data)
            except httpx.TransportError as e:
                last_exception = FreeAgentConnectionError(
                    f"Request to FreeAgent failed ({method} {url}): {e}",
                    details={"url": url},
                )
                reason = "Connection failed"
            except httpx.HTTPError as e:
                # Undecodable bodies, redirect loops: replaying will not help
                raise FreeAgentConnectionError(
                    f"Request to FreeAgent failed ({method} {url}): {e}",
                    details={"url": url},
                ) from e
            except FreeAgentServerError as e:
                last_exception = e
                reason = "Server error"

            if attempt < max_retries:
                delay = min(self.initial_retry_delay * (2 ** attempt), self.max_retry_delay)
                logger.warning(
                    f"{reason}, retrying in {delay}s "
                    f"(attempt {attempt + 1}/{max_retries + 1}): {last_exception}"
                )
                await asyncio.sleep(delay)

        # All retries exhausted
        raise last_exception
