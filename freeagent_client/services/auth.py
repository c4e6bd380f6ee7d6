"""Authentication provider interface.

Token acquisition and refresh live outside this package; the transport only
needs a bearer token before each request and, on a 401, one forced refresh.
"""

from typing import Optional, Protocol, runtime_checkable

from freeagent_client.core.config import settings
from freeagent_client.core.errors import ConfigurationError


@runtime_checkable
class AuthenticationProvider(Protocol):
    """Supplies bearer tokens for outgoing requests."""

    async def get_access_token(self, force_refresh: bool = False) -> str:
        """Return a valid access token, refreshing it when forced."""
        ...


class StaticTokenProvider:
    """Provider for a pre-issued access token.

    Cannot refresh: a forced refresh returns the same token, so a 401 after
    the replay surfaces as an authentication error.
    """

    def __init__(self, access_token: Optional[str] = None):
        token = access_token if access_token is not None else settings.access_token
        if not token:
            raise ConfigurationError(
                "No FreeAgent access token configured. Set FREEAGENT_ACCESS_TOKEN "
                "or pass an authentication provider."
            )
        self._access_token = token

    async def get_access_token(self, force_refresh: bool = False) -> str:
        return self._access_token
