"""Error taxonomy with error codes and suggested actions.

Every exception raised by the client derives from ``FreeAgentError`` and
carries a machine-readable ``ErrorCode`` plus a suggested action, so callers
can surface actionable diagnostics without string matching.

Failure classes:
- Transport failures (connection errors, non-2xx statuses) abort the
  current operation immediately.
- Decode failures (unexpected response shape) abort the current operation.
- Not-found failures are raised for by-id lookups that return nothing.
- Partial batch failures are recorded per item and never propagated.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Standardized error codes for the client."""

    # Transport errors
    CONNECTION_ERROR = "CONNECTION_ERROR"
    HTTP_ERROR = "HTTP_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    FORBIDDEN = "FORBIDDEN"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SERVER_ERROR = "SERVER_ERROR"

    # Response errors
    DECODE_ERROR = "DECODE_ERROR"
    NOT_FOUND = "NOT_FOUND"
    PAGINATION_CYCLE = "PAGINATION_CYCLE"

    # Batch errors
    PARTIAL_BATCH_FAILURE = "PARTIAL_BATCH_FAILURE"

    # General errors
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Suggested actions for common errors
SUGGESTED_ACTIONS = {
    ErrorCode.CONNECTION_ERROR: "Cannot reach the FreeAgent API. Check network access and the configured base URL.",
    ErrorCode.HTTP_ERROR: "The FreeAgent API rejected the request. Check the request parameters.",
    ErrorCode.AUTH_ERROR: "FreeAgent authentication failed. Refresh or re-issue the access token.",
    ErrorCode.FORBIDDEN: "The access token lacks permission for this resource. Check the user's access level.",
    ErrorCode.VALIDATION_ERROR: "FreeAgent rejected the submitted data. Review and correct the entity fields.",
    ErrorCode.SERVER_ERROR: "FreeAgent returned a server error. Try again later.",
    ErrorCode.DECODE_ERROR: "The FreeAgent response had an unexpected shape. Check the endpoint and API version.",
    ErrorCode.NOT_FOUND: "The requested FreeAgent resource does not exist.",
    ErrorCode.PAGINATION_CYCLE: "The API returned a page link that was already fetched. Report the endpoint to FreeAgent support.",
    ErrorCode.PARTIAL_BATCH_FAILURE: "One item in a batch could not be processed. The remaining items were processed normally.",
    ErrorCode.CONFIGURATION_ERROR: "The client is misconfigured. Check FREEAGENT_* settings.",
    ErrorCode.INTERNAL_ERROR: "An internal error occurred.",
}

# Retryable error codes
RETRYABLE_ERRORS = {
    ErrorCode.CONNECTION_ERROR,
    ErrorCode.SERVER_ERROR,
}


class FreeAgentError(Exception):
    """Base exception for FreeAgent client errors."""

    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def suggested_action(self) -> Optional[str]:
        return SUGGESTED_ACTIONS.get(self.error_code)

    @property
    def is_retryable(self) -> bool:
        return self.error_code in RETRYABLE_ERRORS

    def to_dict(self) -> Dict[str, Any]:
        """Standardized diagnostic representation of the error."""
        return {
            "error_code": self.error_code.value,
            "message": self.message,
            "details": self.details,
            "suggested_action": self.suggested_action,
            "is_retryable": self.is_retryable,
        }


class ConfigurationError(FreeAgentError):
    """Raised when the client is missing required configuration."""

    error_code = ErrorCode.CONFIGURATION_ERROR


# =============================================================================
# Transport failures
# =============================================================================


class TransportFailure(FreeAgentError):
    """Base class for network and HTTP status failures."""

    error_code = ErrorCode.HTTP_ERROR


class FreeAgentConnectionError(TransportFailure):
    """Raised when the connection to FreeAgent fails or times out."""

    error_code = ErrorCode.CONNECTION_ERROR


class HttpRequestFailure(TransportFailure):
    """Raised for any non-success HTTP status.

    Attributes:
        status_code: HTTP status returned by the server
        url: Request URL
        page_index: 0-based page index when raised during a paginated fetch
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        url: Optional[str] = None,
        page_index: Optional[int] = None,
    ):
        super().__init__(
            message,
            details={"status_code": status_code, "url": url, "page_index": page_index},
        )
        self.status_code = status_code
        self.url = url
        self.page_index = page_index


class FreeAgentAuthenticationError(HttpRequestFailure):
    """Raised when authentication fails (401)."""

    error_code = ErrorCode.AUTH_ERROR


class FreeAgentForbiddenError(HttpRequestFailure):
    """Raised when access is forbidden (403)."""

    error_code = ErrorCode.FORBIDDEN


class FreeAgentValidationError(HttpRequestFailure):
    """Raised when request validation fails (422)."""

    error_code = ErrorCode.VALIDATION_ERROR


class FreeAgentServerError(HttpRequestFailure):
    """Raised when the server returns a 5xx status."""

    error_code = ErrorCode.SERVER_ERROR


# =============================================================================
# Response failures
# =============================================================================


class DecodeFailure(FreeAgentError):
    """Raised when a response body cannot be decoded into the expected shape."""

    error_code = ErrorCode.DECODE_ERROR

    def __init__(
        self,
        message: str,
        endpoint: str,
        status_code: Optional[int] = None,
        page_index: Optional[int] = None,
    ):
        super().__init__(
            message,
            details={"endpoint": endpoint, "status_code": status_code, "page_index": page_index},
        )
        self.endpoint = endpoint
        self.status_code = status_code
        self.page_index = page_index


class NotFoundFailure(FreeAgentError):
    """Raised when a by-id lookup returns no entity."""

    error_code = ErrorCode.NOT_FOUND

    def __init__(self, message: str, resource: str, identifier: str):
        super().__init__(message, details={"resource": resource, "identifier": identifier})
        self.resource = resource
        self.identifier = identifier


class PaginationCycleError(FreeAgentError):
    """Raised when a paginated fetch is handed a page URL it already fetched."""

    error_code = ErrorCode.PAGINATION_CYCLE

    def __init__(self, url: str, page_index: int):
        super().__init__(
            f"Page {url} was requested twice in one fetch (at page {page_index})",
            details={"url": url, "page_index": page_index},
        )
        self.url = url
        self.page_index = page_index


# =============================================================================
# Batch failures
# =============================================================================


class PartialBatchFailure(FreeAgentError):
    """Records one failed item of a batch that otherwise completed.

    Never raised out of the batch; collected for diagnostics.
    """

    error_code = ErrorCode.PARTIAL_BATCH_FAILURE

    def __init__(self, item: str, cause: Exception):
        super().__init__(
            f"Batch item {item} failed: {cause}",
            details={"item": item, "cause": type(cause).__name__},
        )
        self.item = item
        self.cause = cause
