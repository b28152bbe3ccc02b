"""Exception hierarchy for cmc-pro.

All custom exceptions subclass ``CoinMarketCapError``, enabling consistent
error handling and structured logging across the package.

The decision components (plan, credit, cache strategy, optimizer, analytics)
never raise for ordinary decisions: they answer with booleans or decision
objects.  Exceptions are reserved for the API boundary and for callers that
attempt a metered call without budget.

Hierarchy::

    CoinMarketCapError           (api_code, api_message)
    ├── ApiError
    │   ├── ApiAuthenticationError
    │   ├── CreditLimitExceededError   (required, available)
    │   ├── RateLimitExceededError     (retry_after: float)
    │   ├── InvalidResponseError
    │   └── UpstreamError
    │       └── NetworkError
    ├── CreditReservationError
    ├── StoreError
    └── UnknownStrategyError     (also a ValueError)
"""

from __future__ import annotations


class CoinMarketCapError(Exception):
    """Base class for all cmc-pro exceptions.

    Args:
        message: Human-readable description of the failure.
        api_code: ``status.error_code`` reported by the API, when there is one.
        api_message: ``status.error_message`` reported by the API.
    """

    def __init__(
        self,
        message: str,
        api_code: int | None = None,
        api_message: str | None = None,
    ) -> None:
        super().__init__(message)
        self.api_code = api_code
        self.api_message = api_message


# ---------------------------------------------------------------------------
# API boundary exceptions
# ---------------------------------------------------------------------------


class ApiError(CoinMarketCapError):
    """Raised when the API (or the local gate in front of it) refuses a call."""

    retryable: bool = False


class ApiAuthenticationError(ApiError):
    """Raised on HTTP 401/403 or API codes 1001/1002.

    The API key is missing, invalid or lacks access to the endpoint.  Never
    retried.
    """


class CreditLimitExceededError(ApiError):
    """Raised when the monthly credit quota would be breached.

    Raised locally when a call is attempted without budget and no cached
    entry can stand in, and mapped from HTTP 402 / API code 1006.

    Args:
        message: Description of the failure.
        required: Credits the call needed.
        available: Credits left in the current period.
    """

    def __init__(
        self,
        message: str,
        required: int | None = None,
        available: int | None = None,
        api_code: int | None = None,
        api_message: str | None = None,
    ) -> None:
        super().__init__(message, api_code=api_code, api_message=api_message)
        self.required = required
        self.available = available


class RateLimitExceededError(ApiError):
    """Raised when the per-minute or per-day call cap is exhausted.

    Transient: callers may retry after ``retry_after`` seconds.

    Args:
        message: Description of the rate limit.
        retry_after: Seconds to wait before retrying.  Defaults to 60.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        retry_after: float = 60.0,
        api_code: int | None = None,
        api_message: str | None = None,
    ) -> None:
        super().__init__(message, api_code=api_code, api_message=api_message)
        self.retry_after = retry_after


class InvalidResponseError(ApiError):
    """Raised for malformed JSON, a missing ``status`` block, client errors
    (4xx other than auth/credit/rate) and unknown API error codes."""


class UpstreamError(ApiError):
    """Raised for HTTP 5xx responses.  Retryable with backoff."""

    retryable = True


class NetworkError(UpstreamError):
    """Raised when the transport fails before a response is received."""


# ---------------------------------------------------------------------------
# Internal exceptions
# ---------------------------------------------------------------------------


class CreditReservationError(CoinMarketCapError):
    """Raised when a credit reservation is settled or released twice."""


class StoreError(CoinMarketCapError):
    """Raised by a cache store backend when the underlying storage fails.

    Always caught by the cache and credit components, logged, and treated as
    a miss or a no-op.
    """


class UnknownStrategyError(CoinMarketCapError, ValueError):
    """Raised when selecting a cache strategy profile that does not exist.

    Args:
        name: The requested profile name.
    """

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown strategy: {name}")
        self.name = name
