"""Classification of CoinMarketCap responses into data or typed errors.

Every response body has the shape::

    {
        "status": {
            "timestamp": "2026-10-19T08:15:00.000Z",
            "error_code": 0,
            "error_message": null,
            "elapsed": 12,
            "credit_count": 1
        },
        "data": {...} | [...]
    }

HTTP status is checked first, then the ``status.error_code`` reported in the
body, then the structure of the ``status`` block itself.  ``credit_count`` is
required on successful responses because it is the authoritative cost of the
call.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from cmc_pro.core.exceptions import (
    ApiAuthenticationError,
    CreditLimitExceededError,
    InvalidResponseError,
    RateLimitExceededError,
    UpstreamError,
)

logger = logging.getLogger(__name__)

_AUTH_CODES = frozenset({1001, 1002})
_RATE_LIMIT_CODES = frozenset({1003, 1004, 1005})
_CREDIT_LIMIT_CODE = 1006

_DEFAULT_RETRY_AFTER = 60.0


class ResponseStatus(BaseModel):
    """The ``status`` block of an API response."""

    model_config = ConfigDict(extra="allow")

    timestamp: str
    error_code: int
    error_message: Optional[str] = None
    elapsed: int = 0
    credit_count: Optional[int] = None
    notice: Optional[str] = None


class ResponseValidator:
    """Turns an ``httpx.Response`` into a validated body or raises."""

    def validate(self, response: httpx.Response) -> dict[str, Any]:
        """Return the decoded body of a successful response.

        Raises:
            ApiAuthenticationError: HTTP 401/403 or API codes 1001/1002.
            CreditLimitExceededError: HTTP 402 or API code 1006.
            RateLimitExceededError: HTTP 429 or API codes 1003-1005.
            UpstreamError: HTTP 5xx.
            InvalidResponseError: Undecodable or malformed bodies, other 4xx
                and unknown API error codes.
        """
        body = self._decode(response)
        self.check_http_errors(response, body)
        self.check_api_errors(body, response.status_code)
        self.validate_structure(body)
        return body

    @staticmethod
    def _decode(response: httpx.Response) -> Optional[dict[str, Any]]:
        try:
            body = response.json()
        except ValueError:
            if response.is_success:
                raise InvalidResponseError(
                    f"Invalid JSON response (HTTP {response.status_code})"
                ) from None
            return None
        if not isinstance(body, dict):
            if response.is_success:
                raise InvalidResponseError("Response body is not a JSON object")
            return None
        return body

    def check_http_errors(self, response: httpx.Response, body: Optional[dict[str, Any]]) -> None:
        code = response.status_code
        if code < 400:
            return
        api_code, api_message = _status_fields(body)
        message = api_message or f"HTTP {code}"

        if code in (401, 403):
            raise ApiAuthenticationError(message, api_code=api_code, api_message=api_message)
        if code == 402:
            raise CreditLimitExceededError(message, api_code=api_code, api_message=api_message)
        if code == 429:
            raise RateLimitExceededError(
                message,
                retry_after=_retry_after(response),
                api_code=api_code,
                api_message=api_message,
            )
        if code >= 500:
            raise UpstreamError(f"Server error (HTTP {code}): {message}", api_code=api_code, api_message=api_message)
        raise InvalidResponseError(f"Client error (HTTP {code}): {message}", api_code=api_code, api_message=api_message)

    def check_api_errors(self, body: Optional[dict[str, Any]], http_status: int = 200) -> None:
        if not body:
            raise InvalidResponseError(f"Empty response data (HTTP {http_status})")
        if not isinstance(body.get("status"), dict):
            raise InvalidResponseError("Response missing status field")

        api_code, api_message = _status_fields(body)
        if not api_code:
            return
        message = api_message or f"API error {api_code}"
        if api_code in _AUTH_CODES:
            raise ApiAuthenticationError(message, api_code=api_code, api_message=api_message)
        if api_code in _RATE_LIMIT_CODES:
            raise RateLimitExceededError(message, api_code=api_code, api_message=api_message)
        if api_code == _CREDIT_LIMIT_CODE:
            raise CreditLimitExceededError(message, api_code=api_code, api_message=api_message)
        raise InvalidResponseError(f"API error {api_code}: {message}", api_code=api_code, api_message=api_message)

    def validate_structure(self, body: dict[str, Any]) -> ResponseStatus:
        try:
            status = ResponseStatus.model_validate(body.get("status"))
        except ValidationError as exc:
            missing = ", ".join(str(err["loc"][0]) for err in exc.errors() if err.get("loc"))
            raise InvalidResponseError(f"Response status is malformed: {missing or exc}") from exc
        if status.error_code == 0 and status.credit_count is None:
            raise InvalidResponseError("Response status missing 'credit_count' field")
        return status

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    @staticmethod
    def extract_credit_usage(body: dict[str, Any]) -> int:
        """Return ``status.credit_count``, or 1 when the API did not report it."""
        value = (body.get("status") or {}).get("credit_count")
        if value is None:
            return 1
        return int(value)

    @staticmethod
    def is_success_response(body: dict[str, Any]) -> bool:
        return (body.get("status") or {}).get("error_code") == 0

    @staticmethod
    def extract_data(body: dict[str, Any]) -> Any:
        data = body.get("data")
        return data if data is not None else {}

    @staticmethod
    def extract_pagination_info(body: dict[str, Any]) -> Optional[dict[str, Any]]:
        return (body.get("status") or {}).get("pagination")


def _status_fields(body: Optional[dict[str, Any]]) -> tuple[Optional[int], Optional[str]]:
    status = (body or {}).get("status")
    if not isinstance(status, dict):
        return None, None
    code = status.get("error_code")
    try:
        api_code = int(code) if code is not None else None
    except (TypeError, ValueError):
        api_code = None
    return api_code, status.get("error_message")


def _retry_after(response: httpx.Response) -> float:
    header = response.headers.get("Retry-After")
    if header is None:
        return _DEFAULT_RETRY_AFTER
    try:
        return max(0.0, float(header))
    except ValueError:
        logger.debug("validator: unparseable Retry-After header", extra={"value": header})
        return _DEFAULT_RETRY_AFTER
