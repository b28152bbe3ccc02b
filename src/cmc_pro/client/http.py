"""Synchronous HTTP transport for the CoinMarketCap Pro API.

Wraps a single ``httpx.Client``.  Endpoint names are resolved to versioned
URL paths through the endpoint registry (``cryptocurrency/info`` is served
under ``/v2``, ``fiat/map`` under ``/v1``); unregistered names default to
``/v1``.

Retry policy: only :class:`~cmc_pro.core.exceptions.UpstreamError` (HTTP 5xx)
and :class:`~cmc_pro.core.exceptions.NetworkError` are retried, up to
``retry_times`` attempts in total with a fixed ``retry_delay_ms`` pause.
Authentication, credit and rate-limit refusals are raised immediately.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping, Optional

import httpx

from cmc_pro.client.validator import ResponseValidator
from cmc_pro.config.endpoints import canonical_endpoint, lookup_endpoint
from cmc_pro.core.event_bus import API_CALL_MADE, API_ERROR, API_RETRY_ATTEMPT, EventBus
from cmc_pro.core.exceptions import ApiError, NetworkError, UpstreamError

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-CMC_PRO_API_KEY"


def endpoint_url_path(endpoint: str) -> str:
    """Return the versioned URL path, e.g. ``/v2/cryptocurrency/quotes/latest``."""
    spec = lookup_endpoint(endpoint)
    if spec is not None:
        return spec.url_path
    return f"/v1/{canonical_endpoint(endpoint)}"


def encode_params(params: Mapping[str, Any]) -> dict[str, str]:
    """Flatten parameters for the query string.

    Lists are comma-joined, booleans lowercased and ``None`` values dropped.
    """
    encoded: dict[str, str] = {}
    for name, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple, set)):
            encoded[name] = ",".join(str(v) for v in value)
        elif isinstance(value, bool):
            encoded[name] = "true" if value else "false"
        else:
            encoded[name] = str(value)
    return encoded


class CoinMarketCapClient:
    """Sends authenticated GET requests and validates the responses.

    Args:
        api_key: Pro API key.
        base_url: API host.
        timeout: Per-request timeout in seconds.
        retry_times: Total attempts for retryable failures (at least 1).
        retry_delay_ms: Pause between attempts.
        events: Receives ``api.*`` notifications.  Optional.
        http_client: Pre-built client, mainly for tests.  When given it is
            used as-is and not closed by :meth:`close`.
        validator: Response classifier.
        sleep: Called with seconds between retry attempts.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://pro-api.coinmarketcap.com",
        timeout: float = 30.0,
        retry_times: int = 3,
        retry_delay_ms: int = 1000,
        events: Optional[EventBus] = None,
        http_client: Optional[httpx.Client] = None,
        validator: Optional[ResponseValidator] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._retry_times = max(1, retry_times)
        self._retry_delay = retry_delay_ms / 1000
        self._events = events
        self._validator = validator or ResponseValidator()
        self._sleep = sleep
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(
            base_url=base_url,
            timeout=timeout,
            headers={API_KEY_HEADER: api_key, "Accept": "application/json"},
        )

    @property
    def validator(self) -> ResponseValidator:
        return self._validator

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> CoinMarketCapClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def get(self, endpoint: str, params: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
        """Call *endpoint* and return the validated response body.

        Args:
            endpoint: Registered endpoint path such as ``cryptocurrency/map``.
            params: Query parameters; see :func:`encode_params`.

        Returns:
            The full body including ``status`` and ``data``.

        Raises:
            ApiError: Any subclass, after retries are exhausted for the
                retryable ones.
        """
        path = endpoint_url_path(endpoint)
        query = encode_params(params or {})

        attempt = 0
        while True:
            attempt += 1
            started = time.monotonic()
            try:
                body = self._send(path, query)
            except (UpstreamError, NetworkError) as exc:
                if attempt >= self._retry_times:
                    self._report_error(endpoint, exc, attempt)
                    raise
                logger.warning(
                    "client: retrying request",
                    extra={"endpoint": endpoint, "attempt": attempt, "error": str(exc)},
                )
                self._publish(
                    API_RETRY_ATTEMPT,
                    {"endpoint": endpoint, "attempt": attempt, "max_attempts": self._retry_times, "error": str(exc)},
                )
                self._sleep(self._retry_delay)
                continue
            except ApiError as exc:
                self._report_error(endpoint, exc, attempt)
                raise

            duration_ms = (time.monotonic() - started) * 1000
            credits = self._validator.extract_credit_usage(body)
            logger.debug(
                "client: request succeeded",
                extra={"endpoint": endpoint, "duration_ms": round(duration_ms, 2), "credits": credits},
            )
            self._publish(
                API_CALL_MADE,
                {
                    "endpoint": endpoint,
                    "params": query,
                    "duration_ms": round(duration_ms, 2),
                    "credits": credits,
                    "attempt": attempt,
                },
            )
            return body

    def _send(self, path: str, query: dict[str, str]) -> dict[str, Any]:
        try:
            response = self._http.get(path, params=query)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"Request timed out: {path}") from exc
        except httpx.RequestError as exc:
            raise NetworkError(f"Request failed: {path}: {exc}") from exc
        return self._validator.validate(response)

    def _report_error(self, endpoint: str, exc: ApiError, attempt: int) -> None:
        self._publish(
            API_ERROR,
            {
                "endpoint": endpoint,
                "error_type": type(exc).__name__,
                "message": str(exc),
                "api_code": exc.api_code,
                "attempt": attempt,
            },
        )

    def _publish(self, name: str, payload: dict[str, Any]) -> None:
        if self._events is not None:
            self._events.publish(name, payload)
