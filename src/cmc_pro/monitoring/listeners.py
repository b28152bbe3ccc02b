"""Default notification listeners: structured logs plus Prometheus metrics.

:func:`register_default_listeners` is called by :func:`cmc_pro.factory.build_provider`
on the bus it creates.  Listeners run inside :meth:`EventBus.publish`, which
already shields callers from listener failures.
"""

from __future__ import annotations

import logging
from typing import Any

from cmc_pro.core.event_bus import (
    API_CALL_MADE,
    API_ERROR,
    API_RETRY_ATTEMPT,
    CREDIT_CONSUMED,
    CREDIT_WARNING,
    RATE_LIMIT_DAILY,
    RATE_LIMIT_MINUTE,
    EventBus,
)
from cmc_pro.monitoring.metrics import (
    api_request_duration_seconds,
    api_requests_total,
    credit_usage_ratio,
    credits_consumed_total,
)

logger = logging.getLogger(__name__)


def on_api_call_made(name: str, message: dict[str, Any]) -> None:
    endpoint = str(message.get("endpoint", "unknown"))
    api_requests_total.labels(endpoint=endpoint, status="success").inc()
    api_request_duration_seconds.labels(endpoint=endpoint).observe(float(message.get("duration_ms", 0.0)) / 1000)
    logger.debug(
        "api: call made",
        extra={
            "endpoint": endpoint,
            "credits": message.get("credits"),
            "duration_ms": message.get("duration_ms"),
            "attempt": message.get("attempt"),
        },
    )


def on_api_error(name: str, message: dict[str, Any]) -> None:
    endpoint = str(message.get("endpoint", "unknown"))
    api_requests_total.labels(endpoint=endpoint, status=str(message.get("error_type", "error"))).inc()
    logger.error(
        "api: call failed",
        extra={
            "endpoint": endpoint,
            "error_type": message.get("error_type"),
            "api_code": message.get("api_code"),
            "error": message.get("message"),
        },
    )


def on_api_retry(name: str, message: dict[str, Any]) -> None:
    logger.info("api: retry scheduled", extra={k: v for k, v in message.items() if k != "event"})


def on_credit_consumed(name: str, message: dict[str, Any]) -> None:
    credits_consumed_total.labels(endpoint=str(message.get("endpoint", "unknown"))).inc(int(message.get("credits", 0)))
    credit_usage_ratio.set(float(message.get("usage_percentage", 0.0)))


def on_credit_warning(name: str, message: dict[str, Any]) -> None:
    logger.warning(
        "credits: warning threshold exceeded",
        extra={
            "usage_percentage": message.get("usage_percentage"),
            "warning_threshold": message.get("warning_threshold"),
            "remaining_credits": message.get("remaining_credits"),
        },
    )


def on_rate_limit(name: str, message: dict[str, Any]) -> None:
    logger.warning("rate limit reached: %s", name, extra={k: v for k, v in message.items() if k != "event"})


def register_default_listeners(bus: EventBus) -> None:
    """Subscribe the logging and metrics listeners to *bus*."""
    bus.subscribe(API_CALL_MADE, on_api_call_made)
    bus.subscribe(API_ERROR, on_api_error)
    bus.subscribe(API_RETRY_ATTEMPT, on_api_retry)
    bus.subscribe(CREDIT_CONSUMED, on_credit_consumed)
    bus.subscribe(CREDIT_WARNING, on_credit_warning)
    bus.subscribe(RATE_LIMIT_DAILY, on_rate_limit)
    bus.subscribe(RATE_LIMIT_MINUTE, on_rate_limit)
