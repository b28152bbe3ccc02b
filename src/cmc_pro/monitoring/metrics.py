"""Prometheus metrics for the CoinMarketCap client.

All metrics are module-level singletons registered on the default
``REGISTRY`` at import time.

Metrics defined here:

  cmc_api_requests_total{endpoint, status}
      Counter: API calls by endpoint and outcome (``success`` or the
      exception class name of the failure).

  cmc_api_request_duration_seconds{endpoint}
      Histogram: wall-clock latency of successful API calls, retries
      included.

  cmc_credits_consumed_total{endpoint}
      Counter: credits recorded against the monthly quota.

  cmc_credit_usage_ratio
      Gauge: used credits / monthly quota after the latest consumption.

  cmc_cache_events_total{event}
      Counter: provider-level cache outcomes (hit, miss, store).

  cmc_celery_tasks_total{task_name, status}
      Counter: worker task completions by task name and outcome.

  cmc_celery_task_duration_seconds{task_name}
      Histogram: worker task wall-clock duration in seconds.

Usage::

    from cmc_pro.monitoring.metrics import cache_events_total
    cache_events_total.labels(event="hit").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# API metrics (populated by listeners.py from api.* notifications)
# ---------------------------------------------------------------------------

api_requests_total: Counter = Counter(
    "cmc_api_requests_total",
    "CoinMarketCap API calls by endpoint and outcome.",
    labelnames=["endpoint", "status"],
)
"""Counter incremented once per API call after retries are exhausted.

Labels:
  endpoint: endpoint path (e.g. cryptocurrency/quotes/latest)
  status:   'success' or the error class (e.g. RateLimitExceededError)
"""

api_request_duration_seconds: Histogram = Histogram(
    "cmc_api_request_duration_seconds",
    "CoinMarketCap API call latency in seconds.",
    labelnames=["endpoint"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

# ---------------------------------------------------------------------------
# Credit metrics (populated by listeners.py from credit.* notifications)
# ---------------------------------------------------------------------------

credits_consumed_total: Counter = Counter(
    "cmc_credits_consumed_total",
    "Credits recorded against the monthly quota by endpoint.",
    labelnames=["endpoint"],
)

credit_usage_ratio: Gauge = Gauge(
    "cmc_credit_usage_ratio",
    "Used credits divided by the monthly quota.",
)

# ---------------------------------------------------------------------------
# Cache metrics (populated by the provider)
# ---------------------------------------------------------------------------

cache_events_total: Counter = Counter(
    "cmc_cache_events_total",
    "Provider cache outcomes by event.",
    labelnames=["event"],
)
"""Labels:
  event: one of hit, miss, store
"""

# ---------------------------------------------------------------------------
# Celery task metrics (populated in workers/tasks.py)
# ---------------------------------------------------------------------------

celery_tasks_total: Counter = Counter(
    "cmc_celery_tasks_total",
    "Worker task completions by task name and outcome.",
    labelnames=["task_name", "status"],
)
"""Labels:
  task_name: short task name (e.g. warm_essential_data)
  status:    'success' or 'error'
"""

celery_task_duration_seconds: Histogram = Histogram(
    "cmc_celery_task_duration_seconds",
    "Worker task wall-clock duration in seconds.",
    labelnames=["task_name"],
    buckets=[0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
)

