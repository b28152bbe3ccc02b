"""Periodic Celery tasks: cache warming, strategy adaptation and usage pruning.

Each worker process builds the component graph once (see :func:`components`)
and reuses it for every task, so in-process state such as the warmer's key
tracking survives between runs.  With ``CMC_REDIS_URL`` set, cache and usage
counters are shared with every other process using the same server.

Tasks:

- :func:`warm_essential_data`: run registered warming loaders.
- :func:`adapt_cache_strategy`: feed analytics into the cache strategy.
- :func:`prune_credit_periods`: drop expired billing periods.
"""

from __future__ import annotations

import time
from functools import lru_cache
from typing import Any, Callable

import structlog

from cmc_pro.factory import Components, build_components
from cmc_pro.monitoring.metrics import celery_task_duration_seconds, celery_tasks_total
from cmc_pro.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)


@lru_cache(maxsize=1)
def components() -> Components:
    """Return the process-wide component graph.  ``components.cache_clear()`` rebuilds it."""
    return build_components()


def _timed(task_name: str, body: Callable[[], dict[str, Any]]) -> dict[str, Any]:
    started = time.perf_counter()
    status = "error"
    try:
        result = body()
        status = "success"
        return result
    finally:
        celery_tasks_total.labels(task_name=task_name, status=status).inc()
        celery_task_duration_seconds.labels(task_name=task_name).observe(time.perf_counter() - started)


# ---------------------------------------------------------------------------
# Task 1: warm_essential_data
# ---------------------------------------------------------------------------


@celery_app.task(name="cmc_pro.workers.tasks.warm_essential_data")
def warm_essential_data(strategy: str = "balanced", min_priority: int = 5) -> dict[str, Any]:
    """Warm every loader-backed endpoint type at or above *min_priority*.

    Loaders call the API, so a run spends roughly one credit per endpoint
    type.  Loader failures (quota, rate cap, upstream errors) are counted in
    the per-type result and do not fail the task.

    Args:
        strategy: Warming strategy name (aggressive, balanced, conservative).
        min_priority: Lowest warming priority still refreshed.

    Returns:
        Dict with ``items_warmed`` and per-endpoint-type ``results``.
    """
    log = logger.bind(task="warm_essential_data", strategy=strategy)
    log.info("warm_essential_data: started", min_priority=min_priority)

    def body() -> dict[str, Any]:
        results = components().warmer.warm_essential_data(strategy=strategy, min_priority=min_priority)
        return {
            "items_warmed": sum(r.items_warmed for r in results.values()),
            "results": {name: r.to_dict() for name, r in results.items()},
        }

    try:
        summary = _timed("warm_essential_data", body)
    except Exception as exc:
        log.error("warm_essential_data: failed", error=str(exc))
        raise
    log.info("warm_essential_data: complete", items_warmed=summary["items_warmed"])
    return summary


# ---------------------------------------------------------------------------
# Task 2: adapt_cache_strategy
# ---------------------------------------------------------------------------


@celery_app.task(name="cmc_pro.workers.tasks.adapt_cache_strategy")
def adapt_cache_strategy() -> dict[str, Any]:
    """Re-evaluate the cache profile from live hit rate, error rate and credit efficiency.

    Returns:
        Dict with the ``strategy`` active after the run (``None`` when
        analytics are disabled).
    """
    log = logger.bind(task="adapt_cache_strategy")

    def body() -> dict[str, Any]:
        profile = components().provider.adapt_cache_strategy()
        return {"strategy": profile.name if profile is not None else None}

    summary = _timed("adapt_cache_strategy", body)
    log.info("adapt_cache_strategy: complete", **summary)
    return summary


# ---------------------------------------------------------------------------
# Task 3: prune_credit_periods
# ---------------------------------------------------------------------------


@celery_app.task(name="cmc_pro.workers.tasks.prune_credit_periods")
def prune_credit_periods() -> dict[str, Any]:
    """Delete usage counters of billing periods past the retention window.

    Returns:
        Dict with the ``pruned`` period identifiers (``YYYY-MM``).
    """
    log = logger.bind(task="prune_credit_periods")

    def body() -> dict[str, Any]:
        return {"pruned": components().credit_manager.prune_expired_periods()}

    summary = _timed("prune_credit_periods", body)
    log.info("prune_credit_periods: complete", pruned=len(summary["pruned"]))
    return summary
