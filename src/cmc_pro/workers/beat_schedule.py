"""Celery Beat periodic task schedule for cmc-pro.

This module is imported by ``celery_app.py`` and applied via
``celery_app.conf.beat_schedule``.

Schedule overview:

+-------------------------+---------------------+-------------------------------+
| Task name               | Schedule            | Purpose                       |
+=========================+=====================+===============================+
| warm_essential_data     | Hourly at :05       | Refresh high-priority cache   |
|                         |                     | entries (maps, listings).     |
|                         |                     | Only when warming is enabled. |
+-------------------------+---------------------+-------------------------------+
| adapt_cache_strategy    | Every 15 minutes    | Switch the cache profile from |
|                         |                     | live hit and error rates.     |
+-------------------------+---------------------+-------------------------------+
| prune_credit_periods    | 00:15 UTC daily     | Drop usage counters of        |
|                         |                     | billing periods older than    |
|                         |                     | the retention window.         |
+-------------------------+---------------------+-------------------------------+
"""

from __future__ import annotations

from celery.schedules import crontab

_TASKS = "cmc_pro.workers.tasks"


def build_beat_schedule(warming_enabled: bool = True) -> dict[str, dict]:  # type: ignore[type-arg]
    """Return the Beat schedule dict applied to ``celery_app.conf.beat_schedule``."""
    schedule: dict[str, dict] = {  # type: ignore[type-arg]
        # ------------------------------------------------------------------
        # Strategy adaptation: every 15 minutes
        # ------------------------------------------------------------------
        "adapt_cache_strategy": {
            "task": f"{_TASKS}.adapt_cache_strategy",
            "schedule": crontab(minute="*/15"),
            "options": {
                "queue": "celery",
                "expires": 600,
            },
        },
        # ------------------------------------------------------------------
        # Usage period pruning: 00:15 UTC daily
        # ------------------------------------------------------------------
        "prune_credit_periods": {
            "task": f"{_TASKS}.prune_credit_periods",
            "schedule": crontab(hour=0, minute=15),
            "options": {
                "queue": "celery",
                "expires": 3_600,
            },
        },
    }
    if warming_enabled:
        # ------------------------------------------------------------------
        # Cache warming: hourly, after the top-of-hour listing refresh
        # ------------------------------------------------------------------
        schedule["warm_essential_data"] = {
            "task": f"{_TASKS}.warm_essential_data",
            "schedule": crontab(minute=5),
            "kwargs": {"strategy": "balanced", "min_priority": 5},
            "options": {
                "queue": "celery",
                "expires": 1_800,  # discard if not started within 30 minutes
            },
        }
    return schedule
