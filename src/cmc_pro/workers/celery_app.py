"""Celery application for cmc-pro periodic maintenance.

Configures the broker, result backend, serialization and the Beat schedule.
All configuration values are sourced from ``Settings`` so that no secrets or
environment-specific values are hard-coded here.

Usage (starting a worker)::

    celery -A cmc_pro.workers.celery_app worker --loglevel=info

Usage (starting the Beat scheduler)::

    celery -A cmc_pro.workers.celery_app beat --loglevel=info
"""

from __future__ import annotations

from celery import Celery
from celery.signals import worker_process_init
from dotenv import load_dotenv

# Load .env before Settings is first built so CMC_* values reach the worker.
load_dotenv()

from cmc_pro.config.settings import get_settings  # noqa: E402
from cmc_pro.core.logging_config import configure_logging  # noqa: E402
from cmc_pro.workers.beat_schedule import build_beat_schedule  # noqa: E402

settings = get_settings()

#: The global Celery application instance.
celery_app = Celery(
    "cmc_pro",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["cmc_pro.workers.tasks"],
)

# ---------------------------------------------------------------------------
# Core configuration
# ---------------------------------------------------------------------------

celery_app.conf.update(
    # Serialization: task arguments and return values must be JSON-serializable.
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    # Billing periods and daily call caps roll over at UTC midnight.
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=86_400,
    # Warming spends credits; it must never run unbounded.
    task_soft_time_limit=600,
    task_time_limit=900,
    beat_schedule_filename="celerybeat-schedule",
)

celery_app.conf.beat_schedule = build_beat_schedule(settings.cache_warming_enabled)


@worker_process_init.connect
def _configure_worker_logging(**kwargs: object) -> None:  # noqa: ARG001
    """Install structured logging in each forked worker process."""
    configure_logging(settings.log_level)
