"""Application settings loaded from environment variables.

Uses Pydantic Settings v2 for validated, type-safe configuration.  Every
variable is read with the ``CMC_`` prefix (``CMC_API_KEY``, ``CMC_PLAN_TYPE``
and so on).  The API key is accessed exclusively through this module; never
call ``os.getenv`` directly elsewhere in the codebase.

Core components do not read ``Settings`` themselves.  They receive the frozen
:class:`~cmc_pro.config.options.CoreConfig` built from it, which keeps them
trivially constructible in tests.

Usage::

    from cmc_pro.config.settings import get_settings

    settings = get_settings()
    plan = settings.plan_type
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration backed by ``CMC_*`` environment variables and an optional .env file.

    Only ``api_key`` is required for live API calls; everything else carries a
    default matching the free (basic) CoinMarketCap plan.
    """

    model_config = SettingsConfigDict(
        env_prefix="CMC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # CoinMarketCap API
    # ------------------------------------------------------------------

    api_key: str = ""
    """Pro API key sent as the ``X-CMC_PRO_API_KEY`` header."""

    base_url: str = "https://pro-api.coinmarketcap.com"
    """API host.  Version prefixes (``/v1``, ``/v2``) come from the endpoint registry."""

    timeout: float = 30.0
    """Per-request timeout in seconds."""

    retry_times: int = 3
    """Number of attempts for retryable failures (5xx and transport errors)."""

    retry_delay_ms: int = 1000
    """Delay between retry attempts in milliseconds."""

    # ------------------------------------------------------------------
    # Subscription plan
    # ------------------------------------------------------------------

    plan_type: str = "basic"
    """Plan tier: basic, hobbyist, startup, standard, professional or enterprise.
    Unknown values resolve to basic limits."""

    credits_per_month: Optional[int] = Field(default=None, gt=0)
    """Explicit monthly credit quota.  Overrides the tier default when set."""

    calls_per_day: Optional[int] = Field(default=None, gt=0)
    """Explicit daily call cap.  Overrides the tier default when set."""

    calls_per_minute: Optional[int] = Field(default=None, gt=0)
    """Explicit per-minute call cap.  Overrides the tier default when set."""

    # ------------------------------------------------------------------
    # Credit accounting
    # ------------------------------------------------------------------

    credit_tracking_enabled: bool = True
    """Record consumed credits and call counts.  When False the gate always reports
    zero usage."""

    warning_threshold: float = 0.8
    """Fraction of the monthly quota at which the one-time warning notification fires."""

    optimization_enabled: bool = True
    """Rewrite request parameters (limits, batching, currencies, fields) to reduce cost."""

    credit_costs: dict[str, int] = {}
    """Per-endpoint credit estimates merged over the built-in cost table, e.g.
    ``CMC_CREDIT_COSTS='{"cryptocurrency_quotes_historical": 2}'``.  Keys are
    normalized endpoint names."""

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    cache_enabled: bool = True
    """Global cache switch.  When False every request goes to the API."""

    cache_prefix: str = "coinmarketcap"
    """Namespace prepended to every cache, analytics and usage key."""

    cache_strategy: str = "balanced"
    """Initial cache strategy profile: aggressive, balanced, fresh or adaptive."""

    cache_analytics_enabled: bool = True
    """Record hit/miss/store counters and time series."""

    cache_warming_enabled: bool = True
    """Allow the periodic warming task to pre-populate high-priority endpoints."""

    cache_ttl: dict[str, int] = {}
    """Base TTLs in seconds merged over the built-in table, e.g.
    ``CMC_CACHE_TTL='{"cryptocurrency_quotes": 120}'``."""

    cache_analytics_ttl: int = Field(default=604_800, gt=0)
    """Lifetime in seconds of each analytics counter, from its creation."""

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    redis_url: Optional[str] = None
    """Redis URL for the shared cache/counter store.  When ``None`` an in-process
    :class:`~cmc_pro.core.store.MemoryStore` is used, which is only correct for a
    single process."""

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    events_enabled: bool = True
    """Master switch for all notifications."""

    dispatch_api_call_made: bool = True
    dispatch_credit_consumed: bool = True
    dispatch_credit_warning: bool = True
    dispatch_rate_limit_hit: bool = True
    dispatch_api_error: bool = True

    event_channel_prefix: str = "coinmarketcap:events"
    """Redis pub/sub channel prefix used when ``redis_url`` is set."""

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    log_level: str = "INFO"
    """Logging verbosity.  One of: DEBUG, INFO, WARNING, ERROR, CRITICAL."""

    # ------------------------------------------------------------------
    # Celery task queue
    # ------------------------------------------------------------------

    celery_broker_url: str = "redis://localhost:6379/1"
    """Redis URL used as Celery's message broker."""

    celery_result_backend: str = "redis://localhost:6379/2"
    """Redis URL used to store Celery task results."""

    @field_validator("warning_threshold")
    @classmethod
    def _check_threshold(cls, value: float) -> float:
        if not 0.0 < value <= 1.0:
            raise ValueError("warning_threshold must be in (0, 1]")
        return value

    @field_validator("credit_costs", "cache_ttl")
    @classmethod
    def _check_positive_table(cls, value: dict[str, int]) -> dict[str, int]:
        for key, amount in value.items():
            if amount <= 0:
                raise ValueError(f"{key} must be a positive integer")
        return value


@lru_cache
def get_settings() -> Settings:
    """Return the cached application settings singleton.

    Uses ``functools.lru_cache`` so that Pydantic Settings reads the environment
    and .env file exactly once per process lifetime.  In tests, call
    ``get_settings.cache_clear()`` after patching environment variables.

    Returns:
        Settings: The validated settings object.
    """
    return Settings()
