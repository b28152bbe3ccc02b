"""Wire every component from :class:`~cmc_pro.config.settings.Settings`.

Storage layout: with ``CMC_REDIS_URL`` set, the cache, the analytics counters,
the usage counters and the shared cache strategy state each get their own
:class:`RedisStore` namespace on the same server, so flushing the cache never
erases usage accounting.
Without it, each gets its own in-process :class:`MemoryStore`.

Usage::

    from cmc_pro.factory import build_provider

    provider = build_provider()
    listings = provider.get_cryptocurrency_listings({"limit": 50})
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from cmc_pro.cache.analytics import CacheAnalytics
from cmc_pro.cache.layer import CoinMarketCapCache
from cmc_pro.cache.strategy import CacheStrategy
from cmc_pro.cache.warmer import CacheWarmer
from cmc_pro.client.http import CoinMarketCapClient
from cmc_pro.config.options import CoreConfig
from cmc_pro.config.settings import Settings, get_settings
from cmc_pro.core.event_bus import EventBus
from cmc_pro.core.store import CacheStore, MemoryStore, RedisStore
from cmc_pro.credit.credit_manager import CreditManager
from cmc_pro.credit.optimizer import CreditOptimizer
from cmc_pro.credit.plan_manager import PlanManager
from cmc_pro.monitoring.listeners import register_default_listeners
from cmc_pro.provider import CoinMarketCapProvider
from cmc_pro.services.fiat import FiatService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Components:
    """Every wired component, for callers that need more than the provider."""

    config: CoreConfig
    events: EventBus
    plan_manager: PlanManager
    credit_manager: CreditManager
    strategy: CacheStrategy
    cache: CoinMarketCapCache
    analytics: Optional[CacheAnalytics]
    optimizer: CreditOptimizer
    client: CoinMarketCapClient
    provider: CoinMarketCapProvider
    warmer: CacheWarmer
    fiat: FiatService


def _store(redis_url: Optional[str], namespace: str) -> CacheStore:
    if redis_url:
        return RedisStore.from_url(redis_url, namespace=namespace)
    return MemoryStore()


def build_components(settings: Optional[Settings] = None) -> Components:
    """Build and connect every component.

    Args:
        settings: Defaults to :func:`get_settings`.

    Returns:
        The wired :class:`Components`.
    """
    settings = settings or get_settings()
    config = CoreConfig.from_settings(settings)
    prefix = config.cache.prefix

    events = EventBus(
        options=config.events,
        redis_url=settings.redis_url,
        channel_prefix=settings.event_channel_prefix,
    )
    register_default_listeners(events)

    plan_manager = PlanManager(config.plan, config.credits.costs, config.endpoint_limits)
    credit_manager = CreditManager(
        _store(settings.redis_url, f"{prefix}:usage:"),
        plan_manager,
        options=config.credits,
        events=events,
    )

    analytics = (
        CacheAnalytics(
            _store(settings.redis_url, f"{prefix}:stats:"),
            prefix=prefix,
            ttl=config.cache.analytics_ttl,
        )
        if config.cache.analytics_enabled
        else None
    )
    strategy = CacheStrategy(
        config.cache,
        analytics=analytics,
        events=events,
        store=_store(settings.redis_url, f"{prefix}:strategy:"),
    )
    cache = CoinMarketCapCache(
        _store(settings.redis_url, f"{prefix}:cache:"),
        options=config.cache,
        strategy=strategy,
        analytics=analytics,
    )
    optimizer = CreditOptimizer(
        plan_manager,
        credit_manager,
        cache,
        options=config.credits,
        supported_currencies=config.supported_currencies,
    )
    client = CoinMarketCapClient(
        api_key=settings.api_key,
        base_url=settings.base_url,
        timeout=settings.timeout,
        retry_times=settings.retry_times,
        retry_delay_ms=settings.retry_delay_ms,
        events=events,
    )
    provider = CoinMarketCapProvider(
        client,
        plan_manager,
        credit_manager,
        optimizer,
        cache,
        strategy,
        analytics=analytics,
        supported_currencies=config.supported_currencies,
    )

    warmer = CacheWarmer(cache, strategy=strategy, analytics=analytics)
    if config.cache.warming_enabled:
        for endpoint_type, loader in provider.warming_loaders().items():
            warmer.register_loader(endpoint_type, loader)

    logger.info(
        "factory: components built",
        extra={
            "plan_type": plan_manager.get_plan_type(),
            "storage": "redis" if settings.redis_url else "memory",
            "cache_enabled": config.cache.enabled,
            "cache_strategy": strategy.get_current_strategy(),
        },
    )
    return Components(
        config=config,
        events=events,
        plan_manager=plan_manager,
        credit_manager=credit_manager,
        strategy=strategy,
        cache=cache,
        analytics=analytics,
        optimizer=optimizer,
        client=client,
        provider=provider,
        warmer=warmer,
        fiat=FiatService(provider),
    )


def build_provider(settings: Optional[Settings] = None) -> CoinMarketCapProvider:
    """Return a fully wired :class:`CoinMarketCapProvider`."""
    return build_components(settings).provider
