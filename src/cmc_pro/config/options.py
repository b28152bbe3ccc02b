"""Static structured configuration handed to the core components.

:class:`CoreConfig` is the only configuration object the credit and cache
components know about.  It is frozen, so a component constructed with it
cannot observe configuration drift at runtime.  Build it from the
environment with :meth:`CoreConfig.from_settings` or construct it directly
in tests::

    config = CoreConfig(plan=PlanOptions(plan_type="startup"))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Mapping, Optional

if TYPE_CHECKING:
    from cmc_pro.config.settings import Settings


DEFAULT_TTLS: Mapping[str, int] = MappingProxyType(
    {
        "cryptocurrency_map": 86_400,
        "cryptocurrency_info": 86_400,
        "exchange_map": 86_400,
        "exchange_info": 86_400,
        "fiat_map": 86_400,
        "cryptocurrency_listings": 300,
        "exchange_listings": 300,
        "trending": 1_800,
        "cryptocurrency_quotes": 60,
        "exchange_quotes": 60,
        "global_metrics": 300,
        "market_pairs": 180,
        "ohlcv": 300,
        "historical": 3_600,
        "default": 300,
    }
)
"""Base TTL in seconds per endpoint type, before strategy adjustments."""

DEFAULT_CREDIT_COSTS: Mapping[str, int] = MappingProxyType(
    {
        "cryptocurrency_listings_latest": 1,
        "cryptocurrency_quotes_latest": 1,
        "cryptocurrency_info": 1,
        "cryptocurrency_map": 1,
        "cryptocurrency_trending_latest": 1,
        "cryptocurrency_market_pairs_latest": 1,
        "cryptocurrency_ohlcv_latest": 1,
        "cryptocurrency_quotes_historical": 1,
        "cryptocurrency_ohlcv_historical": 1,
        "exchange_listings_latest": 1,
        "exchange_quotes_latest": 1,
        "exchange_info": 1,
        "exchange_map": 1,
        "global_metrics_quotes_latest": 1,
        "global_metrics_quotes_historical": 1,
        "fiat_map": 1,
    }
)
"""Planning estimate of credits per call, keyed by normalized endpoint.
The authoritative cost is ``status.credit_count`` in each response."""

SUPPORTED_CURRENCIES: tuple[str, ...] = (
    "usd", "eur", "jpy", "btc", "eth", "ltc", "bch", "bnb", "eos", "xrp",
    "xlm", "link", "dot", "yfi", "gbp", "aud", "cad", "chf", "cny", "hkd",
    "inr", "krw", "rub", "sgd", "thb", "try", "twd", "zar",
)

DEFAULT_ENDPOINT_LIMITS: Mapping[str, int] = MappingProxyType(
    {
        "cryptocurrency_ids_per_request": 100,
        "exchange_ids_per_request": 100,
        "symbols_per_request": 100,
    }
)

DEFAULT_ANALYTICS_TTL = 604_800
"""Lifetime of an analytics counter, in seconds from its creation."""


@dataclass(frozen=True)
class PlanOptions:
    """Plan tier plus optional explicit limit overrides.

    Overrides must be positive integers when set.

    Raises:
        ValueError: On a zero or negative override.
    """

    plan_type: str = "basic"
    credits_per_month: Optional[int] = None
    calls_per_day: Optional[int] = None
    calls_per_minute: Optional[int] = None

    def __post_init__(self) -> None:
        for name in ("credits_per_month", "calls_per_day", "calls_per_minute"):
            value = getattr(self, name)
            if value is not None and int(value) <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")


@dataclass(frozen=True)
class CreditOptions:
    """Credit accounting behaviour.

    Attributes:
        tracking_enabled: When False usage is never recorded and reads as zero.
        warning_threshold: Usage fraction at which the warning notification fires.
        optimization_enabled: Whether request parameters are rewritten.
        costs: Estimated credits per call keyed by normalized endpoint.
        retention_months: Billing periods older than this are pruned.
    """

    tracking_enabled: bool = True
    warning_threshold: float = 0.8
    optimization_enabled: bool = True
    costs: Mapping[str, int] = field(default_factory=lambda: DEFAULT_CREDIT_COSTS)
    retention_months: int = 3


@dataclass(frozen=True)
class CacheOptions:
    enabled: bool = True
    prefix: str = "coinmarketcap"
    strategy: str = "balanced"
    analytics_enabled: bool = True
    warming_enabled: bool = True
    ttl: Mapping[str, int] = field(default_factory=lambda: DEFAULT_TTLS)
    analytics_ttl: int = DEFAULT_ANALYTICS_TTL


@dataclass(frozen=True)
class EventOptions:
    """Notification switches.  ``dispatch`` maps a notification group to a flag."""

    enabled: bool = True
    dispatch: Mapping[str, bool] = field(
        default_factory=lambda: MappingProxyType(
            {
                "api_call_made": True,
                "credit_consumed": True,
                "credit_warning": True,
                "rate_limit_hit": True,
                "api_error": True,
            }
        )
    )

    def allows(self, group: str) -> bool:
        return self.enabled and self.dispatch.get(group, True)


@dataclass(frozen=True)
class CoreConfig:
    """Aggregate configuration for every core component."""

    plan: PlanOptions = field(default_factory=PlanOptions)
    credits: CreditOptions = field(default_factory=CreditOptions)
    cache: CacheOptions = field(default_factory=CacheOptions)
    events: EventOptions = field(default_factory=EventOptions)
    supported_currencies: tuple[str, ...] = SUPPORTED_CURRENCIES
    endpoint_limits: Mapping[str, int] = field(default_factory=lambda: DEFAULT_ENDPOINT_LIMITS)

    @classmethod
    def from_settings(cls, settings: Settings) -> CoreConfig:
        """Build the core configuration from environment-backed settings."""
        return cls(
            plan=PlanOptions(
                plan_type=settings.plan_type,
                credits_per_month=settings.credits_per_month,
                calls_per_day=settings.calls_per_day,
                calls_per_minute=settings.calls_per_minute,
            ),
            credits=CreditOptions(
                tracking_enabled=settings.credit_tracking_enabled,
                warning_threshold=settings.warning_threshold,
                optimization_enabled=settings.optimization_enabled,
                costs=MappingProxyType({**DEFAULT_CREDIT_COSTS, **settings.credit_costs}),
            ),
            cache=CacheOptions(
                enabled=settings.cache_enabled,
                prefix=settings.cache_prefix,
                strategy=settings.cache_strategy,
                analytics_enabled=settings.cache_analytics_enabled,
                warming_enabled=settings.cache_warming_enabled,
                ttl=MappingProxyType({**DEFAULT_TTLS, **settings.cache_ttl}),
                analytics_ttl=settings.cache_analytics_ttl,
            ),
            events=EventOptions(
                enabled=settings.events_enabled,
                dispatch=MappingProxyType(
                    {
                        "api_call_made": settings.dispatch_api_call_made,
                        "credit_consumed": settings.dispatch_credit_consumed,
                        "credit_warning": settings.dispatch_credit_warning,
                        "rate_limit_hit": settings.dispatch_rate_limit_hit,
                        "api_error": settings.dispatch_api_error,
                    }
                ),
            ),
        )
