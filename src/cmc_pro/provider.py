"""CoinMarketCap data provider: the credit-aware request pipeline.

Every public fetch method runs the same pipeline through :meth:`fetch`:

1. **optimize**: :meth:`CreditOptimizer.optimize_request` clamps limits,
   truncates id lists, narrows conversion currencies and adds ``aux`` fields.
2. **decide**: :meth:`CreditOptimizer.should_use_cache` weighs the cached
   entry's age against remaining credits, call caps and usage pressure.
3. **serve or call**: a cached entry is returned and the credits it saved are
   recorded; otherwise credits are reserved atomically, the API is called and
   the reservation settled against ``status.credit_count`` (or released when
   the call fails), and the result is stored when the strategy says so.
4. **transform**: raw ``data`` is validated into pydantic models from
   :mod:`cmc_pro.transformers`.

When the quota or a call cap is exhausted and nothing is cached, the pipeline
raises :class:`CreditLimitExceededError` or :class:`RateLimitExceededError`;
it never returns empty or synthesized data.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Sequence, Union

from cmc_pro.cache.analytics import CacheAnalytics
from cmc_pro.cache.layer import CoinMarketCapCache
from cmc_pro.cache.strategy import CacheStrategy, StrategyProfile
from cmc_pro.client.http import CoinMarketCapClient
from cmc_pro.config.endpoints import lookup_endpoint, normalize_endpoint
from cmc_pro.config.options import SUPPORTED_CURRENCIES
from cmc_pro.core.exceptions import (
    ApiError,
    CreditLimitExceededError,
    RateLimitExceededError,
)
from cmc_pro.core.logging_config import call_id_var
from cmc_pro.credit.credit_manager import CreditManager
from cmc_pro.credit.optimizer import CacheDecision, CreditOptimizer
from cmc_pro.credit.plan_manager import PlanManager
from cmc_pro.monitoring.metrics import cache_events_total
from cmc_pro.transformers import cryptocurrency, exchange, fiat, global_metrics

logger = logging.getLogger(__name__)

PROVIDER_NAME = "coinmarketcap"

_MISSING = object()
_BUDGET_REASONS = frozenset({"credit_limit_reached", "rate_limit_reached"})

Params = Optional[Mapping[str, Any]]


def endpoint_type_for(endpoint: str) -> str:
    """Return the analytics/TTL bucket for *endpoint*: its registered TTL key or normalized name."""
    spec = lookup_endpoint(endpoint)
    return spec.ttl_key if spec is not None else normalize_endpoint(endpoint)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class CoinMarketCapProvider:
    """Fetches CoinMarketCap data while spending as few credits as possible.

    Args:
        client: HTTP transport.
        plan_manager: Tier limits and feature flags.
        credit_manager: Quota accounting and reservations.
        optimizer: Cache-or-call decisions and parameter shaping.
        cache: Cache layer the pipeline reads and writes.
        strategy: Decides whether a fresh result is worth caching.
        analytics: Receives misses and credit savings.  Optional.
        supported_currencies: Conversion currencies reported by
            :meth:`get_supported_currencies`.
        clock: Returns the current UTC datetime.
    """

    def __init__(
        self,
        client: CoinMarketCapClient,
        plan_manager: PlanManager,
        credit_manager: CreditManager,
        optimizer: CreditOptimizer,
        cache: CoinMarketCapCache,
        strategy: CacheStrategy,
        analytics: Optional[CacheAnalytics] = None,
        supported_currencies: Sequence[str] = SUPPORTED_CURRENCIES,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._plan = plan_manager
        self._credits = credit_manager
        self._optimizer = optimizer
        self._cache = cache
        self._strategy = strategy
        self._analytics = analytics
        self._supported = tuple(c.upper() for c in supported_currencies)
        self._clock = clock

    def get_name(self) -> str:
        return PROVIDER_NAME

    def get_supported_currencies(self) -> list[str]:
        return list(self._supported)

    @property
    def client(self) -> CoinMarketCapClient:
        return self._client

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def fetch(self, endpoint: str, params: Params = None) -> Any:
        """Return the ``data`` member for *endpoint*, from cache or the API.

        Args:
            endpoint: Endpoint path, e.g. ``cryptocurrency/listings/latest``.
            params: Query parameters before optimization.

        Returns:
            The raw ``data`` member of the response body.

        Raises:
            CreditLimitExceededError: The quota is exhausted and nothing is
                cached, or the API answered 402 / code 1006.
            RateLimitExceededError: A call cap is exhausted and nothing is
                cached, or the API answered 429 / codes 1003-1005.
            ApiError: Any other upstream failure, after retries.
        """
        token = call_id_var.set(uuid.uuid4().hex)
        try:
            return self._fetch(endpoint, params)
        finally:
            call_id_var.reset(token)

    def _fetch(self, endpoint: str, params: Params) -> Any:
        endpoint_type = endpoint_type_for(endpoint)
        optimized = self._optimizer.optimize_request(endpoint, dict(params or {}))
        key = self._optimizer.cache_key(endpoint, optimized)
        decision = self._optimizer.should_use_cache(endpoint, optimized)

        if decision.use_cache:
            cached = self._cache.get(key, _MISSING, endpoint_type)
            if cached is not _MISSING:
                self._record_savings(endpoint, endpoint_type, decision)
                cache_events_total.labels(event="hit").inc()
                return cached
            # expired between the decision and the read
            cache_events_total.labels(event="miss").inc()
            if decision.reason in _BUDGET_REASONS:
                raise self._refusal(endpoint, decision)
        elif decision.reason in _BUDGET_REASONS:
            raise self._refusal(endpoint, decision)
        elif self._cache.enabled:
            self._record_miss(key, endpoint_type)

        data, credits = self._call(endpoint, optimized)

        if self._strategy.should_cache(endpoint_type, credits) and self._cache.put(key, data, endpoint_type):
            cache_events_total.labels(event="store").inc()
        return data

    def _call(self, endpoint: str, params: Mapping[str, Any]) -> tuple[Any, int]:
        """Reserve, call and settle.  Returns the ``data`` member and the credits charged."""
        reservation = self._credits.reserve_credits(endpoint)
        if reservation is None:
            raise self._refusal(endpoint)
        try:
            body = self._client.get(endpoint, params)
        except ApiError as exc:
            self._credits.release(reservation)
            if self._analytics is not None:
                self._analytics.record_error(type(exc).__name__, str(exc))
            raise
        validator = self._client.validator
        credits = self._credits.settle(reservation, validator.extract_credit_usage(body))
        return validator.extract_data(body), credits

    def _refusal(
        self, endpoint: str, decision: Optional[CacheDecision] = None
    ) -> Union[CreditLimitExceededError, RateLimitExceededError]:
        required = self._credits.estimate_cost(endpoint)
        available = self._credits.get_remaining_credits()
        credit_bound = (
            decision.reason == "credit_limit_reached" if decision is not None else available < required
        )
        if credit_bound:
            logger.warning(
                "provider: credit limit reached",
                extra={"endpoint": endpoint, "required": required, "available": available},
            )
            return CreditLimitExceededError(
                f"Not enough credits for {endpoint}: {required} required, {available} available",
                required=required,
                available=available,
            )
        retry_after = self._retry_after()
        logger.warning("provider: rate limit reached", extra={"endpoint": endpoint, "retry_after": retry_after})
        return RateLimitExceededError(f"Call cap reached for {endpoint}", retry_after=retry_after)

    def _retry_after(self) -> float:
        now = self._clock()
        if not self._credits.can_make_minute_call():
            return float(60 - now.second)
        if not self._credits.can_make_daily_call():
            midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
            return float(86_400 - int((now - midnight).total_seconds()))
        return 60.0

    def _record_savings(self, endpoint: str, endpoint_type: str, decision: CacheDecision) -> None:
        if self._analytics is None:
            return
        saved = decision.credit_cost if decision.credit_cost is not None else self._credits.estimate_cost(endpoint)
        self._analytics.record_credit_savings(endpoint_type, saved)

    def _record_miss(self, key: str, endpoint_type: str) -> None:
        cache_events_total.labels(event="miss").inc()
        if self._analytics is not None:
            self._analytics.record_miss(key, endpoint_type)

    # ------------------------------------------------------------------
    # Cryptocurrency
    # ------------------------------------------------------------------

    def get_cryptocurrency_listings(self, params: Params = None) -> list[cryptocurrency.CryptocurrencyListing]:
        return cryptocurrency.transform_listings(self.fetch("cryptocurrency/listings/latest", params))

    def get_cryptocurrency_quotes(self, params: Params = None) -> dict[str, Any]:
        """Latest quotes keyed by id or symbol, as requested via ``id``/``symbol``/``slug``."""
        return cryptocurrency.transform_quotes(self.fetch("cryptocurrency/quotes/latest", params))

    def get_cryptocurrency_info(self, params: Params = None) -> dict[str, Any]:
        return cryptocurrency.transform_info(self.fetch("cryptocurrency/info", params))

    def get_cryptocurrency_map(self, params: Params = None) -> list[cryptocurrency.CryptocurrencyMapEntry]:
        return cryptocurrency.transform_map(self.fetch("cryptocurrency/map", params))

    def get_trending_cryptocurrencies(self, params: Params = None) -> list[cryptocurrency.CryptocurrencyListing]:
        return cryptocurrency.transform_trending(self.fetch("cryptocurrency/trending/latest", params))

    def get_cryptocurrency_ohlcv(self, params: Params = None) -> dict[str, Any]:
        return cryptocurrency.transform_ohlcv(self.fetch("cryptocurrency/ohlcv/latest", params))

    # ------------------------------------------------------------------
    # Exchanges
    # ------------------------------------------------------------------

    def get_exchange_listings(self, params: Params = None) -> list[exchange.ExchangeListing]:
        return exchange.transform_listings(self.fetch("exchange/listings/latest", params))

    def get_exchange_quotes(self, params: Params = None) -> dict[str, Any]:
        return exchange.transform_quotes(self.fetch("exchange/quotes/latest", params))

    def get_exchange_info(self, params: Params = None) -> dict[str, Any]:
        return exchange.transform_info(self.fetch("exchange/info", params))

    def get_exchange_map(self, params: Params = None) -> list[exchange.ExchangeMapEntry]:
        return exchange.transform_map(self.fetch("exchange/map", params))

    # ------------------------------------------------------------------
    # Global metrics and fiat
    # ------------------------------------------------------------------

    def get_global_metrics(self, params: Params = None) -> global_metrics.GlobalMetrics:
        return global_metrics.transform(self.fetch("global-metrics/quotes/latest", params))

    def get_fiat_map(self, params: Params = None) -> list[fiat.FiatCurrency]:
        return fiat.transform_map(self.fetch("fiat/map", params))

    # ------------------------------------------------------------------
    # Warming and adaptation
    # ------------------------------------------------------------------

    def warming_loaders(self) -> dict[str, Callable[[], list[dict[str, Any]]]]:
        """Loaders for :class:`~cmc_pro.cache.warmer.CacheWarmer`, limited to what the plan allows.

        Each loader always calls the API (warming exists to refresh entries)
        and returns one cache item keyed exactly as :meth:`fetch` would key
        the same request.
        """
        targets: dict[str, tuple[str, dict[str, Any]]] = {
            "cryptocurrency_map": ("cryptocurrency/map", {}),
            "fiat_map": ("fiat/map", {}),
            "cryptocurrency_listings": ("cryptocurrency/listings/latest", {}),
        }
        if self._plan.supports_feature("exchange_data"):
            targets["exchange_map"] = ("exchange/map", {})
        if self._plan.supports_feature("global_metrics"):
            targets["global_metrics"] = ("global-metrics/quotes/latest", {})
        if self._plan.supports_feature("trending_data"):
            targets["trending"] = ("cryptocurrency/trending/latest", {})

        return {
            endpoint_type: self._make_loader(endpoint, params)
            for endpoint_type, (endpoint, params) in targets.items()
        }

    def _make_loader(self, endpoint: str, params: dict[str, Any]) -> Callable[[], list[dict[str, Any]]]:
        def load() -> list[dict[str, Any]]:
            optimized = self._optimizer.optimize_request(endpoint, params)
            data, _ = self._call(endpoint, optimized)
            return [
                {
                    "key": self._optimizer.cache_key(endpoint, optimized),
                    "value": data,
                    "endpoint_type": endpoint_type_for(endpoint),
                }
            ]

        return load

    def adapt_cache_strategy(self) -> Optional[StrategyProfile]:
        """Feed live analytics into :meth:`CacheStrategy.adapt_strategy`.  ``None`` without analytics."""
        if self._analytics is None:
            return None
        metrics = {
            "hit_rate": self._analytics.get_current_hit_rate(),
            "error_rate": self._analytics.get_error_rate(),
            "credit_efficiency": self._analytics.get_credit_efficiency(),
        }
        return self._strategy.adapt_strategy(metrics)

    def get_usage_report(self) -> dict[str, Any]:
        """Credit usage, plan efficiency, active strategy and (when enabled) cache statistics."""
        usage = self._credits.get_usage_stats()
        report: dict[str, Any] = {
            "provider": PROVIDER_NAME,
            "credits": usage,
            "plan": self._plan.get_cost_efficiency_metrics(usage["total_credits"]),
            "strategy": self._strategy.get_current_strategy(),
        }
        if self._analytics is not None:
            report["cache"] = self._analytics.get_statistics()
        return report
