"""Serve-from-cache decisions and request shaping to minimise credit spend.

:meth:`CreditOptimizer.should_use_cache` walks a fixed priority ladder, first
match wins:

  1. caching disabled                        -> call   (``cache_disabled``)
  2. entry younger than the endpoint max age -> cache  (``cache_fresh``)
  3. quota cannot cover the call             -> cache if any entry exists,
                                                however stale (``credit_limit_reached``)
  4. per-minute or per-day cap exhausted     -> cache if any entry exists
                                                (``rate_limit_reached``)
  5. usage pressure: > 90 % accepts entries up to 3x max age, > 70 % up to
     2x, otherwise a fresh call (``fresh_data_needed``)

When step 3 or 4 matches without any cached entry the decision carries
``use_cache=False`` and ``cache_available=False``; the caller must not make
the call and has nothing to serve.

:meth:`CreditOptimizer.optimize_request` rewrites parameters in a fixed,
idempotent pipeline: endpoint-family clamping, batch truncation, currency
narrowing, default field selection.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional, Sequence

from cmc_pro.cache.layer import CoinMarketCapCache
from cmc_pro.config.endpoints import canonical_endpoint, endpoint_family, normalize_endpoint, resolve_ttl_key
from cmc_pro.config.options import SUPPORTED_CURRENCIES, CreditOptions
from cmc_pro.credit.credit_manager import CreditManager
from cmc_pro.credit.plan_manager import PlanManager

logger = logging.getLogger(__name__)

PRIORITY_CURRENCIES: tuple[str, ...] = ("usd", "eur", "btc", "eth")

_FIELD_SELECTION_ENDPOINTS = frozenset({"cryptocurrency/info"})
"""Endpoints accepting an ``aux`` field selection that defaults per tier."""


@dataclass(frozen=True)
class CacheDecision:
    """Outcome of :meth:`CreditOptimizer.should_use_cache`.

    Attributes:
        use_cache: Serve the cached entry instead of calling the API.
        reason: Which rule decided.
        cache_available: Whether any cached entry exists.
        cache_age: Age of the cached entry in seconds, if any.
        max_age: Endpoint max cache age, for ``cache_fresh``.
        credit_cost: Estimated credits for a call.
        remaining_credits: Credits left, for ``credit_limit_reached``.
        usage_percentage: Monthly usage fraction, for the pressure rules.
    """

    use_cache: bool
    reason: str
    cache_available: bool = False
    cache_age: Optional[int] = None
    max_age: Optional[int] = None
    credit_cost: Optional[int] = None
    remaining_credits: Optional[int] = None
    usage_percentage: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class CreditOptimizer:
    """Decides between cache and API and shapes request parameters.

    Args:
        plan_manager: Tier tables and batch sizes.
        credit_manager: Remaining quota, call counters and cost estimates.
        cache: Cache layer used to look up existing entries.
        options: ``optimization_enabled`` and the cost table.
        supported_currencies: Conversion currencies the API accepts.
        clock: Returns the current UTC datetime.
    """

    def __init__(
        self,
        plan_manager: PlanManager,
        credit_manager: CreditManager,
        cache: CoinMarketCapCache,
        options: Optional[CreditOptions] = None,
        supported_currencies: Sequence[str] = SUPPORTED_CURRENCIES,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._plan = plan_manager
        self._credits = credit_manager
        self._cache = cache
        self._options = options or CreditOptions()
        self._supported = tuple(c.lower() for c in supported_currencies)
        self._clock = clock

    @property
    def optimization_enabled(self) -> bool:
        return self._options.optimization_enabled

    # ------------------------------------------------------------------
    # Cache lookups
    # ------------------------------------------------------------------

    @staticmethod
    def cache_key(endpoint: str, params: Mapping[str, Any]) -> str:
        """Return ``{normalized_endpoint}:{md5 of canonical JSON params}``."""
        canonical = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
        digest = hashlib.md5(canonical.encode("utf-8")).hexdigest()  # noqa: S324
        return f"{normalize_endpoint(endpoint)}:{digest}"

    def get_cache_age(self, endpoint: str, params: Mapping[str, Any]) -> Optional[int]:
        entry = self._cache.get_entry(self.cache_key(endpoint, params))
        if entry is None:
            return None
        return int(entry.age(self._cache.now()))

    def get_max_cache_age(self, endpoint: str) -> int:
        table = self._cache.options.ttl
        return int(table.get(resolve_ttl_key(endpoint, dict(table)), table.get("default", 300)))

    def get_credit_cost(self, endpoint: str) -> int:
        return self._credits.estimate_cost(endpoint)

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def can_make_rate_limited_call(self) -> bool:
        return self._credits.can_make_minute_call() and self._credits.can_make_daily_call()

    def should_use_cache(self, endpoint: str, params: Mapping[str, Any]) -> CacheDecision:
        """Decide whether to serve *endpoint* with *params* from cache."""
        if not self._cache.enabled:
            return CacheDecision(use_cache=False, reason="cache_disabled")

        cache_age = self.get_cache_age(endpoint, params)
        available = cache_age is not None
        max_age = self.get_max_cache_age(endpoint)

        if available and cache_age < max_age:
            return CacheDecision(True, "cache_fresh", True, cache_age=cache_age, max_age=max_age)

        credit_cost = self.get_credit_cost(endpoint)
        if not self._credits.has_credits_for(credit_cost):
            decision = CacheDecision(
                available,
                "credit_limit_reached",
                available,
                cache_age=cache_age,
                credit_cost=credit_cost,
                remaining_credits=self._credits.get_remaining_credits(),
            )
            logger.info("optimizer: credit limit reached", extra=decision.to_dict())
            return decision

        if not self.can_make_rate_limited_call():
            decision = CacheDecision(available, "rate_limit_reached", available, cache_age=cache_age)
            logger.info("optimizer: rate limit reached", extra=decision.to_dict())
            return decision

        return self._evaluate_freshness_cost(max_age, cache_age, credit_cost)

    def _evaluate_freshness_cost(self, max_age: int, cache_age: Optional[int], credit_cost: int) -> CacheDecision:
        usage = self._credits.get_usage_percentage()
        if cache_age is not None:
            if usage > 0.9 and cache_age < max_age * 3:
                return CacheDecision(
                    True, "high_usage_conserve_credits", True, cache_age=cache_age, usage_percentage=usage
                )
            if usage > 0.7 and cache_age < max_age * 2:
                return CacheDecision(
                    True, "moderate_usage_conserve_credits", True, cache_age=cache_age, usage_percentage=usage
                )
        return CacheDecision(
            False, "fresh_data_needed", cache_age is not None, cache_age=cache_age, credit_cost=credit_cost
        )

    # ------------------------------------------------------------------
    # Request shaping
    # ------------------------------------------------------------------

    def optimize_request(self, endpoint: str, params: Mapping[str, Any]) -> dict[str, Any]:
        """Return a narrowed copy of *params*.  Applying it twice changes nothing more."""
        optimized = {k: list(v) if isinstance(v, (list, tuple)) else v for k, v in params.items()}
        if not self.optimization_enabled:
            return optimized
        optimized = self._optimize_by_endpoint(endpoint, optimized)
        optimized = self._optimize_batching(endpoint, optimized)
        optimized = self._optimize_currencies(optimized)
        return self._optimize_fields(endpoint, optimized)

    def _optimize_by_endpoint(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        family = endpoint_family(endpoint)
        if family in ("cryptocurrency", "exchange") and "listings" in canonical_endpoint(endpoint):
            ceiling = self._plan.get_listing_limit(family)
            limit = params.get("limit")
            if limit is None:
                params["limit"] = ceiling
            else:
                try:
                    if int(limit) > ceiling:
                        params["limit"] = ceiling
                except (TypeError, ValueError):
                    logger.debug("optimizer: non-numeric limit left as is", extra={"limit": repr(limit)})
        elif family == "global_metrics":
            params = self._optimize_currencies(params)
        return params

    def _optimize_batching(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        batch_size = self._plan.get_optimal_batch_size(endpoint)
        for name in ("id", "symbol"):
            values = params.get(name)
            if isinstance(values, list) and len(values) > batch_size:
                params[name] = values[:batch_size]
        return params

    def _optimize_currencies(self, params: dict[str, Any]) -> dict[str, Any]:
        requested = params.get("convert")
        if isinstance(requested, str):
            tokens = [c.strip() for c in requested.split(",") if c.strip()]
        elif isinstance(requested, list):
            tokens = list(requested)
        else:
            return params
        currencies = [c for c in tokens if str(c).lower() in self._supported]
        maximum = self._plan.get_max_convert_currencies()
        if len(currencies) > maximum:
            lowered = [str(c).lower() for c in currencies]
            priority = [c for c in PRIORITY_CURRENCIES if c in lowered]
            rest = [c for c in lowered if c not in PRIORITY_CURRENCIES]
            currencies = (priority + rest)[:maximum]
        if not currencies:
            params.pop("convert")
        elif isinstance(requested, str):
            params["convert"] = ",".join(str(c) for c in currencies)
        else:
            params["convert"] = currencies
        return params

    def _optimize_fields(self, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        if "aux" in params or canonical_endpoint(endpoint) not in _FIELD_SELECTION_ENDPOINTS:
            return params
        fields = self._plan.get_default_fields()
        if fields:
            params["aux"] = ",".join(fields)
        return params

    def get_batch_recommendations(self, endpoint: str, items: Sequence[Any]) -> list[list[Any]]:
        """Split *items* into request-sized chunks for *endpoint*."""
        if not items:
            return []
        size = max(1, self._plan.get_optimal_batch_size(endpoint))
        return [list(items[i : i + size]) for i in range(0, len(items), size)]

    # ------------------------------------------------------------------
    # Advice
    # ------------------------------------------------------------------

    def get_optimal_timing(self, endpoint: str) -> dict[str, Any]:
        """Return whether to postpone a call to *endpoint*, and until when."""
        now = self._clock()
        stats = self._credits.get_usage_stats()

        if stats["minute_limit"] > 0 and stats["minute_calls"] >= stats["minute_limit"] * 0.9:
            wait = 60 - now.second
            return {
                "should_delay": True,
                "delay_seconds": wait,
                "reason": "minute_rate_limit_near",
                "optimal_time": (now + timedelta(seconds=wait)).isoformat(),
            }

        if stats["daily_limit"] > 0 and stats["daily_calls"] >= stats["daily_limit"] * 0.9:
            next_day = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
            return {
                "should_delay": True,
                "delay_seconds": int((next_day - now).total_seconds()),
                "reason": "daily_rate_limit_near",
                "optimal_time": next_day.isoformat(),
            }

        if stats["usage_percentage"] > 0.9:
            year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
            next_month = now.replace(year=year, month=month, day=1, hour=0, minute=0, second=0, microsecond=0)
            return {
                "should_delay": True,
                "delay_seconds": int((next_month - now).total_seconds()),
                "reason": "monthly_credits_near_limit",
                "optimal_time": next_month.isoformat(),
            }

        return {
            "should_delay": False,
            "optimal_window": _optimal_window(endpoint),
            "current_time": now.isoformat(),
        }

    def calculate_freshness_score(self, endpoint: str, cache_age: Optional[int]) -> int:
        if cache_age is None:
            return 0
        max_age = self.get_max_cache_age(endpoint)
        if max_age <= 0:
            return 0
        return int(round(max(0.0, 100 - cache_age / max_age * 100)))

    def get_credit_saving_alternatives(self, endpoint: str, params: Mapping[str, Any]) -> dict[str, Any]:
        alternatives: dict[str, Any] = {}
        if self._cache.enabled:
            cache_age = self.get_cache_age(endpoint, params)
            if cache_age is not None:
                alternatives["cached_data"] = {
                    "description": "Use existing cached data",
                    "credit_savings": self.get_credit_cost(endpoint),
                    "data_age": cache_age,
                    "freshness": self.calculate_freshness_score(endpoint, cache_age),
                }

        lower_cost = self._lower_cost_alternatives(endpoint)
        if lower_cost:
            alternatives["lower_cost_endpoints"] = lower_cost

        if "ohlcv" in normalize_endpoint(endpoint):
            alternatives["reduced_precision"] = {
                "reduce_interval": {
                    "description": "Use larger time intervals (hourly instead of minutely)",
                    "credit_savings_potential": "20-50%",
                    "data_impact": "Lower granularity but same trends",
                }
            }
        return alternatives

    def _lower_cost_alternatives(self, endpoint: str) -> list[dict[str, Any]]:
        current = normalize_endpoint(endpoint)
        current_cost = self.get_credit_cost(endpoint)
        tokens = set(current.split("_"))
        result: list[dict[str, Any]] = []
        for candidate, cost in self._options.costs.items():
            if candidate == current or cost >= current_cost:
                continue
            if tokens & set(candidate.split("_")):
                result.append(
                    {
                        "endpoint": candidate,
                        "cost": cost,
                        "savings": current_cost - cost,
                        "data_completeness": _data_completeness(current, candidate),
                    }
                )
        return result

    def calculate_cost_benefit(
        self, endpoint: str, params: Mapping[str, Any], data_max_age: int
    ) -> dict[str, Any]:
        """Weigh the value of fresh data against the pressure on the quota.

        ``benefit`` is 100 without a usable cache entry and otherwise shrinks
        towards 0 as the entry gets fresher; ``cost`` grows with the call's
        credit cost, monthly usage and a low remaining balance.  The
        difference maps to ``make_api_call`` (>= 50),
        ``consider_alternatives`` (>= 0), ``use_cache_preferred`` (>= -50)
        or ``use_cache_strongly_recommended``.
        """
        credit_cost = self.get_credit_cost(endpoint)
        cache_age = self.get_cache_age(endpoint, params)
        remaining = self._credits.get_remaining_credits()
        usage = self._credits.get_usage_percentage()

        benefit = _benefit_score(cache_age, data_max_age)
        cost = _cost_score(credit_cost, remaining, usage)
        score = benefit - cost

        return {
            "endpoint": endpoint,
            "credit_cost": credit_cost,
            "remaining_credits": remaining,
            "usage_percentage": usage,
            "cache_age": cache_age,
            "freshness_score": self.calculate_freshness_score(endpoint, cache_age),
            "benefit_score": benefit,
            "cost_score": cost,
            "recommendation_score": score,
            "recommendation": recommendation_from_score(score),
            "alternatives": self.get_credit_saving_alternatives(endpoint, params),
        }


# ---------------------------------------------------------------------------
# Scoring helpers
# ---------------------------------------------------------------------------


def _benefit_score(cache_age: Optional[int], data_max_age: int) -> int:
    if cache_age is None or data_max_age <= 0 or cache_age > data_max_age:
        return 100
    return int(round(cache_age / data_max_age * 100))


def _cost_score(credit_cost: int, remaining: int, usage: float) -> int:
    base = min(100.0, credit_cost / 10 * 100)
    pressure = 2 if remaining < 100 else 1
    return int(min(100, round(base * (1 + usage * 2) * pressure)))


def recommendation_from_score(score: int) -> str:
    if score >= 50:
        return "make_api_call"
    if score >= 0:
        return "consider_alternatives"
    if score >= -50:
        return "use_cache_preferred"
    return "use_cache_strongly_recommended"


def _data_completeness(original: str, alternative: str) -> int:
    if "latest" in original and "latest" in alternative:
        return 95
    if "info" in original and "map" in alternative:
        return 60
    return 80


def _optimal_window(endpoint: str) -> dict[str, Any]:
    key = normalize_endpoint(endpoint)
    if "map" in key or "info" in key:
        return {"frequency": "daily", "optimal_hour": 9, "reason": "static_data_updates_daily"}
    if "quotes" in key or "ohlcv" in key:
        return {
            "frequency": "hourly",
            "optimal_minutes": [0, 15, 30, 45],
            "reason": "price_data_updates_frequently",
        }
    return {
        "frequency": "4_hourly",
        "optimal_hours": [0, 6, 12, 18],
        "reason": "moderate_update_frequency",
    }
