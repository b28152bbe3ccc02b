"""TTL and cache/no-cache decisions per endpoint category.

A :class:`StrategyProfile` is an immutable policy bundle.  The active profile
and the last observed credit efficiency are held together in a frozen
:class:`StrategyState` that is replaced as a whole by :meth:`set_strategy`
and :meth:`adapt_strategy`; readers take one snapshot per decision, so a
concurrent switch can never mix two profiles within one computation.

With a ``store``, the state lives under ``strategy:state`` in that store, so
an adaptation run by a Celery worker is what every serving process reads on
its next decision.  A new instance seeds the shared state from its
configuration only when none exists yet.  If the store is unreachable the
last state seen by this instance is used.  Every
decision method also accepts an explicit ``profile=`` to evaluate a policy
without touching the shared state.

:meth:`CacheStrategy.get_optimal_strategy` applies three adjustments in order,
each reading the multiplier left by the previous one:

  1. Endpoint category: static x1.5 (real-time caching forced on),
     real-time x0.5, historical x2.0 (real-time caching forced on).
  2. Market volatility from ``context["volatility"]``: ``high`` x0.7 and
     real-time caching off; ``low`` x1.3 and real-time caching on.
  3. Credit efficiency below 0.5: x1.5 and the minimum credit threshold
     relaxed by one (never below 1).

:meth:`calculate_ttl` clamps its result to the category bounds as the very
last step, so no combination of multipliers and context hints escapes them.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional

from cmc_pro.cache.analytics import CacheAnalytics
from cmc_pro.config.endpoints import EndpointCategory, classify_endpoint, resolve_ttl_key
from cmc_pro.config.options import CacheOptions
from cmc_pro.core.event_bus import STRATEGY_CHANGED, EventBus
from cmc_pro.core.exceptions import StoreError, UnknownStrategyError
from cmc_pro.core.store import CacheStore

logger = logging.getLogger(__name__)

_STATE_KEY = "strategy:state"


@dataclass(frozen=True)
class StrategyProfile:
    """Named caching policy.

    Attributes:
        name: Profile name (``aggressive``, ``balanced``, ``fresh``, ``adaptive``).
        description: Human-readable summary.
        ttl_multiplier: Factor applied to the base TTL.
        min_credit_threshold: Calls cheaper than this are not cached.
        cache_real_time: Whether real-time endpoints may be cached.
    """

    name: str
    description: str
    ttl_multiplier: float
    min_credit_threshold: int
    cache_real_time: bool


STRATEGIES: Mapping[str, StrategyProfile] = MappingProxyType(
    {
        "aggressive": StrategyProfile("aggressive", "Maximum caching for cost optimization", 2.0, 1, True),
        "balanced": StrategyProfile("balanced", "Balance between freshness and cost", 1.0, 1, True),
        "fresh": StrategyProfile("fresh", "Prioritize data freshness", 0.5, 2, False),
        "adaptive": StrategyProfile(
            "adaptive", "Adapt based on usage patterns and credit consumption", 1.0, 1, True
        ),
    }
)

TTL_BOUNDS: Mapping[EndpointCategory, tuple[int, int]] = MappingProxyType(
    {
        EndpointCategory.STATIC: (3_600, 86_400 * 7),
        EndpointCategory.SEMI_DYNAMIC: (60, 3_600),
        EndpointCategory.REAL_TIME: (30, 300),
        EndpointCategory.MARKET_DATA: (60, 1_800),
        EndpointCategory.HISTORICAL: (1_800, 86_400 * 30),
    }
)
"""Inclusive (min, max) TTL in seconds per category."""

_DEFAULT_BOUNDS = (60, 3_600)

_BASE_PRIORITY: Mapping[EndpointCategory, int] = MappingProxyType(
    {
        EndpointCategory.STATIC: 10,
        EndpointCategory.HISTORICAL: 9,
        EndpointCategory.SEMI_DYNAMIC: 8,
        EndpointCategory.MARKET_DATA: 6,
        EndpointCategory.REAL_TIME: 3,
    }
)

WARMING_PRIORITIES: Mapping[str, int] = MappingProxyType(
    {
        "cryptocurrency_map": 10,
        "fiat_map": 10,
        "exchange_map": 9,
        "cryptocurrency_info": 8,
        "exchange_info": 8,
        "global_metrics": 7,
        "cryptocurrency_listings": 6,
        "trending": 5,
        "cryptocurrency_quotes": 4,
        "exchange_quotes": 4,
        "ohlcv": 3,
        "market_pairs": 3,
        "historical": 2,
    }
)


@dataclass(frozen=True)
class StrategyState:
    """Snapshot of the active profile and the last known credit efficiency."""

    profile: StrategyProfile
    credit_efficiency: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {"profile": self.profile.name, "credit_efficiency": self.credit_efficiency}

    @classmethod
    def from_dict(cls, raw: Any) -> Optional[StrategyState]:
        """Rebuild a state written by :meth:`to_dict`; ``None`` when unreadable."""
        if not isinstance(raw, dict) or raw.get("profile") not in STRATEGIES:
            return None
        efficiency = raw.get("credit_efficiency")
        return cls(
            STRATEGIES[raw["profile"]],
            float(efficiency) if isinstance(efficiency, (int, float)) else None,
        )


class CacheStrategy:
    """Computes TTLs and caching decisions.

    Args:
        options: Cache options; ``strategy`` names the initial profile and
            ``ttl`` is the base TTL table.
        analytics: Used to pick an initial profile when the configured one is
            unknown.  Optional.
        events: Receives ``cache.strategy_changed`` notifications.  Optional.
        store: Shares the active state with other processes.  Optional;
            without it the state is local to this instance.
    """

    def __init__(
        self,
        options: Optional[CacheOptions] = None,
        analytics: Optional[CacheAnalytics] = None,
        events: Optional[EventBus] = None,
        store: Optional[CacheStore] = None,
    ) -> None:
        self._options = options or CacheOptions()
        self._analytics = analytics
        self._events = events
        self._store = store
        self._lock = threading.Lock()
        self._last_seen = StrategyState(STRATEGIES[self._initial_strategy()])
        if self._store is not None:
            try:
                self._store.add(_STATE_KEY, self._last_seen.to_dict())
            except StoreError as exc:
                logger.warning("cache_strategy: could not seed shared state", extra={"error": str(exc)})

    def _initial_strategy(self) -> str:
        configured = self._options.strategy
        if configured in STRATEGIES:
            return configured
        logger.warning("cache_strategy: unknown configured strategy %r", configured)
        if self._analytics is None:
            return "adaptive"
        hit_rate = self._analytics.get_current_hit_rate()
        if hit_rate == 0.0:
            return "adaptive"
        stats = self._analytics.get_statistics()
        if hit_rate > 0.8 and stats["overview"]["credits_saved"] > 100:
            return "balanced"
        if hit_rate < 0.5:
            return "aggressive"
        return "adaptive"

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> StrategyState:
        """The active state, read from the shared store when there is one."""
        if self._store is None:
            return self._last_seen
        try:
            shared = StrategyState.from_dict(self._store.get(_STATE_KEY))
        except StoreError as exc:
            logger.warning("cache_strategy: shared state unavailable", extra={"error": str(exc)})
            return self._last_seen
        if shared is not None:
            self._last_seen = shared
        return self._last_seen

    def get_current_strategy(self) -> str:
        return self.state.profile.name

    def get_available_strategies(self) -> Mapping[str, StrategyProfile]:
        return STRATEGIES

    def set_strategy(self, name: str) -> StrategyProfile:
        """Activate the named profile.

        Raises:
            UnknownStrategyError: When *name* is not a known profile.
        """
        if name not in STRATEGIES:
            raise UnknownStrategyError(name)
        return self._switch(STRATEGIES[name], reason="manual")

    def _switch(self, profile: StrategyProfile, reason: str, credit_efficiency: Optional[float] = None) -> StrategyProfile:
        with self._lock:
            previous = self.state
            efficiency = previous.credit_efficiency if credit_efficiency is None else credit_efficiency
            self._last_seen = StrategyState(profile, efficiency)
            if self._store is not None:
                try:
                    self._store.put(_STATE_KEY, self._last_seen.to_dict())
                except StoreError as exc:
                    logger.warning("cache_strategy: could not share state", extra={"error": str(exc)})
        if previous.profile.name != profile.name:
            logger.info(
                "cache_strategy: switched",
                extra={"from": previous.profile.name, "to": profile.name, "reason": reason},
            )
            if self._events is not None:
                self._events.publish(
                    STRATEGY_CHANGED,
                    {"from": previous.profile.name, "to": profile.name, "reason": reason},
                )
        return profile

    def adapt_strategy(self, metrics: Mapping[str, Any]) -> StrategyProfile:
        """Switch profile from observed metrics.  At most one transition per call.

        Rules, first match wins:

          - ``hit_rate < 0.6`` and not aggressive: aggressive
          - ``error_rate > 0.1`` and not fresh: fresh
          - ``hit_rate > 0.8`` and ``error_rate < 0.05``: balanced

        ``credit_efficiency``, when present, is remembered for the credit
        adjustment step.

        Returns:
            The profile active after the call.
        """
        hit_rate = float(metrics.get("hit_rate", 0.0))
        error_rate = float(metrics.get("error_rate", 0.0))
        efficiency = metrics.get("credit_efficiency")
        efficiency = float(efficiency) if efficiency is not None else None
        current = self.state.profile

        if hit_rate < 0.6 and current.name != "aggressive":
            return self._switch(STRATEGIES["aggressive"], "low_hit_rate", efficiency)
        if error_rate > 0.1 and current.name != "fresh":
            return self._switch(STRATEGIES["fresh"], "high_error_rate", efficiency)
        if hit_rate > 0.8 and error_rate < 0.05:
            return self._switch(STRATEGIES["balanced"], "healthy", efficiency)
        return self._switch(current, "unchanged", efficiency)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def get_optimal_strategy(
        self,
        endpoint_type: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
        profile: Optional[StrategyProfile] = None,
    ) -> StrategyProfile:
        """Return the active (or given) profile adjusted for endpoint, market and credits.

        Args:
            endpoint_type: Endpoint path or type used for the category step.
            context: Hints such as ``volatility`` (``high``/``low``) and
                ``credit_efficiency`` (overrides the remembered value).
            profile: Evaluate this profile instead of the active one.
        """
        context = context or {}
        state = self.state
        strategy = profile or state.profile

        if endpoint_type:
            category = classify_endpoint(endpoint_type)
            if category is EndpointCategory.STATIC:
                strategy = replace(strategy, ttl_multiplier=strategy.ttl_multiplier * 1.5, cache_real_time=True)
            elif category is EndpointCategory.REAL_TIME:
                strategy = replace(strategy, ttl_multiplier=strategy.ttl_multiplier * 0.5)
            elif category is EndpointCategory.HISTORICAL:
                strategy = replace(strategy, ttl_multiplier=strategy.ttl_multiplier * 2.0, cache_real_time=True)

        volatility = context.get("volatility", "normal")
        if volatility == "high":
            strategy = replace(strategy, ttl_multiplier=strategy.ttl_multiplier * 0.7, cache_real_time=False)
        elif volatility == "low":
            strategy = replace(strategy, ttl_multiplier=strategy.ttl_multiplier * 1.3, cache_real_time=True)

        efficiency = context.get("credit_efficiency", state.credit_efficiency)
        if efficiency is not None and float(efficiency) < 0.5:
            strategy = replace(
                strategy,
                ttl_multiplier=strategy.ttl_multiplier * 1.5,
                min_credit_threshold=max(1, strategy.min_credit_threshold - 1),
            )
        return strategy

    def get_base_ttl(self, endpoint_type: str) -> int:
        table = self._options.ttl
        return int(table.get(resolve_ttl_key(endpoint_type, dict(table)), table.get("default", 300)))

    def get_ttl_bounds(self, endpoint_type: str) -> tuple[int, int]:
        return TTL_BOUNDS.get(classify_endpoint(endpoint_type), _DEFAULT_BOUNDS)

    def calculate_ttl(
        self,
        endpoint_type: str,
        context: Optional[Mapping[str, Any]] = None,
        profile: Optional[StrategyProfile] = None,
    ) -> int:
        """Return the TTL in seconds for *endpoint_type*, clamped to its category bounds."""
        context = context or {}
        strategy = self.get_optimal_strategy(endpoint_type, context, profile)
        ttl = int(self.get_base_ttl(endpoint_type) * strategy.ttl_multiplier)

        if context.get("high_activity") is True:
            ttl = int(ttl * 0.8)
        if context.get("bulk_request") is True:
            ttl = int(ttl * 1.2)

        minimum, maximum = self.get_ttl_bounds(endpoint_type)
        return max(minimum, min(maximum, ttl))

    def should_cache(
        self,
        endpoint_type: str,
        credit_cost: int = 1,
        context: Optional[Mapping[str, Any]] = None,
        profile: Optional[StrategyProfile] = None,
    ) -> bool:
        strategy = self.get_optimal_strategy(endpoint_type, context, profile)
        if credit_cost < strategy.min_credit_threshold:
            return False
        if classify_endpoint(endpoint_type) is EndpointCategory.REAL_TIME and not strategy.cache_real_time:
            return False
        return True

    def get_cache_priority(
        self, endpoint_type: str, credit_cost: int = 1, context: Optional[Mapping[str, Any]] = None
    ) -> int:
        """Return a 1-10 priority; expensive calls rank higher, volatile markets lower."""
        context = context or {}
        base = _BASE_PRIORITY.get(classify_endpoint(endpoint_type), 5)
        multiplier = min(2.0, 1.0 + (credit_cost - 1) * 0.2)
        priority = int(base * multiplier)
        if context.get("volatility", "normal") == "high":
            priority -= 1
        return max(1, min(10, priority))

    def should_invalidate(
        self,
        endpoint_type: str,
        context: Optional[Mapping[str, Any]] = None,
        profile: Optional[StrategyProfile] = None,
    ) -> bool:
        """Return True when a cached entry for *endpoint_type* should be dropped.

        ``context["last_update"]`` may be a datetime, an ISO 8601 string or
        epoch seconds.
        """
        context = context or {}
        real_time = classify_endpoint(endpoint_type) is EndpointCategory.REAL_TIME
        if real_time and context.get("volatility", "normal") == "high":
            return True

        strategy = self.get_optimal_strategy(endpoint_type, context, profile)
        if real_time and not strategy.cache_real_time:
            return True

        last_update = _parse_timestamp(context.get("last_update"))
        if last_update is None:
            return False
        age = (datetime.now(timezone.utc) - last_update).total_seconds()
        return age > self.calculate_ttl(endpoint_type, context, profile) * 0.8

    def get_warming_priorities(self) -> dict[str, int]:
        return dict(WARMING_PRIORITIES)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
