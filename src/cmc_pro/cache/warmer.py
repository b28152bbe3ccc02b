"""Pre-populate the cache with the data most callers need first.

The warmer never fabricates payloads.  Each endpoint type it can warm has a
registered *loader*: a zero-argument callable that fetches real data (usually
through :meth:`cmc_pro.provider.CoinMarketCapProvider.warming_loaders`) and
returns cache items of the form::

    {"key": "cryptocurrency_map:<md5>", "value": {...}, "endpoint_type": "cryptocurrency_map"}

Endpoint types are warmed in descending priority order; types below the
``min_priority`` cut-off or without a loader are skipped.  Items are written
in strategy-sized batches through :meth:`CoinMarketCapCache.warm` with a
pause between batches so that warming never bursts the per-minute cap.

A run that stores every item of an endpoint type leaves a marker entry
``warming:{endpoint_type}`` listing the keys it wrote, with a TTL of the
type's refresh interval (:data:`WARMING_FREQUENCIES`, hourly when unlisted)
less a short slack.  Later runs skip the loader, and so spend no credits,
while that marker is live and every key it lists is still cached.  Pass
``force=True`` to warm regardless.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional

from cmc_pro.cache.analytics import CacheAnalytics
from cmc_pro.cache.layer import CoinMarketCapCache
from cmc_pro.cache.strategy import CacheStrategy
from cmc_pro.core.exceptions import CoinMarketCapError

logger = logging.getLogger(__name__)

WarmingLoader = Callable[[], Iterable[Mapping[str, Any]]]


@dataclass(frozen=True)
class WarmingPlan:
    """How hard a warming run pushes: items per batch and the pause after each."""

    batch_size: int
    delay_between_batches_ms: int
    include_historical: bool


WARMING_STRATEGIES: Mapping[str, WarmingPlan] = MappingProxyType(
    {
        "aggressive": WarmingPlan(batch_size=50, delay_between_batches_ms=100, include_historical=True),
        "balanced": WarmingPlan(batch_size=30, delay_between_batches_ms=300, include_historical=True),
        "conservative": WarmingPlan(batch_size=20, delay_between_batches_ms=500, include_historical=False),
    }
)

# endpoint type -> refresh frequency
WARMING_FREQUENCIES: Mapping[str, str] = MappingProxyType(
    {
        "cryptocurrency_map": "daily",
        "fiat_map": "daily",
        "exchange_map": "daily",
        "cryptocurrency_info": "daily",
        "exchange_info": "daily",
        "global_metrics": "hourly",
        "cryptocurrency_listings": "hourly",
        "trending": "hourly",
        "cryptocurrency_quotes": "every_30_minutes",
        "exchange_quotes": "every_30_minutes",
    }
)

_FREQUENCY_INTERVALS: Mapping[str, timedelta] = MappingProxyType(
    {
        "daily": timedelta(days=1),
        "hourly": timedelta(hours=1),
        "every_30_minutes": timedelta(minutes=30),
        "every_15_minutes": timedelta(minutes=15),
    }
)

_ESTIMATED_DURATION_SECONDS: Mapping[str, int] = MappingProxyType(
    {
        "cryptocurrency_map": 10,
        "fiat_map": 10,
        "exchange_map": 10,
        "cryptocurrency_quotes": 30,
        "exchange_quotes": 30,
        "cryptocurrency_listings": 20,
        "global_metrics": 5,
    }
)

_HISTORICAL_TYPES = frozenset({"historical"})

# Keeps an hourly beat from finding an hourly marker a few seconds short of expiry.
_SCHEDULE_SLACK = timedelta(minutes=5)


@dataclass
class WarmingResult:
    """Outcome of warming one endpoint type."""

    endpoint_type: str
    items_warmed: int = 0
    errors: int = 0
    duration_ms: float = 0.0
    error: Optional[str] = None
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "endpoint_type": self.endpoint_type,
            "items_warmed": self.items_warmed,
            "errors": self.errors,
            "duration_ms": round(self.duration_ms, 2),
        }
        if self.error is not None:
            data["error"] = self.error
        if self.skipped:
            data["skipped"] = True
        return data


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class CacheWarmer:
    """Runs registered loaders by priority and stores their items.

    Args:
        cache: Destination cache layer.
        strategy: Source of default warming priorities.  Optional.
        analytics: Receives the warmed item count.  Optional.
        priorities: Overrides merged over the strategy/default priorities.
        sleep: Called with seconds between batches.
        clock: Returns the current UTC datetime.
    """

    def __init__(
        self,
        cache: CoinMarketCapCache,
        strategy: Optional[CacheStrategy] = None,
        analytics: Optional[CacheAnalytics] = None,
        priorities: Optional[Mapping[str, int]] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._cache = cache
        self._strategy = strategy or CacheStrategy()
        self._analytics = analytics
        self._overrides = dict(priorities or {})
        self._sleep = sleep
        self._clock = clock
        self._loaders: dict[str, WarmingLoader] = {}
        self._last_warming: Optional[datetime] = None
        self._warmed_keys: dict[str, set[str]] = {}

    def register_loader(self, endpoint_type: str, loader: WarmingLoader) -> None:
        self._loaders[endpoint_type] = loader

    @property
    def loaders(self) -> Mapping[str, WarmingLoader]:
        return MappingProxyType(self._loaders)

    def get_warming_priorities(self) -> dict[str, int]:
        priorities = self._strategy.get_warming_priorities()
        priorities.update(self._overrides)
        return priorities

    # ------------------------------------------------------------------
    # Warming runs
    # ------------------------------------------------------------------

    def warm_essential_data(
        self, strategy: str = "balanced", min_priority: int = 5, force: bool = False
    ) -> dict[str, WarmingResult]:
        """Warm every loader-backed endpoint type at or above *min_priority*.

        Args:
            strategy: Key into :data:`WARMING_STRATEGIES`.  Unknown names
                fall back to ``balanced``.
            min_priority: Lowest priority still warmed.
            force: Run loaders even when their last warming is still fresh.

        Returns:
            Per-endpoint-type results, highest priority first.  Fresh types
            are reported with ``skipped=True``.
        """
        plan = WARMING_STRATEGIES.get(strategy, WARMING_STRATEGIES["balanced"])
        ordered = sorted(self.get_warming_priorities().items(), key=lambda kv: kv[1], reverse=True)
        logger.info("warmer: starting", extra={"strategy": strategy, "min_priority": min_priority})

        results: dict[str, WarmingResult] = {}
        for endpoint_type, priority in ordered:
            if priority < min_priority or endpoint_type not in self._loaders:
                continue
            if endpoint_type in _HISTORICAL_TYPES and not plan.include_historical:
                continue
            results[endpoint_type] = self._warm_endpoint_type(endpoint_type, plan, force)

        self._finish_run(results)
        return results

    def warm_from_usage_patterns(self, threshold: float = 0.7) -> dict[str, WarmingResult]:
        """Aggressively warm endpoint types whose hit rate is below *threshold*."""
        if self._analytics is None:
            return {}
        plan = WARMING_STRATEGIES["aggressive"]
        results: dict[str, WarmingResult] = {}
        for endpoint in self._analytics.get_top_performing_endpoints(limit=50):
            name = endpoint["endpoint"]
            if endpoint["hit_rate"] < threshold and name in self._loaders:
                results[name] = self._warm_endpoint_type(name, plan)
        self._finish_run(results)
        return results

    def refresh_warming_cache(self, strategy: str = "balanced") -> dict[str, Any]:
        """Forget every entry this warmer stored, then force :meth:`warm_essential_data`."""
        cleared = 0
        for keys in self._warmed_keys.values():
            cleared += sum(1 for key in keys if self._cache.forget(key))
        self._warmed_keys.clear()
        results = self.warm_essential_data(strategy=strategy, force=True)
        return {"cleared_items": cleared, "results": {k: v.to_dict() for k, v in results.items()}}

    def is_fresh(self, endpoint_type: str) -> bool:
        """True while the last complete warming of *endpoint_type* is still cached."""
        marker = self._cache.get_entry(_marker_key(endpoint_type))
        if marker is None or not isinstance(marker.value, dict):
            return False
        keys = marker.value.get("keys") or []
        return all(self._cache.get_entry(str(key)) is not None for key in keys)

    def _warm_endpoint_type(self, endpoint_type: str, plan: WarmingPlan, force: bool = False) -> WarmingResult:
        result = WarmingResult(endpoint_type=endpoint_type)
        if not force and self.is_fresh(endpoint_type):
            logger.debug("warmer: still fresh, skipping", extra={"endpoint_type": endpoint_type})
            result.skipped = True
            return result

        started = time.perf_counter()
        try:
            items = [
                {"endpoint_type": endpoint_type, **item}
                for item in self._loaders[endpoint_type]()
            ]
        except CoinMarketCapError as exc:
            result.errors += 1
            result.error = str(exc)
            logger.warning("warmer: loader failed", extra={"endpoint_type": endpoint_type, "error": str(exc)})
            result.duration_ms = (time.perf_counter() - started) * 1000
            return result

        for offset in range(0, len(items), plan.batch_size):
            batch = items[offset : offset + plan.batch_size]
            stored = self._cache.warm(batch)
            if stored:
                keys = self._warmed_keys.setdefault(endpoint_type, set())
                keys.update(str(item["key"]) for item in batch if "key" in item)
            result.items_warmed += stored
            result.errors += len(batch) - stored
            if offset + plan.batch_size < len(items):
                self._sleep(plan.delay_between_batches_ms / 1000)

        if items and not result.errors:
            self._cache.put(
                _marker_key(endpoint_type),
                {"keys": [str(item["key"]) for item in items]},
                ttl=_marker_ttl(endpoint_type),
            )
        result.duration_ms = (time.perf_counter() - started) * 1000
        return result

    def _finish_run(self, results: Mapping[str, WarmingResult]) -> None:
        total = sum(r.items_warmed for r in results.values())
        self._last_warming = self._clock()
        if self._analytics is not None:
            self._analytics.record_warming(total)
        logger.info(
            "warmer: completed",
            extra={"items_warmed": total, "endpoint_types": len(results)},
        )

    # ------------------------------------------------------------------
    # Schedule and reporting
    # ------------------------------------------------------------------

    def calculate_next_run(self, frequency: str, now: Optional[datetime] = None) -> datetime:
        start = now or self._clock()
        return start + _FREQUENCY_INTERVALS.get(frequency, timedelta(hours=1))

    def get_warming_schedule(self) -> dict[str, dict[str, Any]]:
        now = self._clock()
        priorities = self.get_warming_priorities()
        return {
            endpoint_type: {
                "frequency": frequency,
                "priority": priorities.get(endpoint_type, 0),
                "next_run": self.calculate_next_run(frequency, now),
                "estimated_duration": _ESTIMATED_DURATION_SECONDS.get(endpoint_type, 15),
            }
            for endpoint_type, frequency in WARMING_FREQUENCIES.items()
        }

    def get_upcoming_warmings(self, limit: int = 5) -> list[dict[str, Any]]:
        upcoming = [
            {"endpoint": name, "scheduled_at": entry["next_run"].isoformat(), "priority": entry["priority"]}
            for name, entry in self.get_warming_schedule().items()
        ]
        upcoming.sort(key=lambda e: (e["scheduled_at"], -e["priority"]))
        return upcoming[:limit]

    def get_warming_statistics(self) -> dict[str, Any]:
        stats = self._analytics.get_statistics() if self._analytics is not None else {}
        overview = stats.get("overview", {})
        hit_rate = float(overview.get("hit_rate", 0.0))
        credits_saved = float(overview.get("credits_saved", 0))
        coverage = len(set(self._warmed_keys) & set(WARMING_FREQUENCIES)) / len(WARMING_FREQUENCIES)
        return {
            "total_warmings": overview.get("total_warmings", 0),
            "warming_efficiency": min(1.0, hit_rate * 0.7 + min(credits_saved / 100, 0.3)),
            "last_warming": self._last_warming.isoformat() if self._last_warming else None,
            "upcoming_warmings": self.get_upcoming_warmings(),
            "warming_coverage": coverage,
        }


def _marker_key(endpoint_type: str) -> str:
    return f"warming:{endpoint_type}"


def _marker_ttl(endpoint_type: str) -> int:
    interval = _FREQUENCY_INTERVALS[WARMING_FREQUENCIES.get(endpoint_type, "hourly")]
    return int((interval - _SCHEDULE_SLACK).total_seconds())
