"""Cache hit/miss, credit-saving and error counters with derived reports.

Counters live in the store under ``{prefix}:analytics:``.  They only ever
grow until :meth:`CacheAnalytics.reset` or until their own TTL (seven days
from creation by default) runs out::

    {prefix}:analytics:hits                       all hits
    {prefix}:analytics:hits:{endpoint_type}       hits per endpoint type
    {prefix}:analytics:endpoints:{type}:{metric}  per-endpoint breakdown
    {prefix}:analytics:response_times:{op}        time series (1 h, 1000 points)
    {prefix}:analytics:error_details:{type}       last 100 errors (24 h)

Every recorded key is added to the expiring store index
``{prefix}:analytics:keys`` so that :meth:`reset` can remove them all
regardless of the store backend.  Endpoint and error types seen are kept
in two further indexes with the counter TTL.

Recording never raises: a failing store is logged and the event dropped.
The read side (statistics, efficiency score, recommendations) is pure
arithmetic over the counters and is safe to call at any frequency.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

from cmc_pro.config.options import DEFAULT_ANALYTICS_TTL
from cmc_pro.core.exceptions import StoreError
from cmc_pro.core.store import CacheStore

logger = logging.getLogger(__name__)

COLLECTION_INTERVALS: dict[str, int] = {
    "minute": 60,
    "hour": 3_600,
    "day": 86_400,
    "week": 604_800,
}

METRIC_KEYS: tuple[str, ...] = (
    "hits",
    "misses",
    "stores",
    "invalidations",
    "credit_saves",
    "response_times",
    "memory_usage",
    "errors",
)

_SERIES_LIMIT = 1_000
_SERIES_TTL = 3_600
_ERROR_DETAIL_LIMIT = 100
_ERROR_DETAIL_TTL = 86_400
_HIT_RATE_TTL = 3_600
_TREND_TOLERANCE = 0.05


class CacheAnalytics:
    """Aggregates cache and credit-saving counters.

    Args:
        store: Store holding the counters.
        prefix: Namespace shared with the cache layer (``coinmarketcap``).
        ttl: Lifetime in seconds of each counter, measured from its creation.
        clock: Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        store: CacheStore,
        prefix: str = "coinmarketcap",
        ttl: int = DEFAULT_ANALYTICS_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._prefix = f"{prefix}:analytics"
        self._ttl = ttl
        self._clock = clock

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_hit(self, key: str, endpoint_type: Optional[str] = None) -> None:
        self._increment_metric("hits", endpoint_type)
        self._increment_endpoint(endpoint_type, "hits")
        self._record_request(hit=True)

    def record_miss(self, key: str, endpoint_type: Optional[str] = None) -> None:
        self._increment_metric("misses", endpoint_type)
        self._increment_endpoint(endpoint_type, "misses")
        self._record_request(hit=False)

    def record_store(self, key: str, endpoint_type: Optional[str] = None, ttl: int = 0) -> None:
        self._increment_metric("stores", endpoint_type)
        self._increment_endpoint(endpoint_type, "stores")
        if ttl > 0 and endpoint_type:
            self._append_series(f"{self._prefix}:ttl:{endpoint_type}", ttl)

    def record_invalidation(self, keys: Union[list[str], str], reason: str = "unknown") -> None:
        count = len(keys) if isinstance(keys, list) else 1
        self._increment_metric("invalidations", amount=count)
        self._increment(f"{self._prefix}:invalidation_reasons:{reason}", count)

    def record_flush(self, reason: str = "manual") -> None:
        self._increment_metric("flushes")
        self._increment(f"{self._prefix}:flush_reasons:{reason}", 1)

    def record_warming(self, items_warmed: int) -> None:
        self._increment_metric("warmings")
        self._increment_metric("items_warmed", amount=items_warmed)

    def record_credit_savings(self, endpoint_type: Optional[str], credits_saved: int = 1) -> None:
        self._increment_metric("credit_saves", endpoint_type, credits_saved)
        self._increment_endpoint(endpoint_type, "credits_saved", credits_saved)

    def record_response_time(self, operation: str, response_time_ms: float) -> None:
        self._append_series(self._metric_key("response_times", operation), response_time_ms)

    def record_memory_usage(self, memory_used: int) -> None:
        self._append_series(self._metric_key("memory_usage"), memory_used)

    def record_error(self, error_type: str, message: str = "") -> None:
        self._increment_metric("errors", error_type)
        self._add_to_index(f"{self._prefix}:error_types", error_type, self._ttl)

        key = f"{self._prefix}:error_details:{error_type}"
        details = self._read_list(key)
        details.append(
            {"message": message, "timestamp": datetime.now(timezone.utc).isoformat()}
        )
        self._write(key, details[-_ERROR_DETAIL_LIMIT:], _ERROR_DETAIL_TTL)

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    def get_current_hit_rate(self) -> float:
        """Return hits / (hits + misses), or 0.0 without traffic."""
        hits = self._metric("hits")
        total = hits + self._metric("misses")
        return hits / total if total > 0 else 0.0

    def get_error_rate(self) -> float:
        total = self._metric("hits") + self._metric("misses")
        return self._metric("errors") / total if total > 0 else 0.0

    def get_credit_efficiency(self) -> float:
        """Return credits saved per cache request, clamped to ``[0, 1]``."""
        total = self._metric("hits") + self._metric("misses")
        if total <= 0:
            return 0.0
        return max(0.0, min(1.0, self._metric("credit_saves") / total))

    def get_efficiency_score(self) -> int:
        """Composite 0-100 score.

        ``hit_rate * 40 + min(40, credit_saves / 10) - error_rate * 20``,
        truncated and clamped.
        """
        hit_score = self.get_current_hit_rate() * 40
        credit_score = min(40.0, self._metric("credit_saves") / 10)
        error_penalty = self.get_error_rate() * 20
        return max(0, min(100, int(hit_score + credit_score - error_penalty)))

    def get_top_performing_endpoints(self, limit: int = 10) -> list[dict[str, Any]]:
        endpoints: list[dict[str, Any]] = []
        for endpoint in self._members(f"{self._prefix}:endpoint_types"):
            hits = self._endpoint_metric(endpoint, "hits")
            misses = self._endpoint_metric(endpoint, "misses")
            total = hits + misses
            if total > 0:
                endpoints.append(
                    {
                        "endpoint": endpoint,
                        "hit_rate": hits / total,
                        "total_requests": total,
                        "hits": hits,
                        "misses": misses,
                        "credits_saved": self._endpoint_metric(endpoint, "credits_saved"),
                    }
                )
        endpoints.sort(key=lambda e: e["hit_rate"], reverse=True)
        return endpoints[:limit]

    def get_optimization_recommendations(self) -> list[dict[str, Any]]:
        recommendations: list[dict[str, Any]] = []
        hit_rate = self.get_current_hit_rate()
        error_rate = self.get_error_rate()
        efficiency = self.get_efficiency_score()

        if hit_rate < 0.6:
            recommendations.append(
                {
                    "type": "hit_rate",
                    "priority": "high",
                    "message": "Hit rate is below 60%. Consider increasing TTL values or implementing cache warming.",
                    "current_value": hit_rate,
                    "target_value": 0.8,
                }
            )
        if error_rate > 0.05:
            recommendations.append(
                {
                    "type": "error_rate",
                    "priority": "high",
                    "message": "Error rate is above 5%. Review cache configuration and error handling.",
                    "current_value": error_rate,
                    "target_value": 0.02,
                }
            )
        if efficiency < 70:
            recommendations.append(
                {
                    "type": "efficiency",
                    "priority": "medium",
                    "message": "Cache efficiency is below optimal. Review caching strategy and TTL configurations.",
                    "current_value": efficiency,
                    "target_value": 80,
                }
            )
        return recommendations

    def get_statistics(self, interval: str = "hour") -> dict[str, Any]:
        """Return the full analytics report.

        Counters are lifetime totals; time-series averages and trends only
        consider points inside *interval* (``minute``, ``hour``, ``day`` or
        ``week``; unknown names mean ``hour``).
        """
        window = COLLECTION_INTERVALS.get(interval, COLLECTION_INTERVALS["hour"])
        since = self._clock() - window

        hits, misses = self._metric("hits"), self._metric("misses")
        requests = hits + misses
        credits_saved = self._metric("credit_saves")

        return {
            "overview": {
                "total_hits": hits,
                "total_misses": misses,
                "hit_rate": self.get_current_hit_rate(),
                "total_stores": self._metric("stores"),
                "total_invalidations": self._metric("invalidations"),
                "credits_saved": credits_saved,
                "total_warmings": self._metric("warmings"),
                "items_warmed": self._metric("items_warmed"),
            },
            "performance": {
                "average_hit_time": self._series_average(self._metric_key("response_times", "hit"), since),
                "average_miss_time": self._series_average(self._metric_key("response_times", "miss"), since),
                "average_store_time": self._series_average(self._metric_key("response_times", "store"), since),
                "memory_usage": self._series_average(self._metric_key("memory_usage"), since),
                "efficiency_score": self.get_efficiency_score(),
            },
            "endpoints": self.get_top_performing_endpoints(5),
            "credit_efficiency": {
                "total_credits_saved": credits_saved,
                "credits_per_request": credits_saved / requests if requests > 0 else 0,
                "cost_savings_percentage": credits_saved / requests * 100 if requests > 0 else 0,
            },
            "errors": {
                "total_errors": self._metric("errors"),
                "error_rate": self.get_error_rate(),
                "error_types": {
                    error_type: self._metric("errors", error_type)
                    for error_type in self._members(f"{self._prefix}:error_types")
                },
            },
            "trends": self._trends(since),
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "interval": interval,
        }

    def reset(self) -> None:
        """Forget every analytics key recorded so far."""
        index = f"{self._prefix}:keys"
        for key in self._members(index):
            self._forget(key)
        for registry in ("keys", "endpoint_types", "error_types"):
            self._forget(f"{self._prefix}:{registry}")

    # ------------------------------------------------------------------
    # Trends
    # ------------------------------------------------------------------

    def _trends(self, since: float) -> dict[str, str]:
        points = [
            p for p in self._read_list(f"{self._prefix}:requests") if p.get("timestamp", 0) >= since
        ]
        if len(points) < 2:
            return {"hit_rate_trend": "stable", "volume_trend": "stable", "efficiency_trend": "stable"}

        midpoint = since + (self._clock() - since) / 2
        early = [p["value"] for p in points if p["timestamp"] < midpoint]
        late = [p["value"] for p in points if p["timestamp"] >= midpoint]

        hit_rate_trend = "stable"
        if early and late:
            change = sum(late) / len(late) - sum(early) / len(early)
            if change > _TREND_TOLERANCE:
                hit_rate_trend = "increasing"
            elif change < -_TREND_TOLERANCE:
                hit_rate_trend = "decreasing"

        volume_trend = "stable"
        if len(late) > len(early) * (1 + _TREND_TOLERANCE):
            volume_trend = "increasing"
        elif len(late) < len(early) * (1 - _TREND_TOLERANCE):
            volume_trend = "decreasing"

        efficiency_trend = {"increasing": "improving", "decreasing": "declining"}.get(
            hit_rate_trend, "stable"
        )
        return {
            "hit_rate_trend": hit_rate_trend,
            "volume_trend": volume_trend,
            "efficiency_trend": efficiency_trend,
        }

    # ------------------------------------------------------------------
    # Store helpers
    # ------------------------------------------------------------------

    def _metric_key(self, metric: str, sub_type: Optional[str] = None) -> str:
        key = f"{self._prefix}:{metric}"
        return f"{key}:{sub_type}" if sub_type else key

    def _metric(self, metric: str, sub_type: Optional[str] = None) -> int:
        return self._read_int(self._metric_key(metric, sub_type))

    def _endpoint_metric(self, endpoint: str, metric: str) -> int:
        return self._read_int(f"{self._prefix}:endpoints:{endpoint}:{metric}")

    def _increment_metric(self, metric: str, sub_type: Optional[str] = None, amount: int = 1) -> None:
        self._increment(self._metric_key(metric), amount)
        if sub_type:
            self._increment(self._metric_key(metric, sub_type), amount)

    def _increment_endpoint(self, endpoint: Optional[str], metric: str, amount: int = 1) -> None:
        if not endpoint:
            return
        self._increment(f"{self._prefix}:endpoints:{endpoint}:{metric}", amount)
        self._add_to_index(f"{self._prefix}:endpoint_types", endpoint, self._ttl)

    def _record_request(self, hit: bool) -> None:
        self._append_series(f"{self._prefix}:requests", 1 if hit else 0)
        self._write(f"{self._prefix}:current_hit_rate", self.get_current_hit_rate(), _HIT_RATE_TTL)

    def _increment(self, key: str, amount: int) -> None:
        try:
            value = self._store.increment(key, amount, self._ttl)
        except StoreError as exc:
            logger.warning("analytics: increment failed for %s: %s", key, exc)
            return
        # The TTL starts when the counter is created; track it once, at that moment.
        if value == amount:
            self._track(key, self._ttl)

    def _append_series(self, key: str, value: float) -> None:
        series = self._read_list(key)
        series.append({"value": value, "timestamp": self._clock()})
        self._write(key, series[-_SERIES_LIMIT:], _SERIES_TTL)

    def _series_average(self, key: str, since: float) -> float:
        values = [p["value"] for p in self._read_list(key) if p.get("timestamp", 0) >= since]
        return sum(values) / len(values) if values else 0.0

    def _add_to_index(self, index_key: str, member: str, ttl: int) -> None:
        now = self._clock()
        try:
            self._store.index_add(index_key, member, now + ttl if ttl > 0 else None, now)
        except StoreError as exc:
            logger.warning("analytics: index update failed for %s: %s", index_key, exc)

    def _members(self, index_key: str) -> list[str]:
        try:
            return self._store.index_members(index_key, self._clock())
        except StoreError as exc:
            logger.warning("analytics: read failed for %s: %s", index_key, exc)
            return []

    def _track(self, key: str, ttl: int) -> None:
        self._add_to_index(f"{self._prefix}:keys", key, ttl)

    def _write(self, key: str, value: Any, ttl: int) -> None:
        try:
            self._store.put(key, value, ttl)
        except StoreError as exc:
            logger.warning("analytics: write failed for %s: %s", key, exc)
            return
        self._track(key, ttl)

    def _read_int(self, key: str) -> int:
        try:
            value = self._store.get(key)
        except StoreError as exc:
            logger.warning("analytics: read failed for %s: %s", key, exc)
            return 0
        return int(value) if isinstance(value, (int, float)) else 0

    def _read_list(self, key: str) -> list[Any]:
        try:
            value = self._store.get(key)
        except StoreError as exc:
            logger.warning("analytics: read failed for %s: %s", key, exc)
            return []
        return list(value) if isinstance(value, list) else []

    def _forget(self, key: str) -> None:
        try:
            self._store.forget(key)
        except StoreError as exc:
            logger.warning("analytics: forget failed for %s: %s", key, exc)
