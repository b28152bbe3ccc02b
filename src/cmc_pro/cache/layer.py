"""Namespaced response cache over a :class:`~cmc_pro.core.store.CacheStore`.

Entries are stored as an envelope so that their age is known to the
optimizer without a second lookup::

    {"value": <payload>, "cached_at": 1760861700.0, "ttl": 300}

The cache is strictly fixed-TTL: a hit never extends an entry's lifetime.
Every key written through the layer is added to the store's expiring key
index together with the time the entry expires, which is what partial
:meth:`CoinMarketCapCache.flush` patterns match against.  Expired keys drop
out of the index on the next write, and the index is shared by every
process using the same store.  A ``"*"`` flush clears the whole underlying
store namespace instead.

Store failures never escape: reads degrade to a miss, writes report
``False``.  Exceptions raised by a ``remember`` producer do propagate.
"""

from __future__ import annotations

import fnmatch
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional

from cmc_pro.cache.analytics import CacheAnalytics
from cmc_pro.cache.strategy import CacheStrategy
from cmc_pro.config.endpoints import resolve_ttl_key
from cmc_pro.config.options import CacheOptions
from cmc_pro.core.exceptions import StoreError
from cmc_pro.core.store import CacheStore

logger = logging.getLogger(__name__)

_CACHING_DISABLED = "caching_disabled"


@dataclass(frozen=True)
class CacheEntry:
    """A cached value with the time it was stored and the TTL it was stored with."""

    value: Any
    cached_at: float
    ttl: int

    def age(self, now: float) -> float:
        return max(0.0, now - self.cached_at)


class CoinMarketCapCache:
    """get/remember/put/forget/flush facade with hit/miss bookkeeping.

    Args:
        store: Backend holding the entries.
        options: ``enabled``, ``prefix`` and the base TTL table.
        strategy: Resolves TTLs when no explicit one is given.  Optional;
            without it the base TTL table is used as-is.
        analytics: Receives hit/miss/store/invalidation events.  Optional.
        clock: Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        store: CacheStore,
        options: Optional[CacheOptions] = None,
        strategy: Optional[CacheStrategy] = None,
        analytics: Optional[CacheAnalytics] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._options = options or CacheOptions()
        self._strategy = strategy
        self._analytics = analytics
        self._clock = clock
        self._index_key = f"{self._options.prefix}:cache:keys"

    @property
    def enabled(self) -> bool:
        return self._options.enabled

    @property
    def options(self) -> CacheOptions:
        return self._options

    def make_key(self, key: str) -> str:
        return f"{self._options.prefix}:{key}"

    def now(self) -> float:
        return self._clock()

    # ------------------------------------------------------------------
    # TTL
    # ------------------------------------------------------------------

    def resolve_ttl(
        self,
        key: str,
        endpoint_type: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> int:
        """TTL for an entry: strategy-computed when available, else the base table."""
        subject = endpoint_type or key
        if self._strategy is not None:
            return self._strategy.calculate_ttl(subject, context)
        table = self._options.ttl
        return int(table.get(resolve_ttl_key(subject, dict(table)), table.get("default", 300)))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Return the stored entry without recording analytics.  ``None`` on miss or failure."""
        if not self.enabled:
            return None
        try:
            raw = self._store.get(self.make_key(key))
        except StoreError as exc:
            logger.warning("cache: read failed", extra={"key": key, "error": str(exc)})
            self._record("record_error", "store_read", str(exc))
            return None
        if not isinstance(raw, dict) or "value" not in raw:
            return None
        return CacheEntry(
            value=raw["value"],
            cached_at=float(raw.get("cached_at", 0.0)),
            ttl=int(raw.get("ttl", 0)),
        )

    def get(self, key: str, default: Any = None, endpoint_type: Optional[str] = None) -> Any:
        if not self.enabled:
            return default
        started = time.perf_counter()
        entry = self.get_entry(key)
        elapsed_ms = (time.perf_counter() - started) * 1000
        if entry is None:
            self._record("record_miss", key, endpoint_type)
            self._record("record_response_time", "miss", elapsed_ms)
            return default
        self._record("record_hit", key, endpoint_type)
        self._record("record_response_time", "hit", elapsed_ms)
        return entry.value

    def remember(
        self,
        key: str,
        producer: Callable[[], Any],
        endpoint_type: Optional[str] = None,
        ttl: Optional[int] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Return the cached value for *key*, or produce, store and return it.

        Args:
            key: Cache key without the namespace prefix.
            producer: Called on a miss.  ``None`` results are not stored;
                exceptions propagate and nothing is stored.
            endpoint_type: Endpoint path or type, used for TTL and analytics.
            ttl: Explicit TTL in seconds, overriding resolution.
            context: Hints passed to TTL resolution.
        """
        if not self.enabled:
            self._record("record_miss", key, _CACHING_DISABLED)
            return producer()

        entry = self.get_entry(key)
        if entry is not None:
            self._record("record_hit", key, endpoint_type)
            return entry.value

        self._record("record_miss", key, endpoint_type)
        try:
            value = producer()
        except Exception:
            logger.exception("cache: producer failed", extra={"key": key})
            raise
        if value is not None:
            self.put(key, value, endpoint_type=endpoint_type, ttl=ttl, context=context)
        return value

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put(
        self,
        key: str,
        value: Any,
        endpoint_type: Optional[str] = None,
        ttl: Optional[int] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Store *value* under *key*.  Returns False when disabled or the store fails."""
        if not self.enabled:
            return False
        effective_ttl = ttl if ttl is not None else self.resolve_ttl(key, endpoint_type, context)
        envelope = {"value": value, "cached_at": self._clock(), "ttl": effective_ttl}

        started = time.perf_counter()
        try:
            self._store.put(self.make_key(key), envelope, effective_ttl)
        except StoreError as exc:
            logger.warning("cache: write failed", extra={"key": key, "error": str(exc)})
            self._record("record_error", "store_write", str(exc))
            return False

        self._index(key, effective_ttl)
        self._record("record_store", key, endpoint_type, effective_ttl)
        self._record("record_response_time", "store", (time.perf_counter() - started) * 1000)
        return True

    def forget(self, key: str) -> bool:
        try:
            removed = self._store.forget(self.make_key(key))
        except StoreError as exc:
            logger.warning("cache: forget failed", extra={"key": key, "error": str(exc)})
            return False
        if removed:
            self._record("record_invalidation", key, "forget")
        return removed

    def flush(self, pattern: str = "*") -> int:
        """Remove entries matching a glob *pattern*.

        ``"*"`` clears the whole store namespace.  Other patterns only reach
        keys written through this layer (see the key index).

        Returns:
            The number of indexed keys removed.
        """
        keys = self._read_index()
        if pattern == "*":
            try:
                self._store.flush()
            except StoreError as exc:
                logger.warning("cache: flush failed", extra={"error": str(exc)})
                return 0
            self._record("record_flush", "full")
            logger.info("cache: flushed", extra={"keys": len(keys)})
            return len(keys)

        matched = [k for k in keys if fnmatch.fnmatchcase(k, pattern)]
        removed: list[str] = []
        for key in matched:
            try:
                self._store.forget(self.make_key(key))
                removed.append(key)
            except StoreError as exc:
                logger.warning("cache: forget failed", extra={"key": key, "error": str(exc)})
        self._unindex(removed)
        if matched:
            self._record("record_invalidation", matched, "pattern_flush")
        return len(removed)

    def warm(self, items: Iterable[Mapping[str, Any]]) -> int:
        """Bulk put of ``{"key", "value", "endpoint_type"?, "ttl"?}`` items.

        Malformed items and failed writes are skipped.

        Returns:
            The number of items stored.
        """
        stored = 0
        for item in items:
            try:
                key, value = item["key"], item["value"]
            except (KeyError, TypeError):
                logger.warning("cache: skipping malformed warming item", extra={"item": repr(item)})
                continue
            if self.put(key, value, endpoint_type=item.get("endpoint_type"), ttl=item.get("ttl")):
                stored += 1
        return stored

    # ------------------------------------------------------------------
    # Key index
    # ------------------------------------------------------------------

    def _read_index(self) -> list[str]:
        try:
            return self._store.index_members(self._index_key, self._clock())
        except StoreError as exc:
            logger.warning("cache: key index unavailable", extra={"error": str(exc)})
            return []

    def _index(self, key: str, ttl: int) -> None:
        now = self._clock()
        try:
            self._store.index_add(self._index_key, key, now + ttl if ttl > 0 else None, now)
        except StoreError as exc:
            logger.warning("cache: key index update failed", extra={"key": key, "error": str(exc)})

    def _unindex(self, keys: list[str]) -> None:
        try:
            self._store.index_remove(self._index_key, keys)
        except StoreError as exc:
            logger.warning("cache: key index update failed", extra={"error": str(exc)})

    def _record(self, method: str, *args: Any) -> None:
        if self._analytics is None or not self._options.analytics_enabled:
            return
        getattr(self._analytics, method)(*args)
