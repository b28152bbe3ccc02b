"""Unit tests for CoinMarketCapCache.

All entries live in a MemoryStore driven by the shared frozen clock, so
expiry is exercised by advancing the clock rather than sleeping.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from cmc_pro.cache.layer import CacheEntry, CoinMarketCapCache
from cmc_pro.cache.strategy import CacheStrategy
from cmc_pro.config.options import CacheOptions
from cmc_pro.core.exceptions import StoreError
from cmc_pro.core.store import MemoryStore


@pytest.fixture
def analytics() -> MagicMock:
    return MagicMock()


@pytest.fixture
def cache(store: MemoryStore, clock: Any, analytics: MagicMock) -> CoinMarketCapCache:
    options = CacheOptions()
    return CoinMarketCapCache(
        store,
        options=options,
        strategy=CacheStrategy(options),
        analytics=analytics,
        clock=clock.epoch,
    )


class _BrokenStore(MemoryStore):
    def get(self, key: str) -> Any:
        raise StoreError(f"memory get failed for {key!r}")

    def put(self, key: str, value: Any, ttl: int | None = None) -> bool:
        raise StoreError(f"memory put failed for {key!r}")


# ---------------------------------------------------------------------------
# Reads and writes
# ---------------------------------------------------------------------------


class TestGetAndPut:
    def test_put_then_get(self, cache: CoinMarketCapCache) -> None:
        """A stored value is returned unchanged."""
        assert cache.put("cryptocurrency_map:abc", {"data": [1]}, endpoint_type="cryptocurrency_map") is True
        assert cache.get("cryptocurrency_map:abc") == {"data": [1]}

    def test_keys_are_namespaced(self, cache: CoinMarketCapCache, store: MemoryStore) -> None:
        """Entries are written under the configured prefix as an envelope."""
        cache.put("fiat_map:x", [1, 2], endpoint_type="fiat_map", ttl=120)
        raw = store.get("coinmarketcap:fiat_map:x")
        assert raw["value"] == [1, 2]
        assert raw["ttl"] == 120

    def test_missing_key_returns_default(self, cache: CoinMarketCapCache) -> None:
        """A miss yields the caller's default."""
        sentinel = object()
        assert cache.get("nope", sentinel) is sentinel

    def test_ttl_is_resolved_through_strategy(self, cache: CoinMarketCapCache, clock: Any) -> None:
        """Quotes are stored for 30s under balanced and vanish afterwards."""
        cache.put("cryptocurrency_quotes:k", {"p": 1}, endpoint_type="cryptocurrency_quotes")
        entry = cache.get_entry("cryptocurrency_quotes:k")
        assert entry is not None and entry.ttl == 30
        clock.advance(seconds=31)
        assert cache.get("cryptocurrency_quotes:k") is None

    def test_hit_does_not_extend_lifetime(self, cache: CoinMarketCapCache, clock: Any) -> None:
        """Reading an entry never refreshes its expiry."""
        cache.put("k", 1, ttl=60)
        clock.advance(seconds=50)
        assert cache.get("k") == 1
        clock.advance(seconds=11)
        assert cache.get("k") is None

    def test_entry_age(self, cache: CoinMarketCapCache, clock: Any) -> None:
        """CacheEntry.age reports seconds since the write."""
        cache.put("k", 1, ttl=600)
        clock.advance(seconds=45)
        entry = cache.get_entry("k")
        assert isinstance(entry, CacheEntry)
        assert entry.age(cache.now()) == pytest.approx(45.0)

    def test_resolve_ttl_without_strategy_uses_base_table(self, store: MemoryStore) -> None:
        """No strategy means no multipliers."""
        plain = CoinMarketCapCache(store)
        assert plain.resolve_ttl("k", "cryptocurrency/map") == 86_400
        assert plain.resolve_ttl("unknown") == 300

    def test_hits_and_misses_are_recorded(self, cache: CoinMarketCapCache, analytics: MagicMock) -> None:
        """Analytics see one miss, one store and one hit."""
        cache.get("k", endpoint_type="fiat_map")
        cache.put("k", 1, endpoint_type="fiat_map")
        cache.get("k", endpoint_type="fiat_map")
        analytics.record_miss.assert_called_once_with("k", "fiat_map")
        analytics.record_hit.assert_called_once_with("k", "fiat_map")
        analytics.record_store.assert_called_once()

    def test_analytics_disabled_records_nothing(self, store: MemoryStore, analytics: MagicMock) -> None:
        """analytics_enabled=False silences every recording call."""
        quiet = CoinMarketCapCache(store, options=CacheOptions(analytics_enabled=False), analytics=analytics)
        quiet.get("k")
        quiet.put("k", 1)
        assert analytics.method_calls == []


class TestDisabled:
    def test_disabled_cache_stores_nothing(self, store: MemoryStore) -> None:
        """put reports False and get returns the default."""
        disabled = CoinMarketCapCache(store, options=CacheOptions(enabled=False))
        assert disabled.put("k", 1) is False
        assert disabled.get("k", "default") == "default"
        assert disabled.get_entry("k") is None

    def test_disabled_remember_always_produces(self, store: MemoryStore) -> None:
        """Every remember call runs the producer."""
        disabled = CoinMarketCapCache(store, options=CacheOptions(enabled=False))
        producer = MagicMock(return_value=5)
        assert disabled.remember("k", producer) == 5
        assert disabled.remember("k", producer) == 5
        assert producer.call_count == 2


class TestStoreFailures:
    def test_read_failure_degrades_to_miss(self, analytics: MagicMock) -> None:
        """A failing backend never raises from get."""
        broken = CoinMarketCapCache(_BrokenStore(), analytics=analytics)
        assert broken.get("k", "fallback") == "fallback"
        analytics.record_error.assert_called_once()

    def test_write_failure_returns_false(self) -> None:
        """A failing backend never raises from put."""
        assert CoinMarketCapCache(_BrokenStore()).put("k", 1) is False


# ---------------------------------------------------------------------------
# remember
# ---------------------------------------------------------------------------


class TestRemember:
    def test_producer_runs_once(self, cache: CoinMarketCapCache) -> None:
        """The second call is served from the cache."""
        producer = MagicMock(return_value={"ok": True})
        assert cache.remember("k", producer, endpoint_type="fiat_map") == {"ok": True}
        assert cache.remember("k", producer, endpoint_type="fiat_map") == {"ok": True}
        producer.assert_called_once()

    def test_none_is_not_stored(self, cache: CoinMarketCapCache) -> None:
        """A None result is returned but not cached."""
        producer = MagicMock(return_value=None)
        cache.remember("k", producer)
        cache.remember("k", producer)
        assert producer.call_count == 2

    def test_producer_exception_propagates(self, cache: CoinMarketCapCache) -> None:
        """Nothing is stored when the producer fails."""

        def boom() -> Any:
            raise RuntimeError("upstream down")

        with pytest.raises(RuntimeError):
            cache.remember("k", boom)
        assert cache.get_entry("k") is None


# ---------------------------------------------------------------------------
# Invalidation
# ---------------------------------------------------------------------------


class TestInvalidation:
    def test_forget(self, cache: CoinMarketCapCache, analytics: MagicMock) -> None:
        """forget removes one entry and reports whether it existed."""
        cache.put("k", 1)
        assert cache.forget("k") is True
        assert cache.forget("k") is False
        analytics.record_invalidation.assert_called_once_with("k", "forget")

    def test_pattern_flush_removes_matching_keys_only(self, cache: CoinMarketCapCache) -> None:
        """Glob patterns match keys written through the layer."""
        cache.put("cryptocurrency_quotes:a", 1, ttl=300)
        cache.put("cryptocurrency_quotes:b", 2, ttl=300)
        cache.put("fiat_map:c", 3, ttl=300)
        assert cache.flush("cryptocurrency_quotes:*") == 2
        assert cache.get("cryptocurrency_quotes:a") is None
        assert cache.get("fiat_map:c") == 3

    def test_full_flush(self, cache: CoinMarketCapCache, analytics: MagicMock) -> None:
        """'*' clears everything and counts the indexed keys."""
        cache.put("a", 1)
        cache.put("b", 2)
        assert cache.flush() == 2
        assert cache.get("a") is None
        analytics.record_flush.assert_called_once_with("full")

    def test_keys_rewritten_after_flush_are_flushable_again(self, cache: CoinMarketCapCache) -> None:
        """The key index is rebuilt after a full flush."""
        cache.put("a", 1)
        cache.flush()
        cache.put("a", 1)
        assert cache.flush("a") == 1

    def test_key_index_drops_expired_keys(self, cache: CoinMarketCapCache, store: MemoryStore, clock: Any) -> None:
        """Short-lived keys leave the index instead of accumulating."""
        for i in range(500):
            cache.put(f"cryptocurrency_quotes:{i}", i, ttl=1)
        clock.advance(seconds=10)
        cache.put("fiat_map:1", "usd", ttl=300)
        assert store.index_members("coinmarketcap:cache:keys", clock.epoch()) == ["fiat_map:1"]
        assert len(store.get("coinmarketcap:cache:keys")) == 1
        assert cache.flush("cryptocurrency_quotes:*") == 0

    def test_pattern_flush_sees_keys_written_by_other_instances(
        self, store: MemoryStore, clock: Any
    ) -> None:
        """The key index is shared through the store, not held per instance."""
        writer = CoinMarketCapCache(store, clock=clock.epoch)
        admin = CoinMarketCapCache(store, clock=clock.epoch)
        writer.put("cryptocurrency_quotes:1", 1, ttl=300)
        assert admin.flush("*") == 1
        writer.put("cryptocurrency_quotes:1", 2, ttl=300)

        assert admin.flush("cryptocurrency_quotes:*") == 1
        assert writer.get("cryptocurrency_quotes:1") is None

    def test_pattern_flush_unindexes_removed_keys(self, cache: CoinMarketCapCache, store: MemoryStore, clock: Any) -> None:
        """Flushed keys leave the index; the rest stay."""
        cache.put("cryptocurrency_quotes:a", 1, ttl=300)
        cache.put("fiat_map:c", 3, ttl=600)
        cache.flush("cryptocurrency_quotes:*")
        assert store.index_members("coinmarketcap:cache:keys", clock.epoch()) == ["fiat_map:c"]


class TestWarm:
    def test_bulk_put_skips_malformed_items(self, cache: CoinMarketCapCache) -> None:
        """Items without key or value are ignored."""
        items = [
            {"key": "a", "value": 1, "endpoint_type": "fiat_map"},
            {"value": 2},
            "garbage",
            {"key": "b", "value": 3, "ttl": 90},
        ]
        assert cache.warm(items) == 2
        assert cache.get("a") == 1
        assert cache.get_entry("b").ttl == 90
