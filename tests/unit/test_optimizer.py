"""Unit tests for CreditOptimizer.

Usage counters and cache entries live in two separate MemoryStores that share
the frozen clock (2026-10-19 12:00 UTC).  The cache has no strategy, so the
max age of an endpoint is its base TTL: 60 s for quotes, 300 s for listings.
"""

from __future__ import annotations

from typing import Any, Optional

import pytest

from cmc_pro.cache.layer import CoinMarketCapCache
from cmc_pro.config.options import CacheOptions, CreditOptions, PlanOptions
from cmc_pro.core.store import MemoryStore
from cmc_pro.credit.credit_manager import CreditManager
from cmc_pro.credit.optimizer import CreditOptimizer, recommendation_from_score
from cmc_pro.credit.plan_manager import PlanManager

QUOTES = "cryptocurrency/quotes/latest"
PARAMS = {"symbol": "BTC", "convert": "USD"}
TOTAL_KEY = "credits:2026-10:total"
MINUTE_KEY = "calls:minute:2026-10-19_12:00"
DAILY_KEY = "calls:daily:2026-10-19"


def _optimizer(
    store: MemoryStore,
    clock: Any,
    plan_type: str = "basic",
    cache_options: Optional[CacheOptions] = None,
    **credit_options: Any,
) -> tuple[CreditOptimizer, CoinMarketCapCache]:
    plan = PlanManager(PlanOptions(plan_type=plan_type))
    options = CreditOptions(**credit_options)
    credits = CreditManager(store, plan, options=options, clock=clock)
    cache = CoinMarketCapCache(MemoryStore(clock=clock.epoch), options=cache_options, clock=clock.epoch)
    return CreditOptimizer(plan, credits, cache, options=options, clock=clock), cache


@pytest.fixture
def optimizer(store: MemoryStore, clock: Any) -> CreditOptimizer:
    return _optimizer(store, clock)[0]


def _cache_entry(cache: CoinMarketCapCache, clock: Any, age_seconds: int, endpoint: str = QUOTES) -> None:
    """Store an entry for *endpoint* with PARAMS that is *age_seconds* old."""
    cache.put(CreditOptimizer.cache_key(endpoint, PARAMS), {"data": "cached"}, ttl=86_400)
    clock.advance(seconds=age_seconds)


# ---------------------------------------------------------------------------
# Cache keys and ages
# ---------------------------------------------------------------------------


class TestCacheKey:
    def test_parameter_order_does_not_matter(self) -> None:
        """Keys are built from canonical JSON."""
        a = CreditOptimizer.cache_key(QUOTES, {"symbol": "BTC", "convert": "USD"})
        b = CreditOptimizer.cache_key(QUOTES, {"convert": "USD", "symbol": "BTC"})
        assert a == b

    def test_key_is_prefixed_with_normalized_endpoint(self) -> None:
        """The endpoint part is the underscore form."""
        key = CreditOptimizer.cache_key("/v2/cryptocurrency/quotes/latest", PARAMS)
        assert key.startswith("cryptocurrency_quotes_latest:")
        assert len(key.split(":")[1]) == 32

    def test_different_params_give_different_keys(self) -> None:
        """Changing any value changes the key."""
        assert CreditOptimizer.cache_key(QUOTES, {"symbol": "BTC"}) != CreditOptimizer.cache_key(
            QUOTES, {"symbol": "ETH"}
        )

    def test_cache_age(self, store: MemoryStore, clock: Any) -> None:
        """Age is measured from the write, in whole seconds."""
        optimizer, cache = _optimizer(store, clock)
        assert optimizer.get_cache_age(QUOTES, PARAMS) is None
        _cache_entry(cache, clock, 42)
        assert optimizer.get_cache_age(QUOTES, PARAMS) == 42

    def test_max_cache_age_follows_base_ttl(self, optimizer: CreditOptimizer) -> None:
        """Max age is the endpoint's base TTL."""
        assert optimizer.get_max_cache_age(QUOTES) == 60
        assert optimizer.get_max_cache_age("cryptocurrency/listings/latest") == 300
        assert optimizer.get_max_cache_age("fiat/map") == 86_400


# ---------------------------------------------------------------------------
# Decision ladder
# ---------------------------------------------------------------------------


class TestShouldUseCache:
    def test_cache_disabled(self, store: MemoryStore, clock: Any) -> None:
        """A disabled cache always means a call."""
        optimizer, _ = _optimizer(store, clock, cache_options=CacheOptions(enabled=False))
        decision = optimizer.should_use_cache(QUOTES, PARAMS)
        assert decision.use_cache is False
        assert decision.reason == "cache_disabled"

    def test_fresh_entry_is_served(self, store: MemoryStore, clock: Any) -> None:
        """An entry younger than the max age wins outright."""
        optimizer, cache = _optimizer(store, clock)
        _cache_entry(cache, clock, 10)
        decision = optimizer.should_use_cache(QUOTES, PARAMS)
        assert decision.use_cache is True
        assert decision.reason == "cache_fresh"
        assert decision.cache_age == 10
        assert decision.max_age == 60

    def test_exhausted_quota_serves_stale_entry(self, store: MemoryStore, clock: Any) -> None:
        """However old the entry, it beats a call the quota cannot cover."""
        optimizer, cache = _optimizer(store, clock)
        _cache_entry(cache, clock, 7_200)
        store.put(TOTAL_KEY, 10_000)
        decision = optimizer.should_use_cache(QUOTES, PARAMS)
        assert decision.use_cache is True
        assert decision.reason == "credit_limit_reached"
        assert decision.remaining_credits == 0

    def test_exhausted_quota_without_entry(self, store: MemoryStore, clock: Any) -> None:
        """No entry and no budget: nothing to serve and no call allowed."""
        optimizer, _ = _optimizer(store, clock)
        store.put(TOTAL_KEY, 10_000)
        decision = optimizer.should_use_cache(QUOTES, PARAMS)
        assert decision.use_cache is False
        assert decision.cache_available is False
        assert decision.reason == "credit_limit_reached"

    @pytest.mark.parametrize(
        "counter_key,value",
        [("calls:minute:2026-10-19_12:02", 30), (DAILY_KEY, 333)],
    )
    def test_call_cap_serves_stale_entry(
        self, store: MemoryStore, clock: Any, counter_key: str, value: int
    ) -> None:
        """An exhausted minute or day cap falls back to any cached entry."""
        optimizer, cache = _optimizer(store, clock)
        _cache_entry(cache, clock, 120)
        store.put(counter_key, value)
        decision = optimizer.should_use_cache(QUOTES, PARAMS)
        assert decision.use_cache is True
        assert decision.reason == "rate_limit_reached"
        assert decision.cache_age == 120

    def test_call_cap_without_entry(self, store: MemoryStore, optimizer: CreditOptimizer) -> None:
        """A capped call with nothing cached can neither be made nor served."""
        store.put(MINUTE_KEY, 30)
        decision = optimizer.should_use_cache(QUOTES, PARAMS)
        assert decision.use_cache is False
        assert decision.cache_available is False
        assert decision.reason == "rate_limit_reached"

    @pytest.mark.parametrize(
        "used,expected_reason,expected_use",
        [
            (9_500, "high_usage_conserve_credits", True),
            (7_500, "moderate_usage_conserve_credits", True),
            (5_000, "fresh_data_needed", False),
        ],
    )
    def test_usage_pressure_extends_acceptable_age(
        self, store: MemoryStore, clock: Any, used: int, expected_reason: str, expected_use: bool
    ) -> None:
        """A 100 s old quote (max age 60 s) is accepted only under usage pressure."""
        optimizer, cache = _optimizer(store, clock)
        _cache_entry(cache, clock, 100)
        store.put(TOTAL_KEY, used)
        decision = optimizer.should_use_cache(QUOTES, PARAMS)
        assert decision.reason == expected_reason
        assert decision.use_cache is expected_use

    def test_high_usage_still_refuses_very_old_entries(self, store: MemoryStore, clock: Any) -> None:
        """Beyond three times the max age a fresh call is made."""
        optimizer, cache = _optimizer(store, clock)
        _cache_entry(cache, clock, 200)
        store.put(TOTAL_KEY, 9_500)
        decision = optimizer.should_use_cache(QUOTES, PARAMS)
        assert decision.reason == "fresh_data_needed"
        assert decision.cache_available is True

    def test_decision_to_dict_drops_empty_fields(self, optimizer: CreditOptimizer) -> None:
        """Only populated fields are serialised."""
        decision = optimizer.should_use_cache(QUOTES, PARAMS)
        assert decision.to_dict() == {
            "use_cache": False,
            "reason": "fresh_data_needed",
            "cache_available": False,
            "credit_cost": 1,
        }


# ---------------------------------------------------------------------------
# Request shaping
# ---------------------------------------------------------------------------


class TestOptimizeRequest:
    @pytest.mark.parametrize("limit,expected", [(None, 100), (5_000, 100), (50, 50)])
    def test_listing_limit_is_clamped(self, optimizer: CreditOptimizer, limit: Any, expected: int) -> None:
        """Basic plans list at most 100 cryptocurrencies."""
        params = {} if limit is None else {"limit": limit}
        assert optimizer.optimize_request("cryptocurrency/listings/latest", params)["limit"] == expected

    def test_exchange_listing_limit(self, optimizer: CreditOptimizer) -> None:
        """Exchange listings have their own, lower ceiling."""
        assert optimizer.optimize_request("exchange/listings/latest", {"limit": 500})["limit"] == 50

    def test_id_batches_are_truncated(self, optimizer: CreditOptimizer) -> None:
        """Basic plans send at most 10 ids per request."""
        params = {"id": list(range(1, 26))}
        assert optimizer.optimize_request(QUOTES, params)["id"] == list(range(1, 11))

    def test_currencies_prefer_priority_set(self, store: MemoryStore, clock: Any) -> None:
        """Hobbyist (three currencies) keeps usd, eur and btc."""
        optimizer, _ = _optimizer(store, clock, plan_type="hobbyist")
        params = {"convert": ["jpy", "usd", "chf", "eur", "btc"]}
        assert optimizer.optimize_request(QUOTES, params)["convert"] == ["usd", "eur", "btc"]

    def test_currencies_fill_remaining_slots_in_request_order(self, store: MemoryStore, clock: Any) -> None:
        """Non-priority currencies fill what the priority set leaves."""
        optimizer, _ = _optimizer(store, clock, plan_type="hobbyist")
        params = {"convert": ["JPY", "USD", "CHF", "GBP"]}
        assert optimizer.optimize_request(QUOTES, params)["convert"] == ["usd", "jpy", "chf"]

    def test_unsupported_currencies_are_dropped(self, optimizer: CreditOptimizer) -> None:
        """Only currencies the API accepts survive."""
        params = {"convert": ["usd", "doge-coin"]}
        assert optimizer.optimize_request(QUOTES, params)["convert"] == ["usd"]

    def test_priority_currencies_are_capped_too(self, optimizer: CreditOptimizer) -> None:
        """Basic plans convert into two currencies even when three priority ones are asked for."""
        params = {"convert": ["btc", "eur", "usd"]}
        assert optimizer.optimize_request(QUOTES, params)["convert"] == ["usd", "eur"]

    def test_comma_separated_convert_is_narrowed(self, optimizer: CreditOptimizer) -> None:
        """A string convert is filtered and capped, and stays a string."""
        params = {"convert": "JPY,usd,doge-coin,EUR,btc"}
        assert optimizer.optimize_request(QUOTES, params)["convert"] == "usd,eur"

    def test_short_convert_string_is_untouched(self, optimizer: CreditOptimizer) -> None:
        """A supported currency within the cap keeps its spelling."""
        assert optimizer.optimize_request(QUOTES, {"convert": "USD"})["convert"] == "USD"

    def test_convert_without_supported_currencies_is_dropped(self, optimizer: CreditOptimizer) -> None:
        """Nothing the API accepts means the API default applies."""
        assert "convert" not in optimizer.optimize_request(QUOTES, {"convert": "doge-coin"})

    def test_non_numeric_limit_passes_through(self, optimizer: CreditOptimizer) -> None:
        """A limit that is not a number is left for the API to reject."""
        optimized = optimizer.optimize_request("cryptocurrency/listings/latest", {"limit": "all"})
        assert optimized["limit"] == "all"

    def test_info_gets_default_aux_fields(self, optimizer: CreditOptimizer) -> None:
        """cryptocurrency/info defaults to the tier's field selection."""
        optimized = optimizer.optimize_request("cryptocurrency/info", {"id": [1]})
        assert optimized["aux"] == "urls,logo,description"

    def test_caller_aux_is_kept(self, optimizer: CreditOptimizer) -> None:
        """An explicit aux is never overwritten."""
        optimized = optimizer.optimize_request("cryptocurrency/info", {"aux": "logo"})
        assert optimized["aux"] == "logo"

    def test_aux_is_not_added_to_other_endpoints(self, optimizer: CreditOptimizer) -> None:
        """Endpoints without field selection are left alone."""
        assert "aux" not in optimizer.optimize_request("cryptocurrency/map", {})

    def test_idempotent(self, store: MemoryStore, clock: Any) -> None:
        """Optimizing an optimized request changes nothing."""
        optimizer, _ = _optimizer(store, clock, plan_type="hobbyist")
        params = {"id": list(range(40)), "convert": ["jpy", "usd", "chf", "eur", "btc"], "limit": 9_999}
        once = optimizer.optimize_request("cryptocurrency/listings/latest", params)
        assert optimizer.optimize_request("cryptocurrency/listings/latest", once) == once

    def test_input_is_not_mutated(self, optimizer: CreditOptimizer) -> None:
        """The caller's mapping and lists are copied."""
        ids = list(range(25))
        params = {"id": ids}
        optimizer.optimize_request(QUOTES, params)
        assert params == {"id": ids}
        assert len(ids) == 25

    def test_disabled_optimization_returns_copy(self, store: MemoryStore, clock: Any) -> None:
        """With optimization off the parameters pass through unchanged."""
        optimizer, _ = _optimizer(store, clock, optimization_enabled=False)
        params = {"limit": 5_000, "convert": ["jpy", "usd", "chf"]}
        assert optimizer.optimize_request("cryptocurrency/listings/latest", params) == params

    def test_batch_recommendations(self, optimizer: CreditOptimizer) -> None:
        """25 ids on a basic plan split into 10 + 10 + 5."""
        batches = optimizer.get_batch_recommendations(QUOTES, list(range(25)))
        assert [len(b) for b in batches] == [10, 10, 5]
        assert optimizer.get_batch_recommendations(QUOTES, []) == []


# ---------------------------------------------------------------------------
# Advice
# ---------------------------------------------------------------------------


class TestOptimalTiming:
    def test_near_minute_cap(self, store: MemoryStore, optimizer: CreditOptimizer) -> None:
        """27 of 30 calls this minute means wait for the next minute."""
        store.put(MINUTE_KEY, 27)
        timing = optimizer.get_optimal_timing(QUOTES)
        assert timing["should_delay"] is True
        assert timing["reason"] == "minute_rate_limit_near"
        assert timing["delay_seconds"] == 60

    def test_near_daily_cap(self, store: MemoryStore, optimizer: CreditOptimizer) -> None:
        """Near the daily cap the wait runs to UTC midnight."""
        store.put(DAILY_KEY, 300)
        timing = optimizer.get_optimal_timing(QUOTES)
        assert timing["reason"] == "daily_rate_limit_near"
        assert timing["delay_seconds"] == 12 * 3_600
        assert timing["optimal_time"].startswith("2026-10-20T00:00:00")

    def test_near_monthly_quota(self, store: MemoryStore, optimizer: CreditOptimizer) -> None:
        """Above 90 % usage the wait runs to the next billing period."""
        store.put(TOTAL_KEY, 9_500)
        timing = optimizer.get_optimal_timing(QUOTES)
        assert timing["reason"] == "monthly_credits_near_limit"
        assert timing["optimal_time"].startswith("2026-11-01T00:00:00")

    @pytest.mark.parametrize(
        "endpoint,frequency",
        [("cryptocurrency/map", "daily"), (QUOTES, "hourly"), ("global-metrics/quotes/latest", "hourly"),
         ("cryptocurrency/listings/latest", "4_hourly")],
    )
    def test_no_delay_suggests_window(self, optimizer: CreditOptimizer, endpoint: str, frequency: str) -> None:
        """Without pressure the answer is an update window for the endpoint."""
        timing = optimizer.get_optimal_timing(endpoint)
        assert timing["should_delay"] is False
        assert timing["optimal_window"]["frequency"] == frequency


class TestCostBenefit:
    @pytest.mark.parametrize(
        "score,expected",
        [
            (90, "make_api_call"),
            (50, "make_api_call"),
            (0, "consider_alternatives"),
            (-1, "use_cache_preferred"),
            (-50, "use_cache_preferred"),
            (-51, "use_cache_strongly_recommended"),
        ],
    )
    def test_recommendation_bands(self, score: int, expected: str) -> None:
        """Scores map to four recommendation bands."""
        assert recommendation_from_score(score) == expected

    def test_no_cache_and_low_usage_favours_a_call(self, optimizer: CreditOptimizer) -> None:
        """Benefit 100 against a one-credit cost of 10."""
        result = optimizer.calculate_cost_benefit(QUOTES, PARAMS, data_max_age=60)
        assert result["benefit_score"] == 100
        assert result["cost_score"] == 10
        assert result["recommendation"] == "make_api_call"

    def test_fresh_cache_reduces_benefit(self, store: MemoryStore, clock: Any) -> None:
        """A 10 s old entry with a 100 s tolerance leaves little to gain."""
        optimizer, cache = _optimizer(store, clock)
        _cache_entry(cache, clock, 10)
        result = optimizer.calculate_cost_benefit(QUOTES, PARAMS, data_max_age=100)
        assert result["benefit_score"] == 10
        assert result["recommendation"] == "consider_alternatives"
        assert "cached_data" in result["alternatives"]

    def test_freshness_score(self, optimizer: CreditOptimizer) -> None:
        """Freshness falls linearly to zero at the max age."""
        assert optimizer.calculate_freshness_score(QUOTES, None) == 0
        assert optimizer.calculate_freshness_score(QUOTES, 30) == 50
        assert optimizer.calculate_freshness_score(QUOTES, 600) == 0

    def test_ohlcv_alternatives_suggest_larger_intervals(self, optimizer: CreditOptimizer) -> None:
        """OHLCV endpoints can save credits with coarser intervals."""
        alternatives = optimizer.get_credit_saving_alternatives("cryptocurrency/ohlcv/latest", {})
        assert "reduce_interval" in alternatives["reduced_precision"]
