"""Unit tests for the payload transformers."""

from __future__ import annotations

import pytest

from cmc_pro.core.exceptions import InvalidResponseError
from cmc_pro.transformers import cryptocurrency, exchange, fiat, global_metrics

BTC_LISTING = {
    "id": 1,
    "name": "Bitcoin",
    "symbol": "BTC",
    "slug": "bitcoin",
    "cmc_rank": 1,
    "circulating_supply": 19_500_000,
    "tags": ["mineable", {"slug": "pow"}],
    "quote": {"USD": {"price": 67_000.5, "market_cap": 1.3e12, "last_updated": "2026-10-19T11:59:00.000Z"}},
    "self_reported_market_cap": None,
}


class TestCryptocurrency:
    def test_listing_fields_and_unknown_keys(self) -> None:
        """Known fields are typed; fields the model does not know are ignored."""
        [listing] = cryptocurrency.transform_listings([BTC_LISTING])
        assert listing.symbol == "BTC"
        assert listing.cmc_rank == 1
        assert listing.price_in("usd") == pytest.approx(67_000.5)
        assert listing.price_in("EUR") is None
        assert not hasattr(listing, "self_reported_market_cap")

    def test_models_are_frozen(self) -> None:
        """Transformed records cannot be mutated."""
        listing = cryptocurrency.transform_listing(BTC_LISTING)
        with pytest.raises(Exception):
            listing.symbol = "ETH"  # type: ignore[misc]

    def test_quotes_keyed_by_id(self) -> None:
        """id queries return one record per key."""
        quotes = cryptocurrency.transform_quotes({"1": BTC_LISTING})
        assert quotes["1"].name == "Bitcoin"

    def test_quotes_keyed_by_symbol(self) -> None:
        """symbol queries return a list per key."""
        quotes = cryptocurrency.transform_quotes({"BTC": [BTC_LISTING, {**BTC_LISTING, "id": 9_999}]})
        assert [q.id for q in quotes["BTC"]] == [1, 9_999]

    def test_map_with_platform(self) -> None:
        """Token platforms are parsed into nested models."""
        [entry] = cryptocurrency.transform_map(
            [
                {
                    "id": 3_408,
                    "name": "USDC",
                    "symbol": "USDC",
                    "slug": "usd-coin",
                    "is_active": 1,
                    "platform": {"id": 1_027, "name": "Ethereum", "token_address": "0xa0b8"},
                }
            ]
        )
        assert entry.platform is not None
        assert entry.platform.name == "Ethereum"

    def test_info_defaults(self) -> None:
        """Optional collections default to empty."""
        info = cryptocurrency.transform_info({"1": {"id": 1, "name": "Bitcoin", "symbol": "BTC"}})
        assert info["1"].urls == {}
        assert info["1"].tags == []

    def test_ohlcv(self) -> None:
        """OHLCV quotes are parsed per currency."""
        ohlcv = cryptocurrency.transform_ohlcv(
            {"1": {"id": 1, "symbol": "BTC", "quote": {"USD": {"open": 1.0, "close": 2.0}}}}
        )
        assert ohlcv["1"].quote["USD"].close == 2.0

    def test_trending_empty(self) -> None:
        """A missing data block is an empty list."""
        assert cryptocurrency.transform_trending(None) == []

    def test_missing_required_field_is_invalid(self) -> None:
        """A record without an id is rejected."""
        with pytest.raises(InvalidResponseError):
            cryptocurrency.transform_listings([{"name": "Bitcoin", "symbol": "BTC"}])

    def test_wrong_container_is_invalid(self) -> None:
        """A mapping where a list is expected is rejected."""
        with pytest.raises(InvalidResponseError):
            cryptocurrency.transform_map({"1": {}})
        with pytest.raises(InvalidResponseError):
            cryptocurrency.transform_quotes([BTC_LISTING])


class TestExchange:
    def test_listing(self) -> None:
        """Exchange listings carry volume quotes."""
        [listing] = exchange.transform_listings(
            [{"id": 270, "name": "Binance", "slug": "binance", "quote": {"USD": {"volume_24h": 1.5e10}}}]
        )
        assert listing.quote["USD"].volume_24h == pytest.approx(1.5e10)

    def test_info_and_map(self) -> None:
        """Info and map records validate with their minimal fields."""
        info = exchange.transform_info({"270": {"id": 270, "name": "Binance", "slug": "binance", "maker_fee": 0.1}})
        assert info["270"].maker_fee == pytest.approx(0.1)
        assert exchange.transform_map([{"id": 270, "name": "Binance", "slug": "binance"}])[0].slug == "binance"


class TestGlobalMetrics:
    def test_transform(self) -> None:
        """Dominance and per-currency totals are exposed."""
        metrics = global_metrics.transform(
            {"btc_dominance": 54.2, "active_cryptocurrencies": 9_800, "quote": {"USD": {"total_market_cap": 2.4e12}}}
        )
        assert metrics.btc_dominance == pytest.approx(54.2)
        assert metrics.total_market_cap("usd") == pytest.approx(2.4e12)
        assert metrics.total_market_cap("EUR") is None

    def test_non_object_is_invalid(self) -> None:
        """Global metrics must be an object."""
        with pytest.raises(InvalidResponseError):
            global_metrics.transform([1, 2])


class TestFiat:
    def test_map(self) -> None:
        """Fiat entries keep their sign."""
        [usd] = fiat.transform_map([{"id": 2_781, "name": "United States Dollar", "sign": "$", "symbol": "USD"}])
        assert usd.sign == "$"
