"""Cryptocurrency payload models: map, info, listings, quotes, trending, OHLCV."""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import Field

from cmc_pro.transformers.common import CmcModel, validate_keyed, validate_list, validate_one


class Platform(CmcModel):
    """Token contract platform for tokens hosted on another chain."""

    id: Optional[int] = None
    name: Optional[str] = None
    symbol: Optional[str] = None
    slug: Optional[str] = None
    token_address: Optional[str] = None


class Quote(CmcModel):
    """Market data of a cryptocurrency in one conversion currency."""

    price: Optional[float] = None
    volume_24h: Optional[float] = None
    volume_change_24h: Optional[float] = None
    percent_change_1h: Optional[float] = None
    percent_change_24h: Optional[float] = None
    percent_change_7d: Optional[float] = None
    percent_change_30d: Optional[float] = None
    market_cap: Optional[float] = None
    market_cap_dominance: Optional[float] = None
    fully_diluted_market_cap: Optional[float] = None
    last_updated: Optional[str] = None


class CryptocurrencyMapEntry(CmcModel):
    id: int
    name: str
    symbol: str
    slug: str
    rank: Optional[int] = None
    is_active: Optional[int] = None
    first_historical_data: Optional[str] = None
    last_historical_data: Optional[str] = None
    platform: Optional[Platform] = None


class CryptocurrencyInfo(CmcModel):
    id: int
    name: str
    symbol: str
    slug: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    logo: Optional[str] = None
    urls: dict[str, list[str]] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    platform: Optional[Platform] = None
    date_added: Optional[str] = None
    notice: Optional[str] = None


class CryptocurrencyListing(CmcModel):
    """A ranked cryptocurrency with quotes, as returned by listings, quotes and trending."""

    id: int
    name: str
    symbol: str
    slug: Optional[str] = None
    cmc_rank: Optional[int] = None
    num_market_pairs: Optional[int] = None
    circulating_supply: Optional[float] = None
    total_supply: Optional[float] = None
    max_supply: Optional[float] = None
    date_added: Optional[str] = None
    tags: list[Any] = Field(default_factory=list)
    platform: Optional[Platform] = None
    last_updated: Optional[str] = None
    quote: dict[str, Quote] = Field(default_factory=dict)

    def price_in(self, currency: str = "USD") -> Optional[float]:
        quote = self.quote.get(currency.upper())
        return quote.price if quote is not None else None


class OhlcvQuote(CmcModel):
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    close: Optional[float] = None
    volume: Optional[float] = None
    last_updated: Optional[str] = None


class OhlcvEntry(CmcModel):
    id: int
    name: Optional[str] = None
    symbol: Optional[str] = None
    last_updated: Optional[str] = None
    time_open: Optional[str] = None
    time_close: Optional[str] = None
    quote: dict[str, OhlcvQuote] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Transform functions
# ---------------------------------------------------------------------------


def transform_map(data: Any) -> list[CryptocurrencyMapEntry]:
    return validate_list(CryptocurrencyMapEntry, data)


def transform_info(data: Any) -> dict[str, Union[CryptocurrencyInfo, list[CryptocurrencyInfo]]]:
    return validate_keyed(CryptocurrencyInfo, data)


def transform_listings(data: Any) -> list[CryptocurrencyListing]:
    return validate_list(CryptocurrencyListing, data)


def transform_quotes(data: Any) -> dict[str, Union[CryptocurrencyListing, list[CryptocurrencyListing]]]:
    return validate_keyed(CryptocurrencyListing, data)


def transform_trending(data: Any) -> list[CryptocurrencyListing]:
    return validate_list(CryptocurrencyListing, data)


def transform_ohlcv(data: Any) -> dict[str, Union[OhlcvEntry, list[OhlcvEntry]]]:
    return validate_keyed(OhlcvEntry, data)


def transform_listing(data: Any) -> CryptocurrencyListing:
    return validate_one(CryptocurrencyListing, data)
