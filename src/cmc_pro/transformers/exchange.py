"""Exchange payload models: map, info, listings and quotes."""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import Field

from cmc_pro.transformers.common import CmcModel, validate_keyed, validate_list


class ExchangeQuote(CmcModel):
    """Volume data of an exchange in one conversion currency."""

    volume_24h: Optional[float] = None
    volume_24h_adjusted: Optional[float] = None
    volume_7d: Optional[float] = None
    volume_30d: Optional[float] = None
    percent_change_volume_24h: Optional[float] = None
    percent_change_volume_7d: Optional[float] = None
    percent_change_volume_30d: Optional[float] = None
    effective_liquidity_24h: Optional[float] = None
    last_updated: Optional[str] = None


class ExchangeMapEntry(CmcModel):
    id: int
    name: str
    slug: str
    is_active: Optional[int] = None
    is_listed: Optional[int] = None
    first_historical_data: Optional[str] = None
    last_historical_data: Optional[str] = None


class ExchangeInfo(CmcModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    logo: Optional[str] = None
    urls: dict[str, list[str]] = Field(default_factory=dict)
    date_launched: Optional[str] = None
    notice: Optional[str] = None
    countries: list[str] = Field(default_factory=list)
    fiats: list[str] = Field(default_factory=list)
    tags: Optional[list[Any]] = None
    type: Optional[str] = None
    maker_fee: Optional[float] = None
    taker_fee: Optional[float] = None
    weekly_visits: Optional[int] = None
    spot_volume_usd: Optional[float] = None
    spot_volume_last_updated: Optional[str] = None


class ExchangeListing(CmcModel):
    """An exchange with volume quotes, as returned by listings and quotes."""

    id: int
    name: str
    slug: str
    num_market_pairs: Optional[int] = None
    exchange_score: Optional[float] = None
    fiats: list[str] = Field(default_factory=list)
    last_updated: Optional[str] = None
    quote: dict[str, ExchangeQuote] = Field(default_factory=dict)


def transform_map(data: Any) -> list[ExchangeMapEntry]:
    return validate_list(ExchangeMapEntry, data)


def transform_info(data: Any) -> dict[str, Union[ExchangeInfo, list[ExchangeInfo]]]:
    return validate_keyed(ExchangeInfo, data)


def transform_listings(data: Any) -> list[ExchangeListing]:
    return validate_list(ExchangeListing, data)


def transform_quotes(data: Any) -> dict[str, Union[ExchangeListing, list[ExchangeListing]]]:
    return validate_keyed(ExchangeListing, data)
