"""Aggregate market metrics model."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import Field

from cmc_pro.transformers.common import CmcModel, validate_one


class GlobalQuote(CmcModel):
    total_market_cap: Optional[float] = None
    total_volume_24h: Optional[float] = None
    total_volume_24h_reported: Optional[float] = None
    altcoin_volume_24h: Optional[float] = None
    altcoin_market_cap: Optional[float] = None
    total_market_cap_yesterday_percentage_change: Optional[float] = None
    total_volume_24h_yesterday_percentage_change: Optional[float] = None
    last_updated: Optional[str] = None


class GlobalMetrics(CmcModel):
    """Market-wide totals and dominance figures."""

    active_cryptocurrencies: Optional[int] = None
    total_cryptocurrencies: Optional[int] = None
    active_market_pairs: Optional[int] = None
    active_exchanges: Optional[int] = None
    total_exchanges: Optional[int] = None
    btc_dominance: Optional[float] = None
    eth_dominance: Optional[float] = None
    defi_volume_24h: Optional[float] = None
    defi_market_cap: Optional[float] = None
    stablecoin_volume_24h: Optional[float] = None
    stablecoin_market_cap: Optional[float] = None
    last_updated: Optional[str] = None
    quote: dict[str, GlobalQuote] = Field(default_factory=dict)

    def total_market_cap(self, currency: str = "USD") -> Optional[float]:
        quote = self.quote.get(currency.upper())
        return quote.total_market_cap if quote is not None else None


def transform(data: Any) -> GlobalMetrics:
    return validate_one(GlobalMetrics, data)
