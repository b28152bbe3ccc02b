"""Fiat currency lookups on top of the cached ``fiat/map`` endpoint.

Every lookup goes through :meth:`CoinMarketCapProvider.get_fiat_map`, so it
is served from cache (24 h TTL) after the first call and costs one credit at
most per refresh.
"""

from __future__ import annotations

from typing import Iterable, Optional

from cmc_pro.provider import CoinMarketCapProvider
from cmc_pro.transformers.fiat import FiatCurrency

MAJOR_CURRENCIES: tuple[str, ...] = ("USD", "EUR", "JPY", "GBP", "AUD", "CAD", "CHF", "CNY", "SEK", "NZD")

PRECIOUS_METALS: tuple[str, ...] = ("XAU", "XAG", "XPT", "XPD")

REGIONS: dict[str, tuple[str, ...]] = {
    "North America": ("USD", "CAD", "MXN"),
    "Europe": ("EUR", "GBP", "CHF", "SEK", "NOK", "DKK", "PLN", "CZK", "HUF"),
    "Asia Pacific": ("JPY", "CNY", "KRW", "AUD", "NZD", "SGD", "HKD", "INR", "THB", "IDR", "MYR"),
    "Middle East & Africa": ("AED", "SAR", "ZAR", "EGP", "NGN"),
    "South America": ("BRL", "ARS", "CLP", "COP", "PEN"),
}

_MAP_LIMIT = 5_000


class FiatService:
    """Symbol and id lookups over the full fiat map.

    Args:
        provider: Provider used to fetch ``fiat/map``.
    """

    def __init__(self, provider: CoinMarketCapProvider) -> None:
        self._provider = provider

    def get_all(self, include_metals: bool = False) -> list[FiatCurrency]:
        """Return every fiat currency, plus precious metals when asked."""
        return self._provider.get_fiat_map(
            {"start": 1, "limit": _MAP_LIMIT, "include_metals": include_metals}
        )

    def get_by_symbol(self, symbol: str, include_metals: bool = False) -> Optional[FiatCurrency]:
        wanted = symbol.upper()
        for currency in self.get_all(include_metals):
            if currency.symbol.upper() == wanted:
                return currency
        return None

    def get_by_id(self, currency_id: int, include_metals: bool = False) -> Optional[FiatCurrency]:
        for currency in self.get_all(include_metals):
            if currency.id == currency_id:
                return currency
        return None

    def is_supported(self, symbol: str, include_metals: bool = False) -> bool:
        return self.get_by_symbol(symbol, include_metals) is not None

    def get_major_currencies(self) -> list[FiatCurrency]:
        return _select(self.get_all(), MAJOR_CURRENCIES)

    def get_regional_currencies(self) -> dict[str, list[FiatCurrency]]:
        """Group the fiat map by region.  Every region key is present, possibly empty."""
        currencies = self.get_all()
        return {region: _select(currencies, symbols) for region, symbols in REGIONS.items()}

    def get_precious_metals(self) -> list[FiatCurrency]:
        return _select(self.get_all(include_metals=True), PRECIOUS_METALS)


def _select(currencies: Iterable[FiatCurrency], symbols: Iterable[str]) -> list[FiatCurrency]:
    wanted = set(symbols)
    return [c for c in currencies if c.symbol in wanted]
