"""Pydantic models for CoinMarketCap ``data`` payloads.

Sub-modules:
    common         : CmcModel base, ``validate_list`` / ``validate_keyed`` helpers
    cryptocurrency : map, info, listings, quotes, trending and OHLCV records
    exchange       : exchange map, info, listings and quotes
    global_metrics : aggregate market metrics
    fiat           : fiat currency map
"""

from __future__ import annotations
