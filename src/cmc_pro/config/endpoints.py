"""Endpoint registry and category classification.

Every CoinMarketCap endpoint the package calls is listed explicitly in
:data:`ENDPOINT_REGISTRY` with its API version, its data category and the key
of its entry in the TTL table.  Classification is therefore a dictionary
lookup for every known endpoint.

Names that are not in the registry (ad-hoc endpoint types such as
``"cryptocurrency_quotes"`` used as cache tags, or endpoints added upstream
later) fall back to ordered substring rules::

    static        map, info, fiat
    real_time     quotes, pairs
    semi_dynamic  listings, trending, global
    historical    historical
    market_data   anything else

The fallback is checked in that order, so ``"cryptocurrency/quotes/historical"``
would classify as real-time if it were unmapped.  Known endpoints never reach
the fallback.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class EndpointCategory(str, Enum):
    """Coarse data-volatility classes driving TTL bounds and cache priority."""

    STATIC = "static"
    SEMI_DYNAMIC = "semi_dynamic"
    REAL_TIME = "real_time"
    MARKET_DATA = "market_data"
    HISTORICAL = "historical"


@dataclass(frozen=True)
class EndpointSpec:
    """Static description of one API endpoint.

    Attributes:
        path: Canonical path without version prefix, e.g. ``cryptocurrency/quotes/latest``.
        version: API version segment the endpoint is served under.
        category: Data category of the endpoint.
        ttl_key: Key into the TTL table (``CacheOptions.ttl``).
    """

    path: str
    version: str
    category: EndpointCategory
    ttl_key: str

    @property
    def url_path(self) -> str:
        return f"/{self.version}/{self.path}"

    @property
    def normalized(self) -> str:
        return normalize_endpoint(self.path)


_S = EndpointCategory.STATIC
_SD = EndpointCategory.SEMI_DYNAMIC
_RT = EndpointCategory.REAL_TIME
_MD = EndpointCategory.MARKET_DATA
_H = EndpointCategory.HISTORICAL

ENDPOINT_REGISTRY: dict[str, EndpointSpec] = {
    spec.path: spec
    for spec in (
        EndpointSpec("cryptocurrency/map", "v1", _S, "cryptocurrency_map"),
        EndpointSpec("cryptocurrency/info", "v2", _S, "cryptocurrency_info"),
        EndpointSpec("cryptocurrency/listings/latest", "v1", _SD, "cryptocurrency_listings"),
        EndpointSpec("cryptocurrency/trending/latest", "v1", _SD, "trending"),
        EndpointSpec("cryptocurrency/quotes/latest", "v2", _RT, "cryptocurrency_quotes"),
        EndpointSpec("cryptocurrency/market-pairs/latest", "v2", _RT, "market_pairs"),
        EndpointSpec("cryptocurrency/ohlcv/latest", "v2", _MD, "ohlcv"),
        EndpointSpec("cryptocurrency/quotes/historical", "v2", _H, "historical"),
        EndpointSpec("cryptocurrency/ohlcv/historical", "v2", _H, "historical"),
        EndpointSpec("exchange/map", "v1", _S, "exchange_map"),
        EndpointSpec("exchange/info", "v1", _S, "exchange_info"),
        EndpointSpec("exchange/listings/latest", "v1", _SD, "exchange_listings"),
        EndpointSpec("exchange/quotes/latest", "v1", _RT, "exchange_quotes"),
        EndpointSpec("global-metrics/quotes/latest", "v1", _SD, "global_metrics"),
        EndpointSpec("global-metrics/quotes/historical", "v1", _H, "historical"),
        EndpointSpec("fiat/map", "v1", _S, "fiat_map"),
    )
}
"""Canonical endpoint path -> :class:`EndpointSpec`."""

ENDPOINT_TYPE_CATEGORIES: dict[str, EndpointCategory] = {
    "cryptocurrency_map": _S,
    "cryptocurrency_info": _S,
    "exchange_map": _S,
    "exchange_info": _S,
    "fiat_map": _S,
    "cryptocurrency_listings": _SD,
    "exchange_listings": _SD,
    "trending": _SD,
    "global_metrics": _SD,
    "cryptocurrency_quotes": _RT,
    "exchange_quotes": _RT,
    "market_pairs": _RT,
    "ohlcv": _MD,
    "historical": _H,
}
"""Endpoint *types* (the TTL-table keys used as cache tags) -> category."""

_FALLBACK_RULES: tuple[tuple[EndpointCategory, tuple[str, ...]], ...] = (
    (_S, ("map", "info", "fiat")),
    (_RT, ("quotes", "pairs")),
    (_SD, ("listings", "trending", "global")),
    (_H, ("historical",)),
)

_VERSION_PREFIX = re.compile(r"^v\d+/")


def canonical_endpoint(endpoint: str) -> str:
    """Strip slashes and any ``vN/`` prefix: ``/v2/cryptocurrency/info`` -> ``cryptocurrency/info``."""
    return _VERSION_PREFIX.sub("", endpoint.strip().strip("/"))


def normalize_endpoint(endpoint: str) -> str:
    """Return the underscore form used as a config key, e.g. ``global_metrics_quotes_latest``."""
    return canonical_endpoint(endpoint).replace("/", "_").replace("-", "_")


_BY_NORMALIZED: dict[str, EndpointSpec] = {
    normalize_endpoint(path): spec for path, spec in ENDPOINT_REGISTRY.items()
}


def lookup_endpoint(endpoint: str) -> EndpointSpec | None:
    """Return the registered spec for *endpoint* in path or underscore form."""
    canonical = canonical_endpoint(endpoint)
    return ENDPOINT_REGISTRY.get(canonical) or _BY_NORMALIZED.get(normalize_endpoint(canonical))


def classify_endpoint(endpoint: str) -> EndpointCategory:
    """Classify an endpoint path or endpoint type.  Total: never raises.

    Args:
        endpoint: An endpoint path (``cryptocurrency/quotes/latest``), its
            normalized form, or an endpoint type such as ``exchange_map``.

    Returns:
        The registered category, or the substring-fallback category for
        unmapped names (``MARKET_DATA`` when nothing matches).
    """
    spec = lookup_endpoint(endpoint)
    if spec is not None:
        return spec.category
    key = endpoint.strip().lower()
    if key in ENDPOINT_TYPE_CATEGORIES:
        return ENDPOINT_TYPE_CATEGORIES[key]
    for category, fragments in _FALLBACK_RULES:
        if any(fragment in key for fragment in fragments):
            return category
    return EndpointCategory.MARKET_DATA


def resolve_ttl_key(endpoint: str, ttl_table: dict[str, int]) -> str:
    """Return the TTL-table key for *endpoint*, or ``"default"``.

    Registered endpoints use their declared key.  Other names match a table
    key directly, then by substring (longest key first so that
    ``cryptocurrency_quotes`` wins over ``quotes``-like shorter keys).
    """
    spec = lookup_endpoint(endpoint)
    if spec is not None:
        return spec.ttl_key
    key = normalize_endpoint(endpoint)
    if key in ttl_table:
        return key
    for candidate in sorted(ttl_table, key=len, reverse=True):
        if candidate != "default" and candidate in key:
            return candidate
    return "default"


def endpoint_family(endpoint: str) -> str | None:
    """Return ``cryptocurrency``, ``exchange``, ``global_metrics`` or ``fiat`` for an endpoint."""
    key = normalize_endpoint(endpoint)
    for family in ("cryptocurrency", "exchange", "global_metrics", "fiat"):
        if key.startswith(family) or family in key:
            return family
    return None
