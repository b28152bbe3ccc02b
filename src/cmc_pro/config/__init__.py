"""Configuration package for cmc-pro.

Re-exports the most commonly used configuration symbols so that
callers can write::

    from cmc_pro.config import CoreConfig, PlanTier, get_settings

without needing to know which sub-module each symbol lives in.
"""

from __future__ import annotations

from cmc_pro.config.endpoints import (
    ENDPOINT_REGISTRY,
    EndpointCategory,
    EndpointSpec,
    classify_endpoint,
    normalize_endpoint,
)
from cmc_pro.config.options import (
    DEFAULT_CREDIT_COSTS,
    DEFAULT_TTLS,
    SUPPORTED_CURRENCIES,
    CacheOptions,
    CoreConfig,
    CreditOptions,
    EventOptions,
    PlanOptions,
)
from cmc_pro.config.plans import PLAN_DEFAULTS, PlanDefinition, PlanTier
from cmc_pro.config.settings import Settings, get_settings

__all__ = [
    # settings
    "Settings",
    "get_settings",
    # options
    "CoreConfig",
    "PlanOptions",
    "CreditOptions",
    "CacheOptions",
    "EventOptions",
    "DEFAULT_TTLS",
    "DEFAULT_CREDIT_COSTS",
    "SUPPORTED_CURRENCIES",
    # plans
    "PlanTier",
    "PlanDefinition",
    "PLAN_DEFAULTS",
    # endpoints
    "EndpointCategory",
    "EndpointSpec",
    "ENDPOINT_REGISTRY",
    "classify_endpoint",
    "normalize_endpoint",
]
