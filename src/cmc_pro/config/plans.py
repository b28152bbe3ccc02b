"""CoinMarketCap subscription plan definitions and per-tier tables.

Defines the six subscription tiers (BASIC through ENTERPRISE) and everything
that varies with them: monthly credit quota, call caps, feature flags, batch
sizes, listing ceilings, conversion-currency caps and default ``aux`` field
sets.  These tables are the single source of truth consumed by
:class:`~cmc_pro.credit.plan_manager.PlanManager` and
:class:`~cmc_pro.credit.optimizer.CreditOptimizer`.

Quota reference (credits per month / calls per minute / calls per day):

  - basic:         10,000 / 30 / 333
  - hobbyist:      40,000 / 30 / 1,333
  - startup:      120,000 / 60 / 4,000
  - standard:     500,000 / 60 / 16,667
  - professional: 2,000,000 / 60 / 66,667
  - enterprise: 100,000,000 / 120 / 3,333,333
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class PlanTier(str, Enum):
    """Subscription tier names, ordered from cheapest to most capable."""

    BASIC = "basic"
    HOBBYIST = "hobbyist"
    STARTUP = "startup"
    STANDARD = "standard"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"

    @classmethod
    def parse(cls, value: str | PlanTier | None) -> PlanTier:
        """Return the tier for *value*, falling back to BASIC for unknown names."""
        if isinstance(value, PlanTier):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.BASIC


#: Fallbacks applied when neither the tier table nor explicit overrides
#: provide a value.
DEFAULT_CREDITS_PER_MONTH = 10_000
DEFAULT_CALLS_PER_DAY = 333
DEFAULT_CALLS_PER_MINUTE = 30


@dataclass(frozen=True)
class PlanDefinition:
    """Concrete limits and features of the active plan.

    Attributes:
        tier: The :class:`PlanTier` this definition was resolved for.
        credits_per_month: Monthly credit quota.
        calls_per_day: Daily call cap.  A value <= 0 disables the cap.
        calls_per_minute: Per-minute call cap.  A value <= 0 disables the cap.
        features: Feature flags available on this tier.
    """

    tier: PlanTier
    credits_per_month: int
    calls_per_day: int
    calls_per_minute: int
    features: frozenset[str] = field(default_factory=frozenset)


# ---------------------------------------------------------------------------
# Feature sets (each tier is a superset of the one below)
# ---------------------------------------------------------------------------

_BASIC_FEATURES = frozenset({"basic_endpoints", "cryptocurrency_data", "caching"})
_HOBBYIST_FEATURES = _BASIC_FEATURES | {"exchange_data", "historical_data_limited"}
_STARTUP_FEATURES = _HOBBYIST_FEATURES | {"global_metrics", "historical_data", "batch_requests"}
_STANDARD_FEATURES = _STARTUP_FEATURES | {"trending_data", "ohlcv_data"}
_PROFESSIONAL_FEATURES = _STANDARD_FEATURES | {"market_pairs", "advanced_filtering"}
_ENTERPRISE_FEATURES = _PROFESSIONAL_FEATURES | {"priority_support", "custom_limits"}

PLAN_FEATURES: dict[PlanTier, frozenset[str]] = {
    PlanTier.BASIC: _BASIC_FEATURES,
    PlanTier.HOBBYIST: _HOBBYIST_FEATURES,
    PlanTier.STARTUP: _STARTUP_FEATURES,
    PlanTier.STANDARD: _STANDARD_FEATURES,
    PlanTier.PROFESSIONAL: _PROFESSIONAL_FEATURES,
    PlanTier.ENTERPRISE: _ENTERPRISE_FEATURES,
}


PLAN_DEFAULTS: dict[PlanTier, PlanDefinition] = {
    PlanTier.BASIC: PlanDefinition(
        tier=PlanTier.BASIC,
        credits_per_month=10_000,
        calls_per_day=333,
        calls_per_minute=30,
        features=_BASIC_FEATURES,
    ),
    PlanTier.HOBBYIST: PlanDefinition(
        tier=PlanTier.HOBBYIST,
        credits_per_month=40_000,
        calls_per_day=1_333,
        calls_per_minute=30,
        features=_HOBBYIST_FEATURES,
    ),
    PlanTier.STARTUP: PlanDefinition(
        tier=PlanTier.STARTUP,
        credits_per_month=120_000,
        calls_per_day=4_000,
        calls_per_minute=60,
        features=_STARTUP_FEATURES,
    ),
    PlanTier.STANDARD: PlanDefinition(
        tier=PlanTier.STANDARD,
        credits_per_month=500_000,
        calls_per_day=16_667,
        calls_per_minute=60,
        features=_STANDARD_FEATURES,
    ),
    PlanTier.PROFESSIONAL: PlanDefinition(
        tier=PlanTier.PROFESSIONAL,
        credits_per_month=2_000_000,
        calls_per_day=66_667,
        calls_per_minute=60,
        features=_PROFESSIONAL_FEATURES,
    ),
    PlanTier.ENTERPRISE: PlanDefinition(
        tier=PlanTier.ENTERPRISE,
        credits_per_month=100_000_000,
        calls_per_day=3_333_333,
        calls_per_minute=120,
        features=_ENTERPRISE_FEATURES,
    ),
}
"""Predefined plan limits.  Explicit overrides from configuration win over these."""


# ---------------------------------------------------------------------------
# Request shaping tables
# ---------------------------------------------------------------------------

BATCH_SIZES: dict[PlanTier, int] = {
    PlanTier.BASIC: 10,
    PlanTier.HOBBYIST: 25,
    PlanTier.STARTUP: 50,
    PlanTier.STANDARD: 75,
    PlanTier.PROFESSIONAL: 100,
    PlanTier.ENTERPRISE: 100,
}

CRYPTOCURRENCY_LISTING_LIMITS: dict[PlanTier, int] = {
    PlanTier.BASIC: 100,
    PlanTier.HOBBYIST: 200,
    PlanTier.STARTUP: 500,
    PlanTier.STANDARD: 1_000,
    PlanTier.PROFESSIONAL: 2_000,
    PlanTier.ENTERPRISE: 5_000,
}

EXCHANGE_LISTING_LIMITS: dict[PlanTier, int] = {
    PlanTier.BASIC: 50,
    PlanTier.HOBBYIST: 100,
    PlanTier.STARTUP: 200,
    PlanTier.STANDARD: 300,
    PlanTier.PROFESSIONAL: 500,
    PlanTier.ENTERPRISE: 1_000,
}

MAX_CONVERT_CURRENCIES: dict[PlanTier, int] = {
    PlanTier.BASIC: 2,
    PlanTier.HOBBYIST: 3,
    PlanTier.STARTUP: 5,
    PlanTier.STANDARD: 8,
    PlanTier.PROFESSIONAL: 12,
    PlanTier.ENTERPRISE: 20,
}

_BASIC_FIELDS = ("urls", "logo", "description")
_EXTENDED_FIELDS = _BASIC_FIELDS + ("tags", "platform")
_FULL_FIELDS = _EXTENDED_FIELDS + ("date_added", "notice", "status")

AUX_FIELDS: dict[PlanTier, tuple[str, ...]] = {
    PlanTier.BASIC: _BASIC_FIELDS,
    PlanTier.HOBBYIST: _EXTENDED_FIELDS,
    PlanTier.STARTUP: _EXTENDED_FIELDS,
    PlanTier.STANDARD: _FULL_FIELDS,
    PlanTier.PROFESSIONAL: _FULL_FIELDS,
    PlanTier.ENTERPRISE: _FULL_FIELDS,
}
"""Default ``aux`` field selection for ``cryptocurrency/info`` when the caller sets none."""

ESTIMATED_MONTHLY_COST_USD: dict[PlanTier, float] = {
    PlanTier.BASIC: 0.0,
    PlanTier.HOBBYIST: 79.0,
    PlanTier.STARTUP: 299.0,
    PlanTier.STANDARD: 699.0,
    PlanTier.PROFESSIONAL: 1_999.0,
    PlanTier.ENTERPRISE: 11_999.0,
}
