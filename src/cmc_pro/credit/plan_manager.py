"""Plan resolution, feature lookup and plan-sizing advice.

Resolution order for each numeric limit:

  1. Explicit override in :class:`~cmc_pro.config.options.PlanOptions`
  2. The predefined tier in :data:`~cmc_pro.config.plans.PLAN_DEFAULTS`
  3. Hardcoded fallback (10,000 credits / 333 calls per day / 30 per minute)

Unknown tier names resolve to the basic tier.  Nothing in this module
performs I/O or raises for an ordinary lookup.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from cmc_pro.config.endpoints import normalize_endpoint
from cmc_pro.config.options import DEFAULT_CREDIT_COSTS, DEFAULT_ENDPOINT_LIMITS, PlanOptions
from cmc_pro.config.plans import (
    AUX_FIELDS,
    BATCH_SIZES,
    CRYPTOCURRENCY_LISTING_LIMITS,
    DEFAULT_CALLS_PER_DAY,
    DEFAULT_CALLS_PER_MINUTE,
    DEFAULT_CREDITS_PER_MONTH,
    ESTIMATED_MONTHLY_COST_USD,
    EXCHANGE_LISTING_LIMITS,
    MAX_CONVERT_CURRENCIES,
    PLAN_DEFAULTS,
    PLAN_FEATURES,
    PlanDefinition,
    PlanTier,
)

logger = logging.getLogger(__name__)

_UPGRADE_THRESHOLD = 0.8
_UPGRADE_BUFFER = 1.2

# (endpoint, priority, description, recommended_frequency), cumulative by tier.
_RECOMMENDED_ENDPOINTS: dict[PlanTier, tuple[tuple[str, str, str, str], ...]] = {
    PlanTier.BASIC: (
        ("cryptocurrency_listings_latest", "high", "Get latest cryptocurrency listings", "daily"),
        ("cryptocurrency_quotes_latest", "high", "Get latest price quotes", "hourly"),
        ("global_metrics_quotes_latest", "medium", "Get global market metrics", "daily"),
    ),
    PlanTier.HOBBYIST: (
        ("exchange_listings_latest", "medium", "Get exchange listings", "daily"),
        ("cryptocurrency_info", "low", "Get cryptocurrency metadata", "weekly"),
    ),
    PlanTier.STARTUP: (
        ("cryptocurrency_ohlcv_latest", "medium", "Get OHLCV data", "4_hourly"),
        ("exchange_quotes_latest", "medium", "Get exchange volume data", "daily"),
    ),
    PlanTier.STANDARD: (
        ("cryptocurrency_trending_latest", "medium", "Get trending cryptocurrencies", "hourly"),
        ("cryptocurrency_market_pairs_latest", "low", "Get market pairs data", "daily"),
    ),
    PlanTier.PROFESSIONAL: (
        ("cryptocurrency_quotes_historical", "low", "Get historical price data", "as_needed"),
        ("cryptocurrency_ohlcv_historical", "low", "Get historical OHLCV data", "as_needed"),
    ),
    PlanTier.ENTERPRISE: (
        ("global_metrics_quotes_historical", "medium", "Get historical global metrics", "as_needed"),
    ),
}


def resolve_plan(plan_type: str | PlanTier | None, overrides: Optional[PlanOptions] = None) -> PlanDefinition:
    """Build the effective :class:`PlanDefinition` for *plan_type*.

    Args:
        plan_type: Tier name.  Unknown names resolve to basic.
        overrides: Optional explicit limits; any non-``None`` field wins
            over the tier default.

    Returns:
        A fully populated, immutable plan definition.
    """
    tier = PlanTier.parse(plan_type)
    base = PLAN_DEFAULTS.get(tier)

    def pick(override: Optional[int], tier_value: Optional[int], fallback: int) -> int:
        if override is not None:
            return int(override)
        if tier_value is not None:
            return tier_value
        return fallback

    return PlanDefinition(
        tier=tier,
        credits_per_month=pick(
            overrides.credits_per_month if overrides else None,
            base.credits_per_month if base else None,
            DEFAULT_CREDITS_PER_MONTH,
        ),
        calls_per_day=pick(
            overrides.calls_per_day if overrides else None,
            base.calls_per_day if base else None,
            DEFAULT_CALLS_PER_DAY,
        ),
        calls_per_minute=pick(
            overrides.calls_per_minute if overrides else None,
            base.calls_per_minute if base else None,
            DEFAULT_CALLS_PER_MINUTE,
        ),
        features=PLAN_FEATURES.get(tier, frozenset()),
    )


class PlanManager:
    """Resolves the active subscription tier into limits and sizing advice.

    Args:
        options: Plan tier plus optional explicit limit overrides.
        credit_costs: Estimated credits per call keyed by normalized endpoint.
        endpoint_limits: Hard per-request limits such as
            ``cryptocurrency_ids_per_request``.
    """

    def __init__(
        self,
        options: Optional[PlanOptions] = None,
        credit_costs: Optional[Mapping[str, int]] = None,
        endpoint_limits: Optional[Mapping[str, int]] = None,
    ) -> None:
        self._options = options or PlanOptions()
        self._credit_costs = credit_costs if credit_costs is not None else DEFAULT_CREDIT_COSTS
        self._endpoint_limits = endpoint_limits if endpoint_limits is not None else DEFAULT_ENDPOINT_LIMITS
        self._plan = resolve_plan(self._options.plan_type, self._options)
        requested = self._options.plan_type
        if not isinstance(requested, PlanTier) and self._plan.tier.value != (requested or "").strip().lower():
            logger.warning(
                "plan_manager: unknown plan type, using basic",
                extra={"plan_type": self._options.plan_type},
            )

    # ------------------------------------------------------------------
    # Limits
    # ------------------------------------------------------------------

    @property
    def plan(self) -> PlanDefinition:
        return self._plan

    @property
    def tier(self) -> PlanTier:
        return self._plan.tier

    def get_plan_type(self) -> str:
        return self._plan.tier.value

    def get_monthly_credits(self) -> int:
        return self._plan.credits_per_month

    def get_daily_call_limit(self) -> int:
        return self._plan.calls_per_day

    def get_minute_call_limit(self) -> int:
        return self._plan.calls_per_minute

    def supports_feature(self, feature: str) -> bool:
        """Return True when the active tier includes *feature*."""
        return feature in self._plan.features

    # ------------------------------------------------------------------
    # Request shaping tables
    # ------------------------------------------------------------------

    def get_optimal_batch_size(self, endpoint: str) -> int:
        """Return the tier batch size clamped to the endpoint's hard limit.

        Args:
            endpoint: Endpoint path or normalized name.

        Returns:
            Number of ``id``/``symbol`` values to send per request.
        """
        base = BATCH_SIZES.get(self.tier, BATCH_SIZES[PlanTier.BASIC])
        key = normalize_endpoint(endpoint)
        if "cryptocurrency" in key and "cryptocurrency_ids_per_request" in self._endpoint_limits:
            return min(base, self._endpoint_limits["cryptocurrency_ids_per_request"])
        if "exchange" in key and "exchange_ids_per_request" in self._endpoint_limits:
            return min(base, self._endpoint_limits["exchange_ids_per_request"])
        if "symbols_per_request" in self._endpoint_limits:
            return min(base, self._endpoint_limits["symbols_per_request"])
        return base

    def get_listing_limit(self, family: str) -> int:
        """Return the ``limit`` ceiling for ``cryptocurrency`` or ``exchange`` listings."""
        table = EXCHANGE_LISTING_LIMITS if family == "exchange" else CRYPTOCURRENCY_LISTING_LIMITS
        return table[self.tier]

    def get_max_convert_currencies(self) -> int:
        return MAX_CONVERT_CURRENCIES[self.tier]

    def get_default_fields(self) -> tuple[str, ...]:
        return AUX_FIELDS[self.tier]

    # ------------------------------------------------------------------
    # Advice
    # ------------------------------------------------------------------

    def get_recommended_endpoints(self) -> dict[str, dict[str, Any]]:
        """Return the endpoints worth calling on the active tier.

        Each tier inherits the entries of the tiers below it; enterprise
        additionally promotes every inherited entry to ``high`` priority.

        Returns:
            Mapping of normalized endpoint to ``priority``, ``description``,
            ``cost`` and ``recommended_frequency``.
        """
        result: dict[str, dict[str, Any]] = {}
        for tier in PlanTier:
            if tier is PlanTier.ENTERPRISE and self.tier is PlanTier.ENTERPRISE:
                for entry in result.values():
                    entry["priority"] = "high"
            for endpoint, priority, description, frequency in _RECOMMENDED_ENDPOINTS[tier]:
                result[endpoint] = {
                    "priority": priority,
                    "description": description,
                    "cost": self._credit_costs.get(endpoint, 1),
                    "recommended_frequency": frequency,
                }
            if tier is self.tier:
                break
        return result

    def get_upgrade_recommendations(
        self, current_usage: int, usage_growth_rate: float = 1.0
    ) -> dict[str, Any]:
        """Suggest larger plans when projected usage nears the current quota.

        Args:
            current_usage: Credits used this period.
            usage_growth_rate: Expected multiplier for next period's usage.

        Returns:
            Dict with ``current_plan``, ``current_limit``, ``current_usage``,
            ``projected_usage``, ``needs_upgrade`` and ``recommendations``
            (plans with at least 20 % headroom, smallest first).
        """
        projected = int(current_usage * usage_growth_rate)
        current_limit = self.get_monthly_credits()

        recommendations: list[dict[str, Any]] = []
        if projected > current_limit * _UPGRADE_THRESHOLD:
            for tier, definition in PLAN_DEFAULTS.items():
                limit = definition.credits_per_month
                if limit >= projected * _UPGRADE_BUFFER:
                    recommendations.append(
                        {
                            "plan_type": tier.value,
                            "monthly_limit": limit,
                            "buffer_percentage": (limit - projected) / projected * 100,
                            "estimated_cost": ESTIMATED_MONTHLY_COST_USD[tier],
                        }
                    )
            recommendations.sort(key=lambda r: r["monthly_limit"])

        return {
            "current_plan": self.get_plan_type(),
            "current_limit": current_limit,
            "current_usage": current_usage,
            "projected_usage": projected,
            "needs_upgrade": bool(recommendations),
            "recommendations": recommendations,
        }

    def get_cost_efficiency_metrics(self, actual_usage: int) -> dict[str, Any]:
        """Relate actual usage to what the plan costs."""
        monthly_limit = self.get_monthly_credits()
        utilization = actual_usage / monthly_limit if monthly_limit > 0 else 0.0
        monthly_cost = ESTIMATED_MONTHLY_COST_USD.get(self.tier, 0.0)
        cost_per_credit = monthly_cost / monthly_limit if monthly_limit > 0 else 0.0
        actual_cost_per_credit = monthly_cost / actual_usage if actual_usage > 0 else cost_per_credit

        return {
            "plan_type": self.get_plan_type(),
            "monthly_limit": monthly_limit,
            "actual_usage": actual_usage,
            "utilization_rate": utilization,
            "estimated_monthly_cost": monthly_cost,
            "cost_per_credit_plan": cost_per_credit,
            "actual_cost_per_credit": actual_cost_per_credit,
            "efficiency_score": _efficiency_band(utilization),
            "recommendation": _efficiency_recommendation(utilization),
        }


def _efficiency_band(utilization: float) -> str:
    if utilization >= 0.8:
        return "excellent"
    if utilization >= 0.6:
        return "good"
    if utilization >= 0.4:
        return "fair"
    if utilization >= 0.2:
        return "poor"
    return "very_poor"


def _efficiency_recommendation(utilization: float) -> str:
    if utilization > 0.9:
        return "Consider upgrading to a higher plan for better buffer."
    if utilization >= 0.8:
        return "Good utilization rate, plan is well-suited for your usage."
    if utilization >= 0.6:
        return "Decent utilization, consider optimizing API calls or caching."
    if utilization >= 0.4:
        return "Low utilization, consider downgrading plan or increasing usage."
    if utilization >= 0.2:
        return "Very low utilization, consider downgrading to a lower plan."
    return "Extremely low utilization, consider free tier or pause subscription."
