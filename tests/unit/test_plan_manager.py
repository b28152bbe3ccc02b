"""Unit tests for plan resolution and plan-sizing advice."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from cmc_pro.config.options import PlanOptions
from cmc_pro.config.plans import PlanTier
from cmc_pro.config.settings import Settings
from cmc_pro.credit.plan_manager import PlanManager, resolve_plan


def _manager(plan_type: str = "basic", **overrides: int) -> PlanManager:
    return PlanManager(PlanOptions(plan_type=plan_type, **overrides))


# ---------------------------------------------------------------------------
# Plan resolution
# ---------------------------------------------------------------------------


class TestResolvePlan:
    @pytest.mark.parametrize(
        ("plan_type", "credits", "per_minute", "per_day"),
        [
            ("basic", 10_000, 30, 333),
            ("hobbyist", 40_000, 30, 1_333),
            ("startup", 120_000, 60, 4_000),
            ("standard", 500_000, 60, 16_667),
            ("professional", 2_000_000, 60, 66_667),
            ("enterprise", 100_000_000, 120, 3_333_333),
        ],
    )
    def test_predefined_limits(self, plan_type: str, credits: int, per_minute: int, per_day: int) -> None:
        """Each tier resolves to its published limits."""
        manager = _manager(plan_type)

        assert manager.get_monthly_credits() == credits
        assert manager.get_minute_call_limit() == per_minute
        assert manager.get_daily_call_limit() == per_day

    def test_unknown_tier_falls_back_to_basic(self) -> None:
        """An unrecognised plan name behaves like the basic tier."""
        manager = _manager("platinum")

        assert manager.tier is PlanTier.BASIC
        assert manager.get_monthly_credits() == 10_000

    def test_tier_name_is_case_insensitive(self) -> None:
        """' Startup ' resolves to the startup tier."""
        assert resolve_plan(" Startup ").tier is PlanTier.STARTUP

    def test_explicit_overrides_win(self) -> None:
        """Configured limits replace the tier defaults field by field."""
        manager = _manager("hobbyist", credits_per_month=55_000, calls_per_minute=5)

        assert manager.get_monthly_credits() == 55_000
        assert manager.get_minute_call_limit() == 5
        assert manager.get_daily_call_limit() == 1_333

    def test_plan_definition_is_immutable(self) -> None:
        """The resolved plan cannot be mutated at runtime."""
        plan = _manager().plan

        with pytest.raises(AttributeError):
            plan.credits_per_month = 1  # type: ignore[misc]

    @pytest.mark.parametrize(
        "overrides",
        [{"credits_per_month": -5}, {"calls_per_day": 0}, {"calls_per_minute": -1}],
    )
    def test_non_positive_overrides_are_rejected(self, overrides: dict[str, int]) -> None:
        """A zero or negative limit is a configuration error, never an unlimited plan."""
        with pytest.raises(ValueError, match="must be a positive integer"):
            PlanOptions(plan_type="basic", **overrides)

    def test_non_positive_settings_are_rejected(self) -> None:
        """Settings refuse non-positive plan limits before any store sees them."""
        with pytest.raises(ValidationError):
            Settings(api_key="test-api-key", credits_per_month=-5)
        with pytest.raises(ValidationError):
            Settings(api_key="test-api-key", calls_per_day=0)


# ---------------------------------------------------------------------------
# Features and request shaping tables
# ---------------------------------------------------------------------------


class TestFeatures:
    def test_features_are_cumulative(self) -> None:
        """Higher tiers include every feature of the tiers below."""
        startup = _manager("startup")

        assert startup.supports_feature("cryptocurrency_data")
        assert startup.supports_feature("exchange_data")
        assert startup.supports_feature("global_metrics")
        assert not startup.supports_feature("trending_data")

    def test_basic_lacks_exchange_data(self) -> None:
        """The free tier has no exchange endpoints."""
        assert not _manager("basic").supports_feature("exchange_data")


class TestRequestShaping:
    def test_batch_size_follows_tier(self) -> None:
        """Batch sizes grow with the tier."""
        assert _manager("basic").get_optimal_batch_size("cryptocurrency/quotes/latest") == 10
        assert _manager("standard").get_optimal_batch_size("cryptocurrency/quotes/latest") == 75

    def test_batch_size_clamped_to_endpoint_limit(self) -> None:
        """The endpoint hard limit caps the tier batch size."""
        manager = PlanManager(
            PlanOptions(plan_type="enterprise"),
            endpoint_limits={"cryptocurrency_ids_per_request": 40, "symbols_per_request": 100},
        )

        assert manager.get_optimal_batch_size("cryptocurrency/quotes/latest") == 40

    def test_listing_limits_by_family(self) -> None:
        """Cryptocurrency and exchange listings have separate ceilings."""
        manager = _manager("startup")

        assert manager.get_listing_limit("cryptocurrency") == 500
        assert manager.get_listing_limit("exchange") == 200

    def test_default_fields(self) -> None:
        """Standard tier requests the full aux field set."""
        assert _manager("basic").get_default_fields() == ("urls", "logo", "description")
        assert "status" in _manager("standard").get_default_fields()

    def test_max_convert_currencies(self) -> None:
        assert _manager("hobbyist").get_max_convert_currencies() == 3


# ---------------------------------------------------------------------------
# Advice
# ---------------------------------------------------------------------------


class TestRecommendedEndpoints:
    def test_basic_only_lists_basic_entries(self) -> None:
        """The basic tier gets its own three recommendations."""
        endpoints = _manager("basic").get_recommended_endpoints()

        assert set(endpoints) == {
            "cryptocurrency_listings_latest",
            "cryptocurrency_quotes_latest",
            "global_metrics_quotes_latest",
        }
        assert endpoints["cryptocurrency_quotes_latest"]["cost"] == 1

    def test_enterprise_promotes_inherited_entries(self) -> None:
        """Enterprise marks every inherited entry high and adds historical global metrics."""
        endpoints = _manager("enterprise").get_recommended_endpoints()

        assert endpoints["cryptocurrency_info"]["priority"] == "high"
        assert endpoints["global_metrics_quotes_historical"]["priority"] == "medium"


class TestUpgradeRecommendations:
    def test_no_upgrade_below_threshold(self) -> None:
        """Usage under 80 % of the quota needs no upgrade."""
        result = _manager("basic").get_upgrade_recommendations(5_000)

        assert result["needs_upgrade"] is False
        assert result["recommendations"] == []

    def test_upgrade_lists_plans_with_headroom(self) -> None:
        """Only plans with at least 20 % headroom over projected usage are listed, smallest first."""
        result = _manager("basic").get_upgrade_recommendations(9_000, usage_growth_rate=3.0)

        assert result["projected_usage"] == 27_000
        plans = [r["plan_type"] for r in result["recommendations"]]
        assert plans[0] == "hobbyist"
        assert "basic" not in plans
        assert result["recommendations"][0]["estimated_cost"] == 79.0


class TestCostEfficiency:
    @pytest.mark.parametrize(
        ("usage", "band"),
        [(9_000, "excellent"), (6_500, "good"), (4_000, "fair"), (2_500, "poor"), (100, "very_poor")],
    )
    def test_efficiency_band(self, usage: int, band: str) -> None:
        assert _manager("basic").get_cost_efficiency_metrics(usage)["efficiency_score"] == band

    def test_cost_per_credit(self) -> None:
        """Hobbyist costs 79 USD for 40,000 credits."""
        metrics = _manager("hobbyist").get_cost_efficiency_metrics(20_000)

        assert metrics["utilization_rate"] == pytest.approx(0.5)
        assert metrics["cost_per_credit_plan"] == pytest.approx(79 / 40_000)
        assert metrics["actual_cost_per_credit"] == pytest.approx(79 / 20_000)
