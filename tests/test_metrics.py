"""
Unit tests for metrics.py - Risk Metrics Module

Tests cover:
- Position valuation and weights
- Concentration (HHI), liquidity and sector exposure
- Portfolio volatility, risk contributions, diversification ratio
- Risk breakdown and recommendation rules
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose

from portfolio_engine.models import Holding
from portfolio_engine.risk.metrics import (
    HEALTHY_MESSAGE,
    concentration_risk,
    diversification_ratio,
    generate_recommendations,
    liquidity_risk,
    portfolio_volatility,
    position_values,
    position_weights,
    risk_breakdown,
    risk_contributions,
    sector_allocation,
)


@pytest.fixture
def two_holdings():
    return [
        Holding(symbol='AAPL', quantity=100, average_cost=140.0),
        Holding(symbol='GOOGL', quantity=25, average_cost=2000.0),
    ]


class TestPositionValues:
    """Tests for position_values and position_weights."""

    def test_values_use_current_price(self, two_holdings):
        values = position_values(two_holdings, {'AAPL': 150.0, 'GOOGL': 2040.0})

        assert values == {'AAPL': 15000.0, 'GOOGL': 51000.0}

    def test_missing_price_falls_back_to_average_cost(self, two_holdings):
        values = position_values(two_holdings, {'AAPL': 150.0})

        assert values['GOOGL'] == 50000.0

    def test_repeated_symbol_summed(self):
        holdings = [
            Holding(symbol='AAPL', quantity=10, average_cost=100.0),
            Holding(symbol='AAPL', quantity=5, average_cost=120.0),
        ]

        assert position_values(holdings, {'AAPL': 200.0}) == {'AAPL': 3000.0}

    def test_weights_sum_to_one(self):
        weights = position_weights({'AAPL': 15000.0, 'GOOGL': 51000.0})

        assert_allclose(sum(weights.values()), 1.0)
        assert_allclose(weights['AAPL'], 15000 / 66000)

    def test_zero_total_gives_no_weights(self):
        assert position_weights({'AAPL': 0.0}) == {}


class TestConcentrationRisk:
    """Tests for concentration_risk function."""

    def test_two_position_example(self):
        """$15,000 and $51,000 positions give an HHI of about 64.9."""
        result = concentration_risk([15000.0, 51000.0])

        assert result == pytest.approx(64.88, abs=0.01)

    def test_single_position_is_100(self):
        assert concentration_risk([1.0]) == pytest.approx(100.0)

    def test_empty_is_zero(self):
        assert concentration_risk([]) == 0.0

    def test_equal_weights(self):
        """N equal positions give 100 / N."""
        assert concentration_risk([0.25] * 4) == pytest.approx(25.0)

    def test_bounded(self):
        result = concentration_risk(np.random.rand(10))

        assert 0.0 <= result <= 100.0


class TestLiquidityRisk:
    """Tests for liquidity_risk function."""

    def test_weighted_average(self):
        """100 minus weighted score: 100 - (0.5*90 + 0.5*70) = 20."""
        result = liquidity_risk({'A': 0.5, 'B': 0.5}, {'A': 90.0, 'B': 70.0})

        assert result == pytest.approx(20.0)

    def test_default_score_for_unknown_symbol(self):
        result = liquidity_risk({'A': 1.0}, {}, default_score=80.0)

        assert result == pytest.approx(20.0)

    def test_no_weight_is_neutral(self):
        assert liquidity_risk({}, {}) == 50.0


class TestSectorAllocation:
    """Tests for sector_allocation function."""

    def test_percentages(self):
        allocation = sector_allocation(
            {'AAPL': 15000.0, 'GOOGL': 51000.0, 'XOM': 34000.0},
            {'AAPL': 'Technology', 'GOOGL': 'Technology', 'XOM': 'Energy'},
        )

        assert allocation['Technology'] == pytest.approx(66.0)
        assert allocation['Energy'] == pytest.approx(34.0)

    def test_missing_sector_is_other(self):
        allocation = sector_allocation({'AAPL': 1.0, 'ZZZ': 1.0}, {'AAPL': 'Technology'})

        assert allocation['Other'] == pytest.approx(50.0)

    def test_empty(self):
        assert sector_allocation({}, {}) == {}


class TestVolatilityAndContributions:
    """Tests for portfolio_volatility, risk_contributions, diversification_ratio."""

    def test_single_asset_vol(self):
        cov = np.array([[0.04]])

        assert_allclose(portfolio_volatility(np.array([1.0]), cov), 0.2)

    def test_dimension_mismatch_raises(self):
        with pytest.raises(ValueError, match="doesn't match covariance"):
            portfolio_volatility(np.array([0.5, 0.5]), np.eye(3))

    def test_contributions_sum_to_one(self, sample_cov):
        weights = np.full(5, 0.2)

        contributions = risk_contributions(weights, sample_cov)

        assert_allclose(contributions.sum(), 1.0, rtol=1e-10)

    def test_uncorrelated_inverse_vol_contributions_equal(self):
        """Inverse-volatility weights on a diagonal covariance equalize contributions."""
        cov = np.diag([0.04, 0.01])
        weights = np.array([1 / 3, 2 / 3])

        assert_allclose(risk_contributions(weights, cov), [0.5, 0.5], rtol=1e-10)

    def test_diversification_ratio_at_least_one(self, sample_cov):
        assert diversification_ratio(np.full(5, 0.2), sample_cov) >= 1.0


class TestRiskBreakdown:
    """Tests for risk_breakdown function."""

    def test_systematic_from_r_squared(self):
        breakdown = risk_breakdown(0.64, 30.0, 10.0)

        assert breakdown.systematic_risk == pytest.approx(64.0)
        assert breakdown.unsystematic_risk == pytest.approx(36.0)
        assert breakdown.concentration_risk == 30.0
        assert breakdown.liquidity_risk == 10.0


class TestRecommendations:
    """Tests for generate_recommendations rule table."""

    def test_healthy_portfolio(self):
        """Nothing fires: a single healthy message."""
        result = generate_recommendations(
            concentration=10.0,
            liquidity=10.0,
            sectors={'A': 30.0, 'B': 30.0, 'C': 40.0},
            beta=1.0,
            var95=1000.0,
            portfolio_value=100000.0,
        )

        assert result == [HEALTHY_MESSAGE]

    def test_all_rules_fire_in_order(self):
        result = generate_recommendations(
            concentration=64.9,
            liquidity=35.0,
            sectors={'Technology': 77.3, 'Energy': 22.7},
            beta=1.6,
            var95=20000.0,
            portfolio_value=100000.0,
        )

        assert len(result) == 5
        assert result[0].startswith("Concentration risk is high (64.9)")
        assert result[1].startswith("Liquidity risk is elevated")
        assert result[2].startswith("Sector Technology is 77.3%")
        assert result[3].startswith("Portfolio beta is 1.60")
        assert result[4].startswith("95% VaR is 20.0%")

    def test_thresholds_are_strict(self):
        """Values at or just under a threshold do not fire."""
        result = generate_recommendations(25.0, 30.0, {"A": 40.0}, 1.5, 14999.0, 100000.0)

        assert result == [HEALTHY_MESSAGE]

    def test_zero_value_skips_var_rule(self):
        result = generate_recommendations(10.0, 10.0, {}, 1.0, 500.0, 0.0)

        assert result == [HEALTHY_MESSAGE]
