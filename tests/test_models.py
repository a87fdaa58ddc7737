"""Tests for pydantic models and the error taxonomy."""

import datetime as dt

import pytest
from pydantic import ValidationError

from portfolio_engine.errors import (
    ErrorKind,
    InsufficientDataError,
    OptimizationDidNotConvergeError,
    PortfolioNotFoundError,
    RiskEngineError,
)
from portfolio_engine.models import (
    EMPTY_PORTFOLIO_MESSAGE,
    Constraints,
    Holding,
    ReturnSeries,
    RiskMetrics,
    StressScenario,
)


class TestReturnSeries:
    """Tests for ReturnSeries validation."""

    def test_ascending_accepted(self):
        series = ReturnSeries.from_pairs(
            'AAPL', [(dt.date(2024, 1, 2), 1.0), (dt.date(2024, 1, 3), -0.5)]
        )

        assert len(series) == 2

    def test_unsorted_rejected(self):
        with pytest.raises(ValidationError, match="sorted ascending"):
            ReturnSeries.from_pairs(
                'AAPL', [(dt.date(2024, 1, 3), 1.0), (dt.date(2024, 1, 2), -0.5)]
            )

    def test_duplicate_date_rejected(self):
        with pytest.raises(ValidationError, match="Duplicate date"):
            ReturnSeries.from_pairs(
                'AAPL', [(dt.date(2024, 1, 2), 1.0), (dt.date(2024, 1, 2), -0.5)]
            )


class TestHolding:
    """Tests for Holding."""

    def test_market_value(self):
        holding = Holding(symbol='AAPL', quantity=100, average_cost=140.0)

        assert holding.market_value(150.0) == 15000.0
        assert holding.market_value() == 14000.0

    def test_frozen(self):
        holding = Holding(symbol='AAPL', quantity=100, average_cost=140.0)

        with pytest.raises(ValidationError):
            holding.quantity = 5


class TestRiskMetrics:
    """Tests for RiskMetrics bounds and the neutral snapshot."""

    def test_neutral(self):
        metrics = RiskMetrics.neutral('p1', dt.date(2024, 1, 2))

        assert metrics.var95 == 0.0
        assert metrics.beta == 0.0
        assert metrics.recommendations == [EMPTY_PORTFOLIO_MESSAGE]

    def test_concentration_bounded(self):
        with pytest.raises(ValidationError):
            RiskMetrics(
                portfolio_id='p1', date=dt.date(2024, 1, 2), var95=0, var99=0,
                expected_shortfall=0, beta=1, alpha=0,
                concentration_risk=120.0, liquidity_risk=0,
            )


def test_scenario_sensitivity_defaults_to_one():
    scenario = StressScenario(name='s', shock_factor=-0.1, sector_sensitivities={'Energy': 2.0})

    assert scenario.sensitivity('Energy') == 2.0
    assert scenario.sensitivity('Technology') == 1.0


def test_constraint_defaults():
    constraints = Constraints()

    assert constraints.min_weight == 0.0
    assert constraints.max_weight == 1.0
    assert constraints.max_risk is None
    assert constraints.risk_free_rate == 0.02


class TestErrors:
    """Tests for the error taxonomy."""

    def test_errors_are_value_errors(self):
        assert issubclass(RiskEngineError, ValueError)

    def test_to_dict(self):
        exc = InsufficientDataError("Need more data", observations=12)

        assert exc.to_dict() == {
            "kind": "INSUFFICIENT_DATA",
            "message": "Need more data",
            "details": {"observations": 12},
        }

    def test_not_found_carries_id(self):
        exc = PortfolioNotFoundError('p9')

        assert exc.kind == ErrorKind.PORTFOLIO_NOT_FOUND
        assert exc.portfolio_id == 'p9'

    def test_did_not_converge_keeps_partial_result(self):
        exc = OptimizationDidNotConvergeError("stopped", partial_result={'A': 1.0}, iterations=5)

        assert exc.partial_result == {'A': 1.0}
        assert exc.details == {'iterations': 5}
