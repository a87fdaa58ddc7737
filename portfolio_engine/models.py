"""Pydantic models for the engine's inputs and results.

Inputs (holdings, return series) arrive from the store as immutable
snapshots; results (risk metrics, optimized portfolios) are created fresh per
request.  Maps are plain typed dicts here -- JSON encoding happens only in the
persistence layer.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Holding(BaseModel):
    """A single position snapshot owned by a portfolio."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    quantity: float
    average_cost: float

    def market_value(self, current_price: float | None = None) -> float:
        """Value at *current_price*, falling back to the average cost."""
        price = current_price if current_price is not None else self.average_cost
        return self.quantity * price


class ReturnPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: dt.date
    daily_return_percent: float


class ReturnSeries(BaseModel):
    """Daily returns for one symbol, portfolio or benchmark.

    Points must be strictly ascending by date.  Gaps are fine; combining two
    series always aligns on dates, never on positions.
    """

    model_config = ConfigDict(frozen=True)

    symbol: str
    points: list[ReturnPoint] = Field(default_factory=list)

    @field_validator("points")
    @classmethod
    def _ascending_unique_dates(cls, points: list[ReturnPoint]) -> list[ReturnPoint]:
        for prev, cur in zip(points, points[1:]):
            if cur.date == prev.date:
                raise ValueError(f"Duplicate date in return series: {cur.date}")
            if cur.date < prev.date:
                raise ValueError(
                    f"Return series must be sorted ascending: {prev.date} before {cur.date}"
                )
        return points

    def __len__(self) -> int:
        return len(self.points)

    @classmethod
    def from_pairs(
        cls, symbol: str, pairs: list[tuple[dt.date, float]]
    ) -> "ReturnSeries":
        return cls(
            symbol=symbol,
            points=[ReturnPoint(date=d, daily_return_percent=r) for d, r in pairs],
        )


# ---------------------------------------------------------------------------
# Risk results
# ---------------------------------------------------------------------------


class RiskBreakdown(BaseModel):
    """Split of portfolio risk, all values in percent."""

    systematic_risk: float = 0.0    # R^2 of portfolio on benchmark * 100
    unsystematic_risk: float = 0.0
    concentration_risk: float = 0.0
    liquidity_risk: float = 0.0


EMPTY_PORTFOLIO_MESSAGE = "Add holdings to start risk analysis."


class RiskMetrics(BaseModel):
    portfolio_id: str
    date: dt.date
    var95: float
    var99: float
    expected_shortfall: float
    beta: float
    alpha: float
    correlation_matrix: dict[str, dict[str, float]] = Field(default_factory=dict)
    sector_allocation: dict[str, float] = Field(default_factory=dict)
    concentration_risk: float = Field(ge=0.0, le=100.0)
    liquidity_risk: float = Field(ge=0.0, le=100.0)
    breakdown: RiskBreakdown = Field(default_factory=RiskBreakdown)
    recommendations: list[str] = Field(default_factory=list)

    @classmethod
    def neutral(cls, portfolio_id: str, date: dt.date | None = None) -> "RiskMetrics":
        """All-zero snapshot for a portfolio without holdings."""
        return cls(
            portfolio_id=portfolio_id,
            date=date or dt.date.today(),
            var95=0.0,
            var99=0.0,
            expected_shortfall=0.0,
            beta=0.0,
            alpha=0.0,
            concentration_risk=0.0,
            liquidity_risk=0.0,
            recommendations=[EMPTY_PORTFOLIO_MESSAGE],
        )


class VaRResult(BaseModel):
    var: float
    expected_shortfall: float
    confidence: float
    horizon_days: int
    observations: int


class StressScenario(BaseModel):
    """Uniform return shock, optionally weighted per sector."""

    name: str
    shock_factor: float
    sector_sensitivities: dict[str, float] = Field(default_factory=dict)

    def sensitivity(self, sector: str) -> float:
        return self.sector_sensitivities.get(sector, 1.0)


class WorstHolding(BaseModel):
    symbol: str
    impact: float
    impact_percent: float


class StressTestResult(BaseModel):
    scenario: str
    portfolio_impact: float
    impact_percent: float
    worst_holding: WorstHolding
    recovery_time_days: float


# ---------------------------------------------------------------------------
# Optimization inputs and results
# ---------------------------------------------------------------------------


class ObjectiveType(str, Enum):
    MAX_RETURN = "MAX_RETURN"
    MIN_RISK = "MIN_RISK"
    MAX_SHARPE = "MAX_SHARPE"
    RISK_PARITY = "RISK_PARITY"
    EQUAL_WEIGHT = "EQUAL_WEIGHT"


class RiskTolerance(str, Enum):
    CONSERVATIVE = "CONSERVATIVE"
    MODERATE = "MODERATE"
    AGGRESSIVE = "AGGRESSIVE"


class TimeHorizon(str, Enum):
    SHORT = "SHORT"     # under 1 year
    MEDIUM = "MEDIUM"   # 1-5 years
    LONG = "LONG"       # over 5 years


class OptimizationObjective(BaseModel):
    type: ObjectiveType
    risk_tolerance: RiskTolerance = RiskTolerance.MODERATE
    time_horizon: TimeHorizon = TimeHorizon.MEDIUM


class Constraints(BaseModel):
    """Box, risk and sector constraints for a weight solve.

    ``sector_caps`` values are percents of the portfolio (0-100); weights and
    ``max_risk`` (annualized volatility) are decimals.
    """

    min_weight: float = 0.0
    max_weight: float = 1.0
    max_risk: float | None = None
    risk_free_rate: float = 0.02
    sector_caps: dict[str, float] | None = None
    rebalance_threshold: float = 0.05


class AllocationWeight(BaseModel):
    symbol: str
    weight: float


class OptimizationMetrics(BaseModel):
    diversification_ratio: float
    concentration_index: float


class OptimizedPortfolio(BaseModel):
    portfolio_id: str
    date: dt.date
    objective: OptimizationObjective
    allocations: list[AllocationWeight]
    expected_return: float
    expected_risk: float
    sharpe_ratio: float
    metrics: OptimizationMetrics
    current_weights: dict[str, float] = Field(default_factory=dict)
    rebalancing_needed: bool = False
    converged: bool = True
    partial: bool = False
    iterations: int = 0

    def weights(self) -> dict[str, float]:
        return {a.symbol: a.weight for a in self.allocations}


class FrontierPoint(BaseModel):
    risk: float
    expected_return: float
    sharpe_ratio: float
    allocations: dict[str, float]


class EfficientFrontier(BaseModel):
    points: list[FrontierPoint] = Field(default_factory=list)
    partial: bool = False
    skipped: int = 0


class RiskParityResult(BaseModel):
    weights: dict[str, float]
    risk_contributions: dict[str, float]
    converged: bool
    iterations: int
    partial: bool = False
    total_risk: float = 0.0
    diversification_ratio: float = 0.0


class TradeAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class RebalancingAction(BaseModel):
    symbol: str
    action: TradeAction
    current_weight: float
    target_weight: float
    quantity_delta: float
    estimated_cost: float
