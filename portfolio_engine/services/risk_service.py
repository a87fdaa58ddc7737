"""Risk analysis orchestration service.

Pulls holdings, prices and return history from the injected PortfolioStore,
runs the pure risk modules and persists the resulting snapshot.
"""

from __future__ import annotations

import datetime as dt
from typing import Callable, Sequence

import structlog

from ..config import Settings, get_settings
from ..data.interfaces import PortfolioStore, SymbolMetadata
from ..errors import RiskEngineError
from ..models import Holding, RiskMetrics, StressScenario, StressTestResult, VaRResult
from ..risk.metrics import (
    concentration_risk,
    generate_recommendations,
    liquidity_risk,
    position_values,
    position_weights,
    risk_breakdown,
    sector_allocation,
)
from ..risk.returns import to_series
from ..risk.statistics import beta_alpha, correlation_matrix, historical_var, historical_var_es
from ..risk.stress import run_stress_tests

logger = structlog.get_logger(__name__)


def _unique_symbols(holdings: Sequence[Holding]) -> list[str]:
    return list(dict.fromkeys(h.symbol for h in holdings))


class PortfolioRiskService:
    """Risk metrics, stress tests and VaR for stored portfolios.

    Holds only its collaborators and settings, so one instance can serve
    concurrent requests.
    """

    def __init__(
        self,
        store: PortfolioStore,
        metadata: SymbolMetadata,
        settings: Settings | None = None,
        persist: bool = True,
        today: Callable[[], dt.date] = dt.date.today,
    ) -> None:
        self.store = store
        self.metadata = metadata
        self.settings = settings or get_settings()
        self.persist = persist
        self._today = today

    async def _valuation(self, portfolio_id: str) -> tuple[list[Holding], dict[str, float]]:
        holdings = await self.store.get_holdings(portfolio_id)
        if not holdings:
            return holdings, {}
        prices = await self.store.get_current_prices(_unique_symbols(holdings))
        return holdings, position_values(holdings, prices)

    async def analyze_portfolio_risk(self, portfolio_id: str) -> RiskMetrics:
        """Build and persist a full RiskMetrics snapshot.

        A portfolio without holdings yields the neutral all-zero snapshot.

        Raises:
            PortfolioNotFoundError: Unknown portfolio
            InsufficientDataError: Too little return history for VaR or correlations
        """
        s = self.settings
        log = logger.bind(portfolio_id=portfolio_id)

        try:
            holdings, values = await self._valuation(portfolio_id)
            if not holdings:
                log.info("risk_analysis_empty_portfolio")
                return RiskMetrics.neutral(portfolio_id, self._today())

            symbols = list(values)
            total_value = float(sum(values.values()))
            weights = position_weights(values)

            portfolio_returns = await self.store.get_historical_returns(
                portfolio_id, s.RETURNS_LOOKBACK_DAYS
            )
            daily = to_series(portfolio_returns).values
            var95 = historical_var_es(
                daily, 0.95, 1, total_value, s.MIN_VAR_OBSERVATIONS
            )
            var99 = historical_var(daily, 0.99, 1, total_value, s.MIN_VAR_OBSERVATIONS)

            benchmark = await self.store.get_benchmark_returns(
                s.BENCHMARK_ID, s.RETURNS_LOOKBACK_DAYS
            )
            regression = beta_alpha(portfolio_returns, benchmark, s.MIN_BETA_OBSERVATIONS)

            symbol_returns = await self.store.get_symbol_returns(symbols, s.RETURNS_LOOKBACK_DAYS)
            correlations = correlation_matrix(symbol_returns, symbols)

            sectors = {sym: self.metadata.get_sector(sym) for sym in symbols}
            scores = {sym: self.metadata.get_liquidity_score(sym) for sym in symbols}

            concentration = concentration_risk(list(weights.values()))
            liquidity = liquidity_risk(
                weights, scores, s.DEFAULT_LIQUIDITY_RISK, s.DEFAULT_LIQUIDITY_SCORE
            )
            allocation = sector_allocation(values, sectors)

            metrics = RiskMetrics(
                portfolio_id=portfolio_id,
                date=self._today(),
                var95=var95.var,
                var99=var99,
                expected_shortfall=var95.expected_shortfall,
                beta=regression["beta"],
                alpha=regression["alpha"],
                correlation_matrix=correlations,
                sector_allocation=allocation,
                concentration_risk=concentration,
                liquidity_risk=liquidity,
                breakdown=risk_breakdown(regression["r2"], concentration, liquidity),
                recommendations=generate_recommendations(
                    concentration,
                    liquidity,
                    allocation,
                    regression["beta"],
                    var95.var,
                    total_value,
                ),
            )

            if self.persist:
                await self.store.save_risk_metrics(metrics)

        except RiskEngineError as exc:
            log.warning("risk_analysis_rejected", kind=exc.kind.value, error=exc.message)
            raise
        except Exception:
            log.exception("risk_analysis_failed")
            raise

        log.info(
            "risk_analysis_completed",
            var95=metrics.var95,
            var99=metrics.var99,
            beta=metrics.beta,
            beta_fallback=regression["fallback"],
            concentration=metrics.concentration_risk,
            observations=var95.observations,
        )
        return metrics

    async def run_stress_test(
        self,
        portfolio_id: str,
        scenarios: Sequence[StressScenario] | None = None,
    ) -> list[StressTestResult]:
        """Apply *scenarios* (the default set when None) to current values."""
        holdings, values = await self._valuation(portfolio_id)
        if not holdings:
            logger.info("stress_test_empty_portfolio", portfolio_id=portfolio_id)
            return []

        sectors = {sym: self.metadata.get_sector(sym) for sym in values}
        results = run_stress_tests(
            values,
            scenarios,
            sectors,
            self.settings.RECOVERY_DAYS_PER_UNIT_SHOCK,
        )
        logger.info(
            "stress_test_completed",
            portfolio_id=portfolio_id,
            scenarios=len(results),
        )
        return results

    async def calculate_var(
        self,
        portfolio_id: str,
        confidence: float = 0.95,
        horizon_days: int = 1,
    ) -> VaRResult:
        """Historical VaR and Expected Shortfall for the current portfolio value.

        Raises:
            InsufficientDataError: Fewer than MIN_VAR_OBSERVATIONS daily returns
        """
        s = self.settings
        holdings, values = await self._valuation(portfolio_id)
        if not holdings:
            return VaRResult(
                var=0.0,
                expected_shortfall=0.0,
                confidence=confidence,
                horizon_days=horizon_days,
                observations=0,
            )

        total_value = float(sum(values.values()))
        returns = await self.store.get_historical_returns(portfolio_id, s.RETURNS_LOOKBACK_DAYS)

        try:
            result = historical_var_es(
                to_series(returns).values,
                confidence,
                horizon_days,
                total_value,
                s.MIN_VAR_OBSERVATIONS,
            )
        except RiskEngineError as exc:
            logger.warning(
                "var_rejected",
                portfolio_id=portfolio_id,
                kind=exc.kind.value,
                error=exc.message,
            )
            raise

        logger.info(
            "var_calculated",
            portfolio_id=portfolio_id,
            confidence=confidence,
            horizon_days=horizon_days,
            var=result.var,
        )
        return result
