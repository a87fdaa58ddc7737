"""Portfolio optimization orchestration service.

Estimates annualized expected returns and covariance from the store's
per-symbol return history, runs the requested solver and wraps the weights
into an OptimizedPortfolio. Also exposes the frontier, standalone risk parity
and rebalancing proposals.
"""

from __future__ import annotations

import datetime as dt
from typing import Callable, Mapping, Sequence

import numpy as np
import pandas as pd
import structlog

from ..config import Settings, get_settings
from ..data.interfaces import PortfolioStore, SymbolMetadata
from ..errors import (
    InfeasibleConstraintsError,
    InsufficientDataError,
    OptimizationDidNotConvergeError,
    RiskEngineError,
)
from ..models import (
    AllocationWeight,
    Constraints,
    EfficientFrontier,
    ObjectiveType,
    OptimizationMetrics,
    OptimizationObjective,
    OptimizedPortfolio,
    RebalancingAction,
    RiskParityResult,
)
from ..optimization.frontier import efficient_frontier
from ..optimization.optimizer import AllocationOptimizer, Deadline, preset_constraints
from ..optimization.rebalancing import CostModel, plan_rebalance, rebalancing_needed
from ..optimization.risk_parity import solve_risk_parity
from ..risk.covariance import annualize_cov, annualize_mean, estimate_covariance
from ..risk.metrics import (
    concentration_risk,
    diversification_ratio,
    position_values,
    position_weights,
)
from ..risk.returns import build_returns_frame

logger = structlog.get_logger(__name__)

# same slack the SLSQP path accepts
FEASIBILITY_TOLERANCE = 1e-5


class PortfolioOptimizationService:
    """Target allocations, frontier, risk parity and rebalancing proposals.

    Stateless between calls apart from injected collaborators and settings.
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

    # -- inputs -------------------------------------------------------------

    async def _current_weights(self, portfolio_id: str) -> tuple[list[str], dict[str, float]]:
        holdings = await self.store.get_holdings(portfolio_id)
        if not holdings:
            raise InsufficientDataError(
                f"Portfolio {portfolio_id} has no holdings to optimize",
                portfolio_id=portfolio_id,
            )
        symbols = list(dict.fromkeys(h.symbol for h in holdings))
        prices = await self.store.get_current_prices(symbols)
        weights = position_weights(position_values(holdings, prices))
        return symbols, weights

    async def _estimates(self, symbols: list[str]) -> tuple[np.ndarray, np.ndarray]:
        """Annualized (mu, cov) from date-aligned per-symbol daily returns."""
        s = self.settings
        series = await self.store.get_symbol_returns(symbols, s.RETURNS_LOOKBACK_DAYS)
        frame = build_returns_frame(series, symbols, min_history=2)
        if len(frame) < 2:
            raise InsufficientDataError(
                f"Need at least 2 aligned return observations, got {len(frame)}",
                symbols=symbols,
                observations=len(frame),
            )

        cov = estimate_covariance(frame, s.COVARIANCE_METHOD, s.EWMA_LAMBDA)
        return annualize_mean(frame, s.TRADING_DAYS), annualize_cov(cov, s.TRADING_DAYS)

    def _sectors(self, symbols: Sequence[str]) -> dict[str, str]:
        return {sym: self.metadata.get_sector(sym) for sym in symbols}

    def _deadline(self, deadline: Deadline | None) -> Deadline:
        return deadline or Deadline(self.settings.OPTIMIZATION_TIMEOUT_SECONDS)

    # -- operations ---------------------------------------------------------

    async def optimize_portfolio(
        self,
        portfolio_id: str,
        objective: OptimizationObjective,
        constraints: Constraints | None = None,
        deadline: Deadline | None = None,
        strict: bool = False,
    ) -> OptimizedPortfolio:
        """Solve for target weights under *objective*.

        Without explicit *constraints* the objective's risk tolerance picks a
        preset; a preset whose max_risk cannot be met is retried without it.

        Raises:
            InfeasibleConstraintsError: Constraints admit no weight vector
            InsufficientDataError: No holdings or too little aligned history
            OptimizationDidNotConvergeError: strict=True and the solver stopped early
        """
        s = self.settings
        deadline = self._deadline(deadline)
        log = logger.bind(portfolio_id=portfolio_id, objective=objective.type.value)

        try:
            symbols, current = await self._current_weights(portfolio_id)
            mu, cov = await self._estimates(symbols)
            sectors = self._sectors(symbols)

            is_preset = constraints is None
            resolved = (
                preset_constraints(objective.risk_tolerance, len(symbols))
                if is_preset
                else constraints
            )

            try:
                optimizer = AllocationOptimizer(
                    symbols, mu, cov, resolved, sectors, s.SOLVER_MAX_ITERATIONS
                )
                result = self._solve(optimizer, objective.type, resolved, deadline)
            except InfeasibleConstraintsError as exc:
                if not (is_preset and resolved.max_risk is not None):
                    raise
                log.info("preset_risk_cap_dropped", max_risk=resolved.max_risk, error=exc.message)
                resolved = resolved.model_copy(update={"max_risk": None})
                optimizer = AllocationOptimizer(
                    symbols, mu, cov, resolved, sectors, s.SOLVER_MAX_ITERATIONS
                )
                result = self._solve(optimizer, objective.type, resolved, deadline)

            weights, converged, iterations, partial = result
            ret, vol, sharpe = optimizer.portfolio_stats(weights)
            targets = {sym: float(w) for sym, w in zip(symbols, weights)}

            portfolio = OptimizedPortfolio(
                portfolio_id=portfolio_id,
                date=self._today(),
                objective=objective,
                allocations=[AllocationWeight(symbol=sym, weight=w) for sym, w in targets.items()],
                expected_return=ret,
                expected_risk=vol,
                sharpe_ratio=sharpe,
                metrics=OptimizationMetrics(
                    diversification_ratio=diversification_ratio(weights, cov),
                    concentration_index=concentration_risk(weights),
                ),
                current_weights=current,
                rebalancing_needed=rebalancing_needed(
                    current, targets, resolved.rebalance_threshold
                ),
                converged=converged,
                partial=partial,
                iterations=iterations,
            )

            if not converged:
                log.warning("optimization_not_converged", iterations=iterations, partial=partial)
                if strict:
                    raise OptimizationDidNotConvergeError(
                        f"{objective.type.value} solve did not converge after {iterations} iterations",
                        partial_result=portfolio,
                        iterations=iterations,
                    )

            if self.persist:
                await self.store.save_optimization_result(portfolio)

        except RiskEngineError as exc:
            log.warning("optimization_rejected", kind=exc.kind.value, error=exc.message)
            raise
        except Exception:
            log.exception("optimization_failed")
            raise

        log.info(
            "optimization_completed",
            expected_return=portfolio.expected_return,
            expected_risk=portfolio.expected_risk,
            sharpe_ratio=portfolio.sharpe_ratio,
            converged=converged,
        )
        return portfolio

    def _solve(
        self,
        optimizer: AllocationOptimizer,
        objective: ObjectiveType,
        constraints: Constraints,
        deadline: Deadline,
    ) -> tuple[np.ndarray, bool, int, bool]:
        if objective == ObjectiveType.RISK_PARITY:
            rp = solve_risk_parity(
                optimizer.cov,
                optimizer.symbols,
                constraints,
                self.settings.RISK_PARITY_TOLERANCE,
                self.settings.RISK_PARITY_MAX_ITERATIONS,
                deadline,
            )
            weights = np.array([rp.weights[sym] for sym in optimizer.symbols])
            converged, iterations, partial = rp.converged, rp.iterations, rp.partial
        else:
            result = optimizer.solve(objective, deadline)
            weights, converged, iterations, partial = (
                result.weights, result.converged, result.iterations, result.partial
            )

        # equal weight and risk parity only honor the weight bounds
        if converged and not optimizer.is_feasible(weights, tol=FEASIBILITY_TOLERANCE):
            optimizer.require_attainable_risk()
            logger.warning(
                "optimization_constraints_violated",
                objective=objective.value,
                sector_caps=constraints.sector_caps,
                max_risk=constraints.max_risk,
            )
            converged = False

        return weights, converged, iterations, partial

    async def calculate_efficient_frontier(
        self,
        portfolio_id: str,
        constraints: Constraints | None = None,
        point_count: int = 20,
        deadline: Deadline | None = None,
    ) -> EfficientFrontier:
        """Frontier over the portfolio's current symbols."""
        s = self.settings
        deadline = self._deadline(deadline)

        try:
            symbols, _ = await self._current_weights(portfolio_id)
            mu, cov = await self._estimates(symbols)
            optimizer = AllocationOptimizer(
                symbols,
                mu,
                cov,
                constraints or Constraints(),
                self._sectors(symbols),
                s.SOLVER_MAX_ITERATIONS,
            )
            frontier = efficient_frontier(optimizer, point_count, s.MAX_FRONTIER_POINTS, deadline)
        except RiskEngineError as exc:
            logger.warning(
                "frontier_rejected",
                portfolio_id=portfolio_id,
                kind=exc.kind.value,
                error=exc.message,
            )
            raise

        logger.info(
            "frontier_completed",
            portfolio_id=portfolio_id,
            points=len(frontier.points),
            skipped=frontier.skipped,
            partial=frontier.partial,
        )
        return frontier

    async def calculate_risk_parity(
        self,
        covariance: np.ndarray | pd.DataFrame,
        constraints: Constraints | None = None,
        symbols: Sequence[str] | None = None,
        deadline: Deadline | None = None,
    ) -> RiskParityResult:
        """Risk parity on a caller-supplied covariance matrix.

        A DataFrame's columns name the assets when *symbols* is not given.
        """
        if isinstance(covariance, pd.DataFrame):
            if symbols is None:
                symbols = [str(c) for c in covariance.columns]
            covariance = covariance.values

        return solve_risk_parity(
            np.asarray(covariance, dtype=float),
            symbols,
            constraints,
            self.settings.RISK_PARITY_TOLERANCE,
            self.settings.RISK_PARITY_MAX_ITERATIONS,
            self._deadline(deadline),
        )

    async def generate_rebalancing_proposal(
        self,
        portfolio_id: str,
        target_allocations: Mapping[str, float] | Sequence[AllocationWeight],
        cost_model: CostModel | None = None,
    ) -> list[RebalancingAction]:
        """Trades moving the current portfolio to *target_allocations*.

        Held symbols without a current price are valued (and traded) at their
        average cost.

        Raises:
            InvalidTargetAllocationError: Bad targets or a target symbol without a price
        """
        s = self.settings

        if isinstance(target_allocations, Mapping):
            targets = {sym: float(w) for sym, w in target_allocations.items()}
        else:
            targets = {a.symbol: float(a.weight) for a in target_allocations}

        holdings = await self.store.get_holdings(portfolio_id)
        symbols = list(dict.fromkeys([*(h.symbol for h in holdings), *targets]))
        prices = await self.store.get_current_prices(symbols)

        trade_prices = dict(prices)
        for h in holdings:
            if h.symbol not in trade_prices and h.average_cost > 0:
                trade_prices[h.symbol] = h.average_cost

        values = position_values(holdings, prices)
        total_value = float(sum(values.values()))

        cost_model = cost_model or CostModel(s.FLAT_TRADE_FEE, s.PROPORTIONAL_TRADE_FEE)

        try:
            actions = plan_rebalance(
                position_weights(values),
                targets,
                total_value,
                trade_prices,
                tolerance=s.REBALANCE_TOLERANCE,
                cost_model=cost_model,
                sum_tolerance=s.TARGET_SUM_TOLERANCE,
            )
        except RiskEngineError as exc:
            logger.warning(
                "rebalancing_rejected",
                portfolio_id=portfolio_id,
                kind=exc.kind.value,
                error=exc.message,
            )
            raise

        logger.info(
            "rebalancing_proposal_built",
            portfolio_id=portfolio_id,
            actions=len(actions),
            total_value=total_value,
        )
        return actions
