"""PostgreSQL-backed PortfolioStore.

Reads holdings, prices and return history with plain ``text()`` queries and
writes results with ``INSERT ... ON CONFLICT (portfolio_id, date) DO UPDATE``
so repeated saves for the same day replace the earlier row.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from ..errors import PortfolioNotFoundError
from ..models import Holding, OptimizedPortfolio, ReturnSeries, RiskMetrics
from .engine import get_engine

logger = structlog.get_logger()

# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------

_SELECT_PORTFOLIO = text("SELECT id FROM portfolios WHERE id = :portfolio_id")

_SELECT_HOLDINGS = text(
    """
    SELECT symbol, quantity, average_cost
    FROM portfolio_holdings
    WHERE portfolio_id = :portfolio_id
    ORDER BY id
    """
)

_SELECT_LATEST_PRICES = text(
    """
    SELECT DISTINCT ON (symbol) symbol, close
    FROM prices_daily
    WHERE symbol = ANY(:symbols)
    ORDER BY symbol, date DESC
    """
)

_SELECT_PORTFOLIO_RETURNS = text(
    """
    SELECT date, daily_return
    FROM portfolio_performance
    WHERE portfolio_id = :portfolio_id
      AND daily_return IS NOT NULL
    ORDER BY date DESC
    LIMIT :days
    """
)

_SELECT_SYMBOL_RETURNS = text(
    """
    SELECT symbol, date, daily_return
    FROM (
        SELECT symbol, date, daily_return,
               ROW_NUMBER() OVER (PARTITION BY symbol ORDER BY date DESC) AS rn
        FROM returns_daily
        WHERE symbol = ANY(:symbols)
    ) ranked
    WHERE rn <= :days
    ORDER BY symbol, date
    """
)

_UPSERT_RISK_METRICS = text(
    """
    INSERT INTO portfolio_risk_metrics (
        portfolio_id, date, var_95, var_99, expected_shortfall, beta, alpha,
        correlation_matrix, sector_allocation, concentration_risk,
        liquidity_risk, breakdown, recommendations
    )
    VALUES (
        :portfolio_id, :date, :var_95, :var_99, :expected_shortfall, :beta, :alpha,
        :correlation_matrix, :sector_allocation, :concentration_risk,
        :liquidity_risk, :breakdown, :recommendations
    )
    ON CONFLICT (portfolio_id, date)
    DO UPDATE SET
        var_95 = EXCLUDED.var_95,
        var_99 = EXCLUDED.var_99,
        expected_shortfall = EXCLUDED.expected_shortfall,
        beta = EXCLUDED.beta,
        alpha = EXCLUDED.alpha,
        correlation_matrix = EXCLUDED.correlation_matrix,
        sector_allocation = EXCLUDED.sector_allocation,
        concentration_risk = EXCLUDED.concentration_risk,
        liquidity_risk = EXCLUDED.liquidity_risk,
        breakdown = EXCLUDED.breakdown,
        recommendations = EXCLUDED.recommendations,
        created_at = now()
    """
)

_UPSERT_OPTIMIZATION = text(
    """
    INSERT INTO portfolio_optimizations (
        portfolio_id, date, objective_type, risk_tolerance, time_horizon,
        expected_return, expected_risk, sharpe_ratio, allocations, metrics,
        converged, partial
    )
    VALUES (
        :portfolio_id, :date, :objective_type, :risk_tolerance, :time_horizon,
        :expected_return, :expected_risk, :sharpe_ratio, :allocations, :metrics,
        :converged, :partial
    )
    ON CONFLICT (portfolio_id, date)
    DO UPDATE SET
        objective_type = EXCLUDED.objective_type,
        risk_tolerance = EXCLUDED.risk_tolerance,
        time_horizon = EXCLUDED.time_horizon,
        expected_return = EXCLUDED.expected_return,
        expected_risk = EXCLUDED.expected_risk,
        sharpe_ratio = EXCLUDED.sharpe_ratio,
        allocations = EXCLUDED.allocations,
        metrics = EXCLUDED.metrics,
        converged = EXCLUDED.converged,
        partial = EXCLUDED.partial,
        created_at = now()
    """
)


def risk_metrics_params(metrics: RiskMetrics) -> dict[str, Any]:
    """Bind parameters for _UPSERT_RISK_METRICS; maps become JSON text."""
    return {
        "portfolio_id": metrics.portfolio_id,
        "date": metrics.date,
        "var_95": metrics.var95,
        "var_99": metrics.var99,
        "expected_shortfall": metrics.expected_shortfall,
        "beta": metrics.beta,
        "alpha": metrics.alpha,
        "correlation_matrix": json.dumps(metrics.correlation_matrix, default=str),
        "sector_allocation": json.dumps(metrics.sector_allocation, default=str),
        "concentration_risk": metrics.concentration_risk,
        "liquidity_risk": metrics.liquidity_risk,
        "breakdown": json.dumps(metrics.breakdown.model_dump(), default=str),
        "recommendations": json.dumps(metrics.recommendations),
    }


def optimization_params(result: OptimizedPortfolio) -> dict[str, Any]:
    """Bind parameters for _UPSERT_OPTIMIZATION."""
    return {
        "portfolio_id": result.portfolio_id,
        "date": result.date,
        "objective_type": result.objective.type.value,
        "risk_tolerance": result.objective.risk_tolerance.value,
        "time_horizon": result.objective.time_horizon.value,
        "expected_return": result.expected_return,
        "expected_risk": result.expected_risk,
        "sharpe_ratio": result.sharpe_ratio,
        "allocations": json.dumps([a.model_dump() for a in result.allocations], default=str),
        "metrics": json.dumps(result.metrics.model_dump(), default=str),
        "converged": result.converged,
        "partial": result.partial,
    }


def _series(symbol: str, rows) -> ReturnSeries:
    return ReturnSeries.from_pairs(symbol, [(r["date"], float(r["daily_return"])) for r in rows])


class SqlPortfolioStore:
    """PortfolioStore over the engine's PostgreSQL tables."""

    def __init__(self, engine: AsyncEngine | None = None) -> None:
        self._engine = engine

    def _get_engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    async def _require_portfolio(self, conn, portfolio_id: str) -> None:
        result = await conn.execute(_SELECT_PORTFOLIO, {"portfolio_id": portfolio_id})
        if result.first() is None:
            raise PortfolioNotFoundError(portfolio_id)

    async def get_holdings(self, portfolio_id: str) -> list[Holding]:
        async with self._get_engine().connect() as conn:
            await self._require_portfolio(conn, portfolio_id)
            result = await conn.execute(_SELECT_HOLDINGS, {"portfolio_id": portfolio_id})
            rows = result.mappings().all()

        return [
            Holding(
                symbol=r["symbol"],
                quantity=float(r["quantity"]),
                average_cost=float(r["average_cost"]),
            )
            for r in rows
        ]

    async def get_current_prices(self, symbols: list[str]) -> dict[str, float]:
        if not symbols:
            return {}
        async with self._get_engine().connect() as conn:
            result = await conn.execute(_SELECT_LATEST_PRICES, {"symbols": list(symbols)})
            rows = result.mappings().all()
        return {r["symbol"]: float(r["close"]) for r in rows}

    async def get_total_value(self, portfolio_id: str) -> float:
        holdings = await self.get_holdings(portfolio_id)
        prices = await self.get_current_prices([h.symbol for h in holdings])
        return float(sum(h.market_value(prices.get(h.symbol)) for h in holdings))

    async def get_historical_returns(self, portfolio_id: str, days: int) -> ReturnSeries:
        async with self._get_engine().connect() as conn:
            await self._require_portfolio(conn, portfolio_id)
            result = await conn.execute(
                _SELECT_PORTFOLIO_RETURNS, {"portfolio_id": portfolio_id, "days": days}
            )
            rows = result.mappings().all()
        return _series(portfolio_id, list(reversed(rows)))

    async def get_symbol_returns(self, symbols: list[str], days: int) -> dict[str, ReturnSeries]:
        if not symbols:
            return {}
        async with self._get_engine().connect() as conn:
            result = await conn.execute(
                _SELECT_SYMBOL_RETURNS, {"symbols": list(symbols), "days": days}
            )
            rows = result.mappings().all()

        grouped: dict[str, list] = {s: [] for s in symbols}
        for r in rows:
            grouped.setdefault(r["symbol"], []).append(r)
        return {s: _series(s, grouped[s]) for s in symbols}

    async def get_benchmark_returns(self, benchmark_id: str, days: int) -> ReturnSeries:
        series = await self.get_symbol_returns([benchmark_id], days)
        return series[benchmark_id]

    async def save_risk_metrics(self, metrics: RiskMetrics) -> None:
        try:
            async with self._get_engine().begin() as conn:
                await conn.execute(_UPSERT_RISK_METRICS, risk_metrics_params(metrics))
        except Exception:
            logger.exception("risk_metrics_write_failed", portfolio_id=metrics.portfolio_id)
            raise

        logger.info(
            "risk_metrics_saved",
            portfolio_id=metrics.portfolio_id,
            date=metrics.date,
        )

    async def save_optimization_result(self, result: OptimizedPortfolio) -> None:
        try:
            async with self._get_engine().begin() as conn:
                await conn.execute(_UPSERT_OPTIMIZATION, optimization_params(result))
        except Exception:
            logger.exception("optimization_write_failed", portfolio_id=result.portfolio_id)
            raise

        logger.info(
            "optimization_saved",
            portfolio_id=result.portfolio_id,
            date=result.date,
            objective=result.objective.type.value,
        )
