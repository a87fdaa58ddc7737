"""In-process implementations of the store and metadata interfaces.

Used by the CLI (loaded from a JSON snapshot) and by the tests.
"""

from __future__ import annotations

import asyncio
import datetime as dt
from typing import Any

import structlog

from ..errors import PortfolioNotFoundError
from ..models import Holding, OptimizedPortfolio, ReturnSeries, RiskMetrics

logger = structlog.get_logger(__name__)

OTHER_SECTOR = "Other"


def _last_days(series: ReturnSeries | None, symbol: str, days: int) -> ReturnSeries:
    if series is None:
        return ReturnSeries(symbol=symbol)
    if days <= 0 or len(series.points) <= days:
        return series
    return ReturnSeries(symbol=series.symbol, points=series.points[-days:])


class InMemoryPortfolioStore:
    """Dict-backed PortfolioStore.

    Saved results are keyed by (portfolio_id, date); saving again for the same
    key replaces the entry under an asyncio.Lock.
    """

    def __init__(
        self,
        holdings: dict[str, list[Holding]] | None = None,
        prices: dict[str, float] | None = None,
        portfolio_returns: dict[str, ReturnSeries] | None = None,
        symbol_returns: dict[str, ReturnSeries] | None = None,
        benchmark_returns: dict[str, ReturnSeries] | None = None,
    ) -> None:
        self.holdings: dict[str, list[Holding]] = dict(holdings or {})
        self.prices: dict[str, float] = dict(prices or {})
        self.portfolio_returns: dict[str, ReturnSeries] = dict(portfolio_returns or {})
        self.symbol_returns: dict[str, ReturnSeries] = dict(symbol_returns or {})
        self.benchmark_returns: dict[str, ReturnSeries] = dict(benchmark_returns or {})

        self.risk_metrics: dict[tuple[str, dt.date], RiskMetrics] = {}
        self.optimizations: dict[tuple[str, dt.date], OptimizedPortfolio] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> "InMemoryPortfolioStore":
        """Build a store from a JSON-like snapshot.

        Expected keys (all optional): ``portfolios`` mapping id ->
        {"holdings": [...], "returns": [[date, pct], ...]}, ``prices``,
        ``symbol_returns`` and ``benchmarks`` mapping symbol -> [[date, pct], ...].
        """
        holdings: dict[str, list[Holding]] = {}
        portfolio_returns: dict[str, ReturnSeries] = {}

        for portfolio_id, body in (data.get("portfolios") or {}).items():
            holdings[portfolio_id] = [Holding(**h) for h in body.get("holdings", [])]
            if body.get("returns"):
                portfolio_returns[portfolio_id] = ReturnSeries.from_pairs(
                    portfolio_id, body["returns"]
                )

        def series_map(key: str) -> dict[str, ReturnSeries]:
            return {
                symbol: ReturnSeries.from_pairs(symbol, pairs)
                for symbol, pairs in (data.get(key) or {}).items()
            }

        store = cls(
            holdings=holdings,
            prices={s: float(p) for s, p in (data.get("prices") or {}).items()},
            portfolio_returns=portfolio_returns,
            symbol_returns=series_map("symbol_returns"),
            benchmark_returns=series_map("benchmarks"),
        )
        logger.info(
            "snapshot_loaded",
            portfolios=len(holdings),
            symbols=len(store.symbol_returns),
            benchmarks=len(store.benchmark_returns),
        )
        return store

    def _require(self, portfolio_id: str) -> list[Holding]:
        if portfolio_id not in self.holdings:
            raise PortfolioNotFoundError(portfolio_id)
        return self.holdings[portfolio_id]

    async def get_holdings(self, portfolio_id: str) -> list[Holding]:
        return list(self._require(portfolio_id))

    async def get_total_value(self, portfolio_id: str) -> float:
        return float(
            sum(h.market_value(self.prices.get(h.symbol)) for h in self._require(portfolio_id))
        )

    async def get_historical_returns(self, portfolio_id: str, days: int) -> ReturnSeries:
        self._require(portfolio_id)
        return _last_days(self.portfolio_returns.get(portfolio_id), portfolio_id, days)

    async def get_benchmark_returns(self, benchmark_id: str, days: int) -> ReturnSeries:
        return _last_days(self.benchmark_returns.get(benchmark_id), benchmark_id, days)

    async def get_symbol_returns(self, symbols: list[str], days: int) -> dict[str, ReturnSeries]:
        return {s: _last_days(self.symbol_returns.get(s), s, days) for s in symbols}

    async def get_current_prices(self, symbols: list[str]) -> dict[str, float]:
        return {s: self.prices[s] for s in symbols if s in self.prices}

    async def save_risk_metrics(self, metrics: RiskMetrics) -> None:
        async with self._lock:
            self.risk_metrics[(metrics.portfolio_id, metrics.date)] = metrics

    async def save_optimization_result(self, result: OptimizedPortfolio) -> None:
        async with self._lock:
            self.optimizations[(result.portfolio_id, result.date)] = result


class StaticSymbolMetadata:
    """SymbolMetadata backed by plain dicts."""

    def __init__(
        self,
        sectors: dict[str, str] | None = None,
        liquidity_scores: dict[str, float] | None = None,
        default_liquidity_score: float = 80.0,
    ) -> None:
        self.sectors = dict(sectors or {})
        self.liquidity_scores = dict(liquidity_scores or {})
        self.default_liquidity_score = default_liquidity_score

    @classmethod
    def from_snapshot(
        cls, data: dict[str, Any], default_liquidity_score: float = 80.0
    ) -> "StaticSymbolMetadata":
        """Read ``metadata``: symbol -> {"sector": ..., "liquidity_score": ...}."""
        sectors: dict[str, str] = {}
        scores: dict[str, float] = {}
        for symbol, meta in (data.get("metadata") or {}).items():
            if meta.get("sector"):
                sectors[symbol] = meta["sector"]
            if meta.get("liquidity_score") is not None:
                scores[symbol] = float(meta["liquidity_score"])
        return cls(sectors, scores, default_liquidity_score)

    def get_sector(self, symbol: str) -> str:
        return self.sectors.get(symbol) or OTHER_SECTOR

    def get_liquidity_score(self, symbol: str) -> float:
        return float(self.liquidity_scores.get(symbol, self.default_liquidity_score))
