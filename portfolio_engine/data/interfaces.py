"""Collaborator interfaces the services depend on.

Both are structural ``Protocol``s: the SQL store, the in-memory store and
any test double satisfy them without inheriting from anything.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..models import Holding, OptimizedPortfolio, ReturnSeries, RiskMetrics


@runtime_checkable
class PortfolioStore(Protocol):
    """Holdings, valuations, return history and result persistence.

    Every read for an unknown ``portfolio_id`` raises PortfolioNotFoundError.
    ``save_*`` are idempotent upserts keyed by (portfolio_id, date).
    """

    async def get_holdings(self, portfolio_id: str) -> list[Holding]: ...

    async def get_total_value(self, portfolio_id: str) -> float: ...

    async def get_historical_returns(self, portfolio_id: str, days: int) -> ReturnSeries: ...

    async def get_benchmark_returns(self, benchmark_id: str, days: int) -> ReturnSeries: ...

    async def get_symbol_returns(
        self, symbols: list[str], days: int
    ) -> dict[str, ReturnSeries]: ...

    async def get_current_prices(self, symbols: list[str]) -> dict[str, float]: ...

    async def save_risk_metrics(self, metrics: RiskMetrics) -> None: ...

    async def save_optimization_result(self, result: OptimizedPortfolio) -> None: ...


@runtime_checkable
class SymbolMetadata(Protocol):
    """Sector and liquidity lookup; unknown symbols get "Other" / a default score."""

    def get_sector(self, symbol: str) -> str: ...

    def get_liquidity_score(self, symbol: str) -> float: ...
