"""Tests for the in-memory PortfolioStore and static symbol metadata."""

import asyncio
import datetime as dt

import pytest

from portfolio_engine.data.interfaces import PortfolioStore, SymbolMetadata
from portfolio_engine.data.memory import InMemoryPortfolioStore, StaticSymbolMetadata
from portfolio_engine.errors import PortfolioNotFoundError
from portfolio_engine.models import RiskMetrics

SNAPSHOT = {
    "portfolios": {
        "p1": {
            "holdings": [
                {"symbol": "AAPL", "quantity": 100, "average_cost": 140.0},
                {"symbol": "GOOGL", "quantity": 25, "average_cost": 2000.0},
            ],
            "returns": [["2024-01-02", 0.5], ["2024-01-03", -1.0], ["2024-01-04", 0.25]],
        },
        "empty": {"holdings": []},
    },
    "prices": {"AAPL": 150.0},
    "symbol_returns": {"AAPL": [["2024-01-02", 1.0], ["2024-01-03", 2.0]]},
    "benchmarks": {"SPY": [["2024-01-02", 0.1]]},
    "metadata": {
        "AAPL": {"sector": "Technology", "liquidity_score": 95},
        "GOOGL": {"sector": "Technology"},
    },
}


@pytest.fixture
def snapshot_store():
    return InMemoryPortfolioStore.from_snapshot(SNAPSHOT)


def test_implements_protocols(snapshot_store):
    assert isinstance(snapshot_store, PortfolioStore)
    assert isinstance(StaticSymbolMetadata(), SymbolMetadata)


@pytest.mark.asyncio
async def test_snapshot_holdings(snapshot_store):
    holdings = await snapshot_store.get_holdings("p1")

    assert [h.symbol for h in holdings] == ["AAPL", "GOOGL"]
    assert await snapshot_store.get_holdings("empty") == []


@pytest.mark.asyncio
async def test_total_value_falls_back_to_average_cost(snapshot_store):
    """AAPL at its price, GOOGL (no price) at average cost."""
    assert await snapshot_store.get_total_value("p1") == pytest.approx(15000 + 50000)


@pytest.mark.asyncio
async def test_unknown_portfolio(snapshot_store):
    with pytest.raises(PortfolioNotFoundError, match="Portfolio not found: nope"):
        await snapshot_store.get_holdings("nope")

    with pytest.raises(PortfolioNotFoundError):
        await snapshot_store.get_historical_returns("nope", 10)


@pytest.mark.asyncio
async def test_historical_returns_keep_most_recent(snapshot_store):
    series = await snapshot_store.get_historical_returns("p1", 2)

    assert [p.date for p in series.points] == [dt.date(2024, 1, 3), dt.date(2024, 1, 4)]


@pytest.mark.asyncio
async def test_missing_series_are_empty(snapshot_store):
    returns = await snapshot_store.get_symbol_returns(["AAPL", "MSFT"], 252)

    assert len(returns["AAPL"]) == 2
    assert len(returns["MSFT"]) == 0
    assert len(await snapshot_store.get_benchmark_returns("QQQ", 252)) == 0
    assert len(await snapshot_store.get_historical_returns("empty", 252)) == 0


@pytest.mark.asyncio
async def test_current_prices_only_known(snapshot_store):
    assert await snapshot_store.get_current_prices(["AAPL", "GOOGL"]) == {"AAPL": 150.0}


def test_metadata_from_snapshot():
    metadata = StaticSymbolMetadata.from_snapshot(SNAPSHOT, default_liquidity_score=70.0)

    assert metadata.get_sector("AAPL") == "Technology"
    assert metadata.get_sector("XOM") == "Other"
    assert metadata.get_liquidity_score("AAPL") == 95.0
    assert metadata.get_liquidity_score("GOOGL") == 70.0


@pytest.mark.asyncio
async def test_concurrent_saves_keep_one_row(snapshot_store):
    """Two saves for the same (portfolio, date) leave a single entry."""
    day = dt.date(2024, 1, 4)
    first = RiskMetrics.neutral("p1", day)
    second = first.model_copy(update={"var95": 100.0})

    await asyncio.gather(
        snapshot_store.save_risk_metrics(first),
        snapshot_store.save_risk_metrics(second),
    )

    assert list(snapshot_store.risk_metrics) == [("p1", day)]
    assert snapshot_store.risk_metrics[("p1", day)] in (first, second)
