"""Tests for portfolio_engine.db store logic.

These tests verify parameter construction, SQL statement selection and row
mapping without requiring a live PostgreSQL connection.
"""

import datetime as dt
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import UniqueConstraint

from portfolio_engine.db import engine as db_engine
from portfolio_engine.db import models as db_models
from portfolio_engine.db import store as db
from portfolio_engine.errors import PortfolioNotFoundError
from portfolio_engine.models import (
    AllocationWeight,
    ObjectiveType,
    OptimizationMetrics,
    OptimizationObjective,
    OptimizedPortfolio,
    RiskMetrics,
)

TODAY = dt.date(2024, 1, 2)


def _make_metrics(**overrides) -> RiskMetrics:
    """Helper to build RiskMetrics with sensible defaults."""
    defaults = {
        "portfolio_id": "p1",
        "date": TODAY,
        "var95": 1500.0,
        "var99": 2400.0,
        "expected_shortfall": 2000.0,
        "beta": 1.1,
        "alpha": 0.0002,
        "correlation_matrix": {
            "AAPL": {"AAPL": 1.0, "GOOGL": 0.8},
            "GOOGL": {"AAPL": 0.8, "GOOGL": 1.0},
        },
        "sector_allocation": {"Technology": 100.0},
        "concentration_risk": 64.9,
        "liquidity_risk": 8.9,
        "recommendations": ["Diversify."],
    }
    defaults.update(overrides)
    return RiskMetrics(**defaults)


def _make_optimization() -> OptimizedPortfolio:
    return OptimizedPortfolio(
        portfolio_id="p1",
        date=TODAY,
        objective=OptimizationObjective(type=ObjectiveType.MAX_SHARPE),
        allocations=[
            AllocationWeight(symbol="AAPL", weight=0.4),
            AllocationWeight(symbol="GOOGL", weight=0.6),
        ],
        expected_return=0.12,
        expected_risk=0.2,
        sharpe_ratio=0.5,
        metrics=OptimizationMetrics(diversification_ratio=1.1, concentration_index=52.0),
    )


def _mock_engine(mock_conn, method="begin"):
    mock_engine = MagicMock()
    ctx = getattr(mock_engine, method).return_value
    ctx.__aenter__ = AsyncMock(return_value=mock_conn)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return mock_engine


def _rows(rows):
    result = MagicMock()
    result.mappings.return_value.all.return_value = rows
    return result


def _exists(found=True):
    result = MagicMock()
    result.first.return_value = ("p1",) if found else None
    return result


# ---------------------------------------------------------------------------
# Statements and params
# ---------------------------------------------------------------------------


def test_risk_metrics_upsert_conflict_clause():
    """Saving twice for the same day replaces the row."""
    sql_text = str(db._UPSERT_RISK_METRICS.text)
    assert "ON CONFLICT (portfolio_id, date)" in sql_text
    assert "DO UPDATE SET" in sql_text


def test_optimization_upsert_conflict_clause():
    sql_text = str(db._UPSERT_OPTIMIZATION.text)
    assert "ON CONFLICT (portfolio_id, date)" in sql_text


def test_risk_metrics_params_encode_maps_as_json():
    params = db.risk_metrics_params(_make_metrics())

    assert params["portfolio_id"] == "p1"
    assert params["date"] == TODAY
    assert params["var_95"] == 1500.0
    assert params["var_99"] == 2400.0
    assert json.loads(params["correlation_matrix"])["AAPL"]["GOOGL"] == 0.8
    assert json.loads(params["sector_allocation"]) == {"Technology": 100.0}
    assert json.loads(params["recommendations"]) == ["Diversify."]
    assert json.loads(params["breakdown"])["systematic_risk"] == 0.0


def test_optimization_params():
    params = db.optimization_params(_make_optimization())

    assert params["objective_type"] == "MAX_SHARPE"
    assert params["risk_tolerance"] == "MODERATE"
    assert params["time_horizon"] == "MEDIUM"
    assert json.loads(params["allocations"]) == [
        {"symbol": "AAPL", "weight": 0.4},
        {"symbol": "GOOGL", "weight": 0.6},
    ]
    assert params["converged"] is True


def test_result_tables_keyed_by_portfolio_and_date():
    for table in (db_models.portfolio_risk_metrics, db_models.portfolio_optimizations):
        unique = [
            tuple(c.name for c in constraint.columns)
            for constraint in table.constraints
            if isinstance(constraint, UniqueConstraint)
        ]
        assert ("portfolio_id", "date") in unique


@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgresql://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("postgres://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
        ("postgresql+asyncpg://u:p@h/db", "postgresql+asyncpg://u:p@h/db"),
    ],
)
def test_make_async_url(url, expected):
    assert db_engine._make_async_url(url) == expected


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_save_risk_metrics_executes_upsert():
    metrics = _make_metrics()
    mock_conn = AsyncMock()
    mock_engine = _mock_engine(mock_conn)
    store = db.SqlPortfolioStore()

    with patch.object(store, "_get_engine", return_value=mock_engine):
        await store.save_risk_metrics(metrics)

    assert mock_conn.execute.call_count == 1
    call_args = mock_conn.execute.call_args_list[0]
    assert call_args[0][0] is db._UPSERT_RISK_METRICS
    assert call_args[0][1] == db.risk_metrics_params(metrics)


@pytest.mark.asyncio
async def test_save_optimization_executes_upsert():
    mock_conn = AsyncMock()
    store = db.SqlPortfolioStore(engine=_mock_engine(mock_conn))

    await store.save_optimization_result(_make_optimization())

    assert mock_conn.execute.call_args_list[0][0][0] is db._UPSERT_OPTIMIZATION


@pytest.mark.asyncio
async def test_save_failure_propagates():
    mock_conn = AsyncMock()
    mock_conn.execute.side_effect = RuntimeError("connection lost")
    store = db.SqlPortfolioStore(engine=_mock_engine(mock_conn))

    with pytest.raises(RuntimeError, match="connection lost"):
        await store.save_risk_metrics(_make_metrics())


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_get_holdings_maps_rows():
    mock_conn = AsyncMock()
    mock_conn.execute.side_effect = [
        _exists(),
        _rows([
            {"symbol": "AAPL", "quantity": 100, "average_cost": 140},
            {"symbol": "GOOGL", "quantity": 25, "average_cost": 2000},
        ]),
    ]
    store = db.SqlPortfolioStore(engine=_mock_engine(mock_conn, "connect"))

    holdings = await store.get_holdings("p1")

    assert [h.symbol for h in holdings] == ["AAPL", "GOOGL"]
    assert holdings[0].quantity == 100.0
    assert mock_conn.execute.call_args_list[1][0][0] is db._SELECT_HOLDINGS


@pytest.mark.asyncio
async def test_get_holdings_unknown_portfolio():
    mock_conn = AsyncMock()
    mock_conn.execute.side_effect = [_exists(found=False)]
    store = db.SqlPortfolioStore(engine=_mock_engine(mock_conn, "connect"))

    with pytest.raises(PortfolioNotFoundError):
        await store.get_holdings("nope")


@pytest.mark.asyncio
async def test_get_historical_returns_ascending():
    """Rows come back newest first and are reversed into an ascending series."""
    mock_conn = AsyncMock()
    mock_conn.execute.side_effect = [
        _exists(),
        _rows([
            {"date": dt.date(2024, 1, 3), "daily_return": 0.5},
            {"date": dt.date(2024, 1, 2), "daily_return": -1.0},
        ]),
    ]
    store = db.SqlPortfolioStore(engine=_mock_engine(mock_conn, "connect"))

    series = await store.get_historical_returns("p1", 252)

    assert [p.date for p in series.points] == [dt.date(2024, 1, 2), dt.date(2024, 1, 3)]
    assert series.points[0].daily_return_percent == -1.0


@pytest.mark.asyncio
async def test_get_symbol_returns_groups_by_symbol():
    mock_conn = AsyncMock()
    mock_conn.execute.side_effect = [
        _rows([
            {"symbol": "AAPL", "date": dt.date(2024, 1, 2), "daily_return": 1.0},
            {"symbol": "AAPL", "date": dt.date(2024, 1, 3), "daily_return": 2.0},
            {"symbol": "GOOGL", "date": dt.date(2024, 1, 2), "daily_return": -1.0},
        ]),
    ]
    store = db.SqlPortfolioStore(engine=_mock_engine(mock_conn, "connect"))

    series = await store.get_symbol_returns(["AAPL", "GOOGL", "MSFT"], 252)

    assert len(series["AAPL"]) == 2
    assert len(series["GOOGL"]) == 1
    assert len(series["MSFT"]) == 0


@pytest.mark.asyncio
async def test_get_current_prices_empty_symbols_skips_query():
    mock_conn = AsyncMock()
    store = db.SqlPortfolioStore(engine=_mock_engine(mock_conn, "connect"))

    assert await store.get_current_prices([]) == {}
    mock_conn.execute.assert_not_called()
