"""
Pytest fixtures for engine tests.

Provides synthetic return data and in-memory stores for deterministic testing.
"""

import datetime as dt

import pytest
import numpy as np
import pandas as pd

from portfolio_engine.config import Settings
from portfolio_engine.data.memory import InMemoryPortfolioStore, StaticSymbolMetadata
from portfolio_engine.models import Holding, ReturnSeries

TODAY = dt.date(2024, 1, 2)


def make_series(symbol, values, start='2023-01-01'):
    """ReturnSeries of decimal *values* on consecutive business days (stored as percent)."""
    dates = pd.bdate_range(start, periods=len(values))
    return ReturnSeries.from_pairs(
        symbol, [(d.date(), float(v) * 100) for d, v in zip(dates, values)]
    )


@pytest.fixture
def sample_returns():
    """
    Generate sample daily returns for testing.

    Returns:
        DataFrame with 252 days of returns for 5 assets
    """
    np.random.seed(42)
    dates = pd.bdate_range('2023-01-01', periods=252)
    symbols = ['AAPL', 'GOOGL', 'MSFT', 'TSLA', 'AMZN']

    # Generate correlated returns
    n_days = len(dates)
    n_assets = len(symbols)

    data = np.random.normal(0.0005, 0.02, (n_days, n_assets))
    data[:, 1] = 0.7 * data[:, 0] + 0.3 * data[:, 1]  # GOOGL correlated with AAPL
    data[:, 2] = 0.5 * data[:, 0] + 0.5 * data[:, 2]  # MSFT correlated with AAPL

    return pd.DataFrame(data, index=dates, columns=symbols)


@pytest.fixture
def sample_series(sample_returns):
    """
    Per-symbol ReturnSeries built from sample_returns.

    Returns:
        Dict symbol -> ReturnSeries (percent values)
    """
    return {
        symbol: ReturnSeries.from_pairs(
            symbol,
            [(d.date(), float(v) * 100) for d, v in sample_returns[symbol].items()],
        )
        for symbol in sample_returns.columns
    }


@pytest.fixture
def sample_cov(sample_returns):
    """
    Annualized sample covariance of sample_returns.

    Returns:
        Covariance matrix (5x5)
    """
    return sample_returns.cov().values * 252


@pytest.fixture
def sample_mu(sample_returns):
    """Annualized mean returns of sample_returns."""
    return sample_returns.mean().values * 252


@pytest.fixture
def settings():
    """Default settings, isolated from any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def store(sample_returns, sample_series):
    """
    In-memory store with four portfolios.

    - "p1": 100 AAPL and 25 GOOGL with a full year of returns
    - "empty": no holdings
    - "thin": one holding and only 20 days of returns
    - "mixed": all five sample symbols, three of them Technology

    Returns:
        InMemoryPortfolioStore
    """
    weights = np.array([15000.0, 51000.0]) / 66000.0
    portfolio = sample_returns[['AAPL', 'GOOGL']].values @ weights
    benchmark = sample_returns.mean(axis=1).values

    return InMemoryPortfolioStore(
        holdings={
            "p1": [
                Holding(symbol="AAPL", quantity=100, average_cost=140.0),
                Holding(symbol="GOOGL", quantity=25, average_cost=2000.0),
            ],
            "empty": [],
            "thin": [Holding(symbol="MSFT", quantity=10, average_cost=300.0)],
            "mixed": [
                Holding(symbol=sym, quantity=10, average_cost=100.0)
                for sym in ["AAPL", "GOOGL", "MSFT", "TSLA", "AMZN"]
            ],
        },
        prices={"AAPL": 150.0, "GOOGL": 2040.0, "MSFT": 310.0, "TSLA": 250.0, "AMZN": 130.0},
        portfolio_returns={
            "p1": make_series("p1", portfolio),
            "thin": make_series("thin", portfolio[:20]),
        },
        symbol_returns=sample_series,
        benchmark_returns={"SPY": make_series("SPY", benchmark)},
    )


@pytest.fixture
def metadata():
    """Sector and liquidity metadata for the sample symbols."""
    return StaticSymbolMetadata(
        sectors={"AAPL": "Technology", "GOOGL": "Technology", "MSFT": "Technology"},
        liquidity_scores={"AAPL": 95.0, "GOOGL": 90.0},
    )
