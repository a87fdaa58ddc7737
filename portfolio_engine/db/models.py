"""Database tables read and written by the SQL-backed portfolio store.

Holdings, prices and return history are owned by the surrounding application
and only read here. Risk and optimization results are written as one row per
(portfolio_id, date); map-valued fields are stored as JSON text.
"""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    text,
)

engine_metadata = MetaData()

# ---------------------------------------------------------------------------
# Inputs (read-only for the engine)
# ---------------------------------------------------------------------------

portfolios = Table(
    "portfolios",
    engine_metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=True),
)

portfolio_holdings = Table(
    "portfolio_holdings",
    engine_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("portfolio_id", String, nullable=False, index=True),
    Column("symbol", String, nullable=False),
    Column("quantity", Float, nullable=False),
    Column("average_cost", Float, nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=True),
)

prices_daily = Table(
    "prices_daily",
    engine_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("symbol", String, nullable=False),
    Column("date", Date, nullable=False),
    Column("close", Float, nullable=False),
    UniqueConstraint("symbol", "date", name="uq_prices_daily_symbol_date"),
)

returns_daily = Table(
    "returns_daily",
    engine_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("symbol", String, nullable=False),
    Column("date", Date, nullable=False),
    Column("daily_return", Float, nullable=False),  # percent
    UniqueConstraint("symbol", "date", name="uq_returns_daily_symbol_date"),
)

portfolio_performance = Table(
    "portfolio_performance",
    engine_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("portfolio_id", String, nullable=False),
    Column("date", Date, nullable=False),
    Column("total_value", Float, nullable=False),
    Column("daily_return", Float, nullable=True),  # percent
    UniqueConstraint("portfolio_id", "date", name="uq_portfolio_performance_key"),
)

# ---------------------------------------------------------------------------
# Engine results
# ---------------------------------------------------------------------------

portfolio_risk_metrics = Table(
    "portfolio_risk_metrics",
    engine_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("portfolio_id", String, nullable=False),
    Column("date", Date, nullable=False),
    Column("var_95", Float, nullable=False),
    Column("var_99", Float, nullable=False),
    Column("expected_shortfall", Float, nullable=False),
    Column("beta", Float, nullable=False),
    Column("alpha", Float, nullable=False),
    Column("correlation_matrix", Text, nullable=False),
    Column("sector_allocation", Text, nullable=False),
    Column("concentration_risk", Float, nullable=False),
    Column("liquidity_risk", Float, nullable=False),
    Column("breakdown", Text, nullable=True),
    Column("recommendations", Text, nullable=True),
    Column(
        "created_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    ),
    UniqueConstraint("portfolio_id", "date", name="uq_portfolio_risk_metrics_key"),
)

portfolio_optimizations = Table(
    "portfolio_optimizations",
    engine_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("portfolio_id", String, nullable=False),
    Column("date", Date, nullable=False),
    Column("objective_type", String, nullable=False),
    Column("risk_tolerance", String, nullable=False),
    Column("time_horizon", String, nullable=False, server_default=text("'MEDIUM'")),
    Column("expected_return", Float, nullable=False),
    Column("expected_risk", Float, nullable=False),
    Column("sharpe_ratio", Float, nullable=False),
    Column("allocations", Text, nullable=False),
    Column("metrics", Text, nullable=False),
    Column("converged", Boolean, nullable=False, server_default=text("true")),
    Column("partial", Boolean, nullable=False, server_default=text("false")),
    Column(
        "created_at",
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    ),
    UniqueConstraint("portfolio_id", "date", name="uq_portfolio_optimizations_key"),
)
