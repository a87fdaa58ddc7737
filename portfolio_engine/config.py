"""Configuration for the risk engine loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine configuration.

    All fields are loaded from environment variables.  POSTGRES_URL is only
    needed by the SQL-backed store; the numerical tunables have defaults
    matching the dashboard's historical behavior.
    """

    POSTGRES_URL: str = ""
    DB_SSL: str = ""
    LOG_LEVEL: str = "INFO"

    BENCHMARK_ID: str = "SPY"
    RETURNS_LOOKBACK_DAYS: int = 252
    TRADING_DAYS: int = 252

    MIN_VAR_OBSERVATIONS: int = 30
    MIN_BETA_OBSERVATIONS: int = 30
    DEFAULT_LIQUIDITY_RISK: float = 50.0  # unvalidated neutral midpoint
    DEFAULT_LIQUIDITY_SCORE: float = 80.0
    RECOVERY_DAYS_PER_UNIT_SHOCK: float = 200.0  # linear heuristic, not calibrated

    COVARIANCE_METHOD: str = "sample"  # sample | lw | ewma
    EWMA_LAMBDA: float = 0.94
    RISK_PARITY_TOLERANCE: float = 1e-4
    RISK_PARITY_MAX_ITERATIONS: int = 200
    SOLVER_MAX_ITERATIONS: int = 500
    OPTIMIZATION_TIMEOUT_SECONDS: float = 10.0
    MAX_FRONTIER_POINTS: int = 50

    REBALANCE_TOLERANCE: float = 0.005
    TARGET_SUM_TOLERANCE: float = 0.01
    FLAT_TRADE_FEE: float = 10.0
    PROPORTIONAL_TRADE_FEE: float = 0.0015  # 0.1% commission + 0.05% impact

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
