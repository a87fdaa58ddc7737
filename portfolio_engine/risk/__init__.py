"""
Risk Analytics

Pure computation modules operating on return series, pandas DataFrames and
numpy arrays.

Modules:
- returns: Date alignment of return series, percent -> decimal conversion
- statistics: Correlation, historical VaR / ES, beta and alpha
- covariance: Covariance estimation (sample, Ledoit-Wolf, EWMA)
- metrics: Weights, concentration, liquidity, sectors, recommendations
- stress: Uniform shock stress scenarios
"""

# Returns module
from .returns import (
    to_series,
    align_pair,
    build_returns_frame,
)

# Statistics module
from .statistics import (
    pairwise_correlation,
    pairwise_covariance,
    correlation_matrix,
    historical_var,
    expected_shortfall,
    historical_var_es,
    beta_alpha,
)

# Covariance module
from .covariance import (
    sample_cov,
    ledoit_wolf_cov,
    ewma_cov,
    estimate_covariance,
    annualize_cov,
    annualize_mean,
)

# Metrics module
from .metrics import (
    position_values,
    position_weights,
    concentration_risk,
    liquidity_risk,
    sector_allocation,
    portfolio_volatility,
    risk_contributions,
    diversification_ratio,
    risk_breakdown,
    generate_recommendations,
)

# Stress testing module
from .stress import (
    stress_test,
    run_stress_tests,
    DEFAULT_SCENARIOS,
)

__all__ = [
    # Returns
    'to_series',
    'align_pair',
    'build_returns_frame',
    # Statistics
    'pairwise_correlation',
    'pairwise_covariance',
    'correlation_matrix',
    'historical_var',
    'expected_shortfall',
    'historical_var_es',
    'beta_alpha',
    # Covariance
    'sample_cov',
    'ledoit_wolf_cov',
    'ewma_cov',
    'estimate_covariance',
    'annualize_cov',
    'annualize_mean',
    # Metrics
    'position_values',
    'position_weights',
    'concentration_risk',
    'liquidity_risk',
    'sector_allocation',
    'portfolio_volatility',
    'risk_contributions',
    'diversification_ratio',
    'risk_breakdown',
    'generate_recommendations',
    # Stress testing
    'stress_test',
    'run_stress_tests',
    'DEFAULT_SCENARIOS',
]
