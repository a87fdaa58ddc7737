"""
Portfolio Risk & Optimization Engine

Risk metrics (historical VaR / ES, beta, correlations, concentration,
liquidity, sector exposure, stress tests) and target allocations
(mean-variance, risk parity, efficient frontier, rebalancing) for a
portfolio of holdings.
"""

__version__ = "0.1.0"
