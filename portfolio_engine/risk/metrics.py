"""
Risk Metrics Module

Position weights, concentration (HHI), liquidity and sector exposure,
portfolio volatility and risk contributions, the systematic/unsystematic
breakdown and the rule table of risk recommendations. Pure computation
functions; holdings and prices come in already fetched.
"""

import numpy as np
import structlog
from typing import Dict, List, Mapping, Optional, Sequence

from ..models import Holding, RiskBreakdown

logger = structlog.get_logger(__name__)

OTHER_SECTOR = "Other"

# Recommendation thresholds (percent unless noted)
CONCENTRATION_THRESHOLD = 25.0
LIQUIDITY_THRESHOLD = 30.0
SECTOR_THRESHOLD = 40.0
BETA_THRESHOLD = 1.5          # ratio
VAR_THRESHOLD_PCT = 15.0      # VaR95 as % of portfolio value

HEALTHY_MESSAGE = "Portfolio risk profile is healthy; no action required."


# ---------------------------------------------------------------------------
# Valuation and weights
# ---------------------------------------------------------------------------


def position_values(
    holdings: Sequence[Holding],
    prices: Optional[Mapping[str, float]] = None,
) -> Dict[str, float]:
    """Market value per symbol.

    A symbol without a current price is valued at its average cost.
    Repeated symbols are summed.
    """
    prices = prices or {}
    values: Dict[str, float] = {}
    for holding in holdings:
        value = holding.market_value(prices.get(holding.symbol))
        values[holding.symbol] = values.get(holding.symbol, 0.0) + value
    return values


def position_weights(values: Mapping[str, float]) -> Dict[str, float]:
    """Weights as market_value / total_value; empty when the total is zero."""
    total = float(sum(values.values()))
    if total == 0:
        return {}
    return {symbol: float(v / total) for symbol, v in values.items()}


# ---------------------------------------------------------------------------
# Concentration, liquidity, sectors
# ---------------------------------------------------------------------------


def concentration_risk(weights: Sequence[float]) -> float:
    """Herfindahl index of *weights* scaled to 0-100.

    Weights are normalized by their absolute sum first, so dollar amounts
    work as well as fractions. Empty or all-zero input gives 0; a single
    position gives 100.
    """
    w = np.abs(np.asarray(list(weights), dtype=float).flatten())
    gross = float(np.sum(w))
    if w.size == 0 or gross == 0:
        return 0.0

    hhi = float(np.sum((w / gross) ** 2) * 100)
    return float(min(max(hhi, 0.0), 100.0))


def liquidity_risk(
    weights: Mapping[str, float],
    liquidity_scores: Mapping[str, float],
    default_risk: float = 50.0,
    default_score: float = 80.0,
) -> float:
    """100 minus the weight-averaged liquidity score (0-100, higher = riskier).

    Symbols missing from *liquidity_scores* use *default_score*. With no
    positive weight at all the neutral *default_risk* is returned.
    """
    total_weight = float(sum(w for w in weights.values() if w > 0))
    if total_weight <= 0:
        return float(default_risk)

    weighted_score = sum(
        w * float(liquidity_scores.get(symbol, default_score))
        for symbol, w in weights.items()
        if w > 0
    )
    risk = 100.0 - weighted_score / total_weight
    return float(min(max(risk, 0.0), 100.0))


def sector_allocation(
    values: Mapping[str, float],
    sectors: Mapping[str, str],
) -> Dict[str, float]:
    """Market value grouped by sector, as percent of total value.

    Symbols with no (or an empty) sector are grouped under "Other".
    """
    total = float(sum(values.values()))
    if total == 0:
        return {}

    allocation: Dict[str, float] = {}
    for symbol, value in values.items():
        sector = sectors.get(symbol) or OTHER_SECTOR
        allocation[sector] = allocation.get(sector, 0.0) + value / total * 100

    return allocation


# ---------------------------------------------------------------------------
# Volatility and risk contributions
# ---------------------------------------------------------------------------


def portfolio_volatility(weights: np.ndarray, cov: np.ndarray) -> float:
    """sqrt(w' * Sigma * w), in the units of *cov*."""
    weights = np.asarray(weights, dtype=float).flatten()

    if weights.shape[0] != cov.shape[0]:
        raise ValueError(
            f"Weights dimension {weights.shape[0]} doesn't match covariance {cov.shape[0]}"
        )

    portfolio_var = float(weights @ cov @ weights)
    if portfolio_var < -1e-10:
        raise ValueError(
            f"Negative portfolio variance ({portfolio_var:.6e}). "
            "Covariance matrix is not positive semi-definite."
        )
    return float(np.sqrt(max(portfolio_var, 0.0)))


def risk_contributions(weights: np.ndarray, cov: np.ndarray) -> np.ndarray:
    """Normalized variance contributions w_i * (Sigma w)_i / (w' Sigma w).

    Sums to 1; all zeros when the portfolio variance is zero.
    """
    weights = np.asarray(weights, dtype=float).flatten()
    marginal = cov @ weights
    total = float(weights @ marginal)
    if total <= 0:
        return np.zeros_like(weights)
    return weights * marginal / total


def diversification_ratio(weights: np.ndarray, cov: np.ndarray) -> float:
    """Weighted average asset volatility over portfolio volatility (>= 1 for long-only)."""
    weights = np.asarray(weights, dtype=float).flatten()
    port_vol = portfolio_volatility(weights, cov)
    if port_vol == 0:
        return 0.0
    asset_vols = np.sqrt(np.clip(np.diag(cov), 0.0, None))
    return float(weights @ asset_vols / port_vol)


# ---------------------------------------------------------------------------
# Breakdown and recommendations
# ---------------------------------------------------------------------------


def risk_breakdown(
    r_squared: float,
    concentration: float,
    liquidity: float,
) -> RiskBreakdown:
    """Split risk into the part explained by the benchmark and the rest.

    systematic = R^2 * 100 of the portfolio regressed on the benchmark.
    """
    systematic = float(min(max(r_squared, 0.0), 1.0) * 100)
    return RiskBreakdown(
        systematic_risk=systematic,
        unsystematic_risk=100.0 - systematic,
        concentration_risk=concentration,
        liquidity_risk=liquidity,
    )


def generate_recommendations(
    concentration: float,
    liquidity: float,
    sectors: Mapping[str, float],
    beta: float,
    var95: float,
    portfolio_value: float,
) -> List[str]:
    """Evaluate the rule table in order and return every matching message.

    Args:
        concentration: Concentration risk (0-100)
        liquidity: Liquidity risk (0-100)
        sectors: Sector allocation in percent
        beta: Portfolio beta against the benchmark
        var95: 1-day 95% VaR in currency units
        portfolio_value: Total portfolio value

    Returns:
        Ordered list of messages; a single healthy message if nothing fires
    """
    recommendations: List[str] = []

    if concentration > CONCENTRATION_THRESHOLD:
        recommendations.append(
            f"Concentration risk is high ({concentration:.1f}). "
            "Diversify holdings to reduce single-position exposure."
        )

    if liquidity > LIQUIDITY_THRESHOLD:
        recommendations.append(
            f"Liquidity risk is elevated ({liquidity:.1f}). "
            "Favor more liquid instruments."
        )

    if sectors:
        top_sector, top_pct = max(sectors.items(), key=lambda kv: kv[1])
        if top_pct > SECTOR_THRESHOLD:
            recommendations.append(
                f"Sector {top_sector} is {top_pct:.1f}% of the portfolio. "
                "Diversify across sectors."
            )

    if beta > BETA_THRESHOLD:
        recommendations.append(
            f"Portfolio beta is {beta:.2f}. "
            "Consider adding defensive positions to reduce market sensitivity."
        )

    if portfolio_value > 0:
        var_pct = var95 / portfolio_value * 100
        if var_pct > VAR_THRESHOLD_PCT:
            recommendations.append(
                f"95% VaR is {var_pct:.1f}% of portfolio value. "
                "Review position sizing."
            )

    if not recommendations:
        recommendations.append(HEALTHY_MESSAGE)

    return recommendations
