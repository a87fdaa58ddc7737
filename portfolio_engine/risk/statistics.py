"""
Statistics Module

Pairwise correlation/covariance over date-aligned return series, historical
Value-at-Risk and Expected Shortfall, and beta/alpha regression against a
benchmark. Every numerical failure (too little overlap, zero variance,
NaN/inf) is converted here into a typed engine error.
"""

import math

import numpy as np
import structlog
from typing import Dict, List, Optional, Sequence

from ..errors import InsufficientDataError
from ..models import ReturnSeries, VaRResult
from .returns import align_pair

logger = structlog.get_logger(__name__)

MIN_PAIR_OBSERVATIONS = 2
MIN_VAR_OBSERVATIONS = 30
MIN_BETA_OBSERVATIONS = 30


# ---------------------------------------------------------------------------
# Correlation / covariance
# ---------------------------------------------------------------------------


def _aligned_or_raise(a: ReturnSeries, b: ReturnSeries):
    x, y = align_pair(a, b)
    if len(x) < MIN_PAIR_OBSERVATIONS:
        raise InsufficientDataError(
            f"Pair ({a.symbol}, {b.symbol}) has {len(x)} overlapping observations, "
            f"need {MIN_PAIR_OBSERVATIONS}",
            symbol_a=a.symbol,
            symbol_b=b.symbol,
            overlap=len(x),
        )
    return x, y


def pairwise_covariance(a: ReturnSeries, b: ReturnSeries) -> float:
    """Sample covariance (ddof=1) of two series over their common dates.

    Raises:
        InsufficientDataError: If fewer than 2 dates overlap
    """
    x, y = _aligned_or_raise(a, b)
    cov = float(np.cov(x, y, ddof=1)[0, 1])
    if not math.isfinite(cov):
        raise InsufficientDataError(
            f"Covariance of ({a.symbol}, {b.symbol}) is not finite",
            symbol_a=a.symbol,
            symbol_b=b.symbol,
        )
    return cov


def pairwise_correlation(a: ReturnSeries, b: ReturnSeries) -> float:
    """Pearson correlation of two series over their common dates.

    Raises:
        InsufficientDataError: If fewer than 2 dates overlap or either
            series is constant over the overlap (correlation undefined)
    """
    x, y = _aligned_or_raise(a, b)
    sx = np.std(x, ddof=1)
    sy = np.std(y, ddof=1)
    constant = np.ptp(x) == 0 or np.ptp(y) == 0
    if constant or not (math.isfinite(sx) and math.isfinite(sy)):
        raise InsufficientDataError(
            f"Correlation of ({a.symbol}, {b.symbol}) is undefined: zero variance",
            symbol_a=a.symbol,
            symbol_b=b.symbol,
            overlap=len(x),
        )
    corr = float(np.cov(x, y, ddof=1)[0, 1] / (sx * sy))
    return float(np.clip(corr, -1.0, 1.0))


def correlation_matrix(
    series_by_symbol: Dict[str, ReturnSeries],
    symbols: Optional[List[str]] = None,
) -> Dict[str, Dict[str, float]]:
    """Pairwise correlation matrix as a nested symbol map.

    Each off-diagonal entry uses the dates that pair has in common, so a gap
    in one series does not shrink every other pair's sample.

    Returns:
        {symbol_a: {symbol_b: corr}} with 1.0 on the diagonal
    """
    symbols = list(symbols) if symbols is not None else list(series_by_symbol)
    matrix: Dict[str, Dict[str, float]] = {s: {} for s in symbols}

    for i, sa in enumerate(symbols):
        matrix[sa][sa] = 1.0
        for sb in symbols[i + 1:]:
            corr = pairwise_correlation(series_by_symbol[sa], series_by_symbol[sb])
            matrix[sa][sb] = corr
            matrix[sb][sa] = corr

    if len(symbols) > 1:
        upper = [matrix[a][b] for i, a in enumerate(symbols) for b in symbols[i + 1:]]
        logger.info(
            "correlation_matrix: correlation computed",
            num_assets=len(symbols),
            avg_correlation=float(np.mean(upper)),
        )

    return matrix


# ---------------------------------------------------------------------------
# Historical VaR / Expected Shortfall
# ---------------------------------------------------------------------------


def _sorted_tail(
    returns: Sequence[float],
    confidence: float,
    horizon_days: int,
    portfolio_value: float,
    min_observations: int,
):
    if not 0 < confidence < 1:
        raise ValueError(f"Confidence must be between 0 and 1, got {confidence}")
    if horizon_days < 1:
        raise ValueError(f"Horizon must be >= 1, got {horizon_days}")
    if portfolio_value < 0:
        raise ValueError(f"Portfolio value must be non-negative, got {portfolio_value}")

    arr = np.asarray(returns, dtype=float).flatten()
    arr = arr[np.isfinite(arr)]
    n = len(arr)

    if n < min_observations:
        raise InsufficientDataError(
            f"Need at least {min_observations} return observations for VaR, got {n}",
            observations=n,
            required=min_observations,
        )

    sorted_returns = np.sort(arr)
    index = int(math.floor((1 - confidence) * n))
    index = min(index, n - 1)
    return sorted_returns, index, n


def historical_var(
    returns: Sequence[float],
    confidence: float = 0.95,
    horizon_days: int = 1,
    portfolio_value: float = 1.0,
    min_observations: int = MIN_VAR_OBSERVATIONS,
) -> float:
    """Historical-simulation Value-at-Risk.

    index = floor((1 - confidence) * n) into the ascending-sorted daily
    returns; VaR = loss at that quantile * portfolio_value * sqrt(horizon).
    A quantile return that is a gain reports a VaR of zero.

    Args:
        returns: Realized daily portfolio returns as decimals
        confidence: Confidence level (e.g. 0.95)
        horizon_days: Holding period in days (square-root-of-time scaling)
        portfolio_value: Current portfolio value

    Returns:
        VaR as a positive loss amount

    Raises:
        InsufficientDataError: If fewer than *min_observations* returns
    """
    sorted_returns, index, _ = _sorted_tail(
        returns, confidence, horizon_days, portfolio_value, min_observations
    )
    loss = max(-float(sorted_returns[index]), 0.0)
    return loss * portfolio_value * math.sqrt(horizon_days)


def expected_shortfall(
    returns: Sequence[float],
    confidence: float = 0.95,
    horizon_days: int = 1,
    portfolio_value: float = 1.0,
    min_observations: int = MIN_VAR_OBSERVATIONS,
) -> float:
    """Historical Expected Shortfall (CVaR).

    Mean of the tail sorted_returns[0..index] (inclusive), scaled like VaR.
    The tail mean never exceeds the quantile return, so ES >= VaR.
    """
    sorted_returns, index, _ = _sorted_tail(
        returns, confidence, horizon_days, portfolio_value, min_observations
    )
    tail_mean = float(np.mean(sorted_returns[: index + 1]))
    return max(-tail_mean, 0.0) * portfolio_value * math.sqrt(horizon_days)


def historical_var_es(
    returns: Sequence[float],
    confidence: float = 0.95,
    horizon_days: int = 1,
    portfolio_value: float = 1.0,
    min_observations: int = MIN_VAR_OBSERVATIONS,
) -> VaRResult:
    """VaR and Expected Shortfall from a single sort."""
    sorted_returns, index, n = _sorted_tail(
        returns, confidence, horizon_days, portfolio_value, min_observations
    )
    scale = portfolio_value * math.sqrt(horizon_days)
    var = max(-float(sorted_returns[index]), 0.0) * scale
    es = max(-float(np.mean(sorted_returns[: index + 1])), 0.0) * scale

    return VaRResult(
        var=var,
        expected_shortfall=es,
        confidence=confidence,
        horizon_days=horizon_days,
        observations=n,
    )


# ---------------------------------------------------------------------------
# Beta / alpha
# ---------------------------------------------------------------------------


def _neutral_beta(overlap: int, reason: str) -> Dict:
    return {
        "beta": 1.0,
        "alpha": 0.0,
        "r2": 0.0,
        "overlap": overlap,
        "fallback": True,
        "reason": reason,
    }


def beta_alpha(
    portfolio: ReturnSeries,
    benchmark: ReturnSeries,
    min_observations: int = MIN_BETA_OBSERVATIONS,
) -> Dict:
    """OLS regression of portfolio daily returns on benchmark daily returns.

    beta = cov(p, m) / var(m); alpha = mean(p) - beta * mean(m) (daily,
    decimal). Unlike VaR, this never raises for thin data: with fewer than
    *min_observations* aligned dates, or a constant benchmark, it returns the
    neutral fallback beta=1, alpha=0 with ``fallback=True``.

    Returns:
        Dict with beta, alpha, r2, overlap, fallback, reason
    """
    p, m = align_pair(portfolio, benchmark)
    overlap = len(p)

    if overlap < max(min_observations, MIN_PAIR_OBSERVATIONS):
        logger.info(
            "beta_alpha: insufficient aligned data, using neutral beta",
            overlap=overlap,
            required=min_observations,
        )
        return _neutral_beta(overlap, "insufficient_data")

    var_m = float(np.var(m, ddof=1))
    if np.ptp(m) == 0 or var_m == 0 or not math.isfinite(var_m):
        logger.info("beta_alpha: zero benchmark variance, using neutral beta")
        return _neutral_beta(overlap, "zero_benchmark_variance")

    cov_pm = float(np.cov(p, m, ddof=1)[0, 1])
    beta = cov_pm / var_m
    alpha = float(np.mean(p)) - beta * float(np.mean(m))

    var_p = float(np.var(p, ddof=1))
    r2 = (cov_pm ** 2) / (var_p * var_m) if var_p > 0 else 0.0

    if not (math.isfinite(beta) and math.isfinite(alpha)):
        return _neutral_beta(overlap, "non_finite")

    return {
        "beta": float(beta),
        "alpha": float(alpha),
        "r2": float(min(max(r2, 0.0), 1.0)),
        "overlap": overlap,
        "fallback": False,
        "reason": None,
    }
