"""
Covariance Estimation Module

Covariance of date-aligned decimal returns for the optimizer: plain sample
covariance (the default), Ledoit-Wolf shrinkage and EWMA (RiskMetrics).
Every estimator returns a symmetric positive semi-definite matrix.
"""

import numpy as np
import pandas as pd
import structlog
from sklearn.covariance import LedoitWolf

from ..errors import InsufficientDataError

logger = structlog.get_logger(__name__)

COVARIANCE_METHODS = ("sample", "lw", "ewma")


def _validate_returns(returns: pd.DataFrame, caller: str) -> np.ndarray:
    if returns.empty or len(returns) < 2:
        raise InsufficientDataError(
            f"Need at least 2 aligned observations, got {len(returns)}",
            observations=len(returns),
        )

    returns_array = returns.values.astype(float)

    if not np.isfinite(returns_array).all():
        bad = ~np.isfinite(returns_array)
        affected_symbols = [
            returns.columns[i] for i, count in enumerate(bad.sum(axis=0)) if count > 0
        ]
        logger.error(f"{caller}: non-finite values in returns", affected_symbols=affected_symbols)
        raise InsufficientDataError(
            f"Non-finite returns for symbols: {affected_symbols}",
            symbols=affected_symbols,
        )

    return returns_array


def clamp_psd(cov: np.ndarray, caller: str = "clamp_psd") -> np.ndarray:
    """Symmetrize *cov* and clamp negative eigenvalues to zero."""
    cov = (cov + cov.T) / 2
    eigenvalues, eigvecs = np.linalg.eigh(cov)
    min_eigenvalue = float(np.min(eigenvalues))

    if min_eigenvalue < -1e-12:
        logger.warning(
            f"{caller}: non-PSD matrix, clamping negative eigenvalues",
            min_eigenvalue=min_eigenvalue,
        )
        cov = eigvecs @ np.diag(np.maximum(eigenvalues, 0)) @ eigvecs.T
        cov = (cov + cov.T) / 2

    return cov


def sample_cov(returns: pd.DataFrame) -> np.ndarray:
    """Sample covariance (ddof=1) of a T x N returns frame."""
    returns_array = _validate_returns(returns, "sample_cov")
    cov_matrix = np.atleast_2d(np.cov(returns_array.T, ddof=1))
    cov_matrix = clamp_psd(cov_matrix, "sample_cov")

    logger.debug(
        "sample_cov: covariance estimated",
        num_assets=cov_matrix.shape[0],
        num_observations=len(returns),
    )
    return cov_matrix


def ledoit_wolf_cov(returns: pd.DataFrame) -> np.ndarray:
    """Estimate covariance using Ledoit-Wolf shrinkage.

    sklearn picks the shrinkage intensity; handles T < N gracefully.

    Args:
        returns: DataFrame of returns (T x N)

    Returns:
        N x N covariance matrix
    """
    returns_array = _validate_returns(returns, "ledoit_wolf_cov")

    lw = LedoitWolf()
    try:
        cov_matrix = lw.fit(returns_array).covariance_
    except ValueError as e:
        logger.error("ledoit_wolf_cov: estimation failed", error=str(e), shape=returns_array.shape)
        raise

    cov_matrix = clamp_psd(cov_matrix, "ledoit_wolf_cov")

    logger.debug(
        "ledoit_wolf_cov: covariance estimated",
        num_assets=cov_matrix.shape[0],
        num_observations=len(returns),
        shrinkage=float(lw.shrinkage_),
    )
    return cov_matrix


def ewma_cov(returns: pd.DataFrame, lambd: float = 0.94) -> np.ndarray:
    """Estimate covariance using an exponentially weighted moving average.

    sigma_t = lambda * sigma_{t-1} + (1 - lambda) * r_t * r_t', seeded with
    the sample covariance of the first 10 observations.

    Args:
        returns: DataFrame of returns (T x N)
        lambd: Decay factor (0.94 is the RiskMetrics standard)

    Returns:
        N x N covariance matrix
    """
    if not 0 < lambd < 1:
        raise ValueError(f"Lambda must be between 0 and 1, got {lambd}")

    returns_array = _validate_returns(returns, "ewma_cov")
    T, N = returns_array.shape

    init_window = max(2, min(10, T))
    cov_matrix = np.atleast_2d(np.cov(returns_array[:init_window].T, ddof=1))

    for t in range(init_window, T):
        r_t = returns_array[t].reshape(-1, 1)
        cov_matrix = lambd * cov_matrix + (1 - lambd) * (r_t @ r_t.T)

    cov_matrix = clamp_psd(cov_matrix, "ewma_cov")

    logger.debug(
        "ewma_cov: covariance estimated",
        num_assets=N,
        num_observations=T,
        lambda_param=lambd,
    )
    return cov_matrix


def estimate_covariance(
    returns: pd.DataFrame,
    method: str = "sample",
    ewma_lambda: float = 0.94,
) -> np.ndarray:
    """Dispatch to one of the covariance estimators.

    Args:
        returns: DataFrame of decimal returns (T x N)
        method: 'sample', 'lw' (Ledoit-Wolf) or 'ewma'
        ewma_lambda: Decay factor, only used by 'ewma'

    Raises:
        InsufficientDataError: Fewer than 2 observations or non-finite data
        ValueError: Unknown method
    """
    method = method.lower()

    if method == "sample":
        return sample_cov(returns)
    elif method == "lw":
        return ledoit_wolf_cov(returns)
    elif method == "ewma":
        return ewma_cov(returns, lambd=ewma_lambda)
    else:
        raise ValueError(
            f"Unknown covariance estimation method: {method}. Use one of {COVARIANCE_METHODS}"
        )


def annualize_cov(cov: np.ndarray, trading_days: int = 252) -> np.ndarray:
    """Annualize a daily covariance matrix (daily_cov * trading_days)."""
    if cov.size == 0:
        raise ValueError("Cannot annualize empty covariance matrix")

    if cov.ndim != 2 or cov.shape[0] != cov.shape[1]:
        raise ValueError(f"Covariance matrix must be square, got shape {cov.shape}")

    if trading_days <= 0:
        raise ValueError(f"Trading days must be positive, got {trading_days}")

    return cov * trading_days


def annualize_mean(returns: pd.DataFrame, trading_days: int = 252) -> np.ndarray:
    """Annualized expected returns: mean daily decimal return * trading_days."""
    if returns.empty:
        raise InsufficientDataError("Cannot estimate expected returns from empty frame")
    return returns.mean(axis=0).values.astype(float) * trading_days
