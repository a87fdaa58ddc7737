"""
Risk Parity Module

Equal-risk-contribution weights by iterative proportional scaling:
w_i <- w_i * sqrt(target / rc_i), then projection back onto the box and the
budget. Stops when every normalized contribution is within tolerance of 1/n.
"""

from typing import List, Optional, Sequence

import numpy as np
import structlog

from ..errors import InsufficientDataError
from ..models import Constraints, RiskParityResult
from ..risk.metrics import diversification_ratio, portfolio_volatility, risk_contributions
from .optimizer import Deadline, check_feasibility, project_to_bounds

logger = structlog.get_logger(__name__)

DEFAULT_TOLERANCE = 1e-4
DEFAULT_MAX_ITERATIONS = 200


def _validate_cov(cov: np.ndarray, symbols: List[str]) -> np.ndarray:
    cov = np.asarray(cov, dtype=float)
    if cov.ndim != 2 or cov.shape[0] != cov.shape[1]:
        raise ValueError(f"Covariance matrix must be square, got shape {cov.shape}")
    if cov.shape[0] != len(symbols):
        raise ValueError(
            f"Covariance size {cov.shape[0]} doesn't match {len(symbols)} symbols"
        )
    if not np.isfinite(cov).all():
        raise InsufficientDataError("Covariance matrix contains non-finite values")

    variances = np.diag(cov)
    zero_var = [symbols[i] for i, v in enumerate(variances) if v <= 0]
    if zero_var:
        raise InsufficientDataError(
            f"Risk parity needs positive variance for every asset; zero for {zero_var}",
            symbols=zero_var,
        )
    return (cov + cov.T) / 2


def solve_risk_parity(
    cov: np.ndarray,
    symbols: Optional[Sequence[str]] = None,
    constraints: Optional[Constraints] = None,
    tolerance: float = DEFAULT_TOLERANCE,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    deadline: Optional[Deadline] = None,
) -> RiskParityResult:
    """Solve for equal risk contributions.

    Starts from inverse-volatility weights. When bounds make exact parity
    unreachable, or the iteration cap or deadline is hit first, the iterate
    with the smallest contribution spread is returned with converged=False.

    Args:
        cov: Covariance matrix (N x N), any consistent units
        symbols: Asset names; defaults to "asset_0".."asset_{N-1}"
        constraints: Only min_weight / max_weight are used
        tolerance: Max |rc_i - 1/n| accepted, on contributions normalized to sum 1
        max_iterations: Iteration cap
        deadline: Checked between iterations; expiry sets partial=True

    Returns:
        RiskParityResult with weights and normalized risk contributions
    """
    cov = np.asarray(cov, dtype=float)
    n = cov.shape[0] if cov.ndim == 2 else 0
    symbols = list(symbols) if symbols is not None else [f"asset_{i}" for i in range(n)]
    cov = _validate_cov(cov, symbols)

    constraints = constraints or Constraints()
    check_feasibility(constraints, symbols)
    lo, hi = constraints.min_weight, constraints.max_weight

    target = 1.0 / n
    inv_vol = 1.0 / np.sqrt(np.diag(cov))
    w = project_to_bounds(inv_vol / inv_vol.sum(), lo, hi)

    best_w = w
    best_dev = np.inf
    converged = False
    partial = False
    iterations = 0

    for iterations in range(1, max_iterations + 1):
        rc = risk_contributions(w, cov)
        dev = float(np.max(np.abs(rc - target)))

        if dev < best_dev:
            best_w, best_dev = w, dev

        if dev < tolerance:
            converged = True
            break

        if deadline is not None and deadline.expired():
            partial = True
            logger.warning(
                "solve_risk_parity: deadline reached, returning best iterate",
                iterations=iterations,
                max_deviation=best_dev,
            )
            break

        scale = np.sqrt(target / np.maximum(rc, 1e-12))
        w = w * scale
        w = project_to_bounds(w / w.sum(), lo, hi)

    if not converged and not partial:
        logger.warning(
            "solve_risk_parity: did not converge",
            iterations=iterations,
            max_deviation=best_dev,
            tolerance=tolerance,
        )

    rc = risk_contributions(best_w, cov)

    logger.info(
        "solve_risk_parity: complete",
        num_assets=n,
        converged=converged,
        iterations=iterations,
        max_deviation=best_dev,
    )

    return RiskParityResult(
        weights={s: float(x) for s, x in zip(symbols, best_w)},
        risk_contributions={s: float(x) for s, x in zip(symbols, rc)},
        converged=converged,
        iterations=iterations,
        partial=partial,
        total_risk=portfolio_volatility(best_w, cov),
        diversification_ratio=diversification_ratio(best_w, cov),
    )
