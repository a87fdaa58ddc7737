"""
Efficient Frontier Module

Traces minimum-risk portfolios for target returns linearly spaced between the
MIN_RISK portfolio's return and the MAX_RETURN portfolio's return.
"""

import numpy as np
import structlog
from typing import List, Optional

from ..models import EfficientFrontier, FrontierPoint
from .optimizer import AllocationOptimizer, Deadline

logger = structlog.get_logger(__name__)

MIN_FRONTIER_POINTS = 2
MAX_FRONTIER_POINTS = 50


def efficient_frontier(
    optimizer: AllocationOptimizer,
    point_count: int = 20,
    max_points: int = MAX_FRONTIER_POINTS,
    deadline: Optional[Deadline] = None,
) -> EfficientFrontier:
    """Compute up to *point_count* frontier points.

    Targets whose solve does not converge are skipped and counted. The
    returned points are ordered by target return with risk non-decreasing;
    a point that would break that order (solver noise) is dropped as well.
    On deadline expiry the points computed so far come back with
    partial=True.

    Raises:
        ValueError: point_count outside [2, max_points]
    """
    if not MIN_FRONTIER_POINTS <= point_count <= max_points:
        raise ValueError(
            f"point_count must be between {MIN_FRONTIER_POINTS} and {max_points}, got {point_count}"
        )

    min_res = optimizer.min_risk()
    max_res = optimizer.max_return()
    ret_lo, _, _ = optimizer.portfolio_stats(min_res.weights)
    ret_hi, _, _ = optimizer.portfolio_stats(max_res.weights)

    if ret_hi < ret_lo:
        ret_hi = ret_lo

    targets = np.linspace(ret_lo, ret_hi, point_count)

    points: List[FrontierPoint] = []
    skipped = 0
    partial = False

    for i, target in enumerate(targets):
        if deadline is not None and deadline.expired():
            partial = True
            logger.warning(
                "efficient_frontier: deadline reached, returning partial frontier",
                computed=len(points),
                requested=point_count,
            )
            break

        if i == 0:
            result = min_res
        else:
            result = optimizer.efficient_portfolio(float(target))
            if not result.converged and i == point_count - 1 and max_res.converged:
                result = max_res

        if not result.converged:
            skipped += 1
            continue

        ret, vol, sharpe = optimizer.portfolio_stats(result.weights)

        if points and vol < points[-1].risk - 1e-9:
            skipped += 1
            continue

        points.append(FrontierPoint(
            risk=vol,
            expected_return=ret,
            sharpe_ratio=sharpe,
            allocations={s: float(w) for s, w in zip(optimizer.symbols, result.weights)},
        ))

    logger.info(
        "efficient_frontier: complete",
        points=len(points),
        skipped=skipped,
        partial=partial,
    )

    return EfficientFrontier(points=points, partial=partial, skipped=skipped)
