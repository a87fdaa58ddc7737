"""
Allocation Optimizer Module

Objective-driven long-only weight solver over annualized expected returns
and covariance. MIN_RISK and MAX_SHARPE are solved with scipy's SLSQP,
MAX_RETURN is the exact greedy linear-program solution (SLSQP when a risk
cap applies), EQUAL_WEIGHT is closed-form. Every returned weight vector sums
to 1 and lies inside the box bounds.
"""

import time

import numpy as np
import structlog
from dataclasses import dataclass
from scipy.optimize import minimize
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..errors import InfeasibleConstraintsError
from ..models import Constraints, ObjectiveType, RiskTolerance

logger = structlog.get_logger(__name__)

WEIGHT_TOLERANCE = 1e-6

PRESETS: Dict[RiskTolerance, Constraints] = {
    RiskTolerance.CONSERVATIVE: Constraints(
        min_weight=0.02, max_weight=0.25, max_risk=0.15, risk_free_rate=0.02
    ),
    RiskTolerance.MODERATE: Constraints(
        min_weight=0.01, max_weight=0.35, max_risk=0.25, risk_free_rate=0.02
    ),
    RiskTolerance.AGGRESSIVE: Constraints(
        min_weight=0.005, max_weight=0.50, max_risk=0.40, risk_free_rate=0.02
    ),
}


class Deadline:
    """Wall-clock budget for an optimization call.

    Also a cooperative cancellation token: ``cancel()`` makes ``expired()``
    true immediately. Long-running loops poll ``expired()`` between steps.
    """

    def __init__(self, seconds: Optional[float] = None):
        self._expires_at = time.monotonic() + seconds if seconds is not None else None
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def expired(self) -> bool:
        if self._cancelled:
            return True
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(self._expires_at - time.monotonic(), 0.0)


@dataclass
class SolverResult:
    """Raw solver output before it is wrapped into an OptimizedPortfolio."""

    weights: np.ndarray
    converged: bool
    iterations: int
    message: str = ""
    partial: bool = False


# ---------------------------------------------------------------------------
# Constraints
# ---------------------------------------------------------------------------


def preset_constraints(risk_tolerance: RiskTolerance, n_assets: int) -> Constraints:
    """Preset constraints for a risk tolerance, widened to fit *n_assets*.

    A preset that cannot sum to 1 for the asset count (e.g. max 0.25 with
    three assets) gets its max raised / min lowered to 1/n.
    """
    preset = PRESETS[risk_tolerance]
    if n_assets <= 0:
        return preset

    update = {}
    if preset.max_weight * n_assets < 1:
        update["max_weight"] = 1.0 / n_assets
    if preset.min_weight * n_assets > 1:
        update["min_weight"] = 1.0 / n_assets

    if update:
        logger.info(
            "preset_constraints: widened preset for asset count",
            risk_tolerance=risk_tolerance.value,
            n_assets=n_assets,
            **update,
        )
        return preset.model_copy(update=update)
    return preset


def sector_groups(
    symbols: Sequence[str],
    sectors: Mapping[str, str],
    sector_caps: Optional[Mapping[str, float]],
) -> List[Tuple[str, np.ndarray, float]]:
    """(sector, asset indices, cap as a decimal) for every capped sector held."""
    if not sector_caps:
        return []

    groups = []
    for sector, cap_pct in sector_caps.items():
        idx = np.array([i for i, s in enumerate(symbols) if sectors.get(s) == sector], dtype=int)
        if idx.size:
            groups.append((sector, idx, float(cap_pct) / 100.0))
    return groups


def check_feasibility(
    constraints: Constraints,
    symbols: Sequence[str],
    sectors: Optional[Mapping[str, str]] = None,
) -> None:
    """Raise InfeasibleConstraintsError unless some weight vector satisfies all constraints."""
    n = len(symbols)
    lo, hi = constraints.min_weight, constraints.max_weight

    if n == 0:
        raise InfeasibleConstraintsError("No assets to allocate")

    if lo < 0 or hi < 0:
        raise InfeasibleConstraintsError(
            f"Weight bounds must be non-negative, got [{lo}, {hi}]",
            min_weight=lo, max_weight=hi,
        )

    if lo > hi:
        raise InfeasibleConstraintsError(
            f"min_weight {lo} exceeds max_weight {hi}",
            min_weight=lo, max_weight=hi,
        )

    if lo * n > 1 + WEIGHT_TOLERANCE:
        raise InfeasibleConstraintsError(
            f"min_weight {lo} * {n} assets exceeds 1",
            min_weight=lo, n_assets=n,
        )

    if hi * n < 1 - WEIGHT_TOLERANCE:
        raise InfeasibleConstraintsError(
            f"max_weight {hi} * {n} assets is below 1",
            max_weight=hi, n_assets=n,
        )

    groups = sector_groups(symbols, sectors or {}, constraints.sector_caps)
    capped = np.zeros(n, dtype=bool)
    reachable = 0.0
    for sector, idx, cap in groups:
        if lo * len(idx) > cap + WEIGHT_TOLERANCE:
            raise InfeasibleConstraintsError(
                f"Sector {sector} cap {cap * 100:.1f}% cannot hold {len(idx)} assets "
                f"at min_weight {lo}",
                sector=sector, cap=cap, assets=len(idx),
            )
        capped[idx] = True
        reachable += min(cap, hi * len(idx))

    reachable += hi * int((~capped).sum())
    if reachable < 1 - WEIGHT_TOLERANCE:
        raise InfeasibleConstraintsError(
            f"Sector caps and max_weight allow at most {reachable:.4f} total weight",
            reachable=reachable,
        )


def project_to_bounds(
    weights: np.ndarray,
    lo: float,
    hi: float,
    total: float = 1.0,
    max_iter: int = 200,
) -> np.ndarray:
    """Project *weights* onto {sum(w) = total, lo <= w_i <= hi}.

    Finds the shift t with sum(clip(w + t, lo, hi)) = total by bisection;
    the sum is monotone in t so the search always brackets the answer.
    """
    w = np.asarray(weights, dtype=float).flatten()
    n = w.size
    if n == 0:
        return w

    if lo * n > total + WEIGHT_TOLERANCE or hi * n < total - WEIGHT_TOLERANCE:
        raise InfeasibleConstraintsError(
            f"Bounds [{lo}, {hi}] cannot sum to {total} over {n} assets",
            min_weight=lo, max_weight=hi, n_assets=n,
        )

    if not np.isfinite(w).all():
        w = np.full(n, total / n)

    a = lo - float(w.max())
    b = hi - float(w.min())
    for _ in range(max_iter):
        mid = (a + b) / 2
        if np.clip(w + mid, lo, hi).sum() < total:
            a = mid
        else:
            b = mid
        if b - a < 1e-15:
            break

    out = np.clip(w + (a + b) / 2, lo, hi)

    residual = total - out.sum()
    if residual > 0:
        room = hi - out
        if room.sum() > 0:
            out = out + residual * room / room.sum()
    elif residual < 0:
        room = out - lo
        if room.sum() > 0:
            out = out + residual * room / room.sum()

    return np.clip(out, lo, hi)


# ---------------------------------------------------------------------------
# Optimizer
# ---------------------------------------------------------------------------


class AllocationOptimizer:
    """Mean-variance weight solver for one asset universe.

    Holds no state between calls beyond its inputs.

    Args:
        symbols: Asset order for all vectors
        expected_returns: Annualized expected returns (N,)
        cov: Annualized covariance matrix (N x N)
        constraints: Box, risk and sector constraints
        sectors: symbol -> sector, needed only for sector caps
        max_iterations: SLSQP iteration cap per solve
    """

    def __init__(
        self,
        symbols: Sequence[str],
        expected_returns: np.ndarray,
        cov: np.ndarray,
        constraints: Constraints,
        sectors: Optional[Mapping[str, str]] = None,
        max_iterations: int = 500,
    ):
        self.symbols = list(symbols)
        self.n_assets = len(self.symbols)
        self.mu = np.asarray(expected_returns, dtype=float).flatten()
        self.cov = np.asarray(cov, dtype=float)
        self.constraints = constraints
        self.sectors = dict(sectors or {})
        self.max_iterations = max_iterations

        if self.mu.shape[0] != self.n_assets:
            raise ValueError(
                f"Expected returns length {self.mu.shape[0]} doesn't match {self.n_assets} symbols"
            )
        if self.cov.shape != (self.n_assets, self.n_assets):
            raise ValueError(
                f"Covariance shape {self.cov.shape} doesn't match {self.n_assets} symbols"
            )

        check_feasibility(constraints, self.symbols, self.sectors)
        self._groups = sector_groups(self.symbols, self.sectors, constraints.sector_caps)

    # -- statistics ---------------------------------------------------------

    def portfolio_stats(self, weights: np.ndarray) -> Tuple[float, float, float]:
        """(expected return, volatility, Sharpe) for *weights*; Sharpe is 0 at zero risk."""
        weights = np.asarray(weights, dtype=float)
        ret = float(self.mu @ weights)
        vol = float(np.sqrt(max(weights @ self.cov @ weights, 0.0)))
        sharpe = (ret - self.constraints.risk_free_rate) / vol if vol > 0 else 0.0
        return ret, vol, float(sharpe)

    def is_feasible(self, weights: np.ndarray, tol: float = WEIGHT_TOLERANCE) -> bool:
        w = np.asarray(weights, dtype=float)
        c = self.constraints
        if abs(w.sum() - 1) > tol:
            return False
        if (w < c.min_weight - tol).any() or (w > c.max_weight + tol).any():
            return False
        for _, idx, cap in self._groups:
            if w[idx].sum() > cap + tol:
                return False
        if c.max_risk is not None:
            _, vol, _ = self.portfolio_stats(w)
            if vol > c.max_risk + tol:
                return False
        return True

    # -- helpers ------------------------------------------------------------

    def _project(self, weights: np.ndarray) -> np.ndarray:
        return project_to_bounds(weights, self.constraints.min_weight, self.constraints.max_weight)

    def _starting_point(self) -> np.ndarray:
        return self._project(np.full(self.n_assets, 1.0 / self.n_assets))

    def _linear_constraints(self, with_risk_cap: bool = False) -> List[Dict]:
        cons: List[Dict] = [
            {'type': 'eq', 'fun': lambda w: np.sum(w) - 1, 'jac': lambda w: np.ones_like(w)}
        ]

        for _, idx, cap in self._groups:
            mask = np.zeros(self.n_assets)
            mask[idx] = 1.0
            cons.append({
                'type': 'ineq',
                'fun': lambda w, mask=mask, cap=cap: cap - mask @ w,
                'jac': lambda w, mask=mask: -mask,
            })

        if with_risk_cap and self.constraints.max_risk is not None:
            max_var = self.constraints.max_risk ** 2
            cons.append({
                'type': 'ineq',
                'fun': lambda w: max_var - w @ self.cov @ w,
                'jac': lambda w: -2 * self.cov @ w,
            })

        return cons

    def _bounds(self):
        return tuple(
            (self.constraints.min_weight, self.constraints.max_weight)
            for _ in range(self.n_assets)
        )

    def _slsqp(self, objective, gradient, x0, extra_constraints: Optional[List[Dict]] = None,
               with_risk_cap: bool = False) -> SolverResult:
        cons = self._linear_constraints(with_risk_cap) + list(extra_constraints or [])
        result = minimize(
            objective,
            x0,
            jac=gradient,
            method='SLSQP',
            bounds=self._bounds(),
            constraints=cons,
            options={'maxiter': self.max_iterations, 'ftol': 1e-10},
        )

        weights = self._project(result.x)
        converged = bool(result.success) and self.is_feasible(weights, tol=1e-5)
        if not converged:
            logger.warning(
                "optimizer: SLSQP did not converge",
                message=str(result.message),
                iterations=int(result.get('nit', 0)),
            )

        return SolverResult(
            weights=weights,
            converged=converged,
            iterations=int(result.get('nit', 0)),
            message=str(result.message),
        )

    def require_attainable_risk(self) -> None:
        """Raise if even the minimum-risk portfolio breaks max_risk."""
        max_risk = self.constraints.max_risk
        if max_risk is None:
            return
        floor = self.min_risk()
        _, vol, _ = self.portfolio_stats(floor.weights)
        if vol > max_risk + WEIGHT_TOLERANCE:
            raise InfeasibleConstraintsError(
                f"max_risk {max_risk:.4f} is below the minimum attainable risk {vol:.4f}",
                max_risk=max_risk,
                min_attainable_risk=vol,
            )

    # -- objectives ---------------------------------------------------------

    def equal_weight(self) -> SolverResult:
        """1/n, clipped into the bounds and re-projected to sum to 1."""
        return SolverResult(weights=self._starting_point(), converged=True, iterations=0)

    def min_risk(self) -> SolverResult:
        """Minimize w' Sigma w."""
        if self.n_assets == 1:
            return SolverResult(weights=np.ones(1), converged=True, iterations=0)

        return self._slsqp(
            lambda w: w @ self.cov @ w,
            lambda w: 2 * self.cov @ w,
            self._starting_point(),
        )

    def _greedy_max_return(self) -> np.ndarray:
        c = self.constraints
        w = np.full(self.n_assets, c.min_weight)
        remaining = 1.0 - w.sum()

        sector_of = {}
        sector_room = {}
        for sector, idx, cap in self._groups:
            sector_room[sector] = cap - w[idx].sum()
            for i in idx:
                sector_of[int(i)] = sector

        # descending expected return, ties by symbol
        order = np.lexsort((np.array(self.symbols), -self.mu))
        for i in order:
            if remaining <= 0:
                break
            add = min(c.max_weight - w[i], remaining)
            sector = sector_of.get(int(i))
            if sector is not None:
                add = min(add, max(sector_room[sector], 0.0))
                sector_room[sector] -= add
            w[i] += add
            remaining -= add

        if remaining > WEIGHT_TOLERANCE:
            raise InfeasibleConstraintsError(
                f"Could not allocate {remaining:.6f} of weight under the constraints",
                unallocated=remaining,
            )
        return w

    def max_return(self) -> SolverResult:
        """Maximize w' mu.

        Without a risk cap this is a linear program whose optimum is the
        greedy fill: everything at min_weight, then top up to max_weight in
        order of descending expected return.
        """
        greedy = self._greedy_max_return()
        if self.constraints.max_risk is None or self.is_feasible(greedy):
            return SolverResult(weights=greedy, converged=True, iterations=0)

        self.require_attainable_risk()
        return self._slsqp(
            lambda w: -(self.mu @ w),
            lambda w: -self.mu,
            self.min_risk().weights,
            with_risk_cap=True,
        )

    def max_sharpe(self, deadline: Optional[Deadline] = None) -> SolverResult:
        """Maximize (w' mu - rf) / sqrt(w' Sigma w) from several starting points.

        Starts: equal weight, min-risk and max-return solutions. The best
        feasible iterate wins.
        """
        if self.n_assets == 1:
            return SolverResult(weights=np.ones(1), converged=True, iterations=0)

        self.require_attainable_risk()
        rf = self.constraints.risk_free_rate

        def neg_sharpe(w):
            vol = np.sqrt(max(w @ self.cov @ w, 1e-18))
            return -(self.mu @ w - rf) / vol

        def neg_sharpe_grad(w):
            var = max(w @ self.cov @ w, 1e-18)
            vol = np.sqrt(var)
            excess = self.mu @ w - rf
            return -(self.mu / vol - excess * (self.cov @ w) / (var * vol))

        starts = [self._starting_point(), self.min_risk().weights]
        try:
            starts.append(self.max_return().weights)
        except InfeasibleConstraintsError:
            pass

        best: Optional[SolverResult] = None
        best_sharpe = -np.inf
        iterations = 0
        partial = False

        for x0 in starts:
            if deadline is not None and deadline.expired() and best is not None:
                partial = True
                logger.warning("max_sharpe: deadline reached, keeping best start so far")
                break
            candidate = self._slsqp(neg_sharpe, neg_sharpe_grad, x0, with_risk_cap=True)
            iterations += candidate.iterations
            if not self.is_feasible(candidate.weights, tol=1e-5):
                continue
            _, _, sharpe = self.portfolio_stats(candidate.weights)
            if sharpe > best_sharpe:
                best, best_sharpe = candidate, sharpe

        if best is None:
            fallback = self.min_risk()
            return SolverResult(
                weights=fallback.weights,
                converged=False,
                iterations=iterations + fallback.iterations,
                message="no feasible Sharpe iterate; returning min-risk weights",
            )

        best.iterations = iterations
        best.partial = partial
        return best

    def efficient_portfolio(self, target_return: float) -> SolverResult:
        """Minimize w' Sigma w subject to w' mu = target_return."""
        target_con = {
            'type': 'eq',
            'fun': lambda w: self.mu @ w - target_return,
            'jac': lambda w: self.mu,
        }
        result = self._slsqp(
            lambda w: w @ self.cov @ w,
            lambda w: 2 * self.cov @ w,
            self._starting_point(),
            extra_constraints=[target_con],
        )
        ret, _, _ = self.portfolio_stats(result.weights)
        if abs(ret - target_return) > 1e-4 * max(1.0, abs(target_return)):
            result.converged = False
        return result

    def solve(self, objective: ObjectiveType, deadline: Optional[Deadline] = None) -> SolverResult:
        """Dispatch for every objective except RISK_PARITY (see risk_parity)."""
        if objective == ObjectiveType.EQUAL_WEIGHT:
            return self.equal_weight()
        elif objective == ObjectiveType.MIN_RISK:
            return self.min_risk()
        elif objective == ObjectiveType.MAX_RETURN:
            return self.max_return()
        elif objective == ObjectiveType.MAX_SHARPE:
            return self.max_sharpe(deadline)
        else:
            raise ValueError(f"Objective {objective} is not handled by AllocationOptimizer")
