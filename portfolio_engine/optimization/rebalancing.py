"""Rebalancing planner: diff current weights against targets into trade actions."""

import math
from dataclasses import dataclass
from typing import List, Mapping, Optional

import structlog

from ..errors import InvalidTargetAllocationError
from ..models import RebalancingAction, TradeAction

logger = structlog.get_logger(__name__)

DEFAULT_TOLERANCE = 0.005
DEFAULT_SUM_TOLERANCE = 0.01


@dataclass(frozen=True)
class CostModel:
    """Transaction cost as a flat fee per trade plus a rate on traded value.

    The default rate is 0.1% commission plus 0.05% market impact.
    """

    flat_fee: float = 10.0
    proportional_rate: float = 0.0015

    def __call__(self, trade_value: float) -> float:
        trade_value = abs(trade_value)
        if trade_value == 0:
            return 0.0
        return float(self.flat_fee + trade_value * self.proportional_rate)


def validate_targets(
    targets: Mapping[str, float],
    sum_tolerance: float = DEFAULT_SUM_TOLERANCE,
) -> None:
    """Targets must be finite, non-negative and sum to 1 within *sum_tolerance*."""
    bad = {s: w for s, w in targets.items() if not math.isfinite(w) or w < 0}
    if bad:
        raise InvalidTargetAllocationError(
            f"Target weights must be non-negative and finite: {bad}",
            invalid=bad,
        )

    total = float(sum(targets.values()))
    if abs(total - 1.0) > sum_tolerance:
        raise InvalidTargetAllocationError(
            f"Target weights sum to {total:.4f}, expected 1 +/- {sum_tolerance}",
            total=total,
            tolerance=sum_tolerance,
        )


def plan_rebalance(
    current_weights: Mapping[str, float],
    target_weights: Mapping[str, float],
    total_value: float,
    prices: Mapping[str, float],
    tolerance: float = DEFAULT_TOLERANCE,
    cost_model: Optional[CostModel] = None,
    sum_tolerance: float = DEFAULT_SUM_TOLERANCE,
) -> List[RebalancingAction]:
    """Build one action per symbol in current | target.

    delta = target - current. BUY above +tolerance, SELL below -tolerance,
    HOLD otherwise. quantity_delta = delta * total_value / price and HOLD
    costs nothing. Output is sorted by |delta| descending, then symbol.

    Args:
        current_weights: Current weights per symbol (decimals)
        target_weights: Target weights per symbol (decimals)
        total_value: Portfolio value the weights refer to
        prices: Current price per symbol
        tolerance: Dead band around zero delta
        cost_model: Cost of a trade of a given value; CostModel() if None
        sum_tolerance: Allowed deviation of the target sum from 1

    Raises:
        InvalidTargetAllocationError: Bad targets, or a symbol has no usable price
    """
    validate_targets(target_weights, sum_tolerance)
    cost_model = cost_model or CostModel()

    symbols = list(dict.fromkeys([*current_weights, *target_weights]))

    missing = [s for s in symbols if not (prices.get(s) or 0) > 0]
    if missing:
        raise InvalidTargetAllocationError(
            f"No current price available for {missing}",
            symbols=missing,
        )

    actions: List[RebalancingAction] = []
    for symbol in symbols:
        current = float(current_weights.get(symbol, 0.0))
        target = float(target_weights.get(symbol, 0.0))
        delta = target - current

        if delta > tolerance:
            action = TradeAction.BUY
        elif delta < -tolerance:
            action = TradeAction.SELL
        else:
            action = TradeAction.HOLD

        trade_value = delta * total_value
        cost = 0.0 if action == TradeAction.HOLD else cost_model(trade_value)

        actions.append(RebalancingAction(
            symbol=symbol,
            action=action,
            current_weight=current,
            target_weight=target,
            quantity_delta=trade_value / float(prices[symbol]),
            estimated_cost=cost,
        ))

    actions.sort(key=lambda a: (-abs(a.target_weight - a.current_weight), a.symbol))

    logger.info(
        "plan_rebalance: proposal built",
        symbols=len(actions),
        trades=sum(1 for a in actions if a.action != TradeAction.HOLD),
        total_cost=sum(a.estimated_cost for a in actions),
    )
    return actions


def rebalancing_needed(
    current_weights: Mapping[str, float],
    target_weights: Mapping[str, float],
    threshold: float,
) -> bool:
    """True when any weight drifts from its target by more than *threshold*."""
    symbols = set(current_weights) | set(target_weights)
    drift = max(
        (abs(target_weights.get(s, 0.0) - current_weights.get(s, 0.0)) for s in symbols),
        default=0.0,
    )
    return drift > threshold
