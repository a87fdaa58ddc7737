"""
Allocation Optimization

Modules:
- optimizer: Mean-variance solver, constraint presets, feasibility, Deadline
- risk_parity: Equal risk contribution weights
- frontier: Efficient frontier tracing
- rebalancing: Current-vs-target trade proposals and cost model
"""

from .optimizer import (
    AllocationOptimizer,
    Deadline,
    SolverResult,
    PRESETS,
    preset_constraints,
    check_feasibility,
    project_to_bounds,
)
from .risk_parity import solve_risk_parity
from .frontier import efficient_frontier
from .rebalancing import (
    CostModel,
    plan_rebalance,
    rebalancing_needed,
    validate_targets,
)

__all__ = [
    'AllocationOptimizer',
    'Deadline',
    'SolverResult',
    'PRESETS',
    'preset_constraints',
    'check_feasibility',
    'project_to_bounds',
    'solve_risk_parity',
    'efficient_frontier',
    'CostModel',
    'plan_rebalance',
    'rebalancing_needed',
    'validate_targets',
]
