"""
Stress Testing Module

Uniform return shocks applied to current position values, optionally scaled
per sector. Recovery time is a linear heuristic on the shock size, not a
calibrated model.
"""

import structlog
from typing import List, Mapping, Optional, Sequence

from ..models import StressScenario, StressTestResult, WorstHolding

logger = structlog.get_logger(__name__)

RECOVERY_DAYS_PER_UNIT_SHOCK = 200.0

DEFAULT_SCENARIOS: List[StressScenario] = [
    StressScenario(name="Market Crash (-20%)", shock_factor=-0.20),
    StressScenario(name="Financial Crisis (-35%)", shock_factor=-0.35),
    StressScenario(name="Currency Shock (-15%)", shock_factor=-0.15),
    StressScenario(name="Inflation Surge (-10%)", shock_factor=-0.10),
    StressScenario(name="Geopolitical Event (-25%)", shock_factor=-0.25),
]


def stress_test(
    values: Mapping[str, float],
    scenario: StressScenario,
    sectors: Optional[Mapping[str, str]] = None,
    recovery_days_per_unit_shock: float = RECOVERY_DAYS_PER_UNIT_SHOCK,
) -> StressTestResult:
    """Apply one scenario to a set of position values.

    impact_i = value_i * shock_factor * sensitivity(sector_i). The worst
    holding is the largest absolute impact, the first in holding order on
    ties.

    Args:
        values: Market value per symbol, in holding order
        scenario: Shock to apply
        sectors: Optional symbol -> sector map for sector sensitivities
        recovery_days_per_unit_shock: Days of recovery per 1.0 of shock

    Returns:
        StressTestResult; impact percents are relative to total value
    """
    sectors = sectors or {}
    total_value = float(sum(values.values()))

    portfolio_impact = 0.0
    worst_symbol = ""
    worst_impact = 0.0

    for symbol, value in values.items():
        sensitivity = scenario.sensitivity(sectors.get(symbol, ""))
        impact = value * scenario.shock_factor * sensitivity
        portfolio_impact += impact

        if not worst_symbol or abs(impact) > abs(worst_impact):
            worst_symbol = symbol
            worst_impact = impact

    def pct(x: float) -> float:
        return x / total_value * 100 if total_value != 0 else 0.0

    return StressTestResult(
        scenario=scenario.name,
        portfolio_impact=portfolio_impact,
        impact_percent=pct(portfolio_impact),
        worst_holding=WorstHolding(
            symbol=worst_symbol,
            impact=worst_impact,
            impact_percent=pct(worst_impact),
        ),
        recovery_time_days=abs(scenario.shock_factor) * recovery_days_per_unit_shock,
    )


def run_stress_tests(
    values: Mapping[str, float],
    scenarios: Optional[Sequence[StressScenario]] = None,
    sectors: Optional[Mapping[str, str]] = None,
    recovery_days_per_unit_shock: float = RECOVERY_DAYS_PER_UNIT_SHOCK,
) -> List[StressTestResult]:
    """Run every scenario (DEFAULT_SCENARIOS when None), in order.

    No positions means no results.
    """
    if not values:
        return []

    scenarios = DEFAULT_SCENARIOS if scenarios is None else scenarios
    results = [
        stress_test(values, s, sectors, recovery_days_per_unit_shock) for s in scenarios
    ]

    logger.info(
        "run_stress_tests: complete",
        scenarios=len(results),
        positions=len(values),
        worst_impact_pct=min((r.impact_percent for r in results), default=0.0),
    )
    return results
