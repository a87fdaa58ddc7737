"""Command-line entry point for the risk and optimization engine.

Runs one engine operation and prints the result as JSON. Data comes from a
JSON snapshot file (--snapshot) or, without one, from PostgreSQL at
POSTGRES_URL.

Usage:
    portfolio-engine --snapshot demo.json risk p1
    portfolio-engine --snapshot demo.json stress p1 --scenario "Tech Selloff:-0.30"
    portfolio-engine --snapshot demo.json var p1 --confidence 0.99 --horizon 10
    portfolio-engine --snapshot demo.json optimize p1 --objective MAX_SHARPE
    portfolio-engine --snapshot demo.json frontier p1 --points 25
    portfolio-engine --snapshot demo.json rebalance p1 --target AAPL=0.5 --target GOOGL=0.5
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import structlog

from .config import get_settings
from .data.memory import InMemoryPortfolioStore, StaticSymbolMetadata
from .errors import RiskEngineError
from .logging_config import configure_logging
from .models import (
    Constraints,
    ObjectiveType,
    OptimizationObjective,
    RiskTolerance,
    StressScenario,
    TimeHorizon,
)
from .optimization.optimizer import Deadline
from .services import PortfolioOptimizationService, PortfolioRiskService

logger = structlog.get_logger(__name__)


def _key_value(raw: str, sep: str = "=") -> tuple[str, float]:
    key, _, value = raw.rpartition(sep)
    if not key:
        raise argparse.ArgumentTypeError(f"expected NAME{sep}NUMBER, got {raw!r}")
    try:
        return key, float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number in {raw!r}") from None


def _scenario(raw: str) -> tuple[str, float]:
    return _key_value(raw, ":")


def _add_constraint_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--min-weight", type=float, default=None)
    parser.add_argument("--max-weight", type=float, default=None)
    parser.add_argument("--max-risk", type=float, default=None,
                        help="Annualized volatility cap (decimal)")
    parser.add_argument("--risk-free-rate", type=float, default=None)
    parser.add_argument("--sector-cap", type=_key_value, action="append", default=[],
                        metavar="SECTOR=PCT", help="Cap a sector at PCT percent (repeatable)")


def _constraints(args: argparse.Namespace) -> Constraints | None:
    """Constraints from CLI flags, or None (use the preset) if no flag was given."""
    fields: dict[str, Any] = {}
    for name in ("min_weight", "max_weight", "max_risk", "risk_free_rate"):
        value = getattr(args, name)
        if value is not None:
            fields[name] = value
    if args.sector_cap:
        fields["sector_caps"] = dict(args.sector_cap)
    return Constraints(**fields) if fields else None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="portfolio-engine",
        description="Portfolio risk analytics and allocation optimization",
    )
    parser.add_argument("--snapshot", type=Path, default=None,
                        help="JSON snapshot with portfolios, prices, returns and metadata")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    parser.add_argument("--no-save", action="store_true", help="Do not persist results")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("risk", help="Full risk metrics snapshot")
    p.add_argument("portfolio_id")

    p = sub.add_parser("stress", help="Stress scenarios")
    p.add_argument("portfolio_id")
    p.add_argument("--scenario", type=_scenario, action="append", default=[],
                   metavar="NAME:SHOCK", help="Custom scenario, e.g. 'Crash:-0.3' (repeatable)")

    p = sub.add_parser("var", help="Historical VaR and expected shortfall")
    p.add_argument("portfolio_id")
    p.add_argument("--confidence", type=float, default=0.95)
    p.add_argument("--horizon", type=int, default=1, help="Horizon in days")

    p = sub.add_parser("optimize", help="Optimize target allocation")
    p.add_argument("portfolio_id")
    p.add_argument("--objective", choices=[o.value for o in ObjectiveType],
                   default=ObjectiveType.MAX_SHARPE.value)
    p.add_argument("--risk-tolerance", choices=[r.value for r in RiskTolerance],
                   default=RiskTolerance.MODERATE.value)
    p.add_argument("--time-horizon", choices=[t.value for t in TimeHorizon],
                   default=TimeHorizon.MEDIUM.value)
    p.add_argument("--strict", action="store_true",
                   help="Fail instead of returning a non-converged result")
    p.add_argument("--timeout", type=float, default=None, help="Seconds")
    _add_constraint_args(p)

    p = sub.add_parser("frontier", help="Efficient frontier")
    p.add_argument("portfolio_id")
    p.add_argument("--points", type=int, default=20)
    p.add_argument("--timeout", type=float, default=None, help="Seconds")
    _add_constraint_args(p)

    p = sub.add_parser("rebalance", help="Rebalancing proposal toward target weights")
    p.add_argument("portfolio_id")
    p.add_argument("--target", type=_key_value, action="append", required=True,
                   metavar="SYMBOL=WEIGHT", help="Target weight (repeatable)")

    return parser


def _build_services(args: argparse.Namespace):
    settings = get_settings()
    persist = not args.no_save

    if args.snapshot is not None:
        data = json.loads(args.snapshot.read_text())
        store = InMemoryPortfolioStore.from_snapshot(data)
        metadata = StaticSymbolMetadata.from_snapshot(data, settings.DEFAULT_LIQUIDITY_SCORE)
    else:
        from .db.store import SqlPortfolioStore

        store = SqlPortfolioStore()
        metadata = StaticSymbolMetadata(default_liquidity_score=settings.DEFAULT_LIQUIDITY_SCORE)

    return (
        PortfolioRiskService(store, metadata, settings, persist=persist),
        PortfolioOptimizationService(store, metadata, settings, persist=persist),
    )


async def run(args: argparse.Namespace) -> Any:
    """Execute the selected sub-command and return a JSON-serializable result."""
    risk, optimizer = _build_services(args)
    try:
        result = await _dispatch(args, risk, optimizer)
    finally:
        if args.snapshot is None:
            from .db import engine as db_engine

            await db_engine.close_engine()

    if isinstance(result, list):
        return [r.model_dump(mode="json") for r in result]
    return result.model_dump(mode="json")


async def _dispatch(
    args: argparse.Namespace,
    risk: PortfolioRiskService,
    optimizer: PortfolioOptimizationService,
) -> Any:
    timeout = getattr(args, "timeout", None)
    deadline = Deadline(timeout) if timeout is not None else None

    if args.command == "risk":
        return await risk.analyze_portfolio_risk(args.portfolio_id)
    if args.command == "stress":
        scenarios = [StressScenario(name=n, shock_factor=f) for n, f in args.scenario] or None
        return await risk.run_stress_test(args.portfolio_id, scenarios)
    if args.command == "var":
        return await risk.calculate_var(args.portfolio_id, args.confidence, args.horizon)
    if args.command == "optimize":
        objective = OptimizationObjective(
            type=ObjectiveType(args.objective),
            risk_tolerance=RiskTolerance(args.risk_tolerance),
            time_horizon=TimeHorizon(args.time_horizon),
        )
        return await optimizer.optimize_portfolio(
            args.portfolio_id, objective, _constraints(args), deadline, args.strict
        )
    if args.command == "frontier":
        return await optimizer.calculate_efficient_frontier(
            args.portfolio_id, _constraints(args), args.points, deadline
        )
    if args.command == "rebalance":
        return await optimizer.generate_rebalancing_proposal(
            args.portfolio_id, dict(args.target)
        )
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level or get_settings().LOG_LEVEL)

    try:
        output = asyncio.run(run(args))
    except RiskEngineError as exc:
        print(json.dumps({"error": exc.to_dict()}, indent=2, default=str))
        return 2

    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
