"""Error taxonomy for the risk and optimization engine.

Every failure the engine surfaces to a caller is one of the exceptions below.
Each carries an ``ErrorKind`` tag so callers (an HTTP controller, the CLI)
can branch on ``exc.kind`` instead of matching exception classes or message
text, and a ``details`` dict with the structured context that was logged.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
    INFEASIBLE_CONSTRAINTS = "INFEASIBLE_CONSTRAINTS"
    OPTIMIZATION_DID_NOT_CONVERGE = "OPTIMIZATION_DID_NOT_CONVERGE"
    INVALID_TARGET_ALLOCATION = "INVALID_TARGET_ALLOCATION"
    PORTFOLIO_NOT_FOUND = "PORTFOLIO_NOT_FOUND"


class RiskEngineError(ValueError):
    """Base class for typed engine errors."""

    kind: ErrorKind

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "details": self.details}


class InsufficientDataError(RiskEngineError):
    """Not enough (or degenerate) history to estimate a statistic.

    Recoverable: the caller may retry later once more history exists.
    """

    kind = ErrorKind.INSUFFICIENT_DATA


class InfeasibleConstraintsError(RiskEngineError):
    kind = ErrorKind.INFEASIBLE_CONSTRAINTS


class OptimizationDidNotConvergeError(RiskEngineError):
    """Raised only in strict mode; the best iterate found is attached."""

    kind = ErrorKind.OPTIMIZATION_DID_NOT_CONVERGE

    def __init__(self, message: str, partial_result: Any = None, **details: Any) -> None:
        super().__init__(message, **details)
        self.partial_result = partial_result


class InvalidTargetAllocationError(RiskEngineError):
    kind = ErrorKind.INVALID_TARGET_ALLOCATION


class PortfolioNotFoundError(RiskEngineError):
    kind = ErrorKind.PORTFOLIO_NOT_FOUND

    def __init__(self, portfolio_id: str) -> None:
        super().__init__(f"Portfolio not found: {portfolio_id}", portfolio_id=portfolio_id)
        self.portfolio_id = portfolio_id
