"""Service layer exposing the engine's operations."""

from .optimization_service import PortfolioOptimizationService
from .risk_service import PortfolioRiskService

__all__ = ["PortfolioOptimizationService", "PortfolioRiskService"]
