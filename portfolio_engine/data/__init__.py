"""Store and metadata collaborators."""

from .interfaces import PortfolioStore, SymbolMetadata
from .memory import InMemoryPortfolioStore, StaticSymbolMetadata

__all__ = [
    "PortfolioStore",
    "SymbolMetadata",
    "InMemoryPortfolioStore",
    "StaticSymbolMetadata",
]
