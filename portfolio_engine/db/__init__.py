"""PostgreSQL persistence for the engine."""

from .engine import close_engine, get_engine, init_db
from .store import SqlPortfolioStore

__all__ = ["SqlPortfolioStore", "close_engine", "get_engine", "init_db"]
