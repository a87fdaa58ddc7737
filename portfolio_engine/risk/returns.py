"""
Return Alignment Module

Pure functions turning ReturnSeries snapshots into date-indexed pandas
objects. Percent returns become decimal fractions here, and every
combination of series is aligned on dates (intersection), never on position.
"""

import numpy as np
import pandas as pd
import structlog
from typing import Dict, List, Optional, Tuple

from ..models import ReturnSeries

logger = structlog.get_logger(__name__)


def to_series(returns: ReturnSeries) -> pd.Series:
    """Convert a ReturnSeries into a decimal-return Series indexed by date.

    Args:
        returns: ReturnSeries with percent daily returns

    Returns:
        pd.Series named after the symbol, DatetimeIndex ascending, values as
        decimals (1.5% -> 0.015). Non-finite values are dropped.
    """
    if not returns.points:
        return pd.Series(dtype=float, index=pd.DatetimeIndex([]), name=returns.symbol)

    index = pd.DatetimeIndex([p.date for p in returns.points])
    values = np.array([p.daily_return_percent for p in returns.points], dtype=float) / 100.0
    series = pd.Series(values, index=index, name=returns.symbol)

    finite = np.isfinite(series.values)
    if not finite.all():
        logger.warning(
            "to_series: dropping non-finite returns",
            symbol=returns.symbol,
            dropped=int((~finite).sum()),
        )
        series = series[finite]

    return series


def align_pair(
    a: ReturnSeries,
    b: ReturnSeries,
) -> Tuple[np.ndarray, np.ndarray]:
    """Align two series on their common dates.

    Returns:
        Tuple of equal-length decimal arrays, ordered by date
    """
    sa = to_series(a)
    sb = to_series(b)
    common = sa.index.intersection(sb.index)
    return sa.loc[common].values, sb.loc[common].values


def build_returns_frame(
    series_by_symbol: Dict[str, ReturnSeries],
    symbols: Optional[List[str]] = None,
    min_history: int = 2,
) -> pd.DataFrame:
    """Build an aligned returns matrix (T x N) from per-symbol series.

    Uses only the intersection of dates present in every series. Does NOT
    forward-fill: a missing day for one symbol drops that date for all.

    Args:
        series_by_symbol: Mapping symbol -> ReturnSeries
        symbols: Column order; defaults to the mapping's order
        min_history: Minimum aligned observations required

    Returns:
        DataFrame with DatetimeIndex and one decimal-return column per symbol

    Raises:
        ValueError: If a requested symbol has no series
    """
    symbols = list(symbols) if symbols is not None else list(series_by_symbol)

    columns = {}
    for symbol in symbols:
        if symbol not in series_by_symbol:
            raise ValueError(f"Symbol {symbol} not found in return series")
        columns[symbol] = to_series(series_by_symbol[symbol])

    if not columns:
        logger.warning("build_returns_frame: no symbols requested")
        return pd.DataFrame()

    frame = pd.concat(columns, axis=1, join="inner")
    frame = frame[symbols]

    original_rows = max(len(s) for s in columns.values())
    if len(frame) < original_rows:
        logger.info(
            "build_returns_frame: dropped non-overlapping dates",
            max_series_length=original_rows,
            aligned_rows=len(frame),
        )

    if len(frame) < min_history:
        logger.warning(
            "build_returns_frame: insufficient aligned history",
            aligned_rows=len(frame),
            min_history=min_history,
        )

    return frame

