"""
Volatility calculation utilities.
Pure functions for fixed-width rolling volatility and rolling volume per symbol.
"""

import pandas as pd
from enum import Enum
from typing import Union

from analysis.calculations.periodic import with_period_keys


DEFAULT_WINDOW = 30

ROLLING_STAT_COLUMNS = ['symbol', 'date', 'rolling_volatility', 'rolling_volume']
VOLATILITY_SUMMARY_COLUMNS = ['symbol', 'year', 'avg_volatility', 'max_volatility']
VOLUME_SUMMARY_COLUMNS = ['symbol', 'year', 'avg_volume', 'max_volume']


class VolatilityError(Exception):
    """Raised when volatility calculation fails."""
    pass


class WindowAlignment(str, Enum):
    """Where a window's statistic is attributed."""
    TRAILING = 'trailing'   # last row of the window
    CENTERED = 'centered'   # middle row; null at both edges


def _check_window(window: int, alignment) -> WindowAlignment:
    if window < 2:
        raise VolatilityError("Window must be > 1 for standard deviation")

    try:
        return WindowAlignment(alignment)
    except ValueError:
        raise VolatilityError(f"Unknown window alignment: {alignment!r}")


def _rolling(values, window: int, alignment: Union[WindowAlignment, str], stat: str) -> pd.Series:
    alignment = _check_window(window, alignment)

    series = pd.Series(values, dtype=float)

    # min_periods == window: any null inside the window nulls the statistic
    trailing = getattr(series.rolling(window=window, min_periods=window), stat)()

    if alignment is WindowAlignment.CENTERED:
        # Row t covers t-(W-1)//2 .. t+W//2, e.g. t-14 .. t+15 for W=30
        return trailing.shift(-(window // 2))
    return trailing


def rolling_std(
    values,
    window: int = DEFAULT_WINDOW,
    alignment: Union[WindowAlignment, str] = WindowAlignment.TRAILING
) -> pd.Series:
    """
    Calculate rolling sample standard deviation (N-1 denominator).

    Args:
        values: Ordered values for a single symbol
        window: Number of observations per window
        alignment: TRAILING or CENTERED

    Returns:
        Series aligned with values; NaN where the window is not fully populated

    Raises:
        VolatilityError: If window < 2 or the alignment is unknown
    """
    return _rolling(values, window, alignment, 'std')


def rolling_mean(
    values,
    window: int = DEFAULT_WINDOW,
    alignment: Union[WindowAlignment, str] = WindowAlignment.TRAILING
) -> pd.Series:
    """
    Calculate rolling arithmetic mean with the same null policy as rolling_std.

    Args:
        values: Ordered values for a single symbol
        window: Number of observations per window
        alignment: TRAILING or CENTERED

    Returns:
        Series aligned with values; NaN where the window is not fully populated
    """
    return _rolling(values, window, alignment, 'mean')


def compute_rolling_stats(
    derived: pd.DataFrame,
    window: int = DEFAULT_WINDOW,
    alignment: Union[WindowAlignment, str] = WindowAlignment.TRAILING,
    by_year: bool = False
) -> pd.DataFrame:
    """
    Calculate rolling volatility and rolling volume for every symbol.

    Volatility is the rolling std of daily_return under the requested
    alignment. Rolling volume is always the trailing mean of volume.
    Each symbol is windowed on its own date-ordered series. With by_year,
    volatility windows also stop at calendar year boundaries, so a year
    with fewer than `window` rows has no volatility at all.

    Args:
        derived: Daily records with symbol, date, daily_return, volume
        window: Number of observations per window
        alignment: Alignment used for rolling_volatility
        by_year: Partition volatility windows by (symbol, year)

    Returns:
        DataFrame with ROLLING_STAT_COLUMNS; frame.attrs holds the
        alignment, window and by_year it was built with

    Raises:
        VolatilityError: If required columns are missing or window < 2
    """
    missing = {'symbol', 'date', 'daily_return', 'volume'} - set(derived.columns)
    if missing:
        raise VolatilityError(f"Missing required columns: {sorted(missing)}")

    alignment = _check_window(window, alignment)

    ordered = derived.sort_values(['symbol', 'date'], kind='mergesort').reset_index(drop=True)
    grouped = ordered.groupby('symbol', sort=False)

    if by_year:
        years = pd.to_datetime(ordered['date']).dt.year
        partitions = ordered.groupby(['symbol', years], sort=False)
    else:
        partitions = grouped

    stats = ordered[['symbol', 'date']].copy()
    stats['rolling_volatility'] = partitions['daily_return'].transform(
        lambda s: rolling_std(s, window, alignment)
    ).astype(float)
    stats['rolling_volume'] = grouped['volume'].transform(
        lambda s: rolling_mean(s, window, WindowAlignment.TRAILING)
    ).astype(float)

    stats.attrs['alignment'] = alignment.value
    stats.attrs['window'] = window
    stats.attrs['by_year'] = by_year

    return stats


def yearly_volatility_summary(rolling: pd.DataFrame) -> pd.DataFrame:
    """
    Summarize rolling volatility per (symbol, year).

    Only non-null rolling_volatility values count. A year without any
    fully-populated window yields null avg/max instead of raising.

    Args:
        rolling: Output of compute_rolling_stats

    Returns:
        DataFrame with VOLATILITY_SUMMARY_COLUMNS
    """
    if rolling.empty:
        return pd.DataFrame(columns=VOLATILITY_SUMMARY_COLUMNS)

    frame = with_period_keys(rolling)
    summary = (
        frame.groupby(['symbol', 'year'], sort=True)['rolling_volatility']
        .agg(avg_volatility='mean', max_volatility='max')
        .reset_index()
    )
    return summary[VOLATILITY_SUMMARY_COLUMNS]


def volume_summary(derived: pd.DataFrame) -> pd.DataFrame:
    """
    Summarize daily volume per (symbol, year).

    Args:
        derived: Daily records with symbol, date, volume

    Returns:
        DataFrame with VOLUME_SUMMARY_COLUMNS
    """
    if derived.empty:
        return pd.DataFrame(columns=VOLUME_SUMMARY_COLUMNS)

    frame = with_period_keys(derived)
    frame['volume'] = pd.to_numeric(frame['volume'], errors='coerce').astype(float)

    summary = (
        frame.groupby(['symbol', 'year'], sort=True)['volume']
        .agg(avg_volume='mean', max_volume='max')
        .reset_index()
    )
    return summary[VOLUME_SUMMARY_COLUMNS]

