"""
Periodic aggregation utilities.
Pure functions that fold daily records into monthly and yearly bars.
"""

import pandas as pd
from typing import List

from analysis.calculations.returns import percent_change


class PeriodicError(Exception):
    """Raised when periodic aggregation fails."""
    pass


MONTHLY_BAR_COLUMNS = ['symbol', 'year', 'month', 'monthly_open', 'monthly_close', 'monthly_return']
YEARLY_BAR_COLUMNS = ['symbol', 'year', 'yearly_open', 'yearly_close', 'previous_close', 'yearly_return']


def with_period_keys(derived: pd.DataFrame) -> pd.DataFrame:
    """
    Add calendar 'year' and 'month' columns derived from 'date'.

    Args:
        derived: Daily records with a 'date' column

    Returns:
        Copy of the frame with integer year and month columns
    """
    dates = pd.to_datetime(derived['date'])
    return derived.assign(year=dates.dt.year.astype(int), month=dates.dt.month.astype(int))


def chained_period_returns(bars: pd.DataFrame, close_col: str) -> pd.DataFrame:
    """
    Attach each period's return against the preceding period of the same symbol.

    Bars must already be sorted by symbol and period. The first period of
    every symbol has no predecessor and gets a null return.

    Args:
        bars: One row per (symbol, period)
        close_col: Name of the period close column

    Returns:
        Copy of bars with 'previous_close' and '<prefix>_return' columns
    """
    prefix = close_col.rsplit('_', 1)[0]
    bars = bars.copy()
    bars['previous_close'] = bars.groupby('symbol', sort=False)[close_col].shift(1)
    bars[f'{prefix}_return'] = percent_change(bars[close_col], bars['previous_close'])
    return bars


def _fold_periods(derived: pd.DataFrame, period_keys: List[str], prefix: str) -> pd.DataFrame:
    """Fold daily rows into open/close bars keyed by symbol + period_keys."""
    required = {'symbol', 'date', 'open', 'close'}
    missing = required - set(derived.columns)
    if missing:
        raise PeriodicError(f"Missing required columns: {sorted(missing)}")

    group_cols = ['symbol'] + period_keys
    bar_columns = group_cols + [f'{prefix}_open', f'{prefix}_close']

    if derived.empty:
        return pd.DataFrame(columns=bar_columns)

    # Sort before folding so first/last are chronological, not input order
    frame = with_period_keys(derived).sort_values(['symbol', 'date'], kind='mergesort')

    firsts = frame.drop_duplicates(subset=group_cols, keep='first')[group_cols + ['open']]
    lasts = frame.drop_duplicates(subset=group_cols, keep='last')[group_cols + ['close']]

    bars = firsts.merge(lasts, on=group_cols, how='inner', validate='one_to_one')
    bars = bars.rename(columns={'open': f'{prefix}_open', 'close': f'{prefix}_close'})

    return bars.sort_values(group_cols).reset_index(drop=True)[bar_columns]


def monthly_bars(derived: pd.DataFrame) -> pd.DataFrame:
    """
    Aggregate daily records into monthly bars per symbol.

    monthly_open is the open of the month's first record, monthly_close the
    close of its last record, and monthly_return the percent change of
    monthly_close against the previous month's close for the same symbol.

    Args:
        derived: Daily records (symbol, date, open, close, ...)

    Returns:
        DataFrame with MONTHLY_BAR_COLUMNS, sorted by symbol, year, month
    """
    bars = _fold_periods(derived, ['year', 'month'], 'monthly')
    if bars.empty:
        return pd.DataFrame(columns=MONTHLY_BAR_COLUMNS)

    bars = chained_period_returns(bars, 'monthly_close')
    return bars[MONTHLY_BAR_COLUMNS]


def yearly_bars(derived: pd.DataFrame) -> pd.DataFrame:
    """
    Aggregate daily records into yearly bars per symbol.

    Args:
        derived: Daily records (symbol, date, open, close, ...)

    Returns:
        DataFrame with YEARLY_BAR_COLUMNS, sorted by symbol, year

    Example:
        yearly_close=75 after a previous year closing at 60 -> yearly_return 25.0
    """
    bars = _fold_periods(derived, ['year'], 'yearly')
    if bars.empty:
        return pd.DataFrame(columns=YEARLY_BAR_COLUMNS)

    bars = chained_period_returns(bars, 'yearly_close')
    return bars[YEARLY_BAR_COLUMNS]
