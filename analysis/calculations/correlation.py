"""
Correlation utilities.
Pearson correlation between derived features, pooled across all symbols.
"""

import numpy as np
import pandas as pd
from typing import Sequence

from analysis.calculations.volatility import WindowAlignment


class CorrelationError(Exception):
    """Raised when correlation inputs are malformed."""
    pass


# Explicit schema; year/month and other numeric helper columns are never correlated.
FEATURE_COLUMNS = (
    'close',
    'daily_return',
    'daily_range',
    'volume',
    'rolling_volume',
    'rolling_volatility',
)

LONG_FORM_COLUMNS = ['row_feature', 'col_feature', 'value']


def build_feature_table(derived: pd.DataFrame, trailing_rolling: pd.DataFrame) -> pd.DataFrame:
    """
    Assemble one feature row per (symbol, date).

    Features: close, daily_return, daily_range (high - low), volume,
    rolling_volume and rolling_volatility from a TRAILING rolling table.

    Args:
        derived: Output of compute_daily_returns
        trailing_rolling: Output of compute_rolling_stats with TRAILING alignment

    Returns:
        DataFrame with symbol, date and FEATURE_COLUMNS

    Raises:
        CorrelationError: If the rolling table was built with another alignment
            or required columns are missing
    """
    alignment = trailing_rolling.attrs.get('alignment')
    if alignment is not None and WindowAlignment(alignment) is not WindowAlignment.TRAILING:
        raise CorrelationError(
            f"Correlation features require trailing rolling stats, got {alignment!r}"
        )

    needed = {'symbol', 'date', 'close', 'daily_return', 'high', 'low', 'volume'}
    missing = needed - set(derived.columns)
    if missing:
        raise CorrelationError(f"Missing required columns: {sorted(missing)}")

    base = derived[['symbol', 'date', 'close', 'daily_return', 'high', 'low', 'volume']].copy()
    base['daily_range'] = base['high'] - base['low']

    rolling = trailing_rolling[['symbol', 'date', 'rolling_volume', 'rolling_volatility']]
    features = base.merge(rolling, on=['symbol', 'date'], how='left', validate='one_to_one')

    features = features.sort_values(['symbol', 'date'], kind='mergesort').reset_index(drop=True)
    return features[['symbol', 'date'] + list(FEATURE_COLUMNS)]


def complete_cases(features: pd.DataFrame, columns: Sequence[str] = FEATURE_COLUMNS) -> pd.DataFrame:
    """
    Keep only rows where every feature is non-null.

    Args:
        features: Feature table
        columns: Feature columns that must all be present

    Returns:
        Filtered copy; rows with any null feature are dropped, not imputed
    """
    missing = [col for col in columns if col not in features.columns]
    if missing:
        raise CorrelationError(f"Missing feature columns: {missing}")

    return features.dropna(subset=list(columns)).reset_index(drop=True)


def _pearson(values: pd.DataFrame, min_periods: int = 1) -> pd.DataFrame:
    """Pearson matrix with a unit diagonal; degenerate pairs stay NaN."""
    matrix = values.astype(float).corr(method='pearson', min_periods=min_periods)

    # Exact symmetry and a clean diagonal regardless of float noise
    data = matrix.to_numpy(copy=True)
    data = np.clip((data + data.T) / 2, -1.0, 1.0)
    np.fill_diagonal(data, 1.0)

    return pd.DataFrame(data, index=matrix.index, columns=matrix.columns)


def correlation_matrix(features: pd.DataFrame) -> pd.DataFrame:
    """
    Calculate the pooled Pearson correlation matrix between features.

    All symbols are pooled into one sample, so the result describes how
    derived features move together (e.g. volume vs volatility), not how
    two securities move together.

    Args:
        features: Feature table (complete-case filtering is applied here)

    Returns:
        Square symmetric DataFrame indexed by FEATURE_COLUMNS, diagonal 1.0.
        Pairs involving a zero-variance feature, or any pair when fewer
        than two complete rows exist, are NaN.
    """
    complete = complete_cases(features)
    matrix = _pearson(complete[list(FEATURE_COLUMNS)])

    matrix = matrix.reindex(index=list(FEATURE_COLUMNS), columns=list(FEATURE_COLUMNS))
    matrix.index.name = 'feature'
    matrix.columns.name = 'feature'
    return matrix


def melt_correlation(matrix: pd.DataFrame) -> pd.DataFrame:
    """
    Unpivot a correlation matrix into long form.

    Args:
        matrix: Square correlation matrix

    Returns:
        DataFrame with row_feature, col_feature, value (one row per cell)
    """
    if list(matrix.index) != list(matrix.columns):
        raise CorrelationError("Correlation matrix must be square with matching labels")

    frame = matrix.copy()
    frame.index = pd.Index(list(matrix.index), name='row_feature')
    frame.columns = list(matrix.columns)

    long = frame.reset_index().melt(
        id_vars='row_feature',
        var_name='col_feature',
        value_name='value'
    )
    return long[LONG_FORM_COLUMNS]


def symbol_return_correlation(derived: pd.DataFrame, min_periods: int = 2) -> pd.DataFrame:
    """
    Calculate symbol-vs-symbol correlation of daily returns.

    Pivots the panel into dates x symbols on daily_return and correlates
    the columns pairwise. This answers "which securities move together",
    which the pooled feature matrix does not.

    Args:
        derived: Output of compute_daily_returns
        min_periods: Minimum overlapping dates required for a pair

    Returns:
        Square symmetric DataFrame indexed by symbol, diagonal 1.0
    """
    needed = {'symbol', 'date', 'daily_return'}
    missing = needed - set(derived.columns)
    if missing:
        raise CorrelationError(f"Missing required columns: {sorted(missing)}")

    wide = derived.pivot(index='date', columns='symbol', values='daily_return')
    result = _pearson(wide, min_periods=min_periods)
    result.index.name = 'symbol'
    result.columns.name = 'symbol'
    return result
