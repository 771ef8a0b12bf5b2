"""
Guardrails for the metrics pipeline - data quality checks on the panel.
Surfaces warnings without changing any computed table.
"""

import warnings
import pandas as pd
from datetime import date
from typing import Dict, Any, List, Tuple

from analysis.calculations.periodic import with_period_keys


class DataQualityError(Exception):
    """Raised when data quality issues require user intervention."""
    pass


class DataQualityWarning(UserWarning):
    """Raised when data quality issues should be noted but don't block execution."""
    pass


def validate_sufficient_history(
    derived: pd.DataFrame,
    window: int
) -> Tuple[List[str], List[str]]:
    """
    Split symbols by whether they can fill at least one rolling window.

    A full volatility window needs `window` non-null returns, i.e.
    window + 1 valid prices.

    Args:
        derived: Output of compute_daily_returns
        window: Rolling window width

    Returns:
        Tuple of (sufficient_symbols, insufficient_symbols)

    Raises:
        DataQualityError: If there is no data at all
    """
    if derived.empty:
        raise DataQualityError("No valid price rows available for analysis")

    counts = derived.dropna(subset=['daily_return']).groupby('symbol').size()
    counts = counts.reindex(sorted(derived['symbol'].unique()), fill_value=0)

    sufficient = [str(s) for s, n in counts.items() if n >= window]
    insufficient = [str(s) for s, n in counts.items() if n < window]

    if insufficient:
        warnings.warn(
            f"Fewer than {window} daily returns for {insufficient}; "
            f"their rolling volatility will be null.",
            DataQualityWarning
        )

    return sufficient, insufficient


def detect_partial_periods(derived: pd.DataFrame, min_trading_days: int = 15) -> List[Dict[str, Any]]:
    """
    Find first/last months per symbol that look truncated by the data range.

    These bars are still aggregated; the list only flags that their
    monthly return may under- or overstate the real move.

    Args:
        derived: Daily records with symbol and date
        min_trading_days: Boundary months with fewer rows are reported

    Returns:
        List of {symbol, year, month, trading_days, position}
    """
    if derived.empty:
        return []

    frame = with_period_keys(derived)
    counts = frame.groupby(['symbol', 'year', 'month']).size().reset_index(name='trading_days')

    partial = []
    for symbol, group in counts.groupby('symbol', sort=True):
        group = group.sort_values(['year', 'month'])
        edges = [('first', group.iloc[0])]
        if len(group) > 1:
            edges.append(('last', group.iloc[-1]))

        for position, row in edges:
            if row['trading_days'] < min_trading_days:
                partial.append({
                    'symbol': symbol,
                    'year': int(row['year']),
                    'month': int(row['month']),
                    'trading_days': int(row['trading_days']),
                    'position': position
                })

    return partial


def validate_price_data_integrity(panel: pd.DataFrame, max_daily_move: float = 0.20) -> List[str]:
    """
    Validate price data integrity and detect anomalies.

    Args:
        panel: Canonical price panel
        max_daily_move: Close-to-close move (decimal) above which a day is flagged

    Returns:
        List of integrity warnings
    """
    issues = []

    if panel.empty:
        return issues

    ordered = panel.sort_values(['symbol', 'date'], kind='mergesort')

    # Large moves, measured within each symbol only
    previous = ordered.groupby('symbol', sort=False)['close'].shift(1)
    moves = (ordered['close'] / previous.where(previous > 0) - 1).abs()
    large = ordered.loc[moves > max_daily_move]
    for row in large.itertuples(index=False):
        issues.append(
            f"Large price movement for {row.symbol} on {pd.Timestamp(row.date).date()}"
        )

    zero_volume = ordered[ordered['volume'] == 0]
    if not zero_volume.empty:
        issues.append(f"Zero volume detected on {len(zero_volume)} rows")

    negative_volume = ordered[ordered['volume'] < 0]
    if not negative_volume.empty:
        issues.append(f"Negative volume detected on {len(negative_volume)} rows")

    invalid_prices = ordered[
        (ordered['high'] < ordered['low']) |
        (ordered['high'] < ordered['open']) |
        (ordered['high'] < ordered['close']) |
        (ordered['low'] > ordered['open']) |
        (ordered['low'] > ordered['close'])
    ]
    if not invalid_prices.empty:
        issues.append(f"Price logic violations found on {len(invalid_prices)} rows")

    return issues


def run_all_guardrails(
    panel: pd.DataFrame,
    derived: pd.DataFrame,
    rejected: pd.DataFrame,
    window: int
) -> Dict[str, Any]:
    """
    Run all guardrail checks and compile results.

    Args:
        panel: Canonical price panel as loaded
        derived: Output of compute_daily_returns
        rejected: Rows excluded for invalid prices
        window: Rolling window width

    Returns:
        Dictionary with per-check results and a flat list of warnings

    Raises:
        DataQualityError: If no valid rows remain
    """
    results = {
        'timestamp': date.today().isoformat(),
        'checks': {},
        'warnings': []
    }

    with warnings.catch_warnings():
        warnings.simplefilter('ignore', DataQualityWarning)
        sufficient, insufficient = validate_sufficient_history(derived, window)

    results['checks']['sufficient_history'] = {
        'sufficient_symbols': sufficient,
        'insufficient_symbols': insufficient
    }
    if insufficient:
        results['warnings'].append(
            f"Insufficient history for a {window}-row window: {insufficient}"
        )

    partial = detect_partial_periods(derived)
    results['checks']['partial_periods'] = partial
    if partial:
        results['warnings'].append(
            f"{len(partial)} boundary months aggregated from partial data"
        )

    results['checks']['rejected_rows'] = len(rejected)
    if len(rejected):
        results['warnings'].append(f"{len(rejected)} rows excluded for invalid prices")

    integrity = validate_price_data_integrity(panel)
    results['checks']['price_integrity'] = integrity
    results['warnings'].extend(integrity)

    return results
