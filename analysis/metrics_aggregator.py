"""
Metrics aggregator - composes all panel calculations into output tables.
Pure function that chains returns, periodic bars, rolling stats and correlation.
"""

import pandas as pd
from typing import Dict, Any, List, Optional

# Import all calculation modules
from analysis.calculations.returns import compute_daily_returns
from analysis.calculations.periodic import monthly_bars, yearly_bars
from analysis.calculations.volatility import (
    DEFAULT_WINDOW,
    WindowAlignment,
    compute_rolling_stats,
    yearly_volatility_summary,
    volume_summary,
)
from analysis.calculations.correlation import (
    build_feature_table,
    correlation_matrix,
    complete_cases,
    melt_correlation,
)
from ingestion.transforms.validators import validate_panel_schema, NUMERIC_COLUMNS


class MetricsAggregatorError(Exception):
    """Raised when metrics aggregation fails."""
    pass


# Output tables handed to storage/export, in dependency order
TABLE_NAMES = [
    'daily_returns',
    'rejected_rows',
    'monthly_bars',
    'yearly_bars',
    'rolling_stats',
    'rolling_stats_centered',
    'volatility_summary',
    'volume_summary',
    'correlation_features',
    'correlation_matrix',
    'correlation_long',
]


def _coerce_panel_types(panel: pd.DataFrame) -> pd.DataFrame:
    """Convert validated date and price text to datetime64 and floats."""
    panel = panel.assign(date=pd.to_datetime(panel['date']))
    for col in NUMERIC_COLUMNS:
        panel[col] = pd.to_numeric(panel[col], errors='coerce')
    return panel


def compose_metrics(
    panel: pd.DataFrame,
    window: int = DEFAULT_WINDOW,
    symbols: Optional[List[str]] = None
) -> Dict[str, pd.DataFrame]:
    """
    Compose all panel metrics into the standard output tables.

    Stages:
    1. Validate panel schema (fails before any computation)
    2. Daily returns per symbol (invalid price rows excluded)
    3. Monthly and yearly bars
    4. Rolling stats: trailing per symbol for correlation, centered per
       (symbol, year) for the yearly summary
    5. Pooled feature correlation over complete cases

    Args:
        panel: Canonical price panel
        window: Rolling window width
        symbols: Optional subset of symbols to keep

    Returns:
        Dictionary keyed by TABLE_NAMES. 'rolling_stats' is the trailing
        table; 'correlation_matrix' is square with a 'feature' index.

    Raises:
        ValidationError: If the panel fails schema validation
        MetricsAggregatorError: If the symbol filter leaves no rows
    """
    validate_panel_schema(panel)

    # Dates and prices are datetime64 and float from here on
    panel = _coerce_panel_types(panel)

    if symbols:
        wanted = {s.upper() for s in symbols}
        panel = panel[panel['symbol'].astype(str).str.upper().isin(wanted)]
        if panel.empty:
            raise MetricsAggregatorError(f"No price data for symbols {sorted(wanted)}")

    derived, rejected = compute_daily_returns(panel)

    # Two alignments, each tied to its consumer
    trailing = compute_rolling_stats(derived, window, WindowAlignment.TRAILING)
    centered = compute_rolling_stats(derived, window, WindowAlignment.CENTERED, by_year=True)

    features = build_feature_table(derived, trailing)
    matrix = correlation_matrix(features)

    return {
        'daily_returns': derived,
        'rejected_rows': rejected,
        'monthly_bars': monthly_bars(derived),
        'yearly_bars': yearly_bars(derived),
        'rolling_stats': trailing,
        'rolling_stats_centered': centered,
        'volatility_summary': yearly_volatility_summary(centered),
        'volume_summary': volume_summary(derived),
        'correlation_features': complete_cases(features),
        'correlation_matrix': matrix,
        'correlation_long': melt_correlation(matrix),
    }


def summarize_tables(tables: Dict[str, pd.DataFrame]) -> Dict[str, Any]:
    """
    Summarize composed tables for logging and run results.

    Args:
        tables: Output of compose_metrics

    Returns:
        Dictionary with row counts per table and headline figures
    """
    derived = tables['daily_returns']

    summary = {
        'row_counts': {name: len(tables[name]) for name in TABLE_NAMES if name in tables},
        'symbols': sorted(derived['symbol'].unique().tolist()) if not derived.empty else [],
        'returns_calculated': int(derived['daily_return'].notna().sum()) if not derived.empty else 0,
        'rows_rejected': len(tables['rejected_rows']),
        'correlation_rows_used': len(tables['correlation_features']),
    }

    if not derived.empty:
        dates = pd.to_datetime(derived['date'])
        summary['date_range'] = {
            'start_date': dates.min().date().isoformat(),
            'end_date': dates.max().date().isoformat(),
            'trading_days': int(dates.nunique())
        }
    else:
        summary['date_range'] = None

    return summary
