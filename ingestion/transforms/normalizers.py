"""
Normalizers for transforming loader output to the canonical panel shape.
Pure functions - no IO, network, or side effects.
Minimal normalization - only when necessary.
"""

import pandas as pd
from typing import Dict, List, Optional


CANONICAL_COLUMNS = ['symbol', 'date', 'open', 'high', 'low', 'close', 'adjusted', 'volume']

# Provider/export spellings seen in daily price files, lower-cased
COLUMN_ALIASES: Dict[str, str] = {
    'symbol': 'symbol',
    'ticker': 'symbol',
    'name': 'symbol',
    'date': 'date',
    'open': 'open',
    'high': 'high',
    'low': 'low',
    'close': 'close',
    'adjusted': 'adjusted',
    'adj close': 'adjusted',
    'adj_close': 'adjusted',
    'adjclose': 'adjusted',
    'adjusted_close': 'adjusted',
    'volume': 'volume',
}


class NormalizationError(Exception):
    """Raised when a raw frame cannot be mapped to the canonical panel."""
    pass


def canonical_column_map(columns: List[str]) -> Dict[str, str]:
    """
    Map raw column names onto canonical names.

    Args:
        columns: Raw column names

    Returns:
        Dictionary raw name -> canonical name for every recognised column

    Raises:
        NormalizationError: If two raw columns map to the same canonical name
    """
    mapping = {}
    taken = {}

    for raw in columns:
        canonical = COLUMN_ALIASES.get(str(raw).strip().lower())
        if canonical is None:
            continue

        if canonical in taken:
            raise NormalizationError(
                f"Columns {taken[canonical]!r} and {raw!r} both map to {canonical!r}"
            )

        taken[canonical] = raw
        mapping[raw] = canonical

    return mapping


def normalize_panel(raw_df: pd.DataFrame, symbol: Optional[str] = None) -> pd.DataFrame:
    """
    Transform a raw price frame to the canonical panel shape.

    Minimal normalization:
    - Column name mapping (providers use 'Adj Close', 'Ticker', 'Name', ...)
    - Date strings to datetime64 (required for period keys)
    - Symbols stripped and upper-cased
    - adjusted filled from close only when no adjusted column exists at all

    Duplicated (symbol, date) keys are left in place; schema validation
    rejects them.

    Args:
        raw_df: Raw frame from a CSV or database loader
        symbol: Symbol to assign when the frame has no symbol column
            (single-security files)

    Returns:
        DataFrame with CANONICAL_COLUMNS only

    Raises:
        NormalizationError: If required columns cannot be found or a
            numeric column holds no numeric values at all
    """
    frame = raw_df.rename(columns=canonical_column_map(list(raw_df.columns)))

    if 'symbol' not in frame.columns:
        if symbol is None:
            raise NormalizationError("No symbol column and no symbol supplied")
        frame['symbol'] = symbol

    # Single-source files without split/dividend adjustment
    if 'adjusted' not in frame.columns and 'close' in frame.columns:
        frame['adjusted'] = frame['close']

    missing = [col for col in CANONICAL_COLUMNS if col not in frame.columns]
    if missing:
        raise NormalizationError(f"Missing required columns after mapping: {missing}")

    frame = frame[CANONICAL_COLUMNS].copy()

    frame['symbol'] = frame['symbol'].where(
        frame['symbol'].isna(),
        frame['symbol'].astype(str).str.strip().str.upper()
    )
    frame['date'] = pd.to_datetime(frame['date'], errors='coerce')

    for col in ['open', 'high', 'low', 'close', 'adjusted', 'volume']:
        coerced = pd.to_numeric(frame[col], errors='coerce')
        if frame[col].notna().any() and coerced.isna().all():
            raise NormalizationError(f"{col} has no numeric values")
        frame[col] = coerced

    return frame.reset_index(drop=True)
