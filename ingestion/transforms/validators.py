"""
Core validators for canonical price panels.
Pure functions - no IO, network, or side effects.
"""

import pandas as pd
from typing import List, Tuple


class ValidationError(ValueError):
    """Raised when data validation fails."""
    pass


REQUIRED_COLUMNS = ['symbol', 'date', 'open', 'high', 'low', 'close', 'adjusted', 'volume']
NUMERIC_COLUMNS = ['open', 'high', 'low', 'close', 'adjusted', 'volume']


def find_duplicate_keys(panel: pd.DataFrame) -> List[Tuple[str, str]]:
    """
    List (symbol, date) keys that occur more than once.

    Args:
        panel: Price panel with symbol and date columns

    Returns:
        Sorted list of duplicated (symbol, ISO date) pairs
    """
    dates = pd.to_datetime(panel['date'], errors='coerce')
    keys = pd.DataFrame({'symbol': panel['symbol'].astype(str), 'date': dates})
    dupes = keys[keys.duplicated(keep=False)].drop_duplicates()

    return sorted(
        (row.symbol, row.date.date().isoformat())
        for row in dupes.itertuples(index=False)
    )


def validate_panel_schema(panel: pd.DataFrame) -> None:
    """
    Validate a price panel before any computation runs.

    Schema-level problems abort the whole run. Row-level problems such as
    a single non-positive price are not checked here; the returns stage
    excludes those rows individually.

    Args:
        panel: Price panel

    Raises:
        ValidationError: If a required column is missing, the panel is empty,
            a symbol or date is missing/unparseable, a price column is not
            numeric, or a (symbol, date) key is duplicated
    """
    if not isinstance(panel, pd.DataFrame):
        raise ValidationError(f"panel must be a DataFrame, got {type(panel)}")

    # Required columns
    missing = [col for col in REQUIRED_COLUMNS if col not in panel.columns]
    if missing:
        raise ValidationError(f"Missing required columns: {missing}")

    if panel.empty:
        raise ValidationError("Price panel is empty")

    # Key columns
    if panel['symbol'].isna().any():
        raise ValidationError(f"symbol missing on {int(panel['symbol'].isna().sum())} rows")

    if (panel['symbol'].astype(str).str.strip() == '').any():
        raise ValidationError("symbol must be non-empty text")

    dates = pd.to_datetime(panel['date'], errors='coerce')
    if dates.isna().any():
        bad = panel.loc[dates.isna(), 'date'].tolist()[:5]
        raise ValidationError(f"Unparseable or missing dates: {bad}")

    # Column types; individual NaNs are row-level and tolerated here
    for col in NUMERIC_COLUMNS:
        if not pd.api.types.is_numeric_dtype(panel[col]):
            coerced = pd.to_numeric(panel[col], errors='coerce')
            garbage = coerced.isna() & panel[col].notna()
            if garbage.all():
                raise ValidationError(f"{col} must be numeric, got dtype {panel[col].dtype}")

    duplicates = find_duplicate_keys(panel)
    if duplicates:
        preview = ', '.join(f"{s}@{d}" for s, d in duplicates[:5])
        raise ValidationError(
            f"Duplicate (symbol, date) keys: {len(duplicates)} found ({preview})"
        )


def check_price_date_monotonicity(panel: pd.DataFrame) -> None:
    """
    Check that dates strictly increase within each symbol in row order.

    Used on panels that claim to be pre-sorted (e.g. loaded from storage).

    Args:
        panel: Price panel with symbol and date columns

    Raises:
        ValidationError: If a symbol's dates repeat or go backwards
    """
    if panel.empty:
        return

    dates = pd.to_datetime(panel['date'])
    frame = pd.DataFrame({'symbol': panel['symbol'].values, 'date': dates.values})

    for symbol, group in frame.groupby('symbol', sort=False):
        if len(group) <= 1:
            continue

        if not group['date'].is_monotonic_increasing or group['date'].duplicated().any():
            raise ValidationError(f"Dates not strictly increasing for symbol {symbol}")
