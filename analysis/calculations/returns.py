"""
Returns calculation utilities.
Pure functions for per-symbol daily returns from lagged adjusted prices.
"""

import math
import numbers
import numpy as np
import pandas as pd
from typing import Tuple


PANEL_COLUMNS = ['symbol', 'date', 'open', 'high', 'low', 'close', 'adjusted', 'volume']


class ReturnsError(Exception):
    """Raised when returns calculation fails."""
    pass


class InvalidPriceError(ReturnsError):
    """Raised when a price is missing, non-finite or non-positive."""
    pass


def _check_price(value, field: str) -> float:
    if value is None or isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidPriceError(f"{field} must be numeric, got {value!r}")

    value = float(value)
    if not math.isfinite(value):
        raise InvalidPriceError(f"{field} must be finite, got {value}")

    if value <= 0:
        raise InvalidPriceError(f"{field} must be positive, got {value}")

    return value


def daily_return(adjusted: float, previous_adjusted: float) -> float:
    """
    Calculate a single daily return in percent.

    Formula: R_t = round((P_t / P_{t-1} - 1) * 100, 2)

    Args:
        adjusted: Adjusted price on day t
        previous_adjusted: Adjusted price of the previous valid record

    Returns:
        Daily return in percent, rounded to 2 decimals (10.0 = +10%)

    Raises:
        InvalidPriceError: If either price is missing, non-finite or <= 0
    """
    current = _check_price(adjusted, 'adjusted')
    previous = _check_price(previous_adjusted, 'previous_adjusted')

    # Same rounding as the vectorized path so both agree to the cent
    return float(np.round((current / previous - 1) * 100, 2))


def percent_change(current: pd.Series, previous: pd.Series) -> pd.Series:
    """
    Vectorized percent change between two aligned price series.

    Positions where the previous price is missing or non-positive yield NaN
    rather than an infinite or negative-base return.

    Args:
        current: Prices at t
        previous: Prices at t-1 (same index as current)

    Returns:
        Series of percent returns rounded to 2 decimals
    """
    current = pd.to_numeric(current, errors='coerce').astype(float)
    previous = pd.to_numeric(previous, errors='coerce').astype(float)

    usable = previous > 0
    ratio = current / previous.where(usable)

    return ((ratio - 1) * 100).round(2)


def invalid_price_mask(panel: pd.DataFrame) -> pd.Series:
    """
    Flag rows whose adjusted price cannot anchor a return.

    Args:
        panel: Price panel with an 'adjusted' column

    Returns:
        Boolean Series, True where adjusted is missing, non-finite or <= 0
    """
    adjusted = pd.to_numeric(panel['adjusted'], errors='coerce').astype(float)
    return adjusted.isna() | ~np.isfinite(adjusted) | (adjusted <= 0)


def split_invalid_prices(panel: pd.DataFrame) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Separate rows with an invalid adjusted price from the rest of the panel.

    Args:
        panel: Price panel

    Returns:
        Tuple of (valid_rows, rejected_rows); rejected rows carry a 'reason'
    """
    mask = invalid_price_mask(panel)

    valid = panel.loc[~mask].copy()
    rejected = panel.loc[mask].copy()
    rejected['reason'] = [_rejection_reason(value) for value in rejected['adjusted'].tolist()]

    return valid, rejected


def _rejection_reason(value) -> str:
    try:
        _check_price(value, 'adjusted')
    except InvalidPriceError as e:
        return f"InvalidPrice: {e}"
    # Numeric text such as '-1' coerces but is still unusable
    return f"InvalidPrice: adjusted={value!r}"


def compute_daily_returns(panel: pd.DataFrame) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Calculate daily returns for every symbol in a price panel.

    Rows are sorted by (symbol, date) and the lag is taken within each
    symbol only. Rows with an invalid adjusted price are removed before
    the lag is taken, so the next valid row uses the last valid price as
    its predecessor.

    Args:
        panel: Price panel with the PANEL_COLUMNS columns

    Returns:
        Tuple of (derived, rejected):
        - derived: panel rows + previous_adjusted, daily_return
        - rejected: rows excluded for an invalid price, with 'reason'

    Raises:
        ReturnsError: If required columns are missing

    Example:
        adjusted [100, 110, 99] for one symbol -> daily_return [NaN, 10.0, -10.0]
    """
    missing = [col for col in PANEL_COLUMNS if col not in panel.columns]
    if missing:
        raise ReturnsError(f"Missing required columns: {missing}")

    # Stable sort keeps input order for any remaining ties
    ordered = panel.sort_values(['symbol', 'date'], kind='mergesort').reset_index(drop=True)

    valid, rejected = split_invalid_prices(ordered)
    valid['adjusted'] = pd.to_numeric(valid['adjusted'], errors='coerce').astype(float)

    valid['previous_adjusted'] = valid.groupby('symbol', sort=False)['adjusted'].shift(1)
    valid['daily_return'] = percent_change(valid['adjusted'], valid['previous_adjusted'])

    return valid.reset_index(drop=True), rejected.reset_index(drop=True)
