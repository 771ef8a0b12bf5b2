"""
Tests for correlation utilities.
Feature table assembly, complete-case filtering, pooled matrix and long form.
"""

import math
import pytest
import numpy as np
import pandas as pd

from analysis.calculations.returns import compute_daily_returns
from analysis.calculations.volatility import compute_rolling_stats, WindowAlignment
from analysis.calculations.correlation import (
    build_feature_table,
    complete_cases,
    correlation_matrix,
    melt_correlation,
    symbol_return_correlation,
    CorrelationError,
    FEATURE_COLUMNS,
    LONG_FORM_COLUMNS
)


def make_panel(symbol, n, seed):
    """Random-walk panel with varying volume so every feature has variance."""
    rng = np.random.default_rng(seed)
    close = 100.0 * np.cumprod(1 + rng.normal(0, 0.01, n))
    spread = rng.uniform(0.5, 2.0, n)
    return pd.DataFrame({
        'symbol': symbol,
        'date': pd.bdate_range('2024-01-02', periods=n),
        'open': close,
        'high': close + spread,
        'low': close - spread,
        'close': close,
        'adjusted': close,
        'volume': rng.integers(1_000, 10_000, n).astype(float)
    })


@pytest.fixture
def features():
    panel = pd.concat([make_panel('AAPL', 60, 1), make_panel('MSFT', 60, 2)])
    derived, _ = compute_daily_returns(panel)
    trailing = compute_rolling_stats(derived, window=5)
    return build_feature_table(derived, trailing)


class TestFeatureTable:
    """Tests for build_feature_table."""

    def test_columns_and_range(self, features):
        assert list(features.columns) == ['symbol', 'date'] + list(FEATURE_COLUMNS)
        assert len(features) == 120
        assert (features['daily_range'] > 0).all()

    def test_rejects_centered_rolling(self):
        panel = make_panel('AAPL', 10, 3)
        derived, _ = compute_daily_returns(panel)
        centered = compute_rolling_stats(derived, window=3, alignment=WindowAlignment.CENTERED)

        with pytest.raises(CorrelationError, match="trailing"):
            build_feature_table(derived, centered)

    def test_missing_columns(self):
        rolling = pd.DataFrame(columns=['symbol', 'date', 'rolling_volume', 'rolling_volatility'])

        with pytest.raises(CorrelationError, match="Missing required columns"):
            build_feature_table(pd.DataFrame({'symbol': [], 'date': []}), rolling)


class TestCompleteCases:

    def test_no_nulls_remain(self, features):
        complete = complete_cases(features)

        assert not complete[list(FEATURE_COLUMNS)].isna().any().any()
        # Each symbol loses its first 5 rows (first return null, then window fill)
        assert len(complete) == 2 * (60 - 5)

    def test_missing_feature_column(self, features):
        with pytest.raises(CorrelationError):
            complete_cases(features.drop(columns=['volume']))


class TestCorrelationMatrix:
    """Tests for the pooled Pearson matrix."""

    def test_symmetric_unit_diagonal(self, features):
        matrix = correlation_matrix(features)

        assert list(matrix.index) == list(FEATURE_COLUMNS)
        assert list(matrix.columns) == list(FEATURE_COLUMNS)
        assert np.array_equal(matrix.to_numpy(), matrix.to_numpy().T)
        assert (np.diag(matrix.to_numpy()) == 1.0).all()
        assert ((matrix.abs() <= 1.0) | matrix.isna()).all().all()

    def test_matches_pandas_pearson(self, features):
        matrix = correlation_matrix(features)
        expected = complete_cases(features)[list(FEATURE_COLUMNS)].corr()

        assert matrix.loc['volume', 'daily_return'] == pytest.approx(
            expected.loc['volume', 'daily_return']
        )

    def test_zero_variance_feature_is_nan(self, features):
        features = features.copy()
        features['volume'] = 5000.0

        matrix = correlation_matrix(features)

        assert math.isnan(matrix.loc['volume', 'close'])
        assert math.isnan(matrix.loc['close', 'volume'])
        assert matrix.loc['volume', 'volume'] == 1.0

    def test_too_few_rows(self, features):
        matrix = correlation_matrix(features.iloc[:6])

        off_diagonal = matrix.to_numpy()[~np.eye(len(FEATURE_COLUMNS), dtype=bool)]
        assert np.isnan(off_diagonal).all()
        assert (np.diag(matrix.to_numpy()) == 1.0).all()


class TestMeltCorrelation:

    def test_long_form_has_only_feature_pairs(self, features):
        long = melt_correlation(correlation_matrix(features))

        assert list(long.columns) == LONG_FORM_COLUMNS
        assert len(long) == len(FEATURE_COLUMNS) ** 2
        assert set(long['row_feature']) == set(FEATURE_COLUMNS)
        assert set(long['col_feature']) == set(FEATURE_COLUMNS)

    def test_long_form_values_match_matrix(self, features):
        matrix = correlation_matrix(features)
        long = melt_correlation(matrix)

        cell = long[(long['row_feature'] == 'close') & (long['col_feature'] == 'volume')]
        assert cell['value'].iloc[0] == matrix.loc['close', 'volume']

    def test_non_square_rejected(self):
        with pytest.raises(CorrelationError):
            melt_correlation(pd.DataFrame([[1.0, 0.5]], index=['a'], columns=['a', 'b']))


class TestSymbolReturnCorrelation:
    """Tests for symbol-vs-symbol return correlation."""

    def test_identical_series_fully_correlated(self):
        a = make_panel('AAPL', 30, 7)
        b = a.assign(symbol='MSFT', adjusted=a['adjusted'] * 2)
        derived, _ = compute_daily_returns(pd.concat([a, b]))

        result = symbol_return_correlation(derived)

        assert list(result.index) == ['AAPL', 'MSFT']
        assert result.loc['AAPL', 'MSFT'] == pytest.approx(1.0, abs=1e-3)
        assert result.loc['AAPL', 'MSFT'] == result.loc['MSFT', 'AAPL']
