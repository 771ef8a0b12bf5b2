"""
Tests for data quality guardrails.
"""

import pytest
import warnings
import pandas as pd

from analysis.calculations.returns import compute_daily_returns
from analysis.guardrails import (
    validate_sufficient_history,
    detect_partial_periods,
    validate_price_data_integrity,
    run_all_guardrails,
    DataQualityError,
    DataQualityWarning
)


def make_panel(symbol, n, start='2024-01-02', price=100.0):
    return pd.DataFrame({
        'symbol': symbol,
        'date': pd.bdate_range(start, periods=n),
        'open': price,
        'high': price + 1,
        'low': price - 1,
        'close': price,
        'adjusted': price,
        'volume': 1000.0
    })


class TestSufficientHistory:
    """Tests for validate_sufficient_history."""

    def test_sufficient(self):
        derived, _ = compute_daily_returns(make_panel('AAPL', 31))

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            sufficient, insufficient = validate_sufficient_history(derived, 30)

        assert not [w for w in caught if issubclass(w.category, DataQualityWarning)]

        assert sufficient == ['AAPL']
        assert insufficient == []

    def test_insufficient_warns(self):
        panel = pd.concat([make_panel('AAPL', 31), make_panel('MSFT', 30)])
        derived, _ = compute_daily_returns(panel)

        with pytest.warns(DataQualityWarning, match="MSFT"):
            sufficient, insufficient = validate_sufficient_history(derived, 30)

        assert sufficient == ['AAPL']
        assert insufficient == ['MSFT']

    def test_empty_raises(self):
        derived, _ = compute_daily_returns(make_panel('AAPL', 0))

        with pytest.raises(DataQualityError, match="No valid price rows"):
            validate_sufficient_history(derived, 30)


class TestPartialPeriods:

    def test_boundary_months_flagged(self):
        # Starts mid-January, ends early March
        derived, _ = compute_daily_returns(make_panel('AAPL', 35, start='2024-01-22'))

        partial = detect_partial_periods(derived)

        assert [(p['month'], p['position']) for p in partial] == [(1, 'first'), (3, 'last')]
        assert partial[0]['trading_days'] == 8

    def test_full_months_not_flagged(self):
        derived, _ = compute_daily_returns(make_panel('AAPL', 23, start='2024-01-01'))

        assert detect_partial_periods(derived) == []


class TestPriceIntegrity:
    """Tests for validate_price_data_integrity."""

    def test_clean_panel(self):
        assert validate_price_data_integrity(make_panel('AAPL', 5)) == []

    def test_large_move_within_symbol(self):
        panel = make_panel('AAPL', 3)
        panel.loc[2, 'close'] = 150.0
        panel.loc[2, 'high'] = 151.0

        issues = validate_price_data_integrity(panel)

        assert issues == ["Large price movement for AAPL on 2024-01-04"]

    def test_symbol_boundary_is_not_a_move(self):
        panel = pd.concat([make_panel('AAPL', 2), make_panel('MSFT', 2, price=400.0)])

        assert validate_price_data_integrity(panel) == []

    def test_volume_and_price_logic(self):
        panel = make_panel('AAPL', 3)
        panel.loc[0, 'volume'] = 0.0
        panel.loc[1, 'volume'] = -5.0
        panel.loc[2, 'high'] = 90.0

        issues = validate_price_data_integrity(panel)

        assert "Zero volume detected on 1 rows" in issues
        assert "Negative volume detected on 1 rows" in issues
        assert "Price logic violations found on 1 rows" in issues


class TestRunAllGuardrails:

    def test_compiles_warnings(self):
        panel = make_panel('AAPL', 10)
        panel.loc[4, 'adjusted'] = -1.0
        derived, rejected = compute_daily_returns(panel)

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            results = run_all_guardrails(panel, derived, rejected, window=30)

        assert not [w for w in caught if issubclass(w.category, DataQualityWarning)]

        assert results['checks']['sufficient_history']['insufficient_symbols'] == ['AAPL']
        assert results['checks']['rejected_rows'] == 1
        assert "1 rows excluded for invalid prices" in results['warnings']

    def test_no_valid_rows(self):
        panel = make_panel('AAPL', 3, price=-1.0)
        derived, rejected = compute_daily_returns(panel)

        with pytest.raises(DataQualityError):
            run_all_guardrails(panel, derived, rejected, window=30)
