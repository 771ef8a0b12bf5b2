"""
Tests for panel validators - schema checks that fail fast.
"""

import pytest
import numpy as np
import pandas as pd

from ingestion.transforms.validators import (
    validate_panel_schema,
    find_duplicate_keys,
    check_price_date_monotonicity,
    ValidationError,
    REQUIRED_COLUMNS
)


@pytest.fixture
def valid_panel():
    return pd.DataFrame({
        'symbol': ['AAPL', 'AAPL', 'MSFT'],
        'date': pd.to_datetime(['2024-01-02', '2024-01-03', '2024-01-02']),
        'open': [185.0, 184.2, 370.9],
        'high': [186.8, 185.9, 373.3],
        'low': [183.4, 183.1, 369.0],
        'close': [185.6, 184.3, 370.6],
        'adjusted': [184.9, 183.6, 368.4],
        'volume': [82488700.0, 58414500.0, 25258600.0]
    })


class TestValidatePanelSchema:
    """Tests for validate_panel_schema."""

    def test_valid_panel_passes(self, valid_panel):
        validate_panel_schema(valid_panel)

    def test_row_level_bad_price_passes(self, valid_panel):
        """Non-positive prices are handled per row downstream."""
        valid_panel.loc[1, 'adjusted'] = -1.0
        valid_panel.loc[2, 'close'] = np.nan

        validate_panel_schema(valid_panel)

    @pytest.mark.parametrize('column', REQUIRED_COLUMNS)
    def test_missing_column(self, valid_panel, column):
        with pytest.raises(ValidationError, match=f"Missing required columns: \\['{column}'\\]"):
            validate_panel_schema(valid_panel.drop(columns=[column]))

    def test_not_a_dataframe(self):
        with pytest.raises(ValidationError, match="must be a DataFrame"):
            validate_panel_schema([{'symbol': 'AAPL'}])

    def test_empty_panel(self):
        with pytest.raises(ValidationError, match="Price panel is empty"):
            validate_panel_schema(pd.DataFrame(columns=REQUIRED_COLUMNS))

    def test_missing_symbol(self, valid_panel):
        valid_panel.loc[0, 'symbol'] = None

        with pytest.raises(ValidationError, match="symbol missing on 1 rows"):
            validate_panel_schema(valid_panel)

    def test_blank_symbol(self, valid_panel):
        valid_panel.loc[0, 'symbol'] = '  '

        with pytest.raises(ValidationError, match="non-empty"):
            validate_panel_schema(valid_panel)

    def test_unparseable_date(self, valid_panel):
        valid_panel['date'] = ['2024-01-02', 'not-a-date', '2024-01-02']

        with pytest.raises(ValidationError, match="Unparseable or missing dates"):
            validate_panel_schema(valid_panel)

    def test_non_numeric_column(self, valid_panel):
        valid_panel['volume'] = ['lots', 'many', 'few']

        with pytest.raises(ValidationError, match="volume must be numeric"):
            validate_panel_schema(valid_panel)

    def test_numeric_text_column_passes(self, valid_panel):
        valid_panel['volume'] = ['100', '200', 'n/a']

        validate_panel_schema(valid_panel)

    def test_duplicate_keys(self, valid_panel):
        duplicated = pd.concat([valid_panel, valid_panel.iloc[[0]]], ignore_index=True)

        with pytest.raises(ValidationError, match="Duplicate \\(symbol, date\\) keys: 1 found \\(AAPL@2024-01-02\\)"):
            validate_panel_schema(duplicated)


class TestFindDuplicateKeys:

    def test_no_duplicates(self, valid_panel):
        assert find_duplicate_keys(valid_panel) == []

    def test_string_and_datetime_dates_collide(self, valid_panel):
        extra = valid_panel.iloc[[2]].assign(date='2024-01-02')
        panel = pd.concat([valid_panel, extra], ignore_index=True)

        assert find_duplicate_keys(panel) == [('MSFT', '2024-01-02')]


class TestDateMonotonicity:

    def test_sorted_passes(self, valid_panel):
        check_price_date_monotonicity(valid_panel)

    def test_backwards_dates(self, valid_panel):
        reversed_panel = valid_panel.iloc[[1, 0, 2]].reset_index(drop=True)

        with pytest.raises(ValidationError, match="AAPL"):
            check_price_date_monotonicity(reversed_panel)

    def test_empty_passes(self):
        check_price_date_monotonicity(pd.DataFrame(columns=['symbol', 'date']))
