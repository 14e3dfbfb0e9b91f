"""
Tests for the APA formatting helpers.
"""

import numpy as np

from metabolism.reporter import (
    format_anova_row,
    format_p_value,
    format_regression_result,
)


class TestFormatPValue:

    def test_small(self):
        assert format_p_value(0.0001) == 'p < .001'

    def test_regular(self):
        assert format_p_value(0.025) == 'p = .025'
        assert format_p_value(0.5) == 'p = .500'

    def test_one(self):
        assert format_p_value(1.0) == 'p = 1.000'

    def test_missing(self):
        assert format_p_value(np.nan) == 'p = n/a'
        assert format_p_value(None) == 'p = n/a'


class TestFormatRows:

    def test_anova_row(self):
        row = {'term': 'temperature', 'num_df': 2, 'den_df': 120, 'F': 85.3,
               'p_value': 1e-20, 'partial_eta_sq': 0.587}
        assert format_anova_row(row) == 'temperature: F(2, 120) = 85.30, p < .001, ηp² = .59'

    def test_anova_row_untestable(self):
        row = {'term': 'population', 'num_df': 0, 'den_df': 50, 'F': np.nan,
               'p_value': np.nan, 'partial_eta_sq': np.nan}
        assert format_anova_row(row) == 'population: F(0, 50) = n/a, p = n/a, ηp² = n/a'

    def test_regression_row(self):
        row = {'slope': 1.5, 'ci_lower': 0.4, 'ci_upper': 2.6, 'r_squared': 0.41,
               'adj_r_squared': 0.36, 'p_value': 0.012, 'n_obs': 14}
        expected = 'b = 1.50, 95% CI [0.40, 2.60], R² = .41, adj. R² = .36, p = .012, N = 14'
        assert format_regression_result(row) == expected

    def test_regression_row_not_estimated(self):
        row = {'slope': np.nan, 'n_obs': 2}
        assert format_regression_result(row) == 'not estimated (N = 2)'

    def test_r_squared_of_one_keeps_leading_digit(self):
        row = {'slope': 10.05, 'ci_lower': 10.0, 'ci_upper': 10.1, 'r_squared': 1.0,
               'adj_r_squared': 1.0, 'p_value': 1e-6, 'n_obs': 5}
        assert 'R² = 1.00' in format_regression_result(row)
        assert 'b = 10.05' in format_regression_result(row)
