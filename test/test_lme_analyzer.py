"""
Tests for MetabolicRateLMEAnalyzer, its optimizer fallbacks and the Wald F tests.
"""

import logging
import os

import numpy as np
import pandas as pd
import pytest

from metabolism.lme_analyzer import (
    FittedModel,
    MetabolicRateLMEAnalyzer,
    term_f_test,
)
from metabolism.preprocessor import MetabolismPreprocessor
from statsmodels.regression.mixed_linear_model import MixedLM
from conftest import build_long


@pytest.fixture
def fitted(long_data):
    return MetabolicRateLMEAnalyzer(long_data).fit()


class TestFit:
    """Model fit on synthetic readings with known effects."""

    def test_returns_fitted_model(self, fitted, long_data):
        assert isinstance(fitted, FittedModel)
        assert fitted.n_obs == len(long_data)
        assert fitted.n_excluded == 0
        assert len(fitted.fe_names) == 5
        assert fitted.dropped_columns == ()
        assert fitted.df_resid == len(long_data) - 5

    def test_mass_slope_recovered(self, fitted):
        assert abs(fitted.fe_params['mass'] - 2.0) < 0.3

    def test_temperature_effect_recovered(self, fitted):
        assert abs(fitted.fe_params['temperature[T.30]'] - 5.0) < 0.5

    def test_coefficient_table(self, fitted):
        table = fitted.coefficients
        assert list(table['effect']) == list(fitted.fe_names)
        assert (table['se'] > 0).all()
        assert (table['ci_lower'] < table['beta']).all()
        assert (table['beta'] < table['ci_upper']).all()

    def test_covariance_symmetric(self, fitted):
        cov = fitted.fe_cov.to_numpy()
        np.testing.assert_allclose(cov, cov.T, atol=1e-12)
        assert (np.diag(cov) > 0).all()

    def test_missing_rates_excluded(self, long_data):
        gappy = long_data.copy()
        gappy.loc[[0, 7, 19], 'rate'] = np.nan
        fitted = MetabolicRateLMEAnalyzer(gappy).fit()
        assert fitted.n_excluded == 3
        assert fitted.n_obs == len(long_data) - 3

    def test_missing_column_rejected(self, long_data):
        with pytest.raises(ValueError, match='mass'):
            MetabolicRateLMEAnalyzer(long_data.drop(columns=['mass']))

    def test_cell_counts(self, fitted):
        counts = fitted.cell_counts()
        assert len(counts) == 4
        assert (counts['n_obs'] == 15).all()


class TestAnova:
    """Type III Wald F table."""

    def test_terms_and_columns(self, fitted):
        anova = fitted.anova
        assert list(anova['term']) == ['mass', 'population', 'temperature', 'population:temperature']
        assert list(anova.columns) == ['term', 'num_df', 'den_df', 'F', 'p_value', 'partial_eta_sq']
        assert (anova['den_df'] == fitted.df_resid).all()

    def test_strong_effects_significant(self, fitted):
        anova = fitted.anova.set_index('term')
        assert anova.loc['temperature', 'p_value'] < 0.05
        assert anova.loc['mass', 'p_value'] < 0.05

    def test_partial_eta_squared_bounds(self, fitted):
        eta = fitted.anova['partial_eta_sq']
        assert ((eta >= 0) & (eta <= 1)).all()

    def test_three_temperatures(self):
        data = build_long(populations=('A', 'B', 'C'), temperatures=(15, 25, 30))
        fitted = MetabolicRateLMEAnalyzer(data).fit()
        anova = fitted.anova.set_index('term')
        assert anova.loc['population', 'num_df'] == 2
        assert anova.loc['temperature', 'num_df'] == 2
        assert anova.loc['population:temperature', 'num_df'] == 4


class TestTermFTest:
    """Wald F tests computed by the fitted statsmodels result."""

    def test_single_coefficient_matches_squared_z(self, fitted):
        anova = fitted.anova.set_index('term')
        z = fitted.coefficients.set_index('effect').loc['mass', 'z']
        assert anova.loc['mass', 'num_df'] == 1
        assert anova.loc['mass', 'F'] == pytest.approx(z ** 2, rel=1e-6)

    def test_partial_eta_squared_from_f(self, fitted):
        row = fitted.anova.set_index('term').loc['temperature']
        expected = row['F'] * row['num_df'] / (row['F'] * row['num_df'] + row['den_df'])
        assert row['partial_eta_sq'] == pytest.approx(expected)

    def test_empty_contrast(self, fitted):
        k = len(fitted.fe_names)
        test = term_f_test(fitted.result, np.zeros((0, k)), k)
        assert test['num_df'] == 0
        assert test['den_df'] == fitted.df_resid
        assert np.isnan(test['F'])


class TestCovariance:

    def test_standard_errors_match_result(self, fitted):
        se = np.sqrt(np.diag(fitted.fe_cov.to_numpy()))
        np.testing.assert_allclose(se, np.asarray(fitted.result.bse_fe), rtol=1e-8)

    def test_df_resid_is_n_minus_rank(self, fitted):
        assert fitted.df_resid == fitted.n_obs - len(fitted.fe_names)


class TestOptimizers:
    """Default optimizer, fallbacks on numerical errors, non-convergence."""

    def test_default_optimizer_used(self, fitted):
        assert fitted.optimizer == 'default'

    def test_source_layout_fits(self, measurements, climate):
        """Full respirometry layout: four populations, three temperatures."""
        long = MetabolismPreprocessor(measurements, climate).preprocess_all().long
        fitted = MetabolicRateLMEAnalyzer(long).fit()
        assert fitted.n_obs == 144
        assert len(fitted.fe_names) == 13
        assert fitted.dropped_columns == ()
        assert abs(fitted.fe_params['mass'] - 20.0) < 2.0

    def test_raising_optimizer_falls_back(self, long_data, monkeypatch):
        original_fit = MixedLM.fit

        def fit_or_raise(model, *args, **kwargs):
            if kwargs.get('method') is None:
                raise np.linalg.LinAlgError('Singular matrix')
            return original_fit(model, *args, **kwargs)

        monkeypatch.setattr(MixedLM, 'fit', fit_or_raise)
        fitted = MetabolicRateLMEAnalyzer(long_data).fit()
        assert fitted.optimizer == 'powell'
        assert any('Singular matrix' in m for m in fitted.convergence_warnings)
        assert abs(fitted.fe_params['mass'] - 2.0) < 0.3

    def test_every_optimizer_raising_fails(self, long_data, monkeypatch):
        def always_raise(model, *args, **kwargs):
            raise np.linalg.LinAlgError('Singular matrix')

        monkeypatch.setattr(MixedLM, 'fit', always_raise)
        with pytest.raises(ValueError, match='any optimizer'):
            MetabolicRateLMEAnalyzer(long_data).fit()

    def test_non_convergence_kept_and_reported(self, long_data, caplog):
        with caplog.at_level(logging.WARNING, logger='metabolism.lme_analyzer'):
            fitted = MetabolicRateLMEAnalyzer(long_data, maxiter=1).fit()
        assert fitted.converged is False
        assert len(fitted.convergence_warnings) > 0
        assert len(fitted.fe_params) == 5
        assert any(record.levelno == logging.WARNING and 'did not converge' in record.getMessage()
                   for record in caplog.records)


class TestTables:

    def test_diagnostics_rows(self, fitted):
        tests = list(fitted.diagnostics['test'])
        assert tests == ['pearson_r_residual_fitted', 'pearson_r_residual_mass', 'levene_median',
                         'shapiro_wilk', 'skewness', 'excess_kurtosis']

    def test_variance_components(self, fitted):
        vc = fitted.variance_components
        assert list(vc['component']) == ['hour (intercept)', 'residual']
        assert vc['proportion'].sum() == pytest.approx(1.0)
        assert 0.0 <= fitted.icc <= 1.0

    def test_export(self, fitted, long_data, tmp_path):
        analyzer = MetabolicRateLMEAnalyzer(long_data)
        paths = analyzer.export_results(fitted, str(tmp_path / 'lme'))
        assert set(paths) == {'coefficients', 'anova', 'diagnostics', 'variance_components', 'summary'}
        for path in paths.values():
            assert os.path.exists(path)
        anova = pd.read_csv(paths['anova'])
        assert len(anova) == 4
