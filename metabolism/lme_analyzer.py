# -*- coding: utf-8 -*-
"""
Metabolic Rate Linear Mixed Effects (LME) Analysis Module

This module fits the mixed model for whole-organism metabolic rate and
derives the fixed-effect tables used downstream: coefficients, Type III
ANOVA with partial eta squared, residual diagnostics and variance
components.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple
import logging
import os
import warnings

import numpy as np
import pandas as pd
from scipy import stats

import config
from metabolism.design import TreatmentDesign, drop_aliased_columns

# Statistical packages
try:
    from statsmodels.regression.mixed_linear_model import MixedLM
    from statsmodels.tools.sm_exceptions import ConvergenceWarning
except ImportError:
    raise ImportError("statsmodels is required. Install with: pip install statsmodels")

# Configure logging
logger = logging.getLogger(__name__)

ANOVA_TERMS = ['population', 'temperature', 'population:temperature']


@dataclass(frozen=True)
class FittedModel:
    """Fitted mixed model and every table derived from it."""

    result: Any
    design: TreatmentDesign
    data: pd.DataFrame
    fe_names: Tuple[str, ...]
    dropped_columns: Tuple[str, ...]
    fe_params: pd.Series
    fe_cov: pd.DataFrame
    coefficients: pd.DataFrame
    anova: pd.DataFrame
    diagnostics: pd.DataFrame
    variance_components: pd.DataFrame
    converged: bool
    convergence_warnings: Tuple[str, ...]
    optimizer: str
    df_resid: int
    n_excluded: int

    @property
    def n_obs(self) -> int:
        return int(len(self.data))

    @property
    def icc(self) -> float:
        return float(self.variance_components['proportion'].iloc[0])

    def cell_counts(self) -> pd.DataFrame:
        """Number of complete-case readings in every population x temperature cell."""
        counts = self.data.groupby(['population', 'temperature']).size()
        index = pd.MultiIndex.from_product(
            [self.design.population_levels, self.design.temperature_levels],
            names=['population', 'temperature'],
        )
        return counts.reindex(index, fill_value=0).rename('n_obs').reset_index()

    def encode_kept(self, frame: pd.DataFrame) -> np.ndarray:
        """Design rows for frame restricted to the estimated columns."""
        return self.design.encode(frame)[list(self.fe_names)].to_numpy(dtype=float)


def term_f_test(result: Any, contrast: np.ndarray, n_fe: int) -> Dict[str, float]:
    """
    Wald F test of H0: L beta = 0 on the fixed effects of a fitted MixedLM.

    The contrast is padded with zero columns for the variance parameters
    and handed to result.f_test, whose denominator df is the residual df
    (n - rank X).

    Args:
        result: Fitted statsmodels MixedLMResults
        contrast (np.ndarray): q x n_fe contrast matrix L over the fixed effects
        n_fe (int): Number of fixed effects

    Returns:
        Dict with num_df, den_df, F, p_value, partial_eta_sq
    """
    den_df = int(result.df_resid)
    contrast = np.atleast_2d(contrast)
    if contrast.shape[0] == 0:
        return {'num_df': 0, 'den_df': den_df, 'F': np.nan, 'p_value': np.nan,
                'partial_eta_sq': np.nan}

    r_matrix = np.zeros((contrast.shape[0], len(result.params)))
    r_matrix[:, :n_fe] = contrast
    test = result.f_test(r_matrix)

    num_df = int(test.df_num)
    den_df = int(test.df_denom)
    f_value = float(np.squeeze(test.fvalue))
    partial_eta_sq = f_value * num_df / (f_value * num_df + den_df)
    return {'num_df': num_df, 'den_df': den_df, 'F': f_value,
            'p_value': float(np.squeeze(test.pvalue)), 'partial_eta_sq': partial_eta_sq}


class MetabolicRateLMEAnalyzer:
    """
    Fits the Linear Mixed Effects model for metabolic rate.

    Model:
        rate ~ mass + population * temperature + (1 | hour)

    Fitted by REML with a random intercept for each sampling hour. Factor
    levels are pinned by TreatmentDesign (populations alphabetical,
    temperatures ascending, first level is the reference).

    Attributes:
        data (pd.DataFrame): Complete-case long readings
        design (TreatmentDesign): Fixed-effects encoding
        n_excluded (int): Readings dropped for a missing response or covariate

    Example:
        >>> analyzer = MetabolicRateLMEAnalyzer(prepared.long)
        >>> fitted = analyzer.fit()
        >>> analyzer.export_results(fitted, 'results/lme')
    """

    def __init__(self, data: pd.DataFrame, response: str = config.LME_RESPONSE,
                 covariate: str = config.LME_COVARIATE, group: str = config.LME_GROUP,
                 reml: bool = config.LME_PARAMS['reml'],
                 maxiter: int = config.LME_PARAMS['maxiter'],
                 fallback_methods: List[str] = config.LME_PARAMS['fallback_methods']):
        """
        Initialize LME analyzer.

        Args:
            data (pd.DataFrame): Long readings from MetabolismPreprocessor
            response (str): Response column (default: 'rate')
            covariate (str): Continuous covariate (default: 'mass')
            group (str): Random intercept grouping column (default: 'hour')
            reml (bool): Fit by REML (default: True)
            maxiter (int): Iteration limit per optimizer
            fallback_methods (List[str]): Optimizers tried in turn when the
                statsmodels default raises
        """
        self.response = response
        self.covariate = covariate
        self.group = group
        self.reml = reml
        self.maxiter = maxiter
        self.fallback_methods = list(fallback_methods)
        self.data_raw = data
        self.n_excluded = 0
        self.data = self._prepare_data()
        self.design = TreatmentDesign.from_data(self.data, covariate=covariate)

        logger.info(f"Initialized MetabolicRateLMEAnalyzer with {len(self.data)} readings")
        logger.info(f"  Reference levels: population='{self.design.reference_population}', "
                    f"temperature={self.design.reference_temperature}")

    def _prepare_data(self) -> pd.DataFrame:
        """
        Prepare data for LME analysis.

        Returns:
            pd.DataFrame: Complete cases on response, covariate, factors and
                group, with population as str and temperature as int
        """
        logger.info("Preparing data for LME analysis...")
        required = [self.response, self.covariate, 'population', 'temperature', self.group]
        missing = [col for col in required if col not in self.data_raw.columns]
        if missing:
            raise ValueError(f"Columns missing from model data: {missing}")

        complete = self.data_raw.dropna(subset=required)
        self.n_excluded = int(len(self.data_raw) - len(complete))
        if self.n_excluded > 0:
            logger.warning(f"  Excluded {self.n_excluded} reading(s) with missing "
                           f"{self.response}/{self.covariate} (complete-case analysis)")
        if complete.empty:
            raise ValueError("No complete readings left for model fitting")

        data = complete.copy()
        data['population'] = data['population'].astype(str)
        data['temperature'] = data['temperature'].astype(int)
        data = data.reset_index(drop=True)
        logger.info(f"  {len(data)} readings, {data['population'].nunique()} populations, "
                    f"{data['temperature'].nunique()} temperatures, "
                    f"{data[self.group].nunique()} {self.group} groups")
        return data

    def fit(self) -> FittedModel:
        """
        Fit the mixed model and build all derived tables.

        Returns:
            FittedModel: Frozen bundle of the fit and its tables
        """
        logger.info(f"Fitting {self.response} ~ {self.covariate} + population * temperature "
                    f"+ (1 | {self.group}) (REML={self.reml})")

        exog_full = self.design.encode(self.data)
        exog, dropped = drop_aliased_columns(exog_full)
        endog = self.data[self.response].astype(float)
        groups = self.data[self.group].to_numpy()

        model = MixedLM(endog, exog, groups=groups)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            result, optimizer, failures = self._fit_with_fallback(model)

        warning_messages = tuple(
            str(w.message) for w in caught if issubclass(w.category, ConvergenceWarning)
        )
        for w in caught:
            if not issubclass(w.category, ConvergenceWarning):
                logger.debug(f"  {w.category.__name__}: {w.message}")
        converged = bool(getattr(result, 'converged', True))
        if not converged:
            logger.warning("  Mixed model did not converge; results kept as fitted")
        for message in warning_messages:
            logger.warning(f"  ConvergenceWarning: {message}")
        convergence_messages = tuple(failures) + warning_messages

        fe_names = list(exog.columns)
        n_fe = len(fe_names)
        fe_params = pd.Series(np.asarray(result.fe_params, dtype=float), index=fe_names)
        group_variance = float(np.asarray(result.cov_re)[0, 0])
        scale = float(result.scale)
        fe_cov = pd.DataFrame(np.asarray(result.cov_params())[:n_fe, :n_fe],
                              index=fe_names, columns=fe_names)
        df_resid = int(result.df_resid)

        logger.info(f"  Estimated {len(fe_names)} fixed effects "
                    f"({self.design.expected_parameter_count} in the full design), "
                    f"residual df = {df_resid}")

        coefficients = self.coefficient_table(fe_params, fe_cov)
        anova = self.anova_table(result, fe_names)
        fitted_values = np.asarray(result.fittedvalues, dtype=float)
        residuals = endog.to_numpy() - fitted_values
        diagnostics = self.residual_diagnostics(residuals, fitted_values)
        variance_components = self.variance_component_table(group_variance, scale)

        return FittedModel(
            result=result,
            design=self.design,
            data=self.data,
            fe_names=tuple(fe_names),
            dropped_columns=tuple(dropped),
            fe_params=fe_params,
            fe_cov=fe_cov,
            coefficients=coefficients,
            anova=anova,
            diagnostics=diagnostics,
            variance_components=variance_components,
            converged=converged,
            convergence_warnings=convergence_messages,
            optimizer=optimizer,
            df_resid=df_resid,
            n_excluded=self.n_excluded,
        )

    def _fit_with_fallback(self, model: MixedLM) -> Tuple[Any, str, List[str]]:
        """
        Fit with the statsmodels default optimizer, then each fallback
        optimizer in turn while a fit raises.

        statsmodels only moves to its next optimizer when a fit does not
        converge, so numerical errors are handled here.

        Returns:
            Tuple of (result, optimizer name, messages of the failed attempts)
        """
        failures = []
        for method in [None] + self.fallback_methods:
            name = method or 'default'
            try:
                result = model.fit(reml=self.reml, method=method, maxiter=self.maxiter)
            except (np.linalg.LinAlgError, ValueError) as e:
                message = f"Optimizer '{name}' failed: {type(e).__name__}: {e}"
                logger.warning(f"  {message}")
                failures.append(message)
                continue
            logger.info(f"  Fitted with optimizer '{name}'")
            return result, name, failures

        raise ValueError(f"Mixed model could not be fitted with any optimizer: {'; '.join(failures)}")

    def coefficient_table(self, fe_params: pd.Series, fe_cov: pd.DataFrame) -> pd.DataFrame:
        """
        Fixed-effect estimates with Wald z statistics.

        Returns:
            pd.DataFrame: effect, beta, se, z, p_value, ci_lower, ci_upper
        """
        se = np.sqrt(np.clip(np.diag(fe_cov.to_numpy()), 0, None))
        z = fe_params.to_numpy() / se
        crit = stats.norm.ppf(0.5 + config.CONFIDENCE_LEVEL / 2)
        return pd.DataFrame({
            'effect': fe_params.index,
            'beta': fe_params.to_numpy(),
            'se': se,
            'z': z,
            'p_value': 2 * stats.norm.sf(np.abs(z)),
            'ci_lower': fe_params.to_numpy() - crit * se,
            'ci_upper': fe_params.to_numpy() + crit * se,
        })

    def _observed_cells(self) -> Dict[Tuple[str, int], int]:
        counts = self.data.groupby(['population', 'temperature']).size()
        return {(str(p), int(t)): int(n) for (p, t), n in counts.items()}

    def _type3_contrasts(self, fe_names: List[str]) -> Dict[str, np.ndarray]:
        """
        Contrast matrices of the Type III hypotheses over cell means.

        Main effects compare marginal averages of the cell means, the
        interaction uses double differences against the first level. Only
        populations observed at every temperature enter the factor tests.
        """
        observed = self._observed_cells()
        temps = self.design.temperature_levels
        pops = [p for p in self.design.population_levels
                if all((p, t) in observed for t in temps)]
        if len(pops) < len(self.design.population_levels):
            excluded = sorted(set(self.design.population_levels) - set(pops))
            logger.warning(f"  Populations with empty cells left out of the factor tests: {excluded}")

        mass_value = float(self.data[self.covariate].mean())
        grid = self.design.grid(mass_value)
        rows = self.design.encode(grid)[fe_names].to_numpy(dtype=float)
        cell = {(p, t): rows[i] for i, (p, t) in enumerate(zip(grid['population'], grid['temperature']))}

        k = len(fe_names)
        contrasts = {self.covariate: np.zeros((0, k)), 'population': np.zeros((0, k)),
                     'temperature': np.zeros((0, k)), 'population:temperature': np.zeros((0, k))}
        if self.covariate in fe_names:
            unit = np.zeros((1, k))
            unit[0, fe_names.index(self.covariate)] = 1.0
            contrasts[self.covariate] = unit
        if not pops:
            return contrasts

        pop_means = {p: np.mean([cell[(p, t)] for t in temps], axis=0) for p in pops}
        temp_means = {t: np.mean([cell[(p, t)] for p in pops], axis=0) for t in temps}
        if len(pops) > 1:
            contrasts['population'] = np.array([pop_means[p] - pop_means[pops[0]] for p in pops[1:]])
        if len(temps) > 1:
            contrasts['temperature'] = np.array([temp_means[t] - temp_means[temps[0]] for t in temps[1:]])
        if len(pops) > 1 and len(temps) > 1:
            contrasts['population:temperature'] = np.array([
                cell[(p, t)] - cell[(pops[0], t)] - cell[(p, temps[0])] + cell[(pops[0], temps[0])]
                for p in pops[1:] for t in temps[1:]
            ])
        return contrasts

    def anova_table(self, result: Any, fe_names: List[str]) -> pd.DataFrame:
        """
        Type III Wald F tests with partial eta squared.

        Args:
            result: Fitted MixedLMResults
            fe_names (List[str]): Estimated fixed effects, in exog order

        Returns:
            pd.DataFrame: term, num_df, den_df, F, p_value, partial_eta_sq
        """
        contrasts = self._type3_contrasts(fe_names)
        rows = []
        for term in [self.covariate] + ANOVA_TERMS:
            test = term_f_test(result, contrasts[term], len(fe_names))
            rows.append({'term': term, **test})
            logger.info(f"  {term}: F({test['num_df']}, {test['den_df']}) = {test['F']:.3f}, "
                        f"p = {test['p_value']:.4g}, partial eta^2 = {test['partial_eta_sq']:.3f}")
        return pd.DataFrame(rows, columns=['term', 'num_df', 'den_df', 'F', 'p_value', 'partial_eta_sq'])

    def residual_diagnostics(self, residuals: np.ndarray, fitted: np.ndarray) -> pd.DataFrame:
        """
        Assumption checks on the conditional residuals.

        Reports statistics only; interpretation is left to the reader.

        Returns:
            pd.DataFrame: assumption, test, statistic, p_value
        """
        rows = []

        def pearson(x, y):
            if len(x) < 3 or np.std(x) == 0 or np.std(y) == 0:
                return np.nan, np.nan
            r, p = stats.pearsonr(x, y)
            return float(r), float(p)

        r, p = pearson(residuals, fitted)
        rows.append({'assumption': 'linearity', 'test': 'pearson_r_residual_fitted', 'statistic': r, 'p_value': p})
        r, p = pearson(residuals, self.data[self.covariate].to_numpy(dtype=float))
        rows.append({'assumption': 'linearity', 'test': f'pearson_r_residual_{self.covariate}',
                     'statistic': r, 'p_value': p})

        frame = self.data[['population', 'temperature']].assign(residual=residuals)
        cell_groups = [g['residual'].to_numpy() for _, g in frame.groupby(['population', 'temperature'])
                       if len(g) >= 2]
        if len(cell_groups) >= 2:
            stat, p = stats.levene(*cell_groups, center='median')
            stat, p = float(stat), float(p)
        else:
            stat, p = np.nan, np.nan
        rows.append({'assumption': 'homogeneity', 'test': 'levene_median', 'statistic': stat, 'p_value': p})

        if len(residuals) >= 3:
            stat, p = stats.shapiro(residuals)
            stat, p = float(stat), float(p)
        else:
            stat, p = np.nan, np.nan
        rows.append({'assumption': 'normality', 'test': 'shapiro_wilk', 'statistic': stat, 'p_value': p})
        rows.append({'assumption': 'normality', 'test': 'skewness',
                     'statistic': float(stats.skew(residuals)), 'p_value': np.nan})
        rows.append({'assumption': 'normality', 'test': 'excess_kurtosis',
                     'statistic': float(stats.kurtosis(residuals)), 'p_value': np.nan})

        return pd.DataFrame(rows, columns=['assumption', 'test', 'statistic', 'p_value'])

    def variance_component_table(self, group_variance: float, scale: float) -> pd.DataFrame:
        """Random intercept and residual variance with their share of the total."""
        group_variance = max(group_variance, 0.0)
        total = group_variance + scale
        icc = group_variance / total if total > 0 else np.nan
        logger.info(f"  Variance components: {self.group} = {group_variance:.4g}, "
                    f"residual = {scale:.4g}, ICC = {icc:.3f}")
        return pd.DataFrame({
            'component': [f"{self.group} (intercept)", 'residual'],
            'variance': [group_variance, scale],
            'sd': [np.sqrt(group_variance), np.sqrt(scale)],
            'proportion': [icc, 1 - icc if total > 0 else np.nan],
        })

    def export_results(self, fitted: FittedModel, output_dir: str) -> Dict[str, str]:
        """
        Export LME tables and the model summary.

        Args:
            fitted (FittedModel): Output of fit()
            output_dir (str): Output directory path

        Returns:
            Dict[str, str]: Table name -> written path
        """
        os.makedirs(output_dir, exist_ok=True)

        tables = {
            'coefficients': ('lme_coefficients.csv', fitted.coefficients),
            'anova': ('lme_anova.csv', fitted.anova),
            'diagnostics': ('lme_diagnostics.csv', fitted.diagnostics),
            'variance_components': ('lme_variance_components.csv', fitted.variance_components),
        }
        file_paths = {}
        for key, (filename, table) in tables.items():
            path = os.path.join(output_dir, filename)
            table.to_csv(path, index=False)
            file_paths[key] = path
            logger.info(f"Exported {key} to: {path}")

        summary_path = os.path.join(output_dir, 'lme_summary.txt')
        with open(summary_path, 'w', encoding='utf-8') as f:
            f.write(str(fitted.result.summary()))
            f.write("\n\nType III ANOVA (Wald F, residual df)\n")
            f.write(fitted.anova.to_string(index=False))
            if fitted.dropped_columns:
                f.write(f"\n\nAliased columns dropped: {', '.join(fitted.dropped_columns)}\n")
            if fitted.convergence_warnings:
                f.write("\nConvergence warnings:\n")
                f.write("\n".join(f"  - {m}" for m in fitted.convergence_warnings))
            f.write("\n")
        file_paths['summary'] = summary_path
        logger.info(f"Exported model summary to: {summary_path}")

        return file_paths
