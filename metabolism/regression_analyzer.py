# -*- coding: utf-8 -*-
"""
Cross-Domain Regression Analyzer Module

This module relates the physiological domain (marginal-mean metabolic rate
per population) to the environmental domain (climate PCA scores per
population): one simple linear regression per assay temperature and
component. No multiple-comparison correction is applied across the
temperature x component family; p-values are reported as fitted.
"""

from dataclasses import dataclass
from typing import Dict, Sequence
import logging
from pathlib import Path

import numpy as np
import pandas as pd
import statsmodels.api as sm
from joblib import Parallel, delayed

import config

logger = logging.getLogger(__name__)

RESULT_COLUMNS = ['temperature', 'component', 'slope', 'slope_se', 'intercept', 'ci_lower',
                  'ci_upper', 'r_squared', 'adj_r_squared', 'p_value', 'aic', 'df_resid', 'n_obs']

MIN_REGRESSION_OBSERVATIONS = 3


@dataclass(frozen=True)
class RegressionResults:
    """Per temperature x component regression table and the data it was fitted on."""

    table: pd.DataFrame
    data: pd.DataFrame
    components: tuple


def fit_simple_regression(data: pd.DataFrame, temperature, component: str,
                          confidence_level: float = config.CONFIDENCE_LEVEL) -> Dict:
    """
    Fit emmean ~ component for one assay temperature.

    Args:
        data (pd.DataFrame): Merged table with emmean and component scores
        temperature: Assay temperature to select
        component (str): Score column used as predictor
        confidence_level (float): Coverage of the slope interval

    Returns:
        Dict with the RESULT_COLUMNS fields (NaN statistics when fewer
        than three populations are available)
    """
    subset = data[(data['temperature'] == temperature)
                  & data['emmean'].notna() & data[component].notna()]
    y = subset['emmean'].to_numpy(dtype=float)
    X = subset[component].to_numpy(dtype=float)
    n_obs = len(y)

    row = {col: np.nan for col in RESULT_COLUMNS}
    row.update({'temperature': temperature, 'component': component, 'n_obs': n_obs})

    if n_obs < MIN_REGRESSION_OBSERVATIONS:
        logger.warning(f"Too few populations for emmean ~ {component} at {temperature} C: N={n_obs}")
        return row

    model = sm.OLS(y, sm.add_constant(X, has_constant='add')).fit()
    conf_int = model.conf_int(alpha=1 - confidence_level)
    row.update({
        'slope': model.params[1],
        'slope_se': model.bse[1],
        'intercept': model.params[0],
        'ci_lower': conf_int[1, 0],
        'ci_upper': conf_int[1, 1],
        'r_squared': model.rsquared,
        'adj_r_squared': model.rsquared_adj,
        'p_value': model.pvalues[1],
        'aic': model.aic,
        'df_resid': int(model.df_resid),
    })
    return row


class CrossDomainRegressionAnalyzer:
    """
    Regresses marginal-mean metabolic rates on climate PCA scores.

    Attributes:
        marginal_means (pd.DataFrame): population, temperature, emmean
        pc_scores (pd.DataFrame): Component scores indexed by population
        components (tuple): Score columns used as predictors
        n_jobs (int): joblib workers (1 runs sequentially)

    Example:
        >>> analyzer = CrossDomainRegressionAnalyzer(emm.estimates, pca.scores)
        >>> results = analyzer.fit_all()
        >>> results.table[['temperature', 'component', 'slope', 'r_squared']]
    """

    def __init__(self, marginal_means: pd.DataFrame, pc_scores: pd.DataFrame,
                 components: Sequence[str] = ('PC1', 'PC2'), n_jobs: int = config.N_JOBS):
        missing = [c for c in components if c not in pc_scores.columns]
        if missing:
            raise ValueError(f"Components not found in PC scores: {missing}")
        self.marginal_means = marginal_means
        self.pc_scores = pc_scores
        self.components = tuple(components)
        self.n_jobs = n_jobs
        self.data = None
        logger.info(f"Initialized CrossDomainRegressionAnalyzer: components {list(self.components)}, "
                    f"n_jobs={n_jobs}")

    def merge_data(self) -> pd.DataFrame:
        """
        Join every (population, temperature) marginal mean with its population's scores.

        Returns:
            pd.DataFrame: population, temperature, emmean, <components>
        """
        scores = self.pc_scores[list(self.components)].copy()
        scores.index = scores.index.astype(str)
        scores = scores.rename_axis('population').reset_index()

        emm = self.marginal_means[['population', 'temperature', 'emmean']].copy()
        emm['population'] = emm['population'].astype(str)

        without_scores = sorted(set(emm['population']) - set(scores['population']))
        if without_scores:
            logger.warning(f"  Populations without climate scores dropped from regressions: {without_scores}")

        merged = emm.merge(scores, on='population', how='inner', validate='many_to_one')
        merged = merged.sort_values(['temperature', 'population'], kind='mergesort').reset_index(drop=True)
        logger.info(f"  Merged {len(merged)} population x temperature rows "
                    f"({merged['population'].nunique()} populations)")
        return merged

    def fit_regression(self, temperature, component: str) -> Dict:
        """Fit one temperature x component regression."""
        if self.data is None:
            self.data = self.merge_data()
        return fit_simple_regression(self.data, temperature, component)

    def fit_all(self) -> RegressionResults:
        """
        Fit every temperature x component regression.

        The fits are independent and run through joblib.

        Returns:
            RegressionResults: Frozen result bundle
        """
        logger.info("Performing regression analysis: emmean ~ PC per temperature...")
        data = self.data = self.merge_data()
        tasks = [(t, c) for t in sorted(data['temperature'].unique()) for c in self.components]

        rows = Parallel(n_jobs=self.n_jobs)(
            delayed(fit_simple_regression)(data, t, c) for t, c in tasks
        )
        table = pd.DataFrame(rows, columns=RESULT_COLUMNS)

        n_sig = int((table['p_value'] < config.ALPHA).sum())
        logger.info(f"Fitted {int(table['slope'].notna().sum())}/{len(table)} regression models; "
                    f"{n_sig} with p < {config.ALPHA} (uncorrected)")
        return RegressionResults(table=table, data=data, components=self.components)

    def export_results(self, results: RegressionResults, output_dir: str) -> Dict[str, str]:
        """
        Export regression results to CSV files.

        Returns:
            Dictionary mapping file types to file paths
        """
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        file_paths = {}
        reg_path = output_path / 'regression_results.csv'
        results.table.to_csv(reg_path, index=False)
        file_paths['regression_results'] = str(reg_path)
        logger.info(f"Exported regression results to {reg_path}")

        data_path = output_path / 'regression_data.csv'
        results.data.to_csv(data_path, index=False)
        file_paths['regression_data'] = str(data_path)
        logger.info(f"Exported regression data to {data_path}")

        return file_paths
