# -*- coding: utf-8 -*-
"""
Estimated Marginal Means Module

This module computes model-implied mean metabolic rates for every
population x temperature cell (mass held at its mean), pairwise population
comparisons within each temperature adjusted for multiplicity, and the
comparison arrows whose non-overlap reproduces those adjusted decisions.
"""

from dataclasses import dataclass
from itertools import combinations
from typing import Dict, Tuple
import logging
import os

import numpy as np
import pandas as pd
from scipy import stats

import config
from metabolism.lme_analyzer import FittedModel

logger = logging.getLogger(__name__)

ADJUSTMENTS = ('tukey', 'bonferroni', 'none')


@dataclass(frozen=True)
class MarginalMeans:
    """Cell estimates with comparison arrows and the pairwise table."""

    estimates: pd.DataFrame
    pairwise: pd.DataFrame
    mass_reference: float
    confidence_level: float
    adjust: str


class MarginalMeansAnalyzer:
    """
    Computes estimated marginal means from a fitted mixed model.

    Standard errors use the fixed-effect covariance of the fit and
    t-based intervals use the residual degrees of freedom of the model.

    Attributes:
        fitted (FittedModel): Output of MetabolicRateLMEAnalyzer.fit()
        confidence_level (float): Coverage of every interval
        adjust (str): 'tukey', 'bonferroni' or 'none'
        min_cell_observations (int): Cells below this count get no
            comparison arrow

    Example:
        >>> analyzer = MarginalMeansAnalyzer(fitted)
        >>> emm = analyzer.compute_all()
        >>> emm.estimates[['population', 'temperature', 'emmean', 'lcmpl', 'ucmpl']]
    """

    def __init__(self, fitted: FittedModel,
                 confidence_level: float = config.CONFIDENCE_LEVEL,
                 adjust: str = config.PAIRWISE_ADJUSTMENT,
                 min_cell_observations: int = config.MIN_CELL_OBSERVATIONS):
        if adjust not in ADJUSTMENTS:
            raise ValueError(f"Unknown adjustment '{adjust}'. Expected one of {ADJUSTMENTS}")
        if not 0 < confidence_level < 1:
            raise ValueError(f"confidence_level must be in (0, 1), got {confidence_level}")

        self.fitted = fitted
        self.confidence_level = confidence_level
        self.adjust = adjust
        self.min_cell_observations = min_cell_observations
        self.df = fitted.df_resid
        self.beta = fitted.fe_params.to_numpy()
        self.cov = fitted.fe_cov.to_numpy()
        self.mass_reference = float(fitted.data[fitted.design.covariate].mean())

        logger.info(f"Initialized MarginalMeansAnalyzer ({adjust} adjustment, "
                    f"{confidence_level:.0%} intervals, {fitted.design.covariate} = {self.mass_reference:.4g})")

    def reference_grid(self) -> pd.DataFrame:
        """
        Every population x temperature cell at the reference mass.

        Returns:
            pd.DataFrame: population, temperature, mass, n_obs
        """
        grid = self.fitted.design.grid(self.mass_reference)
        counts = self.fitted.cell_counts()
        return grid.merge(counts, on=['population', 'temperature'], how='left')

    def compute_estimates(self) -> Tuple[pd.DataFrame, np.ndarray]:
        """
        Marginal mean, standard error and confidence interval per cell.

        Cells without observations are not estimable and get NaN.

        Returns:
            Tuple of (estimates DataFrame, design rows of the grid)
        """
        grid = self.reference_grid()
        rows = self.fitted.encode_kept(grid)

        emmean = rows @ self.beta
        se = np.sqrt(np.clip(np.einsum('ij,jk,ik->i', rows, self.cov, rows), 0, None))
        crit = stats.t.ppf(0.5 + self.confidence_level / 2, self.df)

        empty = grid['n_obs'].to_numpy() == 0
        if empty.any():
            cells = list(zip(grid.loc[empty, 'population'], grid.loc[empty, 'temperature']))
            logger.warning(f"  Non-estimable marginal means for empty cells: {cells}")
            emmean = np.where(empty, np.nan, emmean)
            se = np.where(empty, np.nan, se)

        estimates = pd.DataFrame({
            'population': grid['population'],
            'temperature': grid['temperature'],
            'n_obs': grid['n_obs'].astype(int),
            'emmean': emmean,
            'se': se,
            'df': self.df,
            'lower_cl': emmean - crit * se,
            'upper_cl': emmean + crit * se,
        })
        logger.info(f"  Computed {int(np.isfinite(emmean).sum())}/{len(estimates)} marginal means")
        return estimates, rows

    def _adjusted(self, t_ratio: np.ndarray, n_means: int) -> Tuple[np.ndarray, float]:
        """
        Adjusted p-values and critical value for one family of comparisons.

        Args:
            t_ratio (np.ndarray): t statistics of the family
            n_means (int): Number of means compared in the family

        Returns:
            Tuple of (adjusted p-values, critical value for the half-width)
        """
        alpha = 1 - self.confidence_level
        abs_t = np.abs(t_ratio)
        if self.adjust == 'tukey' and n_means >= 2:
            crit = stats.studentized_range.ppf(self.confidence_level, n_means, self.df) / np.sqrt(2)
            p_adj = stats.studentized_range.sf(abs_t * np.sqrt(2), n_means, self.df)
        elif self.adjust == 'bonferroni':
            n_tests = max(len(t_ratio), 1)
            crit = stats.t.ppf(1 - alpha / (2 * n_tests), self.df)
            p_adj = np.minimum(1.0, n_tests * 2 * stats.t.sf(abs_t, self.df))
        else:
            crit = stats.t.ppf(1 - alpha / 2, self.df)
            p_adj = 2 * stats.t.sf(abs_t, self.df)
        return np.clip(np.asarray(p_adj, dtype=float), 0.0, 1.0), float(crit)

    def compute_pairwise(self, estimates: pd.DataFrame, rows: np.ndarray) -> pd.DataFrame:
        """
        All population pairs within each temperature.

        Returns:
            pd.DataFrame: temperature, contrast, population_1, population_2,
                estimate, se, df, t_ratio, p_value, lower_cl, upper_cl,
                half_width
        """
        records = []
        for temperature, block in estimates.groupby('temperature', sort=True):
            block = block[block['emmean'].notna()]
            if len(block) < 2:
                continue
            pairs = list(combinations(block.index, 2))
            diffs = np.array([rows[i] - rows[j] for i, j in pairs])
            estimate = diffs @ self.beta
            se = np.sqrt(np.einsum('ij,jk,ik->i', diffs, self.cov, diffs))
            with np.errstate(divide='ignore', invalid='ignore'):
                t_ratio = estimate / se
            p_adj, crit = self._adjusted(t_ratio, len(block))

            for (i, j), est, s, t_val, p in zip(pairs, estimate, se, t_ratio, p_adj):
                pop_1 = estimates.at[i, 'population']
                pop_2 = estimates.at[j, 'population']
                records.append({
                    'temperature': temperature,
                    'contrast': f"{pop_1} - {pop_2}",
                    'population_1': pop_1,
                    'population_2': pop_2,
                    'estimate': est,
                    'se': s,
                    'df': self.df,
                    't_ratio': t_val,
                    'p_value': p,
                    'lower_cl': est - crit * s,
                    'upper_cl': est + crit * s,
                    'half_width': crit * s,
                })

        columns = ['temperature', 'contrast', 'population_1', 'population_2', 'estimate', 'se',
                   'df', 't_ratio', 'p_value', 'lower_cl', 'upper_cl', 'half_width']
        pairwise = pd.DataFrame(records, columns=columns)
        n_sig = int((pairwise['p_value'] < 1 - self.confidence_level).sum())
        logger.info(f"  {len(pairwise)} pairwise comparisons ({self.adjust}), {n_sig} significant")
        return pairwise

    def compute_comparison_arrows(self, estimates: pd.DataFrame,
                                  pairwise: pd.DataFrame) -> pd.DataFrame:
        """
        Comparison arrow bounds per cell.

        Within a temperature the arrow half-lengths L solve, in the least
        squares sense, L_i + L_j = adjusted half-width of the (i, j)
        difference. Cells with fewer than min_cell_observations readings
        get undefined bounds, and an undefined bound is replaced by the
        point estimate so the arrow has zero width.

        Returns:
            pd.DataFrame: estimates plus lcmpl, ucmpl, comparison_defined
        """
        lengths = pd.Series(np.nan, index=estimates.index)

        for temperature, block in estimates.groupby('temperature', sort=True):
            eligible = block[(block['n_obs'] >= self.min_cell_observations) & block['emmean'].notna()]
            sparse = block[(block['n_obs'] < self.min_cell_observations) & block['emmean'].notna()]
            if len(sparse):
                logger.warning(f"  Temperature {temperature}: comparison interval undefined for sparse "
                               f"cell(s) {sparse['population'].tolist()}; bound set to the estimate")
            if len(eligible) < 2:
                if len(eligible):
                    logger.warning(f"  Temperature {temperature}: fewer than two comparable "
                                   f"populations, no comparison arrows")
                continue

            position = {pop: k for k, pop in enumerate(eligible['population'])}
            family = pairwise[
                (pairwise['temperature'] == temperature)
                & pairwise['population_1'].isin(position)
                & pairwise['population_2'].isin(position)
            ]
            incidence = np.zeros((len(family), len(position)))
            for r, (pop_1, pop_2) in enumerate(zip(family['population_1'], family['population_2'])):
                incidence[r, position[pop_1]] = 1.0
                incidence[r, position[pop_2]] = 1.0
            solved, _, _, _ = np.linalg.lstsq(incidence, family['half_width'].to_numpy(), rcond=None)

            if (solved < 0).any():
                logger.warning(f"  Temperature {temperature}: {int((solved < 0).sum())} negative arrow "
                               f"length(s) clipped to zero; arrows only approximate the comparisons")
                solved = np.clip(solved, 0, None)
            lengths.loc[eligible.index] = solved

        arrows = estimates.copy()
        arrows['lcmpl'] = arrows['emmean'] - lengths
        arrows['ucmpl'] = arrows['emmean'] + lengths
        arrows['comparison_defined'] = lengths.notna() & arrows['emmean'].notna()
        arrows['lcmpl'] = arrows['lcmpl'].fillna(arrows['emmean'])
        arrows['ucmpl'] = arrows['ucmpl'].fillna(arrows['emmean'])
        return arrows

    def compute_all(self) -> MarginalMeans:
        """
        Estimates, pairwise comparisons and comparison arrows.

        Returns:
            MarginalMeans: Frozen result bundle
        """
        logger.info("Computing estimated marginal means...")
        estimates, rows = self.compute_estimates()
        pairwise = self.compute_pairwise(estimates, rows)
        arrows = self.compute_comparison_arrows(estimates, pairwise)
        return MarginalMeans(
            estimates=arrows,
            pairwise=pairwise,
            mass_reference=self.mass_reference,
            confidence_level=self.confidence_level,
            adjust=self.adjust,
        )

    def export_results(self, marginal_means: MarginalMeans, output_dir: str) -> Dict[str, str]:
        """
        Export marginal means and pairwise comparisons to CSV.

        Returns:
            Dict[str, str]: Table name -> written path
        """
        os.makedirs(output_dir, exist_ok=True)
        file_paths = {
            'estimates': os.path.join(output_dir, 'emmeans.csv'),
            'pairwise': os.path.join(output_dir, 'emmeans_pairwise.csv'),
        }
        marginal_means.estimates.to_csv(file_paths['estimates'], index=False)
        marginal_means.pairwise.to_csv(file_paths['pairwise'], index=False)
        for key, path in file_paths.items():
            logger.info(f"Exported {key} to: {path}")
        return file_paths
