# -*- coding: utf-8 -*-
"""
Climate PCA Analyzer Module

This module performs Principal Component Analysis (PCA) on the wide
per-population climate/geography table to summarize the environmental
gradient among populations into a few orthogonal components.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
import logging
import os

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler

import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PCAResult:
    """Scores, loadings and variance of a fitted climate PCA."""

    scores: pd.DataFrame
    loadings: pd.DataFrame
    components: pd.DataFrame
    variance: pd.DataFrame
    standardized: pd.DataFrame
    center: pd.Series
    scaler_mean: pd.Series
    scaler_scale: pd.Series

    def reconstruct(self) -> pd.DataFrame:
        """Standardized matrix rebuilt from all scores and loadings."""
        values = self.scores.to_numpy() @ self.components.to_numpy() + self.center.to_numpy()
        return pd.DataFrame(values, index=self.scores.index, columns=self.components.columns)

    def component_names(self, n: Optional[int] = None) -> List[str]:
        names = list(self.scores.columns)
        return names if n is None else names[:n]


class ClimatePCAAnalyzer:
    """
    Performs population-level PCA on standardized climate variables.

    Variables are standardized with population parameters (ddof = 0) and
    the full decomposition is kept. Component signs are arbitrary in the
    decomposition itself; here each component is oriented so that its
    largest-magnitude loading is positive.

    Attributes:
        climate_wide (pd.DataFrame): One row per population (index)
        variables (List[str]): Feature columns entering the PCA
        n_interpretable (int): Leading components highlighted in logs
        scaler (StandardScaler): Fitted standardization
        pca_model (PCA): Fitted sklearn PCA model
        signs (np.ndarray): Orientation applied to each component

    Example:
        >>> analyzer = ClimatePCAAnalyzer(prepared.climate_wide)
        >>> result = analyzer.compute_all()
        >>> result.scores[['PC1', 'PC2']]
        >>> analyzer.export_results(result, 'results/pca')
    """

    def __init__(self, climate_wide: pd.DataFrame, variables: Optional[List[str]] = None,
                 n_interpretable: int = config.N_REGRESSION_COMPONENTS):
        """
        Initialize PCA analyzer.

        Args:
            climate_wide: Output of MetabolismPreprocessor.build_climate_wide()
            variables: Feature columns (default: every column of climate_wide)
            n_interpretable: Number of leading components reported (default: 2)
        """
        self.climate_wide = climate_wide.copy()
        self.variables = list(variables) if variables is not None else list(climate_wide.columns)
        self.n_interpretable = n_interpretable
        self.scaler = None
        self.pca_model = None
        self.signs = None

        missing = [v for v in self.variables if v not in self.climate_wide.columns]
        if missing:
            raise ValueError(f"Variables not found in climate table: {missing}")

        logger.info(f"Initialized ClimatePCAAnalyzer with {len(self.climate_wide)} populations, "
                    f"{len(self.variables)} variables")

    def _matrix(self) -> pd.DataFrame:
        X = self.climate_wide[self.variables].astype(float)
        if X.isna().any().any():
            incomplete = X.index[X.isna().any(axis=1)].tolist()
            logger.warning(f"Dropping populations with missing climate values: {incomplete}")
            X = X.dropna()
        return X

    def fit_pca(self) -> PCA:
        """
        Standardize the climate matrix and fit a full PCA.

        Returns:
            Fitted PCA model
        """
        logger.info("Fitting climate PCA...")
        X = self._matrix()
        if len(X) < 2:
            raise ValueError(f"PCA needs at least 2 populations, got {len(X)}")
        logger.info(f"Input matrix shape: {X.shape}")

        constant = X.columns[X.std(ddof=0) == 0].tolist()
        if constant:
            logger.warning(f"  Constant variable(s) carry no variance: {constant}")

        self.scaler = StandardScaler()
        Z = self.scaler.fit_transform(X.to_numpy())

        self.pca_model = PCA(n_components=None)
        self.pca_model.fit(Z)

        # Largest-magnitude loading of every component is positive
        components = self.pca_model.components_
        dominant = components[np.arange(len(components)), np.abs(components).argmax(axis=1)]
        self.signs = np.where(dominant < 0, -1.0, 1.0)

        ratios = self.pca_model.explained_variance_ratio_
        n_show = min(self.n_interpretable, len(ratios))
        logger.info(f"PCA fitting complete: {self.pca_model.n_components_} components; "
                    f"leading {n_show} explain {ratios[:n_show].sum():.2%}")
        return self.pca_model

    def _require_fit(self):
        if self.pca_model is None:
            raise ValueError("PCA model not fitted. Call fit_pca() first.")

    @property
    def component_labels(self) -> List[str]:
        self._require_fit()
        return [f'PC{i + 1}' for i in range(self.pca_model.n_components_)]

    def transform(self, frame: pd.DataFrame) -> pd.DataFrame:
        """
        Project rows onto the fitted components with the fitted scaler.

        Args:
            frame (pd.DataFrame): Rows with the PCA variables

        Returns:
            pd.DataFrame: Scores, same index as frame
        """
        self._require_fit()
        Z = self.scaler.transform(frame[self.variables].astype(float).to_numpy())
        scores = self.pca_model.transform(Z) * self.signs
        return pd.DataFrame(scores, index=frame.index, columns=self.component_labels)

    def get_scores(self) -> pd.DataFrame:
        """Scores of every population (index 'population')."""
        return self.transform(self._matrix())

    def get_components(self) -> pd.DataFrame:
        """Oriented component matrix (components x variables)."""
        self._require_fit()
        return pd.DataFrame(self.pca_model.components_ * self.signs[:, None],
                            index=self.component_labels, columns=self.variables)

    def get_loadings(self) -> pd.DataFrame:
        """
        Loadings in long format.

        Returns:
            DataFrame with columns component, variable, loading
        """
        components = self.get_components()
        loadings = (
            components.rename_axis('component')
            .reset_index()
            .melt(id_vars='component', var_name='variable', value_name='loading')
        )
        order = {name: i for i, name in enumerate(self.component_labels)}
        loadings = loadings.sort_values(
            'component', key=lambda s: s.map(order), kind='mergesort'
        ).reset_index(drop=True)

        if self.n_interpretable:
            for name in self.component_labels[:self.n_interpretable]:
                top = components.loc[name].abs().sort_values(ascending=False).index[:3].tolist()
                logger.info(f"  {name} strongest loadings: {top}")
        return loadings

    def get_variance_explained(self) -> pd.DataFrame:
        """
        Eigenvalues and explained variance per component.

        Returns:
            DataFrame with columns component, eigenvalue, variance_explained,
            cumulative_variance
        """
        self._require_fit()
        ratios = self.pca_model.explained_variance_ratio_
        return pd.DataFrame({
            'component': self.component_labels,
            'eigenvalue': self.pca_model.explained_variance_,
            'variance_explained': ratios,
            'cumulative_variance': np.cumsum(ratios),
        })

    def compute_all(self) -> PCAResult:
        """
        Fit the PCA and collect every output.

        Returns:
            PCAResult: Frozen result bundle
        """
        self.fit_pca()
        X = self._matrix()
        standardized = pd.DataFrame(self.scaler.transform(X.to_numpy()), index=X.index,
                                    columns=self.variables)
        return PCAResult(
            scores=self.get_scores(),
            loadings=self.get_loadings(),
            components=self.get_components(),
            variance=self.get_variance_explained(),
            standardized=standardized,
            center=pd.Series(self.pca_model.mean_, index=self.variables),
            scaler_mean=pd.Series(self.scaler.mean_, index=self.variables),
            scaler_scale=pd.Series(self.scaler.scale_, index=self.variables),
        )

    def export_results(self, result: PCAResult, output_dir: str) -> Dict[str, str]:
        """
        Export PCA results to CSV files.

        Creates:
        - pca_scores.csv: Component scores per population
        - pca_loadings.csv: Loadings in long format
        - pca_variance_explained.csv: Eigenvalues and explained variance

        Returns:
            Dict mapping file types to file paths
        """
        os.makedirs(output_dir, exist_ok=True)

        output_paths = {
            'scores': os.path.join(output_dir, 'pca_scores.csv'),
            'loadings': os.path.join(output_dir, 'pca_loadings.csv'),
            'variance': os.path.join(output_dir, 'pca_variance_explained.csv'),
        }
        result.scores.reset_index().to_csv(output_paths['scores'], index=False)
        result.loadings.to_csv(output_paths['loadings'], index=False)
        result.variance.to_csv(output_paths['variance'], index=False)

        logger.info(f"Export complete: {len(output_paths)} files saved to {output_dir}")
        return output_paths
