# -*- coding: utf-8 -*-
"""
Run Metadata Module

This module documents one pipeline run (inputs, parameters, pinned factor
levels, exclusions and data summary) as a JSON-serialisable dictionary.
"""

from typing import Any, Dict, Optional
from datetime import datetime
import json
import logging
import os

import numpy as np

import config
from metabolism.__version__ import __version__
from metabolism.lme_analyzer import FittedModel
from metabolism.marginal_means import MarginalMeans
from metabolism.pca_analyzer import PCAResult
from metabolism.preprocessor import PreparedData
from metabolism.regression_analyzer import RegressionResults

logger = logging.getLogger(__name__)


def _to_builtin(value: Any) -> Any:
    """Convert numpy scalars and containers to JSON-compatible Python types."""
    if isinstance(value, dict):
        return {str(k): _to_builtin(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_builtin(v) for v in value]
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return None if np.isnan(value) else float(value)
    if isinstance(value, float) and np.isnan(value):
        return None
    if isinstance(value, np.bool_):
        return bool(value)
    return value


class RunMetadata:
    """
    Generates metadata documentation for a pipeline run.

    Example:
        >>> metadata_gen = RunMetadata(measurements_path, climate_path)
        >>> metadata = metadata_gen.generate_metadata(prepared, fitted, emm, pca, regression)
        >>> metadata_gen.write(metadata, 'results/run_metadata.json')
    """

    def __init__(self, measurements_path: str, climate_path: str,
                 boundary_path: Optional[str] = None, n_excluded_climate_rows: int = 0):
        """Initialize metadata generator with the run inputs."""
        self.measurements_path = measurements_path
        self.climate_path = climate_path
        self.boundary_path = boundary_path
        self.n_excluded_climate_rows = n_excluded_climate_rows

    def generate_metadata(self, prepared: PreparedData, fitted: FittedModel,
                          marginal_means: MarginalMeans, pca_result: PCAResult,
                          regression: RegressionResults) -> Dict[str, Any]:
        """
        Generate run metadata.

        Returns:
            Dictionary containing inputs, parameters, design and summary
        """
        design = fitted.design
        long = prepared.long

        metadata = {
            'pipeline_version': __version__,
            'timestamp': datetime.now().isoformat(),
            'inputs': {
                'measurements': os.path.abspath(self.measurements_path),
                'climate': os.path.abspath(self.climate_path),
                'boundary': os.path.abspath(self.boundary_path) if self.boundary_path else None,
            },
            'model': {
                'formula': f"{config.LME_RESPONSE} ~ {design.covariate} + population * temperature "
                           f"+ (1 | {config.LME_GROUP})",
                'reml': config.LME_PARAMS['reml'],
                'optimizer': fitted.optimizer,
                'converged': fitted.converged,
                'convergence_warnings': list(fitted.convergence_warnings),
                'n_fixed_effects': len(fitted.fe_names),
                'expected_fixed_effects': design.expected_parameter_count,
                'dropped_columns': list(fitted.dropped_columns),
                'df_resid': fitted.df_resid,
                'anova_den_df': 'residual (n - rank X)',
            },
            'design': {
                'population_levels': design.population_levels,
                'temperature_levels': design.temperature_levels,
                'reference_population': design.reference_population,
                'reference_temperature': design.reference_temperature,
                'level_order': 'populations alphabetical, temperatures ascending',
            },
            'marginal_means': {
                'mass_reference': marginal_means.mass_reference,
                'confidence_level': marginal_means.confidence_level,
                'adjustment': marginal_means.adjust,
                'min_cell_observations': config.MIN_CELL_OBSERVATIONS,
                'n_undefined_comparisons': int((~marginal_means.estimates['comparison_defined']).sum()),
            },
            'pca': {
                'variables': list(pca_result.components.columns),
                'standardization': 'z-score, population standard deviation (ddof = 0)',
                'sign_convention': 'largest-magnitude loading positive',
                'variance_explained': dict(zip(pca_result.variance['component'],
                                               pca_result.variance['variance_explained'])),
            },
            'regression': {
                'components': list(regression.components),
                'n_models': len(regression.table),
                'multiple_comparison_correction': None,
            },
            'exclusions': {
                'climate_rows_excluded': self.n_excluded_climate_rows,
                'readings_missing_rate': int(long['rate'].isna().sum()),
                'readings_excluded_from_model': fitted.n_excluded,
                'populations_without_climate': sorted(
                    long.loc[long['latitude'].isna(), 'population'].unique().tolist()
                ),
            },
            'data_summary': {
                'n_individuals': int(long['individual'].nunique()),
                'n_readings': int(len(long)),
                'n_readings_model': fitted.n_obs,
                'n_populations': len(design.population_levels),
                'n_populations_pca': int(len(pca_result.scores)),
            },
        }
        return _to_builtin(metadata)

    def write(self, metadata: Dict[str, Any], output_path: str) -> str:
        """Write metadata as indented JSON."""
        os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(metadata, f, indent=2)
        logger.info(f"Run metadata written to: {output_path}")
        return output_path
