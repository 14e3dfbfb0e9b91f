# -*- coding: utf-8 -*-
"""
Analysis Report Module

APA-style formatting helpers and the Markdown report that collects every
table of a pipeline run: data summary, mixed-model ANOVA and variance
components, residual diagnostics, marginal means, climate PCA and the
cross-domain regressions.
"""

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from metabolism.lme_analyzer import FittedModel
from metabolism.marginal_means import MarginalMeans
from metabolism.pca_analyzer import PCAResult
from metabolism.preprocessor import PreparedData
from metabolism.regression_analyzer import RegressionResults

logger = logging.getLogger(__name__)


def format_p_value(p_value: float) -> str:
    """
    Format a p-value in APA style.

    Examples:
        >>> format_p_value(0.0001)
        'p < .001'
        >>> format_p_value(0.025)
        'p = .025'
    """
    if p_value is None or not np.isfinite(p_value):
        return "p = n/a"
    if p_value < 0.001:
        return "p < .001"
    return f"p = {p_value:.3f}".replace("0.", ".", 1)


def _no_leading_zero(value: float, digits: int = 2) -> str:
    text = f"{value:.{digits}f}"
    return text.replace("0.", ".", 1) if abs(value) < 1 else text


def format_anova_row(row: Dict[str, Any]) -> str:
    """
    Format one Type III ANOVA row in APA style.

    APA format: term: F(df1, df2) = X.XX, p = .XXX, ηp² = .XX

    Examples:
        >>> format_anova_row({'term': 'temperature', 'num_df': 2, 'den_df': 120,
        ...                   'F': 85.3, 'p_value': 1e-20, 'partial_eta_sq': 0.587})
        'temperature: F(2, 120) = 85.30, p < .001, ηp² = .59'
    """
    f_value = row['F']
    f_str = f"{f_value:.2f}" if np.isfinite(f_value) else "n/a"
    eta = row['partial_eta_sq']
    eta_str = _no_leading_zero(eta) if np.isfinite(eta) else "n/a"
    return (
        f"{row['term']}: F({int(row['num_df'])}, {int(row['den_df'])}) = {f_str}, "
        f"{format_p_value(row['p_value'])}, ηp² = {eta_str}"
    )


def format_regression_result(row: Dict[str, Any]) -> str:
    """
    Format one cross-domain regression in APA style.

    APA format: b = X.XX, 95% CI [X.XX, X.XX], R² = .XX, adj. R² = .XX, p = .XXX, N = n

    Examples:
        >>> format_regression_result({'slope': 1.5, 'ci_lower': 0.4, 'ci_upper': 2.6,
        ...                           'r_squared': 0.41, 'adj_r_squared': 0.36,
        ...                           'p_value': 0.012, 'n_obs': 14})
        'b = 1.50, 95% CI [0.40, 2.60], R² = .41, adj. R² = .36, p = .012, N = 14'
    """
    if not np.isfinite(row['slope']):
        return f"not estimated (N = {int(row['n_obs'])})"
    return (
        f"b = {row['slope']:.2f}, 95% CI [{row['ci_lower']:.2f}, {row['ci_upper']:.2f}], "
        f"R² = {_no_leading_zero(row['r_squared'])}, adj. R² = {_no_leading_zero(row['adj_r_squared'])}, "
        f"{format_p_value(row['p_value'])}, N = {int(row['n_obs'])}"
    )


class MetabolismReporter:
    """Builds the Markdown report of one pipeline run.

    Attributes:
        prepared: Reshaped input data
        fitted: Fitted mixed model
        marginal_means: Marginal means and comparisons
        pca_result: Climate PCA
        regression: Cross-domain regressions
        validation_results: Output of MetabolismDataValidator.validate_all()
    """

    def __init__(self, prepared: PreparedData, fitted: FittedModel, marginal_means: MarginalMeans,
                 pca_result: PCAResult, regression: RegressionResults,
                 validation_results: Optional[Dict[str, Any]] = None):
        self.prepared = prepared
        self.fitted = fitted
        self.marginal_means = marginal_means
        self.pca_result = pca_result
        self.regression = regression
        self.validation_results = validation_results or {}

    def _data_section(self) -> List[str]:
        long = self.prepared.long
        design = self.fitted.design
        lines = ["## Data", ""]
        lines.append(f"- Readings: {len(long)} ({long['individual'].nunique()} caterpillars x 3 hours)")
        lines.append(f"- Readings used in the model: {self.fitted.n_obs} "
                     f"({self.fitted.n_excluded} excluded for a missing rate or mass)")
        lines.append(f"- Populations: {len(design.population_levels)} "
                     f"(reference: {design.reference_population})")
        lines.append(f"- Temperatures: {', '.join(str(t) for t in design.temperature_levels)} °C "
                     f"(reference: {design.reference_temperature} °C)")
        lines.append(f"- Populations in the climate PCA: {len(self.pca_result.scores)}")
        for warning in self.validation_results.get('warnings', []):
            lines.append(f"- Note: {warning}")
        lines.append("")
        return lines

    def _model_section(self) -> List[str]:
        fitted = self.fitted
        lines = ["## Mixed-effects model", ""]
        lines.append("rate ~ mass + population * temperature + (1 | hour), fitted by REML.")
        lines.append("")
        if not fitted.converged or fitted.convergence_warnings:
            lines.append(f"**Convergence:** converged = {fitted.converged}")
            for message in fitted.convergence_warnings:
                lines.append(f"- {message}")
            lines.append("")
        if fitted.dropped_columns:
            lines.append(f"Aliased design columns dropped: {', '.join(fitted.dropped_columns)}")
            lines.append("")

        lines.append("### Type III ANOVA (Wald F, residual df)")
        lines.append("")
        lines.append(fitted.anova.to_markdown(index=False, floatfmt=".3f"))
        lines.append("")
        for _, row in fitted.anova.iterrows():
            lines.append(f"- {format_anova_row(row)}")
        lines.append("")

        lines.append("### Variance components")
        lines.append("")
        lines.append(fitted.variance_components.to_markdown(index=False, floatfmt=".4f"))
        lines.append("")
        lines.append(f"ICC ({fitted.variance_components['component'].iloc[0]}): {fitted.icc:.3f}")
        lines.append("")

        lines.append("### Residual diagnostics")
        lines.append("")
        lines.append(fitted.diagnostics.to_markdown(index=False, floatfmt=".3f"))
        lines.append("")
        return lines

    def _marginal_means_section(self) -> List[str]:
        mm = self.marginal_means
        lines = ["## Estimated marginal means", ""]
        lines.append(f"Mass held at {mm.mass_reference:.4f} g. {mm.confidence_level:.0%} confidence "
                     f"intervals; comparison arrows use the {mm.adjust} adjustment within each "
                     f"temperature. Non-overlapping arrows mark significantly different populations.")
        lines.append("")
        columns = ['population', 'temperature', 'n_obs', 'emmean', 'se', 'lower_cl', 'upper_cl',
                   'lcmpl', 'ucmpl', 'comparison_defined']
        lines.append(mm.estimates[columns].to_markdown(index=False, floatfmt=".3f"))
        lines.append("")
        n_undefined = int((~mm.estimates['comparison_defined']).sum())
        if n_undefined:
            lines.append(f"{n_undefined} cell(s) without a comparison interval: the arrow is drawn "
                         f"at zero width on the estimate.")
            lines.append("")
        return lines

    def _pca_section(self) -> List[str]:
        pca = self.pca_result
        lines = ["## Climate PCA", ""]
        lines.append(pca.variance.to_markdown(index=False, floatfmt=".3f"))
        lines.append("")
        components = pca.component_names(2)
        loadings = pca.components.loc[components].T.reset_index().rename(columns={'index': 'variable'})
        lines.append("### Loadings")
        lines.append("")
        lines.append(loadings.to_markdown(index=False, floatfmt=".3f"))
        lines.append("")
        lines.append("Component signs are arbitrary; each component is oriented so its largest "
                     "loading is positive.")
        lines.append("")
        return lines

    def _regression_section(self) -> List[str]:
        table = self.regression.table
        lines = ["## Marginal-mean rate vs climate components", ""]
        lines.append(table.to_markdown(index=False, floatfmt=".3f"))
        lines.append("")
        for _, row in table.iterrows():
            lines.append(f"- {row['temperature']} °C, {row['component']}: {format_regression_result(row)}")
        lines.append("")
        lines.append("### Limitations")
        lines.append("")
        n_max = int(table['n_obs'].max()) if len(table) else 0
        lines.append(f"- Each regression has at most {n_max} populations; estimates are imprecise.")
        lines.append(f"- {len(table)} regressions are reported without multiple-comparison correction.")
        lines.append("")
        return lines

    def generate_report(self, output_path: str) -> str:
        """Write the Markdown report.

        Returns:
            Path to the written report
        """
        report_lines = [
            "# Spongy moth population metabolism analysis",
            "",
            f"Generated: {datetime.now().isoformat(timespec='seconds')}",
            "",
        ]
        report_lines.extend(self._data_section())
        report_lines.extend(self._model_section())
        report_lines.extend(self._marginal_means_section())
        report_lines.extend(self._pca_section())
        report_lines.extend(self._regression_section())

        os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write('\n'.join(report_lines))
        logger.info(f"Report written to: {output_path}")
        return output_path
