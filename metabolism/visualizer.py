# -*- coding: utf-8 -*-
"""
Metabolism Analysis Figures

Exploratory and result figures of the analysis. Every plot function takes
the data it draws plus an output path and resolution, writes exactly one
file with the non-interactive backend and returns the written path.
"""

import logging
import os
from typing import Dict, Optional

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use('Agg')  # Use non-interactive backend
import matplotlib.pyplot as plt
import seaborn as sns
import geopandas as gpd
from scipy import stats

import config
from metabolism import figure_config as fc
from metabolism.lme_analyzer import FittedModel
from metabolism.marginal_means import MarginalMeans
from metabolism.pca_analyzer import PCAResult
from metabolism.preprocessor import PreparedData
from metabolism.regression_analyzer import RegressionResults

logger = logging.getLogger(__name__)

RATE_LABEL = 'Metabolic rate (µL O$_2$ h$^{-1}$)'


def _save(fig, output_path: str, dpi: int) -> str:
    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
    fig.savefig(output_path, dpi=dpi, bbox_inches='tight')
    plt.close(fig)
    logger.info(f"Saved: {output_path}")
    return output_path


def _temperature_palette(temperatures) -> Dict[str, object]:
    return {str(t): fc.temperature_color(t) for t in temperatures}


def plot_population_map(climate_wide: pd.DataFrame, output_path: str,
                        boundary_path: Optional[str] = None, dpi: int = config.FIGURE_DPI) -> str:
    """
    Map of sampled populations, optionally over the quarantine boundary.

    Args:
        climate_wide: One row per population with latitude and longitude
        output_path: Figure file
        boundary_path: Polygon file readable by geopandas (skipped if missing)
        dpi: Resolution
    """
    logger.info("Creating population map...")
    fc.apply_rcparams()

    sites = climate_wide.reset_index()[['population', 'latitude', 'longitude']]
    geometry = gpd.points_from_xy(sites['longitude'], sites['latitude'])
    sites_gdf = gpd.GeoDataFrame(sites, geometry=geometry, crs="EPSG:4326")

    fig, ax = plt.subplots(figsize=fc.FIG_SIZE_DOUBLE_TALL)
    if boundary_path and os.path.exists(boundary_path):
        boundary = gpd.read_file(boundary_path)
        if boundary.crs is not None and str(boundary.crs) != "EPSG:4326":
            boundary = boundary.to_crs("EPSG:4326")
        boundary.plot(ax=ax, facecolor=fc.COLOR_BOUNDARY_FACE, edgecolor=fc.COLOR_BOUNDARY_EDGE,
                      linewidth=fc.LINE_WIDTH_THIN, alpha=0.7)
        logger.info(f"  Drew {len(boundary)} boundary polygon(s) from {boundary_path}")
    elif boundary_path:
        logger.warning(f"  Boundary file not found: {boundary_path}; map drawn without it")

    sites_gdf.plot(ax=ax, color=fc.COLOR_POPULATION, markersize=40, edgecolor='black',
                   linewidth=0.5, zorder=3)
    for _, row in sites.iterrows():
        ax.annotate(row['population'], (row['longitude'], row['latitude']),
                    xytext=(4, 4), textcoords='offset points', fontsize=fc.FONT_SIZE_ANNOTATION)

    ax.set_xlabel('Longitude (°)')
    ax.set_ylabel('Latitude (°)')
    ax.set_title('Sampled populations')
    ax.set_aspect('equal', adjustable='datalim')
    return _save(fig, output_path, dpi)


def plot_rate_distributions(long: pd.DataFrame, output_path: str, dpi: int = config.FIGURE_DPI) -> str:
    """Box and violin plots of rate by population, split by temperature."""
    logger.info("Creating rate distribution plots...")
    fc.apply_rcparams()

    data = long.dropna(subset=['rate']).copy()
    data['temperature'] = data['temperature'].astype(str)
    order = sorted(data['population'].unique())
    hue_order = [str(t) for t in sorted(long['temperature'].dropna().unique())]
    palette = _temperature_palette(hue_order)

    fig, axes = plt.subplots(2, 1, figsize=fc.FIG_SIZE_DOUBLE_TALL, sharex=True)
    sns.boxplot(data=data, x='population', y='rate', hue='temperature', order=order,
                hue_order=hue_order, palette=palette, fliersize=2, ax=axes[0])
    sns.violinplot(data=data, x='population', y='rate', hue='temperature', order=order,
                   hue_order=hue_order, palette=palette, cut=0, inner='quartile',
                   linewidth=0.6, ax=axes[1])

    for ax in axes:
        ax.set_ylabel(RATE_LABEL)
        ax.legend(title='Temperature (°C)', loc='upper left')
    axes[1].set_xlabel('Population')
    axes[1].tick_params(axis='x', rotation=45)
    fc.add_panel_label(axes[0], 'A')
    fc.add_panel_label(axes[1], 'B')
    return _save(fig, output_path, dpi)


def plot_rate_vs_mass(long: pd.DataFrame, output_path: str, dpi: int = config.FIGURE_DPI) -> str:
    """Rate against body mass with one regression line per temperature."""
    logger.info("Creating rate vs mass plot...")
    fc.apply_rcparams()

    data = long.dropna(subset=['rate', 'mass'])
    fig, ax = plt.subplots(figsize=fc.FIG_SIZE_SINGLE)
    for temperature, group in data.groupby('temperature'):
        sns.regplot(data=group, x='mass', y='rate', ax=ax, color=fc.temperature_color(temperature),
                    scatter_kws={'s': 10, 'alpha': 0.6}, line_kws={'linewidth': fc.LINE_WIDTH},
                    label=f'{temperature} °C', ci=None)
    ax.set_xlabel('Body mass (g)')
    ax.set_ylabel(RATE_LABEL)
    ax.legend(title='Temperature')
    return _save(fig, output_path, dpi)


def plot_rate_vs_latitude(long: pd.DataFrame, output_path: str, dpi: int = config.FIGURE_DPI) -> str:
    """Population mean rate against latitude, one series per temperature."""
    logger.info("Creating rate vs latitude plot...")
    fc.apply_rcparams()

    data = long.dropna(subset=['rate', 'latitude'])
    means = (
        data.groupby(['population', 'temperature', 'latitude'])['rate']
        .agg(['mean', 'sem'])
        .reset_index()
    )
    fig, ax = plt.subplots(figsize=fc.FIG_SIZE_SINGLE)
    for temperature, group in means.groupby('temperature'):
        ax.errorbar(group['latitude'], group['mean'], yerr=group['sem'].fillna(0), fmt='o',
                    color=fc.temperature_color(temperature), capsize=2,
                    markersize=fc.MARKER_SIZE, label=f'{temperature} °C')
    ax.set_xlabel('Latitude (°N)')
    ax.set_ylabel(RATE_LABEL)
    ax.legend(title='Temperature')
    return _save(fig, output_path, dpi)


def plot_residual_diagnostics(fitted: FittedModel, output_path: str, dpi: int = config.FIGURE_DPI) -> str:
    """Residuals vs fitted, residuals vs mass, normal Q-Q plot and histogram."""
    logger.info("Creating residual diagnostic plots...")
    fc.apply_rcparams()

    fitted_values = np.asarray(fitted.result.fittedvalues, dtype=float)
    residuals = fitted.data[config.LME_RESPONSE].to_numpy(dtype=float) - fitted_values
    mass = fitted.data[fitted.design.covariate].to_numpy(dtype=float)

    fig, axes = plt.subplots(2, 2, figsize=fc.FIG_SIZE_DOUBLE_TALL)
    axes[0, 0].scatter(fitted_values, residuals, s=8, alpha=0.6, color=fc.COLOR_CI)
    axes[0, 0].axhline(0, color='black', linewidth=fc.LINE_WIDTH_THIN)
    axes[0, 0].set_xlabel('Fitted values')
    axes[0, 0].set_ylabel('Residuals')

    axes[0, 1].scatter(mass, residuals, s=8, alpha=0.6, color=fc.COLOR_CI)
    axes[0, 1].axhline(0, color='black', linewidth=fc.LINE_WIDTH_THIN)
    axes[0, 1].set_xlabel('Body mass (g)')
    axes[0, 1].set_ylabel('Residuals')

    stats.probplot(residuals, dist='norm', plot=axes[1, 0])
    axes[1, 0].set_title('')
    axes[1, 0].set_xlabel('Theoretical quantiles')
    axes[1, 0].set_ylabel('Ordered residuals')

    sns.histplot(residuals, kde=True, ax=axes[1, 1], color=fc.COLOR_CI)
    axes[1, 1].set_xlabel('Residuals')

    for ax, label in zip(axes.flat, 'ABCD'):
        fc.add_panel_label(ax, label)
    plt.tight_layout()
    return _save(fig, output_path, dpi)


def plot_marginal_means(marginal_means: MarginalMeans, output_path: str,
                        dpi: int = config.FIGURE_DPI) -> str:
    """
    Marginal means per population with confidence bars and comparison arrows.

    One panel per temperature. Thin bars are confidence intervals, thick
    bars are comparison arrows: two populations differ significantly when
    their arrows do not overlap. Zero-width arrows mark sparse cells.
    """
    logger.info("Creating marginal means plot...")
    fc.apply_rcparams()

    estimates = marginal_means.estimates
    temperatures = sorted(estimates['temperature'].unique())
    fig, axes = plt.subplots(1, len(temperatures), figsize=fc.FIG_SIZE_DOUBLE, sharey=True, squeeze=False)

    for ax, temperature in zip(axes[0], temperatures):
        block = estimates[estimates['temperature'] == temperature].sort_values('emmean')
        y = np.arange(len(block))
        ax.hlines(y, block['lower_cl'], block['upper_cl'], color=fc.COLOR_CI,
                  linewidth=fc.LINE_WIDTH_THIN)
        ax.hlines(y, block['lcmpl'], block['ucmpl'], color=fc.COLOR_ARROW,
                  linewidth=fc.LINE_WIDTH_THICK, alpha=0.8)
        ax.plot(block['emmean'], y, 'o', color=fc.temperature_color(temperature),
                markeredgecolor='black', markersize=fc.MARKER_SIZE)
        ax.set_yticks(y)
        ax.set_yticklabels(block['population'])
        ax.set_title(f'{temperature} °C')
        ax.set_xlabel(RATE_LABEL)

    axes[0, 0].set_ylabel('Population')
    fig.suptitle(f'Estimated marginal means ({marginal_means.adjust}-adjusted comparison arrows)',
                 fontsize=fc.FONT_SIZE_TITLE)
    plt.tight_layout()
    return _save(fig, output_path, dpi)


def plot_scree(variance_df: pd.DataFrame, output_path: str, n_highlight: int = config.N_REGRESSION_COMPONENTS,
               dpi: int = config.FIGURE_DPI) -> str:
    """Plot scree plot showing variance explained (leading components highlighted)."""
    logger.info("Creating scree plot...")
    fc.apply_rcparams()

    fig, ax = plt.subplots(figsize=fc.FIG_SIZE_SINGLE)
    colors = [fc.COLOR_PC_HIGHLIGHT if i < n_highlight else fc.COLOR_PC_OTHER
              for i in range(len(variance_df))]
    ax.bar(variance_df['component'], variance_df['variance_explained'] * 100,
           color=colors, edgecolor='black', linewidth=0.8)
    ax.plot(variance_df['component'], variance_df['cumulative_variance'] * 100, 'o-',
            color='black', markersize=3, linewidth=fc.LINE_WIDTH_THIN)

    for i, var in enumerate(variance_df['variance_explained']):
        if i < n_highlight:
            ax.text(i, var * 100 + 1, f'{var * 100:.1f}%', ha='center', va='bottom',
                    fontsize=fc.FONT_SIZE_ANNOTATION, fontweight='bold')

    ax.set_xlabel('Principal Component')
    ax.set_ylabel('Variance Explained (%)')
    ax.tick_params(axis='x', rotation=90)
    return _save(fig, output_path, dpi)


def plot_loadings_heatmap(loadings_df: pd.DataFrame, output_path: str,
                          n_components: int = config.N_REGRESSION_COMPONENTS,
                          dpi: int = config.FIGURE_DPI) -> str:
    """Plot heatmap of the leading PCA loadings."""
    logger.info(f"Creating loadings heatmap (first {n_components} components)...")
    fc.apply_rcparams()

    loadings_wide = loadings_df.pivot(index='variable', columns='component', values='loading')
    components = [f'PC{i + 1}' for i in range(n_components) if f'PC{i + 1}' in loadings_wide.columns]
    variable_order = [v for v in loadings_df['variable'].unique()]
    loadings_wide = loadings_wide.loc[variable_order, components]
    loadings_wide.index = [v.replace('_', ' ') for v in loadings_wide.index]

    fig, ax = plt.subplots(figsize=(fc.SINGLE_COL_WIDTH * 1.3, fc.DOUBLE_COL_WIDTH))
    sns.heatmap(loadings_wide, cmap=fc.LOADINGS_CMAP, center=0, annot=True, fmt='.2f',
                cbar_kws={'label': 'Loading'}, linewidths=0.5, vmin=-1, vmax=1, ax=ax)
    ax.set_xlabel('Principal Component')
    ax.set_ylabel('Climate / geography variable')
    return _save(fig, output_path, dpi)


def plot_biplot(pca_result: PCAResult, output_path: str, dpi: int = config.FIGURE_DPI) -> str:
    """Population scores on PC1/PC2 with the variable loadings as arrows."""
    logger.info("Creating PCA biplot...")
    fc.apply_rcparams()

    scores = pca_result.scores
    components = pca_result.components
    ratios = pca_result.variance.set_index('component')['variance_explained']

    fig, ax = plt.subplots(figsize=fc.FIG_SIZE_DOUBLE_TALL)
    palette = fc.population_palette([str(p) for p in scores.index])
    ax.scatter(scores['PC1'], scores['PC2'], s=30, c=[palette[str(p)] for p in scores.index],
               edgecolor='black', linewidth=0.4, zorder=3)
    for population, row in scores.iterrows():
        ax.annotate(str(population), (row['PC1'], row['PC2']), xytext=(3, 3),
                    textcoords='offset points', fontsize=fc.FONT_SIZE_ANNOTATION)

    scale = np.abs(scores[['PC1', 'PC2']].to_numpy()).max()
    for variable in components.columns:
        x, y = components.loc['PC1', variable] * scale, components.loc['PC2', variable] * scale
        ax.arrow(0, 0, x, y, color=fc.COLOR_ARROW, alpha=0.6, width=0.002 * scale,
                 head_width=0.03 * scale, length_includes_head=True)
        ax.text(x * 1.08, y * 1.08, variable.replace('_', ' '), color=fc.COLOR_ARROW,
                fontsize=fc.FONT_SIZE_ANNOTATION - 1, ha='center', va='center')

    ax.axhline(0, color='0.7', linewidth=fc.LINE_WIDTH_THIN)
    ax.axvline(0, color='0.7', linewidth=fc.LINE_WIDTH_THIN)
    ax.set_xlabel(f"PC1 ({ratios['PC1']:.1%})")
    ax.set_ylabel(f"PC2 ({ratios['PC2']:.1%})")
    return _save(fig, output_path, dpi)


def plot_regressions(regression: RegressionResults, output_path: str, dpi: int = config.FIGURE_DPI) -> str:
    """Marginal-mean rate against each component, one panel per temperature x component."""
    logger.info("Creating cross-domain regression plots...")
    fc.apply_rcparams()

    data = regression.data
    table = regression.table.set_index(['temperature', 'component'])
    temperatures = sorted(data['temperature'].unique())
    components = list(regression.components)

    fig, axes = plt.subplots(len(components), len(temperatures), figsize=fc.FIG_SIZE_DOUBLE_TALL,
                             squeeze=False)
    for i, component in enumerate(components):
        for j, temperature in enumerate(temperatures):
            ax = axes[i, j]
            block = data[data['temperature'] == temperature]
            ax.scatter(block[component], block['emmean'], s=15,
                       color=fc.temperature_color(temperature), edgecolor='black', linewidth=0.4)

            row = table.loc[(temperature, component)]
            if np.isfinite(row['slope']):
                xs = np.linspace(block[component].min(), block[component].max(), 50)
                ax.plot(xs, row['intercept'] + row['slope'] * xs, color='black',
                        linewidth=fc.LINE_WIDTH_THIN)
                ax.text(0.03, 0.95, f"R² = {row['r_squared']:.2f}\np = {row['p_value']:.3f}",
                        transform=ax.transAxes, va='top', fontsize=fc.FONT_SIZE_ANNOTATION)
            if i == 0:
                ax.set_title(f'{temperature} °C')
            if i == len(components) - 1:
                ax.set_xlabel('Component score')
            if j == 0:
                ax.set_ylabel(f'EMM rate ~ {component}')
    plt.tight_layout()
    return _save(fig, output_path, dpi)


def generate_all_figures(prepared: PreparedData, fitted: FittedModel, marginal_means: MarginalMeans,
                         pca_result: PCAResult, regression: RegressionResults, output_dir: str,
                         boundary_path: Optional[str] = None, dpi: int = config.FIGURE_DPI,
                         fmt: str = config.FIGURE_FORMAT) -> Dict[str, str]:
    """
    Write every figure of the analysis.

    Returns:
        Dict[str, str]: Figure name -> written path
    """
    os.makedirs(output_dir, exist_ok=True)

    def path(name):
        return os.path.join(output_dir, f'{name}.{fmt}')

    plt.style.use('seaborn-v0_8-whitegrid')
    figures = {
        'population_map': plot_population_map(prepared.climate_wide, path('population_map'),
                                              boundary_path=boundary_path, dpi=dpi),
        'rate_distributions': plot_rate_distributions(prepared.long, path('rate_distributions'), dpi=dpi),
        'rate_vs_mass': plot_rate_vs_mass(prepared.long, path('rate_vs_mass'), dpi=dpi),
        'rate_vs_latitude': plot_rate_vs_latitude(prepared.long, path('rate_vs_latitude'), dpi=dpi),
        'residual_diagnostics': plot_residual_diagnostics(fitted, path('residual_diagnostics'), dpi=dpi),
        'marginal_means': plot_marginal_means(marginal_means, path('marginal_means'), dpi=dpi),
        'pca_scree': plot_scree(pca_result.variance, path('pca_scree'), dpi=dpi),
        'pca_loadings': plot_loadings_heatmap(pca_result.loadings, path('pca_loadings'), dpi=dpi),
        'pca_biplot': plot_biplot(pca_result, path('pca_biplot'), dpi=dpi),
        'regressions': plot_regressions(regression, path('regressions'), dpi=dpi),
    }
    logger.info(f"Generated {len(figures)} figures in {output_dir}")
    return figures
