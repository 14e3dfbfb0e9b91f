# -*- coding: utf-8 -*-
"""
Centralized figure configuration for the metabolism analysis figures.

This module defines font sizes, dimensions, colors and matplotlib rcParams
shared by every figure in metabolism.visualizer.

Dimensions follow a two-column journal layout:
- Single column width: 89mm (~3.5 inches)
- Double column width: 183mm (~7.2 inches)
"""

from typing import Any, Dict, List, Sequence
import matplotlib.pyplot as plt

# =============================================================================
# FIGURE DIMENSIONS (in inches, converted from mm)
# =============================================================================

SINGLE_COL_WIDTH_MM = 89
DOUBLE_COL_WIDTH_MM = 183

MM_TO_INCH = 1 / 25.4
SINGLE_COL_WIDTH = SINGLE_COL_WIDTH_MM * MM_TO_INCH
DOUBLE_COL_WIDTH = DOUBLE_COL_WIDTH_MM * MM_TO_INCH

FIG_SIZE_SINGLE = (SINGLE_COL_WIDTH, SINGLE_COL_WIDTH * 0.75)
FIG_SIZE_DOUBLE = (DOUBLE_COL_WIDTH, DOUBLE_COL_WIDTH * 0.5)
FIG_SIZE_DOUBLE_TALL = (DOUBLE_COL_WIDTH, DOUBLE_COL_WIDTH * 0.75)

# =============================================================================
# FONT SIZES (in points)
# =============================================================================

FONT_SIZE_TITLE = 12
FONT_SIZE_AXIS_LABEL = 11
FONT_SIZE_TICK_LABEL = 9
FONT_SIZE_LEGEND = 9
FONT_SIZE_ANNOTATION = 8

FONT_SIZE_PANEL_LABEL = 14
PANEL_LABEL_WEIGHT = 'bold'

# =============================================================================
# LINE AND MARKER SIZES
# =============================================================================

LINE_WIDTH = 1.5
LINE_WIDTH_THIN = 1.0
LINE_WIDTH_THICK = 2.5
MARKER_SIZE = 5

# =============================================================================
# COLORS (tab20c palette)
# =============================================================================

TAB20C = plt.cm.tab20c.colors

# Assay temperatures: cool to warm
TEMPERATURE_COLORS = {
    15: TAB20C[0],   # blue
    25: TAB20C[8],   # green
    30: TAB20C[4],   # orange
}

# Comparison arrows drawn over the confidence bars
COLOR_ARROW = '#C0392B'
COLOR_CI = '0.35'

# Leading components vs the rest in scree plots
COLOR_PC_HIGHLIGHT = '#2E5090'
COLOR_PC_OTHER = '#B0B0B0'

# Map layers
COLOR_BOUNDARY_FACE = '#F3E5AB'
COLOR_BOUNDARY_EDGE = '#8C6D1F'
COLOR_POPULATION = '#5E4FA2'

LOADINGS_CMAP = 'RdBu_r'

# =============================================================================
# AXIS CONFIGURATION
# =============================================================================

SPINE_LINEWIDTH = 0.8
TICK_MAJOR_WIDTH = 0.8
TICK_MAJOR_LENGTH = 4
GRID_ALPHA = 0.3
GRID_LINEWIDTH = 0.5


def get_rcparams() -> Dict[str, Any]:
    """Get matplotlib rcParams for consistent figure styling.

    Returns:
        Dictionary of rcParams to update matplotlib settings.
    """
    return {
        'font.family': 'sans-serif',
        'font.sans-serif': ['Arial', 'Helvetica', 'DejaVu Sans'],
        'font.size': FONT_SIZE_TICK_LABEL,

        'axes.titlesize': FONT_SIZE_TITLE,
        'axes.labelsize': FONT_SIZE_AXIS_LABEL,
        'axes.titleweight': 'bold',
        'axes.linewidth': SPINE_LINEWIDTH,
        'axes.spines.top': False,
        'axes.spines.right': False,

        'xtick.labelsize': FONT_SIZE_TICK_LABEL,
        'ytick.labelsize': FONT_SIZE_TICK_LABEL,
        'xtick.major.width': TICK_MAJOR_WIDTH,
        'ytick.major.width': TICK_MAJOR_WIDTH,
        'xtick.major.size': TICK_MAJOR_LENGTH,
        'ytick.major.size': TICK_MAJOR_LENGTH,

        'legend.fontsize': FONT_SIZE_LEGEND,
        'legend.frameon': True,
        'legend.framealpha': 0.9,

        'lines.linewidth': LINE_WIDTH,
        'lines.markersize': MARKER_SIZE,

        'grid.alpha': GRID_ALPHA,
        'grid.linewidth': GRID_LINEWIDTH,

        'figure.dpi': 150,
        'savefig.bbox': 'tight',
        'savefig.pad_inches': 0.05,
        'figure.facecolor': 'white',
        'savefig.facecolor': 'white',
    }


def apply_rcparams() -> None:
    """Apply standardized rcParams to matplotlib."""
    plt.rcParams.update(get_rcparams())


def add_panel_label(ax, label: str, x: float = -0.12, y: float = 1.08) -> None:
    """Add a panel label (A, B, C, etc.) to an axis."""
    ax.text(x, y, label, transform=ax.transAxes,
            fontsize=FONT_SIZE_PANEL_LABEL, fontweight=PANEL_LABEL_WEIGHT,
            va='top', ha='left')


def temperature_color(temperature) -> Any:
    """Color of an assay temperature; unknown temperatures get gray."""
    return TEMPERATURE_COLORS.get(int(temperature), '0.5')


def population_palette(populations: Sequence[str]) -> Dict[str, Any]:
    """One tab20 color per population, stable for a given ordered list."""
    colors: List[Any] = list(plt.cm.tab20.colors)
    return {pop: colors[i % len(colors)] for i, pop in enumerate(populations)}
