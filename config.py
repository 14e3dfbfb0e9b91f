# -*- coding: utf-8 -*-
"""
Configuration for the spongy moth population metabolism analysis

This file holds every parameter of the project: input locations, the
expected schema of the respirometry and climate tables, model settings
and output locations.
"""

import os

# =============================================================================
# PATHS
# =============================================================================

# Project base path
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
DATA_ROOT = os.path.abspath(os.path.join(PROJECT_ROOT, 'data'))

# Input tables
MEASUREMENTS_PATH = os.path.join(DATA_ROOT, 'respirometry.csv')
CLIMATE_PATH = os.path.join(DATA_ROOT, 'population_climate.csv')

# Quarantine boundary polygons (only used by the population map)
BOUNDARY_SHAPEFILE = os.path.join(DATA_ROOT, 'quarantine', 'quarantine_boundary.shp')

# Results
RESULTS_DIR = os.path.join(PROJECT_ROOT, 'results')
RESULTS_SUBDIRS = {
    'lme': 'lme',
    'marginal_means': 'marginal_means',
    'pca': 'pca',
    'regression': 'regression',
    'figures': 'figures',
}

# Field separator of the delimited input tables
INPUT_DELIMITER = ','

# =============================================================================
# RESPIROMETRY TABLE
# =============================================================================

# Abbreviated source headers -> analysis names
MEASUREMENT_COLUMN_MAP = {
    'File': 'filename',
    'Mark': 'marker',
    'Pop': 'population',
    'Temp': 'temperature',
    'Mass': 'mass',
    'MR1': 'rate_1',
    'MR2': 'rate_2',
    'MR3': 'rate_3',
}

# Free-text columns carried in the spreadsheet export
MEASUREMENT_DROP_COLUMNS = ['Notes', 'Comments']

# Hourly oxygen consumption columns (uL/hr), in sampling order
RATE_COLUMNS = ['rate_1', 'rate_2', 'rate_3']
HOUR_LEVELS = [1, 2, 3]

# Assay temperatures (degrees C)
TEMPERATURE_LEVELS = [15, 25, 30]

MEASUREMENT_REQUIRED_COLUMNS = list(MEASUREMENT_COLUMN_MAP.values())

# =============================================================================
# CLIMATE / GEOGRAPHY TABLE
# =============================================================================

CLIMATE_COLUMN_MAP = {
    'Pop': 'population',
    'Season': 'season',
    'Elev': 'elevation',
    'PPT': 'precipitation',
    'Tmin': 'tmin',
    'Tmean': 'tmean',
    'Tmax': 'tmax',
    'Trange': 'trange',
    'Lat': 'latitude',
    'Long': 'longitude',
}

CLIMATE_REQUIRED_COLUMNS = list(CLIMATE_COLUMN_MAP.values())

# 30-year normals are reported per season plus an annual aggregate
SEASONS = ['Winter', 'Spring', 'Summer', 'Fall']
ANNUAL_SEASON_LABEL = 'Annual'

# Seasonal climate variables folded into the wide PCA table
CLIMATE_VARIABLES = ['precipitation', 'tmin', 'tmean', 'tmax', 'trange']

# Static per-population variables
GEOGRAPHY_VARIABLES = ['latitude', 'longitude', 'elevation']

# Population labels marking non-data rows in the location export
# (blank labels are always excluded)
EXCLUDED_POPULATION_LABELS = ['NA', 'N/A', 'Unknown', 'Total', 'Mean']

# =============================================================================
# MIXED-EFFECTS MODEL
# =============================================================================

# rate ~ mass + population * temperature + (1 | hour)
LME_RESPONSE = 'rate'
LME_COVARIATE = 'mass'
LME_GROUP = 'hour'

LME_PARAMS = {
    'reml': True,
    'maxiter': 500,
    # Tried in turn only when the default optimizer raises
    'fallback_methods': ['powell', 'nm'],
}

CONFIDENCE_LEVEL = 0.95
ALPHA = 0.05

# Multiplicity adjustment for pairwise population comparisons within a
# temperature: 'tukey', 'bonferroni' or 'none'
PAIRWISE_ADJUSTMENT = 'tukey'

# Cells below this count get no comparison interval
MIN_CELL_OBSERVATIONS = 2

# =============================================================================
# PCA AND REGRESSION
# =============================================================================

# Leading components regressed against marginal-mean rates
N_REGRESSION_COMPONENTS = 2

# joblib workers for the per temperature x component regressions
N_JOBS = 1

# =============================================================================
# FIGURES
# =============================================================================

FIGURE_DPI = 300
FIGURE_FORMAT = 'png'


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def get_season_column(season, variable):
    """
    Name of the wide-table column for a season and climate variable.

    Args:
        season (str): Season label (e.g. 'Winter')
        variable (str): Climate variable (e.g. 'tmin')

    Returns:
        str: Column name, e.g. 'winter_tmin'
    """
    if season not in SEASONS:
        raise ValueError(f"Unknown season: {season}. Expected one of {SEASONS}")
    return f"{season.lower()}_{variable}"


def get_climate_feature_columns():
    """
    Ordered feature columns of the wide climate table.

    Returns:
        list: Seasonal columns (season-major) followed by geography columns
    """
    seasonal = [
        get_season_column(season, variable)
        for season in SEASONS
        for variable in CLIMATE_VARIABLES
    ]
    return seasonal + GEOGRAPHY_VARIABLES


def get_results_dir(stage, root=None):
    """
    Output directory for a pipeline stage.

    Args:
        stage (str): Key of RESULTS_SUBDIRS
        root (str, optional): Results root (default: RESULTS_DIR)

    Returns:
        str: Directory path (not created)
    """
    if stage not in RESULTS_SUBDIRS:
        raise ValueError(f"Unknown stage: {stage}. Expected one of {list(RESULTS_SUBDIRS)}")
    return os.path.join(root or RESULTS_DIR, RESULTS_SUBDIRS[stage])
