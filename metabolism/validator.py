"""Respirometry and Climate Data Validator

This module checks the loaded input tables before any reshaping or model
fitting: value ranges of the respirometry readings, factor levels, and the
one-record-per-(population, season) structure of the climate table.
"""

from typing import Any, Dict, List
import logging

import numpy as np
import pandas as pd

import config

logger = logging.getLogger(__name__)


class MetabolismDataValidator:
    """Validates respirometry and climate data integrity.

    Errors are conditions under which the analysis cannot be trusted
    (non-positive mass, negative rates, unknown factor levels, duplicated
    or missing seasonal records). Warnings are conditions the pipeline
    tolerates (populations without a climate record, geography that is not
    constant across seasons, missing rates).

    Attributes:
        measurements: Respirometry table from MetabolismDataLoader
        climate: Climate table from MetabolismDataLoader

    Example:
        >>> validator = MetabolismDataValidator(measurements, climate)
        >>> results = validator.validate_all()
        >>> validator.raise_for_errors()
    """

    def __init__(self, measurements: pd.DataFrame, climate: pd.DataFrame):
        """Initialize validator with both input tables.

        Args:
            measurements: One row per caterpillar (wide rate columns)
            climate: One row per population and season
        """
        self.measurements = measurements
        self.climate = climate
        self.results = None

    def validate_measurements(self) -> Dict[str, List[str]]:
        """Check respirometry values and factor levels.

        Returns:
            Dictionary with 'errors' and 'warnings' lists.
        """
        errors, warnings_ = [], []
        df = self.measurements

        bad_mass = df['mass'].isna() | (df['mass'] <= 0)
        if bad_mass.any():
            rows = df.index[bad_mass].tolist()
            errors.append(f"{int(bad_mass.sum())} row(s) with missing or non-positive mass (rows {rows})")

        for col in config.RATE_COLUMNS:
            negative = df[col] < 0
            if negative.any():
                errors.append(f"{int(negative.sum())} negative value(s) in '{col}'")

        n_missing_rates = int(df[config.RATE_COLUMNS].isna().sum().sum())
        if n_missing_rates > 0:
            warnings_.append(f"{n_missing_rates} missing rate value(s); excluded from model fitting")

        temps = pd.unique(df['temperature'].dropna())
        unknown = sorted(set(temps.tolist()) - set(config.TEMPERATURE_LEVELS))
        if df['temperature'].isna().any():
            errors.append(f"{int(df['temperature'].isna().sum())} row(s) with missing assay temperature")
        if unknown:
            errors.append(
                f"Unknown assay temperature(s) {unknown}; expected {config.TEMPERATURE_LEVELS}"
            )

        return {'errors': errors, 'warnings': warnings_}

    def validate_climate(self) -> Dict[str, List[str]]:
        """Check the (population, season) structure of the climate table.

        Returns:
            Dictionary with 'errors' and 'warnings' lists.
        """
        errors, warnings_ = [], []
        df = self.climate
        allowed_seasons = set(config.SEASONS) | {config.ANNUAL_SEASON_LABEL}

        unknown = sorted(set(df['season']) - allowed_seasons)
        if unknown:
            errors.append(f"Unknown season label(s) {unknown}; expected {sorted(allowed_seasons)}")

        duplicated = df.duplicated(subset=['population', 'season'], keep=False)
        if duplicated.any():
            pairs = (
                df.loc[duplicated, ['population', 'season']]
                .drop_duplicates()
                .apply(tuple, axis=1)
                .tolist()
            )
            errors.append(f"Duplicate (population, season) records: {pairs}")

        seasonal = df[df['season'].isin(config.SEASONS)]
        for population, group in df.groupby('population'):
            present = set(seasonal.loc[seasonal['population'] == population, 'season'])
            missing = [s for s in config.SEASONS if s not in present]
            if missing:
                errors.append(f"Population '{population}' has no record for season(s) {missing}")

            for col in config.GEOGRAPHY_VARIABLES:
                values = group[col].dropna().unique()
                if len(values) > 1 and not np.allclose(values, values[0]):
                    warnings_.append(
                        f"Population '{population}': '{col}' differs across seasons "
                        f"({sorted(values.tolist())}); the first value is used"
                    )

        return {'errors': errors, 'warnings': warnings_}

    def validate_cross_references(self) -> Dict[str, List[str]]:
        """Check that measured populations have a climate record.

        Returns:
            Dictionary with 'errors' and 'warnings' lists.
        """
        measured = set(self.measurements['population'])
        described = set(self.climate['population'])
        without_climate = sorted(measured - described)
        warnings_ = []
        if without_climate:
            warnings_.append(
                f"Populations without a climate record (latitude left missing, "
                f"excluded from PCA regressions): {without_climate}"
            )
        return {'errors': [], 'warnings': warnings_}

    def validate_all(self) -> Dict[str, Any]:
        """Run all validation checks.

        Returns:
            Dictionary with keys:
            - errors: List of fatal issues
            - warnings: List of tolerated issues
            - summary: Counts of rows, populations and seasons
        """
        checks = [
            self.validate_measurements(),
            self.validate_climate(),
            self.validate_cross_references(),
        ]
        errors = [msg for check in checks for msg in check['errors']]
        warnings_ = [msg for check in checks for msg in check['warnings']]

        summary = {
            'n_individuals': int(len(self.measurements)),
            'n_populations_measured': int(self.measurements['population'].nunique()),
            'n_climate_records': int(len(self.climate)),
            'n_populations_climate': int(self.climate['population'].nunique()),
        }

        for msg in warnings_:
            logger.warning(f"  {msg}")
        for msg in errors:
            logger.error(f"  {msg}")
        logger.info(f"Validation finished: {len(errors)} error(s), {len(warnings_)} warning(s)")

        self.results = {'errors': errors, 'warnings': warnings_, 'summary': summary}
        return self.results

    def raise_for_errors(self):
        """Raise ValueError listing every validation error, if any."""
        if self.results is None:
            self.validate_all()
        if self.results['errors']:
            details = "\n".join(f"  - {msg}" for msg in self.results['errors'])
            raise ValueError(f"Input validation failed:\n{details}")
