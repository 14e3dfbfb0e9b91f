# -*- coding: utf-8 -*-
"""
Respirometry Preprocessor Module

This module reshapes the per-caterpillar respirometry table into one row per
hourly reading, attaches population latitude to every reading, and folds
the seasonal climate normals into one row per population.
"""

from dataclasses import dataclass
import logging

import numpy as np
import pandas as pd

import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedData:
    """Long respirometry table and wide per-population climate table."""

    long: pd.DataFrame
    climate_wide: pd.DataFrame

    @property
    def populations(self):
        return sorted(self.long['population'].unique())


class MetabolismPreprocessor:
    """
    Reshapes and joins the two input tables.

    Attributes:
        measurements (pd.DataFrame): One row per caterpillar, rate columns
            rate_1..rate_3
        climate (pd.DataFrame): One row per population and season

    Example:
        >>> preprocessor = MetabolismPreprocessor(measurements, climate)
        >>> prepared = preprocessor.preprocess_all()
        >>> prepared.long.shape[0] == 3 * len(measurements)
        True
    """

    def __init__(self, measurements: pd.DataFrame, climate: pd.DataFrame):
        """
        Initialize preprocessor.

        Args:
            measurements (pd.DataFrame): Loaded respirometry table
            climate (pd.DataFrame): Loaded climate table
        """
        self.measurements = measurements.copy()
        self.climate = climate.copy()
        logger.info(f"Initialized MetabolismPreprocessor with {len(measurements)} individuals, "
                    f"{len(climate)} climate records")

    def reshape_to_long(self) -> pd.DataFrame:
        """
        Convert the three hourly rate columns into one row per reading.

        Every other column is carried unchanged; an 'individual' identifier
        (1-based source row) is added so repeated readings stay linked.

        Returns:
            pd.DataFrame: 3 x n_individuals rows with columns 'hour' and 'rate'
        """
        wide = self.measurements.reset_index(drop=True).copy()
        if 'individual' not in wide.columns:
            wide['individual'] = np.arange(1, len(wide) + 1)

        id_vars = [col for col in wide.columns if col not in config.RATE_COLUMNS]
        long = wide.melt(
            id_vars=id_vars,
            value_vars=config.RATE_COLUMNS,
            var_name='hour',
            value_name='rate',
        )
        hour_map = dict(zip(config.RATE_COLUMNS, config.HOUR_LEVELS))
        long['hour'] = long['hour'].map(hour_map).astype(int)

        long = long.sort_values(['individual', 'hour'], kind='mergesort').reset_index(drop=True)

        logger.info(f"Reshaped {len(wide)} individuals into {len(long)} hourly readings "
                    f"({int(long['rate'].isna().sum())} missing rates)")
        return long

    def population_latitudes(self) -> pd.DataFrame:
        """
        One latitude per population (first non-missing seasonal value).

        Returns:
            pd.DataFrame: Columns population, latitude
        """
        return (
            self.climate.groupby('population', sort=True)['latitude']
            .first()
            .reset_index()
        )

    def attach_latitude(self, long: pd.DataFrame) -> pd.DataFrame:
        """
        Left-join population latitude onto every reading.

        Readings whose population has no climate record keep a missing
        latitude; no value is imputed.

        Args:
            long (pd.DataFrame): Output of reshape_to_long()

        Returns:
            pd.DataFrame: Same rows, plus a 'latitude' column
        """
        latitudes = self.population_latitudes()
        base = long.drop(columns=['latitude'], errors='ignore')
        merged = base.merge(latitudes, on='population', how='left', validate='many_to_one')

        unmatched = sorted(merged.loc[merged['latitude'].isna(), 'population'].unique())
        if unmatched:
            logger.warning(f"  No climate record for population(s) {unmatched}; latitude left missing")
        logger.info(f"Attached latitude to {int(merged['latitude'].notna().sum())}/{len(merged)} readings")
        return merged

    def build_climate_wide(self) -> pd.DataFrame:
        """
        Fold seasonal records into one row per population.

        The annual aggregate rows are excluded. Seasonal variables become
        '<season>_<variable>' columns (config.get_climate_feature_columns()
        order), followed by latitude, longitude and elevation.

        Returns:
            pd.DataFrame: Index 'population', one column per feature
        """
        seasonal = self.climate[self.climate['season'].isin(config.SEASONS)]
        n_annual = int((self.climate['season'] == config.ANNUAL_SEASON_LABEL).sum())
        if n_annual:
            logger.info(f"  Excluded {n_annual} '{config.ANNUAL_SEASON_LABEL}' record(s) from the PCA table")

        pivot = seasonal.pivot(index='population', columns='season', values=config.CLIMATE_VARIABLES)
        pivot.columns = [
            config.get_season_column(season, variable) for variable, season in pivot.columns
        ]

        geography = self.climate.groupby('population', sort=True)[config.GEOGRAPHY_VARIABLES].first()
        wide = pivot.join(geography, how='outer')
        wide = wide.reindex(columns=config.get_climate_feature_columns())
        wide.index.name = 'population'
        wide = wide.sort_index()

        incomplete = wide.index[wide.isna().any(axis=1)].tolist()
        if incomplete:
            logger.warning(f"  Dropped population(s) with incomplete climate features: {incomplete}")
            wide = wide.dropna()

        logger.info(f"Built climate table: {wide.shape[0]} populations x {wide.shape[1]} features")
        return wide

    def preprocess_all(self) -> PreparedData:
        """
        Run reshaping, latitude join and climate folding.

        Returns:
            PreparedData: long readings and wide climate table
        """
        long = self.attach_latitude(self.reshape_to_long())
        climate_wide = self.build_climate_wide()
        return PreparedData(long=long, climate_wide=climate_wide)
