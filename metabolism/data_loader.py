# -*- coding: utf-8 -*-
"""
Respirometry and Climate Data Loader Module

This module loads the two delimited input tables of the analysis (hourly
respirometry readings and per-population climate normals), renames the
abbreviated source headers to analysis names and fails fast when a table
does not have the expected schema.
"""

import logging
import os
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

import config

logger = logging.getLogger(__name__)


class MetabolismDataLoader:
    """
    Loads the respirometry table and the population climate table.

    Both tables are flat delimited text exports of spreadsheets. The loader
    removes spreadsheet debris (empty rows/columns, notes columns, rows
    without a population label), renames headers according to
    config.MEASUREMENT_COLUMN_MAP / config.CLIMATE_COLUMN_MAP and checks
    that every required analysis column is present.

    Attributes:
        measurements_path (str): Path to the respirometry table
        climate_path (str): Path to the climate/geography table
        delimiter (str): Field separator of both tables

    Example:
        >>> loader = MetabolismDataLoader('data/respirometry.csv',
        ...                               'data/population_climate.csv')
        >>> measurements, climate = loader.load_data()
    """

    def __init__(self, measurements_path: Optional[str] = None,
                 climate_path: Optional[str] = None,
                 delimiter: str = config.INPUT_DELIMITER):
        """
        Initialize the data loader.

        Args:
            measurements_path (str, optional): Respirometry table
                (default: config.MEASUREMENTS_PATH)
            climate_path (str, optional): Climate table
                (default: config.CLIMATE_PATH)
            delimiter (str): Field separator (default: config.INPUT_DELIMITER)
        """
        self.measurements_path = measurements_path or config.MEASUREMENTS_PATH
        self.climate_path = climate_path or config.CLIMATE_PATH
        self.delimiter = delimiter
        self.excluded_climate_rows = pd.DataFrame()

    def _read_table(self, path: str, column_map: Dict[str, str],
                    required_columns: List[str], drop_columns: List[str]) -> pd.DataFrame:
        """
        Read one delimited table and bring it to analysis column names.

        Args:
            path (str): File path
            column_map (Dict[str, str]): Source header -> analysis name
            required_columns (List[str]): Analysis columns that must exist
            drop_columns (List[str]): Free-text columns to discard

        Returns:
            pd.DataFrame: Table with analysis column names

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If required columns are missing
        """
        if not os.path.exists(path):
            raise FileNotFoundError(f"Input file not found: {path}")

        df = pd.read_csv(path, sep=self.delimiter, skipinitialspace=True)
        df.columns = [str(col).strip() for col in df.columns]
        n_raw = len(df)

        # Spreadsheet exports carry trailing unnamed and notes columns
        unnamed = [col for col in df.columns if col.startswith('Unnamed:')]
        dropped = [col for col in df.columns if col in drop_columns] + unnamed
        if dropped:
            df = df.drop(columns=dropped)
            logger.info(f"  Dropped non-data columns: {dropped}")

        df = df.dropna(how='all')

        df = df.rename(columns=column_map)
        missing = [col for col in required_columns if col not in df.columns]
        if missing:
            source_names = {v: k for k, v in column_map.items()}
            expected = [source_names.get(col, col) for col in required_columns]
            raise ValueError(
                f"Unexpected schema in {path}: missing columns {missing}. "
                f"Expected headers: {expected} "
                f"(or analysis names {required_columns}); found {list(df.columns)}"
            )

        logger.info(f"  Read {n_raw} rows from {path} ({len(df)} non-empty)")
        return df

    @staticmethod
    def _clean_population(series: pd.Series) -> pd.Series:
        """Strip population labels, keeping missing values missing."""
        cleaned = series.astype('string').str.strip()
        return cleaned.replace('', pd.NA)

    @staticmethod
    def _coerce_numeric(df: pd.DataFrame, columns: List[str], label: str) -> pd.DataFrame:
        """Convert columns to numbers, logging cells that could not be parsed."""
        for col in columns:
            before = df[col].notna()
            df[col] = pd.to_numeric(df[col], errors='coerce')
            n_bad = int((before & df[col].isna()).sum())
            if n_bad > 0:
                logger.warning(f"  {label}: {n_bad} non-numeric value(s) in '{col}' set to missing")
        return df

    def load_measurements(self) -> pd.DataFrame:
        """
        Load the respirometry table.

        Returns:
            pd.DataFrame: One row per caterpillar with columns filename,
                marker, population, temperature, mass, rate_1, rate_2, rate_3
        """
        logger.info(f"Loading respirometry table: {self.measurements_path}")
        df = self._read_table(
            self.measurements_path,
            config.MEASUREMENT_COLUMN_MAP,
            config.MEASUREMENT_REQUIRED_COLUMNS,
            config.MEASUREMENT_DROP_COLUMNS,
        )

        df['population'] = self._clean_population(df['population'])
        no_population = df['population'].isna()
        if no_population.any():
            logger.info(f"  Dropped {int(no_population.sum())} row(s) without a population label")
            df = df[~no_population]

        df = self._coerce_numeric(
            df, ['temperature', 'mass'] + config.RATE_COLUMNS, 'respirometry'
        )

        # Integer-valued temperatures become int so they match TEMPERATURE_LEVELS
        temps = df['temperature']
        if temps.notna().all() and np.allclose(temps, np.round(temps)):
            df['temperature'] = temps.round().astype(int)

        df['population'] = df['population'].astype(str)
        df = df.reset_index(drop=True)

        logger.info(f"  Loaded {len(df)} individuals from {df['population'].nunique()} populations")
        return df

    def _is_excluded_population(self, df: pd.DataFrame) -> pd.Series:
        """
        Predicate for non-data rows of the location/climate export.

        A row is excluded when its population label is blank or one of
        config.EXCLUDED_POPULATION_LABELS, or when it has no coordinates.
        """
        labels = df['population']
        sentinels = {label.lower() for label in config.EXCLUDED_POPULATION_LABELS}
        is_sentinel = labels.isna() | labels.str.lower().isin(sentinels).fillna(False)
        no_coordinates = df['latitude'].isna() | df['longitude'].isna()
        return (is_sentinel | no_coordinates).astype(bool)

    def load_climate(self) -> pd.DataFrame:
        """
        Load the climate/geography table.

        Returns:
            pd.DataFrame: One row per population and season with columns
                population, season, elevation, precipitation, tmin, tmean,
                tmax, trange, latitude, longitude
        """
        logger.info(f"Loading climate table: {self.climate_path}")
        df = self._read_table(
            self.climate_path,
            config.CLIMATE_COLUMN_MAP,
            config.CLIMATE_REQUIRED_COLUMNS,
            [],
        )

        df['population'] = self._clean_population(df['population'])
        df['season'] = df['season'].astype('string').str.strip().str.title()
        numeric = ['elevation', 'latitude', 'longitude'] + config.CLIMATE_VARIABLES
        df = self._coerce_numeric(df, numeric, 'climate')

        excluded = self._is_excluded_population(df)
        if excluded.any():
            self.excluded_climate_rows = df[excluded].copy()
            # Source line = header line + 1-based row position
            lines = [int(i) + 2 for i in df.index[excluded]]
            logger.warning(
                f"  Excluded {int(excluded.sum())} non-data row(s) from the climate table "
                f"(source lines {lines}): population labels "
                f"{self.excluded_climate_rows['population'].astype(str).tolist()}"
            )
            df = df[~excluded]

        df['population'] = df['population'].astype(str)
        df['season'] = df['season'].astype(str)
        df = df.reset_index(drop=True)

        logger.info(f"  Loaded {len(df)} climate records for {df['population'].nunique()} populations")
        return df

    def load_data(self) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """
        Load both input tables.

        Returns:
            Tuple of (measurements, climate) DataFrames
        """
        measurements = self.load_measurements()
        climate = self.load_climate()
        return measurements, climate
