"""
Tests for MetabolismDataLoader: schema handling, cleaning and the
sentinel-row filter of the climate table.
"""

import numpy as np
import pandas as pd
import pytest

import config
from metabolism.data_loader import MetabolismDataLoader


class TestLoadMeasurements:
    """Loading of the respirometry table."""

    def test_renames_source_headers(self, input_files, source_measurements):
        """Abbreviated headers become analysis names and notes are dropped."""
        loader = MetabolismDataLoader(*input_files)
        df = loader.load_measurements()

        assert set(config.MEASUREMENT_REQUIRED_COLUMNS) <= set(df.columns)
        assert 'Notes' not in df.columns
        assert len(df) == len(source_measurements)
        assert df['temperature'].dtype.kind == 'i'
        assert sorted(df['population'].unique()) == ['AL', 'MI', 'NC', 'VA']

    def test_accepts_analysis_names(self, tmp_path, measurements, input_files):
        """A table already using analysis names loads unchanged."""
        path = tmp_path / 'analysis_names.csv'
        measurements.to_csv(path, index=False)
        df = MetabolismDataLoader(str(path), input_files[1]).load_measurements()
        assert len(df) == len(measurements)

    def test_drops_unnamed_index_column(self, tmp_path, source_measurements, input_files):
        """Spreadsheet index columns ('Unnamed: 0') are discarded."""
        path = tmp_path / 'with_index.csv'
        source_measurements.to_csv(path, index=True)
        df = MetabolismDataLoader(str(path), input_files[1]).load_measurements()
        assert not any(col.startswith('Unnamed') for col in df.columns)

    def test_missing_file(self, tmp_path, input_files):
        """A missing input raises FileNotFoundError naming the path."""
        missing = str(tmp_path / 'nope.csv')
        with pytest.raises(FileNotFoundError, match='nope.csv'):
            MetabolismDataLoader(missing, input_files[1]).load_measurements()

    def test_missing_column_fails_fast(self, tmp_path, source_measurements, input_files):
        """A table without a rate column is rejected with the expected schema."""
        path = tmp_path / 'no_mr3.csv'
        source_measurements.drop(columns=['MR3']).to_csv(path, index=False)
        with pytest.raises(ValueError) as excinfo:
            MetabolismDataLoader(str(path), input_files[1]).load_measurements()
        message = str(excinfo.value)
        assert 'rate_3' in message
        assert 'MR3' in message
        assert 'no_mr3.csv' in message

    def test_unparseable_rate_becomes_missing(self, tmp_path, source_measurements, input_files):
        """Non-numeric rate cells are set to missing, not dropped."""
        broken = source_measurements.copy()
        broken['MR2'] = broken['MR2'].astype(object)
        broken.loc[0, 'MR2'] = 'bubble'
        path = tmp_path / 'broken.csv'
        broken.to_csv(path, index=False)

        df = MetabolismDataLoader(str(path), input_files[1]).load_measurements()
        assert len(df) == len(broken)
        assert np.isnan(df.loc[0, 'rate_2'])
        assert df['rate_2'].isna().sum() == 1

    def test_rows_without_population_dropped(self, tmp_path, source_measurements, input_files):
        """Rows with a blank population label are non-data rows."""
        extra = source_measurements.copy()
        extra.loc[len(extra)] = {'File': 'blank.txt', 'Mark': 99, 'Pop': '', 'Temp': 25,
                                 'Mass': 0.3, 'MR1': 1.0, 'MR2': 1.0, 'MR3': 1.0, 'Notes': ''}
        path = tmp_path / 'blank_pop.csv'
        extra.to_csv(path, index=False)

        df = MetabolismDataLoader(str(path), input_files[1]).load_measurements()
        assert len(df) == len(source_measurements)


class TestLoadClimate:
    """Loading of the climate/geography table."""

    def test_sentinel_rows_excluded(self, input_files, source_climate):
        """Summary rows without coordinates are excluded and recorded."""
        loader = MetabolismDataLoader(*input_files)
        df = loader.load_climate()

        assert 'Total' not in set(df['population'])
        assert len(loader.excluded_climate_rows) == 1
        assert len(df) == len(source_climate) - 1
        assert df['latitude'].notna().all()

    def test_sentinel_label_with_coordinates_excluded(self, tmp_path, source_climate, input_files):
        """A sentinel label is excluded even when it carries coordinates."""
        climate = source_climate.copy()
        row = climate.iloc[0].copy()
        row['Pop'] = 'Mean'
        climate.loc[len(climate)] = row
        path = tmp_path / 'mean_row.csv'
        climate.to_csv(path, index=False)

        loader = MetabolismDataLoader(input_files[0], str(path))
        df = loader.load_climate()
        assert 'Mean' not in set(df['population'])
        assert len(loader.excluded_climate_rows) == 2

    def test_season_labels_normalized(self, tmp_path, source_climate, input_files):
        """Season labels are title-cased and stripped."""
        climate = source_climate.copy()
        climate['Season'] = climate['Season'].str.upper()
        path = tmp_path / 'upper.csv'
        climate.to_csv(path, index=False)

        df = MetabolismDataLoader(input_files[0], str(path)).load_climate()
        assert set(df['season']) == set(config.SEASONS) | {config.ANNUAL_SEASON_LABEL}

    def test_load_data_returns_both_tables(self, input_files):
        measurements, climate = MetabolismDataLoader(*input_files).load_data()
        assert isinstance(measurements, pd.DataFrame)
        assert isinstance(climate, pd.DataFrame)
        assert set(measurements['population']) == set(climate['population'])
