"""
Shared synthetic data for the metabolism analysis tests.

Builders produce tables in the source layout (abbreviated headers) so the
loader can be exercised, and in analysis layout for the model stages.
"""

import numpy as np
import pandas as pd
import pytest

import config

SEASON_OFFSETS = {'Winter': -12.0, 'Spring': 0.0, 'Summer': 11.0, 'Fall': 1.5}


def build_measurements(populations=('AL', 'MI', 'NC', 'VA'), temperatures=(15, 25, 30),
                       n_individuals=4, seed=42, mass_slope=20.0, hour_shifts=(0.0, 0.5, -0.3),
                       noise_sd=0.4):
    """
    Respirometry table in source layout, one row per caterpillar.

    Every population x temperature cell gets the same set of masses so
    mass is balanced across cells.
    """
    rng = np.random.RandomState(seed)
    masses = np.linspace(0.2, 0.8, n_individuals)
    temp_effect = {t: 0.8 * (t - temperatures[0]) for t in temperatures}
    pop_effect = {p: 1.5 * i for i, p in enumerate(populations)}

    rows = []
    for p in populations:
        for t in temperatures:
            for k, mass in enumerate(masses):
                base = 5.0 + mass_slope * mass + temp_effect[t] + pop_effect[p]
                rates = [base + shift + rng.normal(0, noise_sd) for shift in hour_shifts]
                rows.append({
                    'File': f'{p}_{t}_{k + 1}.txt',
                    'Mark': k + 1,
                    'Pop': p,
                    'Temp': t,
                    'Mass': round(mass, 4),
                    'MR1': rates[0],
                    'MR2': rates[1],
                    'MR3': rates[2],
                    'Notes': '',
                })
    return pd.DataFrame(rows)


def build_climate(populations=('AL', 'MI', 'NC', 'VA'), seed=7, include_annual=True,
                  sentinel_rows=True):
    """
    Climate/geography table in source layout, one row per population and season.

    Latitude increases with population order and temperatures decrease
    with latitude.
    """
    rng = np.random.RandomState(seed)
    rows = []
    for i, p in enumerate(populations):
        lat = 33.0 + 2.5 * i
        lon = -86.0 + 1.7 * i
        elev = 120.0 + 85.0 * i
        seasons = list(config.SEASONS) + ([config.ANNUAL_SEASON_LABEL] if include_annual else [])
        for season in seasons:
            offset = SEASON_OFFSETS.get(season, 0.0)
            tmean = 30.0 - 0.6 * lat + offset + rng.normal(0, 0.3)
            trange = 10.0 + 0.1 * i + rng.normal(0, 0.2)
            rows.append({
                'Pop': p,
                'Season': season,
                'Elev': elev,
                'PPT': 250.0 + 12.0 * i + rng.normal(0, 5.0),
                'Tmin': tmean - trange / 2,
                'Tmean': tmean,
                'Tmax': tmean + trange / 2,
                'Trange': trange,
                'Lat': lat,
                'Long': lon,
            })
    if sentinel_rows:
        rows.append({'Pop': 'Total', 'Season': 'Annual', 'Elev': np.nan, 'PPT': np.nan,
                     'Tmin': np.nan, 'Tmean': np.nan, 'Tmax': np.nan, 'Trange': np.nan,
                     'Lat': np.nan, 'Long': np.nan})
    return pd.DataFrame(rows)


def to_analysis_measurements(source: pd.DataFrame) -> pd.DataFrame:
    df = source.drop(columns=['Notes']).rename(columns=config.MEASUREMENT_COLUMN_MAP)
    df['population'] = df['population'].astype(str)
    return df


def to_analysis_climate(source: pd.DataFrame) -> pd.DataFrame:
    df = source.rename(columns=config.CLIMATE_COLUMN_MAP)
    return df[df['latitude'].notna()].reset_index(drop=True)


def build_long(populations=('A', 'B'), temperatures=(15, 30), n_individuals=5, seed=42,
               mass_slope=2.0, temperature_offset=5.0, hour_shifts=(0.0, 0.5, -0.3), noise_sd=0.2):
    """
    Long readings for model tests: rate = mass_slope * mass + offsets + noise.

    The temperature offset applies to every temperature above the first.
    """
    rng = np.random.RandomState(seed)
    masses = np.linspace(0.5, 2.5, n_individuals)
    rows = []
    individual = 0
    for p_idx, p in enumerate(populations):
        for t in temperatures:
            for mass in masses:
                individual += 1
                for hour, shift in zip(config.HOUR_LEVELS, hour_shifts):
                    rate = (mass_slope * mass
                            + (temperature_offset if t != temperatures[0] else 0.0)
                            + 0.3 * p_idx + shift + rng.normal(0, noise_sd))
                    rows.append({
                        'population': p,
                        'temperature': t,
                        'mass': mass,
                        'individual': individual,
                        'hour': hour,
                        'rate': rate,
                    })
    return pd.DataFrame(rows)


@pytest.fixture
def source_measurements():
    return build_measurements()


@pytest.fixture
def source_climate():
    return build_climate()


@pytest.fixture
def measurements(source_measurements):
    return to_analysis_measurements(source_measurements)


@pytest.fixture
def climate(source_climate):
    return to_analysis_climate(source_climate)


@pytest.fixture
def input_files(tmp_path, source_measurements, source_climate):
    """Both source tables written as CSV; returns (measurements_path, climate_path)."""
    measurements_path = tmp_path / 'respirometry.csv'
    climate_path = tmp_path / 'population_climate.csv'
    source_measurements.to_csv(measurements_path, index=False)
    source_climate.to_csv(climate_path, index=False)
    return str(measurements_path), str(climate_path)


@pytest.fixture
def long_data():
    return build_long()
