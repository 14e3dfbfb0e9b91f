# -*- coding: utf-8 -*-
"""
Treatment-Coded Design Module

Explicit one-hot encoding for rate ~ mass + population * temperature with
a pinned, documented reference level for each factor. Population levels are
ordered alphabetically and temperature levels ascending; the first level of
each is the reference and gets no column.
"""

from typing import Dict, List, Sequence, Tuple
import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


def _population_label(level) -> str:
    return f"population[T.{level}]"


def _temperature_label(level) -> str:
    return f"temperature[T.{level}]"


class TreatmentDesign:
    """
    Fixed-effects design matrix builder.

    Columns, in order:
        Intercept, <covariate>, population[T.p] (P-1), temperature[T.t] (T-1),
        population[T.p]:temperature[T.t] ((P-1)(T-1))

    Attributes:
        population_levels (List[str]): Ordered population levels
        temperature_levels (List[int]): Ordered temperature levels
        covariate (str): Continuous covariate column

    Example:
        >>> design = TreatmentDesign.from_data(data)
        >>> exog = design.encode(data)
        >>> exog.shape[1] == design.expected_parameter_count
        True
    """

    def __init__(self, population_levels: Sequence[str], temperature_levels: Sequence[int],
                 covariate: str = 'mass'):
        if len(population_levels) < 1 or len(temperature_levels) < 1:
            raise ValueError("Design needs at least one population and one temperature level")
        self.population_levels = [str(level) for level in population_levels]
        self.temperature_levels = [int(level) for level in temperature_levels]
        self.covariate = covariate

    @classmethod
    def from_data(cls, data: pd.DataFrame, covariate: str = 'mass') -> 'TreatmentDesign':
        """Pin levels from the populations and temperatures present in data."""
        populations = sorted(data['population'].astype(str).unique())
        temperatures = sorted(int(t) for t in pd.unique(data['temperature']))
        return cls(populations, temperatures, covariate=covariate)

    @property
    def reference_population(self) -> str:
        return self.population_levels[0]

    @property
    def reference_temperature(self) -> int:
        return self.temperature_levels[0]

    @property
    def term_columns(self) -> Dict[str, List[str]]:
        """Design columns belonging to each model term."""
        pops = self.population_levels[1:]
        temps = self.temperature_levels[1:]
        return {
            'Intercept': ['Intercept'],
            self.covariate: [self.covariate],
            'population': [_population_label(p) for p in pops],
            'temperature': [_temperature_label(t) for t in temps],
            'population:temperature': [
                f"{_population_label(p)}:{_temperature_label(t)}" for p in pops for t in temps
            ],
        }

    @property
    def column_names(self) -> List[str]:
        return [col for cols in self.term_columns.values() for col in cols]

    @property
    def expected_parameter_count(self) -> int:
        n_pop = len(self.population_levels)
        n_temp = len(self.temperature_levels)
        return 1 + 1 + (n_pop - 1) + (n_temp - 1) + (n_pop - 1) * (n_temp - 1)

    def encode(self, frame: pd.DataFrame) -> pd.DataFrame:
        """
        Build the full design matrix for a frame.

        Args:
            frame (pd.DataFrame): Columns population, temperature and the covariate

        Returns:
            pd.DataFrame: One row per frame row, columns self.column_names
        """
        population = frame['population'].astype(str).to_numpy()
        temperature = np.asarray(frame['temperature']).astype(int)

        unknown_pops = set(population) - set(self.population_levels)
        unknown_temps = set(temperature.tolist()) - set(self.temperature_levels)
        if unknown_pops or unknown_temps:
            raise ValueError(
                f"Levels outside the design: populations {sorted(unknown_pops)}, "
                f"temperatures {sorted(unknown_temps)}"
            )

        columns = {
            'Intercept': np.ones(len(frame)),
            self.covariate: frame[self.covariate].astype(float).to_numpy(),
        }
        pop_dummies = {p: (population == p).astype(float) for p in self.population_levels[1:]}
        temp_dummies = {t: (temperature == t).astype(float) for t in self.temperature_levels[1:]}
        for p, values in pop_dummies.items():
            columns[_population_label(p)] = values
        for t, values in temp_dummies.items():
            columns[_temperature_label(t)] = values
        for p, p_values in pop_dummies.items():
            for t, t_values in temp_dummies.items():
                columns[f"{_population_label(p)}:{_temperature_label(t)}"] = p_values * t_values

        return pd.DataFrame(columns, index=frame.index)[self.column_names]

    def grid(self, covariate_value: float) -> pd.DataFrame:
        """
        Reference grid: every population x temperature cell at one covariate value.

        Rows are population-major (all temperatures of the first population,
        then the next population).
        """
        cells = [(p, t) for p in self.population_levels for t in self.temperature_levels]
        grid = pd.DataFrame(cells, columns=['population', 'temperature'])
        grid[self.covariate] = float(covariate_value)
        return grid


def drop_aliased_columns(exog: pd.DataFrame, tol: float = 1e-10) -> Tuple[pd.DataFrame, List[str]]:
    """
    Remove design columns that carry no information.

    A column is dropped when it is all zero (an empty population x
    temperature cell) or a linear combination of the columns kept before it
    (a confounded cell pattern). Dropped coefficients are treated as zero,
    which leaves every estimable function of the parameters unchanged.

    Args:
        exog (pd.DataFrame): Full design matrix
        tol (float): Relative tolerance for the rank decision

    Returns:
        Tuple of (design with kept columns, list of dropped column names)
    """
    kept, dropped = [], []
    values = exog.to_numpy(dtype=float)
    rank = 0
    for j, name in enumerate(exog.columns):
        column = values[:, j]
        if not np.any(column):
            dropped.append(name)
            continue
        candidate = values[:, [exog.columns.get_loc(k) for k in kept] + [j]]
        new_rank = np.linalg.matrix_rank(candidate, tol=tol * max(1.0, np.abs(candidate).max()) * max(candidate.shape))
        if new_rank > rank:
            kept.append(name)
            rank = new_rank
        else:
            dropped.append(name)

    if dropped:
        logger.warning(f"  Dropped {len(dropped)} aliased design column(s): {dropped}")
    return exog[kept], dropped
