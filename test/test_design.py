"""
Tests for the treatment-coded design matrix.
"""

import numpy as np
import pandas as pd
import pytest

from metabolism.design import TreatmentDesign, drop_aliased_columns


@pytest.fixture
def design():
    return TreatmentDesign(['AL', 'MI', 'NC'], [15, 25, 30])


class TestTreatmentDesign:

    def test_column_names(self, design):
        assert design.column_names[:2] == ['Intercept', 'mass']
        assert 'population[T.AL]' not in design.column_names
        assert 'temperature[T.15]' not in design.column_names
        assert 'population[T.NC]:temperature[T.30]' in design.column_names
        assert len(design.column_names) == design.expected_parameter_count == 10

    def test_levels_pinned_from_data(self):
        data = pd.DataFrame({
            'population': ['VA', 'AL', 'MI', 'AL'],
            'temperature': [30, 15, 25, 30],
            'mass': [0.1, 0.2, 0.3, 0.4],
        })
        design = TreatmentDesign.from_data(data)
        assert design.reference_population == 'AL'
        assert design.reference_temperature == 15
        assert design.temperature_levels == [15, 25, 30]

    def test_reference_cell_row(self, design):
        """The reference cell has only the intercept and the covariate set."""
        frame = pd.DataFrame({'population': ['AL'], 'temperature': [15], 'mass': [0.5]})
        row = design.encode(frame).iloc[0]
        assert row['Intercept'] == 1.0
        assert row['mass'] == 0.5
        assert row.drop(['Intercept', 'mass']).sum() == 0.0

    def test_interaction_row(self, design):
        frame = pd.DataFrame({'population': ['MI'], 'temperature': [30], 'mass': [0.5]})
        row = design.encode(frame).iloc[0]
        assert row['population[T.MI]'] == 1.0
        assert row['temperature[T.30]'] == 1.0
        assert row['population[T.MI]:temperature[T.30]'] == 1.0
        assert row['population[T.NC]:temperature[T.30]'] == 0.0

    def test_unknown_level_rejected(self, design):
        frame = pd.DataFrame({'population': ['XX'], 'temperature': [15], 'mass': [0.5]})
        with pytest.raises(ValueError, match='XX'):
            design.encode(frame)

    def test_grid_is_population_major(self, design):
        grid = design.grid(0.4)
        assert len(grid) == 9
        assert list(grid['population'][:3]) == ['AL', 'AL', 'AL']
        assert list(grid['temperature'][:3]) == [15, 25, 30]
        assert (grid['mass'] == 0.4).all()


class TestDropAliasedColumns:

    def test_full_rank_design_unchanged(self, design):
        cells = design.grid(0.0)
        frame = pd.concat([cells.assign(mass=m) for m in (0.2, 0.5, 0.9)], ignore_index=True)
        exog = design.encode(frame)
        kept, dropped = drop_aliased_columns(exog)
        assert dropped == []
        assert list(kept.columns) == design.column_names

    def test_empty_cell_column_dropped(self, design):
        cells = design.grid(0.0)
        cells = cells[~((cells['population'] == 'NC') & (cells['temperature'] == 30))]
        frame = pd.concat([cells.assign(mass=m) for m in (0.2, 0.5, 0.9)], ignore_index=True)
        kept, dropped = drop_aliased_columns(design.encode(frame))
        assert dropped == ['population[T.NC]:temperature[T.30]']
        assert np.linalg.matrix_rank(kept.to_numpy()) == kept.shape[1]

    def test_duplicate_column_dropped(self):
        exog = pd.DataFrame({'a': [1.0, 1.0, 1.0, 1.0], 'b': [1.0, 2.0, 3.0, 4.0],
                             'c': [2.0, 4.0, 6.0, 8.0]})
        kept, dropped = drop_aliased_columns(exog)
        assert list(kept.columns) == ['a', 'b']
        assert dropped == ['c']
