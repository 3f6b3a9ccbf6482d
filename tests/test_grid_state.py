"""Tests for record types, GridParams validation and the error hierarchy."""

from __future__ import annotations

import numpy as np
import pytest

from conftest import make_params
from src.experiments.dogm.grid_map import (
    OUT_OF_GRID,
    ConfigurationError,
    DogmError,
    InputShapeError,
    OccupancyGridMap,
)
from src.experiments.dogm.grid_map.types import (
    allocate_grid_cells,
    allocate_measurement_cells,
    allocate_particles,
    positions_to_cell_indices,
)


class TestErrorHierarchy:
    def test_configuration_error_is_value_error(self):
        assert issubclass(ConfigurationError, DogmError)
        assert issubclass(ConfigurationError, ValueError)

    def test_input_shape_error_is_value_error(self):
        assert issubclass(InputShapeError, DogmError)
        assert issubclass(InputShapeError, ValueError)


class TestGridParams:
    def test_valid_params_pass(self):
        make_params().validate()

    def test_grid_cell_count(self):
        assert make_params(width=4, height=5).grid_cell_count == 20

    @pytest.mark.parametrize(
        "overrides",
        [
            {"width": 0},
            {"height": -3},
            {"particle_count": 0},
            {"new_born_particle_count": 0},
            {"width": 2.5},
            {"width": True},
            {"resolution": 0.0},
            {"resolution": float("nan")},
            {"ps": 1.5},
            {"pb": -0.1},
            {"freespace_discount": 2.0},
            {"process_noise_position": -1.0},
            {"process_noise_velocity": float("inf")},
            {"stddev_velocity": -0.5},
            {"init_max_velocity": -1.0},
        ],
    )
    def test_invalid_params_rejected(self, overrides):
        with pytest.raises(ConfigurationError):
            make_params(**overrides).validate()

    def test_map_construction_fails_fast(self):
        with pytest.raises(ConfigurationError):
            OccupancyGridMap(make_params(particle_count=-1))

    def test_numpy_integers_accepted(self):
        make_params(width=np.int64(3), particle_count=np.int32(9)).validate()


class TestAllocation:
    def test_grid_cells_start_empty(self):
        cells = allocate_grid_cells(4)
        assert cells.shape == (4,)
        assert np.all(cells["occ_mass"] == 0.0)
        assert np.all(cells["start_idx"] == cells["end_idx"])

    def test_measurement_cells_start_ignorant(self):
        cells = allocate_measurement_cells(3)
        assert np.all(cells["free_mass"] == 0.0)
        assert np.all(cells["occ_mass"] == 0.0)

    def test_particles_start_outside_with_zero_weight(self):
        particles = allocate_particles(5)
        assert np.all(particles["grid_cell_idx"] == OUT_OF_GRID)
        assert np.all(particles["weight"] == 0.0)
        assert particles["state"].shape == (5, 4)


class TestPositionsToCellIndices:
    def test_row_major_indexing(self):
        x = np.array([0.5, 2.5, 0.5, 2.9])
        y = np.array([0.5, 0.5, 1.5, 2.9])
        idx = positions_to_cell_indices(x, y, width=3, height=3, resolution=1.0)
        np.testing.assert_array_equal(idx, [0, 2, 3, 8])

    def test_outside_and_non_finite(self):
        x = np.array([-0.1, 3.0, 1.0, np.nan, np.inf])
        y = np.array([1.0, 1.0, 3.0, 1.0, 1.0])
        idx = positions_to_cell_indices(x, y, width=3, height=3, resolution=1.0)
        assert np.all(idx == OUT_OF_GRID)

    def test_resolution_scaling(self):
        idx = positions_to_cell_indices(
            np.array([0.74]), np.array([0.26]), width=4, height=4, resolution=0.25
        )
        assert idx[0] == 1 * 4 + 2
