"""Tests for new-object birth, statistical moments and resampling."""

from __future__ import annotations

import numpy as np
import pytest

from src.experiments.dogm.grid_map.assignment import assign_particles_to_cells
from src.experiments.dogm.grid_map.birth import birth_counts, initialize_new_particles
from src.experiments.dogm.grid_map.moments import statistical_moments
from src.experiments.dogm.grid_map.resampling import resample_particles, systematic_indices
from src.experiments.dogm.grid_map.types import (
    OUT_OF_GRID,
    allocate_grid_cells,
    allocate_particles,
)


class TestBirthCounts:
    def test_proportional_split(self):
        counts = birth_counts(np.array([0.0, 0.5, 0.0, 0.5]), 10, np.zeros(4))
        np.testing.assert_array_equal(counts, [0, 5, 0, 5])

    def test_total_equals_capacity(self, rng):
        masses = rng.uniform(0.0, 1.0, 50) * (rng.random(50) < 0.3)
        masses[0] = 0.2
        counts = birth_counts(masses, 37, np.zeros(50))
        assert counts.sum() == 37
        assert np.all(counts >= 0)
        assert np.all(counts[masses == 0.0] == 0)

    def test_no_born_mass(self):
        accum = np.ones(3)
        counts = birth_counts(np.zeros(3), 10, accum)
        np.testing.assert_array_equal(counts, [0, 0, 0])
        np.testing.assert_array_equal(accum, [0.0, 0.0, 0.0])

    def test_tiny_share_rounds_to_zero(self):
        counts = birth_counts(np.array([1e-6, 1.0]), 10, np.zeros(2))
        np.testing.assert_array_equal(counts, [0, 10])


class TestInitializeNewParticles:
    def _spawn(self, born, capacity, rng, width=2, resolution=0.5):
        cells = allocate_grid_cells(len(born))
        cells["new_born_occ_mass"] = born
        birth = allocate_particles(capacity)
        birth_weights = np.zeros(capacity)
        spawned = initialize_new_particles(
            cells, birth, birth_weights, np.zeros(len(born)), np.zeros(len(born)),
            width=width, resolution=resolution, stddev_velocity=2.0, rng=rng,
        )
        return spawned, birth, birth_weights

    def test_particles_placed_in_their_cell(self, rng):
        spawned, birth, weights = self._spawn([0.0, 1.0, 0.0, 0.0], 4, rng)
        assert spawned == 4
        np.testing.assert_array_equal(birth["grid_cell_idx"], [1, 1, 1, 1])
        np.testing.assert_allclose(weights, 0.25)
        np.testing.assert_allclose(birth["weight"], weights)
        x = birth["state"][:, 0]
        y = birth["state"][:, 1]
        assert np.all((x >= 0.5) & (x < 1.0))
        assert np.all((y >= 0.0) & (y < 0.5))
        assert not np.any(birth["associated"])

    def test_weight_per_cell_matches_born_mass(self, rng):
        born = np.array([0.3, 0.0, 0.6, 0.1])
        spawned, birth, weights = self._spawn(born, 100, rng)
        assert spawned <= 100
        for c in range(4):
            in_cell = birth["grid_cell_idx"][:spawned] == c
            if in_cell.any():
                assert weights[:spawned][in_cell].sum() == pytest.approx(born[c])

    def test_nothing_born_resets_slots(self, rng):
        spawned, birth, weights = self._spawn([0.0, 0.0, 0.0, 0.0], 3, rng)
        assert spawned == 0
        assert np.all(birth["grid_cell_idx"] == OUT_OF_GRID)
        assert np.all(weights == 0.0)


class TestStatisticalMoments:
    def _run(self, particles, cells):
        n = particles.shape[0]
        statistical_moments(
            particles, cells,
            vel_x_array=np.zeros(n), vel_y_array=np.zeros(n),
            vel_x_squared_array=np.zeros(n), vel_y_squared_array=np.zeros(n),
            vel_xy_array=np.zeros(n),
        )

    def test_weighted_mean_and_covariance(self):
        particles = allocate_particles(2)
        particles["state"] = [[0.5, 0.5, 1.0, 0.0], [0.6, 0.4, 3.0, 2.0]]
        particles["weight"] = [1.0, 3.0]
        cells = allocate_grid_cells(2)
        assign_particles_to_cells(particles, cells, width=2, height=1, resolution=1.0)
        self._run(particles, cells)

        c = cells[0]
        assert c["mean_x_vel"] == pytest.approx(2.5)
        assert c["mean_y_vel"] == pytest.approx(1.5)
        assert c["var_x_vel"] == pytest.approx(0.75)
        assert c["var_y_vel"] == pytest.approx(0.75)
        assert c["covar_xy_vel"] == pytest.approx(0.75)

    def test_zero_weight_cell_untouched(self):
        particles = allocate_particles(1)
        particles["state"] = [[1.5, 0.5, 4.0, 4.0]]
        particles["weight"] = [0.0]
        cells = allocate_grid_cells(2)
        cells["mean_x_vel"] = 7.0
        assign_particles_to_cells(particles, cells, width=2, height=1, resolution=1.0)
        self._run(particles, cells)
        np.testing.assert_array_equal(cells["mean_x_vel"], [7.0, 7.0])

    def test_identical_velocities_have_zero_variance(self):
        particles = allocate_particles(3)
        particles["state"] = [[0.1, 0.1, 1.1, -2.2]] * 3
        particles["weight"] = [0.1, 0.2, 0.3]
        cells = allocate_grid_cells(1)
        assign_particles_to_cells(particles, cells, width=1, height=1, resolution=1.0)
        self._run(particles, cells)
        assert cells["var_x_vel"][0] >= 0.0
        assert cells["var_x_vel"][0] == pytest.approx(0.0, abs=1e-12)
        assert cells["mean_y_vel"][0] == pytest.approx(-2.2)


class TestSystematicIndices:
    def test_indices_follow_weights(self, rng):
        cumulative = np.cumsum([0.5, 0.0, 0.5])
        idx = systematic_indices(cumulative, 4, rng)
        np.testing.assert_array_equal(idx, [0, 0, 2, 2])

    def test_trailing_zero_weights_never_drawn(self, rng):
        cumulative = np.cumsum([1.0, 0.0, 0.0])
        idx = systematic_indices(cumulative, 5, rng)
        assert np.all(idx == 0)


class TestResampleParticles:
    def _buffers(self, n=4, n_birth=2):
        particles = allocate_particles(n)
        particles["state"][:, 0] = np.arange(n)
        birth = allocate_particles(n_birth)
        birth["state"][:, 0] = 100.0 + np.arange(n_birth)
        return particles, birth, allocate_particles(n)

    def test_single_heavy_particle(self, rng):
        particles, birth, nxt = self._buffers()
        total, degenerate = resample_particles(
            particles, birth, np.array([0.0, 0.0, 1.0, 0.0]), np.zeros(2), nxt, rng=rng,
        )
        assert not degenerate
        assert total == pytest.approx(1.0)
        np.testing.assert_array_equal(nxt["state"][:, 0], [2.0] * 4)
        np.testing.assert_allclose(nxt["weight"], 0.25)

    def test_draws_from_persistent_and_birth(self, rng):
        particles, birth, nxt = self._buffers()
        total, _ = resample_particles(
            particles, birth, np.array([0.5, 0.0, 0.0, 0.0]), np.array([0.5, 0.0]), nxt,
            rng=rng,
        )
        assert total == pytest.approx(1.0)
        np.testing.assert_array_equal(nxt["state"][:, 0], [0.0, 0.0, 100.0, 100.0])

    def test_weight_normalisation(self, rng):
        particles, birth, nxt = self._buffers(n=50, n_birth=10)
        resample_particles(
            particles, birth, rng.random(50), rng.random(10), nxt, rng=rng,
        )
        assert nxt.shape == (50,)
        assert nxt["weight"].sum() == pytest.approx(1.0)

    def test_degenerate_fallback(self, rng):
        particles, birth, nxt = self._buffers()
        total, degenerate = resample_particles(
            particles, birth, np.zeros(4), np.zeros(2), nxt, rng=rng,
        )
        assert degenerate
        assert total == 0.0
        assert np.all(np.isfinite(nxt["weight"]))
        np.testing.assert_allclose(nxt["weight"], 0.25)
        assert np.all(np.isfinite(nxt["state"]))

    def test_nan_weights_treated_as_zero(self, rng):
        particles, birth, nxt = self._buffers()
        total, degenerate = resample_particles(
            particles, birth, np.array([np.nan, 1.0, 0.0, np.inf]), np.zeros(2), nxt,
            rng=rng,
        )
        assert not degenerate
        assert total == pytest.approx(1.0)
        np.testing.assert_array_equal(nxt["state"][:, 0], [1.0] * 4)
