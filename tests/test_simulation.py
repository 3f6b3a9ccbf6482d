"""Tests for the simulated scene and the measurement grid sensor."""

from __future__ import annotations

import numpy as np
import pytest

from src.experiments.dogm.simulation.scene import Scene, Vehicle, generate_scene
from src.experiments.dogm.simulation.sensor import (
    MeasurementGridSensor,
    cast_rays,
    measurement_grid,
)


def _vehicle(**overrides) -> Vehicle:
    base = dict(
        cx0=5.0, cy0=5.0, length=2.0, width=1.0,
        dx=1.0, dy=0.0, speed=2.0, path_length=4.0,
    )
    base.update(overrides)
    return Vehicle(**base)


class TestVehicle:
    def test_outbound_leg(self):
        cx, cy, vx, vy = _vehicle().state_at(1.0)
        assert (cx, cy) == pytest.approx((7.0, 5.0))
        assert (vx, vy) == pytest.approx((2.0, 0.0))

    def test_return_leg(self):
        cx, _, vx, _ = _vehicle().state_at(3.0)
        assert cx == pytest.approx(7.0)
        assert vx == pytest.approx(-2.0)

    def test_periodic(self):
        v = _vehicle()
        assert v.state_at(0.5) == pytest.approx(v.state_at(4.5))

    def test_stationary(self):
        assert _vehicle(speed=0.0).state_at(10.0) == (5.0, 5.0, 0.0, 0.0)


class TestScene:
    def _scene(self) -> Scene:
        static = np.zeros((20, 20), dtype=np.float32)
        static[0, :] = 1.0
        return Scene(static, [_vehicle()], resolution=0.5)

    def test_vehicle_footprint(self):
        grid = self._scene().get_grid(0.0)
        # 2 m x 1 m vehicle at (5, 5) covers cols 8..11 and rows 9..10.
        assert grid[9:11, 8:12].sum() == 8.0
        assert grid[1:, :].sum() == 8.0
        assert np.all(grid[0, :] == 1.0)

    def test_static_grid_not_modified(self):
        scene = self._scene()
        scene.get_grid(1.0)
        assert scene.static_grid[1:, :].sum() == 0.0

    def test_velocity_and_dynamic_mask_agree(self):
        scene = self._scene()
        velocity = scene.get_velocity_grid(1.0)
        mask = scene.get_dynamic_mask(1.0)
        assert velocity.shape == (20, 20, 2)
        assert mask.sum() == 8
        np.testing.assert_allclose(velocity[mask], [[2.0, 0.0]] * 8)
        assert np.all(velocity[~mask] == 0.0)

    def test_generate_scene_is_seeded(self):
        a = generate_scene(width=40, height=30, resolution=0.5, num_vehicles=2,
                           num_obstacles=2, walls=True, rng=np.random.default_rng(3))
        b = generate_scene(width=40, height=30, resolution=0.5, num_vehicles=2,
                           num_obstacles=2, walls=True, rng=np.random.default_rng(3))
        assert a.shape == (30, 40)
        np.testing.assert_array_equal(a.get_grid(1.0), b.get_grid(1.0))
        assert len(a.vehicles) == 2
        assert np.all(a.static_grid[0, :] == 1.0)

    def test_generated_vehicles_stay_inside(self):
        scene = generate_scene(width=40, height=40, resolution=0.5, num_vehicles=3,
                               vehicle_speed=4.0, rng=np.random.default_rng(11))
        for t in np.linspace(0.0, 20.0, 41):
            assert scene.get_dynamic_mask(float(t)).sum() > 0


class TestRayCasting:
    def _wall_grid(self) -> np.ndarray:
        grid = np.zeros((10, 10), dtype=np.float32)
        grid[:, 8] = 1.0
        return grid

    def test_hit_range(self, rng):
        ranges = cast_rays(
            pose_x=2.5, pose_y=5.5, heading=0.0, fov=0.0, grid=self._wall_grid(),
            resolution=1.0, num_rays=1, max_range=20.0, noise_stddev=0.0, rng=rng,
        )
        assert ranges[0] == pytest.approx(5.5, abs=0.4)

    def test_no_return_reports_max_range(self, rng):
        ranges = cast_rays(
            pose_x=2.5, pose_y=5.5, heading=np.pi, fov=0.0, grid=self._wall_grid(),
            resolution=1.0, num_rays=1, max_range=20.0, noise_stddev=0.0, rng=rng,
        )
        assert ranges[0] == 20.0

    def test_false_negatives(self, rng):
        ranges = cast_rays(
            pose_x=2.5, pose_y=5.5, heading=0.0, fov=0.2, grid=self._wall_grid(),
            resolution=1.0, num_rays=5, max_range=20.0, noise_stddev=0.0, rng=rng,
            false_negative_rate=1.0,
        )
        assert np.all(ranges == 20.0)


class TestMeasurementGrid:
    def test_free_path_and_occupied_endpoint(self):
        masses = measurement_grid(
            pose_x=0.5, pose_y=0.5, heading=0.0, fov=0.0,
            ranges=np.array([3.0]), shape=(2, 6), resolution=1.0,
            max_range=10.0, occ_mass=0.9, free_mass=0.7,
        )
        np.testing.assert_allclose(masses[0, :3, 0], 0.7)
        np.testing.assert_allclose(masses[0, :3, 1], 0.0)
        assert tuple(masses[0, 3]) == pytest.approx((0.0, 0.9))
        assert np.all(masses[0, 4:] == 0.0)
        assert np.all(masses[1] == 0.0)

    def test_max_range_ray_has_no_endpoint(self):
        masses = measurement_grid(
            pose_x=0.5, pose_y=0.5, heading=0.0, fov=0.0,
            ranges=np.array([4.0]), shape=(1, 6), resolution=1.0,
            max_range=4.0, occ_mass=0.9, free_mass=0.7,
        )
        assert np.all(masses[..., 1] == 0.0)
        np.testing.assert_allclose(masses[0, :4, 0], 0.7)


class TestMeasurementGridSensor:
    def test_flat_layout_and_mass_bounds(self, rng):
        grid = np.zeros((16, 16), dtype=np.float32)
        grid[2:4, 2:4] = 1.0
        sensor = MeasurementGridSensor(x=4.0, y=4.0, num_rays=180, max_range=6.0)
        flat = sensor.measure(grid, 0.5, rng)

        assert flat.shape == (2 * 16 * 16,)
        pairs = flat.reshape(-1, 2)
        assert np.all(pairs.sum(axis=1) <= 1.0)
        occupied = pairs[:, 1] > 0.0
        assert occupied.any()
        rows, cols = np.divmod(np.flatnonzero(occupied), 16)
        assert np.all(grid[rows, cols] == 1.0)

    def test_unobserved_cells_are_ignorant(self, rng):
        grid = np.zeros((16, 16), dtype=np.float32)
        sensor = MeasurementGridSensor(x=1.0, y=1.0, max_range=2.0)
        pairs = sensor.measure(grid, 0.5, rng).reshape(16, 16, 2)
        assert np.all(pairs[10:, 10:] == 0.0)
        assert pairs[2, 2, 0] == pytest.approx(sensor.free_mass)
