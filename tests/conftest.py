"""Shared fixtures for the DOGM test suite."""

from __future__ import annotations

import dataclasses

import numpy as np
import pytest

from src.experiments.dogm.grid_map import GridParams, OccupancyGridMap


def make_params(**overrides) -> GridParams:
    """Small noise-free 3x3 configuration with selective overrides."""
    base = GridParams(
        width=3,
        height=3,
        resolution=1.0,
        particle_count=9,
        new_born_particle_count=9,
        ps=1.0,
        process_noise_position=0.0,
        process_noise_velocity=0.0,
        pb=0.1,
        stddev_velocity=1.0,
        init_max_velocity=1.0,
        freespace_discount=0.9,
        seed=1234,
    )
    return dataclasses.replace(base, **overrides)


def center_measurement(width: int = 3, height: int = 3) -> np.ndarray:
    """Flat (free, occ) grid: centre cell occupied, all others free."""
    masses = np.zeros((height, width, 2), dtype=np.float64)
    masses[:, :, 0] = 1.0
    masses[height // 2, width // 2] = (0.0, 1.0)
    return masses.reshape(-1)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(7)


@pytest.fixture
def small_map() -> OccupancyGridMap:
    return OccupancyGridMap(make_params())


@pytest.fixture
def noisy_map() -> OccupancyGridMap:
    """16x16 map with process noise, for multi-cycle invariants."""
    return OccupancyGridMap(
        make_params(
            width=16,
            height=16,
            resolution=0.5,
            particle_count=3000,
            new_born_particle_count=300,
            ps=0.99,
            process_noise_position=0.05,
            process_noise_velocity=0.5,
            pb=0.05,
            stddev_velocity=2.0,
        )
    )
