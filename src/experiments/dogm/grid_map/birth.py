"""New-object birth.

Cells with unexplained ("new-born") occupied mass receive a share of the
``new_born_particle_count`` birth particles proportional to that mass.  The
shares come from the normalised inclusive cumulative sum of the born masses
(``particle_orders_array_accum``): rounding it to integers and taking
consecutive differences yields per-cell counts that add up to at most
``new_born_particle_count``.  A cell whose share rounds to zero spawns no
particle this cycle.
"""

from __future__ import annotations

import numpy as np

from src.experiments.dogm.grid_map.types import OUT_OF_GRID


def birth_counts(
    born_masses: np.ndarray,
    new_born_particle_count: int,
    orders_accum: np.ndarray,
) -> np.ndarray:
    """Number of birth particles per cell.

    Parameters
    ----------
    born_masses:
        New-born occupied mass per cell (>= 0).
    new_born_particle_count:
        Upper bound on the total number of spawned particles.
    orders_accum:
        Scratch array (one float per cell) receiving the cumulative particle
        orders.

    Returns
    -------
    numpy.ndarray, dtype int64
        Spawn count per cell; sums to ``new_born_particle_count`` when any
        born mass exists, else to 0.
    """
    np.cumsum(born_masses, out=orders_accum)
    total = float(orders_accum[-1]) if orders_accum.size else 0.0
    if total <= 0.0 or not np.isfinite(total):
        orders_accum[:] = 0.0
        return np.zeros(born_masses.shape[0], dtype=np.int64)

    orders_accum *= new_born_particle_count / total
    ends = np.minimum(np.rint(orders_accum), new_born_particle_count).astype(np.int64)
    return np.diff(ends, prepend=0)


def initialize_new_particles(
    grid_cells: np.ndarray,
    birth_particles: np.ndarray,
    birth_weight_array: np.ndarray,
    born_masses_array: np.ndarray,
    orders_accum: np.ndarray,
    *,
    width: int,
    resolution: float,
    stddev_velocity: float,
    rng: np.random.Generator,
) -> int:
    """Spawn birth particles into *birth_particles* (in-place).

    Each spawned particle sits uniformly inside its cell, has a velocity
    drawn from ``N(0, stddev_velocity^2)`` per axis, is unassociated and has
    weight ``new_born_occ_mass / count`` of its cell.  Unused slots get
    weight 0 and ``OUT_OF_GRID``.

    Returns
    -------
    int
        Number of particles spawned.
    """
    born_masses_array[:] = np.clip(grid_cells["new_born_occ_mass"], 0.0, None)
    capacity = birth_particles.shape[0]
    counts = birth_counts(born_masses_array, capacity, orders_accum)
    spawned = int(counts.sum())

    birth_particles["weight"] = 0.0
    birth_particles["associated"] = False
    birth_particles["grid_cell_idx"] = OUT_OF_GRID
    birth_particles["state"] = 0.0
    birth_weight_array[:] = 0.0
    if spawned == 0:
        return 0

    cells = np.repeat(np.arange(counts.shape[0]), counts)
    per_particle_weight = born_masses_array[cells] / counts[cells]

    col = cells % width
    row = cells // width
    jitter = rng.random((spawned, 2))
    state = np.empty((spawned, 4), dtype=np.float64)
    state[:, 0] = (col + jitter[:, 0]) * resolution
    state[:, 1] = (row + jitter[:, 1]) * resolution
    state[:, 2:4] = rng.normal(0.0, stddev_velocity, size=(spawned, 2))

    birth_particles["grid_cell_idx"][:spawned] = cells
    birth_particles["weight"][:spawned] = per_particle_weight
    birth_particles["state"][:spawned] = state
    birth_weight_array[:spawned] = per_particle_weight
    return spawned
