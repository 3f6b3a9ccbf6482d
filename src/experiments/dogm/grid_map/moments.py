"""Per-cell velocity moments from the weighted persistent particles.

Single-pass accumulation over each cell range::

    W      = sum w
    mean_x = sum w*vx / W              var_x  = sum w*vx^2 / W - mean_x^2
    mean_y = sum w*vy / W              var_y  = sum w*vy^2 / W - mean_y^2
    cov_xy = sum w*vx*vy / W - mean_x * mean_y

Variances are clipped at 0 against round-off.  Cells with ``W == 0`` keep
the moments of the previous cycle.
"""

from __future__ import annotations

import numpy as np

from src.experiments.dogm.grid_map.assignment import cell_sums


def statistical_moments(
    particles: np.ndarray,
    grid_cells: np.ndarray,
    *,
    vel_x_array: np.ndarray,
    vel_y_array: np.ndarray,
    vel_x_squared_array: np.ndarray,
    vel_y_squared_array: np.ndarray,
    vel_xy_array: np.ndarray,
) -> None:
    """Update ``mean_*_vel``, ``var_*_vel`` and ``covar_xy_vel`` in-place.

    The ``vel_*`` arguments are per-particle scratch buffers of the map.
    """
    weights = particles["weight"]
    vx = particles["state"][:, 2]
    vy = particles["state"][:, 3]

    np.multiply(weights, vx, out=vel_x_array)
    np.multiply(weights, vy, out=vel_y_array)
    np.multiply(vel_x_array, vx, out=vel_x_squared_array)
    np.multiply(vel_y_array, vy, out=vel_y_squared_array)
    np.multiply(vel_x_array, vy, out=vel_xy_array)

    weight_sum = cell_sums(weights, grid_cells)
    has_weight = weight_sum > 0.0
    if not has_weight.any():
        return

    w = weight_sum[has_weight]
    mean_x = cell_sums(vel_x_array, grid_cells)[has_weight] / w
    mean_y = cell_sums(vel_y_array, grid_cells)[has_weight] / w
    ex2 = cell_sums(vel_x_squared_array, grid_cells)[has_weight] / w
    ey2 = cell_sums(vel_y_squared_array, grid_cells)[has_weight] / w
    exy = cell_sums(vel_xy_array, grid_cells)[has_weight] / w

    grid_cells["mean_x_vel"][has_weight] = mean_x
    grid_cells["mean_y_vel"][has_weight] = mean_y
    grid_cells["var_x_vel"][has_weight] = np.maximum(ex2 - mean_x * mean_x, 0.0)
    grid_cells["var_y_vel"][has_weight] = np.maximum(ey2 - mean_y * mean_y, 0.0)
    grid_cells["covar_xy_vel"][has_weight] = exy - mean_x * mean_y
