"""Persistent-particle reweighting.

Each surviving particle's weight is rescaled so that the weights of a cell
sum to the cell's persistent occupied mass ``rho_p``.  Associated and
unassociated particles are normalised separately::

    s_A, s_UA = p_A, 1 - p_A        (renormalised over non-empty groups)
    mu_A      = s_A  * rho_p / w_A
    mu_UA     = s_UA * rho_p / w_UA

    w_i <- w_i * particle_mass * (mu_A if associated else mu_UA)

so that ``sum(w_i) = s_A * rho_p + s_UA * rho_p = rho_p``.
"""

from __future__ import annotations

import numpy as np

from src.experiments.dogm.grid_map.types import OUT_OF_GRID


def normalization_factors(
    w_A: np.ndarray,
    w_UA: np.ndarray,
    pers_occ_mass: np.ndarray,
    p_A: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Return per-cell ``(mu_A, mu_UA)``; 0 where the group holds no weight."""
    has_A = w_A > 0.0
    has_UA = w_UA > 0.0

    s_A = np.where(has_A, p_A, 0.0)
    s_UA = np.where(has_UA, 1.0 - p_A, 0.0)
    # A lone non-empty group carries the whole mass even if its nominal
    # share is 0.
    lone = (s_A + s_UA) <= 0.0
    s_A = np.where(lone, has_A.astype(np.float64), s_A)
    s_UA = np.where(lone, has_UA.astype(np.float64), s_UA)
    share_total = s_A + s_UA
    np.divide(s_A, share_total, out=s_A, where=share_total > 0.0)
    np.divide(s_UA, share_total, out=s_UA, where=share_total > 0.0)

    mu_A = np.zeros_like(w_A)
    mu_UA = np.zeros_like(w_UA)
    np.divide(s_A * pers_occ_mass, w_A, out=mu_A, where=has_A)
    np.divide(s_UA * pers_occ_mass, w_UA, out=mu_UA, where=has_UA)
    return mu_A, mu_UA


def update_persistent_particles(
    particles: np.ndarray,
    grid_cells: np.ndarray,
    meas_cells: np.ndarray,
    weight_array: np.ndarray,
    *,
    particle_mass: float,
) -> None:
    """Reweight persistent particles in-place and mirror them into *weight_array*.

    Writes ``mu_A`` / ``mu_UA`` of every cell as a side product.
    """
    mu_A, mu_UA = normalization_factors(
        grid_cells["w_A"],
        grid_cells["w_UA"],
        grid_cells["pers_occ_mass"],
        meas_cells["p_A"],
    )
    grid_cells["mu_A"] = mu_A
    grid_cells["mu_UA"] = mu_UA

    cell_idx = particles["grid_cell_idx"]
    in_grid = cell_idx != OUT_OF_GRID
    factor = np.zeros(particles.shape[0], dtype=np.float64)
    idx = cell_idx[in_grid]
    factor[in_grid] = np.where(
        particles["associated"][in_grid], mu_A[idx], mu_UA[idx]
    )

    weights = particles["weight"] * particle_mass * factor
    particles["weight"] = weights
    weight_array[:] = weights
