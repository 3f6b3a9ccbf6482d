# TDP: Evidential occupancy update per grid cell
# Approach: Frame of discernment {O, F}.  The prediction carries mass
#   (m_O_pred, m_F_pred, m_OF_pred) per cell, the measurement carries
#   (z_O, z_F, z_OF).  They are combined with Dempster's closed-world rule
#   (same rule as the offline DS/TBM grid fusion), then the occupied part is
#   split into a persistent share, explained by surviving particles, and a
#   new-born share that the birth stage turns into new particles.
#
#   Predicted masses:
#     m_O_pred = min(1, sum of mass-unit particle weights in the cell)
#     m_F_pred = min(freespace_discount * m_F_prev, 1 - m_O_pred)
#
#   Dempster's rule:
#     K    = m_F_pred * z_O + m_O_pred * z_F          (conflict)
#     m_O  = (m_O_pred*z_OF + m_OF_pred*z_O + m_O_pred*z_O) / (1 - K)
#     m_F  = (m_F_pred*z_OF + m_OF_pred*z_F + m_F_pred*z_F) / (1 - K)
#
#   New-born split (birth probability p_B):
#     rho_b = m_O * p_B * (1 - m_O_pred) / (m_O_pred + p_B * (1 - m_O_pred))
#     rho_p = m_O - rho_b
#   With no predicted particle mass the cell is "empty": rho_p = 0 and all
#   occupied mass is new-born, independent of p_B.
#
# Numerical stability: conflict clamped to [0, 1 - _MIN_DENOMINATOR]; masses
#   clipped to [0, 1] and renormalised if they exceed 1; rho_b clipped to
#   [0, m_O] so the split always sums back to m_O.
"""Grid cell occupancy update (Dempster-Shafer fusion + new-born split)."""

from __future__ import annotations

import numpy as np

from src.experiments.dogm.grid_map.assignment import cell_sums
from src.experiments.dogm.grid_map.measurement import sanitize_masses
from src.experiments.dogm.grid_map.types import OUT_OF_GRID

_MIN_DENOMINATOR: float = 1e-10


def predict_free_mass(
    free_prev: np.ndarray,
    occ_pred: np.ndarray,
    freespace_discount: float,
) -> np.ndarray:
    """Discount last cycle's free mass, leaving room for the predicted occupancy."""
    return np.minimum(freespace_discount * free_prev, 1.0 - occ_pred)


def combine_masses(
    occ_pred: np.ndarray,
    free_pred: np.ndarray,
    meas_occ: np.ndarray,
    meas_free: np.ndarray,
) -> tuple[np.ndarray, np.ndarray]:
    """Combine predicted and measured masses with Dempster's rule.

    All arguments are arrays of the same shape.  Ignorance masses are the
    complements ``1 - occ - free``.

    Returns
    -------
    tuple[numpy.ndarray, numpy.ndarray]
        Updated ``(occ, free)`` masses with ``occ + free <= 1``.
    """
    unknown_pred = np.clip(1.0 - occ_pred - free_pred, 0.0, 1.0)
    meas_unknown = np.clip(1.0 - meas_occ - meas_free, 0.0, 1.0)

    conflict = free_pred * meas_occ + occ_pred * meas_free
    conflict = np.clip(conflict, 0.0, 1.0 - _MIN_DENOMINATOR)
    k_norm = 1.0 / (1.0 - conflict)

    occ = (occ_pred * meas_unknown + unknown_pred * meas_occ + occ_pred * meas_occ) * k_norm
    free = (free_pred * meas_unknown + unknown_pred * meas_free + free_pred * meas_free) * k_norm

    free, occ = sanitize_masses(free, occ)
    return occ, free


def separate_newborn_part(
    occ_pred: np.ndarray,
    occ_up: np.ndarray,
    pb: float,
) -> np.ndarray:
    """Share of the updated occupied mass that is attributed to new objects.

    Cells with ``occ_pred == 0`` return all of *occ_up*.
    """
    denom = occ_pred + pb * (1.0 - occ_pred)
    born = np.array(occ_up, dtype=np.float64, copy=True)
    has_pred = occ_pred > 0.0
    valid = has_pred & (denom > _MIN_DENOMINATOR)
    born[has_pred] = 0.0
    born[valid] = occ_up[valid] * pb * (1.0 - occ_pred[valid]) / denom[valid]
    return np.clip(born, 0.0, occ_up)


def update_cell_occupancy(
    particles: np.ndarray,
    grid_cells: np.ndarray,
    meas_cells: np.ndarray,
    *,
    particle_mass: float,
    pb: float,
    freespace_discount: float,
    rand_array: np.ndarray,
) -> None:
    """Run the occupancy update for every cell (in-place).

    Parameters
    ----------
    particles:
        Particle array sorted by cell (output of the assignment stage).
    grid_cells:
        Grid cell array; masses, ``w_A`` and ``w_UA`` are overwritten.
    meas_cells:
        Measurement cells of this cycle.
    particle_mass:
        Joint occupied mass represented by the particle population; converts
        normalised particle weights into mass units.
    pb:
        Birth probability.
    freespace_discount:
        See ``predict_free_mass``.
    rand_array:
        Per-particle uniform draws in [0, 1) used to decide association.
    """
    cell_idx = particles["grid_cell_idx"]
    in_grid = cell_idx != OUT_OF_GRID
    mass_weights = particles["weight"] * particle_mass

    # Association: each in-grid particle is associated with the measurement
    # of its cell with probability p_A.
    p_A = np.zeros(particles.shape[0], dtype=np.float64)
    p_A[in_grid] = meas_cells["p_A"][cell_idx[in_grid]]
    associated = in_grid & (rand_array < p_A)
    particles["associated"] = associated

    w_A = cell_sums(np.where(associated, mass_weights, 0.0), grid_cells)
    w_UA = cell_sums(np.where(associated, 0.0, mass_weights), grid_cells)
    w_A = np.maximum(w_A, 0.0)
    w_UA = np.maximum(w_UA, 0.0)

    occ_pred = np.minimum(w_A + w_UA, 1.0)
    free_pred = predict_free_mass(grid_cells["free_mass"], occ_pred, freespace_discount)

    occ_up, free_up = combine_masses(
        occ_pred, free_pred, meas_cells["occ_mass"], meas_cells["free_mass"]
    )
    rho_b = separate_newborn_part(occ_pred, occ_up, pb)

    grid_cells["occ_mass"] = occ_up
    grid_cells["free_mass"] = free_up
    grid_cells["new_born_occ_mass"] = rho_b
    grid_cells["pers_occ_mass"] = occ_up - rho_b
    grid_cells["w_A"] = w_A
    grid_cells["w_UA"] = w_UA
