"""Measurement fusion: raw per-cell evidence -> calibrated measurement cells.

Input layout
------------
A flat float array of length ``2 * grid_cell_count`` holding
``(free_mass, occ_mass)`` for every cell in row-major order
(index ``row * width + col``).  An array of shape ``(height, width, 2)`` is
accepted as well.  Cells outside the sensor field of view carry ``(0, 0)``,
i.e. total ignorance.

Derived quantities
------------------
``likelihood = Pl(O) = 1 - m_F``
    plausibility of the occupied hypothesis.
``p_A = Bel(O) / Pl(O) = m_O / (1 - m_F)``
    probability that a predicted particle in the cell is associated with the
    measurement.  0 when the cell is certainly free.
"""

from __future__ import annotations

import numpy as np

from src.experiments.dogm.grid_map.errors import InputShapeError


def sanitize_masses(free: np.ndarray, occ: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Clamp a pair of mass arrays to a valid Dempster-Shafer mass function.

    Non-finite values become 0 (no evidence), components are clipped to
    [0, 1] and pairs whose sum exceeds 1 are renormalised.

    Returns
    -------
    tuple[numpy.ndarray, numpy.ndarray]
        New ``(free, occ)`` float64 arrays with ``free + occ <= 1``.
    """
    free = np.clip(np.nan_to_num(free, nan=0.0, posinf=0.0, neginf=0.0), 0.0, 1.0)
    occ = np.clip(np.nan_to_num(occ, nan=0.0, posinf=0.0, neginf=0.0), 0.0, 1.0)
    total = free + occ
    over = total > 1.0
    free[over] = free[over] / total[over]
    occ[over] = occ[over] / total[over]
    return free, occ


def fuse_measurements(
    measurements: np.ndarray,
    meas_cells: np.ndarray,
) -> None:
    """Populate *meas_cells* in-place from one cycle of raw evidence.

    Parameters
    ----------
    measurements:
        Raw evidence, see module docstring for the layout.
    meas_cells:
        Measurement cell array of the map (``MEASUREMENT_CELL_DTYPE``).

    Raises
    ------
    InputShapeError
        If the number of values does not equal ``2 * len(meas_cells)``.
        Raised before *meas_cells* is touched.
    """
    raw = np.asarray(measurements, dtype=np.float64)
    expected = 2 * meas_cells.shape[0]
    if raw.size != expected:
        raise InputShapeError(
            f"measurement grid has {raw.size} values, expected {expected} "
            f"(free, occ) pairs for {meas_cells.shape[0]} cells"
        )
    pairs = raw.reshape(-1, 2)
    free, occ = sanitize_masses(pairs[:, 0], pairs[:, 1])

    likelihood = np.clip(1.0 - free, 0.0, 1.0)
    p_A = np.zeros_like(occ)
    np.divide(occ, likelihood, out=p_A, where=likelihood > 0.0)

    meas_cells["free_mass"] = free
    meas_cells["occ_mass"] = occ
    meas_cells["likelihood"] = likelihood
    meas_cells["p_A"] = np.clip(p_A, 0.0, 1.0)
