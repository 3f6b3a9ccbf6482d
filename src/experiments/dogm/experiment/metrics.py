# TDP: Metric suite for the DOGM experiment
#
# Occupancy metrics take occupancy_prob (values in [0,1], shape (rows, cols)),
# the canonical output of OccupancyGridMap.get_occupancy_probability().
# Dynamic metrics additionally take the per-cell mean velocity and the
# scene's ground truth.
#
# Metrics:
#   1. cell_accuracy:          fraction of observed cells classified correctly
#   2. map_entropy:            mean binary entropy H(p)
#   3. velocity_error:         mean |v_map - v_true| over ground-truth moving
#                              cells the map considers occupied
#   4. dynamic_detection_rate: fraction of ground-truth moving cells with a
#                              detected velocity cell within tolerance_cells
#   5. mass_violation:         largest breach of free + occ <= 1 and
#                              new_born + pers = occ over all cells
#
# Alternatives considered:
#   velocity_error over all moving cells -- cells the map has not yet picked
#     up would dominate the first cycles; they are covered by
#     dynamic_detection_rate instead.
#   dynamic_detection_rate without tolerance -- a one-cell lag of the
#     estimate behind a fast vehicle would count as a miss; the detected mask
#     is dilated with scipy.ndimage.binary_dilation.
"""Experiment metrics for the dynamic occupancy grid map."""

from __future__ import annotations

import numpy as np
from scipy.ndimage import binary_dilation


# ---------------------------------------------------------------------------
# Metric 1: Cell classification accuracy
# ---------------------------------------------------------------------------

def cell_accuracy(
    occupancy_prob: np.ndarray,
    ground_truth: np.ndarray,
    occ_threshold: float = 0.5,
    unknown_epsilon: float = 1e-4,
) -> float:
    """Fraction of observed cells classified correctly versus ground truth.

    Cells with ``|prob - 0.5| <= unknown_epsilon`` are treated as unobserved
    and excluded from the calculation.

    Parameters
    ----------
    occupancy_prob:
        Occupancy probability grid, shape (rows, cols), values in [0, 1].
        0.5 encodes unknown / no information.
    ground_truth:
        Binary occupancy map, shape (rows, cols). 1.0 = occupied, 0.0 = free.
    occ_threshold:
        Probability above which a cell is classified as occupied.
    unknown_epsilon:
        Half-width of the "unknown" band around 0.5.

    Returns
    -------
    float
        Classification accuracy in [0, 1]. NaN if no cells observed.
    """
    observed_mask = np.abs(occupancy_prob - 0.5) > unknown_epsilon
    if not np.any(observed_mask):
        return float("nan")

    estimated = occupancy_prob[observed_mask] > occ_threshold
    reference = ground_truth[observed_mask] >= 0.5
    return float(np.sum(estimated == reference)) / float(observed_mask.sum())


# ---------------------------------------------------------------------------
# Metric 2: Map entropy
# ---------------------------------------------------------------------------

def map_entropy(occupancy_prob: np.ndarray) -> float:
    """Mean binary entropy H(p) = -p*log2(p) - (1-p)*log2(1-p) over all cells."""
    p = np.clip(occupancy_prob.astype(np.float64), 1e-10, 1.0 - 1e-10)
    H = -p * np.log2(p) - (1.0 - p) * np.log2(1.0 - p)
    return float(np.mean(H))


# ---------------------------------------------------------------------------
# Metric 3: Velocity error
# ---------------------------------------------------------------------------

def velocity_error(
    mean_velocity: np.ndarray,
    occupancy_prob: np.ndarray,
    true_velocity: np.ndarray,
    dynamic_mask: np.ndarray,
    occ_threshold: float = 0.5,
) -> float:
    """Mean Euclidean velocity error on moving cells the map sees as occupied.

    Parameters
    ----------
    mean_velocity:
        Per-cell mean velocity of the map, shape (rows, cols, 2).
    occupancy_prob:
        Occupancy probability grid, shape (rows, cols).
    true_velocity:
        Ground-truth velocity per cell, shape (rows, cols, 2).
    dynamic_mask:
        Ground-truth moving cells, shape (rows, cols).
    occ_threshold:
        Minimum occupancy for a cell to be scored.

    Returns
    -------
    float
        Mean error in m/s.  NaN if no cell qualifies.
    """
    scored = dynamic_mask & (occupancy_prob > occ_threshold)
    if not np.any(scored):
        return float("nan")
    diff = mean_velocity[scored] - true_velocity[scored]
    return float(np.mean(np.hypot(diff[:, 0], diff[:, 1])))


# ---------------------------------------------------------------------------
# Metric 4: Dynamic detection rate
# ---------------------------------------------------------------------------

def dynamic_detection_rate(
    detected_mask: np.ndarray,
    dynamic_mask: np.ndarray,
    tolerance_cells: int = 1,
) -> float:
    """Fraction of ground-truth moving cells covered by a detected velocity cell.

    Parameters
    ----------
    detected_mask:
        Cells selected by ``compute_cells_with_velocity``, shape (rows, cols).
    dynamic_mask:
        Ground-truth moving cells, shape (rows, cols).
    tolerance_cells:
        Chebyshev distance within which a detection counts.  0 = exact cell.

    Returns
    -------
    float
        Detection rate in [0, 1]. NaN if the scene has no moving cells.
    """
    n_dynamic = int(np.sum(dynamic_mask))
    if n_dynamic == 0:
        return float("nan")
    covered = detected_mask.astype(bool)
    if tolerance_cells > 0 and covered.any():
        covered = binary_dilation(
            covered,
            structure=np.ones((3, 3), dtype=bool),
            iterations=tolerance_cells,
        )
    return float(np.sum(covered & dynamic_mask)) / float(n_dynamic)


# ---------------------------------------------------------------------------
# Metric 5: Mass violation
# ---------------------------------------------------------------------------

def mass_violation(grid_cells: np.ndarray) -> float:
    """Largest breach of the per-cell mass constraints.

    ``max(free + occ - 1, |new_born + pers - occ|)`` over all cells, floored
    at 0.  A healthy map reports values at floating-point noise level.
    """
    excess = grid_cells["free_mass"] + grid_cells["occ_mass"] - 1.0
    split = np.abs(
        grid_cells["new_born_occ_mass"] + grid_cells["pers_occ_mass"] - grid_cells["occ_mass"]
    )
    return float(max(0.0, float(np.max(excess, initial=0.0)), float(np.max(split, initial=0.0))))


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

def compute_metrics(
    *,
    occupancy_prob: np.ndarray,
    ground_truth: np.ndarray,
    requested: list[str],
    grid_cells: np.ndarray | None = None,
    mean_velocity: np.ndarray | None = None,
    true_velocity: np.ndarray | None = None,
    dynamic_mask: np.ndarray | None = None,
    detected_mask: np.ndarray | None = None,
) -> dict[str, float]:
    """Compute all requested metrics and return a name->value dict.

    Parameters
    ----------
    occupancy_prob:
        Occupancy probability grid from ``get_occupancy_probability()``.
    ground_truth:
        Binary ground-truth occupancy map.
    requested:
        List of metric names to compute.  Unrecognised names produce NaN.
    grid_cells:
        The map's ``grid_cell_array`` (mass_violation).
    mean_velocity:
        Map cell velocities, shape (rows, cols, 2) (velocity_error).
    true_velocity:
        Ground-truth cell velocities, shape (rows, cols, 2) (velocity_error).
    dynamic_mask:
        Ground-truth moving cells (velocity_error, dynamic_detection_rate).
    detected_mask:
        Detected velocity cells (dynamic_detection_rate).

    Returns
    -------
    dict[str, float]
        Metric name -> value.  NaN for metrics whose inputs are missing.
    """
    results: dict[str, float] = {}
    for name in requested:
        if name == "cell_accuracy":
            results[name] = cell_accuracy(occupancy_prob, ground_truth)
        elif name == "map_entropy":
            results[name] = map_entropy(occupancy_prob)
        elif name == "velocity_error":
            if mean_velocity is None or true_velocity is None or dynamic_mask is None:
                results[name] = float("nan")
            else:
                results[name] = velocity_error(
                    mean_velocity, occupancy_prob, true_velocity, dynamic_mask,
                )
        elif name == "dynamic_detection_rate":
            if detected_mask is None or dynamic_mask is None:
                results[name] = float("nan")
            else:
                results[name] = dynamic_detection_rate(detected_mask, dynamic_mask)
        elif name == "mass_violation":
            results[name] = (
                mass_violation(grid_cells) if grid_cells is not None else float("nan")
            )
        else:
            results[name] = float("nan")
    return results
