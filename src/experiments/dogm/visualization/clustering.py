# TDP: Velocity-cell selection and DBSCAN clustering
# Approach: compute_cells_with_velocity() keeps the cells whose pignistic
#   occupancy reaches min_occupancy_threshold and whose mean velocity is
#   significant relative to its own spread: the squared Mahalanobis norm
#   v^T Sigma^-1 v >= min_velocity_threshold.  The 2x2 inverse is written out
#   in closed form so the test runs over all cells at once; cells with a
#   singular covariance (det <= _MIN_DET) are skipped.
#   cluster_cells() groups the selected cells by grid position with
#   sklearn.cluster.DBSCAN and summarises every cluster.  DBSCAN noise
#   (label -1) is not reported as a cluster.
#
#   Positions are in cells (col, row) so eps is a cell distance.
#
# Alternatives considered:
#   np.linalg.inv per cell -- a Python loop over the grid; rejected.
#   Hand-written DBSCAN -- scikit-learn already ships a tested one.
"""Select moving cells of a grid map and group them into objects."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from sklearn.cluster import DBSCAN

from src.experiments.dogm.grid_map.occupancy_grid_map import OccupancyGridMap

_MIN_DET = 1e-12

VELOCITY_CELL_DTYPE = np.dtype(
    [
        ("x", np.int64),
        ("y", np.int64),
        ("occupancy", np.float64),
        ("mean_x_vel", np.float64),
        ("mean_y_vel", np.float64),
        ("mahalanobis", np.float64),
    ]
)


@dataclass
class Cluster:
    """One DBSCAN cluster of velocity cells.

    Attributes
    ----------
    cluster_id:
        DBSCAN label (>= 0).
    cells:
        The member cells (``VELOCITY_CELL_DTYPE``).
    mean_x, mean_y:
        Mean position in cells.
    mean_x_vel, mean_y_vel:
        Mean cell velocity in m/s.
    """

    cluster_id: int
    cells: np.ndarray
    mean_x: float
    mean_y: float
    mean_x_vel: float
    mean_y_vel: float

    @property
    def size(self) -> int:
        return int(self.cells.shape[0])


def compute_cells_with_velocity(
    grid_map: OccupancyGridMap,
    min_occupancy_threshold: float,
    min_velocity_threshold: float,
) -> np.ndarray:
    """Return the occupied cells with a significant velocity estimate.

    Parameters
    ----------
    grid_map:
        Map after at least one ``update``.
    min_occupancy_threshold:
        Minimum pignistic occupancy ``occ + 0.5 * (1 - occ - free)``.
    min_velocity_threshold:
        Minimum squared Mahalanobis norm of the mean velocity.

    Returns
    -------
    numpy.ndarray of ``VELOCITY_CELL_DTYPE``
        Selected cells in flat index order.
    """
    cells = grid_map.grid_cell_array
    occupancy = grid_map.get_occupancy_probability().reshape(-1)

    vx = cells["mean_x_vel"]
    vy = cells["mean_y_vel"]
    var_x = cells["var_x_vel"]
    var_y = cells["var_y_vel"]
    covar = cells["covar_xy_vel"]

    det = var_x * var_y - covar * covar
    invertible = det > _MIN_DET
    mahalanobis = np.zeros_like(det)
    np.divide(
        var_y * vx * vx - 2.0 * covar * vx * vy + var_x * vy * vy,
        det,
        out=mahalanobis,
        where=invertible,
    )

    selected = (
        invertible
        & (occupancy >= min_occupancy_threshold)
        & (mahalanobis >= min_velocity_threshold)
    )
    idx = np.flatnonzero(selected)

    result = np.zeros(idx.shape[0], dtype=VELOCITY_CELL_DTYPE)
    result["x"] = idx % grid_map.width
    result["y"] = idx // grid_map.width
    result["occupancy"] = occupancy[idx]
    result["mean_x_vel"] = vx[idx]
    result["mean_y_vel"] = vy[idx]
    result["mahalanobis"] = mahalanobis[idx]
    return result


def velocity_cell_mask(cells: np.ndarray, shape: tuple[int, int]) -> np.ndarray:
    """Boolean ``(rows, cols)`` mask of the given velocity cells."""
    mask = np.zeros(shape, dtype=bool)
    mask[cells["y"], cells["x"]] = True
    return mask


def cluster_cells(cells: np.ndarray, eps: float, min_points: int) -> list[Cluster]:
    """Group velocity cells into clusters with DBSCAN.

    Parameters
    ----------
    cells:
        Output of :func:`compute_cells_with_velocity`.
    eps:
        Neighbourhood radius in cells.
    min_points:
        Minimum number of cells in a core neighbourhood.

    Returns
    -------
    list[Cluster]
        Clusters ordered by label.  Empty if *cells* is empty.
    """
    if cells.shape[0] == 0:
        return []

    points = np.column_stack([cells["x"], cells["y"]]).astype(np.float64)
    labels = DBSCAN(eps=eps, min_samples=min_points).fit(points).labels_

    clusters: list[Cluster] = []
    for label in np.unique(labels):
        if label < 0:
            continue
        members = cells[labels == label]
        clusters.append(
            Cluster(
                cluster_id=int(label),
                cells=members,
                mean_x=float(np.mean(members["x"])),
                mean_y=float(np.mean(members["y"])),
                mean_x_vel=float(np.mean(members["mean_x_vel"])),
                mean_y_vel=float(np.mean(members["mean_y_vel"])),
            )
        )
    return clusters
