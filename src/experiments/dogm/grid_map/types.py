# TDP: Grid and particle state as numpy structured arrays
# Approach: One structured array per record type (grid cells, measurement
#   cells, particles).  Field access (``cells["occ_mass"]``) returns a strided
#   view, so every pipeline stage operates on whole columns at once while the
#   arrays are still allocated exactly once per map.
#   Particle ``state`` is a (4,) float64 sub-array: x, y (metres), vx, vy (m/s).
#   Cell (col, row) covers [col*res, (col+1)*res) x [row*res, (row+1)*res),
#   flat index = row * width + col.
# Alternatives considered:
#   Plain dataclass per cell/particle -- one Python object per record makes
#     every stage a Python loop; rejected.
#   Separate parallel arrays per field -- equivalent performance but the
#     record types named in the design (GridCell, Particle) get lost.
# Risks: Fancy indexing on structured arrays returns copies; stages that need
#   to write back use field views (``arr["weight"][idx] = ...``).
"""Record types, parameters and allocation helpers for the grid map."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from src.experiments.dogm.grid_map.errors import ConfigurationError

# Cell index stored for particles that left the grid.
OUT_OF_GRID: int = -1

GRID_CELL_DTYPE = np.dtype(
    [
        ("start_idx", np.int64),
        ("end_idx", np.int64),
        ("new_born_occ_mass", np.float64),
        ("pers_occ_mass", np.float64),
        ("free_mass", np.float64),
        ("occ_mass", np.float64),
        ("mu_A", np.float64),
        ("mu_UA", np.float64),
        ("w_A", np.float64),
        ("w_UA", np.float64),
        ("mean_x_vel", np.float64),
        ("mean_y_vel", np.float64),
        ("var_x_vel", np.float64),
        ("var_y_vel", np.float64),
        ("covar_xy_vel", np.float64),
    ]
)

MEASUREMENT_CELL_DTYPE = np.dtype(
    [
        ("free_mass", np.float64),
        ("occ_mass", np.float64),
        ("likelihood", np.float64),
        ("p_A", np.float64),
    ]
)

PARTICLE_DTYPE = np.dtype(
    [
        ("grid_cell_idx", np.int64),
        ("weight", np.float64),
        ("associated", np.bool_),
        ("state", np.float64, (4,)),
    ]
)


@dataclass(frozen=True)
class GridParams:
    """Immutable configuration of an ``OccupancyGridMap``.

    Parameters
    ----------
    width, height:
        Grid dimensions in cells.
    resolution:
        Metres per cell.
    particle_count:
        Number of persistent particles kept between cycles.
    new_born_particle_count:
        Upper bound on particles spawned by the birth stage per cycle.
    ps:
        Survival probability applied to every particle weight in prediction.
    process_noise_position, process_noise_velocity:
        Standard deviations of the Gaussian process noise (m, m/s).
    pb:
        Birth probability used to split occupied mass into new-born and
        persistent parts.
    stddev_velocity:
        Standard deviation of the zero-mean velocity prior of new-born
        particles.
    init_max_velocity:
        Initial particle velocities are drawn uniformly from
        ``[-init_max_velocity, init_max_velocity]``.
    freespace_discount:
        Factor applied to the previous free mass when predicting free mass.
    seed:
        Seed of the map's random generator (None = nondeterministic).
    """

    width: int
    height: int
    resolution: float
    particle_count: int
    new_born_particle_count: int
    ps: float
    process_noise_position: float
    process_noise_velocity: float
    pb: float
    stddev_velocity: float = 1.0
    init_max_velocity: float = 1.0
    freespace_discount: float = 0.9
    seed: int | None = None

    @property
    def grid_cell_count(self) -> int:
        return self.width * self.height

    def validate(self) -> None:
        """Raise ``ConfigurationError`` if any parameter is out of range."""
        for name in ("width", "height", "particle_count", "new_born_particle_count"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")

        if not _finite(self.resolution) or self.resolution <= 0.0:
            raise ConfigurationError(
                f"resolution must be a positive number, got {self.resolution!r}"
            )

        for name in ("ps", "pb", "freespace_discount"):
            value = getattr(self, name)
            if not _finite(value) or not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must lie in [0, 1], got {value!r}")

        for name in (
            "process_noise_position",
            "process_noise_velocity",
            "stddev_velocity",
            "init_max_velocity",
        ):
            value = getattr(self, name)
            if not _finite(value) or value < 0.0:
                raise ConfigurationError(f"{name} must be >= 0, got {value!r}")


def _finite(value: object) -> bool:
    try:
        return math.isfinite(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return False


def allocate_grid_cells(count: int) -> np.ndarray:
    """Return *count* zero-initialised grid cells (no mass, no particles)."""
    return np.zeros(count, dtype=GRID_CELL_DTYPE)


def allocate_measurement_cells(count: int) -> np.ndarray:
    """Return *count* measurement cells in full ignorance."""
    return np.zeros(count, dtype=MEASUREMENT_CELL_DTYPE)


def allocate_particles(count: int) -> np.ndarray:
    """Return *count* zero-weight particles outside the grid."""
    particles = np.zeros(count, dtype=PARTICLE_DTYPE)
    particles["grid_cell_idx"] = OUT_OF_GRID
    return particles


def positions_to_cell_indices(
    x: np.ndarray,
    y: np.ndarray,
    *,
    width: int,
    height: int,
    resolution: float,
) -> np.ndarray:
    """Map metric positions to flat cell indices, ``OUT_OF_GRID`` outside.

    Non-finite positions are treated as outside the grid.
    """
    with np.errstate(invalid="ignore"):
        col = np.floor(x / resolution)
        row = np.floor(y / resolution)
    inside = (
        np.isfinite(col) & np.isfinite(row)
        & (col >= 0) & (col < width)
        & (row >= 0) & (row < height)
    )
    idx = np.full(x.shape, OUT_OF_GRID, dtype=np.int64)
    idx[inside] = row[inside].astype(np.int64) * width + col[inside].astype(np.int64)
    return idx
