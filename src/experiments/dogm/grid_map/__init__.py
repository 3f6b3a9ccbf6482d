"""Dynamic occupancy grid map core.

    OccupancyGridMap -- owns all arrays and runs the per-cycle pipeline
    GridParams       -- immutable grid / filter configuration

Record dtypes (GRID_CELL_DTYPE, MEASUREMENT_CELL_DTYPE, PARTICLE_DTYPE) and
the error types are re-exported for collaborators that read the map state.
"""

from src.experiments.dogm.grid_map.errors import (
    ConfigurationError,
    DogmError,
    InputShapeError,
)
from src.experiments.dogm.grid_map.occupancy_grid_map import OccupancyGridMap
from src.experiments.dogm.grid_map.types import (
    GRID_CELL_DTYPE,
    MEASUREMENT_CELL_DTYPE,
    OUT_OF_GRID,
    PARTICLE_DTYPE,
    GridParams,
)

__all__ = [
    "OccupancyGridMap",
    "GridParams",
    "GRID_CELL_DTYPE",
    "MEASUREMENT_CELL_DTYPE",
    "PARTICLE_DTYPE",
    "OUT_OF_GRID",
    "DogmError",
    "ConfigurationError",
    "InputShapeError",
]
