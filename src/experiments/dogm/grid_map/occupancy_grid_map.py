# TDP: Dynamic occupancy grid map -- per-cycle pipeline owner
# Approach: OccupancyGridMap owns every array (grid cells, measurement cells,
#   particle double buffer, birth particles, per-cycle scratch) and allocates
#   them once in __init__ from GridParams.  update() runs the stages strictly
#   in order; each stage is a vectorised function in its own module so it can
#   be unit-tested against hand-built arrays.
#
#   Stage order:
#     update_measurement_grid -> particle_prediction -> particle_assignment
#     -> grid_cell_occupancy_update -> update_persistent_particles
#     -> initialize_new_particles -> statistical_moments -> resampling
#
#   Particle weights after resampling are normalised (sum 1).  The scalar
#   particle_mass holds the joint occupied mass that population represents,
#   so the occupancy update and reweighting convert weights to mass units
#   with weight * particle_mass.
#
#   Scratch arrays (born_masses_array, particle_orders_array_accum, vel_*,
#   rand_array) are valid only during one update() call.
#
# Alternatives considered:
#   Storing mass-unit weights across cycles -- weights would no longer sum to
#     one after resampling, which downstream consumers expect.
#   One class per stage -- stages share almost all state; free functions over
#     the map's arrays keep the data flow explicit.
# Risks: Readers must not access the arrays while update() is running;
#   update() is not re-entrant.
"""OccupancyGridMap: evidential dynamic occupancy grid with a particle filter."""

from __future__ import annotations

import time

import numpy as np

from src.experiments.dogm.grid_map.assignment import assign_particles_to_cells
from src.experiments.dogm.grid_map.birth import initialize_new_particles
from src.experiments.dogm.grid_map.measurement import fuse_measurements
from src.experiments.dogm.grid_map.moments import statistical_moments
from src.experiments.dogm.grid_map.occupancy import update_cell_occupancy
from src.experiments.dogm.grid_map.prediction import predict_particles
from src.experiments.dogm.grid_map.resampling import resample_particles
from src.experiments.dogm.grid_map.reweighting import update_persistent_particles
from src.experiments.dogm.grid_map.types import (
    GridParams,
    allocate_grid_cells,
    allocate_measurement_cells,
    allocate_particles,
    positions_to_cell_indices,
)


class OccupancyGridMap:
    """Dynamic occupancy grid map.

    Parameters
    ----------
    params:
        Grid and filter configuration.  Validated before anything is
        allocated.

    Raises
    ------
    ConfigurationError
        If *params* is invalid.

    Attributes
    ----------
    grid_cell_array:
        Structured array of ``GRID_CELL_DTYPE``, one record per cell
        (index ``row * width + col``).
    meas_cell_array:
        Structured array of ``MEASUREMENT_CELL_DTYPE`` from the last
        ``update_measurement_grid`` call.
    particle_array:
        Current particle generation (``PARTICLE_DTYPE``).
    particle_mass:
        Joint occupied mass represented by ``particle_array``.
    degenerate_count:
        Number of cycles in which resampling fell back to a uniform draw.
    """

    def __init__(self, params: GridParams) -> None:
        params.validate()
        self.params = params
        self.grid_cell_count = params.grid_cell_count
        self.particle_count = params.particle_count
        self.new_born_particle_count = params.new_born_particle_count
        self._rng = np.random.default_rng(params.seed)

        self.grid_cell_array = allocate_grid_cells(self.grid_cell_count)
        self.meas_cell_array = allocate_measurement_cells(self.grid_cell_count)
        self.particle_array = allocate_particles(self.particle_count)
        self.particle_array_next = allocate_particles(self.particle_count)
        self.birth_particle_array = allocate_particles(self.new_born_particle_count)

        self.weight_array = np.zeros(self.particle_count, dtype=np.float64)
        self.birth_weight_array = np.zeros(self.new_born_particle_count, dtype=np.float64)

        self.born_masses_array = np.zeros(self.grid_cell_count, dtype=np.float64)
        self.particle_orders_array_accum = np.zeros(self.grid_cell_count, dtype=np.float64)
        self.vel_x_array = np.zeros(self.particle_count, dtype=np.float64)
        self.vel_y_array = np.zeros(self.particle_count, dtype=np.float64)
        self.vel_x_squared_array = np.zeros(self.particle_count, dtype=np.float64)
        self.vel_y_squared_array = np.zeros(self.particle_count, dtype=np.float64)
        self.vel_xy_array = np.zeros(self.particle_count, dtype=np.float64)
        self.rand_array = np.zeros(self.particle_count, dtype=np.float64)

        self.particle_mass: float = 0.0
        self.degenerate_count: int = 0
        self.last_cycle_degenerate: bool = False
        self.last_birth_count: int = 0
        self.cycle_count: int = 0
        self.last_update_ms: float = 0.0

        self._initialize()

    def _initialize(self) -> None:
        """Spread zero-weight particles uniformly over the grid."""
        p = self.params
        n = self.particle_count
        state = self.particle_array["state"]
        state[:, 0] = self._rng.uniform(0.0, p.width * p.resolution, size=n)
        state[:, 1] = self._rng.uniform(0.0, p.height * p.resolution, size=n)
        state[:, 2:4] = self._rng.uniform(
            -p.init_max_velocity, p.init_max_velocity, size=(n, 2)
        )
        self.particle_array["weight"] = 0.0
        self.particle_array["associated"] = False
        self.particle_array["grid_cell_idx"] = positions_to_cell_indices(
            state[:, 0], state[:, 1],
            width=p.width, height=p.height, resolution=p.resolution,
        )

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    @property
    def grid_size(self) -> tuple[int, int]:
        """``(width, height)`` in cells."""
        return self.params.width, self.params.height

    @property
    def width(self) -> int:
        return self.params.width

    @property
    def height(self) -> int:
        return self.params.height

    @property
    def resolution(self) -> float:
        return self.params.resolution

    def get_occupancy_probability(self) -> np.ndarray:
        """Pignistic occupancy ``m_O + m_OF / 2`` as a ``(height, width)`` grid."""
        occ = self.grid_cell_array["occ_mass"]
        free = self.grid_cell_array["free_mass"]
        prob = occ + 0.5 * (1.0 - occ - free)
        return np.clip(prob, 0.0, 1.0).reshape(self.params.height, self.params.width)

    def cell_centers(self) -> tuple[np.ndarray, np.ndarray]:
        """Metric ``(x, y)`` centres of all cells in flat index order."""
        idx = np.arange(self.grid_cell_count)
        x = (idx % self.params.width + 0.5) * self.params.resolution
        y = (idx // self.params.width + 0.5) * self.params.resolution
        return x, y

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def update_measurement_grid(self, measurements: np.ndarray) -> None:
        """Ingest one cycle of ``(free_mass, occ_mass)`` evidence per cell.

        Raises
        ------
        InputShapeError
            If the measurement size does not match the grid.
        """
        fuse_measurements(measurements, self.meas_cell_array)

    def update(self, dt: float, measurements: np.ndarray) -> None:
        """Run one full filter cycle of length *dt* seconds.

        Raises
        ------
        InputShapeError
            If the measurement size does not match the grid; the map is left
            untouched.
        ValueError
            If *dt* is negative or not finite; the map is left untouched.
        """
        if not np.isfinite(dt) or dt < 0.0:
            raise ValueError(f"dt must be a finite value >= 0, got {dt!r}")
        t0 = time.perf_counter()

        self.update_measurement_grid(measurements)
        self.particle_prediction(dt)
        self.particle_assignment()
        self.grid_cell_occupancy_update()
        self.update_persistent_particles()
        self.initialize_new_particles()
        self.statistical_moments()
        self.resampling()

        self.cycle_count += 1
        self.last_update_ms = (time.perf_counter() - t0) * 1000.0

    def particle_prediction(self, dt: float) -> None:
        p = self.params
        predict_particles(
            self.particle_array,
            dt=dt,
            ps=p.ps,
            process_noise_position=p.process_noise_position,
            process_noise_velocity=p.process_noise_velocity,
            rng=self._rng,
        )

    def particle_assignment(self) -> None:
        assign_particles_to_cells(
            self.particle_array,
            self.grid_cell_array,
            width=self.params.width,
            height=self.params.height,
            resolution=self.params.resolution,
        )

    def grid_cell_occupancy_update(self) -> None:
        self.rand_array[:] = self._rng.random(self.particle_count)
        update_cell_occupancy(
            self.particle_array,
            self.grid_cell_array,
            self.meas_cell_array,
            particle_mass=self.particle_mass,
            pb=self.params.pb,
            freespace_discount=self.params.freespace_discount,
            rand_array=self.rand_array,
        )

    def update_persistent_particles(self) -> None:
        update_persistent_particles(
            self.particle_array,
            self.grid_cell_array,
            self.meas_cell_array,
            self.weight_array,
            particle_mass=self.particle_mass,
        )

    def initialize_new_particles(self) -> None:
        self.last_birth_count = initialize_new_particles(
            self.grid_cell_array,
            self.birth_particle_array,
            self.birth_weight_array,
            self.born_masses_array,
            self.particle_orders_array_accum,
            width=self.params.width,
            resolution=self.params.resolution,
            stddev_velocity=self.params.stddev_velocity,
            rng=self._rng,
        )

    def statistical_moments(self) -> None:
        statistical_moments(
            self.particle_array,
            self.grid_cell_array,
            vel_x_array=self.vel_x_array,
            vel_y_array=self.vel_y_array,
            vel_x_squared_array=self.vel_x_squared_array,
            vel_y_squared_array=self.vel_y_squared_array,
            vel_xy_array=self.vel_xy_array,
        )

    def resampling(self) -> None:
        """Draw the next generation and swap the particle buffers."""
        total, degenerate = resample_particles(
            self.particle_array,
            self.birth_particle_array,
            self.weight_array,
            self.birth_weight_array,
            self.particle_array_next,
            rng=self._rng,
        )
        self.particle_mass = total
        self.last_cycle_degenerate = degenerate
        if degenerate:
            self.degenerate_count += 1
        self.particle_array, self.particle_array_next = (
            self.particle_array_next,
            self.particle_array,
        )
