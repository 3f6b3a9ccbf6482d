# TDP: Simulated traffic scene with static obstacles and moving vehicles
# Approach: A static background grid (optional border walls + rectangular
#   obstacles) plus a list of Vehicles.  A vehicle is an axis-aligned
#   rectangle moving back and forth along a straight path: its position at
#   time t is a closed-form function of t (no mutable state), so ground truth
#   for any cycle can be queried in any order.
#   get_grid(t) rasterises the vehicles onto a copy of the static grid;
#   get_velocity_grid(t) writes each vehicle's current velocity into the
#   cells it covers, so metrics can compare the map's cell velocities against
#   the truth.
#
# Coordinate convention (same as the grid map):
#   x to the right, y up, origin at the lower-left grid corner.
#   Cell (row, col) covers [col*res, (col+1)*res) x [row*res, (row+1)*res).
#   Arrays are indexed [row, col]; plot with origin="lower".
#
# Alternatives considered:
#   Circular objects -- simpler rasterisation, but cars and pedestrians in a
#     road scene are closer to boxes.
#   Wrap-around motion -- objects would teleport across the grid and produce
#     spurious births at the far edge.
"""Ground-truth scene generator for the DOGM experiment.

Provides:
- Vehicle: a rectangular moving object with back-and-forth motion
- Scene: static grid + vehicles, ground-truth occupancy / velocity queries
- generate_scene: random scene factory
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np


_OBSTACLE_PLACEMENT_RETRIES = 100
_MIN_OBSTACLE_CELLS = 2
_MAX_OBSTACLE_FRACTION = 0.1


@dataclass
class Vehicle:
    """An axis-aligned rectangular object moving back and forth.

    Motion model:
        - Starts with its centre at (cx0, cy0).
        - Moves along the unit vector (dx, dy) at *speed* metres/second.
        - Reverses after travelling *path_length* metres, returns to the start,
          and repeats.

    Attributes
    ----------
    cx0, cy0 : float
        Initial centre in metres.
    length, width : float
        Extent along x and y in metres.
    dx, dy : float
        Unit direction of the outbound leg.
    speed : float
        Speed in metres per second.
    path_length : float
        Length of one leg in metres.
    """

    cx0: float
    cy0: float
    length: float
    width: float
    dx: float
    dy: float
    speed: float
    path_length: float

    def state_at(self, t: float) -> tuple[float, float, float, float]:
        """Return ``(cx, cy, vx, vy)`` at time *t* seconds."""
        if self.speed <= 0.0 or self.path_length <= 0.0:
            return self.cx0, self.cy0, 0.0, 0.0
        period = 2.0 * self.path_length
        tau = math.fmod(self.speed * t, period)
        if tau <= self.path_length:
            travelled = tau
            sign = 1.0
        else:
            travelled = period - tau
            sign = -1.0
        return (
            self.cx0 + travelled * self.dx,
            self.cy0 + travelled * self.dy,
            sign * self.speed * self.dx,
            sign * self.speed * self.dy,
        )


def _footprint(
    shape: tuple[int, int],
    cx: float,
    cy: float,
    half_x: float,
    half_y: float,
    resolution: float,
) -> tuple[slice, slice] | None:
    """Row/col slices of the cells whose centres lie inside a rectangle."""
    rows, cols = shape
    c0 = max(0, int(math.ceil((cx - half_x) / resolution - 0.5)))
    c1 = min(cols, int(math.floor((cx + half_x) / resolution - 0.5)) + 1)
    r0 = max(0, int(math.ceil((cy - half_y) / resolution - 0.5)))
    r1 = min(rows, int(math.floor((cy + half_y) / resolution - 0.5)) + 1)
    if r0 >= r1 or c0 >= c1:
        return None
    return slice(r0, r1), slice(c0, c1)


class Scene:
    """Static occupancy grid plus moving vehicles.

    Parameters
    ----------
    static_grid:
        Shape ``(rows, cols)``, float32, 1.0 = occupied.
    vehicles:
        Moving objects.
    resolution:
        Metres per cell.
    """

    def __init__(
        self,
        static_grid: np.ndarray,
        vehicles: list[Vehicle],
        resolution: float,
    ) -> None:
        self._static_grid = static_grid.astype(np.float32, copy=True)
        self.vehicles = list(vehicles)
        self.resolution = resolution

    @property
    def shape(self) -> tuple[int, int]:
        return self._static_grid.shape  # type: ignore[return-value]

    @property
    def static_grid(self) -> np.ndarray:
        return self._static_grid

    def get_grid(self, t: float) -> np.ndarray:
        """Ground-truth occupancy at time *t*, shape ``(rows, cols)``, float32."""
        grid = self._static_grid.copy()
        for vehicle in self.vehicles:
            cx, cy, _, _ = vehicle.state_at(t)
            fp = _footprint(
                grid.shape, cx, cy, vehicle.length / 2.0, vehicle.width / 2.0,
                self.resolution,
            )
            if fp is not None:
                grid[fp] = 1.0
        return grid

    def get_velocity_grid(self, t: float) -> np.ndarray:
        """Ground-truth velocity per cell at time *t*, shape ``(rows, cols, 2)``.

        Cells not covered by a vehicle have zero velocity.  Overlapping
        vehicles: the later one in ``vehicles`` wins.
        """
        rows, cols = self.shape
        velocity = np.zeros((rows, cols, 2), dtype=np.float64)
        for vehicle in self.vehicles:
            cx, cy, vx, vy = vehicle.state_at(t)
            fp = _footprint(
                (rows, cols), cx, cy, vehicle.length / 2.0, vehicle.width / 2.0,
                self.resolution,
            )
            if fp is not None:
                velocity[fp] = (vx, vy)
        return velocity

    def get_dynamic_mask(self, t: float) -> np.ndarray:
        """Boolean mask of cells covered by a moving vehicle at time *t*."""
        rows, cols = self.shape
        mask = np.zeros((rows, cols), dtype=bool)
        for vehicle in self.vehicles:
            if vehicle.speed <= 0.0:
                continue
            cx, cy, _, _ = vehicle.state_at(t)
            fp = _footprint(
                (rows, cols), cx, cy, vehicle.length / 2.0, vehicle.width / 2.0,
                self.resolution,
            )
            if fp is not None:
                mask[fp] = True
        return mask


def _place_obstacles(
    grid: np.ndarray,
    num_obstacles: int,
    rng: np.random.Generator,
) -> None:
    """Place rectangular obstacles in free interior cells of *grid* (in-place)."""
    rows, cols = grid.shape
    max_h = max(_MIN_OBSTACLE_CELLS, int(_MAX_OBSTACLE_FRACTION * rows))
    max_w = max(_MIN_OBSTACLE_CELLS, int(_MAX_OBSTACLE_FRACTION * cols))
    if rows - 2 <= max_h or cols - 2 <= max_w:
        return

    placed = 0
    attempts = 0
    while placed < num_obstacles and attempts < _OBSTACLE_PLACEMENT_RETRIES * num_obstacles:
        attempts += 1
        obs_h = int(rng.integers(_MIN_OBSTACLE_CELLS, max_h + 1))
        obs_w = int(rng.integers(_MIN_OBSTACLE_CELLS, max_w + 1))
        r0 = int(rng.integers(1, rows - 1 - obs_h))
        c0 = int(rng.integers(1, cols - 1 - obs_w))
        region = grid[r0:r0 + obs_h, c0:c0 + obs_w]
        if region.any():
            continue
        region[:] = 1.0
        placed += 1


def generate_scene(
    *,
    width: int,
    height: int,
    resolution: float,
    num_vehicles: int = 2,
    vehicle_speed: float = 3.0,
    vehicle_length: float = 4.0,
    vehicle_width: float = 2.0,
    num_obstacles: int = 0,
    walls: bool = False,
    rng: np.random.Generator,
) -> Scene:
    """Generate a random scene.

    Vehicles move along x or y (chosen at random) through the grid interior,
    with a path that keeps them fully inside the grid.

    Parameters
    ----------
    width, height:
        Grid dimensions in cells.
    resolution:
        Metres per cell.
    num_vehicles:
        Number of moving vehicles.
    vehicle_speed:
        Vehicle speed in m/s.
    vehicle_length, vehicle_width:
        Vehicle extent in metres (length along the direction of travel).
    num_obstacles:
        Number of static rectangular obstacles.
    walls:
        If True, the outermost ring of cells is occupied.
    rng:
        NumPy random generator (all randomness flows through this).
    """
    grid = np.zeros((height, width), dtype=np.float32)
    if walls:
        grid[0, :] = 1.0
        grid[-1, :] = 1.0
        grid[:, 0] = 1.0
        grid[:, -1] = 1.0
    _place_obstacles(grid, num_obstacles, rng)

    extent_x = width * resolution
    extent_y = height * resolution
    margin = 2.0 * resolution

    vehicles: list[Vehicle] = []
    for _ in range(num_vehicles):
        along_x = bool(rng.integers(0, 2))
        if along_x:
            length, breadth = vehicle_length, vehicle_width
            travel_extent, cross_extent = extent_x, extent_y
        else:
            length, breadth = vehicle_width, vehicle_length
            travel_extent, cross_extent = extent_y, extent_x

        half_travel = (vehicle_length / 2.0) + margin
        half_cross = (vehicle_width / 2.0) + margin
        path_length = max(travel_extent - 2.0 * half_travel, 0.0)
        if cross_extent <= 2.0 * half_cross:
            continue
        cross = float(rng.uniform(half_cross, cross_extent - half_cross))
        start = half_travel
        direction = 1.0
        if rng.random() < 0.5:
            start = travel_extent - half_travel
            direction = -1.0

        if along_x:
            cx0, cy0, dx, dy = start, cross, direction, 0.0
        else:
            cx0, cy0, dx, dy = cross, start, 0.0, direction
        vehicles.append(
            Vehicle(
                cx0=cx0,
                cy0=cy0,
                length=length,
                width=breadth,
                dx=dx,
                dy=dy,
                speed=vehicle_speed,
                path_length=path_length,
            )
        )

    return Scene(static_grid=grid, vehicles=vehicles, resolution=resolution)
