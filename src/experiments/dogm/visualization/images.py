# TDP: Result images for the DOGM
# Approach: Every image is a uint8 RGB array of shape (rows, cols, 3) in grid
#   row order (row 0 = lowest y).  Files are written with
#   matplotlib.pyplot.imsave(origin="lower") so y points up in the PNG, same
#   as the plots of the scene.  Colours:
#     measurement grid   grayscale pignistic occupancy (white = free)
#     raw measurement    red = occ mass, green = free mass, blue = remainder
#     particles          red pixel per cell holding at least one particle
#     dogm               grayscale occupancy; velocity cells coloured by
#                        hue = direction of the mean velocity, with a colour
#                        wheel legend in the bottom-right corner
#   Hue -> RGB goes through matplotlib.colors.hsv_to_rgb.
# Alternatives considered:
#   OpenCV -- not in requirements; matplotlib already covers PNG output.
#   Per-image matplotlib figures with axes -- the images are meant to be
#     pixel-exact grids that can be concatenated side by side.
"""Render grid map state as RGB images and save them per step."""

from __future__ import annotations

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.colors import hsv_to_rgb

from src.experiments.dogm.grid_map.occupancy_grid_map import OccupancyGridMap


def pignistic_transformation(free_mass: np.ndarray, occ_mass: np.ndarray) -> np.ndarray:
    """Pignistic occupancy probability ``occ + 0.5 * (1 - occ - free)``."""
    return occ_mass + 0.5 * (1.0 - occ_mass - free_mass)


def _grayscale(occupancy: np.ndarray) -> np.ndarray:
    value = 255 - np.floor(np.clip(occupancy, 0.0, 1.0) * 255.0).astype(np.uint8)
    return np.repeat(value[..., np.newaxis], 3, axis=-1)


def _direction_to_rgb(vx: np.ndarray, vy: np.ndarray) -> np.ndarray:
    """Full-saturation colour whose hue encodes the direction of (vx, vy)."""
    angle = np.mod(np.degrees(np.arctan2(vy, vx)) + 360.0, 360.0)
    hsv = np.stack([angle / 360.0, np.ones_like(angle), np.ones_like(angle)], axis=-1)
    return np.round(hsv_to_rgb(hsv) * 255.0).astype(np.uint8)


def compute_measurement_grid_image(grid_map: OccupancyGridMap) -> np.ndarray:
    """Grayscale image of the pignistic occupancy of the last measurement."""
    meas = grid_map.meas_cell_array
    occ = pignistic_transformation(meas["free_mass"], meas["occ_mass"])
    return _grayscale(occ.reshape(grid_map.height, grid_map.width))


def compute_raw_measurement_grid_image(grid_map: OccupancyGridMap) -> np.ndarray:
    """RGB image of the raw measurement masses (red occ, green free, blue rest)."""
    meas = grid_map.meas_cell_array
    red = (meas["occ_mass"] * 255.0).astype(np.int64)
    green = (meas["free_mass"] * 255.0).astype(np.int64)
    blue = np.clip(255 - red - green, 0, 255)
    img = np.stack([red, green, blue], axis=-1).astype(np.uint8)
    return img.reshape(grid_map.height, grid_map.width, 3)


def compute_particles_image(grid_map: OccupancyGridMap) -> np.ndarray:
    """Black image with a red pixel for every cell that holds a particle."""
    img = np.zeros((grid_map.height, grid_map.width, 3), dtype=np.uint8)
    state = grid_map.particle_array["state"]
    cols = np.floor(state[:, 0] / grid_map.resolution)
    rows = np.floor(state[:, 1] / grid_map.resolution)
    inside = (cols >= 0) & (cols < grid_map.width) & (rows >= 0) & (rows < grid_map.height)
    img[rows[inside].astype(np.int64), cols[inside].astype(np.int64)] = (255, 0, 0)
    return img


def color_wheel(size: int) -> np.ndarray:
    """Square RGB colour wheel of *size* pixels; pixels outside the disc are white.

    Rows grow with y, so the hue at each pixel matches the velocity direction
    it stands for when the image is shown with ``origin="lower"``.
    """
    centre = (size - 1) / 2.0
    yy, xx = np.mgrid[0:size, 0:size].astype(np.float64)
    dx = xx - centre
    dy = yy - centre
    wheel = _direction_to_rgb(dx, dy)
    outside = np.hypot(dx, dy) > size / 2.0
    wheel[outside] = 255
    return wheel


def add_color_wheel(img: np.ndarray, size: int | None = None) -> np.ndarray:
    """Paste a colour wheel legend into the bottom-right corner of *img* (in place).

    Parameters
    ----------
    img:
        RGB image in grid row order, shape ``(rows, cols, 3)``.
    size:
        Wheel diameter in pixels.  Defaults to a quarter of the smaller
        image side.

    Returns
    -------
    numpy.ndarray
        The same *img*, for chaining.
    """
    rows, cols = img.shape[:2]
    if size is None:
        size = min(rows, cols) // 4
    size = min(size, rows, cols)
    if size < 3:
        return img
    # Bottom of the saved image is row 0.
    img[0:size, cols - size:cols] = color_wheel(size)
    return img


def compute_dogm_image(
    grid_map: OccupancyGridMap,
    cells_with_velocity: np.ndarray,
) -> np.ndarray:
    """Occupancy image with velocity cells coloured by direction.

    Parameters
    ----------
    grid_map:
        Updated map.
    cells_with_velocity:
        Output of ``clustering.compute_cells_with_velocity``.
    """
    img = _grayscale(grid_map.get_occupancy_probability())
    if cells_with_velocity.shape[0] > 0:
        img[cells_with_velocity["y"], cells_with_velocity["x"]] = _direction_to_rgb(
            cells_with_velocity["mean_x_vel"], cells_with_velocity["mean_y_vel"]
        )
    return add_color_wheel(img)


def save_result_images(
    grid_map: OccupancyGridMap,
    cells_with_velocity: np.ndarray,
    step: int,
    output_dir: Path,
    concatenate_images: bool = True,
) -> list[Path]:
    """Write the result images of one step as PNG files.

    With *concatenate_images* the dogm, particle and raw measurement images
    are placed side by side in ``outputs_iter-{step+1}.png``; otherwise each
    goes to its own file.

    Returns
    -------
    list[Path]
        The files written.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    raw_meas_img = compute_raw_measurement_grid_image(grid_map)
    particle_img = compute_particles_image(grid_map)
    dogm_img = compute_dogm_image(grid_map, cells_with_velocity)

    iteration = step + 1
    if concatenate_images:
        combined = np.hstack([dogm_img, particle_img, raw_meas_img])
        path = output_dir / f"outputs_iter-{iteration}.png"
        plt.imsave(path, combined, origin="lower")
        return [path]

    written = []
    for prefix, img in (
        ("raw_grid", raw_meas_img),
        ("particles", particle_img),
        ("dogm", dogm_img),
    ):
        path = output_dir / f"{prefix}_iter-{iteration}.png"
        plt.imsave(path, img, origin="lower")
        written.append(path)
    return written
