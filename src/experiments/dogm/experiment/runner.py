# TDP: Experiment runner for the DOGM
#
# Approach: Separate orchestration logic from the CLI entry point (run.py).
#   The runner owns scene/sensor/map construction, the cycle loop, metric
#   collection, result images and file output.  run.py is a thin argparse
#   wrapper that calls run_experiment().
#
# Design:
#   RunResult        -- typed result of one run
#   setup_simulation -- scene, sensor and map from a merged config
#   run_experiment   -- cycle loop + all output files
#
#   Seeds: experiment.seed drives the map's generator directly; scene and
#   sensor noise get their own generators derived from it, so changing the
#   sensor noise does not change the scene.
#
# File layout:
#   {output_dir}/
#     run.jsonl      (run_start, one entry per step, degenerate_weights
#                     events, run_complete)
#     metrics.json   (final metrics + diagnostics)
#     summary.csv    (one row: name, final metrics, diagnostics)
#     images/        (only with logging.save_images)
#
# Alternatives considered:
#   A class-based Runner -- adds indirection with no benefit for a single
#     experiment function; module-level functions are simpler to import and test.
"""Experiment orchestration for the DOGM.

Provides:
- RunResult: typed result of one run
- setup_simulation: build scene, sensor and grid map from a config
- run_experiment: run all cycles and write the output files
"""

from __future__ import annotations

import csv
import json
import math
import subprocess
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from src.experiments.dogm.experiment.config import grid_params_from_config
from src.experiments.dogm.experiment.logger import ExperimentLogger
from src.experiments.dogm.experiment.metrics import compute_metrics
from src.experiments.dogm.grid_map import OccupancyGridMap
from src.experiments.dogm.simulation.scene import Scene, generate_scene
from src.experiments.dogm.simulation.sensor import MeasurementGridSensor
from src.experiments.dogm.visualization.clustering import (
    Cluster,
    cluster_cells,
    compute_cells_with_velocity,
    velocity_cell_mask,
)
from src.experiments.dogm.visualization.images import save_result_images

_DIAGNOSTIC_COLS = ["particle_mass", "degenerate_count", "avg_update_ms", "clusters"]


def _get_git_commit() -> str:
    """Return the short git commit hash of HEAD, or 'unknown' if unavailable."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (OSError, subprocess.SubprocessError):
        pass
    return "unknown"


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------

@dataclass
class RunResult:
    """Result of one DOGM run.

    Parameters
    ----------
    name:
        Experiment name from the config.
    metrics:
        Metric values after the last cycle.
    steps:
        Number of cycles run.
    particle_mass:
        Joint occupied mass of the particle population after the last cycle.
    degenerate_count:
        Cycles in which resampling fell back to a uniform draw.
    avg_update_ms:
        Mean wall-clock time of ``OccupancyGridMap.update`` in milliseconds.
    occupancy_prob:
        Final pignistic occupancy grid, shape (height, width).
    clusters:
        DBSCAN clusters of the final velocity cells.
    """

    name: str
    metrics: dict[str, float]
    steps: int
    particle_mass: float
    degenerate_count: int
    avg_update_ms: float
    occupancy_prob: np.ndarray
    clusters: list[Cluster] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

def setup_simulation(
    config: dict[str, Any],
) -> tuple[Scene, MeasurementGridSensor, OccupancyGridMap, np.random.Generator]:
    """Build scene, sensor and grid map from a merged config.

    Returns
    -------
    tuple
        (scene, sensor, grid_map, sensor_rng)

    Raises
    ------
    ConfigurationError
        If the grid section does not describe a valid map.
    """
    params = grid_params_from_config(config)
    grid_map = OccupancyGridMap(params)

    scene_cfg = config["scene"]
    sensor_cfg = config["sensor"]

    seed_rng = np.random.default_rng(config["experiment"].get("seed"))
    scene_seed = int(seed_rng.integers(0, 2**31))
    sensor_seed = int(seed_rng.integers(0, 2**31))

    scene = generate_scene(
        width=params.width,
        height=params.height,
        resolution=params.resolution,
        num_vehicles=int(scene_cfg["vehicles"]),
        vehicle_speed=float(scene_cfg["vehicle_speed"]),
        vehicle_length=float(scene_cfg["vehicle_length"]),
        vehicle_width=float(scene_cfg["vehicle_width"]),
        num_obstacles=int(scene_cfg["obstacles"]),
        walls=bool(scene_cfg["walls"]),
        rng=np.random.default_rng(scene_seed),
    )

    sensor = MeasurementGridSensor(
        x=float(sensor_cfg["x_fraction"]) * params.width * params.resolution,
        y=float(sensor_cfg["y_fraction"]) * params.height * params.resolution,
        heading=math.radians(float(sensor_cfg["heading"])),
        fov=math.radians(float(sensor_cfg["fov_deg"])),
        num_rays=int(sensor_cfg["num_rays"]),
        max_range=float(sensor_cfg["max_range"]),
        occ_mass=float(sensor_cfg["occ_mass"]),
        free_mass=float(sensor_cfg["free_mass"]),
        noise_stddev=float(sensor_cfg["noise_stddev"]),
        false_positive_rate=float(sensor_cfg["false_positive_rate"]),
        false_negative_rate=float(sensor_cfg["false_negative_rate"]),
    )
    return scene, sensor, grid_map, np.random.default_rng(sensor_seed)


def _mean_velocity_grid(grid_map: OccupancyGridMap) -> np.ndarray:
    cells = grid_map.grid_cell_array
    return np.stack(
        [cells["mean_x_vel"], cells["mean_y_vel"]], axis=-1
    ).reshape(grid_map.height, grid_map.width, 2)


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

def run_experiment(config: dict[str, Any], output_dir: Path) -> RunResult:
    """Run the configured number of cycles and write all output files.

    Parameters
    ----------
    config:
        Merged experiment configuration dictionary.
    output_dir:
        Directory for run.jsonl, metrics.json, summary.csv and images.

    Returns
    -------
    RunResult
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    exp_cfg = config["experiment"]
    log_cfg = config["logging"]
    cluster_cfg = config["clustering"]
    metrics_requested: list[str] = list(config["metrics"])
    name = str(exp_cfg["name"])
    num_steps = int(exp_cfg["steps"])
    dt = float(exp_cfg["dt"])
    save_images = bool(log_cfg["save_images"])
    min_occ = float(cluster_cfg["min_occupancy_threshold"])
    min_vel = float(cluster_cfg["min_velocity_threshold"])

    scene, sensor, grid_map, sensor_rng = setup_simulation(config)

    step_metrics: dict[str, float] = {k: float("nan") for k in metrics_requested}
    occupancy_prob = grid_map.get_occupancy_probability()
    cells_with_velocity = compute_cells_with_velocity(grid_map, min_occ, min_vel)
    total_update_ms = 0.0

    log_path = output_dir / "run.jsonl"
    interval = int(log_cfg["grid_snapshot_interval"])
    with ExperimentLogger(log_path, grid_snapshot_interval=interval) as logger:
        logger.log_event("run_start", {
            "name": name,
            "git_commit": _get_git_commit(),
            "grid": asdict(grid_map.params),
            "steps": num_steps,
            "dt": dt,
            "vehicles": len(scene.vehicles),
        })

        for step in range(num_steps):
            t = step * dt
            ground_truth = scene.get_grid(t)
            measurements = sensor.measure(ground_truth, scene.resolution, sensor_rng)
            grid_map.update(dt, measurements)
            total_update_ms += grid_map.last_update_ms

            if grid_map.last_cycle_degenerate:
                logger.log_event("degenerate_weights", {
                    "step": step,
                    "degenerate_count": grid_map.degenerate_count,
                })

            occupancy_prob = grid_map.get_occupancy_probability()
            cells_with_velocity = compute_cells_with_velocity(grid_map, min_occ, min_vel)
            dynamic_mask = scene.get_dynamic_mask(t)

            step_metrics = compute_metrics(
                occupancy_prob=occupancy_prob,
                ground_truth=ground_truth,
                requested=metrics_requested,
                grid_cells=grid_map.grid_cell_array,
                mean_velocity=_mean_velocity_grid(grid_map),
                true_velocity=scene.get_velocity_grid(t),
                dynamic_mask=dynamic_mask,
                detected_mask=velocity_cell_mask(cells_with_velocity, scene.shape),
            )

            logger.log_step(
                step=step,
                time=t,
                metrics=step_metrics,
                diagnostics={
                    "particle_mass": grid_map.particle_mass,
                    "births": grid_map.last_birth_count,
                    "degenerate": grid_map.last_cycle_degenerate,
                    "velocity_cells": int(cells_with_velocity.shape[0]),
                    "update_ms": grid_map.last_update_ms,
                },
                grid_data=occupancy_prob,
            )

            if save_images:
                save_result_images(
                    grid_map,
                    cells_with_velocity,
                    step,
                    output_dir / "images",
                    concatenate_images=bool(log_cfg["concatenate_images"]),
                )

        clusters = cluster_cells(
            cells_with_velocity,
            eps=float(cluster_cfg["eps"]),
            min_points=int(cluster_cfg["min_points"]),
        )
        logger.log_event("run_complete", {
            "name": name,
            "steps": num_steps,
            "degenerate_count": grid_map.degenerate_count,
            "clusters": [
                {
                    "id": c.cluster_id,
                    "size": c.size,
                    "mean_x": c.mean_x,
                    "mean_y": c.mean_y,
                    "mean_x_vel": c.mean_x_vel,
                    "mean_y_vel": c.mean_y_vel,
                }
                for c in clusters
            ],
        })

    result = RunResult(
        name=name,
        metrics=step_metrics,
        steps=num_steps,
        particle_mass=grid_map.particle_mass,
        degenerate_count=grid_map.degenerate_count,
        avg_update_ms=total_update_ms / num_steps if num_steps > 0 else 0.0,
        occupancy_prob=occupancy_prob,
        clusters=clusters,
    )
    _write_metrics_json(output_dir, result)
    _write_summary_csv(output_dir, result, metrics_requested)
    return result


# ---------------------------------------------------------------------------
# Output files
# ---------------------------------------------------------------------------

def _diagnostics(result: RunResult) -> dict[str, Any]:
    return {
        "particle_mass": result.particle_mass,
        "degenerate_count": result.degenerate_count,
        "avg_update_ms": result.avg_update_ms,
        "clusters": len(result.clusters),
    }


def _write_metrics_json(output_dir: Path, result: RunResult) -> None:
    """Write metrics.json: final metrics (NaN as null) plus diagnostics."""
    data: dict[str, Any] = {
        "name": result.name,
        "steps": result.steps,
        "metrics": {k: (v if v == v else None) for k, v in result.metrics.items()},
        "diagnostics": _diagnostics(result),
    }
    with (output_dir / "metrics.json").open("w") as fh:
        json.dump(data, fh, indent=2)


def _write_summary_csv(
    output_dir: Path,
    result: RunResult,
    metrics_requested: list[str],
) -> None:
    """Write summary.csv: one row with the final metrics and diagnostics."""
    fieldnames = ["name"] + metrics_requested + _DIAGNOSTIC_COLS
    row: dict[str, Any] = {"name": result.name}
    for metric_name in metrics_requested:
        value = result.metrics.get(metric_name, float("nan"))
        row[metric_name] = f"{value:.6f}" if value == value else ""
    row.update(_diagnostics(result))
    with (output_dir / "summary.csv").open("w", newline="") as fh:
        writer = csv.DictWriter(fh, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerow(row)
