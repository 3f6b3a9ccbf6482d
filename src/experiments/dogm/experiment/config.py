# TDP: Config loader
# Approach: Load YAML file and merge with defaults. Return plain dict rather than
#   a custom class so downstream code can use standard dict access without coupling
#   to a config type. Provide explicit defaults for every parameter so configs can
#   be minimal (smoke configs only override what matters).
#   The grid section is the one place that becomes a typed object:
#   grid_params_from_config() builds the immutable GridParams the map validates.
# Alternatives considered: dataclasses/attrs for the whole config -- heavier,
#   adds coupling; pydantic -- not in requirements.
# Risks: Silent merging of defaults may hide missing keys; mitigated by
#   documenting all default values here.
"""Config loader for the DOGM experiment.

Loads a YAML config file and merges it with built-in defaults so that partial
configs (e.g., smoke test configs) work correctly.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml

from src.experiments.dogm.grid_map.types import GridParams

_DEFAULTS: dict[str, Any] = {
    "experiment": {
        "name": "default",
        "output_dir": "results/dogm/default",
        "seed": 0,
        "steps": 20,
        "dt": 0.1,
    },
    "grid": {
        "width": 128,
        "height": 128,
        "resolution": 0.5,
        "particle_count": 30000,
        "new_born_particle_count": 3000,
        "ps": 0.99,
        "process_noise_position": 0.1,
        "process_noise_velocity": 1.0,
        "pb": 0.02,
        "stddev_velocity": 4.0,
        "init_max_velocity": 8.0,
        "freespace_discount": 0.9,
    },
    "scene": {
        "vehicles": 3,
        "vehicle_speed": 5.0,
        "vehicle_length": 4.0,
        "vehicle_width": 2.0,
        "obstacles": 2,
        "walls": False,
    },
    "sensor": {
        # Position as a fraction of the grid extent.
        "x_fraction": 0.5,
        "y_fraction": 0.5,
        "heading": 0.0,
        "fov_deg": 360.0,
        "num_rays": 720,
        "max_range": 50.0,
        "occ_mass": 0.9,
        "free_mass": 0.8,
        "noise_stddev": 0.0,
        "false_positive_rate": 0.0,
        "false_negative_rate": 0.0,
    },
    "clustering": {
        "min_occupancy_threshold": 0.5,
        "min_velocity_threshold": 4.0,
        "eps": 2.0,
        "min_points": 3,
    },
    "metrics": [
        "cell_accuracy",
        "map_entropy",
        "velocity_error",
        "dynamic_detection_rate",
        "mass_violation",
    ],
    "logging": {
        "grid_snapshot_interval": 10,
        "save_images": False,
        "concatenate_images": True,
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into a copy of base."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def default_config() -> dict[str, Any]:
    """Return a fresh copy of the built-in defaults."""
    return copy.deepcopy(_DEFAULTS)


def merge_config(override: dict[str, Any]) -> dict[str, Any]:
    """Merge an in-memory override dict with the defaults."""
    return _deep_merge(_DEFAULTS, override)


def load_config(path: str | Path) -> dict[str, Any]:
    """Load YAML config from *path* and merge with defaults.

    Parameters
    ----------
    path:
        Path to a YAML config file.

    Returns
    -------
    dict
        Merged configuration dictionary.
    """
    path = Path(path)
    with path.open("r") as fh:
        user_config = yaml.safe_load(fh) or {}
    return _deep_merge(_DEFAULTS, user_config)


def grid_params_from_config(config: dict[str, Any]) -> GridParams:
    """Build ``GridParams`` from the ``grid`` section and the experiment seed.

    Values are passed through unconverted so that ``GridParams.validate``
    reports bad types instead of silently truncating them.
    """
    grid_cfg = config["grid"]
    return GridParams(
        width=grid_cfg["width"],
        height=grid_cfg["height"],
        resolution=grid_cfg["resolution"],
        particle_count=grid_cfg["particle_count"],
        new_born_particle_count=grid_cfg["new_born_particle_count"],
        ps=grid_cfg["ps"],
        process_noise_position=grid_cfg["process_noise_position"],
        process_noise_velocity=grid_cfg["process_noise_velocity"],
        pb=grid_cfg["pb"],
        stddev_velocity=grid_cfg.get("stddev_velocity", 1.0),
        init_max_velocity=grid_cfg.get("init_max_velocity", 1.0),
        freespace_discount=grid_cfg.get("freespace_discount", 0.9),
        seed=config["experiment"].get("seed"),
    )
