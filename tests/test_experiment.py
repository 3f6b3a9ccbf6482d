"""Tests for the experiment layer: config, logger, metrics and runner."""

from __future__ import annotations

import csv
import json
import math
from pathlib import Path

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pytest

from src.experiments.dogm.experiment.config import (
    default_config,
    grid_params_from_config,
    load_config,
    merge_config,
)
from src.experiments.dogm.experiment.logger import ExperimentLogger
from src.experiments.dogm.experiment.metrics import (
    cell_accuracy,
    compute_metrics,
    dynamic_detection_rate,
    map_entropy,
    mass_violation,
    velocity_error,
)
from src.experiments.dogm.experiment.runner import RunResult, run_experiment
from src.experiments.dogm.grid_map import ConfigurationError, OccupancyGridMap
from src.experiments.dogm.grid_map.types import allocate_grid_cells

_CONFIG_DIR = Path(__file__).resolve().parents[1] / "configs" / "dogm"


def _tiny_config(tmp_path: Path, **logging_overrides) -> dict:
    logging_cfg = {"grid_snapshot_interval": 2, "save_images": False}
    logging_cfg.update(logging_overrides)
    return merge_config({
        "experiment": {"name": "tiny", "output_dir": str(tmp_path), "seed": 5,
                       "steps": 3, "dt": 0.1},
        "grid": {"width": 16, "height": 16, "resolution": 0.5,
                 "particle_count": 400, "new_born_particle_count": 40},
        "scene": {"vehicles": 1, "obstacles": 0},
        "sensor": {"num_rays": 90, "max_range": 10.0},
        "logging": logging_cfg,
    })


class TestConfig:
    def test_partial_override_keeps_defaults(self):
        config = merge_config({"grid": {"width": 10}})
        assert config["grid"]["width"] == 10
        assert config["grid"]["height"] == default_config()["grid"]["height"]
        assert config["sensor"]["occ_mass"] == 0.9

    def test_defaults_not_mutated(self):
        merge_config({"grid": {"width": 1}})
        assert default_config()["grid"]["width"] == 128

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("experiment:\n  steps: 2\ngrid:\n  pb: 0.05\n")
        config = load_config(path)
        assert config["experiment"]["steps"] == 2
        assert config["grid"]["pb"] == 0.05
        assert config["logging"]["save_images"] is False

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == default_config()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    @pytest.mark.parametrize("name", ["default.yaml", "small.yaml"])
    def test_shipped_configs_build_valid_params(self, name):
        config = load_config(_CONFIG_DIR / name)
        params = grid_params_from_config(config)
        params.validate()
        assert params.seed == config["experiment"]["seed"]

    def test_invalid_grid_rejected_by_map(self):
        config = merge_config({"grid": {"resolution": -1.0}})
        with pytest.raises(ConfigurationError):
            OccupancyGridMap(grid_params_from_config(config))


class TestExperimentLogger:
    def test_step_and_event_entries(self, tmp_path):
        path = tmp_path / "log.jsonl"
        grid = np.full((2, 2), 0.123456)
        with ExperimentLogger(path, grid_snapshot_interval=2) as logger:
            logger.log_event("run_start", {"name": "x"})
            logger.log_step(step=0, time=0.0, metrics={"a": 1.0, "b": float("nan")},
                            diagnostics={"degenerate": np.bool_(True),
                                         "births": np.int64(3)},
                            grid_data=grid)
            logger.log_step(step=1, time=0.1, metrics={"a": np.float32(2.0)},
                            grid_data=grid)

        lines = [json.loads(line) for line in path.read_text().splitlines()]
        assert lines[0] == {"event": "run_start", "name": "x"}
        assert lines[1]["metrics"] == {"a": 1.0, "b": None}
        assert lines[1]["diagnostics"] == {"degenerate": True, "births": 3}
        assert lines[1]["grid_snapshot"] == [[0.1235, 0.1235], [0.1235, 0.1235]]
        assert "grid_snapshot" not in lines[2]
        assert "diagnostics" not in lines[2]

    def test_snapshots_disabled(self, tmp_path):
        path = tmp_path / "log.jsonl"
        with ExperimentLogger(path, grid_snapshot_interval=0) as logger:
            logger.log_step(step=0, time=0.0, metrics={}, grid_data=np.zeros((2, 2)))
        assert "grid_snapshot" not in json.loads(path.read_text())


class TestMetrics:
    def test_cell_accuracy_ignores_unknown(self):
        prob = np.array([[0.9, 0.1], [0.5, 0.8]])
        truth = np.array([[1.0, 0.0], [1.0, 0.0]])
        assert cell_accuracy(prob, truth) == pytest.approx(2.0 / 3.0)

    def test_cell_accuracy_all_unknown(self):
        assert math.isnan(cell_accuracy(np.full((2, 2), 0.5), np.zeros((2, 2))))

    def test_map_entropy_bounds(self):
        assert map_entropy(np.full((3, 3), 0.5)) == pytest.approx(1.0)
        assert map_entropy(np.zeros((3, 3))) == pytest.approx(0.0, abs=1e-6)

    def test_velocity_error(self):
        mean_v = np.zeros((2, 2, 2))
        mean_v[0, 0] = (3.0, 4.0)
        true_v = np.zeros((2, 2, 2))
        dynamic = np.array([[True, True], [False, False]])
        prob = np.array([[0.9, 0.2], [0.9, 0.9]])
        assert velocity_error(mean_v, prob, true_v, dynamic) == pytest.approx(5.0)
        assert math.isnan(velocity_error(mean_v, np.zeros((2, 2)), true_v, dynamic))

    def test_dynamic_detection_rate_tolerance(self):
        dynamic = np.zeros((5, 5), dtype=bool)
        dynamic[2, 2:4] = True
        detected = np.zeros((5, 5), dtype=bool)
        detected[2, 1] = True
        assert dynamic_detection_rate(detected, dynamic, tolerance_cells=0) == 0.0
        assert dynamic_detection_rate(detected, dynamic, tolerance_cells=1) == 0.5
        assert dynamic_detection_rate(detected, dynamic, tolerance_cells=2) == 1.0
        assert math.isnan(dynamic_detection_rate(detected, np.zeros((5, 5), dtype=bool)))

    def test_mass_violation(self):
        cells = allocate_grid_cells(2)
        cells["occ_mass"] = [0.5, 0.4]
        cells["free_mass"] = [0.5, 0.1]
        cells["new_born_occ_mass"] = [0.1, 0.0]
        cells["pers_occ_mass"] = [0.4, 0.3]
        assert mass_violation(cells) == pytest.approx(0.1)
        cells["pers_occ_mass"] = [0.4, 0.4]
        assert mass_violation(cells) == pytest.approx(0.0, abs=1e-12)

    def test_compute_metrics_missing_inputs_are_nan(self):
        prob = np.full((2, 2), 0.9)
        results = compute_metrics(
            occupancy_prob=prob,
            ground_truth=np.ones((2, 2)),
            requested=["cell_accuracy", "velocity_error", "dynamic_detection_rate",
                       "mass_violation", "bogus"],
        )
        assert results["cell_accuracy"] == 1.0
        for name in ("velocity_error", "dynamic_detection_rate", "mass_violation", "bogus"):
            assert math.isnan(results[name])


class TestRunner:
    def test_smoke_run_writes_outputs(self, tmp_path):
        config = _tiny_config(tmp_path)
        result = run_experiment(config, tmp_path)

        assert isinstance(result, RunResult)
        assert result.steps == 3
        assert result.occupancy_prob.shape == (16, 16)
        assert set(result.metrics) == set(config["metrics"])
        assert result.metrics["mass_violation"] < 1e-6

        entries = [json.loads(line) for line in (tmp_path / "run.jsonl").read_text().splitlines()]
        assert entries[0]["event"] == "run_start"
        assert entries[-1]["event"] == "run_complete"
        steps = [e for e in entries if "step" in e and "event" not in e]
        assert [e["step"] for e in steps] == [0, 1, 2]
        assert "grid_snapshot" in steps[0]
        assert "grid_snapshot" not in steps[1]
        assert "particle_mass" in steps[0]["diagnostics"]

        metrics = json.loads((tmp_path / "metrics.json").read_text())
        assert metrics["name"] == "tiny"
        assert set(metrics["diagnostics"]) == {
            "particle_mass", "degenerate_count", "avg_update_ms", "clusters",
        }

        with (tmp_path / "summary.csv").open() as fh:
            rows = list(csv.DictReader(fh))
        assert len(rows) == 1
        assert rows[0]["name"] == "tiny"

    def test_images_saved_when_enabled(self, tmp_path):
        config = _tiny_config(tmp_path, save_images=True, concatenate_images=True)
        run_experiment(config, tmp_path)
        written = sorted(p.name for p in (tmp_path / "images").iterdir())
        assert written == ["outputs_iter-1.png", "outputs_iter-2.png", "outputs_iter-3.png"]

    def test_runs_are_reproducible(self, tmp_path):
        a = run_experiment(_tiny_config(tmp_path / "a"), tmp_path / "a")
        b = run_experiment(_tiny_config(tmp_path / "b"), tmp_path / "b")
        np.testing.assert_array_equal(a.occupancy_prob, b.occupancy_prob)
