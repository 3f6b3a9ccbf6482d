"""Main entry point for the DOGM experiment.

Usage (from project root):
    python src/experiments/dogm/run.py --config configs/dogm/small.yaml
    python src/experiments/dogm/run.py --config configs/dogm/default.yaml

This script is a thin CLI wrapper.  All simulation and metric logic lives in
src/experiments/dogm/experiment/runner.py.  Adds a matplotlib plot of the
final map next to the ground truth.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure the project root is on sys.path when invoked as a script.
_PROJECT_ROOT = Path(__file__).resolve().parents[3]
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

import matplotlib
matplotlib.use("Agg")  # headless backend; safe on CI
import matplotlib.pyplot as plt
import numpy as np

from src.experiments.dogm.experiment.config import load_config
from src.experiments.dogm.experiment.runner import (
    RunResult,
    run_experiment,
    setup_simulation,
)


def _save_map_plot(
    output_path: Path,
    ground_truth: np.ndarray,
    result: RunResult,
) -> None:
    """Save a static matplotlib figure comparing ground truth and the final map."""
    fig, axes = plt.subplots(1, 2, figsize=(12, 5))

    ax_gt = axes[0]
    ax_gt.imshow(ground_truth, cmap="gray_r", vmin=0, vmax=1, origin="lower")
    ax_gt.set_title("Ground Truth")
    ax_gt.set_xlabel("col")
    ax_gt.set_ylabel("row")

    ax_est = axes[1]
    im = ax_est.imshow(result.occupancy_prob, cmap="gray_r", vmin=0, vmax=1, origin="lower")
    ax_est.set_title(f"DOGM ({result.name})")
    ax_est.set_xlabel("col")
    ax_est.set_ylabel("row")
    fig.colorbar(im, ax=ax_est, label="P(occupied)")

    for cluster in result.clusters:
        ax_est.arrow(
            cluster.mean_x, cluster.mean_y,
            cluster.mean_x_vel, cluster.mean_y_vel,
            color="tab:red", width=0.3, length_includes_head=True,
        )

    fig.tight_layout()
    fig.savefig(output_path, dpi=120)
    plt.close(fig)


def main() -> int:
    """Run the DOGM experiment from a YAML config."""
    parser = argparse.ArgumentParser(
        description="Dynamic occupancy grid map on a simulated traffic scene"
    )
    parser.add_argument("--config", required=True, help="Path to YAML config file")
    args = parser.parse_args()

    config = load_config(args.config)
    exp_cfg = config["experiment"]
    grid_cfg = config["grid"]
    output_dir = Path(exp_cfg["output_dir"])
    output_dir.mkdir(parents=True, exist_ok=True)

    print("DOGM -- dynamic occupancy grid map")
    print(f"  Config     : {args.config}")
    print(f"  Grid       : {grid_cfg['width']} x {grid_cfg['height']} cells "
          f"@ {grid_cfg['resolution']}m/cell")
    print(f"  Particles  : {grid_cfg['particle_count']} "
          f"(+{grid_cfg['new_born_particle_count']} birth)")
    print(f"  Steps      : {exp_cfg['steps']}  dt: {exp_cfg['dt']}s")
    print(f"  Metrics    : {list(config['metrics'])}")
    print(f"  Output     : {output_dir}")

    result = run_experiment(config, output_dir)

    # The scene is deterministic in time, so the last ground truth can be
    # rebuilt from the same config.
    scene, _, _, _ = setup_simulation(config)
    last_t = max(result.steps - 1, 0) * float(exp_cfg["dt"])
    _save_map_plot(output_dir / "comparison.png", scene.get_grid(last_t), result)

    print("\nResults:")
    print(f"  particle_mass    : {result.particle_mass:.4f}")
    print(f"  degenerate_count : {result.degenerate_count}")
    print(f"  avg_update_ms    : {result.avg_update_ms:.3f}")
    print(f"  clusters         : {len(result.clusters)}")
    for metric_name, value in result.metrics.items():
        if isinstance(value, float) and value == value:
            print(f"  {metric_name:<22}: {value:.4f}")
        else:
            print(f"  {metric_name:<22}: N/A")

    print(f"\n  Summary CSV : {output_dir / 'summary.csv'}")
    print(f"  Metrics JSON: {output_dir / 'metrics.json'}")
    print("\nDone.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
