# TDP: Minimal structured JSON logger
# Approach: Write one JSON object per line (JSONL format) to a log file.
#   Each step entry contains the cycle number, metric values and the filter's
#   diagnostics (particle mass, birth count, degenerate-weight flag, cycle
#   time).  Grid snapshots store pignistic occupancy (float, [0,1]) and are
#   written every N steps to avoid large files.
#   The logger streams directly to disk and does not accumulate entries in RAM.
# Schema per step entry:
#   { "step": int, "time": float,
#     "metrics": {...},
#     "diagnostics": {...},
#     "grid_snapshot": [[...]] }  <- occupancy prob, shape (height, width)
# Alternatives considered: CSV -- easier to analyse in pandas but cannot
#   accommodate the variable-size grid snapshot; JSONL handles both uniformly.
# Risks: JSON serialisation of large grids can be slow. Mitigated by
#   configurable snapshot interval.
"""Minimal structured JSON (JSONL) logger for the DOGM experiment."""

from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any

import numpy as np


def _json_value(value: Any) -> Any:
    """Convert numpy scalars to Python types; NaN/inf become None."""
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, (int, np.integer)):
        return int(value)
    if isinstance(value, (float, np.floating)):
        value = float(value)
        return value if math.isfinite(value) else None
    return value


class ExperimentLogger:
    """Writes experiment events to a JSONL file.

    Parameters
    ----------
    log_path:
        Path to the output JSONL log file.
    grid_snapshot_interval:
        Write a grid snapshot entry every this many steps. Set to 0 to
        disable snapshots.
    """

    def __init__(self, log_path: Path, grid_snapshot_interval: int = 10) -> None:
        self._path = log_path
        self._interval = grid_snapshot_interval
        self._fh = log_path.open("w", encoding="utf-8")

    def log_step(
        self,
        *,
        step: int,
        time: float,
        metrics: dict[str, float],
        diagnostics: dict[str, Any] | None = None,
        grid_data: np.ndarray | None = None,
    ) -> None:
        """Write a step entry to the log file.

        Parameters
        ----------
        step:
            Current cycle number (0-indexed).
        time:
            Simulation time in seconds at the end of the cycle.
        metrics:
            Dict of metric name -> value for this step.  NaN is written as null.
        diagnostics:
            Filter diagnostics (particle mass, births, degenerate flag, ...).
        grid_data:
            Occupancy probability grid (values in [0,1]). Written as a snapshot
            if the step number is a multiple of the snapshot interval.
        """
        entry: dict[str, Any] = {
            "step": step,
            "time": float(time),
            "metrics": {k: _json_value(v) for k, v in metrics.items()},
        }
        if diagnostics is not None:
            entry["diagnostics"] = {k: _json_value(v) for k, v in diagnostics.items()}

        include_snapshot = (
            grid_data is not None
            and self._interval > 0
            and step % self._interval == 0
        )
        if include_snapshot and grid_data is not None:
            entry["grid_snapshot"] = np.round(grid_data, 4).tolist()

        self._fh.write(json.dumps(entry) + "\n")
        self._fh.flush()

    def log_event(self, event_type: str, data: dict[str, Any]) -> None:
        """Write an arbitrary event entry to the log file.

        Parameters
        ----------
        event_type:
            Short string identifying the event kind.
        data:
            Arbitrary JSON-serialisable data.
        """
        entry: dict[str, Any] = {"event": event_type, **data}
        self._fh.write(json.dumps(entry) + "\n")
        self._fh.flush()

    def close(self) -> None:
        """Close the log file handle."""
        self._fh.close()

    def __enter__(self) -> "ExperimentLogger":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
