"""Exceptions raised by the dynamic occupancy grid map.

Only construction-time misconfiguration and measurement shape mismatches are
hard failures.  Degenerate particle weights are recovered inside the
resampling stage and reported through counters on the map instead.
"""

from __future__ import annotations


class DogmError(Exception):
    """Base class for grid map errors."""


class ConfigurationError(DogmError, ValueError):
    """Invalid ``GridParams``; raised before any array is allocated."""


class InputShapeError(DogmError, ValueError):
    """Measurement array does not match the grid dimensions."""
