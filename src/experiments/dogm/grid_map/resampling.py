# TDP: Systematic resampling over persistent + birth particles
# Approach: Treat the persistent and birth arrays as one logical population
#   (concatenated weights), build the inclusive cumulative weight, and draw
#   particle_count samples with a single uniform offset u in [0, W/N) and a
#   fixed stride W/N.  Sample k selects the first particle whose cumulative
#   weight exceeds u + k*W/N (np.searchsorted, side="right"), so zero-weight
#   particles own an empty interval and are never drawn.
#   Drawn particles are written to a second buffer; the source arrays are only
#   read while sampling.  Every drawn particle gets weight 1/N and the total
#   W is returned so the caller can keep it as the population's mass.
# Degenerate case: W == 0 (or non-finite) -> systematic draw with uniform
#   weights over all slots; the result carries zero mass.
# Alternatives considered:
#   Multinomial resampling -- higher variance for the same cost.
#   In-place resampling -- would overwrite particles that later samples read.
"""Systematic resampling into the next-generation particle buffer."""

from __future__ import annotations

import numpy as np


def systematic_indices(
    cumulative: np.ndarray,
    count: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """Draw *count* indices from an inclusive cumulative weight sequence.

    Parameters
    ----------
    cumulative:
        Non-decreasing inclusive cumulative weights; ``cumulative[-1]`` is the
        total weight and must be positive.
    count:
        Number of samples.
    rng:
        Random generator for the single offset.
    """
    total = float(cumulative[-1])
    stride = total / count
    positions = rng.uniform(0.0, stride) + stride * np.arange(count)
    indices = np.searchsorted(cumulative, positions, side="right")
    # Round-off can push the last position onto the total; clamp to the last
    # particle that carries weight, not to trailing zero-weight slots.
    last = int(np.searchsorted(cumulative, total, side="left"))
    return np.minimum(indices, last)


def resample_particles(
    particles: np.ndarray,
    birth_particles: np.ndarray,
    weight_array: np.ndarray,
    birth_weight_array: np.ndarray,
    particles_next: np.ndarray,
    *,
    rng: np.random.Generator,
) -> tuple[float, bool]:
    """Fill *particles_next* with a weight-proportional draw.

    Returns
    -------
    tuple[float, bool]
        ``(total_weight, degenerate)``: the joint weight of the source
        population (0.0 in the degenerate case) and whether the uniform
        fallback was used.
    """
    count = particles_next.shape[0]
    joint_weights = np.concatenate((weight_array, birth_weight_array))
    joint_weights = np.where(np.isfinite(joint_weights), np.maximum(joint_weights, 0.0), 0.0)
    cumulative = np.cumsum(joint_weights)
    total = float(cumulative[-1]) if cumulative.size else 0.0

    degenerate = not (np.isfinite(total) and total > 0.0)
    if degenerate:
        cumulative = np.arange(1, joint_weights.shape[0] + 1, dtype=np.float64)
        total = 0.0

    indices = systematic_indices(cumulative, count, rng)

    n_persistent = particles.shape[0]
    from_persistent = indices < n_persistent
    pers_idx = indices[from_persistent]
    birth_idx = indices[~from_persistent] - n_persistent

    particles_next[from_persistent] = particles[pers_idx]
    particles_next[~from_persistent] = birth_particles[birth_idx]
    particles_next["weight"] = 1.0 / count
    return total, degenerate
