"""Particle prediction: constant-velocity motion with Gaussian process noise."""

from __future__ import annotations

import numpy as np


def predict_particles(
    particles: np.ndarray,
    *,
    dt: float,
    ps: float,
    process_noise_position: float,
    process_noise_velocity: float,
    rng: np.random.Generator,
) -> None:
    """Advance every particle by *dt* seconds (in-place).

    Motion model::

        x  <- x + vx * dt + n_x        n_x, n_y   ~ N(0, process_noise_position^2)
        y  <- y + vy * dt + n_y
        vx <- vx + n_vx                n_vx, n_vy ~ N(0, process_noise_velocity^2)
        vy <- vy + n_vy
        w  <- ps * w

    Dead particles are not removed here; their reduced weight makes them
    unlikely to survive resampling.  With ``dt == 0`` and zero noise the
    state is left bit-for-bit unchanged.

    Raises
    ------
    ValueError
        If *dt* is negative or not finite.
    """
    if not np.isfinite(dt) or dt < 0.0:
        raise ValueError(f"dt must be a finite value >= 0, got {dt!r}")

    n = particles.shape[0]
    state = particles["state"]

    pos_noise = rng.normal(0.0, process_noise_position, size=(n, 2))
    vel_noise = rng.normal(0.0, process_noise_velocity, size=(n, 2))

    state[:, 0:2] += state[:, 2:4] * dt + pos_noise
    state[:, 2:4] += vel_noise
    particles["weight"] *= ps
