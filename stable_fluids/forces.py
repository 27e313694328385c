"""
forces.py — Force & Dye Injection Helpers
==========================================
FluidSimulation.step() hands the caller the *write* buffer of the velocity
field (apply_forces) and of the colour field (apply_color). The buffer
already holds the current state, so callbacks only have to add to it.
These helpers do the common thing: a soft Gaussian splat around a point.

Points are given in SIMULATION SPACE, the aspect-corrected clip space the
simulation uses for injection:
  - y runs from -1 (first row) to +1 (last row)
  - x runs from -aspect to +aspect, aspect = width / height

Use FluidSimulation.clip_space_to_simulation_space_x/y to get there from
[-1, 1] screen coordinates.
"""

import numpy as np


def cell_to_simulation_space(width: int, height: int, i, j) -> tuple:
    """Simulation-space position of the centre of cell (i, j)."""
    aspect = width / height
    x = ((np.asarray(i) + 0.5) / width * 2.0 - 1.0) * aspect
    y = (np.asarray(j) + 0.5) / height * 2.0 - 1.0
    return x, y


def simulation_space_to_cell(width: int, height: int, x, y) -> tuple:
    """Fractional cell coordinates of a simulation-space point."""
    aspect = width / height
    i = (np.asarray(x) / aspect + 1.0) * 0.5 * width - 0.5
    j = (np.asarray(y) + 1.0) * 0.5 * height - 0.5
    return i, j


def _falloff(target: np.ndarray, x: float, y: float, radius: float) -> np.ndarray:
    """Gaussian weight of every cell of `target` around (x, y), shape (H, W, 1)."""
    height, width = target.shape[:2]
    jj, ii = np.meshgrid(np.arange(height), np.arange(width), indexing="ij")
    px, py = cell_to_simulation_space(width, height, ii, jj)
    dist2 = (px - x) ** 2 + (py - y) ** 2
    return np.exp(-dist2 / (radius * radius))[..., None]


def apply_impulse(target: np.ndarray, x: float, y: float, force, radius: float = 0.05,
                  dt: float = 1.0):
    """
    Add a localized force impulse (a pointer drag, a fan, an explosion).
    Force falls off with distance from the center point.

    Args:
        target : Velocity write buffer, shape (H, W, 2)
        x, y   : Centre of the impulse in simulation space
        force  : (fx, fy) force components
        radius : Gaussian radius in simulation-space units
        dt     : Frame timestep; the velocity change is force * dt
    """
    force = np.asarray(force, dtype=np.float32)
    target += (dt * _falloff(target, x, y, radius) * force).astype(target.dtype)


def add_color(target: np.ndarray, x: float, y: float, color, radius: float = 0.05):
    """
    Inject dye at a point with a Gaussian falloff.

    Args:
        target : Colour write buffer, shape (H, W, N)
        x, y   : Splat centre in simulation space
        color  : N channel values (shorter sequences fill the first channels)
        radius : Gaussian radius in simulation-space units
    """
    color = np.asarray(color, dtype=np.float32).ravel()
    channels = min(color.size, target.shape[2])
    weight = _falloff(target, x, y, radius)
    target[..., :channels] += (weight * color[:channels]).astype(target.dtype)
