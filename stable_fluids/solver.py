"""
solver.py — Pressure Projection
================================
The pressure projection step enforces INCOMPRESSIBILITY:
  div(v) = 0 everywhere

After advection and user forces, the velocity field is generally NOT
divergence-free (fluid "piles up" in some cells). We fix this by:
  1. Computing divergence of the current velocity field
  2. Solving the Poisson equation for pressure: ∇²p = div(v)
  3. Subtracting the pressure gradient from velocity: v = v - ∇p

This is called "Helmholtz-Hodge decomposition": any vector field can be
decomposed into a divergence-free part + a curl-free part (gradient).
We want the divergence-free part.

The Poisson solve is a FIXED number of Jacobi sweeps, with no convergence
check. Whatever divergence survives the sweeps stays in the field; raising
`iterations` is the only knob. Pressure is not cleared between frames, so
each frame's solve starts from the previous one.
"""

import time

import numpy as np

from .advect import fetch, fetch_velocity


# ── Per-cell kernels ──────────────────────────────────────────────────────────

def divergence_kernel(ii, jj, velocity, half_rdx: float):
    """Central-difference divergence, 0.5/dx * ((R.x - L.x) + (T.y - B.y))."""
    L = fetch_velocity(velocity, ii - 1, jj)
    R = fetch_velocity(velocity, ii + 1, jj)
    B = fetch_velocity(velocity, ii, jj - 1)
    T = fetch_velocity(velocity, ii, jj + 1)
    return half_rdx * ((R[..., 0:1] - L[..., 0:1]) + (T[..., 1:2] - B[..., 1:2]))


def pressure_kernel(ii, jj, pressure, divergence, dx_alpha: float):
    """
    One Jacobi sweep of the pressure Poisson equation.

      p[i,j] = 0.25 * (p[i-1,j] + p[i+1,j] + p[i,j-1] + p[i,j+1] + alpha * div[i,j])

    with alpha = -dx². Clamped reads outside the domain return the edge
    value, which makes the pressure gradient across the wall zero (pure
    Neumann condition) without any extra code.
    """
    L = fetch(pressure, ii - 1, jj)
    R = fetch(pressure, ii + 1, jj)
    B = fetch(pressure, ii, jj - 1)
    T = fetch(pressure, ii, jj + 1)
    b = fetch(divergence, ii, jj)
    return 0.25 * (L + R + B + T + dx_alpha * b)


def gradient_subtract_kernel(ii, jj, pressure, velocity, half_rdx: float):
    """v - 0.5/dx * (p[i+1,j] - p[i-1,j], p[i,j+1] - p[i,j-1])."""
    L = fetch(pressure, ii - 1, jj)
    R = fetch(pressure, ii + 1, jj)
    B = fetch(pressure, ii, jj - 1)
    T = fetch(pressure, ii, jj + 1)
    v = fetch(velocity, ii, jj)
    grad = np.concatenate((R - L, T - B), axis=-1)
    return v - half_rdx * grad


# ── Pipeline stages ───────────────────────────────────────────────────────────

def project(executor, velocity, pressure, divergence, iterations: int, dx: float) -> dict:
    """
    Pressure projection: make the velocity field (approximately) divergence-free.

    This is the most expensive part of a frame; the Jacobi loop dominates.

    Args:
        executor   : KernelExecutor running the stages
        velocity   : Velocity GridField (read, then written + swapped)
        pressure   : Pressure GridField (swapped after every sweep)
        divergence : Single-buffered divergence GridField (overwritten)
        iterations : Jacobi sweeps (more = less residual divergence, slower)
        dx         : Cell spacing

    Returns:
        dict with timing and divergence metrics (for benchmarking)
    """
    half_rdx = 0.5 / dx
    dx_alpha = -dx * dx

    # Step 1: divergence of the incoming velocity field
    t0 = time.perf_counter()
    executor.run(divergence_kernel, [velocity], divergence.write(), half_rdx=half_rdx)
    t_divergence = (time.perf_counter() - t0) * 1000

    # Step 2: relax the pressure Poisson equation
    t0 = time.perf_counter()
    for _ in range(iterations):
        executor.run(pressure_kernel, [pressure, divergence], pressure.write(),
                     dx_alpha=dx_alpha)
        pressure.swap()
    t_pressure = (time.perf_counter() - t0) * 1000

    # Step 3: subtract the pressure gradient
    t0 = time.perf_counter()
    executor.run(gradient_subtract_kernel, [pressure, velocity], velocity.write(),
                 half_rdx=half_rdx)
    velocity.swap()
    t_gradient = (time.perf_counter() - t0) * 1000

    div = np.abs(divergence.read())
    return {
        "iterations"            : iterations,
        "divergence_ms"         : t_divergence,
        "pressure_ms"           : t_pressure,
        "gradient_ms"           : t_gradient,
        "divergence_before_max" : float(div.max()),
        "divergence_before_mean": float(div.mean()),
    }


def compute_divergence(executor, velocity, dx: float) -> np.ndarray:
    """
    Divergence of the current velocity field, in a fresh (H, W) array.

    For an incompressible fluid this should be ~0 everywhere.
    High divergence = broken simulation (or too few iterations).
    Does not touch the simulation's own divergence field.
    """
    out = executor.allocate(velocity.width, velocity.height, 1)
    executor.run(divergence_kernel, [velocity], out, half_rdx=0.5 / dx)
    return out[..., 0]
