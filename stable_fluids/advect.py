"""
advect.py — Sampling & Semi-Lagrangian Advection
=================================================
This is what makes fluid look like it's *actually flowing*.

The algorithm (per cell):
  1. Look at the current cell center position.
  2. Trace BACKWARD along the velocity field by one timestep (dt).
     → "Where did the stuff in this cell come FROM?"
  3. Sample the transported field at the back-traced position
     using bilinear interpolation (it'll land between grid cells).
  4. That sampled value becomes the new value for this cell.

Semi-Lagrangian transport is unconditionally stable: a bilinear sample is a
convex blend of existing values, so no new extremes can appear, whatever
dt is. The price is numerical dissipation, which we accept.

Key reference: Jos Stam, "Stable Fluids" (SIGGRAPH 1999)

Boundary handling lives in the read helpers, not in the kernels:
  - PERIODIC : indices wrap around
  - CLAMPED  : indices clamp to the edge; velocity reads that cross a wall
               additionally flip the wall-normal component (free-slip)
"""

import numpy as np

from .grid import WrapMode, wrap_index


def fetch(field, i: np.ndarray, j: np.ndarray) -> np.ndarray:
    """
    Read a GridField at integer cell indices, applying its wrap mode.

    Args:
        field : GridField to read (its read() buffer)
        i, j  : Integer index arrays, may be out of range

    Returns:
        Array of shape i.shape + (channels,)
    """
    data = field.read()
    return data[wrap_index(j, field.height, field.wrap),
                wrap_index(i, field.width, field.wrap)]


def fetch_velocity(field, i: np.ndarray, j: np.ndarray) -> np.ndarray:
    """
    Read a velocity field at integer indices with the free-slip wall rule.

    Outside a CLAMPED domain the edge value is returned with its component
    normal to the crossed wall negated: the tangential part mirrors the
    interior neighbour, the normal parts cancel across the wall so no flux
    leaves the box. PERIODIC fields just wrap.
    """
    v = fetch(field, i, j)
    if field.wrap is WrapMode.CLAMPED:
        # fancy indexing already returned a copy, so scaling it is safe
        v[..., 0] *= np.where((i < 0) | (i >= field.width), -1.0, 1.0)
        v[..., 1] *= np.where((j < 0) | (j >= field.height), -1.0, 1.0)
    return v


def sample(field, x: np.ndarray, y: np.ndarray) -> np.ndarray:
    """
    Bilinear interpolation of a GridField at fractional cell positions.

    Given a field of shape (H, W, C) and arrays of query positions in cell
    space (cell centres at integers), returns interpolated values.
    Bilinear = linear interp in X, then in Y: a weighted average of the 4
    surrounding cell values. Taps outside the grid follow the field's
    wrap mode, like a texture read with REPEAT or CLAMP_TO_EDGE.

    Returns:
        Array of shape x.shape + (channels,)
    """
    data = field.read()

    x0 = np.floor(x)
    y0 = np.floor(y)
    tx = (x - x0)[..., None]
    ty = (y - y0)[..., None]
    x0 = x0.astype(np.intp)
    y0 = y0.astype(np.intp)

    xa = wrap_index(x0, field.width, field.wrap)
    xb = wrap_index(x0 + 1, field.width, field.wrap)
    ya = wrap_index(y0, field.height, field.wrap)
    yb = wrap_index(y0 + 1, field.height, field.wrap)

    # Bilinear blend: lerp in X, then Y
    c0 = data[ya, xa] * (1 - tx) + data[ya, xb] * tx
    c1 = data[yb, xa] * (1 - tx) + data[yb, xb] * tx
    return c0 * (1 - ty) + c1 * ty


def advect_kernel(ii, jj, velocity, target, dt: float, rdx: float):
    """
    Semi-Lagrangian transport of `target` through `velocity`.

    Runs over the cells of `target`, which may be at a different resolution
    than `velocity` (the colour grid usually is). Each target cell is mapped
    into velocity-grid space to read the flow, the displacement
    dt * rdx * v (in velocity cells) is converted into target cells, and the
    pre-advection target is sampled at the traced-back point.

    Uniforms:
        dt  : Scaled timestep for this frame
        rdx : 1 / dx
    """
    sx = target.width / velocity.width
    sy = target.height / velocity.height

    if sx == 1.0 and sy == 1.0:
        v = fetch(velocity, ii, jj)
    else:
        # target cell centre in velocity cell space
        v = sample(velocity, (ii + 0.5) / sx - 0.5, (jj + 0.5) / sy - 0.5)

    x_back = ii - dt * rdx * sx * v[..., 0]
    y_back = jj - dt * rdx * sy * v[..., 1]
    return sample(target, x_back, y_back)
