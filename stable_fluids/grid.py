"""
grid.py — Ping-Pong Buffers & Grid Fields
==========================================
The foundation of the entire simulation.

Every simulated quantity lives on a collocated 2D grid:
  - Velocity  (vx, vy)   → shape (H, W, 2), dual-buffered
  - Pressure  p          → shape (H, W, 1), dual-buffered
  - Divergence           → shape (H, W, 1), single buffer (recomputed each frame)
  - Color / dye          → shape (H', W', N), dual-buffered, display resolution

Cell (i, j) is stored at array[j, i]: x runs along columns, y along rows.

Why two buffers? A kernel that reads neighbours while writing the same
array sees half-updated values. Reading `read()` and writing `write()`
then calling `swap()` keeps every pass hazard-free, and swapping is just
flipping a flag; no data is copied.
"""

import enum
import logging

import numpy as np

from .config import require_positive, require_positive_int

logger = logging.getLogger(__name__)


class WrapMode(enum.Enum):
    """How reads outside [0, size) are resolved."""
    PERIODIC = "periodic"   # index mod size
    CLAMPED  = "clamped"    # clamp to edge


class Filtering(enum.Enum):
    """How fractional reads and resizes are resolved."""
    LINEAR  = "linear"
    NEAREST = "nearest"


class DualBuffer:
    """
    Two equally-sized buffers, one "front" (read) and one "back" (write).

    Usage:
        buf = DualBuffer(np.zeros((4, 4, 1)), np.zeros((4, 4, 1)))
        buf.write()[...] = kernel(buf.read())
        buf.swap()            # the written data is now buf.read()
    """

    def __init__(self, front: np.ndarray, back: np.ndarray):
        if front.shape != back.shape:
            raise ValueError(
                f"DualBuffer halves must share a shape, got {front.shape} and {back.shape}"
            )
        self._buffers = (front, back)
        self._flipped = False

    @property
    def shape(self) -> tuple:
        return self._buffers[0].shape

    def read(self) -> np.ndarray:
        """Current-frame buffer. Kernels must not write into it."""
        return self._buffers[1 if self._flipped else 0]

    def write(self) -> np.ndarray:
        """The other buffer, free to be overwritten by the next stage."""
        return self._buffers[0 if self._flipped else 1]

    def swap(self):
        self._flipped = not self._flipped

    def buffers(self) -> tuple:
        """(read, write) pair, mostly for resizing."""
        return self.read(), self.write()


class SingleBuffer:
    """One buffer that is both read and written; used for transient fields."""

    def __init__(self, buffer: np.ndarray):
        self._buffer = buffer

    @property
    def shape(self) -> tuple:
        return self._buffer.shape

    def read(self) -> np.ndarray:
        return self._buffer

    def write(self) -> np.ndarray:
        return self._buffer

    def buffers(self) -> tuple:
        return (self._buffer,)


class GridField:
    """
    A buffer plus the physical metadata needed to interpret it.

    Args:
        executor        : KernelExecutor that allocates the buffers
        width, height   : Cell count along x and y
        channels        : Components per cell (2 for velocity, 1 for scalars)
        dx              : Physical cell spacing
        wrap            : WrapMode used by every neighbour read
        filtering       : Filtering used by resizes
        double_buffered : False for transient single-buffered fields
        name            : Label used in logs and repr
    """

    def __init__(self, executor, width: int, height: int, channels: int, dx: float,
                 wrap: WrapMode = WrapMode.CLAMPED, filtering: Filtering = Filtering.LINEAR,
                 double_buffered: bool = True, name: str = "field"):
        self.executor = executor
        self.width = require_positive_int(f"{name} width", width)
        self.height = require_positive_int(f"{name} height", height)
        self.channels = require_positive_int(f"{name} channels", channels)
        self.dx = require_positive(f"{name} dx", dx)
        self.wrap = wrap
        self.filtering = filtering
        self.double_buffered = double_buffered
        self.name = name
        self.buffer = self._allocate(self.width, self.height)

    def _allocate(self, width: int, height: int):
        logger.debug("Allocating %s: %dx%dx%d (%s, %s)", self.name, width, height,
                     self.channels, self.wrap.value, self.filtering.value)
        if self.double_buffered:
            return DualBuffer(
                self.executor.allocate(width, height, self.channels),
                self.executor.allocate(width, height, self.channels),
            )
        return SingleBuffer(self.executor.allocate(width, height, self.channels))

    @property
    def shape(self) -> tuple:
        return (self.height, self.width, self.channels)

    def read(self) -> np.ndarray:
        return self.buffer.read()

    def write(self) -> np.ndarray:
        return self.buffer.write()

    def swap(self):
        if not self.double_buffered:
            raise TypeError(f"{self.name} is single-buffered and cannot be swapped")
        self.buffer.swap()

    def clear(self):
        """Zero both buffers."""
        for buf in self.buffer.buffers():
            buf[:] = 0.0

    def resize(self, width: int, height: int):
        """
        Reallocate at a new size, resampling the old content into it.

        Both halves of a dual buffer are resampled with this field's
        filtering and wrap mode. A single-buffered field holds nothing worth
        keeping between frames, so it comes back zeroed.
        """
        width = require_positive_int(f"{self.name} width", width)
        height = require_positive_int(f"{self.name} height", height)
        if (width, height) == (self.width, self.height):
            return

        new_buffer = self._allocate(width, height)
        if self.double_buffered:
            # a fresh DualBuffer reads from its first half, so the old front
            # buffer goes there
            for old, new in zip(self.buffer.buffers(), new_buffer.buffers()):
                new[...] = resample(old, width, height, self.wrap, self.filtering)

        logger.debug("Resized %s: %dx%d -> %dx%d", self.name,
                     self.width, self.height, width, height)
        self.buffer = new_buffer
        self.width = width
        self.height = height

    def __repr__(self):
        data = self.read()
        return (
            f"GridField({self.name}, {self.width}x{self.height}x{self.channels}, "
            f"dx={self.dx}, wrap={self.wrap.value}, "
            f"max_abs={float(np.abs(data).max()):.4f})"
        )


def wrap_index(index: np.ndarray, size: int, wrap: WrapMode) -> np.ndarray:
    """Map integer indices (possibly out of range) back into [0, size)."""
    if wrap is WrapMode.PERIODIC:
        return np.mod(index, size)
    return np.clip(index, 0, size - 1)


def resample(source: np.ndarray, width: int, height: int,
             wrap: WrapMode = WrapMode.CLAMPED,
             filtering: Filtering = Filtering.LINEAR) -> np.ndarray:
    """
    Stretch a (H, W, C) array onto a new (height, width) grid.

    Mirrors a texture blit: the centre of destination cell i lands at
    (i + 0.5) * W / width - 0.5 in source cell space and is read with the
    given filtering. Taps that fall outside the source follow `wrap`.

    Returns a new float32 array of shape (height, width, C).
    """
    src_h, src_w = source.shape[:2]
    xs = (np.arange(width, dtype=np.float64) + 0.5) * (src_w / width) - 0.5
    ys = (np.arange(height, dtype=np.float64) + 0.5) * (src_h / height) - 0.5

    if filtering is Filtering.NEAREST:
        xi = wrap_index(np.floor(xs + 0.5).astype(np.intp), src_w, wrap)
        yi = wrap_index(np.floor(ys + 0.5).astype(np.intp), src_h, wrap)
        return source[yi[:, None], xi[None, :]].astype(np.float32)

    x0 = np.floor(xs)
    y0 = np.floor(ys)
    tx = (xs - x0)[None, :, None]
    ty = (ys - y0)[:, None, None]
    x0 = x0.astype(np.intp)
    y0 = y0.astype(np.intp)
    x1 = wrap_index(x0 + 1, src_w, wrap)[None, :]
    y1 = wrap_index(y0 + 1, src_h, wrap)[:, None]
    x0 = wrap_index(x0, src_w, wrap)[None, :]
    y0 = wrap_index(y0, src_h, wrap)[:, None]

    top = source[y0, x0] * (1 - tx) + source[y0, x1] * tx
    bottom = source[y1, x0] * (1 - tx) + source[y1, x1] * tx
    return (top * (1 - ty) + bottom * ty).astype(np.float32)


def _downsample(level: np.ndarray) -> np.ndarray:
    h, w = level.shape[:2]
    nh, nw = max(h // 2, 1), max(w // 2, 1)
    fy, fx = h // nh, w // nw
    trimmed = level[:nh * fy, :nw * fx]
    return trimmed.reshape(nh, fy, nw, fx, -1).mean(axis=(1, 3)).astype(np.float32)


def build_mipmaps(base: np.ndarray) -> list:
    """
    Box-filtered mip chain of a (H, W, C) array, largest level first.

    The base level itself is included; the last level is 1x1. Odd sizes
    drop their leftover row or column.
    """
    levels = [base]
    while levels[-1].shape[0] > 1 or levels[-1].shape[1] > 1:
        levels.append(_downsample(levels[-1]))
    return levels
