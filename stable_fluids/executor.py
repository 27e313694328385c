"""
executor.py — Kernel Executors
===============================
The solver never loops over cells itself. Each pipeline stage hands a
per-cell kernel to an executor, which evaluates it over every cell of a
target buffer and returns only when all cells are written.

A kernel is a plain function:

    kernel(ii, jj, *inputs, **uniforms) -> values

  ii, jj   : integer arrays of cell indices (x and y), any matching shape
  inputs   : GridFields, read only through their read() buffer
  uniforms : scalars shared by every cell (dt, dx, ...)
  values   : array shaped ii.shape + (channels,)

Kernels written this way run unchanged on both executors below: the numpy
one feeds them the whole grid at once, the loop one feeds them one cell at
a time.
"""

import abc
from collections import OrderedDict

import numpy as np

from .config import BufferAliasError, require_positive_int


class KernelExecutor(abc.ABC):
    """
    Allocates buffers and dispatches per-cell kernels.

    Abstract: subclasses decide how a kernel is mapped over the cells.
    """

    dtype = np.float32

    def allocate(self, width: int, height: int, channels: int) -> np.ndarray:
        """Zero-filled (height, width, channels) buffer."""
        width = require_positive_int("width", width)
        height = require_positive_int("height", height)
        channels = require_positive_int("channels", channels)
        return np.zeros((height, width, channels), dtype=self.dtype)

    def run(self, kernel, inputs, target: np.ndarray, **uniforms):
        """Evaluate `kernel` for every cell of `target`, writing in place."""
        self._check_aliasing(inputs, target)
        self._dispatch(kernel, inputs, target, uniforms)

    @abc.abstractmethod
    def _dispatch(self, kernel, inputs, target, uniforms):
        """Write kernel values for every cell of `target`."""

    @staticmethod
    def _check_aliasing(inputs, target: np.ndarray):
        for field in inputs:
            if np.may_share_memory(field.read(), target):
                raise BufferAliasError(
                    f"Kernel target overlaps the read buffer of {field.name}"
                )


class NumpyKernelExecutor(KernelExecutor):
    """
    Evaluates a kernel over the whole grid in one vectorised call.

    Index grids are cached per shape on the instance, so repeated stages at
    the same resolution do not rebuild them. Only the `cache_size` most
    recently used shapes are kept.
    """

    def __init__(self, cache_size: int = 8):
        self.cache_size = require_positive_int("cache_size", cache_size)
        self._index_cache = OrderedDict()

    def index_grid(self, height: int, width: int) -> tuple:
        key = (height, width)
        if key in self._index_cache:
            self._index_cache.move_to_end(key)
            return self._index_cache[key]
        jj, ii = np.meshgrid(np.arange(height), np.arange(width), indexing="ij")
        self._index_cache[key] = (ii, jj)
        while len(self._index_cache) > self.cache_size:
            self._index_cache.popitem(last=False)
        return self._index_cache[key]

    def clear_cache(self):
        self._index_cache.clear()

    def _dispatch(self, kernel, inputs, target, uniforms):
        ii, jj = self.index_grid(*target.shape[:2])
        target[...] = kernel(ii, jj, *inputs, **uniforms)


class LoopKernelExecutor(KernelExecutor):
    """
    Evaluates a kernel one cell at a time.

    Painfully slow, but it is the literal "parallel map over cells" with no
    vectorisation tricks, which makes it a reference for checking that the
    numpy executor and the kernels agree.
    """

    def _dispatch(self, kernel, inputs, target, uniforms):
        height, width = target.shape[:2]
        # results are collected first; nothing is written until every cell
        # has been evaluated
        out = np.empty_like(target)
        for j in range(height):
            for i in range(width):
                value = kernel(np.array([i]), np.array([j]), *inputs, **uniforms)
                out[j, i] = value[0]
        target[...] = out
