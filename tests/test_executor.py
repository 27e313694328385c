import numpy as np
import pytest

from stable_fluids import (BufferAliasError, FluidSimulation, KernelExecutor,
                           LoopKernelExecutor, NumpyKernelExecutor, apply_impulse,
                           add_color)
from stable_fluids.grid import GridField
from stable_fluids.solver import divergence_kernel


def test_executor_refuses_to_write_into_a_read_buffer():
    ex = NumpyKernelExecutor()
    velocity = GridField(ex, 4, 4, 2, 1.0, name="velocity")
    with pytest.raises(BufferAliasError):
        ex.run(divergence_kernel, [velocity], velocity.read()[..., :1], half_rdx=0.5)


def test_allocate_returns_zeroed_float32():
    buf = NumpyKernelExecutor().allocate(5, 3, 2)
    assert buf.shape == (3, 5, 2)
    assert buf.dtype == np.float32
    assert not buf.any()


def test_index_grid_is_cached_per_shape():
    ex = NumpyKernelExecutor()
    first = ex.index_grid(3, 4)
    assert ex.index_grid(3, 4) is first
    ii, jj = first
    assert ii[2, 3] == 3 and jj[2, 3] == 2


def _seeded(executor, periodic):
    sim = FluidSimulation(8, 6, periodic_boundary=periodic, simulation_texture_scale=1.0,
                          executor=executor)
    sim.iterations = 5
    rng = np.random.default_rng(42)
    sim.velocity.read()[...] = rng.uniform(-1, 1, sim.velocity.shape)
    sim.color.read()[...] = rng.uniform(0, 1, sim.color.shape)
    return sim


@pytest.mark.parametrize("periodic", [False, True])
def test_loop_executor_matches_numpy_executor(periodic):
    fast = _seeded(NumpyKernelExecutor(), periodic)
    slow = _seeded(LoopKernelExecutor(), periodic)

    def forces(velocity):
        apply_impulse(velocity, 0.2, -0.1, (3.0, 1.0), radius=0.3, dt=0.1)

    def color(target):
        add_color(target, -0.3, 0.2, (1.0, 0.5, 0.25, 1.0), radius=0.3)

    for frame in range(2):
        fast.step(frame * 0.1, 0.1, forces, color)
        slow.step(frame * 0.1, 0.1, forces, color)

    assert np.allclose(fast.velocity.read(), slow.velocity.read(), atol=1e-6)
    assert np.allclose(fast.pressure.read(), slow.pressure.read(), atol=1e-6)
    assert np.allclose(fast.divergence.read(), slow.divergence.read(), atol=1e-6)
    assert np.allclose(fast.color.read(), slow.color.read(), atol=1e-6)


def test_base_executor_is_abstract():
    with pytest.raises(TypeError):
        KernelExecutor()


def test_index_cache_keeps_only_recent_shapes():
    ex = NumpyKernelExecutor(cache_size=2)
    first = ex.index_grid(2, 2)
    ex.index_grid(3, 3)
    ex.index_grid(2, 2)          # touch, so (3, 3) is now the oldest
    ex.index_grid(4, 4)

    assert ex.index_grid(2, 2) is first
    assert len(ex._index_cache) == 2
    assert (3, 3) not in ex._index_cache
