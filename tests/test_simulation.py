import numpy as np
import pytest

from stable_fluids import (ConfigurationError, FluidSimulation, NumpyKernelExecutor,
                           SimulationParameters, WrapMode)
from stable_fluids.grid import Filtering, resample


def taylor_green(sim, amplitude=1.0):
    """Seed a square, periodic sim with a (discretely) divergence-free vortex array."""
    h, w = sim.simulation_height, sim.simulation_width
    jj, ii = np.meshgrid(np.arange(h), np.arange(w), indexing="ij")
    k = 2 * np.pi / w
    v = sim.velocity.read()
    v[..., 0] = amplitude * np.sin(k * ii) * np.cos(k * jj)
    v[..., 1] = -amplitude * np.cos(k * ii) * np.sin(k * jj)


def compressible_flow(sim):
    """Seed a flow with a large divergent part that projection has to remove."""
    h, w = sim.simulation_height, sim.simulation_width
    jj, ii = np.meshgrid(np.arange(h), np.arange(w), indexing="ij")
    v = sim.velocity.read()
    v[..., 0] = np.sin(4 * np.pi * ii / w + 0.3) * np.cos(2 * np.pi * jj / h)
    v[..., 1] = np.cos(2 * np.pi * ii / w) * np.sin(6 * np.pi * jj / h + 1.0)


def max_speed(sim):
    v = sim.velocity.read()
    return float(np.sqrt((v.astype(np.float64) ** 2).sum(axis=-1)).max())


# ── Incompressibility ─────────────────────────────────────────────────────────

def test_seeded_vortex_starts_divergence_free():
    sim = FluidSimulation(64, 64, periodic_boundary=True, simulation_texture_scale=1.0)
    taylor_green(sim)
    assert sim.mean_abs_divergence() < 1e-6


@pytest.mark.parametrize("periodic", [True, False])
def test_residual_divergence_shrinks_as_iterations_grow(periodic):
    residuals = []
    for iterations in (1, 5, 25, 100):
        sim = FluidSimulation(64, 64, periodic_boundary=periodic,
                              simulation_texture_scale=1.0, color_channels=1)
        sim.iterations = iterations
        compressible_flow(sim)
        start = sim.mean_abs_divergence()
        sim.step(0.0, 0.1)
        residuals.append(sim.mean_abs_divergence())

    assert start > 0.1
    assert all(a > b for a, b in zip(residuals, residuals[1:])), residuals
    assert residuals[-1] < 0.5 * start


def test_unforced_vortex_stays_below_tolerance():
    for iterations in (25, 100):
        sim = FluidSimulation(64, 64, periodic_boundary=True, simulation_texture_scale=1.0,
                              color_channels=1)
        sim.iterations = iterations
        taylor_green(sim)
        sim.step(0.0, 0.1)
        assert sim.mean_abs_divergence() < 1e-3


def test_projection_removes_divergence_from_an_impulse():
    sim = FluidSimulation(32, 32, simulation_texture_scale=1.0, color_channels=1)

    def kick(velocity):
        velocity[16, 16] += (5.0, 0.0)

    sim.step(0.0, 1 / 60, kick)
    before = sim.divergence.read()[..., 0]      # pre-projection divergence
    after = sim.compute_divergence()
    assert np.abs(after).max() < np.abs(before).max()


# ── Stability ─────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("periodic", [True, False])
def test_unforced_flow_never_gains_speed(periodic):
    sim = FluidSimulation(32, 32, periodic_boundary=periodic, simulation_texture_scale=1.0,
                          color_channels=1)
    compressible_flow(sim)
    v0 = max_speed(sim)

    peak = 0.0
    for frame in range(1000):
        sim.step(frame * 0.1, 0.1)
        peak = max(peak, max_speed(sim))

    assert np.isfinite(peak)
    assert peak <= v0 * 1.05


def test_zero_time_scale_freezes_dye():
    sim = FluidSimulation(32, 16, simulation_texture_scale=0.5)
    sim.velocity.read()[...] = (3.0, -2.0)
    sim.color.read()[...] = np.random.default_rng(1).random(sim.color.shape)
    before = sim.color.read().copy()

    sim.time_scale = 0.0
    sim.step(0.0, 1 / 60)

    assert np.allclose(sim.color.read(), before)


# ── Callbacks ─────────────────────────────────────────────────────────────────

def test_callbacks_get_a_write_target_holding_the_current_state():
    sim = FluidSimulation(16, 16, simulation_texture_scale=0.5)
    sim.color.read()[...] = 0.25
    seen = {}

    def forces(velocity):
        seen["velocity_is_read"] = velocity is sim.velocity.read()
        seen["velocity_matches"] = np.array_equal(velocity, sim.velocity.read())

    def color(target):
        seen["color_is_read"] = target is sim.color.read()
        seen["color_matches"] = np.allclose(target, 0.25)
        target[0, 0] += 1.0

    sim.step(0.0, 1 / 60, forces, color)

    assert seen == {"velocity_is_read": False, "velocity_matches": True,
                    "color_is_read": False, "color_matches": True}
    # still zero velocity, so the injected dye stays put
    assert sim.color.read()[0, 0, 0] == pytest.approx(1.25)


def test_step_records_metrics():
    sim = FluidSimulation(16, 16)
    sim.step(0.5, 1 / 60)
    sim.step(0.5 + 1 / 60, 1 / 60)
    assert [m["frame"] for m in sim.perf_log] == [1, 2]
    assert sim.frame == 2
    for key in ("total_ms", "advect_vel_ms", "pressure_ms", "advect_color_ms",
                "divergence_max", "divergence_mean"):
        assert key in sim.perf_log[-1]


def test_color_mipmaps_follow_the_color_field():
    sim = FluidSimulation(16, 8, generate_color_mipmaps=True)
    sim.step(0.0, 1 / 60, None, lambda c: c.__iadd__(1.0))
    levels = sim.color_mipmaps
    assert levels[0] is sim.color.read()
    assert levels[-1].shape[:2] == (1, 1)
    assert np.allclose(levels[-1], 1.0)

    plain = FluidSimulation(16, 8)
    plain.step(0.0, 1 / 60)
    assert plain.color_mipmaps == []


# ── Resize and reconfiguration ────────────────────────────────────────────────

def test_resize_preserves_content_by_resampling():
    sim = FluidSimulation(32, 16, simulation_texture_scale=0.5)

    def forces(velocity):
        velocity[4, 8] += (4.0, 1.0)

    def color(target):
        target[6:10, 12:20] += (1.0, 0.5, 0.0, 1.0)

    for frame in range(5):
        sim.step(frame / 60, 1 / 60, forces, color)

    color_before = sim.color.read().copy()
    velocity_before = sim.velocity.read().copy()
    pressure_before = sim.pressure.read().copy()

    sim.resize(64, 32)

    assert sim.color.read().shape == (32, 64, 4)
    assert (sim.simulation_width, sim.simulation_height) == (32, 16)
    assert np.allclose(sim.color.read(),
                       resample(color_before, 64, 32, WrapMode.CLAMPED, Filtering.LINEAR),
                       atol=1e-6)
    assert np.allclose(sim.velocity.read(),
                       resample(velocity_before, 32, 16, WrapMode.CLAMPED, Filtering.LINEAR),
                       atol=1e-6)
    assert np.allclose(sim.pressure.read(),
                       resample(pressure_before, 32, 16, WrapMode.CLAMPED, Filtering.NEAREST))
    assert not sim.divergence.read().any()
    # total dye is preserved by a 2x bilinear upsample up to edge effects
    assert sim.color.read().sum() == pytest.approx(4 * color_before.sum(), rel=0.05)


def test_changing_texture_scale_resamples_fields():
    sim = FluidSimulation(32, 32, simulation_texture_scale=0.5)
    sim.velocity.read()[...] = (1.0, 0.5)
    sim.simulation_texture_scale = 0.25

    assert (sim.simulation_width, sim.simulation_height) == (8, 8)
    assert np.allclose(sim.velocity.read(), (1.0, 0.5))
    assert sim.color.read().shape[:2] == (32, 32)


def test_switching_boundary_mode_drops_content():
    sim = FluidSimulation(16, 16, simulation_texture_scale=0.5)
    sim.step(0.0, 1 / 60, lambda v: v.__iadd__(1.0), lambda c: c.__iadd__(1.0))
    assert sim.velocity.read().any()

    sim.periodic_boundary = True

    assert sim.periodic_boundary
    for field in (sim.velocity, sim.pressure, sim.divergence, sim.color):
        assert field.wrap is WrapMode.PERIODIC
        assert not field.read().any()
        assert not field.write().any()


def test_physics_scale_updates_cell_spacing():
    sim = FluidSimulation(32, 16, physics_scale=1.0, simulation_texture_scale=0.5)
    sim.physics_scale = 2.0

    assert sim.velocity.dx == sim.pressure.dx == sim.divergence.dx == 2.0
    assert sim.color.dx == pytest.approx(1.0)
    assert sim.half_rdx == pytest.approx(0.25)
    assert sim.dx_alpha == pytest.approx(-4.0)


@pytest.mark.parametrize("kwargs", [
    {"width": 0, "height": 16},
    {"width": 16, "height": -4},
    {"width": 16, "height": 16, "physics_scale": 0.0},
    {"width": 16, "height": 16, "physics_scale": float("nan")},
    {"width": 16, "height": 16, "simulation_texture_scale": 0.0},
    {"width": 16, "height": 16, "simulation_texture_scale": 1.5},
    {"width": 2, "height": 2, "simulation_texture_scale": 0.25},
    {"width": 16, "height": 16, "color_channels": 0},
])
def test_invalid_configuration_is_rejected(kwargs):
    with pytest.raises(ConfigurationError):
        FluidSimulation(**kwargs)


def test_invalid_setters_are_rejected_without_side_effects():
    sim = FluidSimulation(16, 16)
    with pytest.raises(ConfigurationError):
        sim.iterations = 0
    with pytest.raises(ConfigurationError):
        sim.physics_scale = -1.0
    with pytest.raises(ConfigurationError):
        sim.simulation_texture_scale = 2.0
    with pytest.raises(ConfigurationError):
        sim.time_scale = float("inf")
    assert sim.iterations == 25
    assert sim.physics_scale == 1.0
    assert sim.simulation_texture_scale == 0.25


# ── Coordinates ───────────────────────────────────────────────────────────────

def test_clip_space_is_aspect_corrected():
    sim = FluidSimulation(64, 32, simulation_texture_scale=1.0)
    assert sim.clip_space_to_simulation_space_x(0.5) == pytest.approx(1.0)
    assert sim.clip_space_to_simulation_space_x(-1.0) == pytest.approx(-2.0)
    assert sim.clip_space_to_simulation_space_y(0.5) == pytest.approx(0.5)


# ── End to end ────────────────────────────────────────────────────────────────

def test_single_impulse_spreads_and_settles():
    dt = 1 / 60
    sim = FluidSimulation(64, 32, periodic_boundary=False, physics_scale=1.0,
                          simulation_texture_scale=1.0)
    sim.iterations = 25
    cx, cy = sim.simulation_width // 2, sim.simulation_height // 2

    def impulse(velocity):
        velocity[cy, cx] += np.array([10.0, 0.0]) * dt

    sim.step(0.0, dt, impulse, lambda c: None)
    peaks = [float(np.abs(sim.compute_divergence()).max())]
    for frame in range(1, 61):
        sim.step(frame * dt, dt)
        peaks.append(float(np.abs(sim.compute_divergence()).max()))

    speed = np.sqrt((sim.velocity.read() ** 2).sum(axis=-1))
    assert np.isfinite(speed).all()
    # the impulse has spread beyond the kicked cell
    assert (speed > 1e-6).sum() > 9
    assert speed.max() < 10.0 * dt
    assert peaks[-1] < peaks[0]
    assert sim.mean_abs_divergence() < 1e-3


def test_params_and_setting_keywords_are_exclusive():
    params = SimulationParameters(iterations=10)
    with pytest.raises(ConfigurationError, match="periodic_boundary"):
        FluidSimulation(16, 16, periodic_boundary=True, params=params)

    sim = FluidSimulation(16, 16, params=params, executor=NumpyKernelExecutor())
    assert sim.iterations == 10
    assert sim.periodic_boundary is False


def test_boundary_setter_rejects_non_bool():
    sim = FluidSimulation(16, 16)
    with pytest.raises(ConfigurationError):
        sim.periodic_boundary = "false"
    assert sim.periodic_boundary is False


def test_perf_log_keeps_only_recent_frames(monkeypatch):
    monkeypatch.setattr(FluidSimulation, "PERF_LOG_SIZE", 3)
    sim = FluidSimulation(16, 16)
    for frame in range(5):
        sim.step(frame / 60, 1 / 60)
    assert [m["frame"] for m in sim.perf_log] == [3, 4, 5]
    assert sim.perf_log[-1]["frame"] == sim.frame
