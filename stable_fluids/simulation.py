"""
simulation.py — Master Physics Loop
====================================
This is the complete simulation step that ties everything together.
One call to `step()` advances the fluid by dt * time_scale seconds.

Physics pipeline per frame (strictly in this order, each stage a full
pass over the grid before the next begins):
  1. Advect velocity (self-advection)
  2. Apply user forces          ← apply_forces(velocity write buffer)
  3. Compute divergence
  4. Relax pressure (fixed Jacobi sweeps)
  5. Subtract pressure gradient (enforce incompressibility)
  6. Apply user colour          ← apply_color(colour write buffer)
  7. Advect colour through the projected velocity

Velocity, pressure and divergence live on the SIMULATION grid
(display size * simulation_texture_scale); colour lives on the full
DISPLAY grid so dye stays sharp while the physics runs coarse.
"""

import logging
import time
from collections import deque

import numpy as np

from .advect import advect_kernel
from .config import (SimulationParameters, ConfigurationError, require_bool,
                     require_finite, require_positive, require_positive_int,
                     require_texture_scale)
from .executor import NumpyKernelExecutor
from .grid import Filtering, GridField, WrapMode, build_mipmaps
from .solver import compute_divergence, project

logger = logging.getLogger(__name__)


class FluidSimulation:
    """
    The complete 2D fluid simulation.

    Settings come either from the keyword arguments or from a whole
    SimulationParameters object, never from both: passing `params` together
    with any of the setting keywords raises ConfigurationError. Keywords left
    out take the SimulationParameters defaults.

    Usage:
        sim = FluidSimulation(256, 128, periodic_boundary=False)

        def forces(velocity):
            apply_impulse(velocity, 0.0, 0.0, (10.0, 0.0), dt=1 / 60)

        for frame in range(100):
            sim.step(frame / 60, 1 / 60, forces, None)
            rgba = sim.color.read()        # Hand to the display
    """

    # frames of timing data kept in perf_log
    PERF_LOG_SIZE = 1000

    def __init__(self, width: int, height: int, periodic_boundary: bool = None,
                 physics_scale: float = None, simulation_texture_scale: float = None,
                 generate_color_mipmaps: bool = None, *, color_channels: int = None,
                 executor=None, params: SimulationParameters = None):
        """
        Args:
            width, height            : Display (colour) resolution
            periodic_boundary        : Wrap the domain instead of free-slip walls
            physics_scale            : Physical cell spacing dx
            simulation_texture_scale : Simulation grid size relative to the display, in (0, 1]
            generate_color_mipmaps   : Rebuild `color_mipmaps` after every step
            color_channels           : Dye channels carried by the colour field
            executor                 : KernelExecutor (defaults to NumpyKernelExecutor)
            params                   : SimulationParameters; excludes the setting keywords
        """
        settings = {
            "periodic_boundary": periodic_boundary,
            "physics_scale": physics_scale,
            "simulation_texture_scale": simulation_texture_scale,
            "generate_color_mipmaps": generate_color_mipmaps,
            "color_channels": color_channels,
        }
        settings = {k: v for k, v in settings.items() if v is not None}
        if params is None:
            params = SimulationParameters(**settings)
        elif settings:
            raise ConfigurationError(
                f"Pass either params or setting keywords, not both (got {sorted(settings)})"
            )
        params.validate()

        self.executor = executor or NumpyKernelExecutor()
        self._width = require_positive_int("width", width)
        self._height = require_positive_int("height", height)
        self._physics_scale = float(params.physics_scale)
        self._periodic_boundary = bool(params.periodic_boundary)
        self._simulation_texture_scale = float(params.simulation_texture_scale)
        self._iterations = int(params.iterations)
        self._time_scale = float(params.time_scale)
        self.generate_color_mipmaps = bool(params.generate_color_mipmaps)
        self.color_channels = int(params.color_channels)

        self.frame = 0
        self.perf_log = deque(maxlen=self.PERF_LOG_SIZE)   # timing data of recent frames
        self.color_mipmaps = []

        self._allocate_fields()

    # ── Allocation ─────────────────────────────────────────────────────────

    def _simulation_size(self, width: int, height: int, scale: float) -> tuple:
        sim_w = int(width * scale)
        sim_h = int(height * scale)
        if sim_w < 1 or sim_h < 1:
            raise ConfigurationError(
                f"Simulation grid {width}x{height} * {scale} rounds down to "
                f"{sim_w}x{sim_h}; use a larger size or scale"
            )
        return sim_w, sim_h

    def _allocate_fields(self):
        """(Re)create every field from scratch at the current settings."""
        sim_w, sim_h = self._simulation_size(self._width, self._height,
                                             self._simulation_texture_scale)
        wrap = WrapMode.PERIODIC if self._periodic_boundary else WrapMode.CLAMPED
        dx = self._physics_scale

        self.velocity = GridField(self.executor, sim_w, sim_h, 2, dx, wrap,
                                  Filtering.LINEAR, name="velocity")
        self.pressure = GridField(self.executor, sim_w, sim_h, 1, dx, wrap,
                                  Filtering.NEAREST, name="pressure")
        self.divergence = GridField(self.executor, sim_w, sim_h, 1, dx, wrap,
                                    Filtering.NEAREST, double_buffered=False,
                                    name="divergence")
        self.color = GridField(self.executor, self._width, self._height,
                               self.color_channels, self._color_dx(), wrap,
                               Filtering.LINEAR, name="color")
        self._update_mipmaps()

        logger.debug("Allocated fields: simulation %dx%d, color %dx%d, %s boundary",
                     sim_w, sim_h, self._width, self._height, wrap.value)

    def _color_dx(self) -> float:
        # colour cells are finer than simulation cells by width / simulation width
        sim_w = int(self._width * self._simulation_texture_scale)
        return self._physics_scale * sim_w / self._width

    def _update_mipmaps(self):
        if self.generate_color_mipmaps:
            self.color_mipmaps = build_mipmaps(self.color.read())
        else:
            self.color_mipmaps = []

    # ── Properties ─────────────────────────────────────────────────────────

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def simulation_width(self) -> int:
        return self.velocity.width

    @property
    def simulation_height(self) -> int:
        return self.velocity.height

    @property
    def iterations(self) -> int:
        """Jacobi sweeps per frame."""
        return self._iterations

    @iterations.setter
    def iterations(self, value: int):
        self._iterations = require_positive_int("iterations", value)

    @property
    def time_scale(self) -> float:
        return self._time_scale

    @time_scale.setter
    def time_scale(self, value: float):
        self._time_scale = require_finite("time_scale", value)

    @property
    def physics_scale(self) -> float:
        """Cell spacing dx; rescales advection and gradient coefficients."""
        return self._physics_scale

    @physics_scale.setter
    def physics_scale(self, value: float):
        self._physics_scale = require_positive("physics_scale", value)
        for f in (self.velocity, self.pressure, self.divergence):
            f.dx = self._physics_scale
        self.color.dx = self._color_dx()

    # derived coefficients, as the kernels use them
    @property
    def rdx(self) -> float:
        return 1.0 / self._physics_scale

    @property
    def half_rdx(self) -> float:
        return 0.5 / self._physics_scale

    @property
    def dx_alpha(self) -> float:
        return -self._physics_scale * self._physics_scale

    @property
    def periodic_boundary(self) -> bool:
        return self._periodic_boundary

    @periodic_boundary.setter
    def periodic_boundary(self, value: bool):
        """
        Switch boundary regime. Every field is rebuilt from scratch and its
        content is DROPPED (unlike resize, which resamples).
        """
        self._periodic_boundary = require_bool("periodic_boundary", value)
        logger.info("Boundary switched to %s; fields reset",
                    "periodic" if self._periodic_boundary else "free-slip")
        self._allocate_fields()

    @property
    def simulation_texture_scale(self) -> float:
        return self._simulation_texture_scale

    @simulation_texture_scale.setter
    def simulation_texture_scale(self, value: float):
        value = require_texture_scale(value)
        self._simulation_size(self._width, self._height, value)
        self._simulation_texture_scale = value
        self.resize(self._width, self._height)

    @property
    def params(self) -> SimulationParameters:
        """Current settings as a SimulationParameters snapshot."""
        return SimulationParameters(
            physics_scale=self._physics_scale,
            time_scale=self._time_scale,
            iterations=self._iterations,
            periodic_boundary=self._periodic_boundary,
            simulation_texture_scale=self._simulation_texture_scale,
            generate_color_mipmaps=self.generate_color_mipmaps,
            color_channels=self.color_channels,
        )

    # ── Coordinate transforms ──────────────────────────────────────────────

    def clip_space_to_simulation_space_x(self, x: float) -> float:
        """[-1, 1] clip-space x → aspect-corrected simulation-space x."""
        return x * (self.simulation_width / self.simulation_height)

    def clip_space_to_simulation_space_y(self, y: float) -> float:
        return y

    # ── Frame ──────────────────────────────────────────────────────────────

    def step(self, t: float, dt: float, apply_forces=None, apply_color=None):
        """
        Advance the simulation by one frame.

        Args:
            t           : Current time in seconds (passed through for callers)
            dt          : Frame duration in seconds, not validated; NaN or
                          negative values are the caller's problem
            apply_forces: Callable(velocity_write_buffer) adding user forces,
                          or None. The buffer holds the current velocity.
            apply_color : Callable(color_write_buffer) adding dye, or None.
                          The buffer holds the current colour.

        Metrics for the frame are appended to `perf_log`.
        """
        t_total_start = time.perf_counter()
        ex = self.executor
        dt_scaled = dt * self._time_scale
        rdx = self.rdx

        # ── Step 1: Advect velocity ────────────────────────────────────────
        t0 = time.perf_counter()
        ex.run(advect_kernel, [self.velocity, self.velocity], self.velocity.write(),
               dt=dt_scaled, rdx=rdx)
        self.velocity.swap()
        t_advect_vel = (time.perf_counter() - t0) * 1000

        # ── Step 2: User forces ────────────────────────────────────────────
        t0 = time.perf_counter()
        if apply_forces is not None:
            target = self.velocity.write()
            np.copyto(target, self.velocity.read())
            apply_forces(target)
            self.velocity.swap()
        t_forces = (time.perf_counter() - t0) * 1000

        # ── Steps 3-5: Divergence, pressure, gradient subtraction ──────────
        proj_metrics = project(ex, self.velocity, self.pressure, self.divergence,
                               self._iterations, self._physics_scale)

        # ── Step 6: User colour ────────────────────────────────────────────
        t0 = time.perf_counter()
        if apply_color is not None:
            target = self.color.write()
            np.copyto(target, self.color.read())
            apply_color(target)
            self.color.swap()
        t_color = (time.perf_counter() - t0) * 1000

        # ── Step 7: Advect colour through the projected velocity ──────────
        t0 = time.perf_counter()
        ex.run(advect_kernel, [self.velocity, self.color], self.color.write(),
               dt=dt_scaled, rdx=rdx)
        self.color.swap()
        self._update_mipmaps()
        t_advect_color = (time.perf_counter() - t0) * 1000

        # ── Frame bookkeeping ──────────────────────────────────────────────
        self.frame += 1
        t_total = (time.perf_counter() - t_total_start) * 1000

        metrics = {
            "frame"            : self.frame,
            "t"                : t,
            "dt"               : dt_scaled,
            "total_ms"         : t_total,
            "fps"              : 1000.0 / t_total if t_total > 0 else 0,
            "advect_vel_ms"    : t_advect_vel,
            "forces_ms"        : t_forces,
            "divergence_ms"    : proj_metrics["divergence_ms"],
            "pressure_ms"      : proj_metrics["pressure_ms"],
            "gradient_ms"      : proj_metrics["gradient_ms"],
            "color_ms"         : t_color,
            "advect_color_ms"  : t_advect_color,
            "divergence_max"   : proj_metrics["divergence_before_max"],
            "divergence_mean"  : proj_metrics["divergence_before_mean"],
        }
        self.perf_log.append(metrics)

    def resize(self, new_width: int, new_height: int):
        """
        Change the display resolution, keeping the current flow.

        Velocity and pressure are resampled to the new simulation size,
        colour to the new display size; divergence is recreated empty.
        Not safe to call from inside a step() callback.
        """
        new_width = require_positive_int("width", new_width)
        new_height = require_positive_int("height", new_height)
        sim_w, sim_h = self._simulation_size(new_width, new_height,
                                             self._simulation_texture_scale)

        self._width = new_width
        self._height = new_height
        self.color.resize(new_width, new_height)
        self.velocity.resize(sim_w, sim_h)
        self.pressure.resize(sim_w, sim_h)
        self.divergence.resize(sim_w, sim_h)
        self.color.dx = self._color_dx()
        self._update_mipmaps()
        logger.debug("Resized simulation to %dx%d (color %dx%d)",
                     sim_w, sim_h, new_width, new_height)

    # ── Diagnostics ────────────────────────────────────────────────────────

    def compute_divergence(self) -> np.ndarray:
        """
        Divergence of the current velocity field, shape (H, W).

        Freshly computed; the per-frame divergence field is left alone.
        """
        return compute_divergence(self.executor, self.velocity, self._physics_scale)

    def mean_abs_divergence(self, interior: bool = True) -> float:
        """Mean |div v|, over interior cells only by default."""
        div = np.abs(self.compute_divergence())
        if interior and div.shape[0] > 2 and div.shape[1] > 2:
            div = div[1:-1, 1:-1]
        return float(div.mean())

    def snapshot(self) -> dict:
        """Copies of every field's current buffer."""
        return {
            "frame"      : self.frame,
            "velocity"   : self.velocity.read().copy(),
            "pressure"   : self.pressure.read()[..., 0].copy(),
            "divergence" : self.divergence.read()[..., 0].copy(),
            "color"      : self.color.read().copy(),
        }

    def print_status(self):
        """Pretty-print current simulation state."""
        v = self.velocity.read()
        speed = np.sqrt((v ** 2).sum(axis=-1))
        div = np.abs(self.compute_divergence())
        p = self.pressure.read()
        c = self.color.read()
        print(f"\n{'='*50}")
        print(f"  Frame: {self.frame}  |  Boundary: "
              f"{'periodic' if self._periodic_boundary else 'free-slip'}")
        print(f"  Grid      : sim={self.simulation_width}x{self.simulation_height}, "
              f"color={self._width}x{self._height}")
        print(f"  Velocity  : max_speed={speed.max():.4f}")
        print(f"  Divergence: max={div.max():.6f}, mean={div.mean():.8f}")
        print(f"  Pressure  : max={p.max():.4f}, min={p.min():.4f}")
        print(f"  Color     : total={c.sum():.2f}")
        if self.perf_log:
            last = self.perf_log[-1]
            print(f"  Perf      : {last['total_ms']:.1f}ms/frame ({last['fps']:.1f} FPS)")
        print(f"{'='*50}")
