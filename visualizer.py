"""
visualizer.py — Live Dye Viewer
================================
Renders the colour field of a FluidSimulation with matplotlib and turns
mouse drags into forces and dye.

Pointer positions arrive in image pixel coordinates. They are mapped to
[-1, 1] clip space, then through the simulation's clip-space transform,
so injection lands where the cursor is regardless of aspect ratio.
"""

import numpy as np
import matplotlib
import matplotlib.pyplot as plt
import matplotlib.animation as animation

from stable_fluids import add_color, apply_impulse


class FluidVisualizer:
    """
    Real-time viewer of the fluid simulation's colour field.

    Usage (standalone):
        from stable_fluids import FluidSimulation
        from visualizer import FluidVisualizer

        sim = FluidSimulation(256, 128)
        viz = FluidVisualizer(sim)
        viz.run()  # Opens live window
    """

    def __init__(self, simulation, dt: float = 1 / 30, force_scale: float = 400.0,
                 radius: float = 0.06):
        """
        Args:
            simulation  : FluidSimulation instance
            dt          : Simulated seconds per rendered frame
            force_scale : Clip-space drag speed → force multiplier
            radius      : Splat radius in simulation-space units
        """
        self.sim = simulation
        self.dt = dt
        self.force_scale = force_scale
        self.radius = radius
        self.t = 0.0

        self._pointer = None        # current clip-space position while dragging
        self._last_pointer = None
        self._hue = 0.0

        self._setup_figure()

    def _setup_figure(self):
        """Initialize the matplotlib figure with a single image."""
        self.fig, self.ax = plt.subplots(1, 1, figsize=(10, 10 * self.sim.height / self.sim.width))
        self.fig.patch.set_facecolor('#0a0a0a')
        self.ax.set_facecolor('#0a0a0a')
        self.ax.set_xticks([])
        self.ax.set_yticks([])
        for spine in self.ax.spines.values():
            spine.set_edgecolor('#333333')

        self.img = self.ax.imshow(
            self._rgb(),
            interpolation='bilinear',
            origin='lower',
            aspect='equal'
        )
        self.title_text = self.ax.set_title(
            "Stable Fluids — Frame 0 | 0.0 FPS",
            color='#cccccc', fontsize=10, fontfamily='monospace'
        )

        self.fig.canvas.mpl_connect('button_press_event', self._on_press)
        self.fig.canvas.mpl_connect('motion_notify_event', self._on_move)
        self.fig.canvas.mpl_connect('button_release_event', self._on_release)
        plt.tight_layout()

    # ── Pointer handling ──────────────────────────────────────────────────

    def _to_clip_space(self, event):
        if event.inaxes is not self.ax or event.xdata is None:
            return None
        x = (event.xdata + 0.5) / self.sim.width * 2.0 - 1.0
        y = (event.ydata + 0.5) / self.sim.height * 2.0 - 1.0
        return np.clip(x, -1, 1), np.clip(y, -1, 1)

    def _on_press(self, event):
        self._pointer = self._to_clip_space(event)
        self._last_pointer = self._pointer

    def _on_move(self, event):
        if self._pointer is not None:
            self._pointer = self._to_clip_space(event) or self._pointer

    def _on_release(self, event):
        self._pointer = None
        self._last_pointer = None

    def _apply_forces(self, velocity):
        if self._pointer is None or self._last_pointer is None:
            return
        (x, y), (lx, ly) = self._pointer, self._last_pointer
        sx = self.sim.clip_space_to_simulation_space_x(x)
        sy = self.sim.clip_space_to_simulation_space_y(y)
        drag = (
            self.sim.clip_space_to_simulation_space_x(x - lx),
            self.sim.clip_space_to_simulation_space_y(y - ly),
        )
        force = (drag[0] * self.force_scale, drag[1] * self.force_scale)
        apply_impulse(velocity, sx, sy, force, radius=self.radius, dt=1.0)

    def _apply_color(self, color):
        if self._pointer is None:
            return
        x, y = self._pointer
        self._hue = (self._hue + 0.01) % 1.0
        rgb = matplotlib.colormaps["hsv"](self._hue)[:3]
        add_color(color,
                  self.sim.clip_space_to_simulation_space_x(x),
                  self.sim.clip_space_to_simulation_space_y(y),
                  tuple(0.3 * c for c in rgb) + (1.0,),
                  radius=self.radius * 0.5)

    # ── Animation ─────────────────────────────────────────────────────────

    def _rgb(self) -> np.ndarray:
        color = self.sim.color.read()
        rgb = np.zeros(color.shape[:2] + (3,), dtype=np.float32)
        channels = min(3, color.shape[2])
        rgb[..., :channels] = color[..., :channels]
        return np.clip(rgb, 0.0, 1.0)

    def update(self, frame_num):
        """Called by FuncAnimation each frame. Steps sim and updates the image."""
        self.sim.step(self.t, self.dt, self._apply_forces, self._apply_color)
        self.t += self.dt
        self._last_pointer = self._pointer

        self.img.set_data(self._rgb())
        metrics = self.sim.perf_log[-1]
        self.title_text.set_text(
            f"Stable Fluids — Frame {metrics['frame']} | "
            f"{metrics['fps']:.1f} FPS | "
            f"div_max={metrics['divergence_max']:.5f}"
        )
        return [self.img, self.title_text]

    def run(self, fps: int = 30, frames: int = None):
        """
        Start the live animation window.

        Args:
            fps    : Target animation frame rate
            frames : Total frames to render (None = infinite)
        """
        interval_ms = 1000 // fps
        self.anim = animation.FuncAnimation(
            self.fig,
            self.update,
            frames=frames,
            interval=interval_ms,
            blit=False,
            cache_frame_data=False,
        )
        plt.show()

    def save_gif(self, path: str = "stable_fluids.gif", fps: int = 30, frames: int = 100):
        """Save animation as a GIF (for reports and demos)."""
        print(f"Rendering {frames} frames to {path}...")
        self.anim = animation.FuncAnimation(
            self.fig, self.update, frames=frames, interval=1000 // fps, blit=False
        )
        writer = animation.PillowWriter(fps=fps)
        self.anim.save(path, writer=writer)
        print(f"Saved: {path}")
