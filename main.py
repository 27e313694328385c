"""
main.py — Master Entry Point
=============================
Top-level script that runs the solver.

Usage:
    python main.py                        # Headless run (default)
    python main.py --mode live            # Live visualization
    python main.py --mode benchmark       # Per-stage timing breakdown
    python main.py --config params.json   # Load SimulationParameters from JSON
"""

import argparse
import logging

import numpy as np


def build_params(args):
    """SimulationParameters from an optional JSON file, overridden by CLI flags."""
    from stable_fluids import SimulationParameters

    params = SimulationParameters.load(args.config) if args.config else SimulationParameters()
    overrides = {
        "iterations": args.iterations,
        "physics_scale": args.physics_scale,
        "simulation_texture_scale": args.scale,
        "time_scale": args.time_scale,
    }
    for key, value in overrides.items():
        if value is not None:
            setattr(params, key, value)
    if args.periodic:
        params.periodic_boundary = True
    return params.validate()


def make_sources(dt: float):
    """Callbacks for a swirling pair of jets that keep the headless run busy."""
    from stable_fluids import add_color, apply_impulse

    def forces_at(t):
        def apply_forces(velocity):
            angle = t * 0.8
            apply_impulse(velocity, -0.5, 0.0, (30.0 * np.cos(angle), 30.0 * np.sin(angle)),
                          radius=0.08, dt=dt)
            apply_impulse(velocity, 0.5, 0.0, (-30.0 * np.cos(angle), -30.0 * np.sin(angle)),
                          radius=0.08, dt=dt)
        return apply_forces

    def apply_color(color):
        add_color(color, -0.5, 0.0, (1.0, 0.4, 0.1, 1.0), radius=0.05)
        add_color(color, 0.5, 0.0, (0.1, 0.5, 1.0, 1.0), radius=0.05)

    return forces_at, apply_color


def run_live(params, width: int, height: int):
    """Live interactive visualization."""
    from stable_fluids import FluidSimulation
    from visualizer import FluidVisualizer

    print(f"Starting live simulation ({width}x{height})...")
    print("Drag inside the window to push dye around. Close the window to exit.\n")

    sim = FluidSimulation(width, height, params=params)
    viz = FluidVisualizer(sim)
    viz.run(fps=30)


def run_headless(params, width: int, height: int, frames: int = 100, dt: float = 1 / 60):
    """Run simulation without display, printing stats every 10 frames."""
    from stable_fluids import FluidSimulation

    sim = FluidSimulation(width, height, params=params)
    print(f"\nHeadless simulation | display {width}x{height} | "
          f"sim {sim.simulation_width}x{sim.simulation_height} | {frames} frames")
    print(f"{'─'*60}")

    forces_at, apply_color = make_sources(dt)
    total_times = []

    for f in range(frames):
        t = f * dt
        sim.step(t, dt, forces_at(t), apply_color)
        metrics = sim.perf_log[-1]
        total_times.append(metrics["total_ms"])

        if f % 10 == 0:
            print(f"  Frame {f:03d} | {metrics['total_ms']:6.1f}ms "
                  f"({metrics['fps']:.1f} FPS) | "
                  f"div_max={metrics['divergence_max']:.5f} | "
                  f"div_after={sim.mean_abs_divergence():.6f}")

    print(f"\n{'─'*60}")
    print(f"  Average: {np.mean(total_times):.1f}ms/frame ({1000/np.mean(total_times):.1f} FPS)")
    print(f"  Min:     {np.min(total_times):.1f}ms")
    print(f"  Max:     {np.max(total_times):.1f}ms")
    sim.print_status()


def run_benchmark(params, width: int, height: int, frames: int = 50, dt: float = 1 / 60):
    """
    Detailed performance breakdown.
    Shows how long each pipeline stage takes.
    """
    from stable_fluids import FluidSimulation

    print(f"\n{'='*60}")
    print(f"  BENCHMARK | display {width}x{height} | "
          f"{params.iterations} iterations | {frames} frames")
    print(f"{'='*60}")

    sim = FluidSimulation(width, height, params=params)
    forces_at, apply_color = make_sources(dt)

    # Warm up
    for f in range(5):
        sim.step(f * dt, dt, forces_at(f * dt), apply_color)

    logs = []
    for f in range(frames):
        t = (f + 5) * dt
        sim.step(t, dt, forces_at(t), apply_color)
        logs.append(sim.perf_log[-1])

    keys = ["advect_vel_ms", "forces_ms", "divergence_ms", "pressure_ms",
            "gradient_ms", "color_ms", "advect_color_ms", "total_ms"]

    print(f"\n{'Step':<20} {'Mean':>8} {'Min':>8} {'Max':>8}")
    print(f"{'─'*50}")
    for k in keys:
        vals = [m[k] for m in logs]
        print(f"  {k:<18} {np.mean(vals):>7.1f}ms {np.min(vals):>7.1f}ms {np.max(vals):>7.1f}ms")

    total_vals = [m["total_ms"] for m in logs]
    print(f"\n{'─'*50}")
    print(f"  FPS (physics only): {1000/np.mean(total_vals):.1f}")


def main(argv=None):
    parser = argparse.ArgumentParser(description="2D Stable Fluids Simulation")
    parser.add_argument(
        "--mode", choices=["live", "headless", "benchmark"],
        default="headless",
        help="Run mode (default: headless)"
    )
    parser.add_argument("--width",  type=int, default=256, help="Display width (default: 256)")
    parser.add_argument("--height", type=int, default=128, help="Display height (default: 128)")
    parser.add_argument("--frames", type=int, default=100, help="Number of frames")
    parser.add_argument("--config", help="JSON file with SimulationParameters")
    parser.add_argument("--iterations", type=int, help="Pressure Jacobi iterations")
    parser.add_argument("--physics-scale", type=float, help="Cell spacing dx")
    parser.add_argument("--scale", type=float, help="Simulation texture scale in (0, 1]")
    parser.add_argument("--time-scale", type=float, help="Multiplier on dt")
    parser.add_argument("--periodic", action="store_true", help="Periodic boundaries")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(name)s] %(message)s",
    )

    params = build_params(args)

    if args.mode == "live":
        run_live(params, args.width, args.height)
    elif args.mode == "headless":
        run_headless(params, args.width, args.height, frames=args.frames)
    elif args.mode == "benchmark":
        run_benchmark(params, args.width, args.height, frames=args.frames)


if __name__ == "__main__":
    main()
