"""
stable_fluids/ — 2D Stable Fluids Solver
=========================================
Exports the main interfaces callers use.

The viewer imports: FluidSimulation, apply_impulse, add_color
The CLI imports:    FluidSimulation, SimulationParameters
"""

from .config import BufferAliasError, ConfigurationError, SimulationParameters
from .executor import KernelExecutor, LoopKernelExecutor, NumpyKernelExecutor
from .forces import add_color, apply_impulse
from .grid import DualBuffer, Filtering, GridField, WrapMode
from .simulation import FluidSimulation

__all__ = [
    "FluidSimulation", "SimulationParameters",
    "GridField", "DualBuffer", "WrapMode", "Filtering",
    "KernelExecutor", "NumpyKernelExecutor", "LoopKernelExecutor",
    "apply_impulse", "add_color",
    "ConfigurationError", "BufferAliasError",
]
