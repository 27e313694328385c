"""
config.py — Simulation Parameters & Errors
==========================================
Everything a caller can tune lives in one dataclass. Each field carries
metadata (range, label, description) so a CLI or a GUI panel can be built
from it without duplicating the numbers.

Invalid values are rejected, never clamped. A solver that silently
"fixes" a bad iteration count hides the bug until the fluid looks wrong.
"""

import json
import math
import numbers
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path

import numpy as np


class ConfigurationError(ValueError):
    """Raised when a size, scale or solver parameter is out of range."""


class BufferAliasError(RuntimeError):
    """Raised when a kernel would write into a buffer it is reading from."""


def require_positive_int(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    value = int(value)
    if value <= 0:
        raise ConfigurationError(f"{name} must be > 0, got {value}")
    return value


def _as_float(name: str, value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None


def require_positive(name: str, value) -> float:
    value = _as_float(name, value)
    if not math.isfinite(value) or value <= 0.0:
        raise ConfigurationError(f"{name} must be a finite number > 0, got {value}")
    return value


def require_finite(name: str, value) -> float:
    value = _as_float(name, value)
    if not math.isfinite(value):
        raise ConfigurationError(f"{name} must be finite, got {value}")
    return value


def require_bool(name: str, value) -> bool:
    # numpy bools count; strings like "false" do not
    if not isinstance(value, (bool, np.bool_)):
        raise ConfigurationError(f"{name} must be true or false, got {value!r}")
    return bool(value)


def require_texture_scale(value) -> float:
    value = _as_float("simulation_texture_scale", value)
    if not (0.0 < value <= 1.0):
        raise ConfigurationError(
            f"simulation_texture_scale must be in (0, 1], got {value}"
        )
    return value


@dataclass
class SimulationParameters:
    """Tunable parameters of a FluidSimulation."""

    physics_scale: float = field(
        default=1.0,
        metadata={"min": 1e-6, "max": 100.0, "label": "Physics Scale",
                  "description": "Physical cell spacing dx"}
    )
    time_scale: float = field(
        default=1.0,
        metadata={"min": 0.0, "max": 10.0, "label": "Time Scale",
                  "description": "Multiplier applied to every frame's dt"}
    )
    iterations: int = field(
        default=25,
        metadata={"min": 1, "max": 200, "label": "Pressure Iterations",
                  "description": "Jacobi sweeps per frame (higher = less residual divergence)"}
    )
    periodic_boundary: bool = field(
        default=False,
        metadata={"label": "Periodic Boundary",
                  "description": "Wrap the domain instead of free-slip walls"}
    )
    simulation_texture_scale: float = field(
        default=0.25,
        metadata={"min": 0.01, "max": 1.0, "label": "Simulation Scale",
                  "description": "Simulation grid size relative to the colour grid"}
    )
    generate_color_mipmaps: bool = field(
        default=False,
        metadata={"label": "Colour Mipmaps",
                  "description": "Rebuild a box-filtered mip chain of the colour field every step"}
    )
    color_channels: int = field(
        default=4,
        metadata={"min": 1, "max": 16, "label": "Colour Channels",
                  "description": "Number of dye channels carried by the colour field"}
    )

    def validate(self) -> "SimulationParameters":
        """Check every field, raising ConfigurationError on the first bad one."""
        require_positive("physics_scale", self.physics_scale)
        require_finite("time_scale", self.time_scale)
        require_positive_int("iterations", self.iterations)
        require_bool("periodic_boundary", self.periodic_boundary)
        require_texture_scale(self.simulation_texture_scale)
        require_bool("generate_color_mipmaps", self.generate_color_mipmaps)
        require_positive_int("color_channels", self.color_channels)
        return self

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SimulationParameters":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown simulation parameters: {sorted(unknown)}")
        return cls(**data).validate()

    @classmethod
    def load(cls, path) -> "SimulationParameters":
        """Read parameters from a JSON file."""
        with open(Path(path)) as f:
            return cls.from_dict(json.load(f))
