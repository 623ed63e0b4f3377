# halosim/config.py
"""
Global constants and engine configuration for the halo simulation.

Angles at this boundary are in degrees; everything below the renderer
package works in radians.
"""
import os
from dataclasses import dataclass
from typing import Optional

from halosim.errors import ConfigurationError

# --- Image and batch sizing ---
DEFAULT_WIDTH = 1024
DEFAULT_HEIGHT = 768
DEFAULT_RAYS_PER_STEP = 100000
MAX_BATCH_SIZE = 1 << 20
THREADS_PER_BLOCK = 256

# --- Ray/crystal interaction ---
# Realistic halos need at most ~6 internal bounces; rays still inside the
# crystal after this many facet events are dropped.
MAX_FACET_INTERACTIONS = 20
MIN_CA_RATIO = 0.01
RAY_EPSILON = 1e-6

# Dispersion of ice, n(lambda) = A + B / lambda^2 with lambda in nm.
ICE_CAUCHY_A = 1.3017
ICE_CAUCHY_B = 2827.0
WAVELENGTH_MIN = 380.0
WAVELENGTH_MAX = 780.0

# --- Camera ---
FOV_MIN = 0.01
FOV_MAX = 2.0
DEFAULT_FOV = 1.0
DRAG_SENSITIVITY = 0.2
ZOOM_SPEED = 0.1

# --- Light source defaults ---
DEFAULT_SUN_ALTITUDE = 30.0
DEFAULT_SUN_AZIMUTH = 0.0
DEFAULT_SUN_DIAMETER = 0.5

BACKENDS = ("auto", "cuda", "cpu")


@dataclass
class EngineConfig:
    """Sizing and backend selection for a SimulationEngine."""
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    rays_per_step: int = DEFAULT_RAYS_PER_STEP
    max_batch_size: int = MAX_BATCH_SIZE
    backend: str = "auto"
    seed: Optional[int] = None
    max_iterations: int = 0
    threads_per_block: int = THREADS_PER_BLOCK

    def validate(self) -> "EngineConfig":
        if self.width <= 0 or self.height <= 0:
            raise ConfigurationError(f"Image size must be positive, got {self.width}x{self.height}")
        if self.max_batch_size <= 0:
            raise ConfigurationError("max_batch_size must be positive")
        if not 0 < self.rays_per_step <= self.max_batch_size:
            raise ConfigurationError(
                f"rays_per_step must be in [1, {self.max_batch_size}], got {self.rays_per_step}"
            )
        if self.backend not in BACKENDS:
            raise ConfigurationError(f"Unknown backend '{self.backend}', expected one of {BACKENDS}")
        if self.max_iterations < 0:
            raise ConfigurationError("max_iterations must be >= 0")
        if self.threads_per_block <= 0 or self.threads_per_block % 32 != 0:
            raise ConfigurationError("threads_per_block must be a positive multiple of 32")
        return self

    @classmethod
    def from_env(cls, **overrides) -> "EngineConfig":
        """
        Build a config from HALOSIM_* environment variables.
        Explicit keyword overrides win over the environment.
        """
        values = {}
        env_map = {
            "HALOSIM_BACKEND": ("backend", str),
            "HALOSIM_WIDTH": ("width", int),
            "HALOSIM_HEIGHT": ("height", int),
            "HALOSIM_RAYS_PER_STEP": ("rays_per_step", int),
        }
        for var, (field_name, cast) in env_map.items():
            raw = os.environ.get(var)
            if raw is None:
                continue
            try:
                values[field_name] = cast(raw)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {var}: {raw!r}") from e
        values.update(overrides)
        return cls(**values).validate()
