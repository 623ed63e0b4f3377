# halosim/simulation/light_source.py
import math
from dataclasses import dataclass, replace

import numpy as np

from halosim.config import DEFAULT_SUN_ALTITUDE, DEFAULT_SUN_AZIMUTH, DEFAULT_SUN_DIAMETER
from halosim.core.vector import Vector3
from halosim.errors import ConfigurationError


@dataclass
class LightSource:
    """Sun disk: altitude and azimuth of its centre plus its angular diameter, in degrees."""
    altitude: float = DEFAULT_SUN_ALTITUDE
    azimuth: float = DEFAULT_SUN_AZIMUTH
    diameter: float = DEFAULT_SUN_DIAMETER

    def validate(self) -> "LightSource":
        if not all(math.isfinite(v) for v in (self.altitude, self.azimuth, self.diameter)):
            raise ConfigurationError("Light source parameters must be finite")
        if not -90.0 <= self.altitude <= 90.0:
            raise ConfigurationError(f"Altitude must be in [-90, 90], got {self.altitude}")
        if not 0.0 <= self.azimuth < 360.0:
            raise ConfigurationError(f"Azimuth must be in [0, 360), got {self.azimuth}")
        if not 0.0 <= self.diameter <= 360.0:
            raise ConfigurationError(f"Diameter must be in [0, 360], got {self.diameter}")
        return self

    def direction(self) -> Vector3:
        """Unit vector from the observer toward the centre of the sun."""
        return Vector3.from_horizontal(self.altitude, self.azimuth)

    def sample_directions(self, rng: np.random.Generator, n: int) -> np.ndarray:
        """
        Draw `n` propagation directions of incoming sunlight, uniform over the
        solid angle of the sun disk. Returned vectors point away from the sun.
        """
        axis = self.direction().to_array()
        half_angle = math.radians(self.diameter) / 2.0
        cos_max = math.cos(half_angle)

        u1 = rng.random(n)
        u2 = rng.random(n)
        cos_a = 1.0 - u1 * (1.0 - cos_max)
        sin_a = np.sqrt(np.maximum(0.0, 1.0 - cos_a * cos_a))
        phi = 2.0 * math.pi * u2

        tangent, bitangent = orthonormal_basis(axis)
        toward_sun = (np.outer(cos_a, axis)
                      + np.outer(sin_a * np.cos(phi), tangent)
                      + np.outer(sin_a * np.sin(phi), bitangent))
        return -toward_sun

    def copy(self) -> "LightSource":
        return replace(self)


def orthonormal_basis(axis: np.ndarray):
    """Two unit vectors perpendicular to `axis` and to each other."""
    if abs(axis[0]) > 0.1:
        tangent = np.array([axis[1], -axis[0], 0.0])
    else:
        tangent = np.array([0.0, axis[2], -axis[1]])
    tangent /= np.linalg.norm(tangent)
    bitangent = np.cross(axis, tangent)
    return tangent, bitangent
