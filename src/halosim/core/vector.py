# halosim/core/vector.py
import math

import numpy as np


class Vector3:
    """
    Host-side 3D vector for building frames (camera basis, sun direction).
    World frame: x east, y north, z up.
    """
    def __init__(self, x: float, y: float, z: float):
        self.x = x
        self.y = y
        self.z = z

    @classmethod
    def from_horizontal(cls, altitude: float, azimuth: float) -> "Vector3":
        """Unit vector for an altitude/azimuth pair in degrees, azimuth from north toward east."""
        alt = math.radians(altitude)
        az = math.radians(azimuth)
        return cls(math.cos(alt) * math.sin(az),
                   math.cos(alt) * math.cos(az),
                   math.sin(alt))

    def __truediv__(self, t: float) -> "Vector3":
        return Vector3(self.x / t, self.y / t, self.z / t)

    def dot(self, other: "Vector3") -> float:
        return self.x * other.x + self.y * other.y + self.z * other.z

    def cross(self, other: "Vector3") -> "Vector3":
        return Vector3(
            self.y * other.z - self.z * other.y,
            self.z * other.x - self.x * other.z,
            self.x * other.y - self.y * other.x
        )

    def length(self) -> float:
        return math.sqrt(self.dot(self))

    def normalize(self) -> "Vector3":
        l = self.length()
        if l == 0:
            return Vector3(0, 0, 0)
        return self / l

    def to_array(self, dtype=np.float64) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=dtype)

    def __repr__(self) -> str:
        return f"Vector3({self.x}, {self.y}, {self.z})"
