# halosim/camera/camera.py
import math
from typing import Tuple

import numpy as np

from halosim.config import DEFAULT_FOV, DRAG_SENSITIVITY, FOV_MAX, FOV_MIN, ZOOM_SPEED
from halosim.core.vector import Vector3


def clamp_fov(fov: float) -> float:
    return min(max(float(fov), FOV_MIN), FOV_MAX)


class Camera:
    """
    Synthetic sky camera.

    yaw is the azimuth of the view direction (degrees, from north toward
    east) and pitch its elevation (degrees). Both accumulate freely without
    wrapping. fov is the angular half-height of the image in radians and
    is clamped into [FOV_MIN, FOV_MAX] on every assignment.
    """
    def __init__(self, fov: float = DEFAULT_FOV, yaw: float = 0.0, pitch: float = 0.0):
        self._fov = clamp_fov(fov)
        self.yaw = yaw
        self.pitch = pitch

    @property
    def fov(self) -> float:
        return self._fov

    @fov.setter
    def fov(self, value: float):
        self._fov = clamp_fov(value)

    def basis(self) -> Tuple[Vector3, Vector3, Vector3]:
        """Returns the (forward, right, up) vectors of the view."""
        yaw = math.radians(self.yaw)
        pitch = math.radians(self.pitch)

        forward = Vector3(
            math.cos(pitch) * math.sin(yaw),
            math.cos(pitch) * math.cos(yaw),
            math.sin(pitch)
        ).normalize()

        # Right stays horizontal so the horizon is never rolled
        right = Vector3(math.cos(yaw), -math.sin(yaw), 0.0)
        up = right.cross(forward).normalize()
        return forward, right, up

    def basis_array(self) -> np.ndarray:
        """(3, 3) float32 array with rows forward, right, up (uploaded to the GPU)."""
        forward, right, up = self.basis()
        return np.stack([forward.to_array(), right.to_array(), up.to_array()]).astype(np.float32)

    def project(self, directions: np.ndarray, width: int, height: int):
        """
        Map viewing directions (N, 3) to integer pixel coordinates with an
        equidistant projection: the angle from the view axis, divided by fov,
        is the distance from the image centre in half-heights.

        Returns (xs, ys, inside) where `inside` masks rays landing on the image.
        """
        forward, right, up = self.basis()
        cx = directions @ right.to_array()
        cy = directions @ up.to_array()
        cz = directions @ forward.to_array()

        rho = np.arccos(np.clip(cz, -1.0, 1.0))
        phi = np.arctan2(cy, cx)
        radius = rho / self.fov * (height / 2.0)

        px = width / 2.0 + radius * np.cos(phi)
        py = height / 2.0 - radius * np.sin(phi)

        inside = (px >= 0) & (px < width) & (py >= 0) & (py < height)
        xs = np.floor(np.where(inside, px, 0)).astype(np.int64)
        ys = np.floor(np.where(inside, py, 0)).astype(np.int64)
        return xs, ys, inside

    def with_drag(self, dx: float, dy: float) -> "Camera":
        """Camera turned by a mouse drag of (dx, dy) pixels."""
        return Camera(self.fov,
                      self.yaw + dx * DRAG_SENSITIVITY * self.fov,
                      self.pitch + dy * DRAG_SENSITIVITY * self.fov)

    def with_zoom(self, steps: float) -> "Camera":
        """Camera after `steps` wheel notches; positive steps zoom in."""
        return Camera(self.fov - ZOOM_SPEED * self.fov * steps, self.yaw, self.pitch)

    def copy(self) -> "Camera":
        return Camera(self.fov, self.yaw, self.pitch)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Camera):
            return NotImplemented
        return (self.fov, self.yaw, self.pitch) == (other.fov, other.yaw, other.pitch)

    def __repr__(self) -> str:
        return f"Camera(fov={self.fov}, yaw={self.yaw}, pitch={self.pitch})"
