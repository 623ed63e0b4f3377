import numpy as np
import pytest

from halosim.config import EngineConfig
from halosim.simulation.engine import SimulationEngine


@pytest.fixture
def rng():
    return np.random.default_rng(12345)


@pytest.fixture
def cpu_config():
    return EngineConfig(width=64, height=48, rays_per_step=20000,
                        max_batch_size=1 << 16, backend="cpu", seed=7)


@pytest.fixture
def engine(cpu_config):
    sim = SimulationEngine(cpu_config)
    sim.initialize()
    yield sim
    sim.destroy()


@pytest.fixture
def sun_angles():
    """
    Returns a function giving, for every pixel centre of a (width, height)
    image, the angle in degrees between its viewing direction and the sun.
    """
    def angles(camera, width, height, sun):
        forward, right, up = (v.to_array() for v in camera.basis())
        px = np.arange(width)[:, None] + 0.5
        py = np.arange(height)[None, :] + 0.5
        dx = px - width / 2.0
        dy = height / 2.0 - py
        rho = np.hypot(dx, dy) / (height / 2.0) * camera.fov
        phi = np.arctan2(dy, dx)
        view = (np.cos(rho)[..., None] * forward
                + (np.sin(rho) * np.cos(phi))[..., None] * right
                + (np.sin(rho) * np.sin(phi))[..., None] * up)
        cos_sun = np.clip(view @ sun.direction().to_array(), -1.0, 1.0)
        return np.degrees(np.arccos(cos_sun))
    return angles
