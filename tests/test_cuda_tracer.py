"""GPU tracer tests; skipped on machines without a CUDA device."""

import numpy as np
import pytest
from numba import cuda

from halosim.camera.camera import Camera
from halosim.config import EngineConfig
from halosim.simulation.engine import SimulationEngine
from halosim.simulation.light_source import LightSource
from halosim.simulation.repository import CrystalPopulationRepository

pytestmark = pytest.mark.skipif(not cuda.is_available(), reason="CUDA device required")


@pytest.fixture
def cuda_tracer():
    from halosim.renderer.cuda_tracer import CudaBatchTracer
    tracer = CudaBatchTracer(seed=5)
    yield tracer
    tracer.release()


class TestCudaTracer:
    def test_partial_image_is_non_negative(self, cuda_tracer):
        cuda_tracer.allocate(64, 48, 1 << 16)
        partial = cuda_tracer.trace_batch(100000, CrystalPopulationRepository(), LightSource(), Camera())
        image = partial.copy_to_host()
        assert image.shape == (64, 48, 3)
        assert np.all(image >= 0.0)
        assert image.sum() > 0.0

    def test_matches_cpu_tracer_energy(self, cuda_tracer):
        from halosim.renderer.cpu_tracer import CpuBatchTracer
        cpu = CpuBatchTracer(seed=5)
        cpu.allocate(32, 24, 1 << 17)
        cuda_tracer.allocate(32, 24, 1 << 17)
        args = (200000, CrystalPopulationRepository(), LightSource(), Camera())
        gpu_total = cuda_tracer.trace_batch(*args).copy_to_host().sum(dtype=np.float64)
        cpu_total = cpu.trace_batch(*args).sum()
        assert gpu_total == pytest.approx(cpu_total, rel=0.05)

    def test_halo_surrounds_the_sun(self, cuda_tracer, sun_angles):
        sun = LightSource(altitude=30.0, azimuth=0.0, diameter=0.5)
        cuda_tracer.allocate(128, 96, 1 << 17)
        toward_sun = Camera(fov=0.6, yaw=0.0, pitch=30.0)
        image = cuda_tracer.trace_batch(400000, CrystalPopulationRepository(), sun, toward_sun).copy_to_host()
        antisun = cuda_tracer.trace_batch(400000, CrystalPopulationRepository(), sun,
                                          Camera(fov=0.6, yaw=180.0, pitch=-30.0)).copy_to_host()
        assert image.sum(dtype=np.float64) > 5.0 * antisun.sum(dtype=np.float64)

        angles = sun_angles(toward_sun, 128, 96, sun)
        energy = image.sum(axis=2, dtype=np.float64)
        halo = energy[(angles >= 21.5) & (angles < 23.5)].mean()
        assert halo > 2.0 * energy[(angles >= 12.0) & (angles < 20.0)].mean()

    def test_device_buffer_roundtrip(self, cuda_tracer):
        buffer = cuda_tracer.allocate(8, 8, 1024)
        buffer.deposit([1, 1], [2, 2], [[1.0, 2.0, 3.0], [1.0, 1.0, 1.0]])
        np.testing.assert_allclose(buffer.read()[1, 2], [2.0, 3.0, 4.0])
        buffer.clear()
        assert not buffer.read().any()


class TestCudaEngine:
    def test_engine_runs_on_gpu(self):
        config = EngineConfig(width=64, height=48, rays_per_step=50000, backend="cuda", seed=1)
        with SimulationEngine(config) as sim:
            sim.start()
            sim.step()
            sim.run(400000)
            image, iteration = sim.snapshot()
            assert sim.get_output_texture_handle().device_array is not None
        assert iteration == 2
        assert image.sum() > 0.0
