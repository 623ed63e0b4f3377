from dataclasses import replace

import numpy as np
import pytest
from numba import cuda

from halosim.camera.camera import Camera
from halosim.config import EngineConfig
from halosim.errors import ConfigurationError, EngineStateError, ResourceAllocationError
from halosim.renderer.accumulation import ImageView
from halosim.renderer.cpu_tracer import CpuBatchTracer
from halosim.renderer.tracer import BatchTracer
from halosim.simulation.crystal_population import CrystalPopulation, CrystalPopulationPreset
from halosim.simulation.engine import EngineState, SimulationEngine
from halosim.simulation.light_source import LightSource
from halosim.simulation.repository import CrystalPopulationRepository


class FailingTracer(BatchTracer):
    name = "failing"

    def allocate(self, width, height, max_batch):
        raise ResourceAllocationError("out of device memory")

    def trace_batch(self, ray_count, repository, light_source, camera):
        raise AssertionError("never reached")


class CountingTracer(CpuBatchTracer):
    """CPU tracer that records how many rays each call was asked for."""

    def __init__(self):
        super().__init__(seed=3)
        self.requests = []

    def trace_batch(self, ray_count, repository, light_source, camera):
        self.requests.append(ray_count)
        return super().trace_batch(ray_count, repository, light_source, camera)


class TestLifecycle:
    def test_new_engine_is_uninitialized(self, cpu_config):
        sim = SimulationEngine(cpu_config)
        assert sim.state == EngineState.UNINITIALIZED
        assert not sim.is_running()
        assert sim.get_iteration() == 0

    def test_step_before_initialize_raises(self, cpu_config):
        sim = SimulationEngine(cpu_config)
        with pytest.raises(EngineStateError):
            sim.step()
        with pytest.raises(EngineStateError):
            sim.run(1000)
        with pytest.raises(EngineStateError):
            sim.get_output_texture_handle()

    def test_clear_before_initialize_is_allowed(self, cpu_config):
        sim = SimulationEngine(cpu_config)
        sim.clear()
        assert sim.get_iteration() == 0

    def test_initialize_twice_raises(self, engine):
        with pytest.raises(EngineStateError):
            engine.initialize()

    def test_start_stop_toggle(self, engine):
        assert engine.state == EngineState.READY
        engine.start()
        engine.start()
        assert engine.is_running()
        engine.stop()
        engine.stop()
        assert not engine.is_running()
        assert engine.state == EngineState.READY

    def test_failed_initialize(self, cpu_config):
        sim = SimulationEngine(cpu_config, tracer=FailingTracer())
        with pytest.raises(ResourceAllocationError):
            sim.initialize()
        assert sim.state == EngineState.FAILED
        for call in (sim.initialize, sim.start, sim.step, sim.clear):
            with pytest.raises(EngineStateError):
                call()

    @pytest.mark.skipif(cuda.is_available(), reason="needs a machine without CUDA")
    def test_cuda_backend_without_device(self):
        sim = SimulationEngine(EngineConfig(width=16, height=16, rays_per_step=100, backend="cuda"))
        with pytest.raises(ResourceAllocationError):
            sim.initialize()
        assert sim.state == EngineState.FAILED

    def test_destroy_invalidates_handle(self, cpu_config):
        sim = SimulationEngine(cpu_config)
        sim.initialize()
        handle = sim.get_output_texture_handle()
        sim.destroy()
        sim.destroy()
        assert sim.state == EngineState.DESTROYED
        with pytest.raises(EngineStateError):
            handle.read()
        with pytest.raises(EngineStateError):
            sim.start()

    def test_context_manager(self, cpu_config):
        with SimulationEngine(cpu_config) as sim:
            assert sim.state == EngineState.READY
        assert sim.state == EngineState.DESTROYED


class TestStepping:
    def test_step_is_noop_when_stopped(self, engine):
        assert engine.step() is False
        assert engine.get_iteration() == 0
        assert not engine.snapshot()[0].any()

    def test_run_is_noop_when_stopped(self, engine):
        assert engine.run(1000) is False
        assert engine.get_iteration() == 0

    def test_each_step_adds_one_iteration(self, engine):
        engine.start()
        for expected in range(1, 4):
            assert engine.step() is True
            assert engine.get_iteration() == expected

    def test_run_adds_one_iteration(self, engine):
        engine.start()
        engine.run(50000)
        assert engine.get_iteration() == 1

    def test_run_traces_exactly_requested_rays(self, cpu_config):
        tracer = CountingTracer()
        sim = SimulationEngine(cpu_config, tracer=tracer)
        sim.initialize()
        sim.start()
        sim.run(150000)
        sim.set_rays_per_step(1234)
        sim.step()
        assert tracer.requests == [150000, 1234]
        assert list(tracer.chunks(150000)) == [65536, 65536, 18928]
        sim.destroy()

    @pytest.mark.parametrize("count", [0, -5, 1.5, True])
    def test_run_rejects_bad_counts(self, engine, count):
        engine.start()
        with pytest.raises(ConfigurationError):
            engine.run(count)

    def test_default_scene_end_to_end(self, sun_angles):
        config = EngineConfig(width=128, height=96, backend="cpu", seed=11)
        camera = Camera(fov=0.6, yaw=0.0, pitch=30.0)
        with SimulationEngine(config) as sim:
            sim.set_camera(camera)
            sim.start()
            sim.run(400000)
            image, iteration = sim.snapshot()
            sun = sim.get_light_source()
        assert iteration == 1
        assert image.shape == (128, 96, 3)
        assert image.sum() > 0.0
        assert np.all(image >= 0.0)

        # Default sun at 30 degrees, camera centred on it: the 22 degree ring
        # outshines the dark gap inside it
        angles = sun_angles(camera, 128, 96, sun)
        energy = image.sum(axis=2)
        halo = energy[(angles >= 21.5) & (angles < 23.5)].mean()
        gap = energy[(angles >= 12.0) & (angles < 20.0)].mean()
        assert halo > 2.0 * gap

    def test_runs_accumulate(self, cpu_config):
        with SimulationEngine(cpu_config) as a, \
                SimulationEngine(replace(cpu_config, seed=8)) as b:
            a.start()
            b.start()
            a.run(60000)
            a.run(60000)
            b.run(120000)
            totals = [a.snapshot()[0].sum(dtype=np.float64), b.snapshot()[0].sum(dtype=np.float64)]
            assert a.get_iteration() == 2
            assert b.get_iteration() == 1
        assert totals[0] == pytest.approx(totals[1], rel=0.05)

    def test_clear_keeps_running_flag(self, engine):
        engine.start()
        engine.step()
        engine.clear()
        assert engine.is_running()
        assert engine.get_iteration() == 0
        assert not engine.snapshot()[0].any()
        engine.step()
        assert engine.get_iteration() == 1

    def test_max_iterations_stops_engine(self, engine):
        engine.set_max_iterations(2)
        engine.start()
        assert engine.step()
        assert engine.step()
        assert not engine.is_running()
        assert engine.step() is False
        assert engine.get_iteration() == 2

    def test_snapshot_and_handle_agree(self, engine):
        engine.start()
        engine.step()
        handle = engine.get_output_texture_handle()
        assert isinstance(handle, ImageView)
        image, iteration = engine.snapshot()
        assert iteration == handle.iteration == 1
        np.testing.assert_array_equal(image, handle.read())


class TestParameters:
    def test_setters_copy_arguments(self, engine):
        sun = LightSource(altitude=10.0)
        engine.set_light_source(sun)
        sun.altitude = 80.0
        assert engine.get_light_source().altitude == 10.0

        camera = Camera(fov=0.5)
        engine.set_camera(camera)
        camera.fov = 1.5
        assert engine.get_camera().fov == 0.5

    def test_getters_return_copies(self, engine):
        engine.get_camera().yaw = 90.0
        assert engine.get_camera().yaw == 0.0
        engine.get_repository().set_weight(0, 5)
        assert engine.get_repository().get_weight(0) == 1

    def test_set_crystal_population_replaces_repository(self, engine):
        population = CrystalPopulation.preset(CrystalPopulationPreset.PLATE)
        engine.set_crystal_population(population)
        repo = engine.get_repository()
        assert len(repo) == 1
        assert repo.get(0) == population

    def test_set_crystal_population_at_index_keeps_weight(self, engine):
        repo = CrystalPopulationRepository()
        repo.set_weight(1, 4)
        engine.set_repository(repo)
        engine.set_crystal_population(CrystalPopulation(ca_ratio_average=2.0), index=1)
        stored = engine.get_repository()
        assert stored.get(1).ca_ratio_average == 2.0
        assert stored.get_weight(1) == 4

    def test_invalid_parameters_rejected(self, engine):
        with pytest.raises(ConfigurationError):
            engine.set_light_source(LightSource(altitude=120.0))
        with pytest.raises(ConfigurationError):
            engine.set_crystal_population(CrystalPopulation(ca_ratio_std=-1.0))
        with pytest.raises(ConfigurationError):
            engine.set_rays_per_step(0)
        with pytest.raises(ConfigurationError):
            engine.set_rays_per_step(engine.config.max_batch_size + 1)
        with pytest.raises(ConfigurationError):
            engine.set_max_iterations(-1)
        with pytest.raises(IndexError):
            engine.set_crystal_population(CrystalPopulation(), index=10)

    def test_camera_change_blends_without_clearing(self, engine):
        engine.start()
        engine.step()
        before = engine.snapshot()[0].sum(dtype=np.float64)
        engine.set_camera(Camera(fov=0.3, yaw=180.0))
        engine.step()
        image, iteration = engine.snapshot()
        assert iteration == 2
        assert image.sum(dtype=np.float64) >= before
