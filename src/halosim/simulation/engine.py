# halosim/simulation/engine.py
"""
Progressive halo simulation engine.

The engine owns the crystal repository, light source, camera and an
accumulation buffer, and drives a BatchTracer that shoots batches of sun
rays through the crystal mixture. Every step adds one batch to the image;
the iteration counter tells the presentation layer how many batches the
image holds so it can normalise exposure.

Parameter changes between steps take effect on the next batch and do not
clear the image, so old and new contributions blend until clear() is
called.
"""
import logging
import time
from enum import Enum
from typing import Optional

from halosim.camera.camera import Camera
from halosim.config import EngineConfig
from halosim.errors import ConfigurationError, EngineStateError, ResourceAllocationError
from halosim.renderer.accumulation import AccumulationBuffer, ImageView
from halosim.renderer.tracer import BatchTracer, create_tracer
from halosim.simulation.crystal_population import CrystalPopulation
from halosim.simulation.light_source import LightSource
from halosim.simulation.repository import CrystalPopulationRepository

logger = logging.getLogger(__name__)


class EngineState(Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    RUNNING = "running"
    FAILED = "failed"
    DESTROYED = "destroyed"


class SimulationEngine:
    def __init__(self, config: Optional[EngineConfig] = None, tracer: Optional[BatchTracer] = None):
        self.config = (config if config is not None else EngineConfig()).validate()
        self._tracer = tracer
        self._buffer: Optional[AccumulationBuffer] = None
        self._image_view: Optional[ImageView] = None
        self._state = EngineState.UNINITIALIZED

        self._repository = CrystalPopulationRepository()
        self._light_source = LightSource()
        self._camera = Camera()

        self._rays_per_step = self.config.rays_per_step
        self._max_iterations = self.config.max_iterations

    # --- Lifecycle ---

    @property
    def state(self) -> EngineState:
        return self._state

    def _require_alive(self, operation: str):
        if self._state == EngineState.FAILED:
            raise EngineStateError(f"{operation}() called on an engine whose initialization failed")
        if self._state == EngineState.DESTROYED:
            raise EngineStateError(f"{operation}() called on a destroyed engine")

    def _require_initialized(self, operation: str):
        self._require_alive(operation)
        if self._state == EngineState.UNINITIALIZED:
            raise EngineStateError(f"{operation}() called before initialize()")

    def initialize(self) -> None:
        """Select a backend and allocate the accumulation buffer and tracer scratch memory."""
        self._require_alive("initialize")
        if self._state != EngineState.UNINITIALIZED:
            raise EngineStateError("initialize() called twice")

        cfg = self.config
        try:
            if self._tracer is None:
                self._tracer = create_tracer(cfg.backend, seed=cfg.seed,
                                             threads_per_block=cfg.threads_per_block)
            self._buffer = self._tracer.allocate(cfg.width, cfg.height, cfg.max_batch_size)
        except ResourceAllocationError as e:
            self._state = EngineState.FAILED
            logger.error("Engine initialization failed: %s", e)
            raise

        self._image_view = ImageView(self._buffer)
        self._state = EngineState.READY
        logger.info("Engine initialized: backend=%s, %dx%d, %d rays per step",
                    self._tracer.name, cfg.width, cfg.height, self._rays_per_step)

    def start(self) -> None:
        self._require_initialized("start")
        if self._state == EngineState.RUNNING:
            return
        self._state = EngineState.RUNNING
        logger.info("Simulation started at iteration %d", self.get_iteration())

    def stop(self) -> None:
        self._require_alive("stop")
        if self._state != EngineState.RUNNING:
            return
        self._state = EngineState.READY
        logger.info("Simulation stopped at iteration %d", self.get_iteration())

    def is_running(self) -> bool:
        return self._state == EngineState.RUNNING

    def destroy(self) -> None:
        """Release the tracer and buffer. Idempotent."""
        if self._state == EngineState.DESTROYED:
            return
        if self._image_view is not None:
            self._image_view.invalidate()
        if self._buffer is not None:
            self._buffer.release()
        if self._tracer is not None:
            self._tracer.release()
        self._image_view = None
        self._buffer = None
        self._state = EngineState.DESTROYED
        logger.info("Engine destroyed")

    def __enter__(self) -> "SimulationEngine":
        if self._state == EngineState.UNINITIALIZED:
            self.initialize()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.destroy()
        return False

    # --- Simulation ---

    def _iteration_limit_reached(self) -> bool:
        return self._max_iterations > 0 and self._buffer.iteration >= self._max_iterations

    def _trace(self, ray_count: int) -> None:
        start_time = time.perf_counter()
        partial = self._tracer.trace_batch(ray_count, self._repository, self._light_source, self._camera)
        self._buffer.merge(partial)
        logger.debug("Traced %d rays in %.3fs, iteration %d",
                     ray_count, time.perf_counter() - start_time, self._buffer.iteration)

        if self._iteration_limit_reached():
            logger.info("Reached max iterations (%d)", self._max_iterations)
            self.stop()

    def step(self) -> bool:
        """
        Trace one batch of rays_per_step rays if the engine is running.
        Returns True when a batch was added.
        """
        self._require_initialized("step")
        if self._state != EngineState.RUNNING:
            logger.debug("step() ignored, engine is not running")
            return False
        if self._iteration_limit_reached():
            self.stop()
            return False
        self._trace(self._rays_per_step)
        return True

    def run(self, ray_count: int) -> bool:
        """
        Trace exactly `ray_count` rays in one synchronous call, counted as a
        single iteration. Large counts are split into device-sized batches.
        """
        self._require_initialized("run")
        if isinstance(ray_count, bool) or not isinstance(ray_count, int) or ray_count <= 0:
            raise ConfigurationError(f"ray_count must be a positive integer, got {ray_count!r}")
        if self._state != EngineState.RUNNING:
            logger.debug("run() ignored, engine is not running")
            return False
        self._trace(ray_count)
        return True

    def clear(self) -> None:
        """Zero the image and the iteration counter. Does not change the running flag."""
        self._require_alive("clear")
        if self._buffer is not None:
            self._buffer.clear()
        logger.info("Accumulation cleared")

    # --- Parameters ---

    def set_crystal_population(self, population: CrystalPopulation, index: Optional[int] = None) -> None:
        """
        With no index, replace the whole repository by this single
        population. With an index, replace that entry and keep its weight.
        """
        self._require_alive("set_crystal_population")
        if index is None:
            self._repository = CrystalPopulationRepository([population])
        else:
            self._repository.set(index, population)

    def set_repository(self, repository: CrystalPopulationRepository) -> None:
        self._require_alive("set_repository")
        self._repository = repository.copy().validate()

    def get_repository(self) -> CrystalPopulationRepository:
        return self._repository.copy()

    @property
    def repository(self) -> CrystalPopulationRepository:
        return self.get_repository()

    def set_light_source(self, light_source: LightSource) -> None:
        self._require_alive("set_light_source")
        self._light_source = light_source.copy().validate()

    def get_light_source(self) -> LightSource:
        return self._light_source.copy()

    def set_camera(self, camera: Camera) -> None:
        self._require_alive("set_camera")
        self._camera = camera.copy()

    def get_camera(self) -> Camera:
        return self._camera.copy()

    def set_rays_per_step(self, rays: int) -> None:
        if isinstance(rays, bool) or not isinstance(rays, int) or not 0 < rays <= self.config.max_batch_size:
            raise ConfigurationError(
                f"rays_per_step must be an integer in [1, {self.config.max_batch_size}], got {rays!r}"
            )
        self._rays_per_step = rays

    def get_rays_per_step(self) -> int:
        return self._rays_per_step

    def set_max_iterations(self, iterations: int) -> None:
        """Stop the engine once the image holds this many iterations; 0 disables the limit."""
        if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < 0:
            raise ConfigurationError(f"max_iterations must be a non-negative integer, got {iterations!r}")
        self._max_iterations = iterations

    # --- Output ---

    def get_iteration(self) -> int:
        if self._buffer is None:
            return 0
        return self._buffer.iteration

    def get_output_texture_handle(self) -> ImageView:
        self._require_initialized("get_output_texture_handle")
        return self._image_view

    def snapshot(self):
        """(image copy, iteration) taken atomically."""
        self._require_initialized("snapshot")
        return self._buffer.snapshot()

    def __repr__(self) -> str:
        return f"SimulationEngine(state={self._state.value}, iteration={self.get_iteration()})"
