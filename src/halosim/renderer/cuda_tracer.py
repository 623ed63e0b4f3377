# halosim/renderer/cuda_tracer.py
import logging
import math
from typing import Optional

import numpy as np
from numba import cuda
from numba.cuda.random import create_xoroshiro128p_states

from halosim.config import MAX_FACET_INTERACTIONS, THREADS_PER_BLOCK
from halosim.errors import ResourceAllocationError
from halosim.renderer.accumulation import DeviceAccumulationBuffer
from halosim.renderer.cuda_kernels import clear_float_buffer, trace_halo_kernel
from halosim.renderer.tracer import BatchTracer
from halosim.simulation.light_source import orthonormal_basis

logger = logging.getLogger(__name__)


class CudaBatchTracer(BatchTracer):
    """
    GPU tracer: one CUDA thread per ray, each with its own xoroshiro128+
    stream. Rays are splatted into a device partial buffer that the
    DeviceAccumulationBuffer folds in after every batch.
    """
    name = "cuda"

    def __init__(self, seed: Optional[int] = None, threads_per_block: int = THREADS_PER_BLOCK):
        super().__init__(seed)
        self.threads_per_block = threads_per_block
        self.rng_states = None
        self.d_partial = None

    def allocate(self, width: int, height: int, max_batch: int) -> DeviceAccumulationBuffer:
        if not cuda.is_available():
            raise ResourceAllocationError("No CUDA device is available")

        self.width = width
        self.height = height
        self.max_batch = max_batch
        self.threadsperblock = (16, 8)
        self.blockspergrid = (math.ceil(width / self.threadsperblock[0]),
                              math.ceil(height / self.threadsperblock[1]))

        try:
            device = cuda.get_current_device()
            logger.info("Using CUDA device %s (compute capability %s)",
                        device.name.decode() if isinstance(device.name, bytes) else device.name,
                        device.compute_capability)
            seed = self.seed if self.seed is not None else np.random.SeedSequence().entropy % (1 << 63)
            self.rng_states = create_xoroshiro128p_states(max_batch, seed=seed)
            self.d_partial = cuda.device_array((width, height, 3), dtype=np.float32)
            buffer = DeviceAccumulationBuffer(width, height)
        except ResourceAllocationError:
            self.release()
            raise
        except Exception as e:
            self.release()
            raise ResourceAllocationError(f"CUDA allocation failed: {e}") from e

        logger.info("CUDA tracer ready: %dx%d image, batches of up to %d rays", width, height, max_batch)
        return buffer

    def trace_batch(self, ray_count: int, repository, light_source, camera):
        if self.d_partial is None:
            raise ResourceAllocationError("CUDA tracer used before allocate()")

        d_populations = cuda.to_device(repository.population_table())
        d_cumulative = cuda.to_device(repository.cumulative_weights().astype(np.float32))
        total_weight = float(repository.total_weight())

        axis = light_source.direction().to_array()
        tangent, bitangent = orthonormal_basis(axis)
        d_sun_frame = cuda.to_device(np.stack([axis, tangent, bitangent]).astype(np.float32))
        sun_cos_max = math.cos(math.radians(light_source.diameter) / 2.0)

        d_camera_basis = cuda.to_device(camera.basis_array())

        clear_float_buffer[self.blockspergrid, self.threadsperblock](self.d_partial, 0.0)
        for size in self.chunks(ray_count):
            blocks = math.ceil(size / self.threads_per_block)
            trace_halo_kernel[blocks, self.threads_per_block](
                size, self.rng_states,
                d_populations, d_cumulative, total_weight,
                d_sun_frame, sun_cos_max,
                d_camera_basis, float(camera.fov), self.width, self.height,
                MAX_FACET_INTERACTIONS, self.d_partial
            )
        cuda.synchronize()
        return self.d_partial

    def release(self) -> None:
        self.rng_states = None
        self.d_partial = None
