# halosim/renderer/tracer.py
import logging
from abc import ABC, abstractmethod
from typing import Iterator, Optional

from numba import cuda

from halosim.config import MAX_BATCH_SIZE, THREADS_PER_BLOCK
from halosim.errors import ConfigurationError, ResourceAllocationError

logger = logging.getLogger(__name__)


class BatchTracer(ABC):
    """
    Traces batches of sun rays through a crystal mixture and bins the
    outgoing directions into an image-sized partial buffer.

    A tracer owns its random stream and its scratch memory; it is driven
    from a single thread.
    """
    name = "abstract"

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self.width = 0
        self.height = 0
        self.max_batch = MAX_BATCH_SIZE

    @abstractmethod
    def allocate(self, width: int, height: int, max_batch: int):
        """Reserve scratch memory and return the AccumulationBuffer for this backend."""

    @abstractmethod
    def trace_batch(self, ray_count: int, repository, light_source, camera):
        """
        Trace `ray_count` rays and return a (width, height, 3) partial image
        living wherever this backend's accumulation buffer lives.
        """

    def release(self) -> None:
        """Free backend resources. Safe to call more than once."""

    def chunks(self, ray_count: int) -> Iterator[int]:
        """Split a ray count into launch sizes no larger than max_batch."""
        remaining = ray_count
        while remaining > 0:
            size = min(remaining, self.max_batch)
            yield size
            remaining -= size


def create_tracer(backend: str = "auto", seed: Optional[int] = None,
                  threads_per_block: int = THREADS_PER_BLOCK) -> BatchTracer:
    """
    Pick a tracer implementation.

    "auto" uses CUDA when a device is present and falls back to the CPU
    tracer otherwise; "cuda" fails hard without a device.
    """
    from halosim.renderer.cpu_tracer import CpuBatchTracer

    if backend == "cpu":
        return CpuBatchTracer(seed=seed)

    if backend in ("auto", "cuda"):
        if cuda.is_available():
            from halosim.renderer.cuda_tracer import CudaBatchTracer
            return CudaBatchTracer(seed=seed, threads_per_block=threads_per_block)
        if backend == "cuda":
            raise ResourceAllocationError("CUDA backend requested but no CUDA device is available")
        logger.info("No CUDA device found, using the CPU tracer")
        return CpuBatchTracer(seed=seed)

    raise ConfigurationError(f"Unknown backend '{backend}'")
