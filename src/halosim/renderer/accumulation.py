# halosim/renderer/accumulation.py
"""
Per-pixel accumulation of deposited ray energy.

Buffers are (width, height, 3) float32 arrays of CIE XYZ energy indexed
[x, y, channel], the same layout the CUDA kernels write. Energy is only
ever added; clear() is the one way back to zero. The iteration counter
changes together with the data under the buffer lock, so a snapshot
never mixes the image of one iteration with the count of another.
"""
import math
import threading
from abc import ABC, abstractmethod
from typing import Tuple

import numpy as np
from numba import cuda

from halosim.errors import EngineStateError, ResourceAllocationError


class AccumulationBuffer(ABC):
    def __init__(self, width: int, height: int):
        self.width = width
        self.height = height
        self._iteration = 0
        self._lock = threading.RLock()

    @property
    def shape(self) -> Tuple[int, int, int]:
        return (self.width, self.height, 3)

    @property
    def iteration(self) -> int:
        with self._lock:
            return self._iteration

    def clear(self) -> None:
        with self._lock:
            self._zero()
            self._iteration = 0

    def merge(self, partial, iterations: int = 1) -> None:
        """Add a partial image produced by a tracer and advance the iteration count."""
        with self._lock:
            self._add(partial)
            self._iteration += iterations

    def deposit(self, xs, ys, energy) -> None:
        """Add energy (N, 3) at pixels (xs[i], ys[i]). Does not touch the iteration count."""
        xs = np.asarray(xs, dtype=np.int64)
        ys = np.asarray(ys, dtype=np.int64)
        energy = np.asarray(energy, dtype=np.float32).reshape(-1, 3)
        if not (xs.shape[0] == ys.shape[0] == energy.shape[0]):
            raise ValueError("deposit needs one (x, y) pair per energy row")
        if xs.size and (xs.min() < 0 or xs.max() >= self.width
                        or ys.min() < 0 or ys.max() >= self.height):
            raise IndexError("deposit coordinates fall outside the buffer")
        with self._lock:
            self._deposit(xs, ys, energy)

    def snapshot(self) -> Tuple[np.ndarray, int]:
        """Host copy of the image together with the iteration it belongs to."""
        with self._lock:
            return self.read(), self._iteration

    def total_energy(self) -> np.ndarray:
        """Summed XYZ energy over all pixels (float64)."""
        return self.read().sum(axis=(0, 1), dtype=np.float64)

    @abstractmethod
    def read(self) -> np.ndarray:
        """Host copy of the current image."""

    @abstractmethod
    def _zero(self) -> None:
        pass

    @abstractmethod
    def _add(self, partial) -> None:
        pass

    @abstractmethod
    def _deposit(self, xs, ys, energy) -> None:
        pass

    def release(self) -> None:
        pass


class HostAccumulationBuffer(AccumulationBuffer):
    """Accumulation buffer in host memory, used with the CPU tracer."""

    def __init__(self, width: int, height: int):
        super().__init__(width, height)
        try:
            self.data = np.zeros(self.shape, dtype=np.float32)
        except MemoryError as e:
            raise ResourceAllocationError(f"Cannot allocate a {width}x{height} accumulation buffer") from e

    def read(self) -> np.ndarray:
        with self._lock:
            return self.data.copy()

    def _zero(self):
        self.data.fill(0.0)

    def _add(self, partial):
        self.data += partial

    def _deposit(self, xs, ys, energy):
        np.add.at(self.data, (xs, ys), energy)


class DeviceAccumulationBuffer(AccumulationBuffer):
    """Accumulation buffer resident on the CUDA device, used with the CUDA tracer."""

    def __init__(self, width: int, height: int):
        super().__init__(width, height)
        # Imported here so host-only code paths never compile device kernels
        from halosim.renderer import cuda_kernels
        self._kernels = cuda_kernels

        self.threadsperblock = (16, 8)
        self.blockspergrid = (math.ceil(width / self.threadsperblock[0]),
                              math.ceil(height / self.threadsperblock[1]))
        try:
            self.d_data = cuda.device_array(self.shape, dtype=np.float32)
        except Exception as e:
            raise ResourceAllocationError(f"Cannot allocate a {width}x{height} device buffer: {e}") from e
        self._zero()

    @property
    def device_array(self):
        return self.d_data

    def read(self) -> np.ndarray:
        with self._lock:
            return self.d_data.copy_to_host()

    def _zero(self):
        self._kernels.clear_float_buffer[self.blockspergrid, self.threadsperblock](self.d_data, 0.0)
        cuda.synchronize()

    def _add(self, partial):
        if not cuda.is_cuda_array(partial):
            partial = cuda.to_device(np.ascontiguousarray(partial, dtype=np.float32))
        self._kernels.add_float_buffer[self.blockspergrid, self.threadsperblock](self.d_data, partial)
        cuda.synchronize()

    def _deposit(self, xs, ys, energy):
        count = xs.shape[0]
        if count == 0:
            return
        d_xs = cuda.to_device(xs.astype(np.int32))
        d_ys = cuda.to_device(ys.astype(np.int32))
        d_energy = cuda.to_device(energy)
        threads = 256
        blocks = math.ceil(count / threads)
        self._kernels.deposit_kernel[blocks, threads](self.d_data, d_xs, d_ys, d_energy, count)
        cuda.synchronize()

    def release(self):
        self.d_data = None


class ImageView:
    """
    Read handle on an engine's output image, valid until the engine is
    destroyed. Reads return host copies; `device_array` exposes the
    on-device buffer for zero-copy consumers when the CUDA tracer is used.
    """

    def __init__(self, buffer: AccumulationBuffer):
        self._buffer = buffer

    def _live(self) -> AccumulationBuffer:
        if self._buffer is None:
            raise EngineStateError("Image handle used after its engine was destroyed")
        return self._buffer

    def invalidate(self) -> None:
        self._buffer = None

    @property
    def width(self) -> int:
        return self._live().width

    @property
    def height(self) -> int:
        return self._live().height

    @property
    def iteration(self) -> int:
        return self._live().iteration

    @property
    def device_array(self):
        return getattr(self._live(), "device_array", None)

    def read(self) -> np.ndarray:
        return self._live().read()

    def snapshot(self) -> Tuple[np.ndarray, int]:
        return self._live().snapshot()

    def __array__(self, dtype=None, copy=None):
        image = self._live().read()
        return image if dtype is None else image.astype(dtype)

    def __repr__(self) -> str:
        if self._buffer is None:
            return "ImageView(released)"
        return f"ImageView({self.width}x{self.height}, iteration={self.iteration})"
