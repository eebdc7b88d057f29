"""Device buffers for the compute pipeline.

A ``ComputeBuffer`` is a fixed-size array of ``count`` elements, each made
of ``components`` scalars.  Kernels work on :attr:`ComputeBuffer.data`
directly; the host uploads with :meth:`set_data` and reads back with
:meth:`get_data`, which is a synchronisation point and is counted as such
on the owning :class:`ComputeDevice`.
"""

import logging
from typing import Optional

import numpy as np

from hairforge.core.errors import AllocationError

logger = logging.getLogger(__name__)


class ComputeDevice:
    """Owns buffer allocations and an optional memory budget."""

    def __init__(self, memory_limit_bytes: Optional[int] = None) -> None:
        self.memory_limit_bytes = memory_limit_bytes
        self.allocated_bytes: int = 0
        self.sync_count: int = 0
        self._buffers: list["ComputeBuffer"] = []

    def create_buffer(
        self,
        name: str,
        count: int,
        components: int = 1,
        dtype=np.float32,
    ) -> "ComputeBuffer":
        """Allocate a zero-filled buffer.

        Raises ``AllocationError`` if the request is invalid or exceeds the
        device budget.
        """
        if count < 0 or components < 1:
            raise AllocationError(
                f"Invalid buffer request '{name}': count={count}, components={components}"
            )
        nbytes = count * components * np.dtype(dtype).itemsize
        if (self.memory_limit_bytes is not None
                and self.allocated_bytes + nbytes > self.memory_limit_bytes):
            raise AllocationError(
                f"Buffer '{name}' needs {nbytes} bytes, "
                f"{self.memory_limit_bytes - self.allocated_bytes} available"
            )
        try:
            data = np.zeros((count, components), dtype=dtype)
        except MemoryError as exc:
            raise AllocationError(f"Out of memory allocating buffer '{name}'") from exc

        buf = ComputeBuffer(self, name, data)
        self.allocated_bytes += nbytes
        self._buffers.append(buf)
        logger.debug("Allocated buffer '%s': %d x %d (%d bytes)", name, count, components, nbytes)
        return buf

    def _free(self, buf: "ComputeBuffer") -> None:
        self.allocated_bytes -= buf.nbytes
        if buf in self._buffers:
            self._buffers.remove(buf)

    @property
    def live_buffers(self) -> list["ComputeBuffer"]:
        return list(self._buffers)


class ComputeBuffer:
    """A device-resident array of ``count`` x ``components`` scalars."""

    def __init__(self, device: ComputeDevice, name: str, data: np.ndarray) -> None:
        self._device = device
        self.name = name
        self._data: Optional[np.ndarray] = data
        self.count: int = data.shape[0]
        self.components: int = data.shape[1]
        self.dtype = data.dtype
        self.nbytes: int = data.nbytes

    @property
    def device(self) -> ComputeDevice:
        return self._device

    @property
    def stride(self) -> int:
        """Bytes per element."""
        return self.components * self.dtype.itemsize

    @property
    def released(self) -> bool:
        return self._data is None

    @property
    def data(self) -> np.ndarray:
        """Device-side view; only kernels should touch this."""
        if self._data is None:
            raise ValueError(f"Buffer '{self.name}' has been released")
        return self._data

    def set_data(self, values) -> None:
        """Upload *values* verbatim (shape ``count`` x ``components`` or flat)."""
        arr = np.asarray(values, dtype=self.dtype)
        expected = self.count * self.components
        if arr.size != expected:
            raise ValueError(
                f"Buffer '{self.name}' expects {self.count} x {self.components} values, "
                f"got {arr.size}"
            )
        self.data[...] = arr.reshape(self.count, self.components)

    def get_data(self) -> np.ndarray:
        """Copy the buffer back to host memory.  Blocks until the device is idle."""
        self._device.sync_count += 1
        return self.data.copy()

    def release(self) -> None:
        if self._data is None:
            return
        self._device._free(self)
        self._data = None
        logger.debug("Released buffer '%s'", self.name)

    def __repr__(self) -> str:
        state = "released" if self.released else f"{self.count}x{self.components}"
        return f"ComputeBuffer({self.name!r}, {state}, {self.dtype})"
