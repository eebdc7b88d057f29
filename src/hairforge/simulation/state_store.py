"""Device-resident simulation state that persists across frames.

Holds rest lengths, reference vectors, the per-strand vertex offset
table, the global/local rotation chains, the head collider and a debug
scratch buffer.  Everything is allocated once in :meth:`initialize` and
never resized; after that only kernels write to the rotation and debug
buffers.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from hairforge.compute.buffer import ComputeBuffer, ComputeDevice
from hairforge.core.math_utils import batch_quat_identity
from hairforge.simulation.collider import CapsuleCollider
from hairforge.simulation.rest_pose import validate_vertex_offsets

logger = logging.getLogger(__name__)


class SimulationStateStore:
    """Owner of the persistent simulation buffers."""

    def __init__(self) -> None:
        self.vertex_count: int = 0
        self.strand_count: int = 0
        self.vertices_per_strand: int = 0
        self.head_collider: Optional[CapsuleCollider] = None
        self._buffers: dict[str, ComputeBuffer] = {}

    @property
    def initialized(self) -> bool:
        return bool(self._buffers)

    def initialize(
        self,
        device: ComputeDevice,
        vertex_count: int,
        strand_count: int,
        rest_lengths,
        reference_vectors,
        vertex_offsets,
        head_collider: Optional[CapsuleCollider] = None,
    ) -> None:
        """Allocate and upload all persistent buffers.

        Raises ``ValueError`` for inconsistent inputs and ``AllocationError``
        if the device cannot hold the buffers.  On failure nothing stays
        allocated.
        """
        if self.initialized:
            raise RuntimeError("SimulationStateStore is already initialized")

        rest_lengths = np.asarray(rest_lengths, dtype=np.float32).reshape(-1)
        reference_vectors = np.asarray(reference_vectors, dtype=np.float32).reshape(-1, 3)
        vertex_offsets = np.asarray(vertex_offsets, dtype=np.int32).reshape(-1)
        if len(rest_lengths) != vertex_count:
            raise ValueError(f"Expected {vertex_count} rest lengths, got {len(rest_lengths)}")
        if len(reference_vectors) != vertex_count:
            raise ValueError(
                f"Expected {vertex_count} reference vectors, got {len(reference_vectors)}"
            )
        if len(vertex_offsets) != strand_count:
            raise ValueError(f"Expected {strand_count} vertex offsets, got {len(vertex_offsets)}")
        vps = validate_vertex_offsets(vertex_offsets, vertex_count)

        layout = [
            ("rest_lengths", vertex_count, 1, np.float32),
            ("global_rotations", vertex_count, 4, np.float32),
            ("local_rotations", vertex_count, 4, np.float32),
            ("reference_vectors", vertex_count, 3, np.float32),
            ("vertex_offsets", strand_count, 1, np.int32),
            ("debug", vertex_count, 3, np.float32),
        ]
        if head_collider is not None:
            layout.append(("collider", 1, 8, np.float32))

        try:
            for name, count, components, dtype in layout:
                self._buffers[name] = device.create_buffer(name, count, components, dtype)
        except Exception:
            self.release()
            raise

        identity = batch_quat_identity(vertex_count)
        self._buffers["rest_lengths"].set_data(rest_lengths)
        self._buffers["global_rotations"].set_data(identity)
        self._buffers["local_rotations"].set_data(identity)
        self._buffers["reference_vectors"].set_data(reference_vectors)
        self._buffers["vertex_offsets"].set_data(vertex_offsets)
        if head_collider is not None:
            self._buffers["collider"].set_data(head_collider.to_float_array())

        self.vertex_count = vertex_count
        self.strand_count = strand_count
        self.vertices_per_strand = vps
        self.head_collider = head_collider
        logger.info(
            "Simulation state: %d strands x %d vertices, %d bytes on device",
            strand_count, vps, sum(b.nbytes for b in self._buffers.values()),
        )

    # ------------------------------------------------------------------
    # Handles
    # ------------------------------------------------------------------

    def _get(self, name: str) -> ComputeBuffer:
        try:
            return self._buffers[name]
        except KeyError:
            raise RuntimeError(f"SimulationStateStore has no '{name}' buffer") from None

    @property
    def global_rotations(self) -> ComputeBuffer:
        return self._get("global_rotations")

    @property
    def local_rotations(self) -> ComputeBuffer:
        return self._get("local_rotations")

    @property
    def rest_lengths(self) -> ComputeBuffer:
        return self._get("rest_lengths")

    @property
    def reference_vectors(self) -> ComputeBuffer:
        return self._get("reference_vectors")

    @property
    def vertex_offsets(self) -> ComputeBuffer:
        return self._get("vertex_offsets")

    @property
    def debug(self) -> ComputeBuffer:
        return self._get("debug")

    @property
    def collider(self) -> Optional[ComputeBuffer]:
        return self._buffers.get("collider")

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def release(self) -> None:
        """Free every buffer; safe to call more than once."""
        for buf in self._buffers.values():
            buf.release()
        if self._buffers:
            logger.debug("Released %d simulation buffers", len(self._buffers))
        self._buffers.clear()
