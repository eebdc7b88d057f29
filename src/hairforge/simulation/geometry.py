"""Strand geometry: vertex/strand counts and the vertex position buffers.

This is the renderer-facing side of the hair.  The simulation reads the
counts and writes the position and tangent buffers every frame; nothing
else may touch them while a frame is in flight.
"""

import logging
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from hairforge.compute.buffer import ComputeBuffer, ComputeDevice

logger = logging.getLogger(__name__)


@dataclass
class HairGeometry:
    """Three parallel position buffers plus tangents.

    initial_positions: rest pose in model space (read-only after load)
    positions: current frame, world space
    previous_positions: positions before the current frame's integration
    tangents: per-vertex strand direction, written by the collision pass
    """
    vertex_count: int
    strand_count: int
    initial_positions: ComputeBuffer
    positions: ComputeBuffer
    previous_positions: ComputeBuffer
    tangents: ComputeBuffer

    @property
    def vertices_per_strand(self) -> int:
        if self.strand_count == 0:
            return 0
        return self.vertex_count // self.strand_count

    @classmethod
    def from_strands(cls, device: ComputeDevice, strands) -> "HairGeometry":
        """Upload an (S, V, 3) rest pose; current = previous = rest."""
        pose = np.asarray(strands, dtype=np.float32)
        if pose.ndim != 3 or pose.shape[2] != 3:
            raise ValueError(f"Expected (strands, vertices, 3) array, got shape {pose.shape}")
        strand_count = pose.shape[0]
        flat = pose.reshape(-1, 3)
        vertex_count = len(flat)

        buffers = []
        try:
            for name in ("initial_positions", "positions", "previous_positions", "tangents"):
                buffers.append(device.create_buffer(name, vertex_count, 3))
        except Exception:
            for buf in buffers:
                buf.release()
            raise
        initial, current, previous, tangents = buffers
        initial.set_data(flat)
        current.set_data(flat)
        previous.set_data(flat)

        logger.info("Hair geometry: %d strands, %d vertices", strand_count, vertex_count)
        return cls(vertex_count, strand_count, initial, current, previous, tangents)

    def read_positions(self) -> NDArray[np.float32]:
        """Host copy of the current positions, (V, 3)."""
        return self.positions.get_data()

    def read_tangents(self) -> NDArray[np.float32]:
        return self.tangents.get_data()

    def release(self) -> None:
        for buf in (self.initial_positions, self.positions,
                    self.previous_positions, self.tangents):
            buf.release()
