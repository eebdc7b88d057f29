"""Rest-pose data for strands: rest lengths, reference vectors, vertex offsets.

The simulation takes these arrays as given.  ``build_rest_data`` derives
them from a rest pose the way an asset importer would, which is what tests
and the headless tool use.
"""

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray


@dataclass
class RestData:
    rest_lengths: NDArray[np.float32]       # (V,)  distance to next vertex, 0 for tips
    reference_vectors: NDArray[np.float32]  # (V, 3) rest edge in the local frame
    vertex_offsets: NDArray[np.int32]       # (S,)  first vertex of each strand


def validate_vertex_offsets(offsets, vertex_count: int) -> int:
    """Check that *offsets* partitions ``[0, vertex_count)`` into equal strands.

    Returns the number of vertices per strand (0 when there are no strands).
    Raises ``ValueError`` otherwise.
    """
    offs = np.asarray(offsets, dtype=np.int64).reshape(-1)
    if len(offs) == 0:
        if vertex_count != 0:
            raise ValueError(f"No strands but vertex_count={vertex_count}")
        return 0
    if offs[0] != 0:
        raise ValueError(f"First vertex offset must be 0, got {offs[0]}")
    steps = np.diff(np.append(offs, vertex_count))
    if (steps <= 0).any():
        raise ValueError("Vertex offsets must be strictly increasing and below vertex_count")
    if (steps != steps[0]).any():
        raise ValueError("All strands must have the same number of vertices")
    return int(steps[0])


def strand_ranges(offsets, vertex_count: int) -> list[tuple[int, int]]:
    """``(start, stop)`` vertex range of each strand."""
    offs = [int(o) for o in np.asarray(offsets).reshape(-1)]
    stops = offs[1:] + [vertex_count]
    return list(zip(offs, stops))


def build_rest_data(strands) -> RestData:
    """Derive simulation inputs from an (S, V, 3) rest pose.

    With identity rotations the local frame of every vertex coincides with
    the model frame, so reference vectors are the rest edges themselves.
    """
    pose = np.asarray(strands, dtype=np.float64)
    if pose.ndim != 3 or pose.shape[2] != 3:
        raise ValueError(f"Expected (strands, vertices, 3) array, got shape {pose.shape}")
    n_strands, vps, _ = pose.shape

    edges = np.zeros_like(pose)
    if vps > 1:
        edges[:, :-1] = pose[:, 1:] - pose[:, :-1]
    lengths = np.linalg.norm(edges, axis=2)

    return RestData(
        rest_lengths=lengths.reshape(-1).astype(np.float32),
        reference_vectors=edges.reshape(-1, 3).astype(np.float32),
        vertex_offsets=(np.arange(n_strands) * vps).astype(np.int32),
    )
