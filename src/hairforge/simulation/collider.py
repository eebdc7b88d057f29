"""Capsule head collider.

The head is approximated by a single capsule (cylinder + hemisphere caps).
Strand vertices that end up inside it are pushed radially to its surface.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray

from hairforge.core.math_utils import Mat4, transform_point


@dataclass
class CapsuleCollider:
    """A capsule primitive: two endpoints and a radius (model space)."""
    start: NDArray[np.float64]  # (3,) capsule start point
    end: NDArray[np.float64]    # (3,) capsule end point
    radius: float
    # Cached axis and length for fast collision
    axis: NDArray[np.float64] = field(init=False, repr=False)
    length: float = field(init=False)

    def __post_init__(self) -> None:
        self.start = np.asarray(self.start, dtype=np.float64).reshape(3)
        self.end = np.asarray(self.end, dtype=np.float64).reshape(3)
        self.radius = float(self.radius)
        if self.radius < 0.0:
            raise ValueError(f"Capsule radius must be non-negative, got {self.radius}")
        seg = self.end - self.start
        self.length = float(np.linalg.norm(seg))
        if self.length > 1e-9:
            self.axis = seg / self.length
        else:
            # Degenerate capsule is a sphere
            self.axis = np.array([0.0, 1.0, 0.0])

    def to_float_array(self) -> NDArray[np.float32]:
        """Pack as the 32-byte device layout: start, radius, end, pad."""
        return np.array([*self.start, self.radius, *self.end, 0.0], dtype=np.float32)

    @classmethod
    def from_float_array(cls, values) -> "CapsuleCollider":
        arr = np.asarray(values, dtype=np.float64).reshape(-1)
        if arr.size != 8:
            raise ValueError(f"Expected 8 floats for a capsule, got {arr.size}")
        return cls(start=arr[0:3], end=arr[4:7], radius=arr[3])

    def transformed(self, matrix: Mat4) -> "CapsuleCollider":
        """Capsule moved by *matrix*; radius scales by the mean axis scale."""
        scale = float(np.mean(np.linalg.norm(matrix[:3, :3], axis=0)))
        return CapsuleCollider(
            start=transform_point(matrix, self.start),
            end=transform_point(matrix, self.end),
            radius=self.radius * scale,
        )


def resolve_capsule_penetrations(
    positions: np.ndarray,
    capsule: CapsuleCollider,
) -> int:
    """Push (N, 3) *positions* out of *capsule*, in place.

    Returns the number of points corrected.  Points exactly on the capsule
    axis have no radial direction and are left alone.
    """
    if len(positions) == 0:
        return 0

    pos = positions.astype(np.float64)
    sv = pos - capsule.start[np.newaxis, :]
    t = np.clip(sv @ capsule.axis, 0.0, capsule.length)
    closest = capsule.start[np.newaxis, :] + t[:, np.newaxis] * capsule.axis[np.newaxis, :]

    diff = pos - closest
    dist = np.linalg.norm(diff, axis=1)
    inside = (dist < capsule.radius) & (dist > 1e-6)
    if not inside.any():
        return 0

    idx = np.where(inside)[0]
    radial_dir = diff[idx] / dist[idx, np.newaxis]
    pos[idx] = closest[idx] + radial_dir * capsule.radius
    positions[idx] = pos[idx].astype(positions.dtype)
    return len(idx)
