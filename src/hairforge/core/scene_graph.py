"""Minimal transform hierarchy supplying model-to-world data to the simulation.

The hair simulation only needs two things from its host: the current
local-to-world matrix of the object the hair is attached to, and that
object's world rotation.  ``SceneNode`` provides both.
"""

from typing import Optional

import numpy as np

from hairforge.core.math_utils import (
    Mat4, Vec3, Quat,
    mat4_identity, mat4_compose, quat_identity, quat_multiply, quat_normalize, vec3,
)


class SceneNode:
    """A node with position / quaternion / scale and an optional parent.

    World matrix = parent.world_matrix @ local_matrix.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self.parent: Optional["SceneNode"] = None
        self.children: list["SceneNode"] = []

        self.position: Vec3 = vec3()
        self.quaternion: Quat = quat_identity()
        self.scale: Vec3 = vec3(1, 1, 1)

        self.local_matrix: Mat4 = mat4_identity()
        self.world_matrix: Mat4 = mat4_identity()
        self._matrix_dirty: bool = True

    def add(self, child: "SceneNode") -> "SceneNode":
        """Add a child node. Removes from previous parent if any."""
        if child.parent is not None:
            child.parent.remove(child)
        child.parent = self
        self.children.append(child)
        child._matrix_dirty = True
        return self

    def remove(self, child: "SceneNode") -> "SceneNode":
        if child in self.children:
            self.children.remove(child)
            child.parent = None
        return self

    def set_position(self, x: float, y: float, z: float) -> "SceneNode":
        self.position = vec3(x, y, z)
        self._matrix_dirty = True
        return self

    def set_quaternion(self, q: Quat) -> "SceneNode":
        self.quaternion = quat_normalize(np.asarray(q, dtype=np.float64))
        self._matrix_dirty = True
        return self

    def set_scale(self, x: float, y: float, z: float) -> "SceneNode":
        self.scale = vec3(x, y, z)
        self._matrix_dirty = True
        return self

    def update_world_matrix(self, force: bool = False) -> None:
        """Recursively update world matrices for this node and all descendants."""
        if self._matrix_dirty or force:
            self.local_matrix = mat4_compose(self.position, self.quaternion, self.scale)
            self._matrix_dirty = False

        if self.parent is not None:
            self.world_matrix = self.parent.world_matrix @ self.local_matrix
        else:
            self.world_matrix = self.local_matrix.copy()

        for child in self.children:
            child.update_world_matrix(force=force)

    def local_to_world_matrix(self) -> Mat4:
        """Fresh world matrix, walking up from the root."""
        root = self
        while root.parent is not None:
            root = root.parent
        root.update_world_matrix()
        return self.world_matrix.copy()

    def get_world_quaternion(self) -> Quat:
        """Accumulated rotation of this node and its ancestors."""
        q = self.quaternion.copy()
        node = self.parent
        while node is not None:
            q = quat_multiply(node.quaternion, q)
            node = node.parent
        return quat_normalize(q)

    def get_world_position(self) -> Vec3:
        return self.world_matrix[:3, 3].copy()

    def find(self, name: str) -> Optional["SceneNode"]:
        """Find first descendant with given name."""
        if self.name == name:
            return self
        for child in self.children:
            found = child.find(name)
            if found is not None:
                return found
        return None
