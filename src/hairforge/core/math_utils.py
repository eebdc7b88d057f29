"""NumPy-backed math utilities: Vec3, Quaternion, Mat4 operations.

Provides lightweight wrappers and utility functions for 3D math.
Vectors are plain numpy arrays; quaternions are [x, y, z, w] arrays.
Matrices are 4x4 numpy arrays acting on column vectors (translation in
the last column).  Marshalled float arrays are row-major: m00, m01, ...
"""

import numpy as np
from numpy.typing import NDArray

# Type aliases
Vec3 = NDArray[np.float64]
Mat3 = NDArray[np.float64]
Mat4 = NDArray[np.float64]
Quat = NDArray[np.float64]  # [x, y, z, w]

_EPS = 1e-10


def vec3(x: float = 0.0, y: float = 0.0, z: float = 0.0) -> Vec3:
    return np.array([x, y, z], dtype=np.float64)


def mat4_identity() -> Mat4:
    return np.eye(4, dtype=np.float64)


def mat4_translation(x: float, y: float, z: float) -> Mat4:
    m = np.eye(4, dtype=np.float64)
    m[0, 3] = x
    m[1, 3] = y
    m[2, 3] = z
    return m


def mat4_rotation_z(angle_rad: float) -> Mat4:
    c, s = np.cos(angle_rad), np.sin(angle_rad)
    m = np.eye(4, dtype=np.float64)
    m[0, 0] = c
    m[0, 1] = -s
    m[1, 0] = s
    m[1, 1] = c
    return m


def mat4_from_quaternion(q: Quat) -> Mat4:
    """Convert quaternion [x,y,z,w] to 4x4 rotation matrix."""
    x, y, z, w = q
    m = np.eye(4, dtype=np.float64)
    m[0, 0] = 1 - 2 * (y * y + z * z)
    m[0, 1] = 2 * (x * y - z * w)
    m[0, 2] = 2 * (x * z + y * w)
    m[1, 0] = 2 * (x * y + z * w)
    m[1, 1] = 1 - 2 * (x * x + z * z)
    m[1, 2] = 2 * (y * z - x * w)
    m[2, 0] = 2 * (x * z - y * w)
    m[2, 1] = 2 * (y * z + x * w)
    m[2, 2] = 1 - 2 * (x * x + y * y)
    return m


def mat4_compose(position: Vec3, quaternion: Quat, scale: Vec3) -> Mat4:
    """Compose TRS matrix from position, quaternion rotation, and scale."""
    m = mat4_from_quaternion(quaternion)
    m[:3, 0] *= scale[0]
    m[:3, 1] *= scale[1]
    m[:3, 2] *= scale[2]
    m[0, 3] = position[0]
    m[1, 3] = position[1]
    m[2, 3] = position[2]
    return m


def mat4_inverse(m: Mat4) -> Mat4:
    return np.linalg.inv(m)


# Quaternion operations

def quat_identity() -> Quat:
    return np.array([0.0, 0.0, 0.0, 1.0], dtype=np.float64)


def quat_from_axis_angle(axis: Vec3, angle: float) -> Quat:
    """Create quaternion from axis-angle."""
    half = angle / 2
    s = np.sin(half)
    a = normalize(axis)
    return np.array([a[0] * s, a[1] * s, a[2] * s, np.cos(half)], dtype=np.float64)


def quat_multiply(a: Quat, b: Quat) -> Quat:
    """Multiply two quaternions (a * b)."""
    ax, ay, az, aw = a
    bx, by, bz, bw = b
    return np.array([
        aw * bx + ax * bw + ay * bz - az * by,
        aw * by - ax * bz + ay * bw + az * bx,
        aw * bz + ax * by - ay * bx + az * bw,
        aw * bw - ax * bx - ay * by - az * bz,
    ], dtype=np.float64)


def quat_conjugate(q: Quat) -> Quat:
    return np.array([-q[0], -q[1], -q[2], q[3]], dtype=np.float64)


def quat_normalize(q: Quat) -> Quat:
    n = np.linalg.norm(q)
    if n < _EPS:
        return quat_identity()
    return q / n


def quat_rotate_vec3(q: Quat, v: Vec3) -> Vec3:
    """Rotate a vector by a quaternion."""
    qv = q[:3]
    w = q[3]
    t = 2.0 * np.cross(qv, v)
    return v + w * t + np.cross(qv, t)


# Vector operations

def normalize(v: Vec3) -> Vec3:
    n = np.linalg.norm(v)
    if n < _EPS:
        return np.zeros_like(v)
    return v / n


def transform_point(m: Mat4, p: Vec3) -> Vec3:
    """Transform a point by a 4x4 matrix."""
    v = np.array([p[0], p[1], p[2], 1.0], dtype=np.float64)
    r = m @ v
    return r[:3]


def transform_points(m: Mat4, points: NDArray) -> NDArray:
    """Transform (N, 3) points by a 4x4 matrix."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    return pts @ m[:3, :3].T + m[:3, 3]


# ── Marshalling ────────────────────────────────────────────────────────

def mat4_to_float_array(m: Mat4) -> NDArray[np.float32]:
    """Flatten a 4x4 matrix to 16 row-major float32 values."""
    return np.ascontiguousarray(m, dtype=np.float32).reshape(16).copy()


def float_array_to_mat4(values) -> Mat4:
    """Inverse of :func:`mat4_to_float_array`."""
    arr = np.asarray(values, dtype=np.float64)
    if arr.size != 16:
        raise ValueError(f"Expected 16 floats for a 4x4 matrix, got {arr.size}")
    return arr.reshape(4, 4).copy()


def quat_to_float_array(q: Quat) -> NDArray[np.float32]:
    """Pack a quaternion as [x, y, z, w] float32 values."""
    return np.array([q[0], q[1], q[2], q[3]], dtype=np.float32)


def float_array_to_quat(values) -> Quat:
    arr = np.asarray(values, dtype=np.float64)
    if arr.size != 4:
        raise ValueError(f"Expected 4 floats for a quaternion, got {arr.size}")
    return arr.reshape(4).copy()


# ── Batch (vectorized) quaternion operations ──────────────────────────

def batch_quat_identity(n: int) -> NDArray:
    q = np.zeros((n, 4), dtype=np.float64)
    q[:, 3] = 1.0
    return q


def batch_quat_multiply(a: NDArray, b: NDArray) -> NDArray:
    """Multiply (N, 4) quaternions [x, y, z, w]: result = a * b."""
    ax, ay, az, aw = a[:, 0], a[:, 1], a[:, 2], a[:, 3]
    bx, by, bz, bw = b[:, 0], b[:, 1], b[:, 2], b[:, 3]
    return np.column_stack([
        aw * bx + ax * bw + ay * bz - az * by,
        aw * by - ax * bz + ay * bw + az * bx,
        aw * bz + ax * by - ay * bx + az * bw,
        aw * bw - ax * bx - ay * by - az * bz,
    ])


def batch_quat_conjugate(q: NDArray) -> NDArray:
    out = np.array(q, dtype=np.float64, copy=True)
    out[:, :3] *= -1.0
    return out


def batch_quat_normalize(q: NDArray) -> NDArray:
    """Normalise (N, 4) quaternions; degenerate rows become identity."""
    q = np.asarray(q, dtype=np.float64)
    n = np.linalg.norm(q, axis=1)
    out = batch_quat_identity(len(q))
    ok = n > _EPS
    out[ok] = q[ok] / n[ok, np.newaxis]
    return out


def batch_quat_rotate(q: NDArray, v: NDArray) -> NDArray:
    """Rotate (N, 3) vectors by (N, 4) quaternions [x, y, z, w]."""
    qx, qy, qz, qw = q[:, 0], q[:, 1], q[:, 2], q[:, 3]
    vx, vy, vz = v[:, 0], v[:, 1], v[:, 2]
    # t = 2 * cross(q.xyz, v)
    tx = 2.0 * (qy * vz - qz * vy)
    ty = 2.0 * (qz * vx - qx * vz)
    tz = 2.0 * (qx * vy - qy * vx)
    # result = v + qw * t + cross(q.xyz, t)
    return np.column_stack([
        vx + qw * tx + (qy * tz - qz * ty),
        vy + qw * ty + (qz * tx - qx * tz),
        vz + qw * tz + (qx * ty - qy * tx),
    ])


def batch_normalize(v: NDArray) -> NDArray:
    """Normalise (N, 3) vectors; zero-length rows stay zero."""
    v = np.asarray(v, dtype=np.float64)
    n = np.linalg.norm(v, axis=1, keepdims=True)
    return np.divide(v, n, out=np.zeros_like(v), where=n > _EPS)


def batch_quat_from_two_vectors(a: NDArray, b: NDArray) -> NDArray:
    """Minimal rotations taking directions *a* onto *b*, both (N, 3).

    Inputs need not be unit length.  Anti-parallel pairs rotate by pi about
    an axis orthogonal to *a*; rows with a zero-length input give identity.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    an = np.linalg.norm(a, axis=1)
    bn = np.linalg.norm(b, axis=1)
    valid = (an > _EPS) & (bn > _EPS)

    ua = batch_normalize(a)
    ub = batch_normalize(b)
    w = 1.0 + np.einsum("ij,ij->i", ua, ub)
    q = np.column_stack([np.cross(ua, ub), w])

    # Anti-parallel: any axis orthogonal to a
    opposite = valid & (w < 1e-6)
    if opposite.any():
        ua_o = ua[opposite]
        helper = np.tile(np.array([1.0, 0.0, 0.0]), (len(ua_o), 1))
        helper[np.abs(ua_o[:, 0]) > 0.9] = [0.0, 1.0, 0.0]
        axis = batch_normalize(np.cross(ua_o, helper))
        q[opposite] = np.column_stack([axis, np.zeros(len(axis))])

    q[~valid] = [0.0, 0.0, 0.0, 1.0]
    return batch_quat_normalize(q)
