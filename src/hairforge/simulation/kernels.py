"""Hair simulation kernels.

Each kernel is a function of a :class:`KernelInvocation`.  Work is
strand-parallel: a kernel first derives the strands its thread groups
cover (with the bounds check), then processes those strands vectorised
with numpy.  Constraints that must walk a strand root-to-tip (local shape,
length) loop over the vertex index and vectorise across strands.

Buffer slots
------------
initial_positions, positions, previous_positions, tangents, debug,
reference_vectors : (V, 3) float32
global_rotations, local_rotations : (V, 4) float32, [x, y, z, w]
rest_lengths : (V, 1) float32
vertex_offsets : (S, 1) int32
collider : (1, 8) float32, optional
"""

import numpy as np

from hairforge.compute.program import (
    ComputeProgram, KernelInvocation, KernelSpec, WORK_UNIT_STRAND, WORK_UNIT_VERTEX,
)
from hairforge.constants import (
    KERNEL_COLLISION_AND_TANGENTS,
    KERNEL_INTEGRATION_AND_GLOBAL_SHAPE,
    KERNEL_LENGTH_AND_WIND,
    KERNEL_LOCAL_SHAPE,
    KERNEL_SKIP_SIMULATION,
    STRANDS_PER_STRAND_GROUP,
    STRANDS_PER_VERTEX_GROUP,
    THREAD_GROUP_SIZE,
)
from hairforge.core.math_utils import (
    batch_normalize,
    batch_quat_conjugate,
    batch_quat_from_two_vectors,
    batch_quat_multiply,
    batch_quat_normalize,
    batch_quat_rotate,
    float_array_to_mat4,
    float_array_to_quat,
    transform_points,
)
from hairforge.simulation.collider import CapsuleCollider, resolve_capsule_penetrations

POSITION_BUFFERS = ("initial_positions", "positions", "previous_positions")


def _strand_vertices(inv: KernelInvocation, strands: np.ndarray) -> np.ndarray:
    """(A, V) global vertex indices of the given strands."""
    offsets = inv.buffer("vertex_offsets")[:, 0].astype(np.int64)
    vps = int(inv.scalar("vertices_per_strand"))
    return offsets[strands][:, np.newaxis] + np.arange(vps, dtype=np.int64)[np.newaxis, :]


def _active_strands(inv: KernelInvocation) -> np.ndarray:
    return inv.work_items(int(inv.scalar("num_strands")))


def _normalize_rows(v: np.ndarray) -> np.ndarray:
    """Normalise the last axis of an (A, V, 3) array."""
    return batch_normalize(v.reshape(-1, 3)).reshape(v.shape)


# ── Integration + global shape matching ──────────────────────────────

def integration_and_global_shape(inv: KernelInvocation) -> np.ndarray:
    strands = _active_strands(inv)
    if len(strands) == 0:
        return strands

    idx = _strand_vertices(inv, strands)
    vps = idx.shape[1]
    initial = inv.buffer("initial_positions")
    pos_buf = inv.buffer("positions")
    prev_buf = inv.buffer("previous_positions")

    model = float_array_to_mat4(inv.uniform("model_transform"))
    dt = inv.scalar("time_step")
    damping = inv.scalar("damping")
    gravity = inv.uniform("gravity").astype(np.float64)

    cur = pos_buf[idx].astype(np.float64)
    old = prev_buf[idx].astype(np.float64)
    rest = transform_points(model, initial[idx]).reshape(cur.shape)

    compensation = inv.scalar("head_motion_compensation")
    if compensation > 0.0:
        # Carry the strand along with the head's motion since last frame;
        # the carried part moves rigidly and adds no velocity.
        head_delta = model @ float_array_to_mat4(inv.uniform("model_prev_inv_transform"))
        cur = cur + compensation * (transform_points(head_delta, cur).reshape(cur.shape) - cur)
        old = old + compensation * (transform_points(head_delta, old).reshape(old.shape) - old)

    new = cur + gravity * (dt * dt)
    if dt > 0.0:
        new += (1.0 - damping) * (cur - old)

    # Roots follow the head
    new[:, 0] = rest[:, 0]

    stiffness = inv.scalar("stiffness_global")
    effective_range = inv.scalar("global_effective_range")
    matched = np.arange(vps) < vps * effective_range
    if stiffness > 0.0 and matched.any():
        new[:, matched] += stiffness * (rest[:, matched] - new[:, matched])

    prev_buf[idx] = cur
    pos_buf[idx] = new
    return strands


# ── Local shape constraints ──────────────────────────────────────────

def local_shape_constraints(inv: KernelInvocation) -> np.ndarray:
    strands = _active_strands(inv)
    if len(strands) == 0:
        return strands

    idx = _strand_vertices(inv, strands)
    n, vps = idx.shape
    pos_buf = inv.buffer("positions")

    x = pos_buf[idx].astype(np.float64)
    # Reference vectors are whole rest edges (direction and length)
    ref = inv.buffer("reference_vectors")[idx].astype(np.float64)
    stiffness = inv.scalar("stiffness_local")

    frame = batch_quat_normalize(
        np.tile(float_array_to_quat(inv.uniform("model_rotation")), (n, 1))
    )
    global_rot = np.empty((n, vps, 4))
    local_rot = np.empty((n, vps, 4))
    local_rot[:, :] = [0.0, 0.0, 0.0, 1.0]
    correction = np.zeros_like(x)

    for i in range(vps - 1):
        target = x[:, i] + batch_quat_rotate(frame, ref[:, i])
        delta = 0.5 * stiffness * (target - x[:, i + 1])
        if i > 0:
            x[:, i] -= delta
            correction[:, i] -= delta
        x[:, i + 1] += delta
        correction[:, i + 1] += delta

        # Rotation carrying the reference edge onto the corrected edge,
        # expressed in this vertex's frame
        edge_local = batch_quat_rotate(batch_quat_conjugate(frame), x[:, i + 1] - x[:, i])
        local = batch_quat_from_two_vectors(ref[:, i], edge_local)
        global_rot[:, i] = frame
        local_rot[:, i] = local
        frame = batch_quat_normalize(batch_quat_multiply(frame, local))

    global_rot[:, vps - 1] = frame

    pos_buf[idx] = x
    inv.buffer("global_rotations")[idx] = global_rot
    inv.buffer("local_rotations")[idx] = local_rot
    if inv.has_buffer("debug"):
        inv.buffer("debug")[idx] = correction
    return strands


# ── Length constraints + wind ────────────────────────────────────────

def length_constraints_and_wind(inv: KernelInvocation) -> np.ndarray:
    strands = _active_strands(inv)
    if len(strands) == 0:
        return strands

    idx = _strand_vertices(inv, strands)
    vps = idx.shape[1]
    pos_buf = inv.buffer("positions")
    x = pos_buf[idx].astype(np.float64)
    rest_len = inv.buffer("rest_lengths")[idx][..., 0].astype(np.float64)

    dt = inv.scalar("time_step")
    wind = inv.uniform("wind").astype(np.float64)
    wind_mag = float(np.linalg.norm(wind))
    if wind_mag > 0.0 and dt > 0.0 and vps > 1:
        # Wind pushes hardest on edges perpendicular to it
        edge_dir = _normalize_rows(x[:, 1:] - x[:, :-1])
        exposure = np.linalg.norm(np.cross(edge_dir, wind / wind_mag), axis=2)
        x[:, 1:] += wind * (dt * dt) * exposure[..., np.newaxis]

    for _ in range(int(inv.scalar("length_iterations"))):
        for i in range(vps - 1):
            d = x[:, i + 1] - x[:, i]
            length = np.linalg.norm(d, axis=1)
            direction = batch_normalize(d)
            corr = (length - rest_len[:, i])[:, np.newaxis] * direction
            if i == 0:
                x[:, 1] -= corr
            else:
                x[:, i] += 0.5 * corr
                x[:, i + 1] -= 0.5 * corr

    pos_buf[idx] = x
    return strands


# ── Collision + tangents ─────────────────────────────────────────────

def collision_and_tangents(inv: KernelInvocation) -> np.ndarray:
    strands = _active_strands(inv)
    if len(strands) == 0:
        return strands

    idx = _strand_vertices(inv, strands)
    n, vps = idx.shape
    pos_buf = inv.buffer("positions")
    x = pos_buf[idx].astype(np.float64)

    if inv.has_buffer("collider"):
        model = float_array_to_mat4(inv.uniform("model_transform"))
        capsule = CapsuleCollider.from_float_array(inv.buffer("collider")[0]).transformed(model)
        free = x[:, 1:].reshape(-1, 3)
        if resolve_capsule_penetrations(free, capsule):
            x[:, 1:] = free.reshape(n, vps - 1, 3)
            pos_buf[idx] = x

    tangents = np.zeros_like(x)
    if vps > 1:
        tangents[:, :-1] = _normalize_rows(x[:, 1:] - x[:, :-1])
        tangents[:, -1] = tangents[:, -2]
    inv.buffer("tangents")[idx] = tangents
    return strands


# ── Skip simulation ──────────────────────────────────────────────────

def skip_simulation(inv: KernelInvocation) -> np.ndarray:
    """Pin every vertex to its rest pose in the current head frame."""
    verts = inv.work_items(int(inv.scalar("num_vertices")))
    if len(verts) == 0:
        return verts
    model = float_array_to_mat4(inv.uniform("model_transform"))
    rest = transform_points(model, inv.buffer("initial_positions")[verts])
    inv.buffer("positions")[verts] = rest
    inv.buffer("previous_positions")[verts] = rest
    return verts


_STRAND_UNIFORMS = ("num_strands", "vertices_per_strand")


def hair_kernel_specs() -> list[KernelSpec]:
    return [
        KernelSpec(
            name=KERNEL_INTEGRATION_AND_GLOBAL_SHAPE,
            function=integration_and_global_shape,
            work_unit=WORK_UNIT_STRAND,
            items_per_group=STRANDS_PER_VERTEX_GROUP,
            buffers=("vertex_offsets",) + POSITION_BUFFERS,
            uniforms=_STRAND_UNIFORMS + (
                "time_step", "model_transform", "model_prev_inv_transform", "gravity",
                "damping", "stiffness_global", "global_effective_range",
                "head_motion_compensation",
            ),
        ),
        KernelSpec(
            name=KERNEL_LOCAL_SHAPE,
            function=local_shape_constraints,
            work_unit=WORK_UNIT_STRAND,
            items_per_group=STRANDS_PER_STRAND_GROUP,
            buffers=("vertex_offsets", "global_rotations", "local_rotations",
                     "reference_vectors") + POSITION_BUFFERS,
            uniforms=_STRAND_UNIFORMS + ("model_rotation", "stiffness_local"),
        ),
        KernelSpec(
            name=KERNEL_LENGTH_AND_WIND,
            function=length_constraints_and_wind,
            work_unit=WORK_UNIT_STRAND,
            items_per_group=STRANDS_PER_VERTEX_GROUP,
            buffers=("vertex_offsets", "rest_lengths") + POSITION_BUFFERS,
            uniforms=_STRAND_UNIFORMS + ("time_step", "wind", "length_iterations"),
        ),
        KernelSpec(
            name=KERNEL_COLLISION_AND_TANGENTS,
            function=collision_and_tangents,
            work_unit=WORK_UNIT_STRAND,
            items_per_group=STRANDS_PER_VERTEX_GROUP,
            buffers=("vertex_offsets", "tangents") + POSITION_BUFFERS,
            uniforms=_STRAND_UNIFORMS + ("model_transform",),
        ),
        KernelSpec(
            name=KERNEL_SKIP_SIMULATION,
            function=skip_simulation,
            work_unit=WORK_UNIT_VERTEX,
            items_per_group=THREAD_GROUP_SIZE,
            buffers=POSITION_BUFFERS,
            uniforms=("num_vertices", "model_transform"),
        ),
    ]


def build_hair_program() -> ComputeProgram:
    """The compiled hair simulation program with all five entry points."""
    return ComputeProgram(hair_kernel_specs(), name="hair_simulation")
