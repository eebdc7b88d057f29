"""Per-frame hair simulation orchestrator.

Call order of :func:`simulate_frame`:
  1. Bind scalars: time step, strand/vertex counts, model rotation and
     model-to-world matrix, physical parameters
  2. Bind buffers to the kernels that read them
  3. Dispatch, in this order and sized from the strand count:
       IntegrationAndGlobalShapeConstraints
       LocalShapeConstraints
       LengthConstraintsAndWind   (off unless enabled)
       CollisionAndTangents
     or only SkipSimulateHair when the simulation is frozen
  4. Optional debug buffer readback (a host/device sync point)
  5. Store inverse(model_transform) for the next frame
  6. Record the elapsed time of steps 1-4 in milliseconds

Every dispatch completes before the next one starts, so each stage sees
the finished output of the one before.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from hairforge.compute.buffer import ComputeDevice
from hairforge.compute.program import (
    ComputeProgram, DispatchRecord, KernelHandle, thread_group_count,
)
from hairforge.core.errors import HairSimulationError, MissingDependency
from hairforge.core.math_utils import (
    Mat4, Quat,
    mat4_identity, mat4_inverse, mat4_to_float_array, quat_identity, quat_to_float_array,
)
from hairforge.simulation.collider import CapsuleCollider
from hairforge.simulation.config import SimulationConfig
from hairforge.simulation.geometry import HairGeometry
from hairforge.simulation.kernel_registry import KernelHandles, KernelRegistry
from hairforge.simulation.kernels import POSITION_BUFFERS, build_hair_program
from hairforge.simulation.state_store import SimulationStateStore

logger = logging.getLogger(__name__)


@dataclass
class FrameContext:
    """Transient per-frame inputs from the host."""
    time_step: float
    model_transform: Mat4 = field(default_factory=mat4_identity)
    model_rotation: Quat = field(default_factory=quat_identity)
    # Pin the hair to the head instead of simulating (e.g. while paused)
    frozen: bool = False

    def __post_init__(self) -> None:
        if self.time_step < 0.0:
            raise ValueError(f"time_step must be >= 0, got {self.time_step}")
        self.model_transform = np.asarray(self.model_transform, dtype=np.float64)
        self.model_rotation = np.asarray(self.model_rotation, dtype=np.float64)
        if self.model_transform.shape != (4, 4):
            raise ValueError(f"model_transform must be 4x4, got {self.model_transform.shape}")
        if self.model_rotation.shape != (4,):
            raise ValueError(f"model_rotation must be [x, y, z, w], got {self.model_rotation.shape}")


@dataclass
class FrameReport:
    frame: int
    dispatches: list[DispatchRecord]
    computation_time: float  # ms
    debug: Optional[np.ndarray] = None

    @property
    def kernel_order(self) -> list[str]:
        return [d.kernel for d in self.dispatches]


@dataclass
class SimulationContext:
    """Everything a frame needs, created by :func:`initialize_simulation`."""
    device: ComputeDevice
    program: ComputeProgram
    kernels: KernelHandles
    state: SimulationStateStore
    geometry: HairGeometry
    config: SimulationConfig
    prev_inverse_transform: Mat4 = field(default_factory=mat4_identity)
    computation_time: float = 0.0
    frame_count: int = 0
    last_debug: Optional[np.ndarray] = None
    destroyed: bool = False


def initialize_simulation(
    geometry: Optional[HairGeometry],
    rest_lengths,
    reference_vectors,
    vertex_offsets,
    head_collider: Optional[CapsuleCollider] = None,
    config: Optional[SimulationConfig] = None,
    program: Optional[ComputeProgram] = None,
) -> SimulationContext:
    """Resolve kernels and allocate the persistent state.

    Raises ``MissingDependency`` without geometry, ``KernelNotFoundError``
    if *program* lacks an entry point and ``AllocationError`` if the device
    runs out of memory.
    """
    if geometry is None:
        raise MissingDependency("Hair simulation needs strand geometry")
    config = (config or SimulationConfig()).validate()
    program = program or build_hair_program()
    kernels = KernelRegistry(program).resolve_all()

    device = geometry.positions.device
    state = SimulationStateStore()
    state.initialize(
        device,
        geometry.vertex_count,
        geometry.strand_count,
        rest_lengths,
        reference_vectors,
        vertex_offsets,
        head_collider,
    )

    prev_inverse = mat4_inverse(mat4_identity())
    program.set_floats("model_prev_inv_transform", mat4_to_float_array(prev_inverse))
    return SimulationContext(
        device=device,
        program=program,
        kernels=kernels,
        state=state,
        geometry=geometry,
        config=config,
        prev_inverse_transform=prev_inverse,
    )


def simulate_frame(context: SimulationContext, frame: FrameContext) -> FrameReport:
    """Run one simulation step.  Any dispatch failure propagates."""
    if context.destroyed:
        raise HairSimulationError("Simulation context has been destroyed")

    start = time.perf_counter()
    _bind_scalars(context, frame)
    _bind_buffers(context)
    dispatches = _dispatch_kernels(context, frame.frozen)

    debug = None
    if context.config.stages.debug_readback:
        debug = context.state.debug.get_data()
        context.last_debug = debug
    elapsed_ms = (time.perf_counter() - start) * 1000.0

    inverse = mat4_inverse(frame.model_transform)
    context.program.set_floats("model_prev_inv_transform", mat4_to_float_array(inverse))
    context.prev_inverse_transform = inverse

    context.computation_time = elapsed_ms
    context.frame_count += 1
    logger.debug(
        "Frame %d: %d dispatches in %.3f ms",
        context.frame_count, len(dispatches), elapsed_ms,
    )
    return FrameReport(
        frame=context.frame_count,
        dispatches=dispatches,
        computation_time=elapsed_ms,
        debug=debug,
    )


def destroy_simulation(context: SimulationContext) -> None:
    """Release every buffer the context owns.  Geometry stays with its owner."""
    if context.destroyed:
        return
    context.state.release()
    context.program.clear_bindings()
    context.destroyed = True
    logger.info("Hair simulation destroyed after %d frames", context.frame_count)


# ------------------------------------------------------------------
# Steps
# ------------------------------------------------------------------

def _bind_scalars(context: SimulationContext, frame: FrameContext) -> None:
    program = context.program
    cfg = context.config
    geom = context.geometry

    program.set_float("time_step", frame.time_step)
    program.set_int("num_strands", geom.strand_count)
    program.set_int("num_vertices", geom.vertex_count)
    program.set_int("vertices_per_strand", context.state.vertices_per_strand)
    program.set_floats("model_rotation", quat_to_float_array(frame.model_rotation))
    program.set_floats("model_transform", mat4_to_float_array(frame.model_transform))

    program.set_floats("gravity", cfg.gravity)
    program.set_floats("wind", cfg.wind)
    program.set_float("damping", cfg.damping)
    program.set_float("stiffness_global", cfg.stiffness_for_global_shape_matching)
    program.set_float("global_effective_range", cfg.global_shape_matching_effective_range)
    program.set_float("stiffness_local", cfg.stiffness_for_local_shape_matching)
    program.set_int("length_iterations", cfg.length_constraint_iterations)
    program.set_float("head_motion_compensation", cfg.head_motion_compensation)


def _bind_buffers(context: SimulationContext) -> None:
    program = context.program
    k = context.kernels
    state = context.state
    geom = context.geometry

    for handle in (k.integration_and_global_shape, k.local_shape,
                   k.length_and_wind, k.collision_and_tangents):
        program.set_buffer(handle, "vertex_offsets", state.vertex_offsets)

    program.set_buffer(k.local_shape, "global_rotations", state.global_rotations)
    program.set_buffer(k.local_shape, "local_rotations", state.local_rotations)
    program.set_buffer(k.local_shape, "reference_vectors", state.reference_vectors)
    program.set_buffer(k.local_shape, "debug", state.debug)

    program.set_buffer(k.length_and_wind, "rest_lengths", state.rest_lengths)

    program.set_buffer(k.collision_and_tangents, "tangents", geom.tangents)
    if context.config.stages.bind_collider and state.collider is not None:
        program.set_buffer(k.collision_and_tangents, "collider", state.collider)

    position_buffers = dict(zip(
        POSITION_BUFFERS,
        (geom.initial_positions, geom.positions, geom.previous_positions),
    ))
    for handle in k.all():
        for name, buf in position_buffers.items():
            program.set_buffer(handle, name, buf)


def _dispatch(
    context: SimulationContext, handle: KernelHandle, item_count: int,
) -> Optional[DispatchRecord]:
    spec = context.program.kernel_spec(handle)
    groups = thread_group_count(item_count, spec.items_per_group)
    if groups == 0:
        logger.debug("Skipping %s: no work", spec.name)
        return None
    return context.program.dispatch(handle, groups, 1, 1)


def _dispatch_kernels(context: SimulationContext, frozen: bool) -> list[DispatchRecord]:
    k = context.kernels
    stages = context.config.stages
    strands = context.geometry.strand_count

    if frozen or stages.skip_simulation:
        plan = [(k.skip_simulation, context.geometry.vertex_count)]
    else:
        plan = []
        if stages.integration_and_global_shape:
            plan.append((k.integration_and_global_shape, strands))
        if stages.local_shape:
            plan.append((k.local_shape, strands))
        if stages.length_and_wind:
            plan.append((k.length_and_wind, strands))
        if stages.collision_and_tangents:
            plan.append((k.collision_and_tangents, strands))

    records = []
    for handle, count in plan:
        record = _dispatch(context, handle, count)
        if record is not None:
            records.append(record)
    return records
