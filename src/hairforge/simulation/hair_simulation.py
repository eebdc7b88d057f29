"""Hair simulation component attached to a scene node.

Owns a :class:`SimulationContext` for the lifetime of the component.
Initialisation failures disable the component instead of propagating:
hair is a cosmetic feature and the host keeps running without it.
"""

from __future__ import annotations

import logging
from typing import Optional

from hairforge.compute.program import ComputeProgram
from hairforge.core.clock import FrameClock
from hairforge.core.errors import AllocationError, KernelNotFoundError, MissingDependency
from hairforge.core.events import EventBus, EventType
from hairforge.core.scene_graph import SceneNode
from hairforge.simulation.collider import CapsuleCollider
from hairforge.simulation.config import SimulationConfig
from hairforge.simulation.geometry import HairGeometry
from hairforge.simulation.orchestrator import (
    FrameContext,
    FrameReport,
    SimulationContext,
    destroy_simulation,
    initialize_simulation,
    simulate_frame,
)

logger = logging.getLogger(__name__)


class HairSimulation:
    """Drives the hair of one object from its scene node's transform.

    Usage::

        with HairSimulation(head_node, geometry, config) as sim:
            sim.initialize(rest.rest_lengths, rest.reference_vectors,
                           rest.vertex_offsets, collider)
            while running:
                sim.update(dt)
    """

    def __init__(
        self,
        node: SceneNode,
        geometry: Optional[HairGeometry],
        config: Optional[SimulationConfig] = None,
        event_bus: Optional[EventBus] = None,
        program: Optional[ComputeProgram] = None,
    ) -> None:
        self.node = node
        self.geometry = geometry
        self.config = config or SimulationConfig()
        self.event_bus = event_bus
        self._program = program
        self.clock = FrameClock()
        self.context: Optional[SimulationContext] = None
        self.enabled: bool = False
        self.last_report: Optional[FrameReport] = None

    @property
    def computation_time(self) -> float:
        """Milliseconds spent in the last frame's dispatch sequence."""
        return self.context.computation_time if self.context is not None else 0.0

    def initialize(
        self,
        rest_lengths,
        reference_vectors,
        vertex_offsets,
        head_collider: Optional[CapsuleCollider] = None,
    ) -> bool:
        """Set up kernels and buffers.  Returns False if the feature is disabled."""
        if self.context is not None:
            raise RuntimeError("HairSimulation is already initialized")
        try:
            self.context = initialize_simulation(
                self.geometry,
                rest_lengths,
                reference_vectors,
                vertex_offsets,
                head_collider=head_collider,
                config=self.config,
                program=self._program,
            )
        except MissingDependency as exc:
            self._disable(f"missing dependency: {exc}")
            return False
        except KernelNotFoundError as exc:
            self._disable(f"kernel not found: {exc.name}")
            return False
        except AllocationError as exc:
            self._disable(f"allocation failed: {exc}")
            return False

        self.enabled = True
        self.clock.reset()
        logger.info("Hair simulation enabled on '%s'", self.node.name)
        if self.event_bus is not None:
            self.event_bus.publish(
                EventType.SIMULATION_INITIALIZED,
                vertex_count=self.geometry.vertex_count,
                strand_count=self.geometry.strand_count,
            )
        return True

    def update(self, dt: Optional[float] = None) -> Optional[FrameReport]:
        """Simulate one frame.  *dt* defaults to the time since the last update."""
        if not self.enabled or self.context is None:
            return None
        if dt is None:
            dt = self.clock.get_delta()

        frame = FrameContext(
            time_step=dt,
            model_transform=self.node.local_to_world_matrix(),
            model_rotation=self.node.get_world_quaternion(),
            frozen=self.clock.paused,
        )
        report = simulate_frame(self.context, frame)
        self.last_report = report
        if self.event_bus is not None:
            self.event_bus.publish(
                EventType.FRAME_SIMULATED,
                frame=report.frame,
                computation_time=report.computation_time,
            )
        return report

    def destroy(self) -> None:
        if self.context is not None:
            destroy_simulation(self.context)
            self.context = None
            if self.event_bus is not None:
                self.event_bus.publish(EventType.SIMULATION_DESTROYED)
        self.enabled = False

    def _disable(self, reason: str) -> None:
        self.enabled = False
        logger.error("Hair simulation on '%s' disabled: %s", self.node.name, reason)
        if self.event_bus is not None:
            self.event_bus.publish(EventType.SIMULATION_DISABLED, reason=reason)

    def __enter__(self) -> "HairSimulation":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.destroy()
