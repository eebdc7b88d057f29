"""Resolution of the hair simulation entry points."""

import logging
from dataclasses import dataclass

from hairforge.compute.program import ComputeProgram, KernelHandle
from hairforge.constants import (
    KERNEL_COLLISION_AND_TANGENTS,
    KERNEL_INTEGRATION_AND_GLOBAL_SHAPE,
    KERNEL_LENGTH_AND_WIND,
    KERNEL_LOCAL_SHAPE,
    KERNEL_SKIP_SIMULATION,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KernelHandles:
    """The five resolved kernels, fixed for the simulation's lifetime."""
    integration_and_global_shape: KernelHandle
    local_shape: KernelHandle
    length_and_wind: KernelHandle
    collision_and_tangents: KernelHandle
    skip_simulation: KernelHandle

    def all(self) -> tuple[KernelHandle, ...]:
        return (
            self.skip_simulation,
            self.integration_and_global_shape,
            self.local_shape,
            self.length_and_wind,
            self.collision_and_tangents,
        )


class KernelRegistry:
    """Looks kernels up by name once and hands out the cached handles."""

    REQUIRED = {
        "integration_and_global_shape": KERNEL_INTEGRATION_AND_GLOBAL_SHAPE,
        "local_shape": KERNEL_LOCAL_SHAPE,
        "length_and_wind": KERNEL_LENGTH_AND_WIND,
        "collision_and_tangents": KERNEL_COLLISION_AND_TANGENTS,
        "skip_simulation": KERNEL_SKIP_SIMULATION,
    }

    def __init__(self, program: ComputeProgram) -> None:
        self.program = program
        self._cache: dict[str, KernelHandle] = {}

    def resolve(self, name: str) -> KernelHandle:
        """Handle for entry point *name*; raises ``KernelNotFoundError``."""
        handle = self._cache.get(name)
        if handle is None:
            handle = self.program.find_kernel(name)
            self._cache[name] = handle
        return handle

    def resolve_all(self) -> KernelHandles:
        handles = KernelHandles(**{
            field: self.resolve(entry) for field, entry in self.REQUIRED.items()
        })
        logger.info("Resolved %d hair simulation kernels", len(self.REQUIRED))
        return handles
