"""Exception types raised by the hair simulation."""


class HairSimulationError(RuntimeError):
    """Base class for simulation failures."""


class MissingDependency(HairSimulationError):
    """A required companion component (e.g. the strand geometry) is absent."""


class KernelNotFoundError(HairSimulationError):
    """The compute program has no entry point with the requested name."""

    def __init__(self, name: str):
        super().__init__(f"Kernel '{name}' not found in compute program")
        self.name = name


class AllocationError(HairSimulationError):
    """The device could not satisfy a buffer allocation."""


class DispatchError(HairSimulationError):
    """A kernel dispatch failed (unbound resource, bad group count, device fault)."""
