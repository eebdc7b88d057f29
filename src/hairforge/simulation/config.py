"""Simulation configuration: physical parameters and pipeline stage switches."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any

from hairforge.constants import DEFAULT_GRAVITY


@dataclass
class PipelineStages:
    """Which kernels the orchestrator dispatches each frame.

    Defaults reproduce the reference dispatch set: integration + global
    shape, local shape, collision + tangents.  Length/wind is defined but
    off, the skip kernel is only used when simulation is frozen, and the
    head collider is not bound.
    """
    integration_and_global_shape: bool = True
    local_shape: bool = True
    length_and_wind: bool = False
    collision_and_tangents: bool = True
    skip_simulation: bool = False
    bind_collider: bool = False
    # Per-frame GPU->host copy of the debug buffer; forces a sync point
    debug_readback: bool = False


# Original camelCase option names -> field names
_KEY_MAP = {
    "stiffnessForGlobalShapeMatching": "stiffness_for_global_shape_matching",
    "globalShapeMatchingEffectiveRange": "global_shape_matching_effective_range",
    "damping": "damping",
    "stiffnessForLocalShapeMatching": "stiffness_for_local_shape_matching",
    "lengthConstraintIterations": "length_constraint_iterations",
    "headMotionCompensation": "head_motion_compensation",
}

_UNIT_RANGE_FIELDS = (
    "stiffness_for_global_shape_matching",
    "global_shape_matching_effective_range",
    "damping",
    "stiffness_for_local_shape_matching",
    "head_motion_compensation",
)


@dataclass
class SimulationConfig:
    """Tunable parameters of the hair simulation.  All factors are in [0, 1]."""
    stiffness_for_global_shape_matching: float = 0.8
    global_shape_matching_effective_range: float = 0.5
    damping: float = 0.5

    stiffness_for_local_shape_matching: float = 0.5
    gravity: tuple[float, float, float] = DEFAULT_GRAVITY
    wind: tuple[float, float, float] = (0.0, 0.0, 0.0)
    length_constraint_iterations: int = 1
    head_motion_compensation: float = 0.0

    stages: PipelineStages = field(default_factory=PipelineStages)

    def validate(self) -> "SimulationConfig":
        """Raise ``ValueError`` for any out-of-range option; returns self."""
        for name in _UNIT_RANGE_FIELDS:
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if self.length_constraint_iterations < 0:
            raise ValueError(
                f"length_constraint_iterations must be >= 0, "
                f"got {self.length_constraint_iterations}"
            )
        for name in ("gravity", "wind"):
            if len(getattr(self, name)) != 3:
                raise ValueError(f"{name} must have 3 components")
        return self

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SimulationConfig":
        """Build from a dict with snake_case or original camelCase keys.

        Unknown keys raise ``ValueError`` so typos do not pass silently.
        """
        known = {f.name for f in fields(cls)}
        stage_names = {f.name for f in fields(PipelineStages)}
        kwargs: dict[str, Any] = {}
        stages: dict[str, bool] = {}
        for key, value in data.items():
            name = _KEY_MAP.get(key, key)
            if name == "stages":
                for stage_key, enabled in dict(value).items():
                    if stage_key not in stage_names:
                        raise ValueError(f"Unknown pipeline stage '{stage_key}'")
                    stages[stage_key] = bool(enabled)
            elif name in known:
                if name in ("gravity", "wind"):
                    value = tuple(float(v) for v in value)
                kwargs[name] = value
            else:
                raise ValueError(f"Unknown simulation option '{key}'")
        return cls(stages=PipelineStages(**stages), **kwargs).validate()

    def to_dict(self) -> dict[str, Any]:
        out = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "stages"}
        out["gravity"] = list(self.gravity)
        out["wind"] = list(self.wind)
        out["stages"] = {f.name: getattr(self.stages, f.name) for f in fields(PipelineStages)}
        return out
