"""Tests for the scene-attached HairSimulation component."""

import numpy as np
import pytest

from hairforge.compute.buffer import ComputeDevice
from hairforge.compute.program import ComputeProgram
from hairforge.core.events import EventBus, EventType
from hairforge.core.scene_graph import SceneNode
from hairforge.simulation.geometry import HairGeometry
from hairforge.simulation.hair_simulation import HairSimulation
from hairforge.simulation.kernels import hair_kernel_specs
from hairforge.simulation.rest_pose import build_rest_data


def _strands(strand_count=3, vps=4):
    pose = np.zeros((strand_count, vps, 3))
    pose[:, :, 0] = np.arange(vps) * 0.1
    pose[:, :, 2] = np.arange(strand_count)[:, np.newaxis] * 0.05
    return pose


class _Recorder:
    def __init__(self, bus):
        self.events = []
        for event_type in EventType:
            bus.subscribe(event_type, self._handler(event_type))

    def _handler(self, event_type):
        return lambda **kw: self.events.append((event_type, kw))

    def types(self):
        return [e for e, _ in self.events]


def _make(geometry=True, device=None, program=None):
    strands = _strands()
    rest = build_rest_data(strands)
    geom = HairGeometry.from_strands(device or ComputeDevice(), strands) if geometry else None
    bus = EventBus()
    recorder = _Recorder(bus)
    sim = HairSimulation(SceneNode(name="head"), geom, event_bus=bus, program=program)
    return sim, rest, recorder


def _init(sim, rest):
    return sim.initialize(rest.rest_lengths, rest.reference_vectors, rest.vertex_offsets)


class TestInitialize:
    def test_enabled(self):
        sim, rest, rec = _make()
        assert _init(sim, rest)
        assert sim.enabled
        assert rec.events == [
            (EventType.SIMULATION_INITIALIZED, {"vertex_count": 12, "strand_count": 3}),
        ]

    def test_missing_geometry_disables(self):
        sim, rest, rec = _make(geometry=False)
        assert not _init(sim, rest)
        assert not sim.enabled
        assert rec.types() == [EventType.SIMULATION_DISABLED]
        assert "missing dependency" in rec.events[0][1]["reason"]
        assert sim.update(1 / 60) is None

    def test_missing_kernel_disables(self):
        program = ComputeProgram(
            [s for s in hair_kernel_specs() if s.name != "CollisionAndTangents"]
        )
        sim, rest, rec = _make(program=program)
        assert not _init(sim, rest)
        assert "CollisionAndTangents" in rec.events[0][1]["reason"]

    def test_allocation_failure_disables(self):
        # Geometry fits (4 x 144 bytes), simulation state does not
        sim, rest, rec = _make(device=ComputeDevice(memory_limit_bytes=600))
        assert not _init(sim, rest)
        assert "allocation failed" in rec.events[0][1]["reason"]

    def test_initialize_twice(self):
        sim, rest, _ = _make()
        _init(sim, rest)
        with pytest.raises(RuntimeError):
            _init(sim, rest)


class TestUpdate:
    def test_update_publishes_frame(self):
        sim, rest, rec = _make()
        _init(sim, rest)
        report = sim.update(1 / 60)
        assert report.kernel_order == [
            "IntegrationAndGlobalShapeConstraints",
            "LocalShapeConstraints",
            "CollisionAndTangents",
        ]
        assert sim.last_report is report
        assert rec.types()[-1] == EventType.FRAME_SIMULATED
        assert rec.events[-1][1]["frame"] == 1
        assert sim.computation_time == report.computation_time

    def test_update_uses_clock(self):
        sim, rest, _ = _make()
        _init(sim, rest)
        assert sim.update() is not None
        assert sim.update() is not None
        assert sim.context.frame_count == 2

    def test_node_transform_drives_roots(self):
        sim, rest, _ = _make()
        _init(sim, rest)
        sim.node.set_position(0, 1, 0)
        sim.update(1 / 60)
        roots = sim.geometry.read_positions()[0::4]
        np.testing.assert_allclose(roots, _strands()[:, 0] + [0, 1, 0], atol=1e-6)

    def test_paused_clock_freezes_hair(self):
        sim, rest, _ = _make()
        _init(sim, rest)
        sim.clock.pause()
        sim.node.set_position(0, 2, 0)
        report = sim.update(1 / 60)
        assert report.kernel_order == ["SkipSimulateHair"]
        np.testing.assert_allclose(sim.geometry.read_positions(),
                                   _strands().reshape(-1, 3) + [0, 2, 0], atol=1e-6)
        # Pausing does not change the configured stages
        sim.clock.resume()
        assert len(sim.update(1 / 60).dispatches) == 3


class TestDestroy:
    def test_context_manager(self):
        sim, rest, rec = _make()
        with sim:
            _init(sim, rest)
            sim.update(1 / 60)
        assert sim.context is None
        assert not sim.enabled
        assert rec.types()[-1] == EventType.SIMULATION_DESTROYED
        assert sim.computation_time == 0.0
        # Geometry belongs to the caller
        assert not sim.geometry.positions.released

    def test_destroy_without_initialize(self):
        sim, _, rec = _make()
        sim.destroy()
        assert rec.events == []
