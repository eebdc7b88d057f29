"""Physical behaviour of the hair kernels over whole frames.

Expected values for the single-strand scenario were worked out by hand:
with h = g * dt^2, one frame of the default pipeline leaves the tip of a
straight 4-vertex strand at -1.08125 h, while the same strand without
damping or global shape matching reaches -1.15625 h.
"""

import numpy as np
import pytest

from hairforge.compute.buffer import ComputeDevice
from hairforge.core.math_utils import (
    mat4_compose, mat4_from_quaternion, mat4_translation, quat_from_axis_angle, vec3,
)
from hairforge.simulation.collider import CapsuleCollider
from hairforge.simulation.config import PipelineStages, SimulationConfig
from hairforge.simulation.geometry import HairGeometry
from hairforge.simulation.orchestrator import (
    FrameContext, initialize_simulation, simulate_frame,
)
from hairforge.simulation.rest_pose import build_rest_data

DT = 1.0 / 60.0
H = 9.8 * DT * DT


def _straight(strand_count=1, vps=4, segment=0.1):
    pose = np.zeros((strand_count, vps, 3))
    pose[:, :, 0] = np.arange(vps) * segment
    pose[:, :, 2] = np.arange(strand_count)[:, np.newaxis] * 0.05
    return pose


def _curled(strand_count=3, vps=6):
    t = np.linspace(0.0, 1.2, vps)
    pose = np.zeros((strand_count, vps, 3))
    pose[:, :, 0] = 0.3 * np.sin(t)
    pose[:, :, 1] = 0.3 * (1.0 - np.cos(t))
    pose[:, :, 2] = np.arange(strand_count)[:, np.newaxis] * 0.05
    return pose


def _context(strands, config, collider=None):
    geometry = HairGeometry.from_strands(ComputeDevice(), strands)
    rest = build_rest_data(strands)
    return initialize_simulation(
        geometry, rest.rest_lengths, rest.reference_vectors, rest.vertex_offsets,
        head_collider=collider, config=config,
    )


def _step(ctx, dt=DT, model=None, rotation=None):
    kwargs = {}
    if model is not None:
        kwargs["model_transform"] = model
    if rotation is not None:
        kwargs["model_rotation"] = rotation
    return simulate_frame(ctx, FrameContext(time_step=dt, **kwargs))


def _baseline_config():
    return SimulationConfig(stiffness_for_global_shape_matching=0.0, damping=0.0)


class TestIntegration:
    def test_free_fall_closed_form(self):
        cfg = SimulationConfig(
            stiffness_for_global_shape_matching=0.0,
            damping=0.0,
            stages=PipelineStages(local_shape=False),
        )
        strands = _straight(2, 5)
        ctx = _context(strands, cfg)
        rest = strands.reshape(-1, 3)
        for n in range(1, 11):
            _step(ctx)
            pos = ctx.geometry.read_positions()
            free = np.arange(len(rest)) % 5 != 0
            expected_y = -H * n * (n + 1) / 2.0
            np.testing.assert_allclose(pos[free, 1], expected_y, rtol=1e-4)
            np.testing.assert_allclose(pos[:, [0, 2]], rest[:, [0, 2]], atol=1e-6)
            np.testing.assert_allclose(pos[~free], rest[~free], atol=1e-7)

    def test_zero_time_step_suppresses_inertia(self):
        cfg = SimulationConfig(
            stiffness_for_global_shape_matching=0.0,
            damping=0.0,
            stages=PipelineStages(local_shape=False),
        )
        ctx = _context(_straight(), cfg)
        _step(ctx)
        after_one = ctx.geometry.read_positions()
        _step(ctx, dt=0.0)
        np.testing.assert_allclose(ctx.geometry.read_positions(), after_one, atol=1e-7)

    def test_damping_slows_fall(self):
        cfg = SimulationConfig(
            stiffness_for_global_shape_matching=0.0,
            damping=0.5,
            stages=PipelineStages(local_shape=False),
        )
        ctx = _context(_straight(), cfg)
        _step(ctx)
        _step(ctx)
        # Second frame: -h + 0.5 * (-h) - h
        tip = ctx.geometry.read_positions()[3]
        assert tip[1] == pytest.approx(-2.5 * H, rel=1e-4)


class TestShapeConstraints:
    def test_rest_pose_is_fixed_point(self):
        cfg = SimulationConfig(
            stiffness_for_global_shape_matching=1.0,
            stiffness_for_local_shape_matching=1.0,
            damping=0.0,
            gravity=(0.0, 0.0, 0.0),
        )
        strands = _curled()
        ctx = _context(strands, cfg)
        for _ in range(5):
            _step(ctx, dt=0.0)
        np.testing.assert_allclose(ctx.geometry.read_positions(), strands.reshape(-1, 3),
                                   atol=1e-6)

    def test_single_strand_scenario(self):
        ctx = _context(_straight(), SimulationConfig())
        base = _context(_straight(), _baseline_config())
        _step(ctx)
        _step(base)

        pos = ctx.geometry.read_positions()
        np.testing.assert_allclose(pos[0], [0, 0, 0], atol=1e-7)
        assert pos[3, 1] == pytest.approx(-1.08125 * H, rel=1e-3)
        assert base.geometry.read_positions()[3, 1] == pytest.approx(-1.15625 * H, rel=1e-3)

    def test_constrained_strand_stays_closer_to_rest(self):
        strands = _straight()
        rest = strands.reshape(-1, 3)
        ctx = _context(strands, SimulationConfig())
        base = _context(strands, _baseline_config())
        for _ in range(3):
            _step(ctx)
            _step(base)
            moved = np.linalg.norm(ctx.geometry.read_positions()[3] - rest[3])
            moved_base = np.linalg.norm(base.geometry.read_positions()[3] - rest[3])
            assert moved < moved_base

    def test_global_matching_range(self):
        cfg = SimulationConfig(
            stiffness_for_global_shape_matching=1.0,
            global_shape_matching_effective_range=0.5,
            stages=PipelineStages(local_shape=False),
        )
        strands = _straight(1, 6)
        ctx = _context(strands, cfg)
        _step(ctx)
        pos = ctx.geometry.read_positions()
        rest = strands.reshape(-1, 3)
        # First half snaps back to rest, second half falls
        np.testing.assert_allclose(pos[:3], rest[:3], atol=1e-7)
        np.testing.assert_allclose(pos[3:, 1], -H, rtol=1e-4)

    def test_rotations_stay_unit_length(self):
        ctx = _context(_curled(), SimulationConfig())
        for i in range(10):
            q = quat_from_axis_angle(vec3(0, 1, 0), 0.2 * i)
            _step(ctx, model=mat4_from_quaternion(q), rotation=q)
            for buf in (ctx.state.global_rotations, ctx.state.local_rotations):
                np.testing.assert_allclose(np.linalg.norm(buf.data, axis=1), 1.0, atol=1e-5)

    def test_root_frame_is_model_rotation(self):
        ctx = _context(_curled(), SimulationConfig())
        q = quat_from_axis_angle(vec3(0, 0, 1), 0.4)
        _step(ctx, model=mat4_from_quaternion(q), rotation=q)
        roots = ctx.state.global_rotations.data[0::6]
        np.testing.assert_allclose(roots, np.tile(q, (3, 1)), atol=1e-6)

    def test_roots_follow_head(self):
        q = quat_from_axis_angle(vec3(0, 1, 0), 0.7)
        m = mat4_compose(vec3(0, 1.5, 0), q, vec3(1, 1, 1))
        strands = _curled()
        ctx = _context(strands, SimulationConfig())
        _step(ctx, model=m, rotation=q)
        roots = strands[:, 0]
        expected = roots @ m[:3, :3].T + m[:3, 3]
        np.testing.assert_allclose(ctx.geometry.read_positions()[0::6], expected, atol=1e-6)


def _length_only(**kwargs):
    return SimulationConfig(
        stages=PipelineStages(
            integration_and_global_shape=False,
            local_shape=False,
            length_and_wind=True,
            collision_and_tangents=False,
        ),
        **kwargs,
    )


class TestLengthAndWind:
    def test_length_constraints_restore_rest_lengths(self):
        strands = _straight(2, 4)
        ctx = _context(strands, _length_only(length_constraint_iterations=100))
        stretched = (strands * 1.5).reshape(-1, 3)
        ctx.geometry.positions.set_data(stretched)
        _step(ctx)
        pos = ctx.geometry.read_positions().reshape(2, 4, 3)
        lengths = np.linalg.norm(np.diff(pos, axis=1), axis=2)
        np.testing.assert_allclose(lengths, 0.1, atol=1e-5)
        np.testing.assert_allclose(pos[:, 0], stretched.reshape(2, 4, 3)[:, 0], atol=1e-7)

    def test_zero_iterations_leave_positions(self):
        strands = _straight()
        ctx = _context(strands, _length_only(length_constraint_iterations=0))
        stretched = (strands * 1.5).reshape(-1, 3)
        ctx.geometry.positions.set_data(stretched)
        _step(ctx)
        np.testing.assert_allclose(ctx.geometry.read_positions(), stretched, atol=1e-7)

    def test_crosswind_pushes_free_vertices(self):
        ctx = _context(_straight(), _length_only(length_constraint_iterations=0,
                                                 wind=(0.0, 0.0, 10.0)))
        _step(ctx)
        pos = ctx.geometry.read_positions()
        assert pos[0, 2] == 0.0
        np.testing.assert_allclose(pos[1:, 2], 10.0 * DT * DT, rtol=1e-5)

    def test_wind_along_strand_has_no_effect(self):
        strands = _straight()
        ctx = _context(strands, _length_only(length_constraint_iterations=0,
                                             wind=(10.0, 0.0, 0.0)))
        _step(ctx)
        np.testing.assert_allclose(ctx.geometry.read_positions(), strands.reshape(-1, 3), atol=1e-7)


class TestCollisionAndTangents:
    def _inward_strand(self):
        # Root outside the capsule, strand pointing at its axis
        pose = np.zeros((1, 4, 3))
        pose[0, :, 0] = [0.6, 0.5, 0.4, 0.3]
        return pose

    def _config(self, bind):
        return SimulationConfig(stages=PipelineStages(
            integration_and_global_shape=False,
            local_shape=False,
            bind_collider=bind,
        ))

    def test_vertices_pushed_out_of_capsule(self):
        cap = CapsuleCollider(start=vec3(0, -0.3, 0), end=vec3(0, 0.3, 0), radius=0.5)
        ctx = _context(self._inward_strand(), self._config(True), cap)
        _step(ctx)
        pos = ctx.geometry.read_positions()
        np.testing.assert_allclose(pos[:, 0], [0.6, 0.5, 0.5, 0.5], atol=1e-6)

    def test_unbound_collider_is_ignored(self):
        cap = CapsuleCollider(start=vec3(0, -0.3, 0), end=vec3(0, 0.3, 0), radius=0.5)
        strands = self._inward_strand()
        ctx = _context(strands, self._config(False), cap)
        _step(ctx)
        np.testing.assert_allclose(ctx.geometry.read_positions(), strands.reshape(-1, 3), atol=1e-7)

    def test_collider_follows_head(self):
        cap = CapsuleCollider(start=vec3(0, -0.3, 0), end=vec3(0, 0.3, 0), radius=0.5)
        strands = self._inward_strand() + np.array([2.0, 0.0, 0.0])
        ctx = _context(strands, self._config(True), cap)
        _step(ctx, model=mat4_translation(2, 0, 0))
        np.testing.assert_allclose(ctx.geometry.read_positions()[:, 0],
                                   [2.6, 2.5, 2.5, 2.5], atol=1e-6)

    def test_tangents(self):
        strands = _curled(1, 5)
        ctx = _context(strands, self._config(False))
        _step(ctx)
        tangents = ctx.geometry.read_tangents()
        edges = np.diff(strands[0], axis=0)
        expected = edges / np.linalg.norm(edges, axis=1, keepdims=True)
        np.testing.assert_allclose(tangents[:4], expected, atol=1e-6)
        np.testing.assert_allclose(tangents[4], tangents[3])


class TestHeadMotionCompensation:
    def _config(self, compensation):
        return SimulationConfig(
            stiffness_for_global_shape_matching=0.0,
            damping=0.0,
            gravity=(0.0, 0.0, 0.0),
            head_motion_compensation=compensation,
            stages=PipelineStages(local_shape=False),
        )

    def test_full_compensation_moves_strand_rigidly(self):
        strands = _straight()
        rest = strands.reshape(-1, 3)
        ctx = _context(strands, self._config(1.0))
        _step(ctx)
        moved = mat4_translation(1, 0, 0)
        _step(ctx, model=moved)
        np.testing.assert_allclose(ctx.geometry.read_positions(), rest + [1, 0, 0], atol=1e-6)
        # No velocity left over from the head's jump
        _step(ctx, model=moved)
        np.testing.assert_allclose(ctx.geometry.read_positions(), rest + [1, 0, 0], atol=1e-6)

    def test_without_compensation_only_roots_follow(self):
        strands = _straight()
        rest = strands.reshape(-1, 3)
        ctx = _context(strands, self._config(0.0))
        _step(ctx)
        _step(ctx, model=mat4_translation(1, 0, 0))
        pos = ctx.geometry.read_positions()
        np.testing.assert_allclose(pos[0], rest[0] + [1, 0, 0], atol=1e-6)
        np.testing.assert_allclose(pos[1:], rest[1:], atol=1e-6)
