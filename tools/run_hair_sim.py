"""Headless hair simulation run for quick diagnostics.

Builds a synthetic scalp of straight strands hanging off a sphere,
optionally swings the head, and logs per-frame computation time and tip
displacement.  No rendering.

Usage::

    python tools/run_hair_sim.py --strands 256 --vertices 16 --frames 120
    python tools/run_hair_sim.py --swing 0.6 --collider --debug-readback
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np

from hairforge.compute.buffer import ComputeDevice
from hairforge.core.config_loader import load_simulation_config
from hairforge.core.math_utils import quat_from_axis_angle, vec3
from hairforge.core.scene_graph import SceneNode
from hairforge.simulation.collider import CapsuleCollider
from hairforge.simulation.geometry import HairGeometry
from hairforge.simulation.hair_simulation import HairSimulation
from hairforge.simulation.rest_pose import build_rest_data

logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    frames: int
    mean_computation_time: float  # ms
    max_tip_displacement: float
    enabled: bool


def make_scalp_strands(
    strand_count: int,
    vertices_per_strand: int,
    head_radius: float = 1.0,
    segment_length: float = 0.1,
    seed: int = 0,
) -> np.ndarray:
    """Straight strands growing outward from the upper half of a sphere."""
    rng = np.random.default_rng(seed)
    # Upper hemisphere directions
    d = rng.normal(size=(strand_count, 3))
    d[:, 1] = np.abs(d[:, 1]) + 0.2
    d /= np.maximum(np.linalg.norm(d, axis=1, keepdims=True), 1e-9)

    roots = d * head_radius
    steps = np.arange(vertices_per_strand, dtype=np.float64) * segment_length
    return roots[:, np.newaxis, :] + d[:, np.newaxis, :] * steps[np.newaxis, :, np.newaxis]


def run(
    strand_count: int = 128,
    vertices_per_strand: int = 16,
    frames: int = 60,
    dt: float = 1.0 / 60.0,
    swing: float = 0.0,
    collider: bool = False,
    debug_readback: bool = False,
    config_path: Optional[Path] = None,
) -> RunSummary:
    config = load_simulation_config(config_path)
    config.stages.bind_collider = collider
    config.stages.debug_readback = debug_readback

    strands = make_scalp_strands(strand_count, vertices_per_strand)
    rest = build_rest_data(strands)
    device = ComputeDevice()
    geometry = HairGeometry.from_strands(device, strands)
    head = SceneNode(name="head")
    capsule = CapsuleCollider(start=vec3(0, -0.3, 0), end=vec3(0, 0.3, 0), radius=0.65)

    rest_positions = strands.reshape(-1, 3)
    tips = np.arange(vertices_per_strand - 1, len(rest_positions), vertices_per_strand)
    times = []
    max_tip = 0.0

    with HairSimulation(head, geometry, config) as sim:
        if not sim.initialize(rest.rest_lengths, rest.reference_vectors,
                              rest.vertex_offsets, capsule):
            geometry.release()
            return RunSummary(frames=0, mean_computation_time=0.0,
                              max_tip_displacement=0.0, enabled=False)

        for i in range(frames):
            if swing:
                angle = swing * np.sin(2.0 * np.pi * i * dt)
                head.set_quaternion(quat_from_axis_angle(vec3(0, 1, 0), angle))
            report = sim.update(dt)
            times.append(report.computation_time)

            if len(tips):
                positions = geometry.read_positions()
                disp = np.linalg.norm(positions[tips] - rest_positions[tips], axis=1)
                max_tip = max(max_tip, float(disp.max()))
            logger.debug("frame %d: %.3f ms", report.frame, report.computation_time)

    geometry.release()
    summary = RunSummary(
        frames=frames,
        mean_computation_time=float(np.mean(times)) if times else 0.0,
        max_tip_displacement=max_tip,
        enabled=True,
    )
    logger.info(
        "%d frames, %d strands x %d vertices: %.3f ms/frame, max tip displacement %.4f",
        summary.frames, strand_count, vertices_per_strand,
        summary.mean_computation_time, summary.max_tip_displacement,
    )
    return summary


def main():
    parser = argparse.ArgumentParser(description="Headless hair simulation run")
    parser.add_argument("--strands", type=int, default=128, help="Number of strands")
    parser.add_argument("--vertices", type=int, default=16, help="Vertices per strand")
    parser.add_argument("--frames", type=int, default=60, help="Frames to simulate")
    parser.add_argument("--dt", type=float, default=1.0 / 60.0, help="Time step (s)")
    parser.add_argument("--swing", type=float, default=0.0,
                        help="Head yaw swing amplitude (radians)")
    parser.add_argument("--collider", action="store_true", help="Bind the head capsule")
    parser.add_argument("--debug-readback", action="store_true",
                        help="Read the debug buffer back every frame")
    parser.add_argument("--config", type=str, help="Simulation config JSON")
    parser.add_argument("-v", "--verbose", action="store_true", help="Per-frame logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(name)s: %(message)s",
    )
    run(
        strand_count=args.strands,
        vertices_per_strand=args.vertices,
        frames=args.frames,
        dt=args.dt,
        swing=args.swing,
        collider=args.collider,
        debug_readback=args.debug_readback,
        config_path=Path(args.config) if args.config else None,
    )


if __name__ == "__main__":
    main()
