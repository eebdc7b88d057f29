"""Shared constants and paths for HairForge."""

from pathlib import Path

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
ASSETS_DIR = PROJECT_ROOT / "assets"
CONFIG_DIR = ASSETS_DIR / "config"
DEFAULT_CONFIG_NAME = "hair_simulation.json"

# Animation defaults
TARGET_FPS = 60
MAX_DELTA_TIME = 0.1  # Clamp dt to avoid large jumps

# Compute dispatch layout
THREAD_GROUP_SIZE = 64
# Vertex-parallel strand kernels run one thread per vertex; a group of
# THREAD_GROUP_SIZE threads covers two strands of the reference asset.
STRANDS_PER_VERTEX_GROUP = 2
# Local shape constraints run one thread per strand.
STRANDS_PER_STRAND_GROUP = THREAD_GROUP_SIZE

# Kernel entry points of the hair simulation program
KERNEL_INTEGRATION_AND_GLOBAL_SHAPE = "IntegrationAndGlobalShapeConstraints"
KERNEL_LOCAL_SHAPE = "LocalShapeConstraints"
KERNEL_LENGTH_AND_WIND = "LengthConstraintsAndWind"
KERNEL_COLLISION_AND_TANGENTS = "CollisionAndTangents"
KERNEL_SKIP_SIMULATION = "SkipSimulateHair"

# Element strides in bytes (float32 / int32 components)
STRIDE_SCALAR = 4
STRIDE_VEC3 = 12
STRIDE_QUAT = 16
STRIDE_CAPSULE = 32

# Physics defaults
DEFAULT_GRAVITY = (0.0, -9.8, 0.0)
QUAT_EPSILON = 1e-6
