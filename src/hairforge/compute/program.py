"""Compute program: named kernels, resource binding and dispatch.

Mirrors the usual GPU compute workflow.  Kernels are looked up by entry
point name once, uniforms are set program-wide, buffers are bound per
kernel, and :meth:`ComputeProgram.dispatch` runs one kernel over a grid of
thread groups.  Dispatches execute synchronously in call order, so every
dispatch sees the completed writes of all earlier ones.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

import numpy as np

from hairforge.compute.buffer import ComputeBuffer
from hairforge.core.errors import DispatchError, KernelNotFoundError

logger = logging.getLogger(__name__)

WORK_UNIT_STRAND = "strand"
WORK_UNIT_VERTEX = "vertex"


def thread_group_count(item_count: int, items_per_group: int) -> int:
    """Number of groups needed so every item is processed exactly once.

    Kernels must pair this with a bounds check (see
    :meth:`KernelInvocation.work_items`); together they never drop the
    remainder when *item_count* is not a multiple of *items_per_group*.
    """
    if items_per_group <= 0:
        raise ValueError(f"items_per_group must be positive, got {items_per_group}")
    if item_count < 0:
        raise ValueError(f"item_count must be non-negative, got {item_count}")
    return (item_count + items_per_group - 1) // items_per_group


@dataclass(frozen=True)
class KernelSpec:
    """Declaration of a kernel entry point and the resources it reads."""
    name: str
    function: Callable[["KernelInvocation"], np.ndarray]
    work_unit: str = WORK_UNIT_STRAND
    items_per_group: int = 1
    buffers: tuple[str, ...] = ()
    uniforms: tuple[str, ...] = ()


@dataclass(frozen=True)
class KernelHandle:
    """Opaque, immutable identifier of a resolved kernel."""
    index: int
    name: str


@dataclass
class DispatchRecord:
    """What one dispatch did: the grid size and the items that ran."""
    kernel: str
    groups: tuple[int, int, int]
    work_items: np.ndarray = field(repr=False)

    @property
    def item_count(self) -> int:
        return int(len(self.work_items))


class KernelInvocation:
    """Per-dispatch view handed to a kernel function."""

    def __init__(
        self,
        spec: KernelSpec,
        groups: tuple[int, int, int],
        uniforms: dict[str, np.ndarray],
        buffers: dict[str, ComputeBuffer],
    ) -> None:
        self.spec = spec
        self.groups = groups
        self._uniforms = uniforms
        self._buffers = buffers

    @property
    def group_count(self) -> int:
        gx, gy, gz = self.groups
        return gx * gy * gz

    def work_items(self, count: int) -> np.ndarray:
        """Item ids covered by the grid, with the kernel-side bounds check.

        Item ``group * items_per_group + local`` runs only if it is below
        *count*; the rest of the last group idles.
        """
        ids = np.arange(self.group_count * self.spec.items_per_group, dtype=np.int64)
        return ids[ids < count]

    def uniform(self, name: str) -> np.ndarray:
        return self._uniforms[name]

    def scalar(self, name: str) -> float:
        return float(self._uniforms[name].reshape(-1)[0])

    def buffer(self, name: str) -> np.ndarray:
        return self._buffers[name].data

    def has_buffer(self, name: str) -> bool:
        return name in self._buffers


class ComputeProgram:
    """A set of kernels sharing program-wide uniforms.

    Handles returned by :meth:`find_kernel` are cached; looking a name up
    twice yields the same handle.
    """

    def __init__(self, kernels: Iterable[KernelSpec], name: str = "program") -> None:
        self.name = name
        self._kernels: list[KernelSpec] = list(kernels)
        self._index: dict[str, int] = {k.name: i for i, k in enumerate(self._kernels)}
        self._handle_cache: dict[str, KernelHandle] = {}
        self._uniforms: dict[str, np.ndarray] = {}
        self._bindings: dict[int, dict[str, ComputeBuffer]] = {
            i: {} for i in range(len(self._kernels))
        }
        self.dispatch_count: int = 0

    # ------------------------------------------------------------------
    # Kernel lookup
    # ------------------------------------------------------------------

    def find_kernel(self, name: str) -> KernelHandle:
        """Return the handle of entry point *name*.

        Raises ``KernelNotFoundError`` if the program has no such kernel.
        """
        cached = self._handle_cache.get(name)
        if cached is not None:
            return cached
        index = self._index.get(name)
        if index is None:
            raise KernelNotFoundError(name)
        handle = KernelHandle(index=index, name=name)
        self._handle_cache[name] = handle
        logger.debug("Resolved kernel '%s' -> %d", name, index)
        return handle

    def has_kernel(self, name: str) -> bool:
        return name in self._index

    def kernel_spec(self, handle: KernelHandle) -> KernelSpec:
        return self._kernels[handle.index]

    @property
    def kernel_names(self) -> list[str]:
        return [k.name for k in self._kernels]

    # ------------------------------------------------------------------
    # Uniform setters
    # ------------------------------------------------------------------

    def set_float(self, name: str, value: float) -> None:
        self._uniforms[name] = np.array([value], dtype=np.float32)

    def set_int(self, name: str, value: int) -> None:
        self._uniforms[name] = np.array([value], dtype=np.int64)

    def set_floats(self, name: str, values) -> None:
        self._uniforms[name] = np.array(values, dtype=np.float32).reshape(-1)

    def get_uniform(self, name: str) -> np.ndarray:
        return self._uniforms[name].copy()

    # ------------------------------------------------------------------
    # Buffer binding
    # ------------------------------------------------------------------

    def set_buffer(self, handle: KernelHandle, name: str, buffer: ComputeBuffer) -> None:
        """Bind *buffer* to slot *name* of one kernel."""
        self._bindings[handle.index][name] = buffer

    def bound_buffers(self, handle: KernelHandle) -> dict[str, ComputeBuffer]:
        return dict(self._bindings[handle.index])

    def clear_bindings(self) -> None:
        for slots in self._bindings.values():
            slots.clear()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def dispatch(
        self,
        handle: KernelHandle,
        groups_x: int,
        groups_y: int = 1,
        groups_z: int = 1,
    ) -> DispatchRecord:
        """Run a kernel over ``groups_x * groups_y * groups_z`` thread groups.

        Raises ``DispatchError`` if a declared resource is not bound or a
        group count is negative.  Numerical faults inside the kernel are
        re-raised as ``DispatchError``; there is no partial dispatch.
        """
        spec = self._kernels[handle.index]
        groups = (int(groups_x), int(groups_y), int(groups_z))
        if min(groups) < 0:
            raise DispatchError(f"{spec.name}: negative group count {groups}")

        bound = self._bindings[handle.index]
        missing = [b for b in spec.buffers if b not in bound]
        if missing:
            raise DispatchError(f"{spec.name}: unbound buffer(s) {', '.join(missing)}")
        released = [b for b in spec.buffers if bound[b].released]
        if released:
            raise DispatchError(f"{spec.name}: released buffer(s) {', '.join(released)}")
        missing = [u for u in spec.uniforms if u not in self._uniforms]
        if missing:
            raise DispatchError(f"{spec.name}: unset uniform(s) {', '.join(missing)}")

        invocation = KernelInvocation(spec, groups, self._uniforms, dict(bound))
        try:
            with np.errstate(invalid="raise", divide="raise", over="raise"):
                items = spec.function(invocation)
        except (ArithmeticError, ValueError, IndexError) as exc:
            raise DispatchError(f"{spec.name}: kernel fault: {exc}") from exc

        self.dispatch_count += 1
        if items is None:
            items = np.empty(0, dtype=np.int64)
        return DispatchRecord(kernel=spec.name, groups=groups, work_items=np.asarray(items))

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def destroy(self) -> None:
        """Drop all bindings and uniforms; cached handles stay valid."""
        self.clear_bindings()
        self._uniforms.clear()
